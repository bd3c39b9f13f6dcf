from typing import Callable, Dict, Optional
import structlog

from .session_actor import SessionActor

logger = structlog.get_logger(__name__)

ActorFactory = Callable[[str], SessionActor]


class SessionDirectory:
    """Maps opaque session ids to their live actors.

    Other components (the task engine) reach a session only through
    ``resolve``; they never hold the actor itself across an await.
    """

    def __init__(self, actor_factory: Optional[ActorFactory] = None):
        self.actor_factory = actor_factory
        self._actors: Dict[str, SessionActor] = {}

    def get_or_create(self, session_id: str) -> SessionActor:
        actor = self._actors.get(session_id)
        if actor is None:
            if self.actor_factory is None:
                raise RuntimeError("SessionDirectory has no actor factory")
            actor = self.actor_factory(session_id)
            self._actors[session_id] = actor
            logger.info("Session created", session_id=session_id)
        actor.start()
        return actor

    def resolve(self, session_id: str) -> Optional[SessionActor]:
        return self._actors.get(session_id)

    def __len__(self) -> int:
        return len(self._actors)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._actors

    async def shutdown(self):
        for actor in list(self._actors.values()):
            await actor.stop()
        logger.info("Session actors stopped", sessions=len(self._actors))
