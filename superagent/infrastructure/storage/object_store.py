import asyncio
import json
from pathlib import Path, PurePosixPath
from typing import List, Optional

import structlog

from superagent.domain.ports import StoredObject

logger = structlog.get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
META_DIR = ".meta"


class LocalObjectStore:
    """Object store on the local filesystem.

    Objects live under ``root`` by name (names may contain ``/``); the content
    type is kept in a JSON sidecar at the same relative path under
    ``root/.meta``.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    async def put(self, name: str, data: bytes, content_type: str) -> None:
        path = self._path(name)
        await asyncio.to_thread(self._write, path, self._meta_path(name), data, content_type)
        logger.debug("Object stored", name=name, size=len(data), content_type=content_type)

    async def get(self, name: str) -> Optional[StoredObject]:
        path = self._path(name)
        return await asyncio.to_thread(self._read, name, path, self._meta_path(name))

    async def list(self) -> List[str]:
        return await asyncio.to_thread(self._list)

    def _path(self, name: str) -> Path:
        parts = PurePosixPath(name).parts
        if not parts or name.startswith("/") or any(part in ("..", ".", META_DIR) for part in parts):
            raise ValueError(f"Invalid object name: {name!r}")
        return self.root.joinpath(*parts)

    def _meta_path(self, name: str) -> Path:
        parts = PurePosixPath(name).parts
        return self.root.joinpath(META_DIR, *parts[:-1], f"{parts[-1]}.json")

    @staticmethod
    def _write(path: Path, meta_path: Path, data: bytes, content_type: str):
        path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        meta_path.write_text(json.dumps({"content_type": content_type}))

    @staticmethod
    def _read(name: str, path: Path, meta_path: Path) -> Optional[StoredObject]:
        if not path.is_file():
            return None

        content_type = DEFAULT_CONTENT_TYPE
        if meta_path.is_file():
            content_type = json.loads(meta_path.read_text()).get("content_type", DEFAULT_CONTENT_TYPE)

        return StoredObject(name=name, data=path.read_bytes(), content_type=content_type)

    def _list(self) -> List[str]:
        if not self.root.is_dir():
            return []
        names = []
        for path in self.root.rglob("*"):
            relative = path.relative_to(self.root)
            if path.is_file() and relative.parts[0] != META_DIR:
                names.append(relative.as_posix())
        return sorted(names)
