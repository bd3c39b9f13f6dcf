"""Handlers behind the four capabilities the model can call.

Each handler takes its validated input model and the ``CallContext`` and
returns text for the model. Model-observable outcomes ("not found", a failed
search) are returned as text; anything else is raised and converted at the
registry boundary.
"""
import asyncio
from typing import List
from urllib.parse import quote_plus
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from superagent.domain.context.context_manager import is_binary_content
from superagent.domain.errors import CapabilityError
from superagent.domain.models.agent_state import ResearchParams
from superagent.domain.ports import Browser, Inference, ObjectStore, TaskScheduler
from .tool_registry import CallContext, Capability, CapabilityKind

logger = structlog.get_logger(__name__)

IMAGE_PROMPT_INSTRUCTION = (
    "Rewrite the following image request as a single vivid, concrete prompt for an "
    "image generation model. Reply with the prompt only."
)


class WebSearchInput(BaseModel):
    query: str = Field(min_length=1, description="The search query")


class GenerateImageInput(BaseModel):
    prompt: str = Field(min_length=1, description="Visual description of the image")


class ReadFileInput(BaseModel):
    filename: str = Field(min_length=1, description="The exact name of the file to read")


class StartResearchInput(BaseModel):
    topic: str = Field(min_length=1, description="The research topic")


class AgentCapabilities:
    """Binds capability handlers to the collaborators they need"""

    def __init__(
        self,
        inference: Inference,
        object_store: ObjectStore,
        browser: Browser,
        scheduler: TaskScheduler,
        search_url_template: str = "https://www.google.com/search?q={query}",
        max_search_chars: int = 2000,
        max_file_chars: int = 8000,
        browser_timeout_seconds: float = 30.0,
        rewrite_image_prompts: bool = True
    ):
        self.inference = inference
        self.object_store = object_store
        self.browser = browser
        self.scheduler = scheduler
        self.search_url_template = search_url_template
        self.max_search_chars = max_search_chars
        self.max_file_chars = max_file_chars
        self.browser_timeout_seconds = browser_timeout_seconds
        self.rewrite_image_prompts = rewrite_image_prompts

    def build(self) -> List[Capability]:
        return [
            Capability(
                kind=CapabilityKind.WEB_SEARCH,
                description="Search the web for real-time information.",
                input_model=WebSearchInput,
                handler=self.web_search
            ),
            Capability(
                kind=CapabilityKind.GENERATE_IMAGE,
                description="Generate an image based on a prompt.",
                input_model=GenerateImageInput,
                handler=self.generate_image
            ),
            Capability(
                kind=CapabilityKind.READ_FILE,
                description="Read the full content of a specific file from the sandbox.",
                input_model=ReadFileInput,
                handler=self.read_file
            ),
            Capability(
                kind=CapabilityKind.START_DEEP_RESEARCH,
                description="Start a long-running deep research workflow.",
                input_model=StartResearchInput,
                handler=self.start_deep_research
            ),
        ]

    async def web_search(self, args: WebSearchInput, context: CallContext) -> str:
        url = self.search_url_template.format(query=quote_plus(args.query))
        try:
            text = await asyncio.wait_for(
                self.browser.fetch_visible_text(url),
                timeout=self.browser_timeout_seconds
            )
        except asyncio.TimeoutError:
            return f"Search failed: timed out after {self.browser_timeout_seconds:g}s"
        except Exception as e:
            logger.warning("Web search failed", url=url, error=str(e), session_id=context.session_id)
            return f"Search failed: {e}"

        return f"Search Results: {text[:self.max_search_chars]}..."

    async def generate_image(self, args: GenerateImageInput, context: CallContext) -> str:
        prompt = args.prompt
        if self.rewrite_image_prompts:
            rewritten = await self.inference.complete([
                {"role": "system", "content": IMAGE_PROMPT_INSTRUCTION},
                {"role": "user", "content": prompt}
            ])
            prompt = rewritten.strip() or prompt

        image = await self.inference.image_from_prompt(prompt)
        if not image:
            raise CapabilityError(CapabilityKind.GENERATE_IMAGE.value, "image generation returned no data")

        name = f"generated/{uuid4().hex}.png"
        await self.object_store.put(name, image, "image/png")

        logger.info("Stored generated image", name=name, size=len(image), session_id=context.session_id)
        return f"![Generated Image](/api/files/{name})"

    async def read_file(self, args: ReadFileInput, context: CallContext) -> str:
        stored = await self.object_store.get(args.filename)
        if stored is None:
            return f"File '{args.filename}' not found."

        if is_binary_content(stored.content_type):
            text = await self.inference.document_to_text(stored.data, stored.content_type)
        else:
            text = stored.data.decode("utf-8", errors="replace")

        return f"File Content: {text[:self.max_file_chars]}"

    async def start_deep_research(self, args: StartResearchInput, context: CallContext) -> str:
        run_id = await self.scheduler.schedule(ResearchParams(
            topic=args.topic,
            source_session_id=context.session_id,
            connection_id=context.connection_id
        ))
        return f"Started Research Workflow (ID: {run_id}). I will notify you when done."

