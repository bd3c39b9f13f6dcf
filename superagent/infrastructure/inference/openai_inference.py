"""Inference adapter backed by the OpenAI API."""
import base64
import json
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import structlog
from openai import AsyncOpenAI

from superagent.domain.ports import StreamItem, TextFragment, ToolCallRequest

logger = structlog.get_logger(__name__)

EXTRACTION_INSTRUCTION = (
    "Extract all readable text from this document. Preserve headings, lists and "
    "table rows as plain text. Reply with the extracted text only."
)


class OpenAIInference:
    """Chat completions (plain and streaming), embeddings, images and document extraction"""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        chat_model: str = "gpt-4o-mini",
        embedding_model: str = "text-embedding-3-small",
        image_model: str = "gpt-image-1",
        document_model: str = "gpt-4o-mini"
    ):
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self.image_model = image_model
        self.document_model = document_model

    async def complete(self, messages: Sequence[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None) -> str:
        kwargs: Dict[str, Any] = {"model": self.chat_model, "messages": list(messages)}
        if tools:
            kwargs["tools"] = tools

        response = await self.client.chat.completions.create(**kwargs)
        return response.choices[0].message.content or ""

    async def stream_complete(
        self, messages: Sequence[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[StreamItem]:
        """Yield text fragments as they arrive, then the accumulated tool calls.

        Tool call arguments are streamed in pieces keyed by index; a call is
        only complete once the stream ends.
        """
        kwargs: Dict[str, Any] = {"model": self.chat_model, "messages": list(messages), "stream": True}
        if tools:
            kwargs["tools"] = tools

        pending: Dict[int, Dict[str, str]] = {}
        stream = await self.client.chat.completions.create(**kwargs)

        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta

            if delta.content:
                yield TextFragment(text=delta.content)

            for call in delta.tool_calls or []:
                slot = pending.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                if call.id:
                    slot["id"] = call.id
                if call.function is not None:
                    if call.function.name:
                        slot["name"] += call.function.name
                    if call.function.arguments:
                        slot["arguments"] += call.function.arguments

        for index in sorted(pending):
            slot = pending[index]
            yield ToolCallRequest(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=self._parse_arguments(slot["name"], slot["arguments"])
            )

    async def embed(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(model=self.embedding_model, input=text)
        return list(response.data[0].embedding)

    async def image_from_prompt(self, prompt: str) -> bytes:
        kwargs: Dict[str, Any] = {"model": self.image_model, "prompt": prompt, "n": 1, "size": "1024x1024"}
        if self.image_model.startswith("dall-e"):
            kwargs["response_format"] = "b64_json"

        response = await self.client.images.generate(**kwargs)
        encoded = response.data[0].b64_json
        return base64.b64decode(encoded) if encoded else b""

    async def document_to_text(self, data: bytes, content_type: str) -> str:
        if content_type.startswith("image/"):
            part: Dict[str, Any] = {
                "type": "image_url",
                "image_url": {"url": self._data_url(data, content_type)}
            }
        elif content_type == "application/pdf":
            part = {
                "type": "file",
                "file": {"filename": "document.pdf", "file_data": self._data_url(data, content_type)}
            }
        else:
            return data.decode("utf-8", errors="replace")

        response = await self.client.chat.completions.create(
            model=self.document_model,
            messages=[{
                "role": "user",
                "content": [{"type": "text", "text": EXTRACTION_INSTRUCTION}, part]
            }]
        )
        return response.choices[0].message.content or ""

    @staticmethod
    def _data_url(data: bytes, content_type: str) -> str:
        return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"

    @staticmethod
    def _parse_arguments(name: str, raw: str) -> Dict[str, Any]:
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Model produced malformed tool arguments", tool_name=name, arguments=raw[:200])
            return {}
        return parsed if isinstance(parsed, dict) else {}
