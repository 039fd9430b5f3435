"""Rendering of text deltas as OpenAI chat-completion responses."""
from __future__ import annotations

import json
import secrets
import string
import time
from typing import Any, AsyncIterator, Optional

from .schemas import (
    ChatCompletionsResponse,
    ChatResponseMessage,
    Choice,
    ChunkChoice,
    ChunkDelta,
    CompletionChunk,
    Usage,
)


_ID_ALPHABET = string.ascii_letters + string.digits


def new_completion_id(prefix: str = "chatcmpl-", length: int = 28) -> str:
    return prefix + "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


class CompletionStream:
    """Per-request response state shared by every chunk of one completion."""

    def __init__(self, model: str, response_id: str | None = None, created: int | None = None) -> None:
        self.response_id = response_id or new_completion_id()
        self.model = model
        self.created = int(time.time()) if created is None else created

    def _format_event(self, data: dict[str, Any]) -> str:
        return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"

    def chunk(self, content: str, finish_reason: Optional[str] = None) -> str:
        chunk = CompletionChunk(
            id=self.response_id,
            created=self.created,
            model=self.model,
            choices=[ChunkChoice(delta=ChunkDelta(content=content), index=0, finish_reason=finish_reason)],
        )
        return self._format_event(chunk.model_dump())

    def stop_chunk(self) -> str:
        return self.chunk("", finish_reason="stop")

    async def frames(self, deltas: AsyncIterator[str], first: Optional[str] = None) -> AsyncIterator[str]:
        """Yield one frame per delta in arrival order, then the stop frame.

        ``first`` is a delta already pulled from ``deltas`` by the caller.
        """

        if first:
            yield self.chunk(first)
        async for delta in deltas:
            if delta:
                yield self.chunk(delta)
        yield self.stop_chunk()

    def completion(self, text: str) -> ChatCompletionsResponse:
        return ChatCompletionsResponse(
            id=self.response_id,
            created=self.created,
            model=self.model,
            choices=[
                Choice(
                    index=0,
                    message=ChatResponseMessage(role="assistant", content=text),
                    finish_reason="stop",
                )
            ],
            usage=Usage(prompt_tokens=0, completion_tokens=0, total_tokens=0),
        )


async def collect_text(deltas: AsyncIterator[str], first: Optional[str] = None) -> str:
    parts: list[str] = [first] if first else []
    async for delta in deltas:
        parts.append(delta)
    return "".join(parts)
