"""Pydantic models for the OpenAI-compatible request and response shapes."""
from __future__ import annotations

from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")
    role: str
    content: Any = ""


class ChatCompletionsRequest(BaseModel):
    model_config = ConfigDict(extra="allow")
    model: Optional[str] = None
    messages: List[ChatMessage]
    stream: Optional[bool] = None


class ChunkDelta(BaseModel):
    content: str = ""


class ChunkChoice(BaseModel):
    delta: ChunkDelta
    index: int = 0
    finish_reason: Optional[str] = None


class CompletionChunk(BaseModel):
    id: str
    created: int
    object: str = "chat.completion.chunk"
    model: str
    choices: List[ChunkChoice]


class ChatResponseMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class Choice(BaseModel):
    index: int = 0
    message: ChatResponseMessage
    finish_reason: Optional[str] = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionsResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Usage = Usage()


class ErrorDetail(BaseModel):
    message: str
    type: str = "invalid_request_error"


class ErrorBody(BaseModel):
    status: bool = False
    error: ErrorDetail
    support: str
