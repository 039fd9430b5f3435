"""Construction of requests to the ChatGPT web conversation backend."""
from __future__ import annotations

import json
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional

import aiohttp

from .config import ProxySettings
from .credentials import CredentialSet
from .sse import TranslationError

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class UpstreamError(TranslationError):
    """Raised when the conversation endpoint answers with an error status."""

    def __init__(self, status: int, body: str = "") -> None:
        super().__init__(f"Upstream {status}: {body[:200]}")
        self.status = status
        self.body = body


def flatten_content(c: Any) -> str:
    if isinstance(c, str):
        return c
    if c is None:
        return ""
    if isinstance(c, list):
        parts: list[str] = []
        for item in c:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return " ".join(parts)
    return json.dumps(c, separators=(",", ":"))


def _message_fields(m: Any) -> tuple[str, str]:
    if isinstance(m, dict):
        role, content = m.get("role"), m.get("content")
    else:
        role, content = getattr(m, "role", None), getattr(m, "content", None)
    return (role if isinstance(role, str) and role else "user"), flatten_content(content)


def message_texts(messages: Iterable[Any]) -> list[str]:
    """Plain text of each inbound message, used for echo suppression."""

    return [_message_fields(m)[1] for m in messages]


def build_conversation_payload(messages: Iterable[Any], settings: ProxySettings) -> dict[str, Any]:
    mapped: list[dict[str, Any]] = []
    for m in messages:
        role, text = _message_fields(m)
        mapped.append({
            "id": str(uuid.uuid4()),
            "author": {"role": role},
            "content": {"content_type": "text", "parts": [text]},
        })

    return {
        "action": "next",
        "messages": mapped,
        "parent_message_id": str(uuid.uuid4()),
        "model": settings.upstream_model,
        "timezone_offset_min": settings.timezone_offset_min,
        "suggestions": [],
        "history_and_training_disabled": True,
        "conversation_mode": {"kind": "primary_assistant"},
        "websocket_request_id": str(uuid.uuid4()),
    }


def build_headers(credentials: Optional[CredentialSet], settings: ProxySettings) -> dict[str, str]:
    headers = {
        "accept": "*/*",
        "accept-language": "en-US,en;q=0.9",
        "cache-control": "no-cache",
        "content-type": "application/json",
        "oai-language": "en-US",
        "origin": settings.base_url,
        "pragma": "no-cache",
        "referer": settings.base_url,
        "user-agent": USER_AGENT,
    }
    # Missing or incomplete credentials are sent empty; the backend rejects the request.
    ready = credentials is not None and credentials.is_ready
    headers["oai-device-id"] = credentials.device_id if ready else ""
    headers["openai-sentinel-chat-requirements-token"] = credentials.token if ready else ""
    return headers


@asynccontextmanager
async def upstream_request(
    client: Optional[aiohttp.ClientSession],
    url: str,
    payload: dict,
    headers: dict,
) -> AsyncIterator[aiohttp.ClientResponse]:
    """POST to the conversation endpoint; error statuses raise UpstreamError."""
    if client is None:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None, sock_read=None)) as session:
            async with session.post(url, json=payload, headers=headers) as response:
                await _raise_for_status(response)
                yield response
    else:
        async with client.post(url, json=payload, headers=headers) as response:
            await _raise_for_status(response)
            yield response


async def _raise_for_status(response: aiohttp.ClientResponse) -> None:
    if response.status >= 400:
        body = await response.text()
        raise UpstreamError(response.status, body)


def iter_response_bytes(response: aiohttp.ClientResponse, chunk_size: int = 1024) -> AsyncIterator[bytes]:
    return response.content.iter_chunked(chunk_size)
