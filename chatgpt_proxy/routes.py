"""HTTP route handlers for the ChatGPT web proxy.

Only ``POST /v1/chat/completions`` is served. The handler builds the
conversation payload, opens the upstream stream, and hands the bytes to the
SSE pipeline. Failures before the response starts become a fixed 500 body;
there is no partial output on that path.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Callable, Optional, Union

from aiohttp import ClientError
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .config import ProxySettings
from .schemas import ChatCompletionsRequest, ErrorBody, ErrorDetail
from .sse import TranslationError, iter_deltas
from .translate import CompletionStream, collect_text
from .upstream import (
    build_conversation_payload,
    build_headers,
    iter_response_bytes,
    message_texts,
    upstream_request,
)

logger = logging.getLogger(__name__)
router = APIRouter()

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
NOT_FOUND_MESSAGE = (
    f'The requested endpoint was not found. Please make sure to use "{CHAT_COMPLETIONS_PATH}" as the endpoint.'
)
TRANSLATION_ERROR_MESSAGE = (
    "An error occurred while generating the response. "
    "Please make sure your request does not contain unsafe or blocked content."
)
CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    **CORS_HEADERS,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def error_response(message: str, status_code: int, support_url: str) -> JSONResponse:
    body = ErrorBody(error=ErrorDetail(message=message), support=support_url)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=CORS_HEADERS)


def not_found_response(support_url: str) -> JSONResponse:
    return error_response(NOT_FOUND_MESSAGE, 404, support_url)


def _settings(request: Request) -> ProxySettings:
    settings = getattr(request.app.state, "settings", None)
    return settings if isinstance(settings, ProxySettings) else ProxySettings()


def _parse_flag(value: Optional[str]) -> Optional[bool]:
    """Interpret a header switch; absent or blank means "not specified"."""

    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().lower() not in _FALSE_VALUES


def wants_stream(header_value: Optional[str], body_value: Optional[bool]) -> bool:
    flag = _parse_flag(header_value)
    if flag is not None:
        return flag
    return bool(body_value)


def _coerce_json_object_from_bytes(raw: bytes) -> dict[str, Any]:
    """Parse request body bytes into a JSON object, unwrapping double-encoded strings."""
    if not raw or raw.strip() == b"":
        raise ValueError("Empty request body")

    first = json.loads(raw.decode("utf-8", errors="replace"))
    if isinstance(first, str):
        first = json.loads(first)
    if not isinstance(first, dict):
        raise TypeError("Request body must be a JSON object")
    return first


def _make_debugger(request: Request) -> Optional[Callable[[str], None]]:
    """SSE debug writer; the app setting can be overridden per request."""

    settings = _settings(request)
    enabled = settings.debug_sse_enabled

    # app default -> query param -> header
    for override in (
        request.query_params.get("debug_sse"),
        request.headers.get("x-debug-sse"),
    ):
        if isinstance(override, str) and override.strip():
            v = override.strip().lower()
            if v in _TRUE_VALUES:
                enabled = True
            elif v in _FALSE_VALUES:
                enabled = False
    if not enabled:
        return None

    path = settings.resolved_debug_path()
    if path is not None:
        def writer(line: str) -> None:
            try:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(f"[{time.strftime('%Y-%m-%d %H:%M:%S', time.gmtime())} UTC] {line}\n")
            except OSError as e:
                logger.debug("debug write failed: %s", e)
        return writer

    def writer_log(line: str) -> None:
        logger.debug("%s", line)

    return writer_log


async def _stream_frames(
    stack: AsyncExitStack,
    state: CompletionStream,
    deltas: AsyncIterator[str],
    first: Optional[str],
) -> AsyncIterator[str]:
    async with stack:
        try:
            async for frame in state.frames(deltas, first):
                yield frame
        except (TranslationError, ClientError, asyncio.TimeoutError) as exc:
            # Headers are already sent; end the stream without a stop frame.
            logger.error("Stream %s aborted: %s", state.response_id, exc)


@router.post(CHAT_COMPLETIONS_PATH, response_model=None)
async def chat_completions(request: Request) -> Union[JSONResponse, StreamingResponse]:
    settings = _settings(request)
    credentials = request.app.state.credentials
    client = getattr(request.app.state, "http_client", None)
    debug_cb = _make_debugger(request)

    stack = AsyncExitStack()
    try:
        payload = ChatCompletionsRequest(**_coerce_json_object_from_bytes(await request.body()))
        stream = wants_stream(request.headers.get("stream"), payload.stream)
        logger.info(
            "Request: %s %s %s",
            request.method,
            request.url.path,
            "(stream-enabled)" if stream else "(stream-disabled)",
        )

        upstream_payload = build_conversation_payload(payload.messages, settings)
        headers = build_headers(credentials.get(), settings)
        response = await stack.enter_async_context(
            upstream_request(client, settings.conversation_url, upstream_payload, headers)
        )
        if debug_cb:
            debug_cb(f"upstream status: {response.status}")

        deltas = iter_deltas(
            iter_response_bytes(response),
            message_texts(payload.messages),
            strict=settings.strict_stream_end,
            debug=debug_cb,
        )
        stack.push_async_callback(deltas.aclose)
        state = CompletionStream(settings.response_model)

        # Pull the first delta before committing so early failures still map to 500.
        first = await anext(deltas, None)

        if not stream:
            async with stack:
                text = await collect_text(deltas, first)
            return JSONResponse(content=state.completion(text).model_dump(), headers=CORS_HEADERS)
    except Exception as exc:  # noqa: BLE001
        await stack.aclose()
        logger.error("Error handling %s %s: %s", request.method, request.url.path, exc)
        if debug_cb:
            debug_cb(f"request failed: {exc!r}")
        return error_response(TRANSLATION_ERROR_MESSAGE, 500, settings.support_url)

    return StreamingResponse(
        _stream_frames(stack, state, deltas, first),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
