"""Decoding of the upstream conversation SSE stream into text deltas.

The conversation backend never sends increments: every event carries the
whole answer generated so far in ``message.content.parts[0]``. The stages
here turn raw bytes into ``data:`` lines, lines into JSON payloads, and
cumulative snapshots into the suffix appended since the previous event.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_LINE = "data: [DONE]"
MAX_LINE_BYTES = 2 * 1024 * 1024


class TranslationError(RuntimeError):
    """Raised when the upstream stream cannot be turned into a completion."""


class TruncatedStreamError(TranslationError):
    """Raised in strict mode when the stream ends before ``data: [DONE]``."""


class SSEDecoder:
    """Splits a byte stream into ``data:`` lines.

    Lines are cut on ``\\n`` at the byte level, so multi-byte characters that
    straddle chunk boundaries decode intact. ``finished`` records whether the
    ``[DONE]`` sentinel was seen. An unterminated line longer than
    ``max_line_bytes`` raises TranslationError.
    """

    def __init__(
        self,
        debug: Optional[Callable[[str], None]] = None,
        *,
        max_line_bytes: int = MAX_LINE_BYTES,
    ) -> None:
        self.finished = False
        self._debug = debug
        self.max_line_bytes = max_line_bytes

    async def lines(self, byte_iter: AsyncIterator[bytes]) -> AsyncIterator[str]:
        buffer = bytearray()
        async for chunk in byte_iter:
            if not chunk:
                continue
            buffer.extend(chunk)
            while True:
                newline_idx = buffer.find(b"\n")
                if newline_idx == -1:
                    break
                raw = bytes(buffer[: newline_idx + 1])
                del buffer[: newline_idx + 1]
                line = raw.decode("utf-8", errors="replace").rstrip()
                if self._debug:
                    self._debug(f"raw: {line[:500]}")
                if line == DONE_LINE:
                    self.finished = True
                    return
                if line.startswith(DATA_PREFIX):
                    yield line
            if len(buffer) > self.max_line_bytes:
                # Upstream stopped sending newlines.
                raise TranslationError(
                    f"Upstream line exceeds {self.max_line_bytes} bytes without a newline"
                )
        if buffer and self._debug:
            self._debug(f"dropped unterminated tail: {bytes(buffer[:200])!r}")


async def iter_payloads(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    async for line in lines:
        yield line[len(DATA_PREFIX):].strip()


def extract_text(payload: str) -> str:
    """Return ``message.content.parts[0]`` from an event payload, or ``""``."""

    try:
        event = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise TranslationError(f"Upstream sent a non-JSON event: {payload[:200]!r}") from exc

    node: Any = event
    for key in ("message", "content", "parts"):
        if not isinstance(node, dict):
            return ""
        node = node.get(key)
    if not isinstance(node, list) or not node:
        return ""
    text = node[0]
    return text if isinstance(text, str) else ""


class DeltaReconstructor:
    """Turns cumulative snapshots into appended suffixes.

    ``latest`` is the longest snapshot seen so far and only ever grows.
    A snapshot identical to one of ``echoes`` (the inbound message texts)
    produces no delta. ``text`` is everything emitted so far.
    """

    def __init__(self, echoes: Iterable[str] = ()) -> None:
        self._echoes = frozenset(e for e in echoes if e)
        self.latest = ""
        self._parts: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, snapshot: str) -> str:
        if snapshot in self._echoes:
            delta = ""
        elif snapshot.startswith(self.latest):
            delta = snapshot[len(self.latest):]
        elif self.latest.startswith(snapshot):
            # A stale, shorter snapshot repeats what was already sent.
            delta = ""
        else:
            delta = snapshot.replace(self.latest, "", 1)

        if len(snapshot) > len(self.latest):
            self.latest = snapshot
        if delta:
            self._parts.append(delta)
        return delta


async def iter_deltas(
    byte_iter: AsyncIterator[bytes],
    echoes: Iterable[str] = (),
    *,
    strict: bool = False,
    debug: Optional[Callable[[str], None]] = None,
) -> AsyncIterator[str]:
    """Full pipeline: raw upstream bytes to non-empty text deltas."""

    decoder = SSEDecoder(debug=debug)
    reconstructor = DeltaReconstructor(echoes)
    async for payload in iter_payloads(decoder.lines(byte_iter)):
        delta = reconstructor.feed(extract_text(payload))
        if debug:
            debug(f"delta: {delta[:200]!r}")
        if delta:
            yield delta

    if not decoder.finished:
        if strict:
            raise TruncatedStreamError("Upstream stream ended before [DONE]")
        logger.warning("Upstream stream ended without [DONE]; treating as complete")
