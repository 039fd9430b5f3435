"""Configuration helpers for the ChatGPT web proxy."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "CHATGPT_PROXY_"


def _env(name: str) -> str | None:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int | None) -> int | None:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


@dataclass
class ProxySettings:
    """Runtime configuration values for the proxy service."""

    host: str | None = None
    port: int | None = None
    base_url: str = "https://chat.openai.com"
    refresh_interval: float = 60.0
    error_interval: float = 120.0
    upstream_model: str = "text-davinci-002-render-sha"
    response_model: str = "gpt-3.5-turbo"
    timezone_offset_min: int = -180
    support_url: str = "https://discord.pawan.krd"
    refresh_enabled: bool = True
    strict_stream_end: bool = False
    debug_sse_enabled: bool = False
    debug_sse_path: str | None = None

    @classmethod
    def from_env(cls) -> "ProxySettings":
        defaults = cls()
        return cls(
            host=_env("HOST"),
            port=_env_int("PORT", None),
            base_url=(_env("BASE_URL") or defaults.base_url).rstrip("/"),
            refresh_interval=_env_float("REFRESH_INTERVAL", defaults.refresh_interval),
            error_interval=_env_float("ERROR_INTERVAL", defaults.error_interval),
            upstream_model=_env("UPSTREAM_MODEL") or defaults.upstream_model,
            response_model=_env("RESPONSE_MODEL") or defaults.response_model,
            timezone_offset_min=_env_int("TIMEZONE_OFFSET_MIN", defaults.timezone_offset_min),
            support_url=_env("SUPPORT_URL") or defaults.support_url,
            refresh_enabled=_env_bool("REFRESH_ENABLED", defaults.refresh_enabled),
            strict_stream_end=_env_bool("STRICT_STREAM_END", defaults.strict_stream_end),
            debug_sse_enabled=_env("DEBUG_SSE_PATH") is not None,
            debug_sse_path=_env("DEBUG_SSE_PATH"),
        )

    @property
    def chat_requirements_url(self) -> str:
        return f"{self.base_url}/backend-anon/sentinel/chat-requirements"

    @property
    def conversation_url(self) -> str:
        return f"{self.base_url}/backend-api/conversation"

    def resolved_debug_path(self) -> Path | None:
        """Expand user and environment variables in the SSE debug log path."""

        if not self.debug_sse_path:
            return None
        return Path(os.path.expanduser(os.path.expandvars(self.debug_sse_path)))
