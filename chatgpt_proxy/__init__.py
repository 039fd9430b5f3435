"""OpenAI-compatible chat completions proxy for the anonymous ChatGPT web backend."""
from __future__ import annotations

from .app import create_app
from .config import ProxySettings

__all__ = ["create_app", "ProxySettings"]
