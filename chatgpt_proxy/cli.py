"""Entry points for launching the FastAPI proxy via uvicorn."""
from __future__ import annotations

import argparse
import logging

import uvicorn

from .app import create_app
from .config import ProxySettings


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3040


logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


def _build_settings(args: argparse.Namespace) -> ProxySettings:
    """Construct ProxySettings from the environment, then apply CLI overrides."""

    settings = ProxySettings.from_env()
    settings.host = args.host or settings.host or DEFAULT_HOST
    settings.port = args.port or settings.port or DEFAULT_PORT
    if args.base_url:
        settings.base_url = args.base_url.rstrip("/")

    debug_arg = args.debug.strip() if isinstance(args.debug, str) else ""
    if debug_arg:
        settings.debug_sse_enabled = True
        settings.debug_sse_path = debug_arg
    return settings


def _log_configuration(settings: ProxySettings) -> None:
    """Emit a concise summary of the active configuration values."""

    debug_display = settings.debug_sse_path if settings.debug_sse_enabled else "disabled"
    logger.info("Initializing ChatGPT Web Proxy ...")
    logger.info(
        "Loaded configuration host=%s port=%s upstream=%s refresh=%ss/%ss debug=%s",
        settings.host,
        settings.port,
        settings.base_url,
        settings.refresh_interval,
        settings.error_interval,
        debug_display,
    )
    logger.info("OpenAI-compatible endpoint: http://%s:%s/v1/chat/completions", settings.host, settings.port)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the ChatGPT web proxy server")
    parser.add_argument(
        "--host",
        default=None,
        help=f"Host interface to bind (default {DEFAULT_HOST})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help=f"Port to bind (default {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Base URL of the ChatGPT web backend",
    )
    parser.add_argument(
        "--debug",
        metavar="PATH",
        default=None,
        help="Enable SSE debug logging and write to PATH",
    )
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        settings = _build_settings(args)
    except ValueError as err:
        logger.error("[!] Configuration error: %s", err)
        raise SystemExit(1)

    _log_configuration(settings)

    uvicorn.run(
        create_app(settings),
        host=settings.host or DEFAULT_HOST,
        port=settings.port or DEFAULT_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    run()
