"""Background loop that keeps the anonymous device id and sentinel token fresh."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Optional

import aiohttp
from aiohttp import ClientError

from .credentials import CredentialSet, CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 60.0
DEFAULT_ERROR_INTERVAL = 120.0


class CredentialRefreshError(RuntimeError):
    """Raised when the chat-requirements exchange does not yield a token."""


async def fetch_credentials(client: aiohttp.ClientSession, url: str) -> CredentialSet:
    """Mint a device id and exchange it for a chat-requirements token."""

    device_id = str(uuid.uuid4())
    headers = {
        "oai-device-id": device_id,
        "Content-Type": "application/json",
    }
    try:
        async with client.post(url, headers=headers) as response:
            if response.status >= 400:
                body = await response.text()
                raise CredentialRefreshError(f"Upstream {response.status}: {body[:200]}")
            data = await response.json(content_type=None)
    except (ClientError, asyncio.TimeoutError, ValueError) as exc:
        raise CredentialRefreshError(f"chat-requirements request failed: {exc}") from exc

    token = data.get("token") if isinstance(data, dict) else None
    if not isinstance(token, str) or not token:
        raise CredentialRefreshError("chat-requirements response has no token")
    return CredentialSet(device_id=device_id, token=token)


class CredentialRefresher:
    """Periodically replaces the credential pair held by a CredentialStore.

    One cycle calls ``fetch`` once. Success installs the new pair and waits
    ``interval`` seconds; any failure leaves the store untouched and waits
    ``error_interval`` seconds before the next attempt. The loop never exits
    on its own.
    """

    def __init__(
        self,
        store: CredentialStore,
        fetch: Callable[[], Awaitable[CredentialSet]],
        *,
        interval: float = DEFAULT_REFRESH_INTERVAL,
        error_interval: float = DEFAULT_ERROR_INTERVAL,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self._fetch = fetch
        self.interval = interval
        self.error_interval = error_interval
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def refresh_once(self) -> bool:
        try:
            credentials = await self._fetch()
        except Exception as exc:  # noqa: BLE001
            logger.error("Error refreshing session ID, retrying in %.0f seconds: %s", self.error_interval, exc)
            logger.error("If this error persists, your country may not be supported yet.")
            logger.error("If your country was the issue, please consider using a U.S. VPN.")
            return False

        previous = self.store.replace(credentials)
        if previous is None:
            logger.info("Successfully refreshed session ID and token. (Now it's ready to process requests)")
        else:
            logger.info("Successfully refreshed session ID and token.")
        return True

    async def run(self) -> None:
        while True:
            ok = await self.refresh_once()
            await self._sleep(self.interval if ok else self.error_interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="credential-refresh")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
