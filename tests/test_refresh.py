import asyncio
import uuid

import pytest
from aiohttp import ClientConnectionError

from chatgpt_proxy.credentials import CredentialSet, CredentialStore
from chatgpt_proxy.refresh import CredentialRefreshError, CredentialRefresher, fetch_credentials

from fakes import FakeClient, FakeResponse

URL = "https://chat.example/backend-anon/sentinel/chat-requirements"


class StopLoop(Exception):
    pass


def scripted_fetch(*outcomes):
    """Return an async fetch that yields each outcome in turn."""

    queue = list(outcomes)

    async def fetch():
        outcome = queue.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return fetch


def recording_sleep(limit, store=None, observed=None):
    delays = []

    async def sleep(seconds):
        delays.append(seconds)
        if observed is not None:
            observed.append(store.get())
        if len(delays) >= limit:
            raise StopLoop()

    return sleep, delays


# ---------- fetch_credentials ----------

def test_fetch_credentials_posts_fresh_device_id():
    client = FakeClient(FakeResponse(data={"token": "sentinel-token"}))
    creds = asyncio.run(fetch_credentials(client, URL))

    assert creds.token == "sentinel-token"
    call = client.calls[0]
    assert call["url"] == URL
    assert call["headers"]["oai-device-id"] == creds.device_id
    uuid.UUID(creds.device_id)


def test_fetch_credentials_uses_new_device_id_each_time():
    client = FakeClient(FakeResponse(data={"token": "t"}))
    a = asyncio.run(fetch_credentials(client, URL))
    b = asyncio.run(fetch_credentials(client, URL))
    assert a.device_id != b.device_id


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(status=403, body="Forbidden"),
        FakeResponse(data={"detail": "nope"}),
        FakeResponse(data={"token": ""}),
        FakeResponse(data=["token"]),
        FakeResponse(body="<html>not json</html>"),
        ClientConnectionError("connection reset"),
    ],
)
def test_fetch_credentials_failures(response):
    with pytest.raises(CredentialRefreshError):
        asyncio.run(fetch_credentials(FakeClient(response), URL))


# ---------- CredentialRefresher ----------

def test_refresh_once_success_replaces_store():
    store = CredentialStore()
    refresher = CredentialRefresher(store, scripted_fetch(CredentialSet("d", "t")))
    assert asyncio.run(refresher.refresh_once()) is True
    assert store.get() == CredentialSet("d", "t")


def test_refresh_once_failure_keeps_last_known_good():
    good = CredentialSet("d", "t")
    store = CredentialStore(good)
    refresher = CredentialRefresher(store, scripted_fetch(CredentialRefreshError("boom")))
    assert asyncio.run(refresher.refresh_once()) is False
    assert store.get() is good


def test_refresh_once_failure_leaves_unset_store_unset():
    store = CredentialStore()
    refresher = CredentialRefresher(store, scripted_fetch(RuntimeError("boom")))
    assert asyncio.run(refresher.refresh_once()) is False
    assert store.get() is None


def test_run_uses_short_interval_after_success_and_long_after_failure():
    store = CredentialStore()
    first = CredentialSet("d1", "t1")
    second = CredentialSet("d2", "t2")
    observed = []
    sleep, delays = recording_sleep(4, store, observed)
    refresher = CredentialRefresher(
        store,
        scripted_fetch(first, CredentialRefreshError("down"), ValueError("bad json"), second),
        interval=60,
        error_interval=120,
        sleep=sleep,
    )

    with pytest.raises(StopLoop):
        asyncio.run(refresher.run())

    assert delays == [60, 120, 120, 60]
    # The failure window keeps serving the last good pair.
    assert observed == [first, first, first, second]


def test_run_keeps_retrying_when_never_successful():
    store = CredentialStore()
    sleep, delays = recording_sleep(3)
    refresher = CredentialRefresher(
        store,
        scripted_fetch(*(CredentialRefreshError("down") for _ in range(3))),
        sleep=sleep,
    )
    with pytest.raises(StopLoop):
        asyncio.run(refresher.run())
    assert delays == [120, 120, 120]
    assert store.get() is None


def test_start_and_stop_cancel_background_task():
    store = CredentialStore()

    async def fetch():
        return CredentialSet("d", "t")

    async def scenario():
        refresher = CredentialRefresher(store, fetch, interval=3600)
        task = refresher.start()
        assert refresher.start() is task
        for _ in range(5):
            await asyncio.sleep(0)
        assert store.get() == CredentialSet("d", "t")
        await refresher.stop()
        return task

    task = asyncio.run(scenario())
    assert task.cancelled()


def test_refresh_failure_logs_operator_hints(caplog):
    refresher = CredentialRefresher(CredentialStore(), scripted_fetch(CredentialRefreshError("blocked")))
    with caplog.at_level("ERROR", logger="chatgpt_proxy.refresh"):
        asyncio.run(refresher.refresh_once())
    messages = [r.getMessage() for r in caplog.records]
    assert any("blocked" in m for m in messages)
    assert "If this error persists, your country may not be supported yet." in messages
    assert "If your country was the issue, please consider using a U.S. VPN." in messages


def test_first_refresh_logs_ready_state(caplog):
    refresher = CredentialRefresher(CredentialStore(), scripted_fetch(CredentialSet("a", "b"), CredentialSet("c", "d")))
    with caplog.at_level("INFO", logger="chatgpt_proxy.refresh"):
        asyncio.run(refresher.refresh_once())
        asyncio.run(refresher.refresh_once())
    messages = [r.getMessage() for r in caplog.records]
    assert "ready to process requests" in messages[0]
    assert "ready to process requests" not in messages[1]
