import asyncio

import pytest

from chatgpt_proxy.config import ProxySettings
from chatgpt_proxy.credentials import CredentialSet
from chatgpt_proxy.schemas import ChatMessage
from chatgpt_proxy.sse import TranslationError
from chatgpt_proxy.upstream import (
    UpstreamError,
    build_conversation_payload,
    build_headers,
    flatten_content,
    message_texts,
    upstream_request,
)

from fakes import FakeClient, FakeResponse


def test_flatten_content():
    assert flatten_content("plain") == "plain"
    assert flatten_content(None) == ""
    assert flatten_content([{"type": "text", "text": "a"}, "b", {"type": "image_url"}]) == "a b"
    assert flatten_content({"k": 1}) == '{"k":1}'


def test_build_conversation_payload_maps_messages():
    settings = ProxySettings()
    messages = [
        ChatMessage(role="system", content="Be brief."),
        {"role": "user", "content": "Hello"},
    ]
    payload = build_conversation_payload(messages, settings)

    assert payload["action"] == "next"
    assert payload["model"] == "text-davinci-002-render-sha"
    assert payload["timezone_offset_min"] == -180
    assert payload["history_and_training_disabled"] is True
    assert payload["conversation_mode"] == {"kind": "primary_assistant"}
    assert payload["suggestions"] == []
    assert [m["author"] for m in payload["messages"]] == [{"role": "system"}, {"role": "user"}]
    assert [m["content"] for m in payload["messages"]] == [
        {"content_type": "text", "parts": ["Be brief."]},
        {"content_type": "text", "parts": ["Hello"]},
    ]


def test_correlation_ids_are_fresh_per_request():
    settings = ProxySettings()
    a = build_conversation_payload([{"role": "user", "content": "x"}], settings)
    b = build_conversation_payload([{"role": "user", "content": "x"}], settings)
    assert a["parent_message_id"] != b["parent_message_id"]
    assert a["websocket_request_id"] != b["websocket_request_id"]
    assert a["messages"][0]["id"] != b["messages"][0]["id"]


def test_message_texts():
    assert message_texts([{"role": "user", "content": "Echo"}, ChatMessage(role="user", content=["a", "b"])]) == [
        "Echo",
        "a b",
    ]


def test_build_headers_carries_current_credentials():
    settings = ProxySettings(base_url="https://chat.example")
    headers = build_headers(CredentialSet("dev", "tok"), settings)
    assert headers["oai-device-id"] == "dev"
    assert headers["openai-sentinel-chat-requirements-token"] == "tok"
    assert headers["origin"] == "https://chat.example"


def test_build_headers_without_credentials_sends_empty_values():
    headers = build_headers(None, ProxySettings())
    assert headers["oai-device-id"] == ""
    assert headers["openai-sentinel-chat-requirements-token"] == ""


def test_upstream_request_yields_response():
    response = FakeResponse(chunks=[b"data: [DONE]\n"])
    client = FakeClient(response)

    async def scenario():
        async with upstream_request(client, "https://u/conv", {"a": 1}, {"h": "v"}) as r:
            assert r is response
            assert not response.released
        return response.released

    assert asyncio.run(scenario()) is True
    assert client.calls == [{"url": "https://u/conv", "json": {"a": 1}, "headers": {"h": "v"}}]


def test_upstream_request_error_status_is_translation_error():
    client = FakeClient(FakeResponse(status=403, body='{"detail": "Unusual activity"}'))

    async def scenario():
        async with upstream_request(client, "https://u/conv", {}, {}):
            pass

    with pytest.raises(UpstreamError) as info:
        asyncio.run(scenario())
    assert info.value.status == 403
    assert isinstance(info.value, TranslationError)


def test_build_headers_blanks_incomplete_credentials():
    headers = build_headers(CredentialSet("dev", ""), ProxySettings())
    assert headers["oai-device-id"] == ""
    assert headers["openai-sentinel-chat-requirements-token"] == ""
