import asyncio
import json

import httpx
import openai
import pytest

from vidchat.chat.relay import RelayState, StreamingRelay
from vidchat.chat.session import ChatSession
from vidchat.utils.errors import ErrorKind, UpstreamError

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def make_relay(client, **kwargs):
    session = ChatSession(client, "gpt-4o-mini", "system prompt")
    return StreamingRelay(session, "question", **kwargs)


async def drain(relay):
    return [json.loads(line) async for line in relay.stream()]


def test_successful_stream_ends_with_full_response(fake_openai_factory):
    completed = []
    relay = make_relay(fake_openai_factory(deltas=["Hello", " world"]), on_complete=completed.append)

    records = asyncio.run(drain(relay))

    assert records == [
        {"chunk": "Hello", "done": False},
        {"chunk": " world", "done": False},
        {"chunk": "", "done": True, "fullResponse": "Hello world"},
    ]
    assert relay.state == RelayState.COMPLETE
    assert completed == ["Hello world"]


def test_async_completion_callback_is_awaited(fake_openai_factory):
    completed = []

    async def on_complete(text):
        completed.append(text)

    relay = make_relay(fake_openai_factory(deltas=["ok"]), on_complete=on_complete)
    asyncio.run(drain(relay))

    assert completed == ["ok"]


def test_mid_stream_failure_ends_with_error_record(fake_openai_factory):
    error = openai.APIConnectionError(request=REQUEST)
    relay = make_relay(fake_openai_factory(deltas=["partial", "never"], fail_after=1, error=error))

    records = asyncio.run(drain(relay))

    assert records[0] == {"chunk": "partial", "done": False}
    assert records[-1]["done"] is True
    assert "error" in records[-1]
    assert all("fullResponse" not in record for record in records)
    assert relay.state == RelayState.FAILED
    assert relay.full_response is None
    assert not relay.session.busy


def test_open_raises_before_anything_is_sent(fake_openai_factory):
    safety = openai.BadRequestError(
        "blocked",
        response=httpx.Response(400, request=REQUEST),
        body={"code": "content_filter"},
    )
    relay = make_relay(fake_openai_factory(error=safety))

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(relay.open())

    assert excinfo.value.kind == ErrorKind.SAFETY_BLOCKED
    assert relay.state == RelayState.FAILED
    assert not relay.session.busy


def test_stream_without_open_reports_open_failure_as_record(fake_openai_factory):
    relay = make_relay(fake_openai_factory(error=openai.APITimeoutError(request=REQUEST)))

    records = asyncio.run(drain(relay))

    assert len(records) == 1
    assert records[0]["done"] is True
    assert records[0]["error"]


def test_relay_cannot_be_streamed_twice(fake_openai_factory):
    relay = make_relay(fake_openai_factory(deltas=["once"]))
    asyncio.run(drain(relay))

    with pytest.raises(RuntimeError):
        asyncio.run(drain(relay))


def test_closing_an_opened_relay_releases_the_session(fake_openai_factory):
    relay = make_relay(fake_openai_factory(deltas=["first", "second"]))

    async def run():
        await relay.open()
        assert relay.session.busy
        await relay.aclose()

    asyncio.run(run())

    assert relay.state == RelayState.FAILED
    assert relay.full_response is None
    assert not relay.session.busy
    assert relay.session.history == []
