"""
Tests for StreamingClient: chunk ordering, empty replies, failures,
timeout and cancellation.
"""

import asyncio

import httpx
import pytest

from conftest import PAUSE, ScriptedBackend
from parley.backends.base import GenerationRequest
from parley.config import GenerationConfig
from parley.conversation import Message, Role
from parley.errors import ErrorKind, SessionError
from parley.streaming import CancellationToken, StreamChunk, StreamingClient


def _request(text: str = "hi") -> GenerationRequest:
    return GenerationRequest(messages=(Message.text(Role.USER, text),), generation=GenerationConfig())


@pytest.mark.asyncio
async def test_stream_yields_chunks_then_final():
    client = StreamingClient(ScriptedBackend(["Here", "is", "", "a", "draft"]))
    chunks = [c async for c in client.stream(_request())]

    assert chunks == [
        StreamChunk("Here"), StreamChunk("is"), StreamChunk("a"), StreamChunk("draft"),
        StreamChunk("", is_final=True),
    ]


@pytest.mark.asyncio
async def test_collect_concatenates_verbatim_and_trims():
    client = StreamingClient(ScriptedBackend(["  Here", "is", "a", "draft \n"]))
    seen = []
    text = await client.collect(_request(), on_chunk=seen.append)

    assert text == "Hereisadraft"
    assert seen[-1].is_final
    assert [c.text for c in seen if not c.is_final] == ["  Here", "is", "a", "draft \n"]


@pytest.mark.asyncio
async def test_empty_reply_is_content_filtered():
    client = StreamingClient(ScriptedBackend(["  ", "\n"]))
    seen = []
    with pytest.raises(SessionError) as exc:
        await client.collect(_request(), on_chunk=seen.append)

    assert exc.value.kind is ErrorKind.CONTENT_FILTERED
    assert not any(c.is_final for c in seen)


@pytest.mark.asyncio
async def test_no_fragments_is_content_filtered():
    client = StreamingClient(ScriptedBackend([]))
    with pytest.raises(SessionError) as exc:
        await client.collect(_request())
    assert exc.value.kind is ErrorKind.CONTENT_FILTERED


@pytest.mark.asyncio
async def test_transport_failure_mid_stream_is_classified():
    req = httpx.Request("POST", "http://fake")
    backend = ScriptedBackend(["partial", httpx.ReadError("socket closed", request=req)])
    client = StreamingClient(backend)

    with pytest.raises(SessionError) as exc:
        await client.collect(_request())
    assert exc.value.kind is ErrorKind.NETWORK_ERROR
    assert isinstance(exc.value.__cause__, httpx.ReadError)


@pytest.mark.asyncio
async def test_session_errors_from_backend_pass_through():
    original = SessionError(ErrorKind.API_KEY_MISSING, "no key")
    client = StreamingClient(ScriptedBackend([original]))
    with pytest.raises(SessionError) as exc:
        await client.collect(_request())
    assert exc.value is original


@pytest.mark.asyncio
async def test_timeout_is_network_error():
    client = StreamingClient(ScriptedBackend(["slow", PAUSE]), timeout=0.05)
    with pytest.raises(SessionError) as exc:
        await client.collect(_request())
    assert exc.value.kind is ErrorKind.NETWORK_ERROR
    assert "timed out" in exc.value.message


@pytest.mark.asyncio
async def test_cancellation_token_abandons_call():
    backend = ScriptedBackend(["partial", PAUSE, "never"])
    client = StreamingClient(backend)
    token = CancellationToken()

    task = asyncio.create_task(client.collect(_request(), token=token))
    await backend.reached.wait()
    token.cancel("user pressed stop")

    with pytest.raises(SessionError) as exc:
        await task
    assert exc.value.kind is ErrorKind.NETWORK_ERROR
    assert "user pressed stop" in exc.value.message
    assert token.cancelled


def test_token_keeps_first_reason():
    token = CancellationToken()
    token.cancel("first")
    token.cancel("second")
    assert token.reason == "first"
