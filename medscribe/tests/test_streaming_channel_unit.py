import asyncio
import json
from dataclasses import replace

import pytest
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from medscribe.asr.models import RecognitionResult
from medscribe.internal_core.config import load_config
from medscribe.internal_core.errors import TransportError
from medscribe.live.streaming_channel import (
    WebSocketStreamingChannel,
    parse_result_message,
    websocket_channel_factory,
)


def test_parse_flat_result_record() -> None:
    result = parse_result_message(
        json.dumps({"transcript": "any chest pain", "is_final": True, "result_index": 2, "speaker_tag": 1})
    )
    assert result == RecognitionResult(transcript="any chest pain", is_final=True, result_index=2, speaker_tag=1)


def test_parse_nested_alternatives_record() -> None:
    result = parse_result_message(
        json.dumps({"channel": {"alternatives": [{"transcript": "since yesterday"}]}, "is_final": False})
    )
    assert result is not None
    assert result.transcript == "since yesterday"
    assert result.is_final is False


def test_parse_error_frame_and_noise() -> None:
    error = parse_result_message(json.dumps({"error": "quota exceeded"}))
    assert error is not None
    assert error.error == "quota exceeded"

    assert parse_result_message("not json") is None
    assert parse_result_message("[1, 2]") is None
    assert parse_result_message(json.dumps({"type": "Metadata"})) is None


def _backend_app() -> web.Application:
    async def recognize(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for msg in ws:
            if msg.type == WSMsgType.BINARY:
                await ws.send_str(
                    json.dumps({"transcript": f"heard {len(msg.data)} bytes", "is_final": True, "result_index": 0})
                )
        return ws

    async def hangup(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        await ws.close()
        return ws

    app = web.Application()
    app.router.add_get("/recognize", recognize)
    app.router.add_get("/hangup", hangup)
    return app


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def test_channel_streams_frames_and_delivers_results() -> None:
    results: list[RecognitionResult] = []
    statuses: list[str] = []

    async def scenario() -> None:
        server = TestServer(_backend_app())
        await server.start_server()
        try:
            channel = WebSocketStreamingChannel(str(server.make_url("/recognize")), results.append)
            channel.on_status(lambda status, detail=None: statuses.append(status))
            await channel.connect()
            await channel.send(b"\x00" * 320)
            await _wait_for(lambda: bool(results))
            await channel.close()
            with pytest.raises(TransportError) as exc:
                await channel.send(b"\x00" * 320)
            assert exc.value.code == "NOT_OPEN"
        finally:
            await server.close()

    asyncio.run(scenario())
    assert results[0].transcript == "heard 320 bytes"
    assert results[0].is_final is True
    assert statuses == ["closed"]


def test_peer_close_is_reported_as_error() -> None:
    statuses: list[str] = []

    async def scenario() -> None:
        server = TestServer(_backend_app())
        await server.start_server()
        try:
            channel = WebSocketStreamingChannel(str(server.make_url("/hangup")), lambda result: None)
            channel.on_status(lambda status, detail=None: statuses.append(status))
            await channel.connect()
            await _wait_for(lambda: bool(statuses))
            await channel.close()
        finally:
            await server.close()

    asyncio.run(scenario())
    assert statuses == ["error", "closed"]


def test_rejected_handshake_raises_transport_error() -> None:
    async def scenario() -> None:
        server = TestServer(_backend_app())
        await server.start_server()
        try:
            channel = WebSocketStreamingChannel(str(server.make_url("/missing")), lambda result: None)
            with pytest.raises(TransportError) as exc:
                await channel.connect()
            assert exc.value.code == "HANDSHAKE_FAILED"
        finally:
            await server.close()

    asyncio.run(scenario())


def test_factory_requires_streaming_url() -> None:
    factory = websocket_channel_factory(replace(load_config(), SCRIBE_STREAMING_URL=""), lambda result: None)

    with pytest.raises(TransportError) as exc:
        asyncio.run(factory())
    assert exc.value.code == "NOT_CONFIGURED"
