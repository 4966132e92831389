from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import aiohttp

from medscribe.asr.models import RecognitionResult
from medscribe.internal_core.config import ScribeConfig
from medscribe.internal_core.errors import TransportError

from .connection_manager import ChannelFactory, StatusHandler

logger = logging.getLogger(__name__)


def parse_result_message(raw: str) -> Optional[RecognitionResult]:
    """
    Decode one backend text frame.

    Accepts the flat `{transcript, is_final, result_index, speaker_tag?, error?}` record and the
    nested `channel.alternatives[0].transcript` shape. Returns None for frames carrying no result.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    if data.get("error") and "transcript" not in data:
        return RecognitionResult(error=str(data["error"])[:300], is_final=True)

    transcript: Any = data.get("transcript")
    chan = data.get("channel")
    if transcript is None and isinstance(chan, dict):
        alts = chan.get("alternatives")
        if isinstance(alts, list) and alts and isinstance(alts[0], dict):
            transcript = alts[0].get("transcript")
    if transcript is None:
        return None

    speaker_tag = data.get("speaker_tag")
    return RecognitionResult(
        transcript=str(transcript or ""),
        is_final=bool(data.get("is_final") or data.get("speech_final")),
        result_index=int(data.get("result_index", 0) or 0),
        speaker_tag=int(speaker_tag) if isinstance(speaker_tag, int) else None,
        error=str(data["error"]) if data.get("error") else None,
    )


class WebSocketStreamingChannel:
    def __init__(
        self,
        url: str,
        on_result: Callable[[RecognitionResult], None],
        *,
        api_key: str = "",
        heartbeat: float = 20.0,
    ) -> None:
        self._url = url
        self._on_result = on_result
        self._api_key = api_key
        self._heartbeat = heartbeat
        self._handlers: list[StatusHandler] = []
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._receiver: Optional[asyncio.Task[None]] = None
        self._closing = False

    def on_status(self, handler: StatusHandler) -> None:
        self._handlers.append(handler)

    def _emit(self, status: str, detail: Optional[str] = None) -> None:
        for handler in list(self._handlers):
            handler(status, detail)

    async def connect(self) -> None:
        headers = {"Authorization": f"Token {self._api_key}"} if self._api_key else None
        timeout = aiohttp.ClientTimeout(total=None)
        self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
        try:
            self._ws = await self._session.ws_connect(self._url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            await self._session.close()
            self._session = None
            raise TransportError(f"handshake failed: {exc!r}", code="HANDSHAKE_FAILED") from exc
        self._receiver = asyncio.get_running_loop().create_task(self._receive_loop())

    async def send(self, frame: bytes) -> None:
        if self._ws is None or self._ws.closed:
            raise TransportError("channel is not open", code="NOT_OPEN")
        try:
            await self._ws.send_bytes(frame)
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise TransportError(f"send failed: {exc!r}", code="SEND_FAILED") from exc

    async def close(self) -> None:
        self._closing = True
        receiver = self._receiver
        self._receiver = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if receiver is not None and not receiver.done():
            receiver.cancel()
            try:
                await receiver
            except asyncio.CancelledError:
                pass
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._emit("closed", "client_close")

    async def _receive_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return
        while True:
            msg = await ws.receive()
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                if not self._closing:
                    self._emit("error", "websocket closed by peer")
                return
            if msg.type == aiohttp.WSMsgType.ERROR:
                if not self._closing:
                    self._emit("error", f"websocket error: {ws.exception()!r}")
                return
            if msg.type != aiohttp.WSMsgType.TEXT:
                continue

            result = parse_result_message(msg.data)
            if result is None:
                continue
            try:
                self._on_result(result)
            except Exception:
                logger.exception("streaming_result_handler_failed index=%s", result.result_index)


def websocket_channel_factory(
    cfg: ScribeConfig,
    on_result: Callable[[RecognitionResult], None],
) -> ChannelFactory:
    async def _factory() -> WebSocketStreamingChannel:
        if not cfg.SCRIBE_STREAMING_URL:
            raise TransportError("SCRIBE_STREAMING_URL is not set", code="NOT_CONFIGURED")
        channel = WebSocketStreamingChannel(
            cfg.SCRIBE_STREAMING_URL,
            on_result,
            api_key=cfg.SCRIBE_STREAMING_API_KEY,
        )
        await channel.connect()
        return channel

    return _factory
