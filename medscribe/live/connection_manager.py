from __future__ import annotations

"""
Own the lifecycle of the streaming recognition channel.

Design intent:
- One channel handle per session, created ahead of recording and reused across restarts.
- Tolerate transient transport errors; recreate the channel only after repeated consecutive failures.
- Keep observer notifications honest: nothing is surfaced while an intentional stop is in progress.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

from medscribe.internal_core.contracts import ConnectionState
from medscribe.internal_core.errors import TransportError

logger = logging.getLogger(__name__)

StatusHandler = Callable[[str, Optional[str]], None]

CONNECTED_NOTICE = "connected"


class StreamingChannel(Protocol):
    async def send(self, frame: bytes) -> None: ...

    async def close(self) -> None: ...

    def on_status(self, handler: StatusHandler) -> None: ...


ChannelFactory = Callable[[], Awaitable[StreamingChannel]]


class ConnectionManager:
    def __init__(
        self,
        factory: ChannelFactory,
        *,
        failure_threshold: int = 3,
        on_state_change: Optional[Callable[[ConnectionState, Optional[str]], None]] = None,
        on_notice: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._factory = factory
        self._failure_threshold = max(1, int(failure_threshold))
        self._on_state_change = on_state_change
        self._on_notice = on_notice
        self._channel: Optional[StreamingChannel] = None
        self._connecting = False
        self._recreate_task: Optional[asyncio.Task[None]] = None
        self._connected_notified = False
        self.state: ConnectionState = "closed"
        self.consecutive_failures = 0
        self.recreations = 0
        self.recording = False
        self.stopping_manually = False

    @property
    def channel(self) -> Optional[StreamingChannel]:
        return self._channel

    @property
    def recreating(self) -> bool:
        return self._recreate_task is not None and not self._recreate_task.done()

    async def preconnect(self) -> None:
        if self._channel is not None or self._connecting:
            return
        self._connecting = True
        self._set_state("connecting")
        try:
            channel = await self._factory()
        except TransportError as exc:
            self._connecting = False
            logger.warning("streaming_connect_failed code=%s error=%s", exc.code, exc.message)
            self.report_failure(exc.message)
            return
        self._connecting = False
        channel.on_status(lambda status, detail=None, ch=channel: self._handle_status(ch, status, detail))
        self._channel = channel
        self._handle_open()

    async def send(self, frame: bytes) -> bool:
        channel = self._channel
        if channel is None or self.state != "open":
            # Refused frames keep counting toward recreation while nothing is reconnecting.
            if self.state == "failed" and not self._connecting and not self.recreating:
                self.report_failure("send refused while failed")
            return False
        try:
            await channel.send(frame)
        except TransportError as exc:
            self.report_failure(exc.message)
            return False
        return True

    def begin_manual_stop(self) -> None:
        self.stopping_manually = True

    def end_manual_stop(self) -> None:
        self.stopping_manually = False

    def report_failure(self, detail: Optional[str] = None) -> None:
        self.consecutive_failures += 1
        self._set_state("failed", detail)
        if self.consecutive_failures < self._failure_threshold:
            return
        if self.recreating:
            logger.info("streaming_recreate_skipped reason=in_flight failures=%s", self.consecutive_failures)
            return
        self.consecutive_failures = 0
        self.recreations += 1
        logger.warning("streaming_recreate_started recreations=%s", self.recreations)
        self._recreate_task = asyncio.get_running_loop().create_task(self._recreate())

    async def wait_recreated(self) -> None:
        task = self._recreate_task
        if task is not None:
            await asyncio.shield(task)

    async def teardown(self) -> None:
        task = self._recreate_task
        self._recreate_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_channel()
        self._set_state("closed")

    async def _recreate(self) -> None:
        await self._close_channel()
        await self.preconnect()

    async def _close_channel(self) -> None:
        channel = self._channel
        self._channel = None
        if channel is None:
            return
        try:
            await channel.close()
        except TransportError as exc:
            logger.info("streaming_close_failed error=%s", exc.message)

    def _handle_status(self, channel: StreamingChannel, status: str, detail: Optional[str]) -> None:
        if channel is not self._channel:
            return
        if status == "open":
            self._handle_open()
        elif status == "error":
            self.report_failure(detail)
        elif status == "closed":
            if self.stopping_manually:
                self._set_state("closed", detail)
            else:
                self.report_failure(detail or "channel closed")

    def _handle_open(self) -> None:
        self.consecutive_failures = 0
        self._set_state("open")
        if self.recording or self._connected_notified:
            return
        self._connected_notified = True
        if self._on_notice is not None and not self.stopping_manually:
            self._on_notice(CONNECTED_NOTICE)

    def _set_state(self, state: ConnectionState, detail: Optional[str] = None) -> None:
        changed = state != self.state
        self.state = state
        if not changed or self.stopping_manually:
            return
        logger.debug("streaming_state state=%s detail=%s", state, detail)
        if self._on_state_change is not None:
            self._on_state_change(state, detail)
