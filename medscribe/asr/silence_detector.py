from __future__ import annotations

"""
Infer utterance boundaries from gaps between speech events.

Design intent:
- Poll on a fixed interval instead of trusting backend segmentation.
- Fire once per pause: the speech timestamp is reset as soon as a boundary fires.
- Model the poll loop as a cancellable task that is released on every stop path.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SilenceDetector:
    def __init__(
        self,
        on_silence: Callable[[], None],
        *,
        pause_threshold_sec: float = 1.5,
        poll_interval_sec: float = 0.2,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_silence = on_silence
        self._pause_threshold_sec = max(0.0, float(pause_threshold_sec))
        self._poll_interval_sec = max(0.01, float(poll_interval_sec))
        self._clock = clock
        self._task: Optional[asyncio.Task[None]] = None
        self.recording = False
        self.last_speech_ts = clock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def note_speech(self) -> None:
        self.last_speech_ts = self._clock()

    def check(self) -> bool:
        """Run one poll tick. Returns True when a silence boundary fired."""
        if not self.recording:
            return False
        now = self._clock()
        if (now - self.last_speech_ts) <= self._pause_threshold_sec:
            return False
        self.last_speech_ts = now
        self._on_silence()
        return True

    def start(self) -> None:
        self.recording = True
        self.note_speech()
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        self.recording = False
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval_sec)
            try:
                self.check()
            except Exception:
                logger.exception("silence_callback_failed")
