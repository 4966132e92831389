from __future__ import annotations

"""
Record the full session audio locally while the streaming pipeline runs.

Design intent:
- Collect frames into one ordered chunk list on a fixed timeslice.
- Release the microphone on every stop path, whether or not the artifact is consumed.
- Stay queryable after teardown: a torn-down recorder reports "no data" instead of failing.
"""

import asyncio
import logging
from typing import Callable, Optional, Protocol

from medscribe.internal_core.audio_utils import compute_rms, pcm16_to_float32, pcm16_to_wav_bytes
from medscribe.internal_core.errors import DevicePermissionError

logger = logging.getLogger(__name__)

FrameHandler = Callable[[bytes], None]


class MicrophoneSource(Protocol):
    sample_rate: int
    channels: int

    def open(self, on_frame: FrameHandler) -> None: ...

    def close(self) -> None: ...


class SoundDeviceSource:
    """PortAudio microphone via `sounddevice`; frames are handed to the event loop thread."""

    def __init__(
        self,
        *,
        device: Optional[int] = None,
        sample_rate: int = 16000,
        channels: int = 1,
        blocksize: int = 4096,
    ) -> None:
        self.device = device
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.blocksize = int(blocksize)
        self._stream = None

    def open(self, on_frame: FrameHandler) -> None:
        try:
            import sounddevice as sd
        except (ImportError, OSError) as exc:
            raise DevicePermissionError(f"microphone backend unavailable: {exc}") from exc

        loop = asyncio.get_running_loop()

        def _callback(indata, frames, time_info, status) -> None:
            if status:
                logger.debug("mic_status status=%s", status)
            loop.call_soon_threadsafe(on_frame, bytes(indata))

        try:
            self._stream = sd.RawInputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=self.blocksize,
                callback=_callback,
            )
            self._stream.start()
        except sd.PortAudioError as exc:
            self._stream = None
            raise DevicePermissionError(f"microphone unavailable: {exc}") from exc

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


class AudioCapture:
    def __init__(
        self,
        source: MicrophoneSource,
        *,
        timeslice_sec: float = 1.0,
        min_artifact_bytes: int = 100,
        on_frame: Optional[FrameHandler] = None,
    ) -> None:
        self._source = source
        self._frame_listener = on_frame
        self._timeslice_sec = max(0.01, float(timeslice_sec))
        self._min_artifact_bytes = max(0, int(min_artifact_bytes))
        self._pending = bytearray()
        self._chunks: list[bytes] = []
        self._artifact: Optional[bytes] = None
        self._collector: Optional[asyncio.Task[None]] = None
        self._source_open = False
        self._alive = True
        self.recording = False
        self.last_level = 0.0

    @property
    def chunks(self) -> list[bytes]:
        return list(self._chunks)

    @property
    def tracks_released(self) -> bool:
        return not self._source_open

    async def start(self) -> None:
        if self.recording:
            return
        self._pending = bytearray()
        self._chunks = []
        self._artifact = None
        self._source.open(self._on_frame)
        self._source_open = True
        self.recording = True
        self._collector = asyncio.get_running_loop().create_task(self._collect_loop())

    def _on_frame(self, frame: bytes) -> None:
        if not self.recording:
            return
        self._pending.extend(frame)
        if self._frame_listener is not None:
            self._frame_listener(frame)

    def collect(self) -> Optional[bytes]:
        """Move buffered frames into the ordered chunk list as one chunk."""
        if not self._pending:
            return None
        chunk = bytes(self._pending)
        self._pending = bytearray()
        self._chunks.append(chunk)
        self.last_level = compute_rms(pcm16_to_float32(chunk))
        return chunk

    async def _collect_loop(self) -> None:
        while True:
            await asyncio.sleep(self._timeslice_sec)
            self.collect()

    async def stop(self) -> Optional[bytes]:
        if not self.recording:
            return self.get_artifact()
        self.recording = False
        collector = self._collector
        self._collector = None
        try:
            if collector is not None and not collector.done():
                collector.cancel()
                try:
                    await collector
                except asyncio.CancelledError:
                    pass
            self.collect()
            self._artifact = self._assemble()
        finally:
            self._release_tracks()
        return self.get_artifact()

    def get_artifact(self) -> Optional[bytes]:
        if not self._alive:
            return None
        return self._artifact

    def teardown(self) -> None:
        self._alive = False
        self.recording = False
        collector = self._collector
        self._collector = None
        if collector is not None and not collector.done():
            collector.cancel()
        self._release_tracks()
        self._pending = bytearray()
        self._chunks = []
        self._artifact = None

    def _assemble(self) -> Optional[bytes]:
        pcm = b"".join(self._chunks)
        if len(pcm) < self._min_artifact_bytes:
            logger.warning("recording_too_small size_bytes=%s min_bytes=%s", len(pcm), self._min_artifact_bytes)
            return None
        return pcm16_to_wav_bytes(pcm, sample_rate=self._source.sample_rate, channels=self._source.channels)

    def _release_tracks(self) -> None:
        if not self._source_open:
            return
        self._source_open = False
        self._source.close()
