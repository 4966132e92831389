import asyncio
from dataclasses import replace

from medscribe.internal_core.config import load_config
from medscribe.internal_core.diarization import BatchDiarizer, MockDiarizationProvider
from medscribe.live.cli import record_consultation
from medscribe.live.recording_session import RecordingSession

FRAME = b"\x01\x00" * 200


class TalkingSource:
    sample_rate = 16000
    channels = 1

    def __init__(self) -> None:
        self.closed = 0

    def open(self, on_frame) -> None:
        asyncio.get_running_loop().call_soon(on_frame, FRAME)

    def close(self) -> None:
        self.closed += 1


class SilentChannel:
    async def send(self, frame: bytes) -> None:
        return None

    async def close(self) -> None:
        return None

    def on_status(self, handler) -> None:
        return None


async def _open_channel() -> SilentChannel:
    return SilentChannel()


def test_record_consultation_returns_batch_display_text() -> None:
    cfg = replace(load_config(), SCRIBE_MIN_RECORDING_BYTES=100, SCRIBE_BATCH_DIARIZATION_ENABLED=True)
    source = TalkingSource()
    lines: list[str] = []

    def _factory(cfg, **callbacks) -> RecordingSession:
        return RecordingSession(
            cfg,
            source=source,
            channel_factory=_open_channel,
            diarizer=BatchDiarizer(MockDiarizationProvider(), cfg),
            **callbacks,
        )

    text = asyncio.run(record_consultation(cfg, 0.05, session_factory=_factory, on_line=lines.append))

    assert text == "DOCTOR: (mock) question1?\nPATIENT: answer1."
    assert lines == ["[notice] connected"]
    assert source.closed == 1
