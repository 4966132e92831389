from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Optional

from medscribe.asr.models import AudioSegment, DiarizationResult, DiarizedWord
from medscribe.asr.role_mapping import build_default_role_map, role_label_for
from medscribe.asr.utterance_grouping import group_words_into_utterances

from .. import audit
from ..config import ScribeConfig
from ..contracts import AuditEventType
from ..errors import DiarizationServiceError, NoAudioError, ScribeError
from ..session_store import InMemorySessionStore
from .base import DiarizationProvider
from .http_provider import HttpDiarizationProvider
from .mock import MockDiarizationProvider

logger = logging.getLogger(__name__)


def plan_segments(
    size_bytes: int,
    *,
    ceiling: int = 1_000_000,
    safety_ratio: float = 0.9,
    max_segment_sec: float = 30.0,
) -> list[AudioSegment]:
    if size_bytes <= 0:
        raise NoAudioError()
    if size_bytes <= ceiling:
        return [AudioSegment(index=0, byte_start=0, byte_end=size_bytes, size_bytes=size_bytes)]

    segment_bytes = max(1, int(ceiling * safety_ratio))
    count = -(-size_bytes // segment_bytes)
    segments: list[AudioSegment] = []
    for idx in range(count):
        start = idx * segment_bytes
        end = min(start + segment_bytes, size_bytes)
        segments.append(
            AudioSegment(
                index=idx,
                byte_start=start,
                byte_end=end,
                size_bytes=end - start,
                estimated_duration_sec=max_segment_sec * ((end - start) / ceiling),
            )
        )
    return segments


def slice_segment(audio: bytes, segment: AudioSegment) -> bytes:
    return audio[segment.byte_start : segment.byte_end]


def _log(
    store: Optional[InMemorySessionStore],
    session_id: Optional[str],
    event_type: AuditEventType,
    code: str,
    *,
    duration_ms: Optional[int] = None,
    **fields: Any,
) -> None:
    if store is None or not session_id:
        return
    audit.log_event(store, session_id, event_type, code, duration_ms=duration_ms, **fields)


async def diarize_recording(
    provider: DiarizationProvider,
    cfg: ScribeConfig,
    audio: Optional[bytes],
    *,
    store: Optional[InMemorySessionStore] = None,
    session_id: Optional[str] = None,
    on_segment: Optional[Callable[[AudioSegment], None]] = None,
    role_overrides: Optional[Mapping[int, str]] = None,
) -> DiarizationResult:
    if not audio:
        raise NoAudioError()

    segments = plan_segments(
        len(audio),
        ceiling=cfg.SCRIBE_MAX_AUDIO_BYTES,
        safety_ratio=cfg.SCRIBE_SEGMENT_SAFETY_RATIO,
        max_segment_sec=cfg.SCRIBE_MAX_SEGMENT_SECONDS,
    )
    chunked = len(audio) > cfg.SCRIBE_MAX_AUDIO_BYTES
    _log(
        store,
        session_id,
        "DIARIZATION_STARTED",
        "DIARIZE_START",
        provider=provider.name(),
        size_bytes=len(audio),
        segments=len(segments),
        chunked=chunked,
    )

    def _emit(segment: AudioSegment) -> None:
        if on_segment is not None:
            on_segment(segment.model_copy())

    for segment in segments:
        _emit(segment)

    words: list[DiarizedWord] = []
    speaker_count = 0
    completed = 0
    for segment in segments:
        start_monotonic = time.monotonic()
        segment.status = "processing"
        _emit(segment)
        try:
            response = await provider.diarize_bytes(
                slice_segment(audio, segment),
                language=cfg.SCRIBE_LANGUAGE,
                speaker_count=cfg.SCRIBE_SPEAKER_COUNT,
            )
        except ScribeError as exc:
            segment.status = "error"
            segment.error = exc.message
            _emit(segment)
            logger.warning(
                "diarization_segment_failed index=%s code=%s error=%s",
                segment.index,
                exc.code,
                exc.message,
            )
            _log(
                store,
                session_id,
                "DIARIZATION_FAILED",
                exc.code,
                duration_ms=audit.elapsed_ms(start_monotonic),
                segment_index=segment.index,
                provider=provider.name(),
            )
            if not chunked:
                raise
            continue

        offset = segment.index * cfg.SCRIBE_MAX_SEGMENT_SECONDS
        words.extend(word.shifted(offset) if offset else word for word in response.words)
        speaker_count = max(speaker_count, int(response.speaker_count))
        segment.transcript = response.transcript
        segment.status = "completed"
        completed += 1
        _emit(segment)
        _log(
            store,
            session_id,
            "DIARIZATION_SEGMENT_DONE",
            "DIARIZE_SEGMENT",
            duration_ms=audit.elapsed_ms(start_monotonic),
            segment_index=segment.index,
            words=len(response.words),
        )

    if completed == 0:
        raise DiarizationServiceError("All diarization segments failed", code="ALL_SEGMENTS_FAILED")

    transcript = " ".join(item.transcript for item in segments if item.transcript)
    role_map = build_default_role_map(words, overrides=role_overrides)
    utterances, grouping_debug = group_words_into_utterances(
        words,
        gap_sec=cfg.SCRIBE_UTTERANCE_GAP_SEC,
        speaker_label=lambda tag: role_label_for(role_map, tag),
    )
    _log(
        store,
        session_id,
        "DIARIZATION_DONE",
        "DIARIZE_DONE",
        segments=len(segments),
        completed=completed,
        utterances=grouping_debug["utterances"],
    )
    return DiarizationResult(
        transcript=transcript,
        words=sorted(words, key=lambda item: (item.start, item.end)),
        utterances=utterances,
        segments=segments,
        speaker_count=speaker_count,
        chunked=chunked,
    )


class BatchDiarizer:
    def __init__(
        self,
        provider: DiarizationProvider,
        cfg: ScribeConfig,
        *,
        store: Optional[InMemorySessionStore] = None,
    ) -> None:
        self.provider = provider
        self.cfg = cfg
        self.store = store

    async def diarize(
        self,
        audio: Optional[bytes],
        *,
        session_id: Optional[str] = None,
        on_segment: Optional[Callable[[AudioSegment], None]] = None,
        role_overrides: Optional[Mapping[int, str]] = None,
    ) -> DiarizationResult:
        return await diarize_recording(
            self.provider,
            self.cfg,
            audio,
            store=self.store,
            session_id=session_id,
            on_segment=on_segment,
            role_overrides=role_overrides,
        )


def build_provider(cfg: ScribeConfig) -> DiarizationProvider:
    name = cfg.SCRIBE_DIARIZATION_PROVIDER.strip().lower()
    if name == "http":
        return HttpDiarizationProvider(
            cfg.SCRIBE_DIARIZATION_URL,
            cfg.SCRIBE_DIARIZATION_API_KEY,
            timeout_sec=cfg.SCRIBE_DIARIZATION_TIMEOUT_SEC,
        )
    if name == "mock":
        return MockDiarizationProvider()
    raise ValueError(f"Unknown diarization provider: {cfg.SCRIBE_DIARIZATION_PROVIDER}")
