from __future__ import annotations

import os
from dataclasses import dataclass


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass(frozen=True)
class ScribeConfig:
    SCRIBE_LANGUAGE: str
    SCRIBE_PAUSE_THRESHOLD_MS: int
    SCRIBE_SILENCE_POLL_MS: int
    SCRIBE_SPEAKER_COUNT: int
    SCRIBE_MAX_AUDIO_BYTES: int
    SCRIBE_SEGMENT_SAFETY_RATIO: float
    SCRIBE_MAX_SEGMENT_SECONDS: float
    SCRIBE_MIN_RECORDING_BYTES: int
    SCRIBE_RECONNECT_FAILURE_THRESHOLD: int
    SCRIBE_PREVIEW_DEBOUNCE_MS: int
    SCRIBE_PREVIEW_SUFFIX: str
    SCRIBE_PATIENT_FALLBACK_AFTER_ATTEMPTS: int
    SCRIBE_PATIENT_SIGNAL_SECONDS: float
    SCRIBE_CAPTURE_TIMESLICE_MS: int
    SCRIBE_CAPTURE_SAMPLE_RATE: int
    SCRIBE_CAPTURE_CHANNELS: int
    SCRIBE_STREAMING_URL: str
    SCRIBE_STREAMING_API_KEY: str
    SCRIBE_DIARIZATION_PROVIDER: str
    SCRIBE_DIARIZATION_URL: str
    SCRIBE_DIARIZATION_API_KEY: str
    SCRIBE_DIARIZATION_TIMEOUT_SEC: float
    SCRIBE_BATCH_DIARIZATION_ENABLED: bool
    SCRIBE_UTTERANCE_GAP_SEC: float
    SCRIBE_SESSION_TTL_SECONDS: int
    SCRIBE_LOG_LEVEL: str

    @property
    def pause_threshold_sec(self) -> float:
        return self.SCRIBE_PAUSE_THRESHOLD_MS / 1000.0

    @property
    def segment_target_bytes(self) -> int:
        return max(1, int(self.SCRIBE_MAX_AUDIO_BYTES * self.SCRIBE_SEGMENT_SAFETY_RATIO))


def load_config() -> ScribeConfig:
    return ScribeConfig(
        SCRIBE_LANGUAGE=_getenv_str("SCRIBE_LANGUAGE", "en-US"),
        SCRIBE_PAUSE_THRESHOLD_MS=_getenv_int("SCRIBE_PAUSE_THRESHOLD_MS", 1500),
        SCRIBE_SILENCE_POLL_MS=_getenv_int("SCRIBE_SILENCE_POLL_MS", 200),
        SCRIBE_SPEAKER_COUNT=_getenv_int("SCRIBE_SPEAKER_COUNT", 2),
        SCRIBE_MAX_AUDIO_BYTES=_getenv_int("SCRIBE_MAX_AUDIO_BYTES", 1_000_000),
        SCRIBE_SEGMENT_SAFETY_RATIO=_getenv_float("SCRIBE_SEGMENT_SAFETY_RATIO", 0.9),
        SCRIBE_MAX_SEGMENT_SECONDS=_getenv_float("SCRIBE_MAX_SEGMENT_SECONDS", 30.0),
        SCRIBE_MIN_RECORDING_BYTES=_getenv_int("SCRIBE_MIN_RECORDING_BYTES", 100),
        SCRIBE_RECONNECT_FAILURE_THRESHOLD=_getenv_int("SCRIBE_RECONNECT_FAILURE_THRESHOLD", 3),
        SCRIBE_PREVIEW_DEBOUNCE_MS=_getenv_int("SCRIBE_PREVIEW_DEBOUNCE_MS", 50),
        SCRIBE_PREVIEW_SUFFIX=_getenv_str("SCRIBE_PREVIEW_SUFFIX", "..."),
        SCRIBE_PATIENT_FALLBACK_AFTER_ATTEMPTS=_getenv_int("SCRIBE_PATIENT_FALLBACK_AFTER_ATTEMPTS", 3),
        SCRIBE_PATIENT_SIGNAL_SECONDS=_getenv_float("SCRIBE_PATIENT_SIGNAL_SECONDS", 3.0),
        SCRIBE_CAPTURE_TIMESLICE_MS=_getenv_int("SCRIBE_CAPTURE_TIMESLICE_MS", 1000),
        SCRIBE_CAPTURE_SAMPLE_RATE=_getenv_int("SCRIBE_CAPTURE_SAMPLE_RATE", 16000),
        SCRIBE_CAPTURE_CHANNELS=_getenv_int("SCRIBE_CAPTURE_CHANNELS", 1),
        SCRIBE_STREAMING_URL=_getenv_str("SCRIBE_STREAMING_URL", ""),
        SCRIBE_STREAMING_API_KEY=_getenv_str("SCRIBE_STREAMING_API_KEY", ""),
        SCRIBE_DIARIZATION_PROVIDER=_getenv_str("SCRIBE_DIARIZATION_PROVIDER", "mock"),
        SCRIBE_DIARIZATION_URL=_getenv_str("SCRIBE_DIARIZATION_URL", ""),
        SCRIBE_DIARIZATION_API_KEY=_getenv_str("SCRIBE_DIARIZATION_API_KEY", ""),
        SCRIBE_DIARIZATION_TIMEOUT_SEC=_getenv_float("SCRIBE_DIARIZATION_TIMEOUT_SEC", 90.0),
        SCRIBE_BATCH_DIARIZATION_ENABLED=_getenv_bool("SCRIBE_BATCH_DIARIZATION_ENABLED", True),
        SCRIBE_UTTERANCE_GAP_SEC=_getenv_float("SCRIBE_UTTERANCE_GAP_SEC", 1.0),
        SCRIBE_SESSION_TTL_SECONDS=_getenv_int("SCRIBE_SESSION_TTL_SECONDS", 14400),
        SCRIBE_LOG_LEVEL=_getenv_str("SCRIBE_LOG_LEVEL", "INFO"),
    )
