from __future__ import annotations

from .base import DiarizationProvider, ProviderResponse
from .controller import BatchDiarizer, build_provider, diarize_recording, plan_segments, slice_segment
from .http_provider import HttpDiarizationProvider, parse_diarization_payload
from .mock import MockDiarizationProvider

__all__ = [
    "BatchDiarizer",
    "DiarizationProvider",
    "HttpDiarizationProvider",
    "MockDiarizationProvider",
    "build_provider",
    "ProviderResponse",
    "diarize_recording",
    "parse_diarization_payload",
    "plan_segments",
    "slice_segment",
]
