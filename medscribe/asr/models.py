from __future__ import annotations

"""
Typed transcript data contracts shared by the live and batch pipelines.

Design intent:
- Enforce timestamp-valid utterance/word payloads at every boundary.
- Keep recognition results and diarization output explicit for downstream consumers.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

SegmentStatus = Literal["pending", "processing", "completed", "error"]


class Utterance(BaseModel):
    model_config = ConfigDict(frozen=True)

    speaker: str
    start: float = Field(default=0.0, ge=0.0)
    end: float = Field(default=0.0, ge=0.0)
    text: str
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_window(self) -> "Utterance":
        if self.end < self.start:
            raise ValueError("Utterance.end must be >= Utterance.start")
        return self

    def to_downstream(self) -> dict[str, object]:
        return {
            "speaker": self.speaker,
            "start": self.start,
            "end": self.end,
            "transcript": self.text,
            "confidence": self.confidence,
        }


class DiarizedWord(BaseModel):
    word: str
    speaker_tag: int = 0
    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_window(self) -> "DiarizedWord":
        if self.end < self.start:
            raise ValueError("DiarizedWord.end must be >= DiarizedWord.start")
        return self

    def shifted(self, offset_sec: float) -> "DiarizedWord":
        return self.model_copy(update={"start": self.start + offset_sec, "end": self.end + offset_sec})


class RecognitionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transcript: str = ""
    is_final: bool = False
    result_index: int = 0
    speaker_tag: int | None = None
    error: str | None = None


class AudioSegment(BaseModel):
    index: int = Field(ge=0)
    byte_start: int = Field(ge=0)
    byte_end: int = Field(ge=0)
    size_bytes: int = Field(ge=0)
    estimated_duration_sec: float = Field(default=0.0, ge=0.0)
    status: SegmentStatus = "pending"
    transcript: str | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _validate_range(self) -> "AudioSegment":
        if self.byte_end < self.byte_start:
            raise ValueError("AudioSegment.byte_end must be >= AudioSegment.byte_start")
        return self


class DiarizationResult(BaseModel):
    transcript: str = ""
    words: list[DiarizedWord] = Field(default_factory=list)
    utterances: list[Utterance] = Field(default_factory=list)
    segments: list[AudioSegment] = Field(default_factory=list)
    speaker_count: int = 0
    chunked: bool = False
