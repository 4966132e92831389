from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from medscribe.asr.models import Utterance

SessionState = Literal["idle", "recording", "stopping", "diarizing", "completed", "failed"]

ConnectionState = Literal["closed", "connecting", "open", "failed"]

AuditEventType = Literal[
    "SESSION_CREATED",
    "SESSION_RESET",
    "RESULT_DISCARDED",
    "PATIENT_IDENTIFIED",
    "CONNECTION_CHANGED",
    "DIARIZATION_STARTED",
    "DIARIZATION_SEGMENT_DONE",
    "DIARIZATION_FAILED",
    "DIARIZATION_DONE",
    "UTTERANCES_RELABELLED",
]


class PatientIdentity(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1)
    identified_at: float


class TranscriptSession(BaseModel):
    model_config = ConfigDict(extra="forbid")

    raw_live_text: str = ""
    committed_utterances: List[Utterance] = Field(default_factory=list)
    # Transient; excluded from every serialized form.
    pending_preview: Optional[str] = Field(default=None, exclude=True)
    patient: Optional[PatientIdentity] = None
    connection_state: ConnectionState = "closed"


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    session_id: str
    type: AuditEventType
    code: str
    detail: str
    duration_ms: Optional[int] = None
