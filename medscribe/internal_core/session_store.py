from __future__ import annotations

import logging
import time
import uuid
from threading import RLock
from typing import Any, Dict, List, Optional

from medscribe.asr.models import DiarizationResult, Utterance

from .contracts import (
    AuditEvent,
    ConnectionState,
    PatientIdentity,
    SessionState,
    TranscriptSession,
)

logger = logging.getLogger(__name__)


class InMemorySessionStore:
    def __init__(self, ttl_seconds: int):
        self._ttl_seconds = ttl_seconds
        self._lock = RLock()
        self._sessions: Dict[str, Dict[str, Any]] = {}

    def _blank(self, session_id: str, now: float) -> Dict[str, Any]:
        return {
            "session_id": session_id,
            "created_at": now,
            "updated_at": now,
            "expires_at": now + self._ttl_seconds,
            "state": "idle",
            "transcript": TranscriptSession(),
            "batch_result": None,
            "notices": [],
            "audit_events": [],
            "error": None,
        }

    def create_session(self) -> str:
        session_id = uuid.uuid4().hex
        now = time.time()
        with self._lock:
            self._sessions[session_id] = self._blank(session_id, now)
        return session_id

    def _touch(self, session_id: str) -> None:
        now = time.time()
        session = self._sessions[session_id]
        session["updated_at"] = now
        session["expires_at"] = now + self._ttl_seconds

    def _require(self, session_id: str) -> Dict[str, Any]:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session_id: {session_id}")
        return session

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def transcript(self, session_id: str) -> TranscriptSession:
        """Live handle to the session transcript; callers mutate it in place."""
        with self._lock:
            return self._require(session_id)["transcript"]

    def set_state(self, session_id: str, state: SessionState) -> None:
        with self._lock:
            self._require(session_id)["state"] = state
            self._touch(session_id)

    def set_error(self, session_id: str, message: Optional[str]) -> None:
        with self._lock:
            self._require(session_id)["error"] = message
            self._touch(session_id)

    def set_connection_state(self, session_id: str, state: ConnectionState) -> None:
        with self._lock:
            self._require(session_id)["transcript"].connection_state = state
            self._touch(session_id)

    def set_patient(self, session_id: str, patient: Optional[PatientIdentity]) -> None:
        with self._lock:
            self._require(session_id)["transcript"].patient = patient
            self._touch(session_id)

    def set_utterances(self, session_id: str, utterances: List[Utterance]) -> None:
        with self._lock:
            self._require(session_id)["transcript"].committed_utterances = list(utterances)
            self._touch(session_id)

    def set_batch_result(self, session_id: str, result: Optional[DiarizationResult]) -> None:
        with self._lock:
            self._require(session_id)["batch_result"] = result
            self._touch(session_id)

    def add_notice(self, session_id: str, notice: str) -> None:
        with self._lock:
            self._require(session_id)["notices"].append(notice)
            self._touch(session_id)

    def append_audit_event(self, session_id: str, event: AuditEvent) -> None:
        with self._lock:
            self._require(session_id)["audit_events"].append(event)
            self._touch(session_id)

    def get_session(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            session = self._require(session_id)
            return {
                "session_id": session["session_id"],
                "created_at": session["created_at"],
                "updated_at": session["updated_at"],
                "expires_at": session["expires_at"],
                "state": session["state"],
                "transcript": session["transcript"].model_copy(deep=True),
                "batch_result": session["batch_result"],
                "notices": list(session["notices"]),
                "audit_events": list(session["audit_events"]),
                "error": session["error"],
            }

    def reset_session(self, session_id: str) -> None:
        with self._lock:
            session = self._require(session_id)
            fresh = self._blank(session_id, time.time())
            fresh["created_at"] = session["created_at"]
            fresh["audit_events"] = session["audit_events"]
            self._sessions[session_id] = fresh

    def destroy_session(self, session_id: str, reason: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        logger.info(
            "session_destroyed session_id=%s reason=%s audit_events=%s",
            session_id,
            reason,
            len(session["audit_events"]),
        )
        return True

    def cleanup_expired_sessions(self) -> int:
        now = time.time()
        expired = []
        with self._lock:
            for session_id, session in self._sessions.items():
                if session["expires_at"] <= now:
                    expired.append(session_id)
        for session_id in expired:
            self.destroy_session(session_id, reason="ttl_expired")
        return len(expired)
