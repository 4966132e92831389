from __future__ import annotations

"""
HTTP/WebSocket surface for the medscribe transcript pipeline.

Design intent:
- Keep API orchestration thin and typed.
- Delegate transcript construction to asr modules and batch work to internal_core.diarization.
- Map the error taxonomy onto predictable status codes.
"""

import base64
import binascii
import json
import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from medscribe.asr.formatting import format_diarized_transcript, format_for_display
from medscribe.asr.models import AudioSegment, DiarizationResult, RecognitionResult
from medscribe.asr.patient_identifier import PatientIdentifier
from medscribe.asr.role_mapping import map_speaker_roles_in_text, relabel_utterances
from medscribe.asr.transcript_assembler import AssemblerUpdate, TranscriptAssembler
from medscribe.internal_core import InMemorySessionStore, ScribeConfig, audit, load_config
from medscribe.internal_core.contracts import PatientIdentity
from medscribe.internal_core.diarization import BatchDiarizer, DiarizationProvider, build_provider
from medscribe.internal_core.errors import DiarizationServiceError, NoAudioError
from medscribe.live.recording_session import BATCH_UNAVAILABLE_NOTICE


class SessionCreateResponse(BaseModel):
    session_id: str


class TranscriptStateResponse(BaseModel):
    session_id: str
    kind: str = "snapshot"
    committed_text: str = ""
    preview: Optional[str] = None
    patient: Optional[PatientIdentity] = None
    utterances: list[dict[str, Any]] = Field(default_factory=list)


class SilenceResponse(BaseModel):
    session_id: str
    inserted: bool
    committed_text: str


class TranscriptResponse(BaseModel):
    session_id: str
    state: str
    committed_text: str
    utterances: list[dict[str, Any]] = Field(default_factory=list)
    patient: Optional[PatientIdentity] = None
    connection_state: str
    notices: list[str] = Field(default_factory=list)
    batch_transcript: Optional[str] = None
    display_text: str = ""


class DiarizeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    audio_b64: str = ""
    session_id: Optional[str] = Field(default=None, max_length=128)
    role_overrides: dict[int, str] = Field(default_factory=dict)


class RelabelRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    mapping: dict[str, str] = Field(default_factory=dict)


class RelabelResponse(BaseModel):
    session_id: str
    relabelled: int
    utterances: list[dict[str, Any]] = Field(default_factory=list)
    display_text: str = ""


class DiarizeResponse(BaseModel):
    transcript: str
    speaker_count: int
    chunked: bool
    segments: list[AudioSegment] = Field(default_factory=list)
    utterances: list[dict[str, Any]] = Field(default_factory=list)
    status_trail: list[dict[str, Any]] = Field(default_factory=list)
    formatted_transcript: str = ""


app = FastAPI(title="medscribe live transcript service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> ScribeConfig:
    existing = getattr(app.state, "scribe_config", None)
    if isinstance(existing, ScribeConfig):
        return existing
    created = load_config()
    logging.getLogger("medscribe").setLevel(created.SCRIBE_LOG_LEVEL.upper())
    setattr(app.state, "scribe_config", created)
    return created


def _get_session_store() -> InMemorySessionStore:
    existing = getattr(app.state, "session_store", None)
    if isinstance(existing, InMemorySessionStore):
        return existing
    created = InMemorySessionStore(ttl_seconds=_get_config().SCRIBE_SESSION_TTL_SECONDS)
    setattr(app.state, "session_store", created)
    return created


def _get_runtime_store() -> dict[str, dict[str, Any]]:
    existing = getattr(app.state, "session_runtimes", None)
    if isinstance(existing, dict):
        return existing
    created: dict[str, dict[str, Any]] = {}
    setattr(app.state, "session_runtimes", created)
    return created


def _get_diarization_provider() -> DiarizationProvider:
    injected = getattr(app.state, "diarization_provider", None)
    if isinstance(injected, DiarizationProvider):
        return injected
    return build_provider(_get_config())


def _require_session(session_id: str) -> None:
    store = _get_session_store()
    store.cleanup_expired_sessions()
    if not store.has_session(session_id):
        _get_runtime_store().pop(session_id, None)
        raise HTTPException(status_code=404, detail=f"Unknown session_id: {session_id}")


def _runtime(session_id: str) -> dict[str, Any]:
    runtimes = _get_runtime_store()
    runtime = runtimes.get(session_id)
    if runtime is not None:
        return runtime

    cfg = _get_config()
    store = _get_session_store()
    runtime = {
        "assembler": TranscriptAssembler(
            store.transcript(session_id),
            preview_suffix=cfg.SCRIBE_PREVIEW_SUFFIX,
            debounce_sec=cfg.SCRIBE_PREVIEW_DEBOUNCE_MS / 1000.0,
        ),
        "identifier": PatientIdentifier(
            fallback_after=cfg.SCRIBE_PATIENT_FALLBACK_AFTER_ATTEMPTS,
            signal_sec=cfg.SCRIBE_PATIENT_SIGNAL_SECONDS,
        ),
    }
    runtimes[session_id] = runtime
    return runtime


def _reset_session(session_id: str) -> None:
    _get_session_store().reset_session(session_id)
    _get_runtime_store().pop(session_id, None)
    audit.log_event(_get_session_store(), session_id, "SESSION_RESET", "RESET", "transcript cleared")


def _ingest_result(session_id: str, result: RecognitionResult) -> TranscriptStateResponse:
    store = _get_session_store()
    runtime = _runtime(session_id)
    assembler: TranscriptAssembler = runtime["assembler"]
    identifier: PatientIdentifier = runtime["identifier"]

    update: AssemblerUpdate = assembler.ingest(result)
    if update.kind == "error":
        audit.log_event(store, session_id, "RESULT_DISCARDED", "RESULT_ERROR", result_index=result.result_index)
    if update.kind == "final" and update.utterance is not None and identifier.is_new_session:
        patient = identifier.scan(update.utterance.text)
        if patient is not None:
            store.set_patient(session_id, patient)
            audit.log_event(
                store,
                session_id,
                "PATIENT_IDENTIFIED",
                "PATIENT_FOUND",
                attempts=identifier.attempts,
            )

    session = store.transcript(session_id)
    return TranscriptStateResponse(
        session_id=session_id,
        kind=update.kind,
        committed_text=update.committed_text,
        preview=update.preview,
        patient=session.patient,
        utterances=[item.to_downstream() for item in session.committed_utterances],
    )


def _insert_silence(session_id: str) -> SilenceResponse:
    assembler: TranscriptAssembler = _runtime(session_id)["assembler"]
    inserted = assembler.insert_boundary()
    return SilenceResponse(session_id=session_id, inserted=inserted, committed_text=assembler.committed_text)


def _decode_audio(audio_b64: str) -> bytes:
    text = (audio_b64 or "").strip()
    if not text:
        raise NoAudioError()
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="invalid_base64") from exc


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionCreateResponse)
async def create_session() -> SessionCreateResponse:
    store = _get_session_store()
    session_id = store.create_session()
    audit.log_event(store, session_id, "SESSION_CREATED", "CREATE", "live transcript session")
    return SessionCreateResponse(session_id=session_id)


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str) -> dict[str, Any]:
    _require_session(session_id)
    _get_runtime_store().pop(session_id, None)
    deleted = _get_session_store().destroy_session(session_id, reason="client_request")
    return {"session_id": session_id, "deleted": deleted}


@app.post("/sessions/{session_id}/reset", response_model=TranscriptStateResponse)
async def reset_session(session_id: str) -> TranscriptStateResponse:
    _require_session(session_id)
    _reset_session(session_id)
    return TranscriptStateResponse(session_id=session_id, kind="reset")


@app.post("/sessions/{session_id}/results", response_model=TranscriptStateResponse)
async def ingest_result(session_id: str, payload: RecognitionResult) -> TranscriptStateResponse:
    _require_session(session_id)
    return _ingest_result(session_id, payload)


@app.post("/sessions/{session_id}/silence", response_model=SilenceResponse)
async def insert_silence(session_id: str) -> SilenceResponse:
    _require_session(session_id)
    return _insert_silence(session_id)


@app.get("/sessions/{session_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(session_id: str) -> TranscriptResponse:
    _require_session(session_id)
    snapshot = _get_session_store().get_session(session_id)
    transcript = snapshot["transcript"]
    batch: Optional[DiarizationResult] = snapshot["batch_result"]
    return TranscriptResponse(
        session_id=session_id,
        state=str(snapshot["state"]),
        committed_text=transcript.raw_live_text,
        utterances=[item.to_downstream() for item in transcript.committed_utterances],
        patient=transcript.patient,
        connection_state=transcript.connection_state,
        notices=list(snapshot["notices"]),
        batch_transcript=batch.transcript if batch is not None else None,
        display_text=format_for_display(transcript.committed_utterances),
    )


@app.post("/sessions/{session_id}/relabel", response_model=RelabelResponse)
async def relabel_session(session_id: str, payload: RelabelRequest) -> RelabelResponse:
    _require_session(session_id)
    store = _get_session_store()
    utterances, debug = relabel_utterances(store.transcript(session_id).committed_utterances, payload.mapping)
    store.set_utterances(session_id, utterances)
    audit.log_event(store, session_id, "UTTERANCES_RELABELLED", "RELABEL", relabelled=debug["relabelled"])
    return RelabelResponse(
        session_id=session_id,
        relabelled=int(debug["relabelled"]),
        utterances=[item.to_downstream() for item in utterances],
        display_text=format_for_display(utterances),
    )


@app.post("/diarize", response_model=DiarizeResponse)
async def diarize(payload: DiarizeRequest) -> DiarizeResponse:
    if payload.session_id:
        _require_session(payload.session_id)

    store = _get_session_store()
    trail: list[dict[str, Any]] = []

    def _on_segment(segment: AudioSegment) -> None:
        trail.append({"index": segment.index, "status": segment.status})

    diarizer = BatchDiarizer(_get_diarization_provider(), _get_config(), store=store)
    try:
        audio = _decode_audio(payload.audio_b64)
        if payload.session_id:
            store.set_state(payload.session_id, "diarizing")
        result = await diarizer.diarize(
            audio,
            session_id=payload.session_id,
            on_segment=_on_segment,
            role_overrides=payload.role_overrides or None,
        )
    except NoAudioError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except DiarizationServiceError as exc:
        logger.warning("diarize_failed code=%s error=%s", exc.code, exc.message)
        if payload.session_id:
            store.set_state(payload.session_id, "failed")
            store.set_error(payload.session_id, exc.message)
            store.add_notice(payload.session_id, BATCH_UNAVAILABLE_NOTICE)
        raise HTTPException(status_code=502, detail=exc.message) from exc

    if payload.session_id:
        store.set_batch_result(payload.session_id, result)
        store.set_utterances(payload.session_id, result.utterances)
        store.set_state(payload.session_id, "completed")

    return DiarizeResponse(
        transcript=result.transcript,
        speaker_count=result.speaker_count,
        chunked=result.chunked,
        segments=result.segments,
        utterances=[item.to_downstream() for item in result.utterances],
        status_trail=trail,
        formatted_transcript=map_speaker_roles_in_text(
            format_diarized_transcript(result.words, gap_sec=_get_config().SCRIBE_UTTERANCE_GAP_SEC)
        ),
    )


@app.websocket("/ws/transcript")
async def transcript_ws(websocket: WebSocket) -> None:
    await websocket.accept()
    session_id = str(websocket.query_params.get("session_id", "")).strip()
    store = _get_session_store()
    if not session_id or not store.has_session(session_id):
        await websocket.send_json({"type": "error", "detail": "unknown_session_id"})
        await websocket.close(code=1008)
        return

    store.set_connection_state(session_id, "open")
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "detail": "invalid_json"})
                continue
            if not isinstance(payload, dict):
                await websocket.send_json({"type": "error", "detail": "invalid_message"})
                continue

            message_type = str(payload.get("type", "")).strip().lower()
            if message_type == "start":
                if payload.get("reset", True):
                    _reset_session(session_id)
                    store.set_connection_state(session_id, "open")
                store.set_state(session_id, "recording")
                await websocket.send_json({"type": "ack_start", "session_id": session_id, "status": "recording"})
                continue

            if message_type == "result":
                try:
                    result = RecognitionResult.model_validate(payload.get("result") or {})
                except ValidationError:
                    await websocket.send_json({"type": "error", "detail": "invalid_result"})
                    continue
                state = _ingest_result(session_id, result)
                await websocket.send_json({"type": "transcript_update", **state.model_dump(mode="json")})
                continue

            if message_type == "silence":
                silence = _insert_silence(session_id)
                await websocket.send_json({"type": "ack_silence", **silence.model_dump(mode="json")})
                continue

            if message_type == "stop":
                store.set_state(session_id, "completed")
                await websocket.send_json(
                    {
                        "type": "ack_stop",
                        "session_id": session_id,
                        "status": "completed",
                        "committed_text": store.transcript(session_id).raw_live_text,
                    }
                )
                continue

            await websocket.send_json({"type": "error", "detail": "unknown_message_type"})
    except WebSocketDisconnect:
        if store.has_session(session_id):
            store.set_connection_state(session_id, "closed")
