from __future__ import annotations

"""
Orchestrate one live recording: capture, streaming, transcript assembly and the batch pass.

Design intent:
- All cross-callback state lives on this object and the `TranscriptSession` it owns.
- `stop()` is idempotent and releases the silence timer and microphone on every path.
- A successful batch diarization supersedes live utterances; a failed one leaves them untouched.
"""

import asyncio
import logging
from typing import Callable, Mapping, Optional

from medscribe.asr.models import DiarizationResult, RecognitionResult
from medscribe.asr.patient_identifier import PatientIdentifier
from medscribe.asr.silence_detector import SilenceDetector
from medscribe.asr.transcript_assembler import TranscriptAssembler
from medscribe.internal_core import audit
from medscribe.internal_core.config import ScribeConfig
from medscribe.internal_core.contracts import AuditEventType, ConnectionState, PatientIdentity, TranscriptSession
from medscribe.internal_core.diarization import BatchDiarizer, DiarizationProvider, build_provider
from medscribe.internal_core.errors import DevicePermissionError, ScribeError
from medscribe.internal_core.session_store import InMemorySessionStore

from .audio_capture import AudioCapture, MicrophoneSource, SoundDeviceSource
from .connection_manager import ChannelFactory, ConnectionManager
from .streaming_channel import websocket_channel_factory

logger = logging.getLogger(__name__)

BATCH_UNAVAILABLE_NOTICE = "Enhanced speaker detection was unavailable; showing the live transcript."
_MAX_QUEUED_FRAMES = 2000


class RecordingSession:
    def __init__(
        self,
        cfg: ScribeConfig,
        *,
        source: MicrophoneSource,
        channel_factory: ChannelFactory,
        diarizer: Optional[BatchDiarizer] = None,
        store: Optional[InMemorySessionStore] = None,
        session_id: Optional[str] = None,
        on_transcript: Optional[Callable[[str], None]] = None,
        on_preview: Optional[Callable[[str], None]] = None,
        on_notice: Optional[Callable[[str], None]] = None,
        on_patient: Optional[Callable[[PatientIdentity], None]] = None,
    ) -> None:
        self.cfg = cfg
        self._store = store
        self._session_id = session_id
        self._diarizer = diarizer
        self._on_transcript = on_transcript
        self._on_preview = on_preview
        self._on_notice = on_notice
        self._on_patient = on_patient
        self._frames: asyncio.Queue[bytes] = asyncio.Queue(maxsize=_MAX_QUEUED_FRAMES)
        self._sender: Optional[asyncio.Task[None]] = None
        self.frames_dropped = 0
        self.alive = True
        self.recording = False
        self.notices: list[str] = []
        self.batch_result: Optional[DiarizationResult] = None

        self.session = self._fresh_session()
        self.assembler = self._build_assembler()
        self.identifier = PatientIdentifier(
            fallback_after=cfg.SCRIBE_PATIENT_FALLBACK_AFTER_ATTEMPTS,
            signal_sec=cfg.SCRIBE_PATIENT_SIGNAL_SECONDS,
            on_identified=self._handle_patient,
        )
        self.silence = SilenceDetector(
            self._handle_silence,
            pause_threshold_sec=cfg.pause_threshold_sec,
            poll_interval_sec=cfg.SCRIBE_SILENCE_POLL_MS / 1000.0,
        )
        self.capture = AudioCapture(
            source,
            timeslice_sec=cfg.SCRIBE_CAPTURE_TIMESLICE_MS / 1000.0,
            min_artifact_bytes=cfg.SCRIBE_MIN_RECORDING_BYTES,
            on_frame=self._enqueue_frame,
        )
        self.connection = ConnectionManager(
            channel_factory,
            failure_threshold=cfg.SCRIBE_RECONNECT_FAILURE_THRESHOLD,
            on_state_change=self._handle_connection_state,
            on_notice=self._notice,
        )

    @classmethod
    def from_config(
        cls,
        cfg: ScribeConfig,
        *,
        source: Optional[MicrophoneSource] = None,
        provider: Optional[DiarizationProvider] = None,
        store: Optional[InMemorySessionStore] = None,
        session_id: Optional[str] = None,
        **callbacks: Callable[..., None],
    ) -> "RecordingSession":
        """
        Wire the production pieces: the sounddevice microphone, the websocket
        recognizer at `SCRIBE_STREAMING_URL` and the configured batch provider.
        """
        session: Optional[RecordingSession] = None

        def _deliver(result: RecognitionResult) -> None:
            if session is not None:
                session.handle_result(result)

        if source is None:
            source = SoundDeviceSource(
                sample_rate=cfg.SCRIBE_CAPTURE_SAMPLE_RATE,
                channels=cfg.SCRIBE_CAPTURE_CHANNELS,
            )
        diarizer = None
        if cfg.SCRIBE_BATCH_DIARIZATION_ENABLED:
            diarizer = BatchDiarizer(provider or build_provider(cfg), cfg, store=store)
        session = cls(
            cfg,
            source=source,
            channel_factory=websocket_channel_factory(cfg, _deliver),
            diarizer=diarizer,
            store=store,
            session_id=session_id,
            **callbacks,
        )
        return session

    def _fresh_session(self) -> TranscriptSession:
        if self._store is not None and self._session_id:
            self._store.reset_session(self._session_id)
            return self._store.transcript(self._session_id)
        return TranscriptSession()

    def _build_assembler(self) -> TranscriptAssembler:
        return TranscriptAssembler(
            self.session,
            preview_suffix=self.cfg.SCRIBE_PREVIEW_SUFFIX,
            debounce_sec=self.cfg.SCRIBE_PREVIEW_DEBOUNCE_MS / 1000.0,
            on_preview=self._forward_preview,
            on_commit=self._forward_transcript,
        )

    async def preconnect(self) -> None:
        await self.connection.preconnect()

    async def start(self) -> None:
        if self.recording or not self.alive:
            return
        self.session = self._fresh_session()
        self.assembler = self._build_assembler()
        self.identifier.reset()
        self.batch_result = None
        self.notices = []

        try:
            await self.capture.start()
        except DevicePermissionError as exc:
            logger.warning("recording_start_failed code=%s error=%s", exc.code, exc.message)
            self._notice(exc.message)
            raise

        self.recording = True
        self.connection.recording = True
        await self.connection.preconnect()
        self.session.connection_state = self.connection.state
        self.silence.start()
        self._sender = asyncio.get_running_loop().create_task(self._send_loop())

    def handle_result(self, result: RecognitionResult) -> None:
        if not self.alive:
            return
        self.silence.note_speech()
        update = self.assembler.ingest(result)
        if update.kind == "error":
            self._audit("RESULT_DISCARDED", "RESULT_ERROR", result_index=result.result_index)
            return
        if update.kind == "final" and self.identifier.is_new_session:
            self.identifier.scan(update.utterance.text if update.utterance else result.transcript)

    async def stop(
        self,
        *,
        role_overrides: Optional[Mapping[int, str]] = None,
    ) -> Optional[DiarizationResult]:
        if not self.recording:
            return self.batch_result
        self.recording = False
        self.connection.begin_manual_stop()
        try:
            self.silence.stop()
            await self._stop_sender()
            artifact = await self.capture.stop()
        finally:
            self.silence.stop()
            self.connection.recording = False
            self.connection.end_manual_stop()
            self.session.connection_state = self.connection.state

        if self._diarizer is None or not self.cfg.SCRIBE_BATCH_DIARIZATION_ENABLED:
            return None

        try:
            result = await self._diarizer.diarize(
                artifact,
                session_id=self._session_id,
                role_overrides=role_overrides,
            )
        except ScribeError as exc:
            logger.warning("batch_diarization_failed code=%s error=%s", exc.code, exc.message)
            if self.alive:
                self._notice(BATCH_UNAVAILABLE_NOTICE)
            return None

        if not self.alive:
            logger.info("batch_result_discarded reason=torn_down")
            return None
        self.batch_result = result
        self.session.committed_utterances = list(result.utterances)
        if self._store is not None and self._session_id:
            self._store.set_batch_result(self._session_id, result)
        return result

    async def teardown(self) -> None:
        self.alive = False
        self.recording = False
        self.silence.stop()
        await self._stop_sender()
        self.capture.teardown()
        await self.connection.teardown()

    def _enqueue_frame(self, frame: bytes) -> None:
        try:
            self._frames.put_nowait(frame)
        except asyncio.QueueFull:
            self.frames_dropped += 1

    async def _send_loop(self) -> None:
        while True:
            frame = await self._frames.get()
            await self.connection.send(frame)

    async def _stop_sender(self) -> None:
        sender = self._sender
        self._sender = None
        if sender is not None and not sender.done():
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass
        while not self._frames.empty():
            self._frames.get_nowait()

    def _handle_silence(self) -> None:
        if self.alive:
            self.assembler.insert_boundary()

    def _handle_patient(self, patient: PatientIdentity) -> None:
        self.session.patient = patient
        self._audit("PATIENT_IDENTIFIED", "PATIENT_FOUND", attempts=self.identifier.attempts)
        if self._on_patient is not None and self.alive:
            self._on_patient(patient)

    def _handle_connection_state(self, state: ConnectionState, detail: Optional[str]) -> None:
        if not self.alive:
            return
        self.session.connection_state = state
        self._audit("CONNECTION_CHANGED", state.upper(), detail or "")

    def _forward_preview(self, preview: str) -> None:
        if self._on_preview is not None and self.alive:
            self._on_preview(preview)

    def _forward_transcript(self, text: str) -> None:
        if self._on_transcript is not None and self.alive:
            self._on_transcript(text)

    def _notice(self, message: str) -> None:
        self.notices.append(message)
        if self._store is not None and self._session_id:
            self._store.add_notice(self._session_id, message)
        if self._on_notice is not None and self.alive:
            self._on_notice(message)

    def _audit(self, event_type: AuditEventType, code: str, note: str = "", **fields: object) -> None:
        if self._store is None or not self._session_id:
            return
        audit.log_event(self._store, self._session_id, event_type, code, note, **fields)
