from __future__ import annotations

"""
Merge interim and final recognition results into one session transcript.

Design intent:
- Committed text only grows through final results and silence boundaries.
- Interim results produce a transient preview that is never written back into committed text.
- Keep separators canonical: at most one paragraph break between committed blocks.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from medscribe.asr.formatting import PARAGRAPH_SEPARATOR
from medscribe.asr.models import RecognitionResult, Utterance
from medscribe.internal_core.contracts import TranscriptSession

logger = logging.getLogger(__name__)

_ERROR_MARKER = "[error"


def _normalize_text(text: str) -> str:
    return " ".join((text or "").split()).strip()


def _is_error_result(result: RecognitionResult) -> bool:
    if result.error:
        return True
    return (result.transcript or "").strip().lower().startswith(_ERROR_MARKER)


def _join_block(committed: str, block: str) -> str:
    if not committed:
        return block
    if committed.endswith(PARAGRAPH_SEPARATOR):
        return committed + block
    return committed.rstrip("\n") + PARAGRAPH_SEPARATOR + block


def _default_speaker_label(tag: Optional[int]) -> str:
    if tag is None:
        return "UNKNOWN"
    return f"SPEAKER_{int(tag)}"


@dataclass(frozen=True)
class AssemblerUpdate:
    kind: str
    committed_text: str
    preview: Optional[str]
    utterance: Optional[Utterance] = None


class TranscriptAssembler:
    def __init__(
        self,
        session: Optional[TranscriptSession] = None,
        *,
        preview_suffix: str = "...",
        debounce_sec: float = 0.05,
        on_preview: Optional[Callable[[str], None]] = None,
        on_commit: Optional[Callable[[str], None]] = None,
        speaker_label: Optional[Callable[[Optional[int]], str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session = session if session is not None else TranscriptSession()
        self._preview_suffix = preview_suffix
        self._debounce_sec = max(0.0, float(debounce_sec))
        self._on_preview = on_preview
        self._on_commit = on_commit
        self._speaker_label = speaker_label or _default_speaker_label
        self._clock = clock
        self._started_at = clock()
        self._utterance_started_at: Optional[float] = None
        self._last_final_end = 0.0
        self._debounce_handle: Optional[asyncio.TimerHandle] = None

    @property
    def committed_text(self) -> str:
        return self.session.raw_live_text

    @property
    def preview(self) -> Optional[str]:
        return self.session.pending_preview

    def clear(self) -> None:
        self._cancel_debounce()
        self.session.raw_live_text = ""
        self.session.committed_utterances = []
        self.session.pending_preview = None
        self._started_at = self._clock()
        self._utterance_started_at = None
        self._last_final_end = 0.0

    def ingest(self, result: RecognitionResult) -> AssemblerUpdate:
        if _is_error_result(result):
            logger.warning(
                "recognition_result_discarded reason=error index=%s error=%s",
                result.result_index,
                (result.error or result.transcript)[:120],
            )
            return AssemblerUpdate(kind="error", committed_text=self.committed_text, preview=self.preview)

        text = _normalize_text(result.transcript)
        if not text:
            logger.debug("recognition_result_dropped reason=no_match index=%s", result.result_index)
            return AssemblerUpdate(kind="empty", committed_text=self.committed_text, preview=self.preview)

        if self._utterance_started_at is None:
            self._utterance_started_at = max(0.0, self._clock() - self._started_at)

        if result.is_final:
            return self._commit(text, result)
        return self._update_preview(text)

    def insert_boundary(self) -> bool:
        """Insert one paragraph break; no-op when text is empty or already ends with one."""
        committed = self.session.raw_live_text
        if not committed or committed.endswith(PARAGRAPH_SEPARATOR):
            return False
        self.session.raw_live_text = committed.rstrip("\n") + PARAGRAPH_SEPARATOR
        return True

    def _commit(self, text: str, result: RecognitionResult) -> AssemblerUpdate:
        self._cancel_debounce()
        self.session.pending_preview = None
        self.session.raw_live_text = _join_block(self.session.raw_live_text, text)

        now = max(0.0, self._clock() - self._started_at)
        start = self._utterance_started_at if self._utterance_started_at is not None else now
        start = max(start, self._last_final_end)
        utterance = Utterance(
            speaker=self._speaker_label(result.speaker_tag),
            start=round(start, 2),
            end=round(max(start, now), 2),
            text=text,
        )
        self.session.committed_utterances.append(utterance)
        self._last_final_end = utterance.end
        self._utterance_started_at = None

        if self._on_commit is not None:
            self._on_commit(self.session.raw_live_text)
        return AssemblerUpdate(
            kind="final",
            committed_text=self.session.raw_live_text,
            preview=None,
            utterance=utterance,
        )

    def _update_preview(self, text: str) -> AssemblerUpdate:
        preview = _join_block(self.session.raw_live_text, text) + self._preview_suffix
        self.session.pending_preview = preview
        if self._on_preview is not None:
            self._on_preview(preview)
            self._schedule_debounced_preview()
        return AssemblerUpdate(kind="interim", committed_text=self.session.raw_live_text, preview=preview)

    def _schedule_debounced_preview(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_debounce()
        self._debounce_handle = loop.call_later(self._debounce_sec, self._flush_preview)

    def _flush_preview(self) -> None:
        self._debounce_handle = None
        preview = self.session.pending_preview
        if preview is not None and self._on_preview is not None:
            self._on_preview(preview)

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
