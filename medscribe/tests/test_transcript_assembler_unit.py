import asyncio
import logging

from medscribe.asr.models import RecognitionResult
from medscribe.asr.transcript_assembler import TranscriptAssembler


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _final(text: str, index: int = 0, speaker_tag: int | None = None) -> RecognitionResult:
    return RecognitionResult(transcript=text, is_final=True, result_index=index, speaker_tag=speaker_tag)


def _interim(text: str, index: int = 0) -> RecognitionResult:
    return RecognitionResult(transcript=text, is_final=False, result_index=index)


def test_first_final_result_is_assigned_directly() -> None:
    assembler = TranscriptAssembler()
    update = assembler.ingest(_final("Good morning, doctor."))

    assert update.kind == "final"
    assert assembler.committed_text == "Good morning, doctor."


def test_final_results_are_separated_by_exactly_one_paragraph_break() -> None:
    assembler = TranscriptAssembler()
    assembler.ingest(_final("Good morning."))
    assembler.ingest(_final("I have a headache.", index=1))

    assert assembler.committed_text == "Good morning.\n\nI have a headache."


def test_boundary_insertion_is_idempotent() -> None:
    assembler = TranscriptAssembler()
    assembler.ingest(_final("How long has this been going on?"))

    assert assembler.insert_boundary() is True
    assert assembler.insert_boundary() is False
    assert assembler.committed_text == "How long has this been going on?\n\n"

    assembler.ingest(_final("About two weeks.", index=1))
    assert assembler.committed_text == "How long has this been going on?\n\nAbout two weeks."
    assert "\n\n\n\n" not in assembler.committed_text


def test_boundary_on_empty_transcript_is_noop() -> None:
    assembler = TranscriptAssembler()
    assert assembler.insert_boundary() is False
    assert assembler.committed_text == ""


def test_interim_preview_is_never_committed_and_final_replaces_it() -> None:
    previews: list[str] = []
    assembler = TranscriptAssembler(on_preview=previews.append)
    assembler.ingest(_final("First point."))

    update = assembler.ingest(_interim("second poi", index=1))
    assert update.kind == "interim"
    assert update.preview == "First point.\n\nsecond poi..."
    assert assembler.committed_text == "First point."
    assert previews == ["First point.\n\nsecond poi..."]

    final = assembler.ingest(_final("Second point.", index=1))
    assert final.preview is None
    assert assembler.preview is None
    assert assembler.committed_text == "First point.\n\nSecond point."
    assert "..." not in assembler.committed_text


def test_debounced_preview_redelivers_latest_after_window() -> None:
    async def scenario() -> list[str]:
        previews: list[str] = []
        assembler = TranscriptAssembler(on_preview=previews.append, debounce_sec=0.01)
        assembler.ingest(_interim("hel"))
        assembler.ingest(_interim("hello"))
        assert previews == ["hel...", "hello..."]
        await asyncio.sleep(0.05)
        return previews

    previews = asyncio.run(scenario())
    assert previews == ["hel...", "hello...", "hello..."]


def test_final_result_cancels_pending_debounced_preview() -> None:
    async def scenario() -> tuple[list[str], list[str]]:
        previews: list[str] = []
        commits: list[str] = []
        assembler = TranscriptAssembler(
            on_preview=previews.append,
            on_commit=commits.append,
            debounce_sec=0.01,
        )
        assembler.ingest(_interim("hel"))
        assembler.ingest(_final("Hello."))
        await asyncio.sleep(0.05)
        return previews, commits

    previews, commits = asyncio.run(scenario())
    assert previews == ["hel..."]
    assert commits == ["Hello."]


def test_error_tagged_results_are_discarded_and_logged(caplog) -> None:
    caplog.set_level(logging.WARNING)
    assembler = TranscriptAssembler()
    assembler.ingest(_final("Keep this."))

    marked = assembler.ingest(_final("[Error] network unavailable", index=1))
    flagged = assembler.ingest(RecognitionResult(transcript="partial", error="quota exceeded", is_final=True))

    assert marked.kind == "error"
    assert flagged.kind == "error"
    assert assembler.committed_text == "Keep this."
    assert "recognition_result_discarded" in caplog.text


def test_empty_results_are_dropped_silently() -> None:
    assembler = TranscriptAssembler()
    update = assembler.ingest(_final("   "))

    assert update.kind == "empty"
    assert assembler.committed_text == ""
    assert assembler.session.committed_utterances == []


def test_final_result_records_live_utterance_with_approximate_timing() -> None:
    clock = FakeClock()
    assembler = TranscriptAssembler(clock=clock)

    clock.now = 1.0
    assembler.ingest(_interim("I have", index=0))
    clock.now = 2.5
    update = assembler.ingest(_final("I have a cough.", index=0, speaker_tag=2))

    assert update.utterance is not None
    assert update.utterance.speaker == "SPEAKER_2"
    assert update.utterance.start == 1.0
    assert update.utterance.end == 2.5

    clock.now = 3.0
    second = assembler.ingest(_final("Since when?", index=1))
    assert second.utterance is not None
    assert second.utterance.speaker == "UNKNOWN"
    assert second.utterance.start >= update.utterance.end
    assert len(assembler.session.committed_utterances) == 2


def test_clear_resets_session_text_and_preview() -> None:
    assembler = TranscriptAssembler()
    assembler.ingest(_final("Something."))
    assembler.ingest(_interim("more"))
    assembler.clear()

    assert assembler.committed_text == ""
    assert assembler.preview is None
    assert assembler.session.committed_utterances == []
