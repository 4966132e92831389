import pytest

from medscribe.asr.formatting import format_diarized_transcript, format_for_display
from medscribe.asr.models import DiarizedWord, Utterance
from medscribe.asr.role_mapping import map_speaker_roles_in_text
from medscribe.asr.utterance_grouping import group_words_into_utterances, utterance_boundaries


def _w(word: str, tag: int, start: float, end: float, confidence: float | None = None) -> DiarizedWord:
    return DiarizedWord(word=word, speaker_tag=tag, start=start, end=end, confidence=confidence)


def _consult_words() -> list[DiarizedWord]:
    return [
        _w("Good", 1, 0.0, 0.3),
        _w("morning", 1, 0.4, 0.7),
        _w("doctor", 1, 0.8, 1.1),
        _w("I", 2, 1.5, 1.6),
        _w("feel", 2, 1.7, 1.9),
        _w("tired.", 2, 2.0, 2.4),
        _w("Since", 2, 2.6, 2.9),
        _w("Monday", 2, 3.0, 3.3),
        _w("mostly", 2, 4.5, 4.8),
        _w("mornings", 2, 4.9, 5.3),
    ]


def test_boundaries_cut_on_speaker_change_punctuation_and_long_gap() -> None:
    assert utterance_boundaries(_consult_words(), gap_sec=1.0) == [3, 6, 8]


def test_gap_equal_to_threshold_is_not_a_boundary() -> None:
    words = [_w("okay", 1, 0.0, 0.5), _w("then", 1, 1.5, 2.0)]
    assert utterance_boundaries(words, gap_sec=1.0) == []


def test_grouping_builds_one_utterance_per_segment() -> None:
    utterances, debug = group_words_into_utterances(_consult_words(), gap_sec=1.0)

    assert [item.text for item in utterances] == [
        "Good morning doctor",
        "I feel tired.",
        "Since Monday",
        "mostly mornings",
    ]
    assert [item.speaker for item in utterances] == ["1", "2", "2", "2"]
    assert utterances[0].start == 0.0
    assert utterances[0].end == 1.1
    assert utterances[3].start == 4.5
    assert debug["status"] == "ok"
    assert debug["boundaries"] == [3, 6, 8]


def test_grouping_sorts_unordered_words_and_uses_speaker_label() -> None:
    words = list(reversed(_consult_words()[:3]))
    utterances, _debug = group_words_into_utterances(words, speaker_label=lambda tag: f"S{tag}")

    assert len(utterances) == 1
    assert utterances[0].speaker == "S1"
    assert utterances[0].text == "Good morning doctor"


def test_confidence_is_mean_of_word_confidences_with_default() -> None:
    scored = [_w("chest", 1, 0.0, 0.4, 0.9), _w("pain", 1, 0.5, 0.9, 0.7)]
    unscored = [_w("okay", 2, 2.0, 2.4)]

    utterances, _debug = group_words_into_utterances(scored + unscored)

    assert utterances[0].confidence == pytest.approx(0.8, abs=1e-6)
    assert utterances[1].confidence == 0.8


def test_timestamps_are_rounded_to_two_decimals() -> None:
    utterances, _debug = group_words_into_utterances([_w("hmm", 1, 0.123, 0.456)])
    assert utterances[0].start == 0.12
    assert utterances[0].end == 0.46


def test_empty_words_report_empty_status() -> None:
    utterances, debug = group_words_into_utterances([])
    assert utterances == []
    assert debug["status"] == "empty"


def test_formatted_transcript_uses_speaker_blocks_and_role_names() -> None:
    words = [
        _w("Hello", 1, 0.0, 0.3),
        _w("there.", 1, 0.4, 0.8),
        _w("Hi.", 2, 1.0, 1.2),
    ]

    formatted = format_diarized_transcript(words)

    assert formatted == "[Speaker 1]: Hello there.\n\n[Speaker 2]: Hi."
    assert map_speaker_roles_in_text(formatted) == "[Doctor]: Hello there.\n\n[Patient]: Hi."
    assert map_speaker_roles_in_text("[Speaker 3]: extra") == "[Speaker 3]: extra"
    assert format_diarized_transcript([]) == ""


def test_display_format_collapses_whitespace() -> None:
    utterances = [
        Utterance(speaker="DOCTOR", start=0.0, end=1.0, text="Any   fever?"),
        Utterance(speaker="PATIENT", start=1.0, end=2.0, text="  No. "),
    ]
    assert format_for_display(utterances) == "DOCTOR: Any fever?\nPATIENT: No."
