from __future__ import annotations

"""
Format diarized words and utterances into compact transcript text.

Design intent:
- Keep display and downstream transcript text deterministic.
- Reuse the same boundary rules as utterance grouping so text and utterances agree.
"""

from typing import Sequence

from medscribe.asr.models import DiarizedWord, Utterance
from medscribe.asr.utterance_grouping import group_words_into_utterances

PARAGRAPH_SEPARATOR = "\n\n"


def format_diarized_transcript(words: Sequence[DiarizedWord], *, gap_sec: float = 1.0) -> str:
    if not words:
        return ""
    utterances, _debug = group_words_into_utterances(
        words,
        gap_sec=gap_sec,
        speaker_label=lambda tag: f"Speaker {tag}",
    )
    return PARAGRAPH_SEPARATOR.join(f"[{item.speaker}]: {item.text}" for item in utterances)


def format_for_display(utterances: Sequence[Utterance]) -> str:
    lines: list[str] = []
    for item in utterances:
        text = " ".join(item.text.split()).strip()
        if text:
            lines.append(f"{item.speaker}: {text}")
    return "\n".join(lines)
