from __future__ import annotations

"""
Group diarized word records into speaker utterances.

Design intent:
- Walk words in time order and cut on speaker change, sentence end, or a long pause.
- Keep grouping independent of role labels; mapping happens afterwards.
- Emit rounded, timestamp-valid utterances ready for downstream consumers.
"""

from typing import Any, Callable, Sequence

import numpy as np

from medscribe.asr.models import DiarizedWord, Utterance

_TERMINAL_PUNCTUATION = (".", "!", "?")
DEFAULT_WORD_CONFIDENCE = 0.8


def utterance_boundaries(
    words: Sequence[DiarizedWord],
    *,
    gap_sec: float = 1.0,
) -> list[int]:
    """
    Return indices (into the time-ordered word list) where a new utterance starts.

    Index 0 is implicit and never reported.
    """
    ordered = sorted(words, key=lambda item: (item.start, item.end))
    cuts: list[int] = []
    for idx in range(1, len(ordered)):
        prev = ordered[idx - 1]
        word = ordered[idx]
        if word.speaker_tag != prev.speaker_tag:
            cuts.append(idx)
        elif prev.word.rstrip().endswith(_TERMINAL_PUNCTUATION):
            cuts.append(idx)
        elif (word.start - prev.end) > gap_sec:
            cuts.append(idx)
    return cuts


def _flush(bucket: list[DiarizedWord], speaker: str) -> Utterance | None:
    text = " ".join(item.word.strip() for item in bucket if item.word.strip())
    if not text:
        return None
    confs = [item.confidence for item in bucket if item.confidence is not None]
    if confs:
        conf = float(np.clip(np.mean(np.asarray(confs, dtype=np.float32)), 0.0, 1.0))
    else:
        conf = DEFAULT_WORD_CONFIDENCE
    start = round(float(bucket[0].start), 2)
    end = round(max(float(item.end) for item in bucket), 2)
    return Utterance(speaker=speaker, start=start, end=max(start, end), text=text, confidence=conf)


def group_words_into_utterances(
    words: Sequence[DiarizedWord],
    *,
    gap_sec: float = 1.0,
    speaker_label: Callable[[int], str] | None = None,
) -> tuple[list[Utterance], dict[str, Any]]:
    ordered = sorted(words, key=lambda item: (item.start, item.end))
    if not ordered:
        return [], {"status": "empty", "words": 0, "utterances": 0}

    label = speaker_label or (lambda tag: str(tag))
    cuts = set(utterance_boundaries(ordered, gap_sec=gap_sec))

    utterances: list[Utterance] = []
    bucket: list[DiarizedWord] = []
    for idx, word in enumerate(ordered):
        if idx in cuts and bucket:
            flushed = _flush(bucket, label(bucket[0].speaker_tag))
            if flushed is not None:
                utterances.append(flushed)
            bucket = []
        bucket.append(word)

    if bucket:
        flushed = _flush(bucket, label(bucket[0].speaker_tag))
        if flushed is not None:
            utterances.append(flushed)

    debug = {
        "status": "ok",
        "words": len(ordered),
        "utterances": len(utterances),
        "boundaries": sorted(cuts),
    }
    return utterances, debug
