from __future__ import annotations

"""
Default speaker-tag to role mapping for diarized output.

Design intent:
- First-introduced speaker tag is treated as the clinician, every other tag as the patient.
- This is a heuristic default only; callers may pass an explicit mapping from external classification.
- Keep mapping separate from grouping so utterances can be relabelled without re-grouping.
"""

import re
from typing import Any, Mapping, Sequence

from medscribe.asr.models import DiarizedWord, Utterance

ROLE_CLINICIAN = "DOCTOR"
ROLE_PATIENT = "PATIENT"

_SPEAKER_LINE_RE = re.compile(r"\[Speaker (\d+)\]:")
_DISPLAY_ROLES = {ROLE_CLINICIAN: "Doctor", ROLE_PATIENT: "Patient"}


def first_speaker_tag(words: Sequence[DiarizedWord]) -> int | None:
    ordered = sorted(words, key=lambda item: (item.start, item.end))
    if not ordered:
        return None
    return int(ordered[0].speaker_tag)


def build_default_role_map(
    words: Sequence[DiarizedWord],
    *,
    overrides: Mapping[int, str] | None = None,
) -> dict[int, str]:
    mapping: dict[int, str] = {}
    first = first_speaker_tag(words)
    for word in sorted(words, key=lambda item: (item.start, item.end)):
        tag = int(word.speaker_tag)
        if tag in mapping:
            continue
        mapping[tag] = ROLE_CLINICIAN if tag == first else ROLE_PATIENT
    for tag, role in (overrides or {}).items():
        mapping[int(tag)] = str(role)
    return mapping


def role_label_for(mapping: Mapping[int, str], tag: int) -> str:
    return mapping.get(int(tag), f"SPEAKER_{int(tag)}")


def relabel_utterances(
    utterances: Sequence[Utterance],
    mapping: Mapping[str, str],
) -> tuple[list[Utterance], dict[str, Any]]:
    """
    Apply a downstream override (e.g. from an external classifier) to already-grouped utterances.

    Speakers missing from `mapping` keep their current label.
    """
    relabelled: list[Utterance] = []
    changed = 0
    for item in utterances:
        target = mapping.get(item.speaker, item.speaker)
        if target != item.speaker:
            changed += 1
        relabelled.append(item.model_copy(update={"speaker": target}))
    debug = {"status": "ok", "utterances": len(relabelled), "relabelled": changed}
    return relabelled, debug


def map_speaker_roles_in_text(formatted: str) -> str:
    """Rename `[Speaker 1]`/`[Speaker 2]` headings to display roles in formatted transcript text."""

    def _replace(match: re.Match[str]) -> str:
        number = int(match.group(1))
        if number == 1:
            return f"[{_DISPLAY_ROLES[ROLE_CLINICIAN]}]:"
        if number == 2:
            return f"[{_DISPLAY_ROLES[ROLE_PATIENT]}]:"
        return match.group(0)

    return _SPEAKER_LINE_RE.sub(_replace, formatted or "")
