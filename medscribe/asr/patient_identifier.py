from __future__ import annotations

"""
Identify the patient's name from the opening speech of a new session.

Design intent:
- Tier 1: ordered greeting/introduction templates, first match wins.
- Tier 1b: a greeting keyword followed by any word, capitalized (catches lowercase transcripts).
- Tier 2: after repeated misses, fall back to the first capitalized word.
- Identification is one-shot per session; later scans are no-ops until `reset()`.
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from medscribe.internal_core.contracts import PatientIdentity

logger = logging.getLogger(__name__)

_NAME = r"([A-Z][a-z]{2,})"
_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i:\b(?:namaste|hello|hi|hey))\s+" + _NAME),
    re.compile(r"(?i:\b(?:patient|patient's) name is)\s+" + _NAME),
    re.compile(r"(?i:\b(?:this is|i am|i'm))\s+" + _NAME),
    re.compile(r"\b(?:Mr|Mrs|Ms|Dr)\.?\s+" + _NAME),
)
_GREETING_ANY_WORD_RE = re.compile(r"\b(?:namaste|hello|hi|hey)\s+(\w+)", re.IGNORECASE)
_CAPITALIZED_WORD_RE = re.compile(r"\b[A-Z][a-z]{2,}\b")


@dataclass(frozen=True)
class PatientScan:
    name: Optional[str]
    attempts: int
    tier: str


def extract_patient_name(text: str, prior_attempts: int, *, fallback_after: int = 3) -> PatientScan:
    """
    Pure extraction step.

    `prior_attempts` counts earlier scans that found no template match. The returned
    `attempts` is the counter value the caller should carry into the next scan.
    """
    source = str(text or "")
    for pattern in _NAME_PATTERNS:
        match = pattern.search(source)
        if match:
            return PatientScan(name=match.group(1), attempts=prior_attempts, tier="pattern")

    match = _GREETING_ANY_WORD_RE.search(source)
    if match:
        word = match.group(1)
        return PatientScan(name=word[:1].upper() + word[1:], attempts=prior_attempts, tier="greeting")

    attempts = int(prior_attempts) + 1
    if attempts > fallback_after:
        match = _CAPITALIZED_WORD_RE.search(source)
        if match:
            return PatientScan(name=match.group(0), attempts=attempts, tier="capitalized")
    return PatientScan(name=None, attempts=attempts, tier="none")


class PatientIdentifier:
    def __init__(
        self,
        *,
        fallback_after: int = 3,
        signal_sec: float = 3.0,
        on_identified: Optional[Callable[[PatientIdentity], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._fallback_after = int(fallback_after)
        self._signal_sec = max(0.0, float(signal_sec))
        self._on_identified = on_identified
        self._clock = clock
        self._wall_clock = wall_clock
        self._signal_until: Optional[float] = None
        self.is_new_session = True
        self.attempts = 0
        self.patient: Optional[PatientIdentity] = None

    @property
    def identified(self) -> bool:
        return self.patient is not None

    @property
    def identified_signal(self) -> bool:
        if self._signal_until is None:
            return False
        if self._clock() >= self._signal_until:
            self._signal_until = None
            return False
        return True

    def reset(self) -> None:
        self.is_new_session = True
        self.attempts = 0
        self.patient = None
        self._signal_until = None

    def scan(self, text: str) -> Optional[PatientIdentity]:
        if not self.is_new_session or self.identified:
            return None

        result = extract_patient_name(text, self.attempts, fallback_after=self._fallback_after)
        self.attempts = result.attempts
        if result.name is None:
            return None

        self.patient = PatientIdentity(name=result.name, identified_at=self._wall_clock())
        self.is_new_session = False
        self._signal_until = self._clock() + self._signal_sec
        logger.info("patient_identified tier=%s attempts=%s", result.tier, result.attempts)
        if self._on_identified is not None:
            self._on_identified(self.patient)
        return self.patient
