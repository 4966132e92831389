from __future__ import annotations

from typing import Iterable, Optional

from medscribe.asr.models import DiarizedWord

from ..errors import DiarizationServiceError
from .base import DiarizationProvider, ProviderResponse


class MockDiarizationProvider(DiarizationProvider):
    def __init__(self, fail_on_calls: Optional[Iterable[int]] = None) -> None:
        self._counter = 0
        self._fail_on_calls = set(fail_on_calls or ())
        self.received_sizes: list[int] = []

    async def diarize_bytes(
        self,
        audio: bytes,
        *,
        language: str = "en-US",
        speaker_count: int = 2,
    ) -> ProviderResponse:
        self._counter += 1
        self.received_sizes.append(len(audio))
        if self._counter in self._fail_on_calls:
            raise DiarizationServiceError(f"(mock) injected failure on call {self._counter}")
        words = [
            DiarizedWord(word="(mock)", speaker_tag=1, start=0.0, end=0.4),
            DiarizedWord(word=f"question{self._counter}?", speaker_tag=1, start=0.5, end=1.0),
            DiarizedWord(word=f"answer{self._counter}.", speaker_tag=2, start=1.2, end=1.8),
        ]
        return ProviderResponse(
            transcript=" ".join(item.word for item in words),
            words=words,
            speaker_count=min(2, max(1, int(speaker_count))),
        )

    def name(self) -> str:
        return "mock"
