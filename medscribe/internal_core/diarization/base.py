from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from medscribe.asr.models import DiarizedWord


@dataclass(frozen=True)
class ProviderResponse:
    transcript: str
    words: list[DiarizedWord] = field(default_factory=list)
    speaker_count: int = 0


class DiarizationProvider(ABC):
    @abstractmethod
    async def diarize_bytes(
        self,
        audio: bytes,
        *,
        language: str = "en-US",
        speaker_count: int = 2,
    ) -> ProviderResponse: ...

    @abstractmethod
    def name(self) -> str: ...
