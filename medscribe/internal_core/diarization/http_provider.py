from __future__ import annotations

import base64
import logging
from typing import Any, Optional

import httpx

from medscribe.asr.models import DiarizedWord

from ..errors import DiarizationServiceError
from .base import DiarizationProvider, ProviderResponse

logger = logging.getLogger(__name__)


def parse_time_offset(raw: Any) -> float:
    """Accept `{seconds, nanos}`, `"1.500s"` or a plain number; missing parts count as zero."""
    if raw is None:
        return 0.0
    if isinstance(raw, dict):
        seconds = float(raw.get("seconds", 0) or 0)
        nanos = float(raw.get("nanos", 0) or 0)
        return max(0.0, seconds + nanos / 1e9)
    if isinstance(raw, str):
        text = raw.strip().rstrip("s")
        if not text:
            return 0.0
        return max(0.0, float(text))
    return max(0.0, float(raw))


def _parse_word(item: dict[str, Any]) -> Optional[DiarizedWord]:
    text = str(item.get("word", "") or "").strip()
    if not text:
        return None
    start = parse_time_offset(item.get("startTime", item.get("start")))
    end = parse_time_offset(item.get("endTime", item.get("end")))
    confidence = item.get("confidence")
    return DiarizedWord(
        word=text,
        speaker_tag=int(item.get("speakerTag", item.get("speaker", 0)) or 0),
        start=start,
        end=max(start, end),
        confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
    )


def parse_diarization_payload(data: Any) -> ProviderResponse:
    if not isinstance(data, dict):
        raise DiarizationServiceError("Malformed diarization response", code="MALFORMED_RESPONSE")
    if data.get("error"):
        error = data["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise DiarizationServiceError(str(message or "diarization service error"), code="SERVICE_ERROR")

    results = data.get("results") or []
    if not results:
        raise DiarizationServiceError("No transcription results returned", code="EMPTY_RESULTS")

    transcript_parts: list[str] = []
    words: list[DiarizedWord] = []
    for result in results:
        alternatives = (result or {}).get("alternatives") or []
        if not alternatives or not isinstance(alternatives[0], dict):
            continue
        best = alternatives[0]
        text = str(best.get("transcript", "") or "").strip()
        if text:
            transcript_parts.append(text)
        for item in best.get("words") or []:
            if not isinstance(item, dict):
                continue
            word = _parse_word(item)
            if word is not None:
                words.append(word)

    speakers = {item.speaker_tag for item in words if item.speaker_tag > 0}
    return ProviderResponse(
        transcript=" ".join(transcript_parts).strip(),
        words=words,
        speaker_count=len(speakers),
    )


class HttpDiarizationProvider(DiarizationProvider):
    def __init__(
        self,
        url: str,
        api_key: str = "",
        *,
        timeout_sec: float = 90.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not url:
            raise DiarizationServiceError("SCRIBE_DIARIZATION_URL is not set", code="NOT_CONFIGURED")
        self._url = url
        self._api_key = api_key
        self._timeout_sec = float(timeout_sec)
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def diarize_bytes(
        self,
        audio: bytes,
        *,
        language: str = "en-US",
        speaker_count: int = 2,
    ) -> ProviderResponse:
        body = {
            "audio": {"content": base64.b64encode(audio).decode("ascii")},
            "config": {
                "languageCode": language,
                "enableAutomaticPunctuation": True,
                "enableSpeakerDiarization": True,
                "diarizationSpeakerCount": int(speaker_count),
            },
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout_sec, transport=self._transport) as client:
                r = await client.post(self._url, json=body, headers=self._headers())
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("diarization_http_status status=%s url=%s", exc.response.status_code, self._url)
            raise DiarizationServiceError(
                f"Diarization service returned HTTP {exc.response.status_code}",
                code="HTTP_STATUS",
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("diarization_http_error error=%s url=%s", repr(exc), self._url)
            raise DiarizationServiceError(f"Diarization request failed: {exc}", code="HTTP_ERROR") from exc
        except ValueError as exc:
            raise DiarizationServiceError("Diarization response was not JSON", code="MALFORMED_RESPONSE") from exc

        return parse_diarization_payload(data)

    def name(self) -> str:
        return "http"
