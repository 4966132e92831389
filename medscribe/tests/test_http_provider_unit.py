import asyncio
import json

import httpx
import pytest

from medscribe.internal_core.diarization import HttpDiarizationProvider, parse_diarization_payload
from medscribe.internal_core.diarization.http_provider import parse_time_offset
from medscribe.internal_core.errors import DiarizationServiceError

_PAYLOAD = {
    "results": [
        {
            "alternatives": [
                {
                    "transcript": "How are you?",
                    "words": [
                        {
                            "word": "How",
                            "startTime": {"seconds": 1, "nanos": 500000000},
                            "endTime": "2.100s",
                            "speakerTag": 1,
                            "confidence": 0.9,
                        },
                        {"word": "you?", "startTime": "2.100s", "endTime": {"seconds": "3"}, "speakerTag": 2},
                    ],
                }
            ]
        },
        {"alternatives": [{"transcript": "Fine.", "words": []}]},
    ]
}


def test_time_offsets_accept_all_encodings() -> None:
    assert parse_time_offset({"seconds": 2, "nanos": 250000000}) == pytest.approx(2.25)
    assert parse_time_offset({"nanos": 500000000}) == pytest.approx(0.5)
    assert parse_time_offset("1.5s") == pytest.approx(1.5)
    assert parse_time_offset(3) == 3.0
    assert parse_time_offset(None) == 0.0
    assert parse_time_offset("") == 0.0


def test_payload_parsing_collects_words_and_speakers() -> None:
    response = parse_diarization_payload(_PAYLOAD)

    assert response.transcript == "How are you? Fine."
    assert [item.word for item in response.words] == ["How", "you?"]
    assert response.words[0].start == pytest.approx(1.5)
    assert response.words[0].end == pytest.approx(2.1)
    assert response.words[1].end == pytest.approx(3.0)
    assert response.words[0].confidence == pytest.approx(0.9)
    assert response.words[1].confidence is None
    assert response.speaker_count == 2


def test_payload_errors_are_classified() -> None:
    with pytest.raises(DiarizationServiceError) as empty:
        parse_diarization_payload({"results": []})
    assert empty.value.code == "EMPTY_RESULTS"
    assert empty.value.message == "No transcription results returned"

    with pytest.raises(DiarizationServiceError) as service:
        parse_diarization_payload({"error": {"message": "quota exceeded"}})
    assert service.value.code == "SERVICE_ERROR"
    assert service.value.message == "quota exceeded"


def test_provider_posts_encoded_audio_with_diarization_config() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_PAYLOAD)

    provider = HttpDiarizationProvider(
        "http://diarize.local/v1/recognize",
        "secret",
        transport=httpx.MockTransport(handler),
    )
    response = asyncio.run(provider.diarize_bytes(b"\x00\x01RIFF", language="hi-IN", speaker_count=2))

    body = seen["body"]
    assert seen["auth"] == "Bearer secret"
    assert body["audio"]["content"] == "AAFSSUZG"
    assert body["config"] == {
        "languageCode": "hi-IN",
        "enableAutomaticPunctuation": True,
        "enableSpeakerDiarization": True,
        "diarizationSpeakerCount": 2,
    }
    assert response.speaker_count == 2
    assert provider.name() == "http"


def test_provider_maps_transport_failures() -> None:
    def rate_limited(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "slow down"})

    def not_json(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    expected = {rate_limited: "HTTP_STATUS", not_json: "MALFORMED_RESPONSE", unreachable: "HTTP_ERROR"}
    for handler, code in expected.items():
        provider = HttpDiarizationProvider("http://diarize.local/v1", transport=httpx.MockTransport(handler))
        with pytest.raises(DiarizationServiceError) as exc:
            asyncio.run(provider.diarize_bytes(b"\x00\x00"))
        assert exc.value.code == code


def test_provider_requires_url() -> None:
    with pytest.raises(DiarizationServiceError) as exc:
        HttpDiarizationProvider("")
    assert exc.value.code == "NOT_CONFIGURED"
