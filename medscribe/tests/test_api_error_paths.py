import base64

from fastapi.testclient import TestClient

from medscribe.api.main import app
from medscribe.internal_core.diarization import MockDiarizationProvider
from medscribe.live.recording_session import BATCH_UNAVAILABLE_NOTICE


def _clear_injected_provider() -> None:
    if hasattr(app.state, "diarization_provider"):
        delattr(app.state, "diarization_provider")


def test_unknown_session_returns_404() -> None:
    client = TestClient(app)
    response = client.post("/sessions/missing_session/results", json={"transcript": "hi", "is_final": True})
    assert response.status_code == 404
    assert "Unknown session_id" in response.json()["detail"]
    assert client.get("/sessions/missing_session/transcript").status_code == 404


def test_malformed_result_payload_returns_422() -> None:
    client = TestClient(app)
    session_id = client.post("/sessions").json()["session_id"]
    response = client.post(f"/sessions/{session_id}/results", json={"is_final": "maybe"})
    assert response.status_code == 422


def test_diarize_rejects_empty_audio() -> None:
    client = TestClient(app)
    response = client.post("/diarize", json={"audio_b64": ""})
    assert response.status_code == 400
    assert response.json()["detail"] == "No audio data available for diarization"


def test_diarize_rejects_invalid_base64() -> None:
    client = TestClient(app)
    response = client.post("/diarize", json={"audio_b64": "@@not-base64@@"})
    assert response.status_code == 400
    assert response.json()["detail"] == "invalid_base64"


def test_diarize_unknown_session_returns_404() -> None:
    client = TestClient(app)
    response = client.post("/diarize", json={"audio_b64": "AAAA", "session_id": "missing_session"})
    assert response.status_code == 404


def test_diarize_service_failure_returns_502_and_marks_session() -> None:
    client = TestClient(app)
    session_id = client.post("/sessions").json()["session_id"]
    client.post(f"/sessions/{session_id}/results", json={"transcript": "Any fever?", "is_final": True})
    app.state.diarization_provider = MockDiarizationProvider(fail_on_calls=[1])

    try:
        response = client.post(
            "/diarize",
            json={"audio_b64": base64.b64encode(b"\x00" * 500).decode("ascii"), "session_id": session_id},
        )
    finally:
        _clear_injected_provider()

    assert response.status_code == 502
    assert "injected failure" in response.json()["detail"]
    transcript = client.get(f"/sessions/{session_id}/transcript").json()
    assert transcript["state"] == "failed"
    assert transcript["notices"] == [BATCH_UNAVAILABLE_NOTICE]
    assert [item["transcript"] for item in transcript["utterances"]] == ["Any fever?"]
