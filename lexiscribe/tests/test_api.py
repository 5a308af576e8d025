import base64
import time
from dataclasses import replace

import numpy as np
import pytest
from fastapi.testclient import TestClient

from lexiscribe.api.main import app
from lexiscribe.internal_core import InMemoryJobStore, load_config
from lexiscribe.internal_core.audio_utils import encode_wav16k_mono
from lexiscribe.internal_core.oracle import MockOracle, OracleError


def _wav_b64(seconds: float, sample_rate: int = 8000) -> str:
    data = encode_wav16k_mono(np.zeros(int(seconds * sample_rate), dtype=np.float32), sample_rate)
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def client(monkeypatch, tmp_path):
    cfg = replace(
        load_config(),
        LEXI_WINDOW_SEC=4.0,
        LEXI_OVERLAP_SEC=1.0,
        LEXI_CHUNKING_MODE="duration",
        LEXI_RECONCILE_POLICY="auto",
        LEXI_STAGGER_SEC=0.0,
        LEXI_MAX_CONCURRENCY=2,
        LEXI_CHUNK_TIMEOUT_SEC=5.0,
        LEXI_SAMPLE_RATE=8000,
        LEXI_TMP_DIR=str(tmp_path),
        LEXI_MAX_UPLOAD_BYTES=1024 * 1024,
    )
    monkeypatch.setattr(app.state, "config", cfg, raising=False)
    monkeypatch.setattr(app.state, "oracle", MockOracle(), raising=False)
    monkeypatch.setattr(app.state, "job_store", InMemoryJobStore(ttl_seconds=600), raising=False)
    return TestClient(app)


def _wait_for_terminal_state(client: TestClient, job_id: str, timeout_sec: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout_sec
    while True:
        response = client.get(f"/jobs/{job_id}")
        assert response.status_code == 200
        body = response.json()
        if body["state"] in {"completed", "failed", "cancelled"}:
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"job did not finish: {body}")
        time.sleep(0.02)


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_transcribe_inline_returns_bilingual_transcript(client: TestClient) -> None:
    response = client.post("/transcribe", json={"audio_b64": _wav_b64(10.0), "mime_type": "audio/wav"})

    assert response.status_code == 200
    body = response.json()
    assert [line["startTimeInSeconds"] for line in body["transcript"]] == pytest.approx([0.0, 3.0, 6.0])
    assert [c["status"] for c in body["chunks"]] == ["OK", "OK", "OK"]
    assert body["cancelled"] is False
    assert body["transcript_text"].startswith("[00:00] MOCK:")
    assert body["meta"]["policy"] == "tiling"


def test_transcribe_accepts_data_url(client: TestClient) -> None:
    audio = "data:audio/wav;base64," + _wav_b64(1.0)

    response = client.post("/transcribe", json={"audio_b64": audio})

    assert response.status_code == 200
    assert len(response.json()["chunks"]) == 1


def test_transcribe_rejects_invalid_base64(client: TestClient) -> None:
    response = client.post("/transcribe", json={"audio_b64": "!!not-base64!!", "mime_type": "audio/wav"})

    assert response.status_code == 400
    assert "Invalid base64" in response.json()["detail"]


def test_transcribe_rejects_oversized_upload(client: TestClient) -> None:
    big = base64.b64encode(b"\x00" * (1024 * 1024 + 1)).decode("ascii")

    response = client.post("/transcribe", json={"audio_b64": big, "mime_type": "audio/wav"})

    assert response.status_code == 413


def test_transcribe_undecodable_audio_returns_422(client: TestClient) -> None:
    garbage = base64.b64encode(b"RIFF\x00\x00\x00\x00WAVEgarbage").decode("ascii")

    response = client.post("/transcribe", json={"audio_b64": garbage, "mime_type": "audio/wav"})

    assert response.status_code == 422
    assert "AUDIO_DECODE_FAILED" in response.json()["detail"]


def test_transcribe_reports_failed_chunk_without_failing_request(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(
        app.state,
        "oracle",
        MockOracle({2: OracleError("ORACLE_BAD_JSON", "bad output", "mock")}),
    )

    response = client.post("/transcribe", json={"audio_b64": _wav_b64(10.0), "mime_type": "audio/wav"})

    assert response.status_code == 200
    body = response.json()
    assert len(body["transcript"]) == 2
    assert body["chunks"][2]["status"] == "FAILED"
    assert body["chunks"][2]["error_code"] == "ORACLE_BAD_JSON"


def test_job_lifecycle_completes_and_serves_text(client: TestClient) -> None:
    created = client.post("/jobs", json={"audio_b64": _wav_b64(10.0), "mime_type": "audio/wav"})
    assert created.status_code == 200
    job_id = created.json()["job_id"]

    body = _wait_for_terminal_state(client, job_id)

    assert body["state"] == "completed"
    assert body["progress"]["percent"] == 100
    assert len(body["chunks"]) == 3
    assert len(body["result"]["transcript"]) == 3
    event_types = [event["type"] for event in body["audit_events"]]
    assert event_types[0] == "JOB_CREATED"
    assert "JOB_STARTED" in event_types
    assert event_types.count("CHUNK_DONE") == 3
    assert event_types[-1] == "JOB_COMPLETED"

    text = client.get(f"/jobs/{job_id}/text")
    assert text.status_code == 200
    assert text.text.splitlines()[0].startswith("[00:00] MOCK:")


def test_job_with_undecodable_audio_fails(client: TestClient) -> None:
    garbage = base64.b64encode(b"RIFF\x00\x00\x00\x00WAVEgarbage").decode("ascii")
    job_id = client.post("/jobs", json={"audio_b64": garbage, "mime_type": "audio/wav"}).json()["job_id"]

    body = _wait_for_terminal_state(client, job_id)

    assert body["state"] == "failed"
    assert "AUDIO_DECODE_FAILED" in body["error"]
    assert body["progress"]["percent"] < 100
    assert body["audit_events"][-1]["type"] == "JOB_FAILED"
    assert client.get(f"/jobs/{job_id}/text").status_code == 409


def test_job_can_be_cancelled(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(app.state, "oracle", MockOracle(delay_sec=0.3))
    monkeypatch.setattr(app.state, "config", replace(app.state.config, LEXI_MAX_CONCURRENCY=1))
    job_id = client.post("/jobs", json={"audio_b64": _wav_b64(10.0), "mime_type": "audio/wav"}).json()["job_id"]

    cancel = client.post(f"/jobs/{job_id}/cancel")
    assert cancel.status_code == 200
    assert cancel.json()["cancel_requested"] is True

    body = _wait_for_terminal_state(client, job_id)
    assert body["state"] == "cancelled"
    assert body["result"]["cancelled"] is True
    assert any(chunk["status"] == "CANCELLED" for chunk in body["chunks"])
    assert body["audit_events"][-1]["type"] == "JOB_CANCELLED"


def test_unknown_job_returns_404(client: TestClient) -> None:
    assert client.get("/jobs/does-not-exist").status_code == 404
    assert client.get("/jobs/does-not-exist/text").status_code == 404
    assert client.post("/jobs/does-not-exist/cancel").status_code == 404
