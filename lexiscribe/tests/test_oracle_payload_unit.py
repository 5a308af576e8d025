import json

import pytest

from lexiscribe.internal_core.oracle import ChunkMetadata, GeminiOracle, OracleError, parse_oracle_payload
from lexiscribe.internal_core.oracle.gemini import build_prompt

PAYLOAD = {
    "transcript": [
        {
            "speaker": "HOST",
            "english": "Let's begin.",
            "chinese": "我們開始吧。",
            "startTimeInSeconds": "00:12",
            "endTimeInSeconds": 14.5,
        }
    ],
    "vocabulary": [{"word": "begin", "ipa": "/bɪˈɡɪn/", "definition": "start", "example": "Let's begin."}],
}


def _metadata(index: int = 2) -> ChunkMetadata:
    return ChunkMetadata(chunk_index=index, chunk_count=5, global_offset_sec=320.0, duration_sec=180.0)


def test_parse_oracle_payload_reads_plain_json() -> None:
    result = parse_oracle_payload(json.dumps(PAYLOAD, ensure_ascii=False), "test")

    assert result.transcript[0].start_time_in_seconds == 12.0
    assert result.transcript[0].chinese == "我們開始吧。"
    assert result.vocabulary[0].word == "begin"


def test_parse_oracle_payload_strips_markdown_fence() -> None:
    fenced = "```json\n" + json.dumps(PAYLOAD) + "\n```"

    result = parse_oracle_payload(fenced, "test")

    assert len(result.transcript) == 1


def test_parse_oracle_payload_accepts_decoded_dict_and_missing_lists() -> None:
    assert parse_oracle_payload({"transcript": []}, "test").is_empty()
    assert parse_oracle_payload(b"{}", "test").is_empty()


@pytest.mark.parametrize("raw", ["", "   ", "not json", "[1, 2]", '{"transcript": "oops"}'])
def test_parse_oracle_payload_rejects_bad_output(raw: str) -> None:
    with pytest.raises(OracleError) as excinfo:
        parse_oracle_payload(raw, "test")

    assert excinfo.value.code == "ORACLE_BAD_JSON"
    assert excinfo.value.provider_name == "test"
    assert not excinfo.value.transient


def test_build_prompt_names_chunk_duration_and_language() -> None:
    prompt = build_prompt(_metadata(), "Traditional Chinese (Taiwan)")

    assert "Chunk #2" in prompt
    assert "180.00 seconds" in prompt
    assert "Traditional Chinese (Taiwan)" in prompt
    assert '"startTimeInSeconds"' in prompt


def test_gemini_oracle_without_api_key_is_not_configured() -> None:
    oracle = GeminiOracle("")

    with pytest.raises(OracleError) as excinfo:
        oracle.transcribe(b"RIFF", "audio/wav", _metadata())

    assert excinfo.value.code == "ORACLE_NOT_CONFIGURED"


class _FakeResponse:
    def __init__(self, text: str):
        self.text = text


class _FakeModel:
    def __init__(self, response=None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    def generate_content(self, contents, generation_config=None, request_options=None):
        self.calls.append(
            {
                "contents": contents,
                "generation_config": generation_config,
                "request_options": request_options,
            }
        )
        if self.error is not None:
            raise self.error
        return self.response


def test_gemini_oracle_sends_inline_audio_and_parses_json() -> None:
    oracle = GeminiOracle("key-for-test", target_language="Japanese")
    model = _FakeModel(_FakeResponse(json.dumps(PAYLOAD)))
    oracle._model = model

    result = oracle.transcribe(b"audio-bytes", "audio/mpeg", _metadata(), timeout_sec=42.0)

    assert result.transcript[0].english == "Let's begin."
    call = model.calls[0]
    assert call["contents"][1] == {"mime_type": "audio/mpeg", "data": b"audio-bytes"}
    assert "Japanese" in call["contents"][0]
    assert call["generation_config"]["response_mime_type"] == "application/json"
    assert call["request_options"] == {"timeout": 42.0}


def test_gemini_oracle_without_deadline_sends_no_request_timeout() -> None:
    oracle = GeminiOracle("key-for-test")
    model = _FakeModel(_FakeResponse(json.dumps(PAYLOAD)))
    oracle._model = model

    oracle.transcribe(b"audio-bytes", "audio/wav", _metadata(), timeout_sec=0.0)

    assert model.calls[0]["request_options"] is None


class ServiceUnavailable(Exception):
    pass


def test_gemini_oracle_marks_service_errors_transient() -> None:
    oracle = GeminiOracle("key-for-test")
    oracle._model = _FakeModel(error=ServiceUnavailable("503 overloaded"))

    with pytest.raises(OracleError) as excinfo:
        oracle.transcribe(b"x", "audio/wav", _metadata())

    assert excinfo.value.code == "ORACLE_REQUEST_FAILED"
    assert excinfo.value.transient


def test_gemini_oracle_marks_network_errors_transient() -> None:
    oracle = GeminiOracle("key-for-test")
    oracle._model = _FakeModel(error=ConnectionResetError("peer reset"))

    with pytest.raises(OracleError) as excinfo:
        oracle.transcribe(b"x", "audio/wav", _metadata())

    assert excinfo.value.code == "ORACLE_REQUEST_FAILED"
    assert excinfo.value.transient


def test_gemini_oracle_permission_errors_are_not_transient() -> None:
    oracle = GeminiOracle("key-for-test")
    oracle._model = _FakeModel(error=PermissionError("bad key"))

    with pytest.raises(OracleError) as excinfo:
        oracle.transcribe(b"x", "audio/wav", _metadata())

    assert not excinfo.value.transient


def test_gemini_oracle_blocked_response_is_empty_output() -> None:
    class _Blocked:
        @property
        def text(self) -> str:
            raise ValueError("response has no text parts")

    oracle = GeminiOracle("key-for-test")
    oracle._model = _FakeModel(_Blocked())

    with pytest.raises(OracleError) as excinfo:
        oracle.transcribe(b"x", "audio/wav", _metadata())

    assert excinfo.value.code == "ORACLE_EMPTY_OUTPUT"
