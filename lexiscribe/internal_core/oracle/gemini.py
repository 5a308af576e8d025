from __future__ import annotations

import threading
from typing import Any, Optional

from lexiscribe.asr.models import ChunkResult

from .base import ChunkMetadata, OracleError, TranscriptionOracle, parse_oracle_payload

_TRANSIENT_ERROR_NAMES = {
    "DeadlineExceeded",
    "ServiceUnavailable",
    "ResourceExhausted",
    "InternalServerError",
    "TooManyRequests",
    "RetryError",
    "TimeoutError",
    "ConnectionError",
}


def _is_transient(error: Exception) -> bool:
    """Service-side and network failures are retryable; auth and request errors are not."""
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    return type(error).__name__ in _TRANSIENT_ERROR_NAMES


PROMPT_TEMPLATE = """
You are a professional verbatim transcriber. Transcribe this audio chunk (Chunk #{chunk_index}) with absolute precision.

STRICT VERBATIM REQUIREMENTS:
1. NO SKIPPING: transcribe every single word, even quiet or redundant sections.
2. NO SUMMARIZATION: never paraphrase; transcribe exactly what is spoken.
3. UNINTELLIGIBLE PARTS: mark a truly unintelligible phrase as [unintelligible].

TIMING & BOUNDARY RULES:
- This clip is exactly {duration:.2f} seconds long.
- 0.00s is the absolute start of this clip; every timestamp is relative to it, in seconds.
- If a sentence begins at the very end of the clip, transcribe as much of it as you can.

TASK:
- Transcribe all English speech.
- Identify speakers (e.g. HOST, GUEST).
- Provide a natural {target_language} translation of each line.
- Extract B2+ level academic vocabulary with IPA, a short definition and an example.

Return ONLY JSON:
{{
  "transcript": [{{"speaker": "Speaker", "english": "Text", "chinese": "Translation", "startTimeInSeconds": 0.00, "endTimeInSeconds": 0.00}}],
  "vocabulary": [{{"word": "word", "ipa": "/ipa/", "definition": "definition", "example": "example sentence"}}]
}}
"""


def build_prompt(metadata: ChunkMetadata, target_language: str) -> str:
    return PROMPT_TEMPLATE.format(
        chunk_index=metadata.chunk_index,
        duration=metadata.duration_sec,
        target_language=target_language,
    ).strip()


class GeminiOracle(TranscriptionOracle):
    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.5-flash",
        *,
        target_language: str = "Traditional Chinese (Taiwan)",
        temperature: float = 0.2,
    ):
        self._api_key = api_key
        self._model_name = model_name
        self._target_language = target_language
        self._temperature = float(temperature)
        self._model: Optional[Any] = None
        self._lock = threading.Lock()

    def name(self) -> str:
        return "gemini"

    def _ensure_model(self) -> Any:
        with self._lock:
            if self._model is not None:
                return self._model
            if not self._api_key:
                raise OracleError(
                    "ORACLE_NOT_CONFIGURED",
                    "Gemini API key is not configured (set LEXI_GEMINI_API_KEY or GEMINI_API_KEY).",
                    self.name(),
                )
            try:
                import google.generativeai as genai  # type: ignore
            except Exception as e:
                raise OracleError(
                    "ORACLE_NOT_CONFIGURED",
                    f"Gemini oracle requires google-generativeai installed: {e}",
                    self.name(),
                )
            genai.configure(api_key=self._api_key)
            self._model = genai.GenerativeModel(self._model_name)
            return self._model

    def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        metadata: ChunkMetadata,
        timeout_sec: float = 300.0,
    ) -> ChunkResult:
        model = self._ensure_model()
        prompt = build_prompt(metadata, self._target_language)
        request_options = {"timeout": float(timeout_sec)} if timeout_sec and timeout_sec > 0 else None
        try:
            response = model.generate_content(
                [prompt, {"mime_type": mime_type, "data": audio}],
                generation_config={
                    "response_mime_type": "application/json",
                    "temperature": self._temperature,
                },
                request_options=request_options,
            )
        except Exception as e:
            transient = _is_transient(e)
            msg = str(e).replace("\n", " ").strip()
            if len(msg) > 200:
                msg = msg[:200] + "…"
            raise OracleError(
                "ORACLE_REQUEST_FAILED",
                f"chunk {metadata.chunk_index}: {type(e).__name__}: {msg}",
                self.name(),
                transient=transient,
            )

        try:
            text = response.text
        except ValueError as e:
            # Raised when the candidate was blocked or carries no text part.
            raise OracleError("ORACLE_EMPTY_OUTPUT", f"chunk {metadata.chunk_index}: {e}", self.name())
        return parse_oracle_payload(text, self.name())
