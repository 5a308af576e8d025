from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from lexiscribe.asr.models import ChunkResult

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)


class OracleError(RuntimeError):
    def __init__(self, code: str, message: str, provider_name: str, *, transient: bool = False):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_name = provider_name
        self.transient = transient


@dataclass(frozen=True)
class ChunkMetadata:
    chunk_index: int
    chunk_count: int
    global_offset_sec: float
    duration_sec: float


class TranscriptionOracle(ABC):
    @abstractmethod
    def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        metadata: ChunkMetadata,
        timeout_sec: float = 300.0,
    ) -> ChunkResult:
        """Transcribe one chunk. `timeout_sec <= 0` means no request deadline."""

    @abstractmethod
    def name(self) -> str: ...


def parse_oracle_payload(raw: Any, provider_name: str) -> ChunkResult:
    """Validate oracle JSON (text or already-decoded) into a chunk-local result."""

    data = raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", "replace")
    if isinstance(raw, str):
        text = raw.strip()
        fenced = _FENCE_RE.match(text)
        if fenced:
            text = fenced.group(1)
        if not text:
            raise OracleError("ORACLE_BAD_JSON", "empty oracle response", provider_name)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise OracleError("ORACLE_BAD_JSON", f"unparseable oracle JSON: {e}", provider_name)
    if not isinstance(data, dict):
        raise OracleError("ORACLE_BAD_JSON", "oracle JSON root must be an object", provider_name)
    try:
        return ChunkResult.model_validate(data)
    except ValidationError as e:
        msg = str(e).replace("\n", " ").strip()
        if len(msg) > 200:
            msg = msg[:200] + "…"
        raise OracleError("ORACLE_BAD_JSON", f"oracle JSON failed validation: {msg}", provider_name)
