from __future__ import annotations

from .base import ChunkMetadata, OracleError, TranscriptionOracle, parse_oracle_payload
from .controller import TranscriptionJobError, build_oracle, transcribe_audio, transcribe_audio_sync
from .gemini import GeminiOracle
from .mock import MockOracle
from .scheduler import CancelToken, ChunkScheduler, ResultSlots

__all__ = [
    "CancelToken",
    "ChunkMetadata",
    "ChunkScheduler",
    "GeminiOracle",
    "MockOracle",
    "OracleError",
    "ResultSlots",
    "TranscriptionJobError",
    "TranscriptionOracle",
    "build_oracle",
    "parse_oracle_payload",
    "transcribe_audio",
    "transcribe_audio_sync",
]
