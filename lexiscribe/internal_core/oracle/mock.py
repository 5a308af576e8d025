from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Mapping, Optional, Union

from lexiscribe.asr.models import ChunkResult

from .base import ChunkMetadata, OracleError, TranscriptionOracle

Script = Union[ChunkResult, dict, Exception, Callable[[ChunkMetadata], ChunkResult]]


class MockOracle(TranscriptionOracle):
    """
    Scripted oracle keyed by chunk index. Unscripted chunks get one placeholder line.
    Records call order and the peak number of concurrent calls.
    """

    def __init__(
        self,
        script: Optional[Mapping[int, Script]] = None,
        *,
        delay_sec: float = 0.0,
    ) -> None:
        self._script: Dict[int, Script] = dict(script or {})
        self._delay_sec = float(delay_sec)
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0
        self.calls: List[ChunkMetadata] = []
        self.payload_sizes: Dict[int, int] = {}

    def name(self) -> str:
        return "mock"

    def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        metadata: ChunkMetadata,
        timeout_sec: float = 300.0,
    ) -> ChunkResult:
        with self._lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
            self.calls.append(metadata)
            self.payload_sizes[metadata.chunk_index] = len(audio)
        try:
            if self._delay_sec > 0:
                time.sleep(self._delay_sec)
            return self._resolve(metadata)
        finally:
            with self._lock:
                self._in_flight -= 1

    def _resolve(self, metadata: ChunkMetadata) -> ChunkResult:
        entry = self._script.get(metadata.chunk_index)
        if entry is None:
            return ChunkResult.model_validate(
                {
                    "transcript": [
                        {
                            "speaker": "MOCK",
                            "english": f"(mock) simulated transcript for chunk {metadata.chunk_index}.",
                            "chinese": f"(模擬) 第 {metadata.chunk_index} 段",
                            "startTimeInSeconds": 0.0,
                            "endTimeInSeconds": min(1.0, metadata.duration_sec),
                        }
                    ],
                    "vocabulary": [],
                }
            )
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, ChunkResult):
            return entry
        if isinstance(entry, dict):
            return ChunkResult.model_validate(entry)
        if callable(entry):
            return entry(metadata)
        raise OracleError("MOCK_BAD_SCRIPT", f"unsupported script entry: {type(entry)!r}", self.name())
