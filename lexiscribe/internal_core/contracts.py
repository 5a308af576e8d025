from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from lexiscribe.asr.models import TranscriptionResult

JobState = Literal["queued", "processing", "completed", "failed", "cancelled"]

ChunkStatus = Literal["OK", "FAILED", "TIMEOUT", "CANCELLED"]


@dataclass(frozen=True)
class AudioWindow:
    """A view on mono PCM samples, encoded lazily right before dispatch."""

    samples: np.ndarray
    sample_rate: int


@dataclass(frozen=True)
class ChunkDescriptor:
    index: int
    global_start_sec: float
    duration_sec: float
    overlap_sec: float
    mime_type: str
    payload: Union[AudioWindow, bytes]

    @property
    def global_end_sec(self) -> float:
        return self.global_start_sec + self.duration_sec


class ChunkOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chunk_index: int
    global_start_sec: float
    duration_sec: float
    status: ChunkStatus
    error_code: Optional[str] = None
    lines: int = 0
    vocabulary: int = 0
    attempts: int = 0
    elapsed_sec: float = 0.0


class TranscriptionJobResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    result: TranscriptionResult
    chunks: List[ChunkOutcome] = Field(default_factory=list)
    cancelled: bool = False
    meta: Dict[str, Any] = Field(default_factory=dict)


AuditEventType = Literal[
    "JOB_CREATED",
    "JOB_STARTED",
    "CHUNK_DONE",
    "CHUNK_FAILED",
    "JOB_COMPLETED",
    "JOB_FAILED",
    "JOB_CANCELLED",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    job_id: str
    type: AuditEventType
    code: str
    detail: str
    duration_ms: Optional[int] = None


class JobProgress(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = ""
    percent: int = 0
