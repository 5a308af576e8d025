from __future__ import annotations

import time
import uuid
from threading import RLock
from typing import Any, Dict, Optional

from .contracts import AuditEvent, ChunkOutcome, JobProgress, JobState, TranscriptionJobResult
from .oracle.scheduler import CancelToken

_TERMINAL_STATES = {"completed", "failed", "cancelled"}


class InMemoryJobStore:
    def __init__(self, ttl_seconds: int):
        self._ttl_seconds = ttl_seconds
        self._lock = RLock()
        self._jobs: Dict[str, Dict[str, Any]] = {}

    def create_job(self, *, mime_type: str = "", size_bytes: int = 0) -> str:
        job_id = uuid.uuid4().hex
        now = time.time()
        with self._lock:
            self._jobs[job_id] = {
                "job_id": job_id,
                "created_at": now,
                "updated_at": now,
                "expires_at": now + self._ttl_seconds,
                "state": "queued",
                "input": {"mime_type": mime_type, "size_bytes": int(size_bytes)},
                "progress": JobProgress(message="Queued", percent=0),
                "chunks": [],
                "result": None,
                "audit_events": [],
                "cancel": CancelToken(),
                "error": None,
            }
        return job_id

    def _job(self, job_id: str) -> Dict[str, Any]:
        job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Unknown job_id: {job_id}")
        return job

    def _touch(self, job_id: str) -> None:
        now = time.time()
        job = self._jobs[job_id]
        job["updated_at"] = now
        job["expires_at"] = now + self._ttl_seconds

    def has_job(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def set_state(self, job_id: str, state: JobState) -> None:
        with self._lock:
            self._job(job_id)["state"] = state
            self._touch(job_id)

    def set_progress(self, job_id: str, message: str, percent: int) -> None:
        with self._lock:
            job = self._job(job_id)
            current: JobProgress = job["progress"]
            # Progress is monotonic; late or reordered reports only update the message.
            job["progress"] = JobProgress(message=message, percent=max(current.percent, int(percent)))
            self._touch(job_id)

    def set_error(self, job_id: str, message: Optional[str]) -> None:
        with self._lock:
            self._job(job_id)["error"] = message
            self._touch(job_id)

    def set_result(self, job_id: str, result: TranscriptionJobResult) -> None:
        with self._lock:
            job = self._job(job_id)
            job["result"] = result
            job["chunks"] = list(result.chunks)
            self._touch(job_id)

    def append_chunk_outcome(self, job_id: str, outcome: ChunkOutcome) -> None:
        with self._lock:
            self._job(job_id)["chunks"].append(outcome)
            self._touch(job_id)

    def append_audit_event(self, job_id: str, event: AuditEvent) -> None:
        with self._lock:
            self._job(job_id)["audit_events"].append(event)
            self._touch(job_id)

    def cancel_token(self, job_id: str) -> CancelToken:
        with self._lock:
            return self._job(job_id)["cancel"]

    def request_cancel(self, job_id: str) -> bool:
        with self._lock:
            job = self._job(job_id)
            if job["state"] in _TERMINAL_STATES:
                return False
            token: CancelToken = job["cancel"]
        token.cancel()
        return True

    def get_job(self, job_id: str) -> Dict[str, Any]:
        with self._lock:
            job = self._job(job_id)
            return {
                "job_id": job["job_id"],
                "created_at": job["created_at"],
                "updated_at": job["updated_at"],
                "expires_at": job["expires_at"],
                "state": job["state"],
                "input": dict(job["input"]),
                "progress": job["progress"],
                "chunks": list(job["chunks"]),
                "result": job["result"],
                "audit_events": list(job["audit_events"]),
                "cancel_requested": job["cancel"].cancelled,
                "error": job["error"],
            }

    def destroy_job(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is not None and job["state"] not in _TERMINAL_STATES:
            job["cancel"].cancel()

    def cleanup_expired_jobs(self) -> int:
        now = time.time()
        with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if job["expires_at"] <= now]
        for job_id in expired:
            self.destroy_job(job_id)
        return len(expired)
