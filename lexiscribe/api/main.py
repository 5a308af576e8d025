from __future__ import annotations

"""
HTTP surface for Lexiscribe.

Design intent:
- Keep API orchestration thin and typed.
- Delegate decoding, chunking, scheduling and reconciliation to internal_core/asr.
- Long jobs run on a worker thread and are polled; short clips can run inline.
"""

import base64
import binascii
import logging
import re
import threading
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from lexiscribe.asr.formatting import format_for_display
from lexiscribe.internal_core import InMemoryJobStore, ScribeConfig, load_config
from lexiscribe.internal_core import audit
from lexiscribe.internal_core.contracts import ChunkOutcome, JobProgress, TranscriptionJobResult
from lexiscribe.internal_core.oracle import (
    TranscriptionJobError,
    TranscriptionOracle,
    build_oracle,
    transcribe_audio,
    transcribe_audio_sync,
)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?;base64,", flags=re.IGNORECASE)


class TranscribeRequest(BaseModel):
    audio_b64: str = Field(min_length=1)
    mime_type: str = Field(default="", max_length=128)


class TranscribeResponse(BaseModel):
    transcript: list[dict[str, Any]] = Field(default_factory=list)
    vocabulary: list[dict[str, Any]] = Field(default_factory=list)
    chunks: list[ChunkOutcome] = Field(default_factory=list)
    cancelled: bool = False
    transcript_text: str = ""
    meta: dict[str, Any] = Field(default_factory=dict)


class JobCreateResponse(BaseModel):
    job_id: str
    state: str


class JobStatusResponse(BaseModel):
    job_id: str
    state: str
    progress: JobProgress
    cancel_requested: bool = False
    error: str = ""
    chunks: list[ChunkOutcome] = Field(default_factory=list)
    result: TranscribeResponse | None = None
    audit_events: list[dict[str, Any]] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


class JobCancelResponse(BaseModel):
    job_id: str
    state: str
    cancel_requested: bool


app = FastAPI(title="lexiscribe transcription service")
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=getattr(logging, load_config().LEXI_LOG_LEVEL.strip().upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _iso_from_epoch(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _get_config() -> ScribeConfig:
    existing = getattr(app.state, "config", None)
    if isinstance(existing, ScribeConfig):
        return existing
    created = load_config()
    setattr(app.state, "config", created)
    return created


def _get_oracle(cfg: ScribeConfig) -> TranscriptionOracle:
    existing = getattr(app.state, "oracle", None)
    if isinstance(existing, TranscriptionOracle):
        return existing
    try:
        created = build_oracle(cfg)
    except TranscriptionJobError as exc:
        raise HTTPException(status_code=500, detail=f"{exc.code}: {exc.message}") from exc
    setattr(app.state, "oracle", created)
    return created


def _get_job_store() -> InMemoryJobStore:
    existing = getattr(app.state, "job_store", None)
    if isinstance(existing, InMemoryJobStore):
        return existing
    created = InMemoryJobStore(ttl_seconds=_get_config().LEXI_JOB_TTL_SECONDS)
    setattr(app.state, "job_store", created)
    return created


def _decode_request_audio(payload: TranscribeRequest, cfg: ScribeConfig) -> tuple[bytes, str]:
    text = payload.audio_b64.strip()
    mime_type = payload.mime_type.strip()
    data_url = _DATA_URL_RE.match(text)
    if data_url:
        mime_type = mime_type or (data_url.group("mime") or "")
        text = text[data_url.end():]
    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid base64 audio: {exc}") from exc
    if not data:
        raise HTTPException(status_code=400, detail="Decoded audio is empty.")
    if len(data) > cfg.LEXI_MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"Audio exceeds {cfg.LEXI_MAX_UPLOAD_BYTES} bytes.",
        )
    return data, mime_type or "audio/wav"


def _serialize_result(job_result: TranscriptionJobResult) -> TranscribeResponse:
    wire = job_result.result.to_wire()
    return TranscribeResponse(
        transcript=list(wire.get("transcript", [])),
        vocabulary=list(wire.get("vocabulary", [])),
        chunks=list(job_result.chunks),
        cancelled=job_result.cancelled,
        transcript_text=format_for_display(job_result.result),
        meta=dict(job_result.meta),
    )


def _serialize_job(job: dict[str, Any]) -> JobStatusResponse:
    result = job.get("result")
    return JobStatusResponse(
        job_id=str(job["job_id"]),
        state=str(job["state"]),
        progress=job["progress"],
        cancel_requested=bool(job.get("cancel_requested", False)),
        error=str(job.get("error") or ""),
        chunks=list(job.get("chunks") or []),
        result=_serialize_result(result) if isinstance(result, TranscriptionJobResult) else None,
        audit_events=[event.model_dump() for event in job.get("audit_events") or []],
        created_at=_iso_from_epoch(float(job["created_at"])),
        updated_at=_iso_from_epoch(float(job["updated_at"])),
    )


def _run_transcription_job(
    job_id: str,
    data: bytes,
    mime_type: str,
    cfg: ScribeConfig,
    oracle: TranscriptionOracle,
) -> None:
    store = _get_job_store()
    try:
        token = store.cancel_token(job_id)
        store.set_state(job_id, "processing")
    except KeyError:
        return
    audit.log_event(
        store,
        job_id,
        "JOB_STARTED",
        "JOB_START",
        f"bytes={len(data)} mime={mime_type} oracle={oracle.name()} mode={cfg.LEXI_CHUNKING_MODE}",
    )
    started = time.monotonic()

    def _on_progress(message: str, percent: int) -> None:
        store.set_progress(job_id, message, percent)

    def _on_chunk_done(outcome: ChunkOutcome) -> None:
        store.append_chunk_outcome(job_id, outcome)
        if outcome.status == "OK":
            audit.log_event(
                store,
                job_id,
                "CHUNK_DONE",
                "CHUNK_OK",
                f"chunk_index={outcome.chunk_index} lines={outcome.lines} vocabulary={outcome.vocabulary}",
                duration_ms=int(outcome.elapsed_sec * 1000),
            )
        else:
            audit.log_event(
                store,
                job_id,
                "CHUNK_FAILED",
                outcome.error_code or outcome.status,
                f"chunk_index={outcome.chunk_index} status={outcome.status} attempts={outcome.attempts}",
                duration_ms=int(outcome.elapsed_sec * 1000),
            )

    try:
        job_result = transcribe_audio_sync(
            data,
            mime_type,
            oracle=oracle,
            cfg=cfg,
            on_progress=_on_progress,
            on_chunk_done=_on_chunk_done,
            cancel=token,
        )
    except TranscriptionJobError as exc:
        logger.warning("transcription job failed job_id=%s code=%s", job_id, exc.code)
        _fail_job(store, job_id, exc.code, f"{exc.code}: {exc.message}", started)
        return
    except Exception as exc:
        logger.exception("transcription job crashed job_id=%s", job_id)
        _fail_job(store, job_id, "JOB_UNKNOWN", str(exc), started)
        return

    if job_result.cancelled:
        state, event_type, code = "cancelled", "JOB_CANCELLED", "JOB_CANCEL"
    else:
        state, event_type, code = "completed", "JOB_COMPLETED", "JOB_DONE"
    try:
        store.set_result(job_id, job_result)
    except KeyError:
        logger.info("transcription job vanished before completion job_id=%s", job_id)
        return
    # Terminal state goes last: once visible, the audit trail is complete.
    audit.log_event(
        store,
        job_id,
        event_type,
        code,
        f"chunks={len(job_result.chunks)} failed={job_result.meta.get('failed_chunks', 0)} "
        f"lines={len(job_result.result.transcript)}",
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    try:
        store.set_state(job_id, state)
    except KeyError:
        return


def _fail_job(store: InMemoryJobStore, job_id: str, code: str, message: str, started: float) -> None:
    try:
        store.set_error(job_id, message)
    except KeyError:
        return
    audit.log_event(
        store,
        job_id,
        "JOB_FAILED",
        code,
        message,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    try:
        store.set_state(job_id, "failed")
    except KeyError:
        return


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/transcribe", response_model=TranscribeResponse)
async def transcribe(payload: TranscribeRequest) -> TranscribeResponse:
    cfg = _get_config()
    data, mime_type = _decode_request_audio(payload, cfg)
    oracle = _get_oracle(cfg)
    try:
        job_result = await transcribe_audio(data, mime_type, oracle=oracle, cfg=cfg)
    except TranscriptionJobError as exc:
        raise HTTPException(status_code=422, detail=f"{exc.code}: {exc.message}") from exc
    return _serialize_result(job_result)


@app.post("/jobs", response_model=JobCreateResponse)
async def create_job(payload: TranscribeRequest) -> JobCreateResponse:
    cfg = _get_config()
    data, mime_type = _decode_request_audio(payload, cfg)
    oracle = _get_oracle(cfg)
    store = _get_job_store()
    expired = store.cleanup_expired_jobs()
    if expired:
        logger.info("expired jobs removed count=%d", expired)

    job_id = store.create_job(mime_type=mime_type, size_bytes=len(data))
    audit.log_event(store, job_id, "JOB_CREATED", "JOB_QUEUED", f"bytes={len(data)} mime={mime_type}")

    worker = threading.Thread(
        target=_run_transcription_job,
        args=(job_id, data, mime_type, cfg, oracle),
        daemon=True,
    )
    worker.start()
    return JobCreateResponse(job_id=job_id, state="queued")


def _require_job(job_id: str) -> dict[str, Any]:
    normalized_job_id = str(job_id or "").strip()
    try:
        return _get_job_store().get_job(normalized_job_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Transcription job not found: {normalized_job_id}") from exc


@app.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def job_status(job_id: str) -> JobStatusResponse:
    return _serialize_job(_require_job(job_id))


@app.get("/jobs/{job_id}/text", response_class=PlainTextResponse)
async def job_text(job_id: str, include_vocabulary: bool = Query(default=False)) -> PlainTextResponse:
    job = _require_job(job_id)
    result = job.get("result")
    if not isinstance(result, TranscriptionJobResult):
        raise HTTPException(status_code=409, detail=f"Job has no result yet: state={job['state']}")
    return PlainTextResponse(format_for_display(result.result, include_vocabulary=include_vocabulary))


@app.post("/jobs/{job_id}/cancel", response_model=JobCancelResponse)
async def cancel_job(job_id: str) -> JobCancelResponse:
    job = _require_job(job_id)
    requested = _get_job_store().request_cancel(job["job_id"])
    if requested:
        logger.info("cancel requested job_id=%s", job["job_id"])
    job = _require_job(job_id)
    return JobCancelResponse(job_id=job["job_id"], state=job["state"], cancel_requested=job["cancel_requested"])
