from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

from lexiscribe.asr.reconcile import ReconciliationPolicy, assemble_result

from ..audio_utils import AudioDecodeError, decode_audio, probe_duration
from ..config import ScribeConfig, _project_root, load_config
from ..contracts import ChunkDescriptor, ChunkOutcome, TranscriptionJobResult
from ..segmenter import build_byte_chunks, build_time_chunks, encode_payload
from .base import ChunkMetadata, TranscriptionOracle
from .scheduler import CancelToken, ChunkScheduler, ChunkTaskReport, ProgressCallback

logger = logging.getLogger(__name__)

PROGRESS_DECODE = 5
PROGRESS_SEGMENT = 10
PROGRESS_SCHEDULE = 15
PROGRESS_SCHEDULE_END = 95
PROGRESS_RECONCILE = 98
PROGRESS_DONE = 100


class TranscriptionJobError(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class _MonotonicProgress:
    def __init__(self, cb: Optional[ProgressCallback]) -> None:
        self._cb = cb
        self._last = -1

    def __call__(self, message: str, percent: int) -> None:
        percent = max(0, min(100, int(percent)))
        if percent < self._last:
            return
        self._last = percent
        if self._cb is None:
            return
        try:
            self._cb(message, percent)
        except Exception:
            logger.exception("progress callback failed percent=%d", percent)


def build_policy(cfg: ScribeConfig) -> ReconciliationPolicy:
    kind = cfg.resolved_policy_kind()
    common = dict(
        fuzzy_dedup=bool(cfg.LEXI_FUZZY_DEDUP),
        epsilon_sec=float(cfg.LEXI_DEDUP_EPSILON_SEC),
        prefix_chars=int(cfg.LEXI_DEDUP_PREFIX_CHARS),
    )
    if kind == "tiling":
        return ReconciliationPolicy.tiling(cfg.step_sec, **common)
    return ReconciliationPolicy.overlap_discard(**common)


def build_scheduler(cfg: ScribeConfig) -> ChunkScheduler:
    return ChunkScheduler(
        cfg.LEXI_MAX_CONCURRENCY,
        stagger_sec=cfg.LEXI_STAGGER_SEC,
        chunk_timeout_sec=cfg.LEXI_CHUNK_TIMEOUT_SEC,
        max_attempts=cfg.LEXI_ORACLE_MAX_ATTEMPTS,
        progress_range=(PROGRESS_SCHEDULE, PROGRESS_SCHEDULE_END),
    )


def _segment(data: bytes, mime_type: str, cfg: ScribeConfig) -> List[ChunkDescriptor]:
    tmp_dir = cfg.tmp_dir_path(_project_root())
    tmp_dir.mkdir(parents=True, exist_ok=True)
    if cfg.chunking_mode() == "size":
        duration = probe_duration(data, mime_type, tmp_dir=tmp_dir, max_bytes=cfg.LEXI_MAX_UPLOAD_BYTES)
        return build_byte_chunks(data, mime_type, duration, cfg.LEXI_WINDOW_SEC, cfg.LEXI_OVERLAP_SEC)
    audio = decode_audio(
        data,
        mime_type,
        tmp_dir=tmp_dir,
        sample_rate=cfg.LEXI_SAMPLE_RATE,
        max_bytes=cfg.LEXI_MAX_UPLOAD_BYTES,
    )
    return build_time_chunks(audio, cfg.LEXI_WINDOW_SEC, cfg.LEXI_OVERLAP_SEC)


def _chunk_outcome(chunk: ChunkDescriptor, report: ChunkTaskReport) -> ChunkOutcome:
    return ChunkOutcome(
        chunk_index=chunk.index,
        global_start_sec=float(chunk.global_start_sec),
        duration_sec=float(chunk.duration_sec),
        status=report.status,
        error_code=report.error_code,
        lines=len(report.result.transcript),
        vocabulary=len(report.result.vocabulary),
        attempts=report.attempts,
        elapsed_sec=round(float(report.elapsed_sec), 3),
    )


async def transcribe_audio(
    data: bytes,
    mime_type: str,
    *,
    oracle: TranscriptionOracle,
    cfg: Optional[ScribeConfig] = None,
    on_progress: Optional[ProgressCallback] = None,
    on_chunk_done: Optional[Callable[[ChunkOutcome], None]] = None,
    cancel: Optional[CancelToken] = None,
) -> TranscriptionJobResult:
    """
    Decode, cut, fan out to the oracle and fuse the chunk results.

    Only `TranscriptionJobError` escapes for job-level failures; individual chunk
    failures leave a hole in the transcript and are reported in `chunks`.
    """
    cfg = cfg or load_config()
    progress = _MonotonicProgress(on_progress)
    started = time.monotonic()

    if oracle is None:
        raise TranscriptionJobError("ORACLE_MISSING", "no transcription oracle configured")
    try:
        policy = build_policy(cfg)
        scheduler = build_scheduler(cfg)
    except ValueError as e:
        raise TranscriptionJobError("BAD_CONFIG", str(e)) from e

    logger.info(
        "job started bytes=%d mime=%s mode=%s policy=%s window_sec=%s overlap_sec=%s oracle=%s",
        len(data or b""),
        mime_type,
        cfg.LEXI_CHUNKING_MODE,
        policy.kind,
        cfg.LEXI_WINDOW_SEC,
        cfg.LEXI_OVERLAP_SEC,
        oracle.name(),
    )

    progress("Decoding audio", PROGRESS_DECODE)
    try:
        chunks = await asyncio.to_thread(_segment, data, mime_type, cfg)
    except AudioDecodeError as e:
        logger.warning("job failed code=AUDIO_DECODE_FAILED detail=%s", e)
        raise TranscriptionJobError("AUDIO_DECODE_FAILED", str(e)) from e
    except ValueError as e:
        logger.warning("job failed code=BAD_WINDOW detail=%s", e)
        raise TranscriptionJobError("BAD_WINDOW", str(e)) from e

    total = len(chunks)
    progress(f"Segmented into {total} chunks", PROGRESS_SEGMENT)
    by_index = {chunk.index: chunk for chunk in chunks}
    # The oracle request shares the scheduler deadline; 0 leaves both unbounded.
    timeout = max(0.0, float(cfg.LEXI_CHUNK_TIMEOUT_SEC))

    def _process(chunk: ChunkDescriptor):
        payload = encode_payload(chunk)
        metadata = ChunkMetadata(
            chunk_index=chunk.index,
            chunk_count=total,
            global_offset_sec=float(chunk.global_start_sec),
            duration_sec=float(chunk.duration_sec),
        )
        return oracle.transcribe(payload, chunk.mime_type, metadata, timeout_sec=timeout)

    def _chunk_done(report: ChunkTaskReport) -> None:
        if on_chunk_done is None:
            return
        on_chunk_done(_chunk_outcome(by_index[report.index], report))

    progress("Transcribing chunks", PROGRESS_SCHEDULE)
    schedule = await scheduler.run(
        chunks,
        _process,
        on_progress=progress,
        on_chunk_done=_chunk_done,
        cancel=cancel,
    )

    progress("Reconciling transcript", PROGRESS_RECONCILE)
    result, outcome = assemble_result(chunks, schedule.results, policy)
    outcomes = [_chunk_outcome(chunk, report) for chunk, report in zip(chunks, schedule.reports)]
    failed = sum(1 for o in outcomes if o.status != "OK")

    logger.info(
        "job finished chunks=%d failed=%d cancelled=%s lines=%d vocabulary=%d not_owned=%d duplicates=%d elapsed_sec=%.2f",
        total,
        failed,
        schedule.cancelled,
        len(result.transcript),
        len(result.vocabulary),
        outcome.not_owned_dropped,
        outcome.duplicates_dropped,
        time.monotonic() - started,
    )
    progress("Cancelled" if schedule.cancelled else "Done", PROGRESS_DONE)
    return TranscriptionJobResult(
        result=result,
        chunks=outcomes,
        cancelled=schedule.cancelled,
        meta={
            "oracle": oracle.name(),
            "chunking_mode": cfg.chunking_mode(),
            "policy": policy.kind,
            "window_sec": float(cfg.LEXI_WINDOW_SEC),
            "overlap_sec": float(cfg.LEXI_OVERLAP_SEC),
            "chunk_count": total,
            "failed_chunks": failed,
            "not_owned_dropped": outcome.not_owned_dropped,
            "duplicates_dropped": outcome.duplicates_dropped,
            "elapsed_sec": round(time.monotonic() - started, 3),
        },
    )


def transcribe_audio_sync(
    data: bytes,
    mime_type: str,
    *,
    oracle: TranscriptionOracle,
    cfg: Optional[ScribeConfig] = None,
    on_progress: Optional[ProgressCallback] = None,
    on_chunk_done: Optional[Callable[[ChunkOutcome], None]] = None,
    cancel: Optional[CancelToken] = None,
) -> TranscriptionJobResult:
    return asyncio.run(
        transcribe_audio(
            data,
            mime_type,
            oracle=oracle,
            cfg=cfg,
            on_progress=on_progress,
            on_chunk_done=on_chunk_done,
            cancel=cancel,
        )
    )


def build_oracle(cfg: ScribeConfig) -> TranscriptionOracle:
    provider = (cfg.LEXI_ORACLE_PROVIDER or "gemini").strip().lower()
    if provider == "mock":
        from .mock import MockOracle

        return MockOracle()
    if provider == "gemini":
        from .gemini import GeminiOracle

        return GeminiOracle(
            cfg.LEXI_GEMINI_API_KEY,
            cfg.LEXI_GEMINI_MODEL,
            target_language=cfg.LEXI_TARGET_LANGUAGE,
        )
    raise TranscriptionJobError("BAD_CONFIG", f"Unsupported oracle provider: {cfg.LEXI_ORACLE_PROVIDER}")
