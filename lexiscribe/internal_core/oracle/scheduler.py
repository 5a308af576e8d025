from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from lexiscribe.asr.models import ChunkResult

from ..contracts import ChunkDescriptor, ChunkStatus
from .base import OracleError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]
ChunkProcessor = Callable[[ChunkDescriptor], ChunkResult]


class CancelToken:
    """Thread-safe job cancellation flag with change callbacks."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        for cb in callbacks:
            try:
                cb()
            except Exception:
                logger.exception("cancel callback failed")

    def add_callback(self, cb: Callable[[], None]) -> Callable[[], None]:
        with self._lock:
            fire_now = self._event.is_set()
            if not fire_now:
                self._callbacks.append(cb)
        if fire_now:
            cb()

        def _remove() -> None:
            with self._lock:
                if cb in self._callbacks:
                    self._callbacks.remove(cb)

        return _remove


class ResultSlots:
    """
    Index-aligned result arena. Each slot is written at most once by the task that
    owns it; the whole arena is handed over by `close()`.
    """

    def __init__(self, size: int) -> None:
        self._slots: List[Optional[ChunkResult]] = [None] * size
        self._closed = False

    def __len__(self) -> int:
        return len(self._slots)

    def fill(self, index: int, result: ChunkResult) -> None:
        if self._closed:
            raise RuntimeError("result slots already closed")
        if self._slots[index] is not None:
            raise RuntimeError(f"result slot {index} already filled")
        self._slots[index] = result

    def filled_count(self) -> int:
        return sum(1 for slot in self._slots if slot is not None)

    def close(self) -> List[ChunkResult]:
        self._closed = True
        return [slot if slot is not None else ChunkResult.empty() for slot in self._slots]


@dataclass(frozen=True)
class ChunkTaskReport:
    index: int
    status: ChunkStatus
    result: ChunkResult
    error_code: Optional[str] = None
    attempts: int = 0
    elapsed_sec: float = 0.0


@dataclass(frozen=True)
class ScheduleOutcome:
    results: List[ChunkResult]
    reports: List[ChunkTaskReport]
    cancelled: bool


def _cancelled_report(index: int) -> ChunkTaskReport:
    return ChunkTaskReport(index=index, status="CANCELLED", result=ChunkResult.empty())


class ChunkScheduler:
    """
    Run one blocking chunk processor per chunk with at most `max_concurrency` calls
    in flight. Chunk failures and timeouts degrade to the empty result; only
    cancellation of the surrounding task escapes `run`.

    Calls run on a thread pool owned by each `run`. A call that times out or is
    cancelled keeps its slot until its thread returns, and `run` itself never
    waits for such stragglers.
    """

    def __init__(
        self,
        max_concurrency: int = 2,
        *,
        stagger_sec: float = 0.2,
        chunk_timeout_sec: Optional[float] = 300.0,
        max_attempts: int = 1,
        retry_backoff_sec: float = 0.5,
        progress_range: Tuple[int, int] = (15, 95),
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._max_concurrency = int(max_concurrency)
        self._stagger_sec = max(0.0, float(stagger_sec))
        self._chunk_timeout_sec = chunk_timeout_sec if chunk_timeout_sec and chunk_timeout_sec > 0 else None
        self._max_attempts = max(1, int(max_attempts))
        self._retry_backoff_sec = max(0.0, float(retry_backoff_sec))
        self._progress_range = progress_range

    def percent_for(self, done: int, total: int) -> int:
        low, high = self._progress_range
        if total <= 0:
            return high
        return low + int(math.floor((done / float(total)) * (high - low)))

    async def run(
        self,
        chunks: Sequence[ChunkDescriptor],
        process: ChunkProcessor,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_chunk_done: Optional[Callable[[ChunkTaskReport], None]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ScheduleOutcome:
        total = len(chunks)
        slots = ResultSlots(total)
        reports: List[Optional[ChunkTaskReport]] = [None] * total
        if total == 0:
            return ScheduleOutcome(results=[], reports=[], cancelled=bool(cancel and cancel.cancelled))

        semaphore = asyncio.Semaphore(self._max_concurrency)
        loop = asyncio.get_running_loop()
        cancel_event = asyncio.Event()
        remove_cb: Optional[Callable[[], None]] = None
        if cancel is not None:
            remove_cb = cancel.add_callback(lambda: loop.call_soon_threadsafe(cancel_event.set))
        done = 0

        def _settle(position: int, report: ChunkTaskReport) -> None:
            nonlocal done
            slots.fill(position, report.result)
            reports[position] = report
            done += 1
            _safe_call(on_chunk_done, report)
            _safe_call(
                on_progress,
                f"Transcribing chunks ({done}/{total})",
                self.percent_for(done, total),
            )

        async def _one(position: int, chunk: ChunkDescriptor) -> None:
            if self._stagger_sec > 0 and position > 0:
                await asyncio.sleep(position * self._stagger_sec)
            await semaphore.acquire()
            submitted: List[concurrent.futures.Future] = []
            try:
                if cancel is not None and cancel.cancelled:
                    return
                report = await self._dispatch(chunk, process, executor, submitted)
            finally:
                _release_when_idle(submitted, semaphore, loop)
            _settle(position, report)

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self._max_concurrency,
            thread_name_prefix="lexiscribe-oracle",
        )
        tasks = [asyncio.create_task(_one(pos, chunk)) for pos, chunk in enumerate(chunks)]
        all_done = asyncio.gather(*tasks, return_exceptions=True)
        cancel_wait = asyncio.create_task(cancel_event.wait())
        cancelled = False
        try:
            await asyncio.wait({all_done, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
            if not all_done.done():
                cancelled = True
                logger.info("chunk schedule cancelled settled=%d total=%d", done, total)
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
            if all_done.done() and not all_done.cancelled():
                for res in all_done.result():
                    if isinstance(res, Exception):
                        logger.error("chunk task crashed: %r", res)
        finally:
            cancel_wait.cancel()
            for task in tasks:
                if not task.done():
                    task.cancel()
            if remove_cb is not None:
                remove_cb()
            executor.shutdown(wait=False, cancel_futures=True)

        cancelled = cancelled or bool(cancel and cancel.cancelled and slots.filled_count() < total)
        final_reports = [
            report if report is not None else _cancelled_report(chunks[pos].index)
            for pos, report in enumerate(reports)
        ]
        return ScheduleOutcome(results=slots.close(), reports=final_reports, cancelled=cancelled)

    async def _dispatch(
        self,
        chunk: ChunkDescriptor,
        process: ChunkProcessor,
        executor: concurrent.futures.Executor,
        submitted: List[concurrent.futures.Future],
    ) -> ChunkTaskReport:
        started = time.monotonic()
        attempts = 0
        while True:
            attempts += 1
            try:
                future = executor.submit(process, chunk)
                submitted.append(future)
                call = asyncio.wrap_future(future)
                if self._chunk_timeout_sec is not None:
                    result = await asyncio.wait_for(call, timeout=self._chunk_timeout_sec)
                else:
                    result = await call
                return ChunkTaskReport(
                    index=chunk.index,
                    status="OK",
                    result=result if result is not None else ChunkResult.empty(),
                    attempts=attempts,
                    elapsed_sec=time.monotonic() - started,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "chunk timed out chunk_index=%d timeout_sec=%s attempt=%d",
                    chunk.index,
                    self._chunk_timeout_sec,
                    attempts,
                )
                return self._failed(chunk, "TIMEOUT", "ORACLE_TIMEOUT", attempts, started)
            except OracleError as e:
                if e.transient and attempts < self._max_attempts:
                    logger.info(
                        "retrying chunk chunk_index=%d code=%s attempt=%d",
                        chunk.index,
                        e.code,
                        attempts,
                    )
                    await asyncio.sleep(self._retry_backoff_sec * attempts)
                    continue
                logger.warning(
                    "chunk failed chunk_index=%d provider=%s code=%s detail=%s",
                    chunk.index,
                    e.provider_name,
                    e.code,
                    e.message,
                )
                return self._failed(chunk, "FAILED", e.code, attempts, started)
            except Exception:
                logger.exception("chunk failed chunk_index=%d code=CHUNK_UNKNOWN", chunk.index)
                return self._failed(chunk, "FAILED", "CHUNK_UNKNOWN", attempts, started)

    @staticmethod
    def _failed(
        chunk: ChunkDescriptor,
        status: ChunkStatus,
        code: str,
        attempts: int,
        started: float,
    ) -> ChunkTaskReport:
        return ChunkTaskReport(
            index=chunk.index,
            status=status,
            result=ChunkResult.empty(),
            error_code=code,
            attempts=attempts,
            elapsed_sec=time.monotonic() - started,
        )


def _release_when_idle(
    submitted: Sequence[concurrent.futures.Future],
    semaphore: asyncio.Semaphore,
    loop: asyncio.AbstractEventLoop,
) -> None:
    straggler = next((f for f in submitted if not f.done()), None)
    if straggler is None:
        semaphore.release()
        return

    def _release(_future: concurrent.futures.Future) -> None:
        try:
            loop.call_soon_threadsafe(semaphore.release)
        except RuntimeError:
            # Loop already closed: the run that owned this slot has returned.
            logger.debug("late chunk call finished after its schedule closed")

    straggler.add_done_callback(_release)


def _safe_call(cb, *args) -> None:
    if cb is None:
        return
    try:
        cb(*args)
    except Exception:
        # Progress reporting must never break the schedule.
        logger.exception("scheduler callback failed")
