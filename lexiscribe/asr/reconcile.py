from __future__ import annotations

"""
Fuse chunk-local oracle results into one global transcript.

Design intent:
- One policy object decides which chunk owns a line; there is no second code path.
- Tiling is exact when chunks are cut on sample boundaries; overlap-discard is the
  fallback when chunk timing is only estimated (byte slicing).
- Fuzzy dedupe runs after either policy to catch the same utterance reported twice
  around a boundary.
- Final order is decided only by a stable sort on global start time.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, Sequence

from lexiscribe.asr.dedupe import FuzzyLineDeduper
from lexiscribe.asr.models import ChunkResult, TranscriptionResult, TranscriptLine
from lexiscribe.asr.vocabulary import merge_vocabulary

if TYPE_CHECKING:
    from lexiscribe.internal_core.contracts import ChunkDescriptor

PolicyKind = Literal["tiling", "overlap_discard"]


@dataclass(frozen=True)
class ReconciliationPolicy:
    kind: PolicyKind
    step_sec: float = 0.0
    fuzzy_dedup: bool = True
    epsilon_sec: float = 0.25
    prefix_chars: int = 12

    def __post_init__(self) -> None:
        if self.kind == "tiling" and self.step_sec <= 0:
            raise ValueError("tiling policy requires step_sec > 0")

    @classmethod
    def tiling(cls, step_sec: float, **kwargs) -> "ReconciliationPolicy":
        return cls(kind="tiling", step_sec=float(step_sec), **kwargs)

    @classmethod
    def overlap_discard(cls, **kwargs) -> "ReconciliationPolicy":
        return cls(kind="overlap_discard", **kwargs)


@dataclass(frozen=True)
class ReconcileOutcome:
    lines: list[TranscriptLine]
    not_owned_dropped: int
    duplicates_dropped: int


def chunk_offset(chunk: ChunkDescriptor, policy: ReconciliationPolicy) -> float:
    if policy.kind == "tiling":
        return chunk.index * policy.step_sec
    return chunk.global_start_sec


def ownership_interval(
    chunk: ChunkDescriptor,
    policy: ReconciliationPolicy,
    *,
    is_last: bool,
) -> tuple[float, float]:
    """Chunk-relative [start, end) a chunk claims under `policy`."""

    if policy.kind == "tiling":
        if is_last:
            return 0.0, chunk.duration_sec
        return 0.0, policy.step_sec
    lead = chunk.overlap_sec if chunk.index > 0 else 0.0
    return lead, chunk.duration_sec


def _owns(relative_start: float, chunk: ChunkDescriptor, policy: ReconciliationPolicy, *, is_last: bool) -> bool:
    if policy.kind == "tiling":
        return is_last or relative_start < policy.step_sec
    if chunk.index == 0:
        return True
    return relative_start >= chunk.overlap_sec


def reconcile_chunks(
    chunks: Sequence[ChunkDescriptor],
    results: Sequence[ChunkResult],
    policy: ReconciliationPolicy,
) -> ReconcileOutcome:
    if len(chunks) != len(results):
        raise ValueError(f"chunks/results length mismatch: {len(chunks)} != {len(results)}")

    deduper = (
        FuzzyLineDeduper(epsilon_sec=policy.epsilon_sec, prefix_chars=policy.prefix_chars)
        if policy.fuzzy_dedup
        else None
    )
    last_index = len(chunks) - 1
    lines: list[TranscriptLine] = []
    not_owned = 0

    for position, (chunk, result) in enumerate(zip(chunks, results)):
        is_last = position == last_index
        offset = chunk_offset(chunk, policy)
        for line in result.transcript:
            if not _owns(line.start_time_in_seconds, chunk, policy, is_last=is_last):
                not_owned += 1
                continue
            shifted = line.shifted(offset)
            if deduper is not None and not deduper.offer(shifted):
                continue
            lines.append(shifted)

    duplicates = deduper.stats().duplicates_dropped if deduper is not None else 0
    return ReconcileOutcome(lines=lines, not_owned_dropped=not_owned, duplicates_dropped=duplicates)


def sort_transcript(lines: Sequence[TranscriptLine]) -> list[TranscriptLine]:
    # sorted() is stable: equal starts keep append order.
    return sorted(lines, key=lambda item: item.start_time_in_seconds)


def assemble_result(
    chunks: Sequence[ChunkDescriptor],
    results: Sequence[ChunkResult],
    policy: ReconciliationPolicy,
) -> tuple[TranscriptionResult, ReconcileOutcome]:
    outcome = reconcile_chunks(chunks, results, policy)
    result = TranscriptionResult(
        transcript=sort_transcript(outcome.lines),
        vocabulary=merge_vocabulary(results),
    )
    return result, outcome
