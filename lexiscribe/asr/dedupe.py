from __future__ import annotations

"""
Drop repeated utterances produced by neighbouring chunks.

Design intent:
- Two lines are the same utterance when their global starts are within a small
  tolerance and their English text shares a case-insensitive prefix.
- The first line offered wins; later duplicates are dropped.
- Bucket keys by start time so each check only looks at nearby lines.
"""

import re
from dataclasses import dataclass

from lexiscribe.asr.models import TranscriptLine

_WS_RE = re.compile(r"\s+")


def _normalize_prefix(text: str, prefix_chars: int) -> str:
    return _WS_RE.sub(" ", (text or "").strip()).lower()[:prefix_chars]


@dataclass(frozen=True)
class DedupeStats:
    kept: int
    duplicates_dropped: int


class FuzzyLineDeduper:
    def __init__(self, *, epsilon_sec: float = 0.25, prefix_chars: int = 12) -> None:
        if epsilon_sec <= 0:
            raise ValueError("epsilon_sec must be > 0")
        if prefix_chars <= 0:
            raise ValueError("prefix_chars must be > 0")
        self._epsilon_sec = float(epsilon_sec)
        self._prefix_chars = int(prefix_chars)
        self._buckets: dict[int, list[tuple[float, str]]] = {}
        self._kept = 0
        self._dropped = 0

    def offer(self, line: TranscriptLine) -> bool:
        """Return True when `line` is new and has been recorded."""

        start = line.start_time_in_seconds
        prefix = _normalize_prefix(line.english, self._prefix_chars)
        bucket = self._bucket(start)
        for neighbour in (bucket - 1, bucket, bucket + 1):
            for other_start, other_prefix in self._buckets.get(neighbour, ()):
                if abs(other_start - start) < self._epsilon_sec and other_prefix == prefix:
                    self._dropped += 1
                    return False
        self._buckets.setdefault(bucket, []).append((start, prefix))
        self._kept += 1
        return True

    def stats(self) -> DedupeStats:
        return DedupeStats(kept=self._kept, duplicates_dropped=self._dropped)

    def _bucket(self, start: float) -> int:
        return int(start // self._epsilon_sec)
