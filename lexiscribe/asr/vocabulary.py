from __future__ import annotations

"""
Fold per-chunk vocabulary into one list.

Design intent:
- Identity is the word compared case-insensitively; first occurrence wins.
- Deterministic for a fixed chunk order, regardless of completion order.
"""

from typing import Iterable, Sequence

from lexiscribe.asr.models import ChunkResult, VocabularyItem


def merge_vocabulary(results: Sequence[ChunkResult]) -> list[VocabularyItem]:
    merged: list[VocabularyItem] = []
    seen: set[str] = set()
    for result in results:
        _extend_unique(merged, seen, result.vocabulary)
    return merged


def _extend_unique(merged: list[VocabularyItem], seen: set[str], items: Iterable[VocabularyItem]) -> None:
    for item in items:
        key = item.key()
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(item)
