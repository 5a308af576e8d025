from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator, List, Tuple, Union

from .audio_utils import DecodedAudio, encode_wav16k_mono
from .contracts import AudioWindow, ChunkDescriptor

Number = Union[int, float]


@dataclass(frozen=True)
class WindowPlan:
    index: int
    start_sec: float
    end_sec: float
    overlap_sec: float

    @property
    def duration_sec(self) -> float:
        return self.end_sec - self.start_sec


@dataclass(frozen=True)
class ByteWindowPlan:
    index: int
    start_byte: int
    end_byte: int
    overlap_bytes: int


def validate_window(window: Number, overlap: Number) -> Number:
    """Return the step between window starts, rejecting unusable configurations."""
    if window <= 0:
        raise ValueError("window must be > 0")
    if overlap < 0:
        raise ValueError("overlap must be >= 0")
    if overlap >= window:
        raise ValueError(f"overlap ({overlap}) must be smaller than window ({window})")
    return window - overlap


def _iter_spans(total: Number, window: Number, step: Number) -> Iterator[Tuple[int, Number, Number, Number]]:
    # start is index * step (never accumulated) so float drift cannot open gaps.
    idx = 0
    prev_end: Number = 0
    while True:
        start = idx * step
        if start >= total:
            return
        end = min(start + window, total)
        overlap = max(0, prev_end - start) if idx > 0 else 0
        yield idx, start, end, overlap
        if end >= total:
            return
        prev_end = end
        idx += 1


def plan_time_windows(total_duration_sec: float, window_sec: float, overlap_sec: float) -> List[WindowPlan]:
    step = validate_window(float(window_sec), float(overlap_sec))
    if total_duration_sec <= 0:
        return []
    return [
        WindowPlan(index=idx, start_sec=float(start), end_sec=float(end), overlap_sec=float(overlap))
        for idx, start, end, overlap in _iter_spans(float(total_duration_sec), float(window_sec), step)
    ]


def plan_byte_windows(total_bytes: int, window_bytes: int, overlap_bytes: int) -> List[ByteWindowPlan]:
    step = validate_window(int(window_bytes), int(overlap_bytes))
    if total_bytes <= 0:
        return []
    return [
        ByteWindowPlan(index=idx, start_byte=int(start), end_byte=int(end), overlap_bytes=int(overlap))
        for idx, start, end, overlap in _iter_spans(int(total_bytes), int(window_bytes), int(step))
    ]


def expected_window_count(total_duration_sec: float, window_sec: float, overlap_sec: float) -> int:
    step = validate_window(float(window_sec), float(overlap_sec))
    if total_duration_sec <= 0:
        return 0
    return max(1, math.ceil((total_duration_sec - overlap_sec) / step))


def build_time_chunks(
    audio: DecodedAudio,
    window_sec: float,
    overlap_sec: float,
) -> List[ChunkDescriptor]:
    """Cut decoded audio on sample boundaries; payloads are encoded at dispatch time."""
    sr = int(audio.sample_rate)
    n = int(audio.samples.shape[0])
    chunks: List[ChunkDescriptor] = []
    for plan in plan_time_windows(audio.duration_sec, window_sec, overlap_sec):
        start_sample = min(n, int(round(plan.start_sec * sr)))
        end_sample = min(n, int(round(plan.end_sec * sr)))
        if plan.end_sec >= audio.duration_sec:
            end_sample = n
        chunks.append(
            ChunkDescriptor(
                index=plan.index,
                global_start_sec=start_sample / float(sr),
                duration_sec=(end_sample - start_sample) / float(sr),
                overlap_sec=plan.overlap_sec,
                mime_type="audio/wav",
                payload=AudioWindow(samples=audio.samples[start_sample:end_sample], sample_rate=sr),
            )
        )
    return chunks


def build_byte_chunks(
    data: bytes,
    mime_type: str,
    total_duration_sec: float,
    window_sec: float,
    overlap_sec: float,
) -> List[ChunkDescriptor]:
    """
    Slice the encoded file by size when only an estimate of timing is available.
    Offsets assume a constant bitrate: offset = byte_offset / total_bytes * duration.
    """
    validate_window(float(window_sec), float(overlap_sec))
    total_bytes = len(data)
    if total_bytes <= 0 or total_duration_sec <= 0:
        return []
    bytes_per_sec = total_bytes / float(total_duration_sec)
    window_bytes = max(1, int(math.ceil(window_sec * bytes_per_sec)))
    overlap_bytes = min(window_bytes - 1, int(math.floor(overlap_sec * bytes_per_sec)))

    def _to_sec(n_bytes: int) -> float:
        return (n_bytes / float(total_bytes)) * float(total_duration_sec)

    return [
        ChunkDescriptor(
            index=plan.index,
            global_start_sec=_to_sec(plan.start_byte),
            duration_sec=_to_sec(plan.end_byte - plan.start_byte),
            overlap_sec=_to_sec(plan.overlap_bytes),
            mime_type=mime_type,
            payload=data[plan.start_byte : plan.end_byte],
        )
        for plan in plan_byte_windows(total_bytes, window_bytes, overlap_bytes)
    ]


def encode_payload(chunk: ChunkDescriptor) -> bytes:
    if isinstance(chunk.payload, AudioWindow):
        return encode_wav16k_mono(chunk.payload.samples, chunk.payload.sample_rate)
    return bytes(chunk.payload)
