from __future__ import annotations

import io
import logging
import shutil
import subprocess
import tempfile
import uuid
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

_WAV_MIME_TYPES = {"audio/wav", "audio/x-wav", "audio/wave", "audio/vnd.wave"}

_MIME_SUFFIXES = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/aac": ".aac",
    "audio/ogg": ".ogg",
    "audio/webm": ".webm",
    "audio/flac": ".flac",
    "video/mp4": ".mp4",
}


class AudioDecodeError(ValueError):
    """Raised when the source audio cannot be decoded into PCM samples."""


@dataclass(frozen=True)
class DecodedAudio:
    sample_rate: int
    samples: np.ndarray
    duration_sec: float


def _which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def enforce_max_size_bytes(size: int, max_bytes: int) -> None:
    if size > max_bytes:
        raise AudioDecodeError(
            f"Audio file too large ({size / (1024 * 1024):.1f}MB), "
            f"max allowed is {max_bytes / (1024 * 1024):.1f}MB"
        )


def _is_wav(data: bytes, mime_type: str) -> bool:
    if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
        return True
    return (mime_type or "").split(";")[0].strip().lower() in _WAV_MIME_TYPES


def _pcm_to_float32(raw: bytes, sampwidth: int) -> np.ndarray:
    if sampwidth == 1:
        return (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    if sampwidth == 2:
        return np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    if sampwidth == 3:
        triples = np.frombuffer(raw, dtype=np.uint8)
        triples = triples[: (triples.size // 3) * 3].reshape(-1, 3).astype(np.int32)
        ints = triples[:, 0] | (triples[:, 1] << 8) | (triples[:, 2] << 16)
        ints = np.where(ints & 0x800000, ints - 0x1000000, ints)
        return ints.astype(np.float32) / 8388608.0
    if sampwidth == 4:
        return np.frombuffer(raw, dtype="<i4").astype(np.float32) / 2147483648.0
    raise AudioDecodeError(f"Unsupported WAV sample width: {sampwidth}")


def to_mono(samples: np.ndarray, channels: int) -> np.ndarray:
    if channels <= 1:
        return samples.astype(np.float32, copy=False)
    usable = samples[: (samples.size // channels) * channels]
    return usable.reshape(-1, channels).mean(axis=1).astype(np.float32)


def resample_linear(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate or samples.size == 0:
        return samples.astype(np.float32, copy=False)
    n_out = int(round(samples.size * float(dst_rate) / float(src_rate)))
    if n_out <= 0:
        return np.zeros(0, dtype=np.float32)
    src_t = np.arange(samples.size, dtype=np.float64) / float(src_rate)
    dst_t = np.arange(n_out, dtype=np.float64) / float(dst_rate)
    return np.interp(dst_t, src_t, samples).astype(np.float32)


def _decoded(samples: np.ndarray, sample_rate: int) -> DecodedAudio:
    samples = np.asarray(samples, dtype=np.float32).clip(-1.0, 1.0)
    duration = samples.size / float(sample_rate) if sample_rate else 0.0
    return DecodedAudio(sample_rate=sample_rate, samples=samples, duration_sec=duration)


def decode_wav_bytes(data: bytes, *, sample_rate: int = 16000) -> DecodedAudio:
    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            channels = wf.getnchannels()
            rate = wf.getframerate()
            width = wf.getsampwidth()
            raw = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        raise AudioDecodeError(f"Invalid WAV data: {e}")
    if not rate:
        raise AudioDecodeError("Invalid WAV data: zero sample rate")
    audio = to_mono(_pcm_to_float32(raw, width), channels)
    return _decoded(resample_linear(audio, rate, sample_rate), sample_rate)


def _decode_with_ffmpeg(
    ffmpeg: str,
    data: bytes,
    mime_type: str,
    *,
    tmp_dir: Path,
    sample_rate: int,
) -> DecodedAudio:
    # Containers like mp4/m4a need a seekable input, so go through a temp file.
    tmp_dir.mkdir(parents=True, exist_ok=True)
    suffix = _MIME_SUFFIXES.get((mime_type or "").split(";")[0].strip().lower(), ".bin")
    src_path = tmp_dir / f"decode_{uuid.uuid4().hex}{suffix}"
    src_path.write_bytes(data)
    cmd = [
        ffmpeg,
        "-nostdin",
        "-i",
        str(src_path),
        "-f",
        "s16le",
        "-ac",
        "1",
        "-ar",
        str(sample_rate),
        "-",
    ]
    try:
        res = subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except subprocess.CalledProcessError as e:
        stderr = (
            e.stderr.decode("utf-8", "ignore")
            if isinstance(e.stderr, (bytes, bytearray))
            else str(e.stderr)
        )
        lines = [line for line in stderr.strip().splitlines() if line.strip()]
        raise AudioDecodeError(
            f"Audio conversion failed via ffmpeg: {lines[-1] if lines else 'unknown error'}"
        )
    finally:
        src_path.unlink(missing_ok=True)
    if not res.stdout:
        raise AudioDecodeError("Audio conversion via ffmpeg produced no samples")
    return _decoded(_pcm_to_float32(res.stdout, 2), sample_rate)


def _decode_with_miniaudio(data: bytes, *, sample_rate: int) -> DecodedAudio:
    try:
        import miniaudio  # type: ignore
    except Exception:
        raise AudioDecodeError(
            "Audio decoding requires `ffmpeg` or the Python dependency `miniaudio`."
        )
    try:
        decoded = miniaudio.decode(
            data,
            output_format=miniaudio.SampleFormat.SIGNED16,
            nchannels=1,
            sample_rate=sample_rate,
        )
    except Exception as e:
        raise AudioDecodeError(f"Audio conversion failed: {e}")
    # decoded.samples is an array('h') for SIGNED16
    return _decoded(_pcm_to_float32(decoded.samples.tobytes(), 2), sample_rate)


def decode_audio(
    data: bytes,
    mime_type: str,
    *,
    tmp_dir: Optional[Path] = None,
    sample_rate: int = 16000,
    max_bytes: int = 200 * 1024 * 1024,
) -> DecodedAudio:
    """
    Decode any supported audio to mono float32 at `sample_rate`.
    Integer PCM WAV is read directly; anything else (float WAV included) prefers
    ffmpeg and falls back to `miniaudio`.
    """
    if not data:
        raise AudioDecodeError("Audio payload is empty")
    enforce_max_size_bytes(len(data), max_bytes)

    if _is_wav(data, mime_type):
        try:
            return decode_wav_bytes(data, sample_rate=sample_rate)
        except AudioDecodeError as e:
            logger.debug("direct WAV read failed, converting instead: %s", e)

    ffmpeg = _which("ffmpeg")
    if ffmpeg:
        if tmp_dir is None:
            with tempfile.TemporaryDirectory(prefix="lexiscribe_decode_") as scratch:
                return _decode_with_ffmpeg(
                    ffmpeg, data, mime_type, tmp_dir=Path(scratch), sample_rate=sample_rate
                )
        return _decode_with_ffmpeg(ffmpeg, data, mime_type, tmp_dir=tmp_dir, sample_rate=sample_rate)

    return _decode_with_miniaudio(data, sample_rate=sample_rate)


def probe_duration(
    data: bytes,
    mime_type: str,
    *,
    tmp_dir: Optional[Path] = None,
    max_bytes: int = 200 * 1024 * 1024,
) -> float:
    # A low probe rate keeps the side decode cheap; only the length matters.
    return decode_audio(
        data, mime_type, tmp_dir=tmp_dir, sample_rate=8000, max_bytes=max_bytes
    ).duration_sec


def encode_wav16k_mono(samples: np.ndarray, sample_rate: int = 16000) -> bytes:
    audio = np.asarray(samples, dtype=np.float32).clip(-1.0, 1.0)
    audio_i16 = (audio * 32767.0).round().astype("<i2")
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(audio_i16.tobytes())
    return buf.getvalue()
