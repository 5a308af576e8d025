from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _project_root() -> Path:
    # lexiscribe/internal_core/config.py -> lexiscribe -> repo root
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_set(name: str) -> bool:
    value = os.getenv(name)
    return value is not None and value != ""


def _getenv_int_preset(name: str, default: int, preset_value: Optional[int]) -> int:
    if _env_set(name):
        return _getenv_int(name, default)
    if preset_value is not None:
        return int(preset_value)
    return default


def _getenv_float_preset(name: str, default: float, preset_value: Optional[float]) -> float:
    if _env_set(name):
        return _getenv_float(name, default)
    if preset_value is not None:
        return float(preset_value)
    return default


def _getenv_str_preset(name: str, default: str, preset_value: Optional[str]) -> str:
    if _env_set(name):
        return _getenv_str(name, default)
    if preset_value is not None:
        return str(preset_value)
    return default


def _preset_overrides(name: str) -> dict[str, object]:
    if name == "short_clips_v1":
        return {
            "LEXI_WINDOW_SEC": 120.0,
            "LEXI_OVERLAP_SEC": 15.0,
            "LEXI_MAX_CONCURRENCY": 3,
        }
    if name == "size_estimate_v1":
        return {
            "LEXI_CHUNKING_MODE": "size",
            "LEXI_RECONCILE_POLICY": "overlap_discard",
            "LEXI_DEDUP_EPSILON_SEC": 0.3,
        }
    return {}


@dataclass(frozen=True)
class ScribeConfig:
    LEXI_PRESET: str
    LEXI_WINDOW_SEC: float
    LEXI_OVERLAP_SEC: float
    LEXI_CHUNKING_MODE: str
    LEXI_RECONCILE_POLICY: str
    LEXI_FUZZY_DEDUP: bool
    LEXI_DEDUP_EPSILON_SEC: float
    LEXI_DEDUP_PREFIX_CHARS: int
    LEXI_MAX_CONCURRENCY: int
    LEXI_STAGGER_SEC: float
    LEXI_CHUNK_TIMEOUT_SEC: float
    LEXI_ORACLE_MAX_ATTEMPTS: int
    LEXI_ORACLE_PROVIDER: str
    LEXI_GEMINI_MODEL: str
    LEXI_GEMINI_API_KEY: str
    LEXI_TARGET_LANGUAGE: str
    LEXI_SAMPLE_RATE: int
    LEXI_MAX_UPLOAD_BYTES: int
    LEXI_TMP_DIR: str
    LEXI_JOB_TTL_SECONDS: int
    LEXI_LOG_LEVEL: str

    @property
    def step_sec(self) -> float:
        return self.LEXI_WINDOW_SEC - self.LEXI_OVERLAP_SEC

    def resolved_policy_kind(self) -> str:
        policy = (self.LEXI_RECONCILE_POLICY or "auto").strip().lower()
        if policy in {"tiling", "overlap_discard"}:
            return policy
        if policy != "auto":
            raise ValueError(f"Unsupported reconcile policy: {self.LEXI_RECONCILE_POLICY}")
        return "overlap_discard" if self.chunking_mode() == "size" else "tiling"

    def chunking_mode(self) -> str:
        mode = (self.LEXI_CHUNKING_MODE or "duration").strip().lower()
        if mode not in {"duration", "size"}:
            raise ValueError(f"Unsupported chunking mode: {self.LEXI_CHUNKING_MODE}")
        return mode

    def tmp_dir_path(self, repo_root: Path) -> Path:
        return (repo_root / self.LEXI_TMP_DIR).resolve()


def load_config() -> ScribeConfig:
    preset_name = _getenv_str("LEXI_PRESET", "")
    preset = _preset_overrides(preset_name)

    api_key = _getenv_str(
        "LEXI_GEMINI_API_KEY",
        _getenv_str("GEMINI_API_KEY", _getenv_str("API_KEY", "")),
    )

    return ScribeConfig(
        LEXI_PRESET=preset_name,
        LEXI_WINDOW_SEC=_getenv_float_preset("LEXI_WINDOW_SEC", 180.0, preset.get("LEXI_WINDOW_SEC")),
        LEXI_OVERLAP_SEC=_getenv_float_preset("LEXI_OVERLAP_SEC", 20.0, preset.get("LEXI_OVERLAP_SEC")),
        LEXI_CHUNKING_MODE=_getenv_str_preset("LEXI_CHUNKING_MODE", "duration", preset.get("LEXI_CHUNKING_MODE")),
        LEXI_RECONCILE_POLICY=_getenv_str_preset(
            "LEXI_RECONCILE_POLICY", "auto", preset.get("LEXI_RECONCILE_POLICY")
        ),
        LEXI_FUZZY_DEDUP=_getenv_bool("LEXI_FUZZY_DEDUP", True),
        LEXI_DEDUP_EPSILON_SEC=_getenv_float_preset(
            "LEXI_DEDUP_EPSILON_SEC", 0.25, preset.get("LEXI_DEDUP_EPSILON_SEC")
        ),
        LEXI_DEDUP_PREFIX_CHARS=_getenv_int("LEXI_DEDUP_PREFIX_CHARS", 12),
        LEXI_MAX_CONCURRENCY=_getenv_int_preset("LEXI_MAX_CONCURRENCY", 2, preset.get("LEXI_MAX_CONCURRENCY")),
        LEXI_STAGGER_SEC=_getenv_float("LEXI_STAGGER_SEC", 0.2),
        LEXI_CHUNK_TIMEOUT_SEC=_getenv_float("LEXI_CHUNK_TIMEOUT_SEC", 300.0),
        LEXI_ORACLE_MAX_ATTEMPTS=_getenv_int("LEXI_ORACLE_MAX_ATTEMPTS", 1),
        LEXI_ORACLE_PROVIDER=_getenv_str("LEXI_ORACLE_PROVIDER", "gemini"),
        LEXI_GEMINI_MODEL=_getenv_str("LEXI_GEMINI_MODEL", "gemini-2.5-flash"),
        LEXI_GEMINI_API_KEY=api_key,
        LEXI_TARGET_LANGUAGE=_getenv_str("LEXI_TARGET_LANGUAGE", "Traditional Chinese (Taiwan)"),
        LEXI_SAMPLE_RATE=_getenv_int("LEXI_SAMPLE_RATE", 16000),
        LEXI_MAX_UPLOAD_BYTES=_getenv_int("LEXI_MAX_UPLOAD_BYTES", 200 * 1024 * 1024),
        LEXI_TMP_DIR=_getenv_str("LEXI_TMP_DIR", "./tmp"),
        LEXI_JOB_TTL_SECONDS=_getenv_int("LEXI_JOB_TTL_SECONDS", 14400),
        LEXI_LOG_LEVEL=_getenv_str("LEXI_LOG_LEVEL", "INFO"),
    )
