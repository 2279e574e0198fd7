"""
AI and report pipeline configuration for the archive worker.

Intent:
    Provide a single place to read environment variables that control
    adapter selection (DI), model names, timeouts, the local Ollama URL and
    the tuning knobs of the report pipeline (batch threshold, tiering,
    concurrency width, retry spacing, inline size limit).

Why:
    Centralising configuration reduces drift across modules and makes
    validation and defaults explicit. It also lets tests exercise config
    behaviour without booting the worker process.
"""
from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Sequence
from urllib.parse import urlparse


# Upper bound of the tier (inclusive) -> images per batch. The last tier
# covers everything above the previous bound.
DEFAULT_BATCH_TIERS: tuple[tuple[int, int], ...] = (
    (50, 10),
    (100, 10),
    (200, 10),
)
DEFAULT_LARGE_BATCH_SIZE = 5
MAX_INLINE_REPORT_BYTES = 900 * 1024


@dataclass(frozen=True)
class AIConfig:
    backend: str  # "stub" | "local"
    generation_adapter_path: str
    report_model: str
    vision_model: str
    timeout_report_seconds: int
    timeout_vision_seconds: int
    ollama_base_url: str


@dataclass(frozen=True)
class ReportConfig:
    batch_threshold: int = 20
    concurrent_batches: int = 30
    retry_batch_size: int = 2
    retry_delay_seconds: float = 1.0
    max_attempts: int = 2
    max_inline_bytes: int = MAX_INLINE_REPORT_BYTES
    batch_tiers: tuple[tuple[int, int], ...] = DEFAULT_BATCH_TIERS
    large_batch_size: int = DEFAULT_LARGE_BATCH_SIZE
    batch_max_tokens: int = 4000
    single_shot_max_tokens: int = 16000
    extraction_max_tokens: int = 1000
    call_timeout_seconds: float = 120.0

    def __post_init__(self) -> None:
        validate_batch_tiers(self.batch_tiers, self.large_batch_size)
        if self.batch_threshold < 1:
            raise ValueError("batch_threshold must be >= 1")
        if self.concurrent_batches < 1:
            raise ValueError("concurrent_batches must be >= 1")
        if self.retry_batch_size < 1:
            raise ValueError("retry_batch_size must be >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be >= 0")


def validate_batch_tiers(tiers: Sequence[tuple[int, int]], large_batch_size: int) -> None:
    """Reject tier tables whose batch size grows with the total count."""
    previous_bound = 0
    previous_size: int | None = None
    for bound, size in tiers:
        if bound <= previous_bound:
            raise ValueError("batch tier bounds must be strictly increasing")
        if size < 1:
            raise ValueError("batch sizes must be >= 1")
        if previous_size is not None and size > previous_size:
            raise ValueError("batch size must not increase as the total count grows")
        previous_bound, previous_size = bound, size
    if large_batch_size < 1:
        raise ValueError("batch sizes must be >= 1")
    if previous_size is not None and large_batch_size > previous_size:
        raise ValueError("batch size must not increase as the total count grows")


def _int_env(name: str, default: int, *, low: int = 1, high: int = 300) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < low or value > high:
        raise ValueError(f"{name} out of range ({low}..{high}), got: {value}")
    return value


def _float_env(name: str, default: float, *, low: float = 0.0, high: float = 60.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got: {raw!r}")
    if value < low or value > high:
        raise ValueError(f"{name} out of range ({low}..{high}), got: {value}")
    return value


def _validate_ollama_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("OLLAMA_BASE_URL must start with http:// or https://")
    if not parsed.hostname:
        raise ValueError("OLLAMA_BASE_URL must include a hostname")


def _is_prod_like() -> bool:
    env = (os.getenv("ARCHIVE_ENV") or "dev").lower()
    return env in {"prod", "production", "stage", "staging"}


def load_ai_config() -> AIConfig:
    """
    Parse and validate AI-related configuration from environment variables.

    Behavior:
        - `AI_BACKEND` selects the DI alias: "stub" or "local" (default: stub).
        - `ARCHIVE_GENERATION_ADAPTER` overrides the dotted adapter path.
        - Validates timeouts (1..600 seconds) and the Ollama base URL shape.
    """
    backend = (os.getenv("AI_BACKEND") or "stub").strip().lower()
    if backend not in {"stub", "local"}:
        raise ValueError("AI_BACKEND must be 'stub' or 'local'")
    if backend == "stub" and _is_prod_like():
        raise ValueError("AI_BACKEND=stub is not allowed in production/staging environments.")

    default_adapter = (
        "backend.archive.adapters.local_generation"
        if backend == "local"
        else "backend.archive.adapters.stub_generation"
    )
    adapter_path = os.getenv("ARCHIVE_GENERATION_ADAPTER", default_adapter)

    ollama_url = os.getenv("OLLAMA_BASE_URL", "http://ollama:11434")
    _validate_ollama_url(ollama_url)

    return AIConfig(
        backend=backend,
        generation_adapter_path=adapter_path,
        report_model=os.getenv("AI_REPORT_MODEL", "qwen2.5vl:7b"),
        vision_model=os.getenv("AI_VISION_MODEL", "qwen2.5vl:3b"),
        timeout_report_seconds=_int_env("AI_TIMEOUT_REPORT", 120, high=600),
        timeout_vision_seconds=_int_env("AI_TIMEOUT_VISION", 30, high=600),
        ollama_base_url=ollama_url,
    )


def load_report_config() -> ReportConfig:
    """Parse the report pipeline knobs; unset variables keep the defaults."""
    return ReportConfig(
        batch_threshold=_int_env("REPORT_BATCH_THRESHOLD", 20, high=1000),
        concurrent_batches=_int_env("REPORT_CONCURRENT_BATCHES", 30, high=200),
        retry_batch_size=_int_env("REPORT_RETRY_BATCH_SIZE", 2, high=50),
        retry_delay_seconds=_float_env("REPORT_RETRY_DELAY_SECONDS", 1.0),
        max_attempts=_int_env("REPORT_MAX_ATTEMPTS", 2, high=5),
        max_inline_bytes=_int_env("REPORT_MAX_INLINE_BYTES", MAX_INLINE_REPORT_BYTES, high=MAX_INLINE_REPORT_BYTES),
        call_timeout_seconds=float(_int_env("AI_TIMEOUT_REPORT", 120, high=600)),
    )


__all__ = [
    "AIConfig",
    "ReportConfig",
    "DEFAULT_BATCH_TIERS",
    "DEFAULT_LARGE_BATCH_SIZE",
    "MAX_INLINE_REPORT_BYTES",
    "validate_batch_tiers",
    "load_ai_config",
    "load_report_config",
]
