"""
Archive configuration: adapter selection, env validation and tier tables.
"""
from __future__ import annotations

import pytest

from backend.archive.config import (
    DEFAULT_BATCH_TIERS,
    MAX_INLINE_REPORT_BYTES,
    ReportConfig,
    load_ai_config,
    load_report_config,
    validate_batch_tiers,
)


def test_defaults_select_stub_adapter(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("AI_BACKEND", "ARCHIVE_GENERATION_ADAPTER", "OLLAMA_BASE_URL", "AI_TIMEOUT_REPORT"):
        monkeypatch.delenv(var, raising=False)
    cfg = load_ai_config()
    assert cfg.backend == "stub"
    assert cfg.generation_adapter_path == "backend.archive.adapters.stub_generation"
    assert cfg.timeout_report_seconds == 120


def test_local_backend_and_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_BACKEND", "local")
    monkeypatch.delenv("ARCHIVE_GENERATION_ADAPTER", raising=False)
    assert load_ai_config().generation_adapter_path == "backend.archive.adapters.local_generation"
    monkeypatch.setenv("ARCHIVE_GENERATION_ADAPTER", "custom.module")
    assert load_ai_config().generation_adapter_path == "custom.module"


def test_stub_rejected_in_production(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_BACKEND", "stub")
    monkeypatch.setenv("ARCHIVE_ENV", "prod")
    with pytest.raises(ValueError):
        load_ai_config()


@pytest.mark.parametrize(
    "var, value",
    [
        ("AI_BACKEND", "cloud"),
        ("OLLAMA_BASE_URL", "ollama:11434"),
        ("OLLAMA_BASE_URL", "http://"),
        ("AI_TIMEOUT_REPORT", "0"),
        ("AI_TIMEOUT_VISION", "abc"),
    ],
)
def test_invalid_ai_env_raises(monkeypatch: pytest.MonkeyPatch, var: str, value: str) -> None:
    monkeypatch.setenv(var, value)
    with pytest.raises(ValueError):
        load_ai_config()


def test_report_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REPORT_BATCH_THRESHOLD", "10")
    monkeypatch.setenv("REPORT_CONCURRENT_BATCHES", "4")
    monkeypatch.setenv("REPORT_RETRY_DELAY_SECONDS", "0.25")
    cfg = load_report_config()
    assert cfg.batch_threshold == 10
    assert cfg.concurrent_batches == 4
    assert cfg.retry_delay_seconds == 0.25
    assert cfg.max_inline_bytes == MAX_INLINE_REPORT_BYTES
    assert cfg.batch_tiers == DEFAULT_BATCH_TIERS


@pytest.mark.parametrize(
    "var, value",
    [
        ("REPORT_CONCURRENT_BATCHES", "0"),
        ("REPORT_RETRY_BATCH_SIZE", "x"),
        ("REPORT_RETRY_DELAY_SECONDS", "-1"),
        ("REPORT_MAX_INLINE_BYTES", str(MAX_INLINE_REPORT_BYTES + 1)),
    ],
)
def test_invalid_report_env_raises(monkeypatch: pytest.MonkeyPatch, var: str, value: str) -> None:
    monkeypatch.setenv(var, value)
    with pytest.raises(ValueError):
        load_report_config()


def test_tier_tables_must_not_grow() -> None:
    validate_batch_tiers(((10, 8), (20, 4)), 2)
    with pytest.raises(ValueError):
        validate_batch_tiers(((10, 4), (20, 8)), 2)
    with pytest.raises(ValueError):
        validate_batch_tiers(((20, 4), (10, 2)), 1)
    with pytest.raises(ValueError):
        ReportConfig(batch_tiers=((50, 5),), large_batch_size=10)
