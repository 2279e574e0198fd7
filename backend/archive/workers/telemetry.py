"""
In-process counters and gauges for the archive worker.

Intent:
    Track extraction outcomes, report runs, batch retries and reports in
    flight without an external metrics backend. Tests read the values back
    through `counter_value`/`gauge_value` and clear them with
    `reset_for_tests`.

Series are keyed by name plus a sorted tuple of label pairs, so
`increment_counter("x", a="1", b="2")` and `increment_counter("x", b="2", a="1")`
hit the same series.
"""
from __future__ import annotations

from collections import Counter
from threading import Lock
from typing import Dict, Tuple

SeriesKey = Tuple[str, Tuple[Tuple[str, str], ...]]


class _Registry:
    def __init__(self) -> None:
        self.counters: Counter[SeriesKey] = Counter()
        self.gauges: Dict[SeriesKey, float] = {}
        self.lock = Lock()

    @staticmethod
    def key(name: str, labels: dict[str, str]) -> SeriesKey:
        return name, tuple(sorted((str(k), str(v)) for k, v in labels.items()))


_REGISTRY = _Registry()


def increment_counter(name: str, *, amount: int = 1, **labels: str) -> None:
    """Add `amount` to one counter series."""
    if not amount:
        return
    series = _Registry.key(name, labels)
    with _REGISTRY.lock:
        _REGISTRY.counters[series] += amount


def adjust_gauge(name: str, delta: float, **labels: str) -> None:
    """Move a gauge by `delta`; the stored value never goes below zero."""
    series = _Registry.key(name, labels)
    with _REGISTRY.lock:
        _REGISTRY.gauges[series] = max(0.0, _REGISTRY.gauges.get(series, 0.0) + float(delta))


def counter_value(name: str, **labels: str) -> int:
    with _REGISTRY.lock:
        return _REGISTRY.counters.get(_Registry.key(name, labels), 0)


def gauge_value(name: str, **labels: str) -> float:
    with _REGISTRY.lock:
        return _REGISTRY.gauges.get(_Registry.key(name, labels), 0.0)


def reset_for_tests() -> None:
    with _REGISTRY.lock:
        _REGISTRY.counters.clear()
        _REGISTRY.gauges.clear()


__all__ = ["increment_counter", "adjust_gauge", "counter_value", "gauge_value", "reset_for_tests"]
