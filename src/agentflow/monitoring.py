"""Metrics, tracing spans and structured events for executions."""
from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

NO_LABELS = "__no_labels__"


class MetricsRecorder:
    """In-memory metrics recorder used for tests and single-process deployments."""

    def __init__(self) -> None:
        self.counters: Dict[str, Dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self.histograms: Dict[str, Dict[str, List[float]]] = defaultdict(dict)
        self._lock = threading.Lock()

    def inc(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 1) -> None:
        labels_key = self._labels_key(labels)
        with self._lock:
            self.counters[name][labels_key] += value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        labels_key = self._labels_key(labels)
        with self._lock:
            self.histograms[name].setdefault(labels_key, []).append(value)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self.counters[name].get(self._labels_key(labels), 0.0)

    def get_histogram(self, name: str, labels: Optional[Dict[str, str]] = None) -> List[float]:
        return list(self.histograms[name].get(self._labels_key(labels), []))

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": {name: dict(values) for name, values in self.counters.items()},
                "histograms": {
                    name: {
                        key: {"count": len(values), "sum": sum(values)}
                        for key, values in series.items()
                    }
                    for name, series in self.histograms.items()
                },
            }

    def _labels_key(self, labels: Optional[Dict[str, str]]) -> str:
        if not labels:
            return NO_LABELS
        return "|".join(f"{k}={v}" for k, v in sorted(labels.items()))


class TracingManager:
    """Very small tracing helper producing structured debug logs."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("agentflow.tracing")

    @contextmanager
    def span(self, name: str, **attrs: str) -> Iterator[None]:
        start = time.monotonic()
        self.logger.debug("Span start %s", name, extra={"span": name, **attrs})
        try:
            yield
        finally:
            duration = time.monotonic() - start
            self.logger.debug(
                "Span end %s (%.3fs)", name, duration,
                extra={"span": name, "duration": duration, **attrs},
            )


class EventLogger:
    """Structured event logger for workflow executions."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("agentflow.events")

    def log(self, event: str, **payload: Any) -> None:
        self.logger.info(event, extra={"event": event, **payload})
