"""Metrics emitted as structured log lines with optional Prometheus export."""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Iterator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter as PromCounter,
    Histogram as PromHistogram,
    generate_latest,
)

_PROM_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")


class MetricsRecorder:
    """Record counters and timings for conversation ingestion and analysis."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        namespace: str = "topicboard",
        logger: logging.Logger | None = None,
        prometheus_enabled: bool = False,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self._enabled = enabled
        self._namespace = namespace.strip() or "topicboard"
        self._logger = logger or logging.getLogger("topicboard.metrics")
        self._prometheus_enabled = prometheus_enabled
        self._registry = registry
        if prometheus_enabled and registry is None:
            self._registry = CollectorRegistry()
        self._counters: dict[tuple[str, tuple[str, ...]], PromCounter] = {}
        self._histograms: dict[tuple[str, tuple[str, ...]], PromHistogram] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def prometheus_enabled(self) -> bool:
        return self._prometheus_enabled and self._registry is not None

    @property
    def prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def render_prometheus(self) -> bytes:
        if not self.prometheus_enabled:
            raise RuntimeError("Prometheus export is disabled")
        return generate_latest(self._registry)

    def increment(self, metric: str, *, value: int = 1, **tags: Any) -> None:
        """Increment a counter metric."""

        if not self._enabled:
            return
        value = int(value)
        clean_tags = _clean_tags(tags)
        self._emit(metric, {"value": value}, clean_tags)
        if self.prometheus_enabled:
            counter = self._collector(self._counters, PromCounter, metric, clean_tags, "counter")
            if clean_tags:
                counter = counter.labels(**_label_values(clean_tags))
            counter.inc(float(max(value, 0)))

    def record_timing(self, metric: str, duration_seconds: float, **tags: Any) -> None:
        """Record a duration; logs carry milliseconds, Prometheus seconds."""

        if not self._enabled:
            return
        duration_seconds = max(duration_seconds, 0.0)
        clean_tags = _clean_tags(tags)
        self._emit(metric, {"duration_ms": round(duration_seconds * 1000.0, 4)}, clean_tags)
        if self.prometheus_enabled:
            histogram = self._collector(self._histograms, PromHistogram, metric, clean_tags, "duration")
            if clean_tags:
                histogram = histogram.labels(**_label_values(clean_tags))
            histogram.observe(duration_seconds)

    @contextmanager
    def track_timing(self, metric: str, **tags: Any) -> Iterator[None]:
        if not self._enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, time.perf_counter() - start, **tags)

    def _emit(self, metric: str, fields: dict[str, Any], tags: dict[str, Any]) -> None:
        segments = [f"{key}={_stringify(value)}" for key, value in sorted(fields.items())]
        segments += [f"{key}={_stringify(value)}" for key, value in sorted(tags.items())]
        message = f"{self._namespace}.{metric}"
        if segments:
            message = f"{message} {' '.join(segments)}"
        self._logger.info(message)

    def _collector(self, cache: dict, factory, metric: str, tags: dict[str, Any], kind: str):
        label_names = tuple(_sanitize_label(name) for name in sorted(tags))
        key = (metric, label_names)
        collector = cache.get(key)
        if collector is None:
            name = f"{_PROM_NAME_RE.sub('_', self._namespace)}_{_PROM_NAME_RE.sub('_', metric)}".strip("_")
            collector = factory(
                name,
                f"{metric} {kind}",
                labelnames=list(label_names),
                registry=self._registry,
            )
            cache[key] = collector
        return collector


def _clean_tags(tags: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in tags.items() if value is not None}


def _label_values(tags: dict[str, Any]) -> dict[str, str]:
    return {_sanitize_label(key): _stringify(value) for key, value in tags.items()}


def _sanitize_label(label: str) -> str:
    return _PROM_NAME_RE.sub("_", label) or "label"


def _stringify(value: Any) -> str:
    if isinstance(value, float):
        return f"{int(value)}" if value.is_integer() else f"{value:.4f}"
    return str(value)


__all__ = ["MetricsRecorder"]
