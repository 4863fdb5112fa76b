"""Counters, timings and gauges for the pipeline service.

Every emission is logged as a ``lead_pipeline.metric`` record. With the
``statsd`` backend it is also sent over UDP; statsd has no tag support, so
tags listed in ``STATSD_NAME_TAGS`` are folded into the metric name
(``pipeline.status.updated.trigger.manual``) and the rest stay log-only.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Final

from statsd import StatsClient

from leadflow.config import Settings, settings

logger = logging.getLogger("leadflow.metrics")

# Low-cardinality tags safe to encode into statsd metric names.
STATSD_NAME_TAGS: Final = ("table", "kind", "trigger", "event", "reason")


class MetricsReporter:
    """Metrics emitter with a stdout (log) backend and an optional StatsD backend."""

    def __init__(self, config: Settings | None = None) -> None:
        config = config or settings
        self._disabled = config.metrics_disable
        self._namespace = config.metrics_namespace or "lead_pipeline"
        self._backend = (config.metrics_backend or "stdout").lower()
        self._sample_rate = max(0.0, min(config.metrics_sample_rate, 1.0))
        self._statsd: StatsClient | None = None
        if self._backend == "statsd" and not self._disabled:
            try:
                self._statsd = StatsClient(
                    host=config.metrics_statsd_host,
                    port=config.metrics_statsd_port,
                    prefix=self._namespace,
                )
            except OSError as exc:
                self._log_backend_error("statsd.init", exc)

    @property
    def enabled(self) -> bool:
        return not self._disabled

    def increment(
        self, metric: str, value: float = 1.0, *, tags: dict[str, Any] | None = None
    ) -> None:
        self._emit("counter", metric, value, tags=tags)

    def timing(self, metric: str, value_ms: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("timing", metric, value_ms, tags=tags)

    def gauge(self, metric: str, value: float, *, tags: dict[str, Any] | None = None) -> None:
        self._emit("gauge", metric, value, tags=tags)

    @contextmanager
    def timer(self, metric: str, *, tags: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        """Time the block in milliseconds.

        Yields the tag dict so the block can add outcome tags before the
        timing is emitted; the timing is emitted on error exits too.
        """
        block_tags: dict[str, Any] = dict(tags or {})
        started = time.perf_counter()
        try:
            yield block_tags
        finally:
            self.timing(metric, (time.perf_counter() - started) * 1000, tags=block_tags)

    def _emit(
        self, metric_type: str, metric: str, value: float, *, tags: dict[str, Any] | None
    ) -> None:
        if self._disabled or value is None:
            return
        sample_rate = 1.0 if metric_type == "gauge" else self._sample_rate
        if sample_rate < 1.0 and secrets.randbelow(1_000_000) / 1_000_000 > sample_rate:
            return
        name = self._qualified(metric)
        payload: dict[str, Any] = {
            "metric": name,
            "value": round(float(value), 4),
            "type": metric_type,
            "tags": tags or {},
        }
        if sample_rate < 1.0:
            payload["sample_rate"] = round(sample_rate, 4)
        logger.info("lead_pipeline.metric", extra={"metrics": payload})
        if self._statsd is not None:
            self._send_statsd(metric_type, statsd_name(metric, tags), value, sample_rate)

    def _send_statsd(self, metric_type: str, name: str, value: float, rate: float) -> None:
        try:
            if metric_type == "timing":
                self._statsd.timing(name, value, rate=rate)
            elif metric_type == "gauge":
                self._statsd.gauge(name, value)
            else:
                self._statsd.incr(name, value, rate=rate)
        except OSError as exc:
            self._log_backend_error(name, exc)

    def _qualified(self, metric: str) -> str:
        trimmed = (metric or "").strip()
        if trimmed.startswith(f"{self._namespace}."):
            return trimmed
        return f"{self._namespace}.{trimmed}" if trimmed else self._namespace

    def _log_backend_error(self, metric: str, exc: Exception) -> None:
        logger.warning(
            "metrics.backend_error",
            extra={"metric": metric, "backend": self._backend, "error": type(exc).__name__},
        )


def statsd_name(metric: str, tags: dict[str, Any] | None = None) -> str:
    """Fold name-safe tags into a dotted statsd metric name."""
    parts = [(metric or "").strip()]
    for key in STATSD_NAME_TAGS:
        value = (tags or {}).get(key)
        if value is None or value == "":
            continue
        parts.append(f"{key}.{_sanitize(str(value))}")
    return ".".join(part for part in parts if part)


def _sanitize(value: str) -> str:
    cleaned = "".join(char if char.isalnum() or char in "-_" else "_" for char in value.lower())
    return cleaned or "unknown"


metrics = MetricsReporter()
