"""Prometheus metric definitions for the export pipeline."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

export_jobs_total = Counter(
    "export_jobs_total",
    "Export jobs that reached a terminal state, by outcome.",
    labelnames=["status"],
)

render_duration_seconds = Histogram(
    "export_render_duration_seconds",
    "Time spent rendering a single export artifact.",
    labelnames=["format"],
)

admission_denials_total = Counter(
    "admission_denials_total",
    "Requests refused by admission control, by denial code.",
    labelnames=["code"],
)

result_cache_bytes = Gauge(
    "result_cache_bytes",
    "Bytes currently held by the result cache.",
)

result_cache_evictions_total = Counter(
    "result_cache_evictions_total",
    "Cache entries removed before expiry to stay under capacity.",
)

__all__ = [
    "admission_denials_total",
    "export_jobs_total",
    "render_duration_seconds",
    "result_cache_bytes",
    "result_cache_evictions_total",
]
