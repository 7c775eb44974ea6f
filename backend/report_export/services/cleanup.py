"""Cleanup tick: expire old terminal jobs, cached artifacts and idle limiter state."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

import structlog

from report_export.services.job_store import JobStore
from report_export.services.rate_limiter import RateLimiter
from report_export.services.result_cache import ResultCache

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ItemFailure:
    item: str
    error: str


@dataclass
class CleanupReport:
    cache_entries_removed: int = 0
    jobs_removed: int = 0
    limiter_states_removed: int = 0
    failures: List[ItemFailure] = field(default_factory=list)

    @property
    def removed(self) -> int:
        return self.cache_entries_removed + self.jobs_removed

    @property
    def ok(self) -> bool:
        return not self.failures


class Cleanup:
    def __init__(self, jobs: JobStore, cache: ResultCache, rate_limiter: RateLimiter, retention_seconds: float):
        self._jobs = jobs
        self._cache = cache
        self._rate_limiter = rate_limiter
        self.retention_seconds = retention_seconds

    def tick(self) -> CleanupReport:
        report = CleanupReport()

        try:
            report.cache_entries_removed = self._cache.sweep_expired()
        except Exception as exc:
            LOGGER.exception("result_cache_sweep_failed")
            report.failures.append(ItemFailure("result_cache", str(exc)))

        for job in self._jobs.list_expired_terminal(self.retention_seconds):
            try:
                if self._jobs.remove(job.id) is not None:
                    report.jobs_removed += 1
            except Exception as exc:
                LOGGER.exception("expired_job_cleanup_failed", job_id=job.id)
                report.failures.append(ItemFailure(job.id, str(exc)))

        try:
            report.limiter_states_removed = self._rate_limiter.sweep_expired()
        except Exception as exc:
            LOGGER.exception("rate_limit_sweep_failed")
            report.failures.append(ItemFailure("rate_limiter", str(exc)))

        if report.removed or report.failures:
            LOGGER.info(
                "cleanup_tick",
                cache_entries_removed=report.cache_entries_removed,
                jobs_removed=report.jobs_removed,
                limiter_states_removed=report.limiter_states_removed,
                failures=len(report.failures),
            )
        return report


__all__ = ["Cleanup", "CleanupReport", "ItemFailure"]
