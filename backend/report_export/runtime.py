"""Construction and lifetime of the in-process export services."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import structlog

from report_export.config import Settings
from report_export.services.cleanup import Cleanup
from report_export.services.job_store import JobStore
from report_export.services.periodic import PeriodicTask
from report_export.services.rate_limiter import RateLimiter
from report_export.services.renderer import Renderer, ReportRenderer
from report_export.services.result_cache import ResultCache
from report_export.services.scheduler import Scheduler

LOGGER = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    rate_limiter: RateLimiter
    cache: ResultCache
    jobs: JobStore
    scheduler: Scheduler
    cleanup: Cleanup
    clock: Callable[[], float] = time.time
    tasks: List[PeriodicTask] = field(default_factory=list)

    async def start(self) -> None:
        for task in self.tasks:
            task.start()

    async def stop(self) -> None:
        for task in self.tasks:
            await task.stop()


def build_services(
    settings: Settings,
    renderer: Optional[Renderer] = None,
    clock: Callable[[], float] = time.time,
) -> Services:
    rate_limiter = RateLimiter(settings, clock=clock)
    cache = ResultCache(settings.cache_capacity_bytes, settings.cache_ttl_seconds, clock=clock)
    jobs = JobStore(rate_limiter, cache, settings.job_retention_seconds, clock=clock)
    scheduler = Scheduler(jobs, cache, rate_limiter, renderer or ReportRenderer())
    cleanup = Cleanup(jobs, cache, rate_limiter, settings.job_retention_seconds)

    tasks = []
    if settings.background_tasks_enabled:
        tasks = [
            PeriodicTask("scheduler", settings.scheduler_interval_seconds, scheduler.tick),
            PeriodicTask("cleanup", settings.cleanup_interval_seconds, cleanup.tick),
        ]

    LOGGER.info(
        "services_built",
        cache_capacity_bytes=settings.cache_capacity_bytes,
        cache_ttl_seconds=settings.cache_ttl_seconds,
        background_tasks=bool(tasks),
    )
    return Services(
        settings=settings,
        rate_limiter=rate_limiter,
        cache=cache,
        jobs=jobs,
        scheduler=scheduler,
        cleanup=cleanup,
        clock=clock,
        tasks=tasks,
    )


__all__ = ["Services", "build_services"]
