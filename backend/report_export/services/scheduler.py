"""Scheduler tick: drive PENDING export jobs to a terminal state."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Union

import structlog
from starlette.concurrency import run_in_threadpool

from report_export.core import FILE_EXTENSIONS, MEDIA_TYPES
from report_export.errors import ExportError, RenderFailure
from report_export.models import ExportFormat, Job, JobStatus
from report_export.services import metrics
from report_export.services.job_store import JobStore
from report_export.services.rate_limiter import RateLimiter
from report_export.services.renderer import RenderedReport, Renderer
from report_export.services.result_cache import PayloadTooLargeForCache, ResultCache

LOGGER = structlog.get_logger(__name__)

PROGRESS_STARTED = 10
PROGRESS_RENDERED = 90


@dataclass(frozen=True)
class JobOutcome:
    job_id: str
    owner_id: str
    status: Optional[JobStatus]  # None: the job was gone or already picked up
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.COMPLETED


@dataclass
class TickReport:
    outcomes: List[JobOutcome] = field(default_factory=list)

    @property
    def completed(self) -> List[JobOutcome]:
        return [o for o in self.outcomes if o.status is JobStatus.COMPLETED]

    @property
    def failed(self) -> List[JobOutcome]:
        return [o for o in self.outcomes if o.status is JobStatus.FAILED]

    @property
    def skipped(self) -> List[JobOutcome]:
        return [o for o in self.outcomes if o.status is None]


def result_key(job_id: str) -> str:
    return f"export:{job_id}"


def result_file_name(job: Job, extension: str) -> str:
    stamp = datetime.fromtimestamp(job.created_at, tz=timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{job.kind.value.lower()}_{stamp}{extension}"


class Scheduler:
    """Processes PENDING jobs one after another, in creation order.

    A failing job never aborts the tick, and the owner's concurrency slot is
    released exactly once per picked-up job whatever the outcome.
    """

    def __init__(
        self,
        jobs: JobStore,
        cache: ResultCache,
        rate_limiter: RateLimiter,
        renderer: Renderer,
        result_ttl: Optional[float] = None,
    ):
        self._jobs = jobs
        self._cache = cache
        self._rate_limiter = rate_limiter
        self.renderer = renderer
        self.result_ttl = result_ttl

    async def tick(self) -> TickReport:
        report = TickReport()
        pending = self._jobs.list_pending()
        for job in pending:
            report.outcomes.append(await self._process(job))
        if pending:
            LOGGER.info(
                "scheduler_tick",
                picked=len(pending),
                completed=len(report.completed),
                failed=len(report.failed),
                skipped=len(report.skipped),
            )
        return report

    async def _process(self, job: Job) -> JobOutcome:
        try:
            self._jobs.transition_to_in_progress(job.id)
        except ExportError as exc:
            # deleted by its owner, or taken by an earlier tick
            LOGGER.info("export_job_skipped", job_id=job.id, reason=exc.message)
            return JobOutcome(job.id, job.owner_id, None, exc.message)

        try:
            return await self._run(job)
        except asyncio.CancelledError:
            LOGGER.warning("export_job_cancelled", job_id=job.id, owner_id=job.owner_id)
            self._fail(job, "Cancelled by shutdown")
            raise
        except Exception as exc:
            LOGGER.exception("export_job_crashed", job_id=job.id, owner_id=job.owner_id)
            return self._fail(job, str(exc) or exc.__class__.__name__)
        finally:
            self._rate_limiter.release(job.owner_id)

    async def _run(self, job: Job) -> JobOutcome:
        self._jobs.update_progress(job.id, PROGRESS_STARTED)

        started = time.perf_counter()
        try:
            rendered = await run_in_threadpool(
                self.renderer.render, job.kind, job.owner_id, job.format, job.options
            )
            artifact = self._as_report(rendered, job.format)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            LOGGER.warning("export_render_failed", job_id=job.id, owner_id=job.owner_id, error=message, exc_info=True)
            return self._fail(job, message)
        finally:
            metrics.render_duration_seconds.labels(format=job.format.value).observe(time.perf_counter() - started)

        self._jobs.update_progress(job.id, PROGRESS_RENDERED)

        key = result_key(job.id)
        try:
            self._cache.store(key, artifact.content, ttl=self.result_ttl, content_type=artifact.media_type)
        except PayloadTooLargeForCache as exc:
            LOGGER.warning("export_result_not_cached", job_id=job.id, size=len(artifact.content), error=str(exc))
            return self._fail(job, "Report is too large to keep for download")

        self._jobs.mark_completed(
            job.id,
            result_key=key,
            file_name=result_file_name(job, artifact.extension),
            file_size=len(artifact.content),
        )
        metrics.export_jobs_total.labels(status=JobStatus.COMPLETED.value).inc()
        LOGGER.info("export_job_completed", job_id=job.id, owner_id=job.owner_id, size=len(artifact.content))
        return JobOutcome(job.id, job.owner_id, JobStatus.COMPLETED)

    def _fail(self, job: Job, message: str) -> JobOutcome:
        try:
            self._jobs.mark_failed(job.id, message)
        except ExportError as exc:
            LOGGER.error("export_job_mark_failed_rejected", job_id=job.id, error=exc.message)
        metrics.export_jobs_total.labels(status=JobStatus.FAILED.value).inc()
        return JobOutcome(job.id, job.owner_id, JobStatus.FAILED, message)

    @staticmethod
    def _as_report(rendered: Union[bytes, RenderedReport], format: ExportFormat) -> RenderedReport:
        if isinstance(rendered, RenderedReport):
            artifact = rendered
        elif isinstance(rendered, (bytes, bytearray)):
            artifact = RenderedReport(bytes(rendered), MEDIA_TYPES[format], FILE_EXTENSIONS[format])
        else:
            raise RenderFailure(f"Renderer returned {type(rendered).__name__}, expected bytes")
        if not artifact.content:
            raise RenderFailure("Renderer produced an empty file")
        return artifact


__all__ = ["JobOutcome", "Scheduler", "TickReport", "result_file_name", "result_key"]
