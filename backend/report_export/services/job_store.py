"""Single source of truth for export jobs and their state machine.

    PENDING -> IN_PROGRESS -> COMPLETED
                           -> FAILED

COMPLETED and FAILED are terminal: nothing changes them except deletion.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

import structlog

from report_export.errors import InvalidTransition, JobBusy, JobNotFound
from report_export.models import ExportFormat, ExportKind, Job, JobStatus
from report_export.services.rate_limiter import RateLimiter
from report_export.services.result_cache import ResultCache

LOGGER = structlog.get_logger(__name__)


class JobStore:
    def __init__(
        self,
        rate_limiter: RateLimiter,
        cache: ResultCache,
        retention_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        self._rate_limiter = rate_limiter
        self._cache = cache
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._jobs: Dict[str, Job] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    # ---- queries -----------------------------------------------------

    def get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound()
        return job

    def get_owned(self, job_id: str, owner_id: str) -> Job:
        """Return the job only if ``owner_id`` owns it.

        A job owned by someone else is reported exactly like a missing one.
        """

        job = self._jobs.get(job_id)
        if job is None or job.owner_id != owner_id:
            raise JobNotFound()
        return job

    def list_pending(self) -> List[Job]:
        """PENDING jobs, oldest first. Ties keep insertion order."""

        pending = [j for j in self._jobs.values() if j.status is JobStatus.PENDING]
        return sorted(pending, key=lambda j: j.created_at)

    def list_for_owner(self, owner_id: str) -> List[Job]:
        owned = [j for j in self._jobs.values() if j.owner_id == owner_id]
        return sorted(owned, key=lambda j: j.created_at, reverse=True)

    def list_expired_terminal(self, older_than: float) -> List[Job]:
        """Terminal jobs whose ``completed_at`` is more than ``older_than`` seconds ago."""

        cutoff = self._clock() - older_than
        return [
            j
            for j in self._jobs.values()
            if j.is_terminal and j.completed_at is not None and j.completed_at < cutoff
        ]

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in JobStatus}
        for job in self._jobs.values():
            out[job.status.value] += 1
        return out

    # ---- lifecycle ---------------------------------------------------

    def create(self, owner_id: str, kind: ExportKind, format: ExportFormat, options: Any) -> Job:
        now = self._clock()
        job = Job(
            owner_id=owner_id,
            kind=ExportKind(kind),
            format=ExportFormat(format),
            options=options,
            created_at=now,
            expires_at=now + self.retention_seconds,
        )
        self._jobs[job.id] = job
        LOGGER.info("export_job_created", job_id=job.id, owner_id=owner_id, kind=job.kind.value, format=job.format.value)
        return job

    def transition_to_in_progress(self, job_id: str) -> Job:
        return self._transition(job_id, JobStatus.IN_PROGRESS, (JobStatus.PENDING,))

    def update_progress(self, job_id: str, progress: int) -> Job:
        """Raise progress; lower values are ignored so progress never decreases."""

        job = self.get(job_id)
        if job.is_terminal:
            raise InvalidTransition(job_id, job.status.value, "progress update")
        job.progress = max(job.progress, min(100, int(progress)))
        return job

    def mark_completed(self, job_id: str, result_key: str, file_name: str, file_size: int) -> Job:
        job = self._transition(job_id, JobStatus.COMPLETED, (JobStatus.IN_PROGRESS,))
        job.progress = 100
        job.result_key = result_key
        job.result_file_name = file_name
        job.result_file_size = file_size
        job.completed_at = self._clock()
        return job

    def mark_failed(self, job_id: str, error_message: str) -> Job:
        job = self._transition(job_id, JobStatus.FAILED, (JobStatus.IN_PROGRESS,))
        job.error_message = error_message or "Unknown error"
        job.completed_at = self._clock()
        return job

    # ---- removal -----------------------------------------------------

    def delete(self, job_id: str, owner_id: str) -> Job:
        """Owner-initiated delete of a job together with its cached artifact.

        Deleting a PENDING job gives the owner's concurrency slot back since
        the scheduler will never see it. IN_PROGRESS jobs cannot be cancelled.
        """

        job = self.get_owned(job_id, owner_id)
        if job.status is JobStatus.IN_PROGRESS:
            raise JobBusy()

        del self._jobs[job_id]
        if job.result_key:
            self._cache.delete(job.result_key)
        if job.status is JobStatus.PENDING:
            self._rate_limiter.release(owner_id)
        LOGGER.info("export_job_deleted", job_id=job_id, owner_id=owner_id, status=job.status.value)
        return job

    def remove(self, job_id: str) -> Optional[Job]:
        """Drop a terminal job and its cache entry, regardless of owner."""

        job = self._jobs.get(job_id)
        if job is None:
            return None
        if not job.is_terminal:
            raise InvalidTransition(job_id, job.status.value, "removed")
        if job.result_key:
            self._cache.delete(job.result_key)
        del self._jobs[job_id]
        return job

    def _transition(self, job_id: str, target: JobStatus, allowed_from: tuple) -> Job:
        job = self.get(job_id)
        if job.status not in allowed_from:
            raise InvalidTransition(job_id, job.status.value, target.value)
        previous = job.status
        job.status = target
        LOGGER.info("export_job_transition", job_id=job_id, owner_id=job.owner_id, previous=previous.value, status=target.value)
        return job


__all__ = ["JobStore"]
