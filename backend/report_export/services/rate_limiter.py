"""Admission control for export jobs, upload endpoints and admin operations.

Every counter here uses a fixed window: once ``now - window_start`` exceeds
the window duration the count drops back to zero, it does not slide.
Concurrency slots are independent of windows and only move through
``JobSlot``/``UploadSlot`` and :meth:`RateLimiter.release`.
"""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, NoReturn, Optional, Set, Tuple

import structlog

from report_export.config import Settings
from report_export.errors import (
    AdminLimitExceeded,
    AdmissionDenied,
    AlreadyRunning,
    DailyLimitExceeded,
    EmergencyModeActive,
    HourlyLimitExceeded,
    IpLimitExceeded,
    PayloadTooLarge,
    TooManyConcurrentUploads,
    UserLimitExceeded,
)
from report_export.services import metrics

LOGGER = structlog.get_logger(__name__)

Clock = Callable[[], float]


@dataclass
class WindowState:
    """Counters for one rate-limited subject (user, IP or composite key)."""

    window_start: float
    count: int = 0
    concurrent: int = 0

    def elapsed(self, now: float, window: float) -> bool:
        return now - self.window_start > window

    def retry_after(self, now: float, window: float) -> int:
        return max(1, math.ceil(window - (now - self.window_start)))


@dataclass(frozen=True)
class Quota:
    limit: int
    window: float


class JobSlot:
    """Concurrency slot held by an admitted export request.

    Leaving the ``with`` block releases the slot unless :meth:`hand_off` was
    called, at which point the created job owns it and the scheduler (or a
    delete of the still-pending job) gives it back.
    """

    def __init__(self, limiter: "RateLimiter", owner_id: str):
        self._limiter = limiter
        self.owner_id = owner_id
        self._held = True

    @property
    def held(self) -> bool:
        return self._held

    def hand_off(self) -> None:
        self._held = False

    def release(self) -> None:
        if self._held:
            self._held = False
            self._limiter.release(self.owner_id)

    def __enter__(self) -> "JobSlot":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


class UploadSlot:
    """In-flight upload registration; ``release`` is idempotent."""

    def __init__(self, limiter: "RateLimiter", key: Optional[Tuple[str, str]], upload_id: str):
        self._limiter = limiter
        self.key = key
        self.upload_id = upload_id
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self.key is not None:
            self._limiter._finish_upload(self.key, self.upload_id)

    def __enter__(self) -> "UploadSlot":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


class RateLimiter:
    """Synchronous admit/deny decisions plus in-flight tracking."""

    def __init__(self, settings: Settings, clock: Clock = time.time):
        self._clock = clock

        self.job_concurrency = settings.export_max_concurrent
        self.hourly = Quota(settings.export_hourly_limit, settings.export_hourly_window_seconds)
        self.daily = Quota(settings.export_daily_limit, settings.export_daily_window_seconds)

        self.max_payload_bytes = settings.upload_max_payload_bytes
        self.ip_quota = Quota(settings.upload_ip_max_requests, settings.upload_ip_window_seconds)
        self.user_quota = Quota(settings.upload_user_max_requests, settings.upload_user_window_seconds)
        self.upload_concurrency = settings.upload_user_max_concurrent
        self.admin_quota = Quota(settings.admin_max_requests, settings.admin_window_seconds)

        self._jobs: Dict[str, WindowState] = {}
        self._ips: Dict[str, WindowState] = {}
        self._users: Dict[str, WindowState] = {}
        self._uploads: Dict[Tuple[str, str], Set[str]] = {}
        self._admins: Dict[str, WindowState] = {}
        self._history: Dict[str, List[float]] = {}
        self._emergency = settings.emergency_mode

    # ---- export jobs -------------------------------------------------

    def admit_job_creation(self, owner_id: str) -> JobSlot:
        """Admit one export job for ``owner_id`` or raise :class:`AdmissionDenied`.

        The daily cap is counted from the owner's admission history, which
        deleting a job does not shorten, so it survives the hourly window
        resetting and owner deletes alike.
        """

        now = self._clock()
        state = self._window(self._jobs, owner_id, self.hourly.window, now)

        if state.concurrent >= self.job_concurrency:
            self._deny(AlreadyRunning(), owner_id=owner_id, concurrent=state.concurrent)

        if state.count >= self.hourly.limit:
            self._deny(
                HourlyLimitExceeded(retry_after=state.retry_after(now, self.hourly.window)),
                owner_id=owner_id,
                count=state.count,
            )

        recent = self._recent_admissions(owner_id, now)
        if len(recent) >= self.daily.limit:
            # the oldest admission that has to age out before one more fits
            pivot = recent[len(recent) - self.daily.limit]
            retry_after = max(1, math.ceil(pivot + self.daily.window - now))
            self._deny(
                DailyLimitExceeded(retry_after=retry_after),
                owner_id=owner_id,
                count=len(recent),
            )

        state.count += 1
        state.concurrent += 1
        recent.append(now)
        self._history[owner_id] = recent
        LOGGER.info(
            "export_admitted",
            owner_id=owner_id,
            hourly_count=state.count,
            hourly_limit=self.hourly.limit,
            daily_count=len(recent),
        )
        return JobSlot(self, owner_id)

    def release(self, owner_id: str) -> None:
        """Give back one export concurrency slot, never dropping below zero."""

        state = self._jobs.get(owner_id)
        if state is None or state.concurrent <= 0:
            LOGGER.warning("export_slot_release_unmatched", owner_id=owner_id)
            return
        state.concurrent -= 1

    def concurrent_jobs(self, owner_id: str) -> int:
        state = self._jobs.get(owner_id)
        return state.concurrent if state else 0

    def daily_admissions(self, owner_id: str) -> int:
        return len(self._recent_admissions(owner_id, self._clock()))

    # ---- uploads -----------------------------------------------------

    def admit_upload(self, ip: str, user_id: Optional[str], payload_bytes: Optional[int]) -> UploadSlot:
        """Admit one upload request or raise :class:`AdmissionDenied`.

        The returned slot must be released when the request ends, whatever
        the outcome; use it as a context manager around the body read.
        """

        if self._emergency:
            self._deny(EmergencyModeActive(), ip=ip, user_id=user_id)

        if payload_bytes is not None:
            self.check_payload_size(payload_bytes, ip=ip, user_id=user_id)

        now = self._clock()
        ip_state = self._window(self._ips, ip, self.ip_quota.window, now)
        ip_state.count += 1
        if ip_state.count > self.ip_quota.limit:
            self._deny(
                IpLimitExceeded(retry_after=ip_state.retry_after(now, self.ip_quota.window)),
                ip=ip,
                count=ip_state.count,
            )

        if not user_id:
            LOGGER.info("upload_admitted", ip=ip, ip_count=ip_state.count)
            return UploadSlot(self, None, uuid.uuid4().hex)

        user_state = self._window(self._users, user_id, self.user_quota.window, now)
        user_state.count += 1
        if user_state.count > self.user_quota.limit:
            self._deny(
                UserLimitExceeded(retry_after=user_state.retry_after(now, self.user_quota.window)),
                user_id=user_id,
                count=user_state.count,
            )

        key = (user_id, ip)
        active = self._uploads.setdefault(key, set())
        if len(active) >= self.upload_concurrency:
            self._deny(TooManyConcurrentUploads(), user_id=user_id, ip=ip, concurrent=len(active))

        upload_id = uuid.uuid4().hex
        active.add(upload_id)
        LOGGER.info(
            "upload_admitted",
            ip=ip,
            user_id=user_id,
            ip_count=ip_state.count,
            user_count=user_state.count,
            concurrent=len(active),
        )
        return UploadSlot(self, key, upload_id)

    def check_payload_size(self, payload_bytes: int, **context: Any) -> None:
        if payload_bytes > self.max_payload_bytes:
            self._deny(
                PayloadTooLarge(
                    f"Payload exceeds {self.max_payload_bytes // (1024 * 1024)}MB"
                ),
                payload_bytes=payload_bytes,
                **context,
            )

    def active_uploads(self, user_id: str, ip: str) -> int:
        return len(self._uploads.get((user_id, ip), ()))

    def _finish_upload(self, key: Tuple[str, str], upload_id: str) -> None:
        active = self._uploads.get(key)
        if not active:
            return
        active.discard(upload_id)
        if not active:
            del self._uploads[key]

    # ---- operator controls -------------------------------------------

    @property
    def emergency_mode(self) -> bool:
        return self._emergency

    def admit_admin(self, ip: str, user_id: Optional[str]) -> None:
        """Count one admin request against the ``(user, ip)`` admin window."""

        now = self._clock()
        key = f"{user_id or 'anonymous'}:{ip}"
        state = self._window(self._admins, key, self.admin_quota.window, now)
        state.count += 1
        if state.count > self.admin_quota.limit:
            self._deny(
                AdminLimitExceeded(retry_after=state.retry_after(now, self.admin_quota.window)),
                ip=ip,
                user_id=user_id,
                count=state.count,
            )

    def set_emergency_mode(self, enabled: bool) -> None:
        self._emergency = bool(enabled)
        if enabled:
            LOGGER.warning("emergency_mode_enabled")
        else:
            LOGGER.info("emergency_mode_disabled")

    def sweep_expired(self) -> int:
        """Drop idle subject states whose window has elapsed."""

        now = self._clock()
        removed = 0
        for states, window in (
            (self._jobs, self.hourly.window),
            (self._ips, self.ip_quota.window),
            (self._users, self.user_quota.window),
            (self._admins, self.admin_quota.window),
        ):
            stale = [k for k, s in states.items() if s.elapsed(now, window) and s.concurrent == 0]
            for key in stale:
                del states[key]
            removed += len(stale)

        for owner_id in list(self._history):
            if not self._recent_admissions(owner_id, now):
                del self._history[owner_id]

        if removed:
            LOGGER.debug("rate_limit_states_swept", removed=removed)
        return removed

    def status(self, ip: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Snapshot of the counters for one IP and/or user."""

        out: Dict[str, Any] = {"emergencyMode": self._emergency}
        if ip and ip in self._ips:
            out["ip"] = self._describe(self._ips[ip], self.ip_quota)
        if user_id and user_id in self._users:
            out["user"] = self._describe(self._users[user_id], self.user_quota)
        if user_id and user_id in self._jobs:
            out["exports"] = self._describe(self._jobs[user_id], self.hourly)
        if user_id and user_id in self._history:
            out["exportsToday"] = {"count": self.daily_admissions(user_id), "limit": self.daily.limit}
        return out

    def __len__(self) -> int:
        return len(self._jobs) + len(self._ips) + len(self._users) + len(self._admins)

    # ---- helpers -----------------------------------------------------

    def _recent_admissions(self, owner_id: str, now: float) -> List[float]:
        """Admission times of ``owner_id`` inside the daily window, oldest first.

        Older entries are dropped from the stored history as a side effect.
        """

        horizon = now - self.daily.window
        recent = sorted(t for t in self._history.get(owner_id, ()) if t > horizon)
        if owner_id in self._history:
            self._history[owner_id] = recent
        return recent

    @staticmethod
    def _window(states: Dict[str, WindowState], key: str, window: float, now: float) -> WindowState:
        state = states.get(key)
        if state is None:
            state = states[key] = WindowState(window_start=now)
        elif state.elapsed(now, window):
            state.window_start = now
            state.count = 0
        return state

    @staticmethod
    def _describe(state: WindowState, quota: Quota) -> Dict[str, Any]:
        return {
            "count": state.count,
            "limit": quota.limit,
            "windowStart": state.window_start,
            "windowSeconds": quota.window,
            "concurrent": state.concurrent,
        }

    @staticmethod
    def _deny(exc: AdmissionDenied, **context: Any) -> NoReturn:
        metrics.admission_denials_total.labels(code=exc.code).inc()
        LOGGER.warning("admission_denied", code=exc.code, retry_after=exc.retry_after, **context)
        raise exc


__all__ = ["JobSlot", "Quota", "RateLimiter", "UploadSlot", "WindowState"]
