"""Error taxonomy for the export pipeline."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ExportError(Exception):
    """Base class for errors surfaced by the export services."""

    status_code = 500
    code = "EXPORT_ERROR"
    message = "Export error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


# ---- admission ---------------------------------------------------------


class AdmissionDenied(ExportError):
    """A request was refused before it could create state or consume resources."""

    status_code = 429
    code = "RATE_LIMITED"
    reason = "rate limited"

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": self.code, "reason": self.reason}
        if self.retry_after is not None:
            body["retryAfterSeconds"] = self.retry_after
        return body


class AlreadyRunning(AdmissionDenied):
    code = "EXPORT_ALREADY_RUNNING"
    reason = "already running"
    message = "An export is already running. Wait for it to finish."


class HourlyLimitExceeded(AdmissionDenied):
    code = "EXPORT_HOURLY_LIMIT"
    reason = "hourly limit"
    message = "Hourly export limit reached."


class DailyLimitExceeded(AdmissionDenied):
    code = "EXPORT_DAILY_LIMIT"
    reason = "daily limit"
    message = "Daily export limit reached."


class PayloadTooLarge(AdmissionDenied):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"
    reason = "payload too large"
    message = "Payload exceeds the maximum allowed size."


class IpLimitExceeded(AdmissionDenied):
    code = "IP_RATE_LIMIT_EXCEEDED"
    reason = "ip limit"
    message = "Too many requests from this IP. Try again later."


class UserLimitExceeded(AdmissionDenied):
    code = "USER_RATE_LIMIT_EXCEEDED"
    reason = "user limit"
    message = "Upload limit reached. Try again later."


class TooManyConcurrentUploads(UserLimitExceeded):
    code = "TOO_MANY_CONCURRENT_UPLOADS"
    reason = "too many concurrent uploads"
    message = "Too many uploads in progress. Wait for the current ones to finish."


class AdminLimitExceeded(AdmissionDenied):
    code = "ADMIN_RATE_LIMIT_EXCEEDED"
    reason = "admin limit"
    message = "Too many admin operations. Try again later."


class EmergencyModeActive(AdmissionDenied):
    status_code = 503
    code = "EMERGENCY_MODE"
    reason = "emergency mode"
    message = "Service temporarily unavailable. Try again later."


# ---- jobs and results --------------------------------------------------


class RenderFailure(ExportError):
    """The renderer could not produce an artifact."""

    code = "RENDER_FAILED"
    message = "Report rendering failed"


class JobNotFound(ExportError):
    """Unknown job, or a job that belongs to someone else."""

    status_code = 404
    code = "JOB_NOT_FOUND"
    message = "Export not found"


class JobBusy(ExportError):
    status_code = 409
    code = "JOB_IN_PROGRESS"
    message = "Export is being rendered and cannot be removed yet"


class ResultNotReady(ExportError):
    status_code = 404
    code = "EXPORT_NOT_READY"
    message = "Export is not ready yet"


class CacheMiss(ExportError):
    status_code = 404
    code = "RESULT_EXPIRED"
    message = "Export file has expired. Create a new export."


class InvalidTransition(ExportError):
    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, job_id: str, current: str, target: str):
        self.job_id = job_id
        self.current = current
        self.target = target
        super().__init__(f"Job {job_id}: cannot move from {current} to {target}")


__all__ = [
    "AdminLimitExceeded",
    "AdmissionDenied",
    "AlreadyRunning",
    "CacheMiss",
    "DailyLimitExceeded",
    "EmergencyModeActive",
    "ExportError",
    "HourlyLimitExceeded",
    "InvalidTransition",
    "IpLimitExceeded",
    "JobBusy",
    "JobNotFound",
    "PayloadTooLarge",
    "RenderFailure",
    "ResultNotReady",
    "TooManyConcurrentUploads",
    "UserLimitExceeded",
]
