from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
import uuid


class JobStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ExportKind(str, Enum):
    USER_ANALYTICS = "USER_ANALYTICS"
    TEST_REPORT = "TEST_REPORT"
    RANKINGS = "RANKINGS"
    PERIOD_SUMMARY = "PERIOD_SUMMARY"


class ExportFormat(str, Enum):
    PDF = "PDF"
    EXCEL = "EXCEL"


@dataclass
class Job:
    owner_id: str
    kind: ExportKind
    format: ExportFormat
    options: Any
    created_at: float
    expires_at: float
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    result_key: Optional[str] = None
    result_file_name: Optional[str] = None
    result_file_size: Optional[int] = None
    error_message: Optional[str] = None
    completed_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
