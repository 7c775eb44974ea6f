from datetime import date
from typing import Annotated, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from report_export.models import ExportFormat, ExportKind, JobStatus

MEDIA_TYPES = {
    ExportFormat.PDF: "application/pdf",
    ExportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

FILE_EXTENSIONS = {
    ExportFormat.PDF: ".pdf",
    ExportFormat.EXCEL: ".xlsx",
}

TestReportColumn = Literal["date", "variant", "subject", "score", "correct", "total", "time_spent"]
TEST_REPORT_COLUMNS = get_args(TestReportColumn)


class _Schema(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# ---- export options (tagged by kind) ---------------------------------


class DateRange(_Schema):
    start: date = Field(alias="from")
    end: date = Field(alias="to")

    @model_validator(mode="after")
    def _ordered(self):
        if self.start > self.end:
            raise ValueError("dateRange.from must not be after dateRange.to")
        return self


class BaseOptions(_Schema):
    title: Optional[str] = Field(default=None, max_length=200)
    include_charts: bool = Field(default=True, alias="includeCharts")
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")


class UserAnalyticsOptions(BaseOptions):
    pass


class TestReportOptions(BaseOptions):
    subjects: List[str] = Field(default_factory=list, max_length=50)
    columns: List[TestReportColumn] = Field(default_factory=list)


class RankingsOptions(BaseOptions):
    subjects: List[str] = Field(default_factory=list, max_length=50)


class PeriodSummaryOptions(BaseOptions):
    date_range: DateRange = Field(alias="dateRange")


ExportOptions = Union[UserAnalyticsOptions, TestReportOptions, RankingsOptions, PeriodSummaryOptions]


class _ExportRequestBase(_Schema):
    format: ExportFormat = ExportFormat.PDF


class UserAnalyticsExport(_ExportRequestBase):
    kind: Literal["USER_ANALYTICS"]
    options: UserAnalyticsOptions = Field(default_factory=UserAnalyticsOptions)


class TestReportExport(_ExportRequestBase):
    kind: Literal["TEST_REPORT"]
    options: TestReportOptions = Field(default_factory=TestReportOptions)


class RankingsExport(_ExportRequestBase):
    kind: Literal["RANKINGS"]
    options: RankingsOptions = Field(default_factory=RankingsOptions)


class PeriodSummaryExport(_ExportRequestBase):
    kind: Literal["PERIOD_SUMMARY"]
    options: PeriodSummaryOptions


ExportRequest = Annotated[
    Union[UserAnalyticsExport, TestReportExport, RankingsExport, PeriodSummaryExport],
    Field(discriminator="kind"),
]

EXPORT_REQUEST = TypeAdapter(ExportRequest)


# ---- responses -------------------------------------------------------


class ExportCreated(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")


class ExportStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: JobStatus
    progress: int = Field(ge=0, le=100)
    download_url: Optional[str] = Field(default=None, alias="downloadUrl")
    file_name: Optional[str] = Field(default=None, alias="fileName")
    file_size: Optional[int] = Field(default=None, alias="fileSize")
    error: Optional[str] = None


class ExportSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    kind: ExportKind
    format: ExportFormat
    status: JobStatus
    progress: int
    created_at: float = Field(alias="createdAt")
    completed_at: Optional[float] = Field(default=None, alias="completedAt")
    expires_at: float = Field(alias="expiresAt")


class UploadAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    upload_id: str = Field(alias="uploadId")
    size: int


class EmergencyModeRequest(_Schema):
    enabled: bool
