"""Renderer collaborator: turns an export job's parameters into file bytes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from report_export.core import FILE_EXTENSIONS, MEDIA_TYPES, TEST_REPORT_COLUMNS
from report_export.errors import RenderFailure
from report_export.models import ExportFormat, ExportKind
from report_export.services.report_excel import build_workbook
from report_export.services.report_pdf import build_pdf

REPORT_TITLES = {
    ExportKind.USER_ANALYTICS: "User Analytics",
    ExportKind.TEST_REPORT: "Test Report",
    ExportKind.RANKINGS: "Rankings",
    ExportKind.PERIOD_SUMMARY: "Period Summary",
}

# (heading, columns, index of the column to chart or None)
SECTION_LAYOUTS: Dict[ExportKind, List[tuple]] = {
    ExportKind.USER_ANALYTICS: [
        ("Overview", ["Metric", "Value"], None),
        ("Subjects", ["Subject", "Tests", "Average score", "Average time"], 2),
        ("History", ["Date", "Score"], 1),
    ],
    ExportKind.TEST_REPORT: [
        ("Results", [c.replace("_", " ").capitalize() for c in TEST_REPORT_COLUMNS], 3),
    ],
    ExportKind.RANKINGS: [
        ("Rankings", ["Rank", "User", "Average score", "Tests"], 2),
    ],
    ExportKind.PERIOD_SUMMARY: [
        ("Summary", ["Metric", "Value"], None),
        ("Correctness", ["Subject", "Correct", "Incorrect", "Accuracy"], 3),
    ],
}


@dataclass
class ReportSection:
    heading: str
    columns: List[str]
    rows: List[Sequence[Any]] = field(default_factory=list)
    chart_column: Optional[int] = None


@dataclass
class ReportPayload:
    title: str
    meta: List[str]
    sections: List[ReportSection]
    include_charts: bool = True


@dataclass(frozen=True)
class RenderedReport:
    content: bytes
    media_type: str
    extension: str


class Renderer(Protocol):
    def render(
        self, kind: ExportKind, owner_id: str, format: ExportFormat, options: Any
    ) -> Union[bytes, RenderedReport]:
        ...


class ReportSource(Protocol):
    """Supplies the rows of a report. Exam data lives behind this seam."""

    def fetch(self, kind: ExportKind, owner_id: str, options: Any) -> ReportPayload:
        ...


def describe_options(options: Any) -> List[str]:
    meta = []
    date_range = getattr(options, "date_range", None)
    if date_range is not None:
        meta.append(f"Period: {date_range.start.isoformat()} to {date_range.end.isoformat()}")
    subjects = getattr(options, "subjects", None)
    if subjects:
        meta.append(f"Subjects: {', '.join(subjects)}")
    return meta


def empty_payload(kind: ExportKind, owner_id: str, options: Any) -> ReportPayload:
    """Layout for ``kind`` with no rows; used when no data source is wired."""

    kind = ExportKind(kind)
    title = getattr(options, "title", None) or REPORT_TITLES[kind]
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    sections = [
        ReportSection(heading=h, columns=list(cols), chart_column=chart)
        for h, cols, chart in SECTION_LAYOUTS[kind]
    ]
    columns = getattr(options, "columns", None)
    if kind is ExportKind.TEST_REPORT and columns:
        sections[0].columns = [c.replace("_", " ").capitalize() for c in columns]
        sections[0].chart_column = None
    return ReportPayload(
        title=title,
        meta=[f"Generated: {generated}", f"User: {owner_id}"] + describe_options(options),
        sections=sections,
        include_charts=bool(getattr(options, "include_charts", True)),
    )


class EmptyReportSource:
    def fetch(self, kind: ExportKind, owner_id: str, options: Any) -> ReportPayload:
        return empty_payload(kind, owner_id, options)


class ReportRenderer:
    """Default renderer: PDF through reportlab, EXCEL through openpyxl."""

    def __init__(self, source: Optional[ReportSource] = None):
        self.source = source or EmptyReportSource()

    def render(self, kind: ExportKind, owner_id: str, format: ExportFormat, options: Any) -> RenderedReport:
        format = ExportFormat(format)
        payload = self.source.fetch(ExportKind(kind), owner_id, options)
        if format is ExportFormat.PDF:
            content = build_pdf(payload)
        elif format is ExportFormat.EXCEL:
            content = build_workbook(payload)
        else:  # pragma: no cover - enum is exhaustive
            raise RenderFailure(f"Unsupported export format: {format}")
        return RenderedReport(content=content, media_type=MEDIA_TYPES[format], extension=FILE_EXTENSIONS[format])


__all__ = [
    "EmptyReportSource",
    "REPORT_TITLES",
    "RenderedReport",
    "Renderer",
    "ReportPayload",
    "ReportRenderer",
    "ReportSection",
    "ReportSource",
    "SECTION_LAYOUTS",
    "describe_options",
    "empty_payload",
]
