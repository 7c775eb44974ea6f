from __future__ import annotations

import re
from io import BytesIO
from typing import TYPE_CHECKING

from openpyxl import Workbook
from openpyxl.chart import BarChart, Reference
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

if TYPE_CHECKING:
    from report_export.services.renderer import ReportPayload, ReportSection

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(start_color="2563EB", end_color="2563EB", fill_type="solid")
TITLE_FONT = Font(bold=True, size=16, color="2563EB")

_SHEET_TITLE_BAD = re.compile(r"[\[\]\*\?/\\:]")


def _sheet_title(name: str) -> str:
    # Excel caps sheet titles at 31 chars and forbids a few characters
    return _SHEET_TITLE_BAD.sub(" ", name)[:31] or "Sheet"


def _fill_section(ws, section: "ReportSection", include_charts: bool) -> None:
    ws.append(section.columns)
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL

    for row in section.rows:
        ws.append(list(row))

    for idx, column in enumerate(section.columns, start=1):
        longest = max([len(str(column))] + [len(str(r[idx - 1])) for r in section.rows if len(r) >= idx])
        ws.column_dimensions[get_column_letter(idx)].width = min(60, longest + 4)
    ws.freeze_panes = "A2"

    col = section.chart_column
    if include_charts and col is not None and section.rows:
        chart = BarChart()
        chart.title = section.heading
        chart.y_axis.title = section.columns[col]
        data = Reference(ws, min_col=col + 1, min_row=1, max_row=len(section.rows) + 1)
        cats = Reference(ws, min_col=1, min_row=2, max_row=len(section.rows) + 1)
        chart.add_data(data, titles_from_data=True)
        chart.set_categories(cats)
        ws.add_chart(chart, f"{get_column_letter(len(section.columns) + 2)}2")


def build_workbook(payload: "ReportPayload") -> bytes:
    wb = Workbook()

    cover = wb.active
    cover.title = "Report"
    cover.cell(row=1, column=1, value=payload.title).font = TITLE_FONT
    for i, line in enumerate(payload.meta, start=3):
        cover.cell(row=i, column=1, value=line)
    cover.column_dimensions["A"].width = 60

    for section in payload.sections:
        ws = wb.create_sheet(_sheet_title(section.heading))
        _fill_section(ws, section, payload.include_charts)

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
