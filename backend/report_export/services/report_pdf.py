from __future__ import annotations

from io import BytesIO
from typing import TYPE_CHECKING

from reportlab.graphics.charts.barcharts import VerticalBarChart
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

if TYPE_CHECKING:
    from report_export.services.renderer import ReportPayload, ReportSection

PRIMARY = colors.HexColor("#2563EB")
ACCENT = colors.HexColor("#10B981")
TEXT = colors.HexColor("#374151")
MUTED = colors.HexColor("#6B7280")
BACKGROUND = colors.HexColor("#F9FAFB")
BORDER = colors.HexColor("#D1D5DB")

MAX_ROWS_PER_TABLE = 500
CHART_BARS = 12


def _esc(s) -> str:
    """Basic safe text for ReportLab Paragraph (avoids broken markup)."""
    if s is None:
        return ""
    s = str(s)
    s = s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    return s


def _number(value):
    try:
        x = float(value)
    except (TypeError, ValueError):
        return None
    if x != x:  # NaN check
        return None
    return x


def _bar_chart(section: "ReportSection") -> Drawing | None:
    col = section.chart_column
    if col is None:
        return None
    labels, values = [], []
    for row in section.rows[:CHART_BARS]:
        if col >= len(row):
            continue
        x = _number(row[col])
        if x is None:
            continue
        labels.append(str(row[0])[:12])
        values.append(x)
    if not values:
        return None

    drawing = Drawing(480, 180)
    chart = VerticalBarChart()
    chart.x, chart.y = 40, 30
    chart.width, chart.height = 420, 130
    chart.data = [values]
    chart.categoryAxis.categoryNames = labels
    chart.categoryAxis.labels.fontSize = 7
    chart.valueAxis.valueMin = 0
    chart.valueAxis.labels.fontSize = 7
    chart.bars[0].fillColor = ACCENT
    chart.bars[0].strokeColor = None
    drawing.add(chart)
    return drawing


def _table(section: "ReportSection", width: float) -> Table:
    rows = [[_esc(c) for c in section.columns]]
    for row in section.rows[:MAX_ROWS_PER_TABLE]:
        rows.append([_esc(v) if v is not None else "—" for v in row])

    col_width = width / max(1, len(section.columns))
    table = Table(rows, colWidths=[col_width] * len(section.columns), repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), PRIMARY),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, 0), 9),
                ("TEXTCOLOR", (0, 1), (-1, -1), TEXT),
                ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 1), (-1, -1), 9),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, BACKGROUND]),
                ("GRID", (0, 0), (-1, -1), 0.4, BORDER),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("TOPPADDING", (0, 0), (-1, -1), 6),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ]
        )
    )
    return table


def build_pdf(payload: "ReportPayload") -> bytes:
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=36,
        rightMargin=36,
        topMargin=36,
        bottomMargin=36,
        title=payload.title,
        author="Report Export",
    )

    styles = getSampleStyleSheet()
    title = ParagraphStyle(
        "title",
        parent=styles["Title"],
        fontName="Helvetica-Bold",
        fontSize=20,
        textColor=PRIMARY,
        spaceAfter=10,
    )
    h = ParagraphStyle(
        "h",
        parent=styles["Heading2"],
        fontName="Helvetica-Bold",
        fontSize=13,
        textColor=PRIMARY,
        spaceBefore=12,
        spaceAfter=6,
    )
    p = ParagraphStyle(
        "p",
        parent=styles["BodyText"],
        fontName="Helvetica",
        fontSize=10,
        textColor=MUTED,
        leading=14,
    )

    story = []

    # Header block
    story.append(Paragraph(_esc(payload.title), title))
    for line in payload.meta:
        story.append(Paragraph(_esc(line), p))
    story.append(Spacer(1, 12))

    for section in payload.sections:
        story.append(Paragraph(_esc(section.heading), h))
        if not section.rows:
            story.append(Paragraph("No data for the selected parameters.", p))
            continue
        story.append(_table(section, doc.width))
        if len(section.rows) > MAX_ROWS_PER_TABLE:
            story.append(Paragraph(f"Showing first {MAX_ROWS_PER_TABLE} of {len(section.rows)} rows.", p))
        if payload.include_charts:
            chart = _bar_chart(section)
            if chart is not None:
                story.append(Spacer(1, 8))
                story.append(chart)
        story.append(Spacer(1, 10))

    # Footer with page numbers
    def on_page(canvas, _doc):
        canvas.saveState()
        canvas.setFillColor(PRIMARY)
        canvas.rect(0, A4[1] - 8, A4[0], 8, fill=1, stroke=0)
        canvas.setFont("Helvetica", 8)
        canvas.setFillColor(MUTED)
        canvas.drawRightString(A4[0] - 36, 20, f"Page {_doc.page}")
        canvas.restoreState()

    doc.build(story, onFirstPage=on_page, onLaterPages=on_page)
    return buf.getvalue()
