"""
File renderings of reports.

A report's rows are flattened into a pandas DataFrame and written as CSV,
an Excel workbook (openpyxl) or a landscape PDF table (reportlab). The PDF
also lists the report's KPIs above the table.
"""

from __future__ import annotations

import io
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict

import pandas as pd
from pydantic import BaseModel
from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

PDF_TABLE_STYLE = TableStyle(
    [
        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
    ]
)


@dataclass(frozen=True)
class ExportedFile:
    content: bytes
    media_type: str
    filename: str


# PUBLIC_INTERFACE
def report_rows_frame(report: BaseModel) -> pd.DataFrame:
    """
    Flatten a report's rows into a DataFrame.

    Nested objects become prefixed columns (mom_change); nested lists are kept
    as JSON text so spreadsheet writers accept them.
    """
    records = [
        {key: value for key, value in row.model_dump(mode="json").items() if value is not None}
        for row in getattr(report, "rows", [])
    ]
    frame = pd.json_normalize(records, sep="_")
    for column in frame.columns:
        if frame[column].dtype == object:
            frame[column] = frame[column].apply(lambda v: json.dumps(v) if isinstance(v, list) else v)
    return frame


def _csv(report: BaseModel, title: str) -> bytes:
    return report_rows_frame(report).to_csv(index=False).encode("utf-8")


def _xlsx(report: BaseModel, title: str) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        report_rows_frame(report).to_excel(writer, index=False, sheet_name="Report")
    return buffer.getvalue()


def _pdf(report: BaseModel, title: str) -> bytes:
    styles = getSampleStyleSheet()
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    story = [Paragraph(f"{title} ({generated})", styles["Title"])]

    kpis = getattr(report, "kpis", None)
    if kpis is not None:
        for name, value in kpis.model_dump(mode="json").items():
            story.append(Paragraph(f"<b>{name.replace('_', ' ')}</b>: {value}", styles["Normal"]))
        story.append(Spacer(1, 8))

    frame = report_rows_frame(report)
    if frame.empty:
        story.append(Paragraph("No rows in the selected range.", styles["Italic"]))
    else:
        table = Table([list(frame.columns)] + frame.astype(str).values.tolist(), repeatRows=1)
        table.setStyle(PDF_TABLE_STYLE)
        story.append(table)

    buffer = io.BytesIO()
    margin = 18
    SimpleDocTemplate(
        buffer,
        pagesize=landscape(letter),
        leftMargin=margin,
        rightMargin=margin,
        topMargin=margin,
        bottomMargin=margin,
        title=title,
    ).build(story)
    return buffer.getvalue()


WRITERS: Dict[str, tuple[Callable[[BaseModel, str], bytes], str]] = {
    "csv": (_csv, "text/csv"),
    "xlsx": (_xlsx, XLSX_MEDIA_TYPE),
    "pdf": (_pdf, "application/pdf"),
}


# PUBLIC_INTERFACE
def export_report(report: BaseModel, name: str, export_format: str) -> ExportedFile:
    """
    Render report as csv, xlsx or pdf.

    Args:
        report: any report model with rows (and usually kpis).
        name: snake_case base name for the file, e.g. "sales_by_month".
        export_format: one of WRITERS.
    Raises:
        ValueError: unknown format.
    """
    try:
        writer, media_type = WRITERS[export_format]
    except KeyError:
        raise ValueError(f"Unsupported export format: {export_format}") from None
    title = name.replace("_", " ").title()
    return ExportedFile(writer(report, title), media_type, f"{name}.{export_format}")
