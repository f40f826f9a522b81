"""
Approved-report PDF rendering.

Renders the snapshot stored on a FinancialReport (statement lines, section
totals and the approval chain) to ``REPORT_PDF_DIR/report_<id>_v<version>.pdf``
and returns the path.  Called from the final DG approval; the caller treats
any failure as non-fatal.
"""

import io
import logging
import os
from datetime import datetime, timezone

from flask import current_app
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.services.ledger.codes import QUARTERS, SECTION_NAMES

logger = logging.getLogger(__name__)


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name="ReportTitle",
        parent=styles["Heading1"],
        fontSize=16,
        alignment=TA_CENTER,
        spaceAfter=12,
        textColor=colors.HexColor("#1a365d"),
    ))
    styles.add(ParagraphStyle(
        name="ReportSubtitle",
        parent=styles["Heading2"],
        fontSize=11,
        alignment=TA_CENTER,
        spaceAfter=8,
        textColor=colors.HexColor("#4a5568"),
    ))
    styles.add(ParagraphStyle(
        name="Footer",
        parent=styles["Normal"],
        fontSize=8,
        textColor=colors.gray,
    ))
    return styles


def format_amount(value) -> str:
    """Dash for unreported, thousands separators otherwise."""
    if value is None:
        return "-"
    return f"{value:,.2f}"


def _statement_table(lines: list) -> Table:
    data = [["Code", "Activity", "Q1", "Q2", "Q3", "Q4", "Cumulative"]]
    bold_rows = []
    for line in lines:
        if line.get("kind") in ("category", "total", "computed"):
            bold_rows.append(len(data))
        data.append([
            line.get("section", "") if line.get("kind") == "category" else "",
            line.get("name", ""),
            *[format_amount(line.get(q)) for q in QUARTERS],
            format_amount(line.get("cumulativeBalance")),
        ])

    table = Table(
        data,
        colWidths=[0.5 * inch, 2.9 * inch, 0.8 * inch, 0.8 * inch, 0.8 * inch, 0.8 * inch, 0.9 * inch],
        repeatRows=1,
    )
    style = [
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#2d3748")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 7),
        ("ALIGN", (2, 1), (-1, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.gray),
        ("TOPPADDING", (0, 1), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 1), (-1, -1), 2),
    ]
    for row in bold_rows:
        style.append(("FONTNAME", (0, row), (-1, row), "Helvetica-Bold"))
        style.append(("BACKGROUND", (0, row), (-1, row), colors.HexColor("#edf2f7")))
    table.setStyle(TableStyle(style))
    return table


def _approval_table(report) -> Table:
    def _ts(value):
        return value.strftime("%Y-%m-%d %H:%M") if value else ""

    data = [
        ["Stage", "Actor", "Date", "Comment"],
        ["Submitted", str(report.submitted_by or ""), _ts(report.submitted_at), ""],
        ["DAF approval", str(report.daf_id or ""), _ts(report.daf_approved_at), report.daf_comment or ""],
        ["DG approval", str(report.dg_id or ""), _ts(report.dg_approved_at), report.dg_comment or ""],
    ]
    table = Table(data, colWidths=[1.3 * inch, 0.9 * inch, 1.4 * inch, 3.9 * inch])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#e2e8f0")),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.gray),
    ]))
    return table


def render_report_pdf(report) -> bytes:
    """Build the PDF document for *report* in memory."""
    snapshot = report.report_data or {}
    statement = snapshot.get("statement") or {}
    metadata = statement.get("metadata") or {}
    styles = _styles()

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=0.5 * inch,
        leftMargin=0.5 * inch,
        topMargin=0.5 * inch,
        bottomMargin=0.5 * inch,
        title=report.title,
    )

    elements = [
        Paragraph(report.title, styles["ReportTitle"]),
        Paragraph(
            f"{report.project_type} · facility {report.facility_id} · "
            f"reporting period {report.reporting_period_id} · version {report.version or '-'}",
            styles["ReportSubtitle"],
        ),
        Spacer(1, 12),
        _statement_table(statement.get("lines") or []),
        Spacer(1, 12),
    ]

    totals = statement.get("totals") or {}
    summary = [["Section", "Cumulative"]] + [
        [f"{letter}. {SECTION_NAMES.get(letter, '')}", format_amount(totals.get(letter))]
        for letter in sorted(totals)
    ]
    summary.append(["Cash at bank", format_amount(metadata.get("cashAtBank"))])
    summary.append(["Total unpaid", format_amount(metadata.get("totalUnpaid"))])
    summary_table = Table(summary, colWidths=[3.0 * inch, 1.5 * inch])
    summary_table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("ALIGN", (1, 1), (1, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.gray),
    ]))
    elements.append(summary_table)
    elements.append(Spacer(1, 12))

    if metadata.get("isBalanced"):
        elements.append(Paragraph("Net financial assets equal the closing balance.", styles["Footer"]))
    else:
        elements.append(Paragraph(
            f"Out of balance by {format_amount(metadata.get('difference'))}",
            ParagraphStyle("Warning", parent=styles["Footer"], textColor=colors.red),
        ))

    elements.append(Spacer(1, 12))
    elements.append(_approval_table(report))
    elements.append(Spacer(1, 20))
    elements.append(HRFlowable(width="100%", color=colors.gray))
    elements.append(Paragraph(
        f"Snapshot checksum {report.snapshot_checksum or '-'} · generated "
        f"{datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M')} UTC",
        styles["Footer"],
    ))

    doc.build(elements)
    return buffer.getvalue()


def generate_report_pdf(report) -> str:
    """Write the approved-report PDF and return its path."""
    directory = current_app.config["REPORT_PDF_DIR"]
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"report_{report.id}_v{report.version or '0'}.pdf")
    content = render_report_pdf(report)
    with open(path, "wb") as fh:
        fh.write(content)
    logger.info(
        "Report PDF written",
        extra={"report_id": report.id, "version": report.version},
    )
    return path
