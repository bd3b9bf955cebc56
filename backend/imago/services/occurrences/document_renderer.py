"""PDF rendering of finalized occurrence records."""

from __future__ import annotations

from datetime import date, datetime
from io import BytesIO
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ...models.db_models import OccurrenceDB

PDF_CONTENT_TYPE = "application/pdf"

FOOTER_LINES = [
    "Imago - Occurrence Management",
    "This document is valid as proof of registration and analysis of the occurrence.",
    "The final decision is the responsibility of the operator.",
]


def document_name(protocol_number: str) -> str:
    return f"{protocol_number}.pdf"


def _fmt_date(value: Optional[date]) -> str:
    return value.strftime("%d/%m/%Y") if value else "-"


def _fmt_datetime(value: Optional[datetime]) -> str:
    return value.strftime("%d/%m/%Y %H:%M") if value else "-"


def _text(value: Optional[str]) -> str:
    # Paragraph parses a mini markup language; user text must not reach it raw
    return escape(value or "").replace("\n", "<br/>")


def _field_table(rows: List[List[str]], body_style) -> Table:
    data = [
        [Paragraph(f"<b>{escape(label)}</b>", body_style), Paragraph(value, body_style)]
        for label, value in rows
    ]
    table = Table(data, colWidths=[130, 370])
    table.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]))
    return table


def _boxed(text: str, body_style, background=colors.whitesmoke) -> Table:
    box = Table([[Paragraph(text, body_style)]], colWidths=[500])
    box.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), background),
        ("BOX", (0, 0), (-1, -1), 0.5, colors.lightgrey),
        ("LEFTPADDING", (0, 0), (-1, -1), 8),
        ("RIGHTPADDING", (0, 0), (-1, -1), 8),
        ("TOPPADDING", (0, 0), (-1, -1), 6),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))
    return box


def build_pdf(
    *,
    occurrence: OccurrenceDB,
    protocol_number: str,
    generated_at: datetime,
) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        title=f"Occurrence {protocol_number}",
        leftMargin=40,
        rightMargin=40,
        topMargin=48,
        bottomMargin=40,
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("OccTitle", parent=styles["Title"], textColor=colors.HexColor("#4f46e5"))
    section_style = ParagraphStyle("OccSection", parent=styles["Heading3"], textColor=colors.HexColor("#4f46e5"))
    body_style = styles["BodyText"]
    footer_style = ParagraphStyle("OccFooter", parent=styles["BodyText"], fontSize=8, textColor=colors.grey, alignment=1)

    elements = [
        Paragraph("OCCURRENCE RECORD", title_style),
        Paragraph(f"<b>{escape(protocol_number)}</b>", ParagraphStyle("OccProto", parent=body_style, alignment=1, fontSize=13)),
        Paragraph(f"Generated at: {_fmt_datetime(generated_at)}", ParagraphStyle("OccGen", parent=body_style, alignment=1)),
        Spacer(1, 18),
    ]

    elements.append(Paragraph("Reporter", section_style))
    elements.append(_field_table([
        ["Name", _text(occurrence.reporter_name)],
        ["Phone", _text(occurrence.reporter_phone)],
        ["Birthdate", _fmt_date(occurrence.reporter_birthdate)],
    ], body_style))
    elements.append(Spacer(1, 12))

    elements.append(Paragraph("Occurrence", section_style))
    elements.append(_field_table([
        ["Category", _text(occurrence.category.value if occurrence.category else "")],
        ["Registered at", _fmt_datetime(occurrence.created_at)],
    ], body_style))
    elements.append(Paragraph("<b>Reason</b>", body_style))
    elements.append(_boxed(_text(occurrence.reason), body_style))
    elements.append(Spacer(1, 12))

    if occurrence.admin_note and occurrence.admin_note.strip():
        elements.append(Paragraph("Operator Note", section_style))
        elements.append(_boxed(_text(occurrence.admin_note), body_style))
        elements.append(Spacer(1, 12))

    ai_rows = [
        (label, value) for label, value in (
            ("Classification", occurrence.ai_classification),
            ("Summary", occurrence.ai_summary),
            ("Conclusion", occurrence.ai_conclusion),
        ) if value
    ]
    if ai_rows:
        elements.append(Paragraph("AI Analysis", section_style))
        for label, value in ai_rows:
            elements.append(Paragraph(f"<b>{label}</b>", body_style))
            elements.append(_boxed(_text(value), body_style, background=colors.HexColor("#eef2ff")))
            elements.append(Spacer(1, 6))
        elements.append(Spacer(1, 6))

    elements.append(Spacer(1, 24))
    for line in FOOTER_LINES:
        elements.append(Paragraph(escape(line), footer_style))

    doc.build(elements)
    return buffer.getvalue()
