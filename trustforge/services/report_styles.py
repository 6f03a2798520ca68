"""
report_styles.py
~~~~~~~~~~~~~~~~
Shared palette, paragraph styles, table builder and page callbacks for the
PDF scan report.
"""
from __future__ import annotations

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import HRFlowable, Spacer, Table, TableStyle
from reportlab.platypus.flowables import Flowable


# ─── Brand Color Palette ─────────────────────────────────────────────────────
class Brand:
    ACCENT        = colors.HexColor("#1d4ed8")   # headings, header bar
    TABLE_HEADER  = colors.HexColor("#1e3a8a")   # table header row
    TABLE_ROW_ALT = colors.HexColor("#eff6ff")   # alternating row fill
    TABLE_ROW     = colors.white                 # default row
    TEXT_DARK     = colors.HexColor("#0f172a")   # body text
    TEXT_LIGHT    = colors.white                 # text on dark backgrounds
    DIVIDER       = colors.HexColor("#bfdbfe")   # horizontal rule color
    SCORE_GOOD    = colors.HexColor("#16a34a")   # trust score >= 80
    SCORE_FAIR    = colors.HexColor("#d97706")   # trust score >= 60
    SCORE_POOR    = colors.HexColor("#dc2626")   # trust score < 60


SEVERITY_COLORS = {
    "high": Brand.SCORE_POOR,
    "medium": Brand.SCORE_FAIR,
    "low": colors.HexColor("#2563eb"),
    "info": colors.HexColor("#64748b"),
}


def score_color(score: int) -> colors.Color:
    if score >= 80:
        return Brand.SCORE_GOOD
    if score >= 60:
        return Brand.SCORE_FAIR
    return Brand.SCORE_POOR


# ─── Style Factory ───────────────────────────────────────────────────────────
def get_styles() -> dict[str, ParagraphStyle]:
    """Branded style sheet keyed by style name."""
    base = getSampleStyleSheet()
    custom: dict[str, ParagraphStyle] = {}

    custom["ReportTitle"] = ParagraphStyle(
        "ReportTitle",
        parent=base["Title"],
        fontSize=22,
        textColor=Brand.TEXT_DARK,
        alignment=TA_CENTER,
        spaceAfter=10,
    )
    custom["SectionHeading"] = ParagraphStyle(
        "SectionHeading",
        parent=base["Heading2"],
        fontSize=14,
        textColor=Brand.ACCENT,
        spaceBefore=10,
        spaceAfter=6,
        alignment=TA_LEFT,
    )
    custom["SubHeading"] = ParagraphStyle(
        "SubHeading",
        parent=base["Heading3"],
        fontSize=11,
        textColor=Brand.TEXT_DARK,
        spaceBefore=6,
        spaceAfter=3,
    )
    custom["Body"] = ParagraphStyle(
        "Body",
        parent=base["Normal"],
        fontSize=10,
        textColor=Brand.TEXT_DARK,
        leading=14,
    )
    custom["Small"] = ParagraphStyle(
        "Small",
        parent=base["Normal"],
        fontSize=8,
        textColor=Brand.TEXT_DARK,
        leading=10,
    )
    custom["Score"] = ParagraphStyle(
        "Score",
        parent=base["Title"],
        fontSize=40,
        leading=46,
        alignment=TA_CENTER,
    )
    return custom


# ─── Page Callback ───────────────────────────────────────────────────────────
def page_callback(canvas, doc) -> None:
    """Thin accent bar at the top and the page number at the bottom of every page."""
    width, height = A4
    canvas.saveState()
    canvas.setFillColor(Brand.ACCENT)
    canvas.rect(0, height - 8 * mm, width, 8 * mm, fill=1, stroke=0)
    canvas.setFillColor(Brand.TEXT_LIGHT)
    canvas.setFont("Helvetica-Bold", 9)
    canvas.drawString(20 * mm, height - 5.5 * mm, "TrustForge Security Scan Report")
    canvas.setFillColor(colors.grey)
    canvas.setFont("Helvetica", 8)
    canvas.drawCentredString(width / 2, 8 * mm, f"Page {doc.page}")
    canvas.restoreState()


# ─── Styled Table Builder ────────────────────────────────────────────────────
def build_styled_table(data: list[list], col_widths: list[float] | None = None) -> Table:
    """
    Build a Table with the branded style.

    Args:
        data:       2D list where data[0] is the header row.
        col_widths: Optional list of column widths in points.
    """
    t = Table(data, colWidths=col_widths, repeatRows=1)

    style_commands = [
        # Header row
        ("BACKGROUND", (0, 0), (-1, 0), Brand.TABLE_HEADER),
        ("TEXTCOLOR", (0, 0), (-1, 0), Brand.TEXT_LIGHT),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("BOTTOMPADDING", (0, 0), (-1, 0), 6),
        ("TOPPADDING", (0, 0), (-1, 0), 6),
        # Body rows
        ("BACKGROUND", (0, 1), (-1, -1), Brand.TABLE_ROW),
        ("TEXTCOLOR", (0, 1), (-1, -1), Brand.TEXT_DARK),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.5, Brand.DIVIDER),
    ]

    for row_idx in range(2, len(data), 2):
        style_commands.append(("BACKGROUND", (0, row_idx), (-1, row_idx), Brand.TABLE_ROW_ALT))

    t.setStyle(TableStyle(style_commands))
    return t


# ─── Section Divider ─────────────────────────────────────────────────────────
def divider() -> list[Flowable]:
    return [
        Spacer(1, 4 * mm),
        HRFlowable(width="100%", thickness=1, color=Brand.DIVIDER, spaceAfter=4),
        Spacer(1, 2 * mm),
    ]
