"""
report_builder.py — PDF and Excel report generation.

Two steps per export:
- build_*:  pure functions returning a plain report model (dicts / lists),
            testable without any rendering library
- render_*: turn a model into document bytes (reportlab / openpyxl)

Generates:
- Statistics Report PDF (summary, top savers, monthly trend, itemized list ≤ 50 rows)
- Class Report PDF      (logo, organization subtitle, full class list, class total)
- Workbook Export       (summary sheet, all students, per-class breakdown)

All PDFs are A4 with organization name / date footer. Bytes are produced in
memory; nothing reaches disk unless the whole document was built.
"""

import io
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend for server use
import matplotlib.pyplot as plt
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from reportlab.graphics.shapes import Circle, Drawing, String
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm, mm
from reportlab.platypus import (
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from core.cleaner import Gender, as_text, normalize_savings
from core.errors import EmptyExportError, ExportError
from core.stats import (
    class_name_lookup,
    compute_class_summaries,
    resolve_class_name,
    sort_class_breakdown,
)

DETAIL_ROW_LIMIT = 50
WORKBOOK_PREFIX = "Koperasi_Export"


# ── Colour palette ──────────────────────────────────────────────────

BRAND_DARK  = colors.HexColor("#1f2937")
BRAND_ACCENT = colors.HexColor("#3b82f6")
BRAND_PINK  = colors.HexColor("#f472b6")
GREEN       = colors.HexColor("#10b981")
LIGHT_GREY  = colors.HexColor("#f5f5f5")
WHITE       = colors.white

MPL_BLUE = "#3b82f6"
MPL_GREEN = "#10b981"


# ── Formatting ──────────────────────────────────────────────────────

def format_money(value: Any, prefix: str = "RM ") -> str:
    """Two fraction digits, comma thousands: 1234.5 → 'RM 1,234.50'."""
    return f"{prefix}{normalize_savings(value, strict=False):,.2f}"


def format_percentage(value: Any) -> str:
    return f"{float(value or 0):.1f}%"


def _safe_token(value: str, fallback: str = "item") -> str:
    """Create filesystem-safe token for filenames."""
    token = re.sub(r"[^A-Za-z0-9._-]+", "_", str(value)).strip("._-")
    return token or fallback


def report_filename(organization: str, label: str, when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    return f"{_safe_token(organization, 'Koperasi')}_{_safe_token(label, 'Laporan')}_{when:%d-%m-%Y}.pdf"


def workbook_filename(when: Optional[datetime] = None) -> str:
    when = when or datetime.now()
    return f"{WORKBOOK_PREFIX}_{when:%Y-%m-%d}.xlsx"


def _gender_label(value: Any) -> str:
    text = as_text(value).upper()
    if text == Gender.FEMALE.value:
        return Gender.FEMALE.value
    if text == Gender.MALE.value:
        return Gender.MALE.value
    return text or "N/A"


# ═══════════════════════════════════════════════════════════════════
# REPORT MODELS
# ═══════════════════════════════════════════════════════════════════

def build_statistics_report(
    students: Sequence[Dict[str, Any]],
    classes: Sequence[Dict[str, Any]],
    stats: Dict[str, Any],
    organization: str,
    context: Optional[Dict[str, str]] = None,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Company-wide statistics report.

    ``students`` is the record set the stats were computed from. The
    itemized list is only included up to DETAIL_ROW_LIMIT records; above
    that the report carries summary tables only.
    """
    generated_at = generated_at or datetime.now()
    lookup = class_name_lookup(classes)
    context = context or {}

    summary = [
        ["Kategori", "Butiran Statistik"],
        ["Jumlah Ahli Berdaftar", f"{stats['total_count']} Orang"],
        ["Jumlah Modal Syer Terkumpul", format_money(stats["total_savings"])],
        ["Purata Modal Syer", format_money(stats["average_savings"])],
        ["Modal Syer Tertinggi", format_money(stats["max_savings"])],
        ["Modal Syer Terendah", format_money(stats["min_savings"])],
        ["Bilangan Ahli Lelaki",
         f"{stats['male_count']} Orang ({format_percentage(stats['male_percentage'])})"],
        ["Bilangan Ahli Perempuan",
         f"{stats['female_count']} Orang ({format_percentage(stats['female_percentage'])})"],
        ["Ahli Baharu (30 Hari)", f"{stats['recent_count']} Orang"],
    ]

    top = [["Kedudukan", "Nama Pelajar", "Kelas", "Modal Syer"]]
    for s in stats.get("top_students", []):
        top.append([str(s["rank"]), s["name"].upper(), s["class_name"], format_money(s["savings"])])

    classes_table = [["Kelas", "Bil. Pelajar", "Jumlah Modal Syer", "Purata"]]
    for row in sort_class_breakdown(stats.get("class_breakdown", []), by="name"):
        classes_table.append([
            row["class_name"], str(row["count"]),
            format_money(row["total_savings"]), format_money(row["average_savings"]),
        ])

    detail = None
    if len(students) <= DETAIL_ROW_LIMIT:
        detail = [["No", "Nama Pelajar", "Kelas", "Jantina", "Syer"]]
        for idx, s in enumerate(students, 1):
            detail.append([
                str(idx),
                as_text(s.get("name")).upper(),
                resolve_class_name(s.get("class_id"), lookup, default="N/A"),
                _gender_label(s.get("gender")),
                format_money(s.get("savings")),
            ])

    label = context.get("label") or "Laporan_Statistik"
    return {
        "kind": "statistics",
        "title": f"LAPORAN STATISTIK {organization.upper()}",
        "organization": organization,
        "context_line": " | ".join(f"{k}: {v}" for k, v in context.items() if k != "label"),
        "generated_at": generated_at.isoformat(),
        "generated_label": f"Tarikh Cetakan: {generated_at:%d/%m/%Y} | Masa: {generated_at:%H:%M:%S}",
        "record_count": len(students),
        "summary": summary,
        "top": top,
        "classes": classes_table if len(classes_table) > 1 else None,
        "trend": stats.get("monthly_trend", []),
        "detail": detail,
        "detail_omitted": detail is None,
        "filename": report_filename(organization, label, generated_at),
    }


def build_class_report(
    class_record: Dict[str, Any],
    students: Sequence[Dict[str, Any]],
    organization: str,
    subtitle: str = "",
    logo_path: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Per-class member list with logo, subtitle and class total."""
    members = [s for s in students if as_text(s.get("class_id")) == as_text(class_record.get("id"))]
    if not members:
        raise EmptyExportError("Tiada pelajar dalam kelas ini untuk dieksport.")

    generated_at = generated_at or datetime.now()
    class_name = as_text(class_record.get("name")) or "N/A"
    total = sum(normalize_savings(s.get("savings"), strict=False) for s in members)

    detail = [["NO", "NAMA PELAJAR", "NO. IC", "NO. AHLI", "JANTINA", "MODAL SYER"]]
    for idx, s in enumerate(members, 1):
        detail.append([
            str(idx),
            as_text(s.get("name")).upper(),
            as_text(s.get("ic_number")) or "-",
            as_text(s.get("member_number")) or "-",
            _gender_label(s.get("gender")),
            format_money(s.get("savings")),
        ])

    return {
        "kind": "class",
        "title": organization.upper(),
        "organization": organization,
        "subtitle": subtitle,
        "class_name": class_name,
        "heading": f"SENARAI PELAJAR KELAS: {class_name.upper()}",
        "generated_at": generated_at.isoformat(),
        "generated_label": f"Tarikh: {generated_at:%d/%m/%Y} | Bil. Pelajar: {len(members)}",
        "record_count": len(members),
        "logo_path": logo_path,
        "detail": detail,
        "total_line": f"Jumlah Keseluruhan Simpanan: {format_money(total)}",
        "total_savings": total,
        "filename": report_filename(organization, f"Senarai_{class_name}", generated_at),
    }


def build_workbook_model(
    students: Sequence[Dict[str, Any]],
    classes: Sequence[Dict[str, Any]],
    stats: Dict[str, Any],
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Sheets as rows of raw values; money stays numeric."""
    generated_at = generated_at or datetime.now()
    lookup = class_name_lookup(classes)

    summary = [
        ["Perkara", "Nilai"],
        ["Jumlah Ahli", stats["total_count"]],
        ["Ahli Lelaki", stats["male_count"]],
        ["Ahli Perempuan", stats["female_count"]],
        ["Peratus Lelaki (%)", round(stats["male_percentage"], 1)],
        ["Peratus Perempuan (%)", round(stats["female_percentage"], 1)],
        ["Jumlah Modal Syer (RM)", stats["total_savings"]],
        ["Purata Modal Syer (RM)", stats["average_savings"]],
        ["Modal Syer Tertinggi (RM)", stats["max_savings"]],
        ["Modal Syer Terendah (RM)", stats["min_savings"]],
        ["Ahli Baharu (30 Hari)", stats["recent_count"]],
        ["Dijana Pada", generated_at.strftime("%Y-%m-%d %H:%M:%S")],
    ]

    student_rows = [[
        "id", "name", "gender", "class_id", "class_name",
        "member_number", "ic_number", "savings", "created_at",
    ]]
    for s in students:
        student_rows.append([
            s.get("id"),
            as_text(s.get("name")),
            _gender_label(s.get("gender")),
            s.get("class_id"),
            resolve_class_name(s.get("class_id"), lookup, default=""),
            s.get("member_number"),
            s.get("ic_number"),
            normalize_savings(s.get("savings"), strict=False),
            as_text(s.get("created_at")),
        ])

    summaries = compute_class_summaries(students, classes)
    class_rows = None
    if any(c["count"] > 0 for c in summaries):
        class_rows = [["Kelas", "Bil. Pelajar", "Jumlah Modal Syer (RM)", "Purata Modal Syer (RM)"]]
        for c in summaries:
            class_rows.append([c["name"], c["count"], c["total_savings"], c["average_savings"]])

    return {
        "sheets": {
            "Ringkasan": summary,
            "Pelajar": student_rows,
            **({"Kelas": class_rows} if class_rows else {}),
        },
        "money_columns": {
            "Ringkasan": [],
            "Pelajar": [8],
            "Kelas": [3, 4],
        },
        "filename": workbook_filename(generated_at),
    }


# ═══════════════════════════════════════════════════════════════════
# PDF RENDERING
# ═══════════════════════════════════════════════════════════════════

def _styles():
    """Return custom paragraph styles."""
    ss = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "CustomTitle", parent=ss["Title"],
            fontSize=18, leading=22, textColor=BRAND_DARK,
            spaceAfter=2 * mm,
        ),
        "subtitle": ParagraphStyle(
            "CustomSubtitle", parent=ss["Normal"],
            fontSize=11, leading=14, textColor=BRAND_ACCENT,
            spaceAfter=2 * mm,
        ),
        "heading": ParagraphStyle(
            "CustomHeading", parent=ss["Heading2"],
            fontSize=13, leading=16, textColor=BRAND_DARK,
            spaceBefore=6 * mm, spaceAfter=3 * mm,
        ),
        "body": ParagraphStyle(
            "CustomBody", parent=ss["Normal"],
            fontSize=10, leading=14, textColor=colors.black,
            spaceAfter=2 * mm,
        ),
        "small": ParagraphStyle(
            "CustomSmall", parent=ss["Normal"],
            fontSize=8, leading=10, textColor=colors.grey,
        ),
        "center": ParagraphStyle(
            "CenterBody", parent=ss["Normal"],
            fontSize=10, leading=14, alignment=TA_CENTER,
        ),
    }


def _make_table(data: List[List], col_widths=None, header_color=BRAND_ACCENT, right_align_cols=()):
    """Create a styled table."""
    style_cmds = [
        ("BACKGROUND", (0, 0), (-1, 0), header_color),
        ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), 9),
        ("FONTSIZE", (0, 1), (-1, -1), 8),
        ("ALIGN", (0, 0), (-1, -1), "LEFT"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#cccccc")),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [WHITE, LIGHT_GREY]),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]
    for col in right_align_cols:
        style_cmds.append(("ALIGN", (col, 1), (col, -1), "RIGHT"))
    t = Table(data, colWidths=col_widths, repeatRows=1)
    t.setStyle(TableStyle(style_cmds))
    return t


def _footer_text(organization: str, generated_at: str) -> str:
    stamp = datetime.fromisoformat(generated_at).strftime("%d/%m/%Y, %H:%M")
    return f"{organization} - Dijana {stamp}"


def _footer(canvas, doc, footer_text: str):
    """Draw the footer line and page number."""
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.grey)
    canvas.drawString(2 * cm, 1.2 * cm, footer_text)
    canvas.drawRightString(A4[0] - 2 * cm, 1.2 * cm, f"Muka Surat {doc.page}")
    canvas.restoreState()


def _chart_to_image(fig, width=15 * cm, height=6.5 * cm) -> Image:
    """Convert a matplotlib figure to a ReportLab Image."""
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=150, bbox_inches="tight")
    plt.close(fig)
    buf.seek(0)
    return Image(buf, width=width, height=height)


def _monthly_trend_chart(trend: List[Dict[str, Any]]) -> Optional[Image]:
    """Bars of monthly savings with new-member counts on top."""
    if not trend or not any(t.get("count") for t in trend):
        return None

    labels = [t["label"] for t in trend]
    totals = [float(t.get("total_savings") or 0) for t in trend]
    counts = [int(t.get("count") or 0) for t in trend]

    fig, ax = plt.subplots(figsize=(8, 3.5))
    bars = ax.bar(labels, totals, color=MPL_BLUE, edgecolor="white", linewidth=0.5)
    for bar, n in zip(bars, counts):
        if n:
            ax.text(bar.get_x() + bar.get_width() / 2, bar.get_height(),
                    f"{n}", ha="center", va="bottom", fontsize=8, fontweight="bold")

    ax.set_ylabel("Modal Syer (RM)", fontsize=9)
    ax.set_title("Trend Bulanan Ahli Baharu", fontsize=11, fontweight="bold", pad=10)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    return _chart_to_image(fig)


def _logo_flowable(logo_path: Optional[str], organization: str, size=2 * cm):
    """Configured logo image, or a drawn badge with the organization initials."""
    if logo_path and Path(logo_path).is_file():
        return Image(logo_path, width=size, height=size, kind="proportional")

    words = [w for w in re.split(r"\s+", organization) if w]
    initials = "".join(w[0] for w in words[:3]).upper() or "K"
    badge = Drawing(size, size)
    badge.add(Circle(size / 2, size / 2, size / 2 - 1, fillColor=BRAND_ACCENT, strokeColor=BRAND_DARK))
    badge.add(String(size / 2, size / 2 - 4, initials, textAnchor="middle",
                     fontName="Helvetica-Bold", fontSize=11, fillColor=WHITE))
    return badge


def _statistics_story(model: Dict[str, Any], st) -> List:
    story = [
        Paragraph(escape(model["title"]), st["title"]),
        Paragraph(escape(model["generated_label"]), st["center"]),
    ]
    if model.get("context_line"):
        story.append(Paragraph(escape(model["context_line"]), st["center"]))

    story.append(Paragraph("Ringkasan Eksekutif", st["heading"]))
    story.append(_make_table(model["summary"], col_widths=[8 * cm, 8 * cm]))

    story.append(Paragraph("Lima Pencarum Tertinggi", st["heading"]))
    if len(model["top"]) > 1:
        story.append(_make_table(model["top"], col_widths=[2.5 * cm, 6.5 * cm, 3.5 * cm, 3.5 * cm],
                                 right_align_cols=(3,)))
    else:
        story.append(Paragraph("Tiada data pelajar.", st["body"]))

    if model.get("classes"):
        story.append(Paragraph("Pecahan Mengikut Kelas", st["heading"]))
        story.append(_make_table(model["classes"], right_align_cols=(2, 3)))

    chart = _monthly_trend_chart(model.get("trend", []))
    if chart:
        story.append(Spacer(1, 4 * mm))
        story.append(chart)

    if model.get("detail"):
        story.append(PageBreak())
        story.append(Paragraph("Senarai Ahli Lengkap", st["heading"]))
        story.append(_make_table(
            model["detail"],
            col_widths=[1.2 * cm, 7 * cm, 3 * cm, 2.5 * cm, 3 * cm],
            header_color=BRAND_DARK,
            right_align_cols=(4,),
        ))
    elif model.get("detail_omitted"):
        story.append(Spacer(1, 4 * mm))
        story.append(Paragraph(
            f"Senarai terperinci tidak disertakan kerana melebihi {DETAIL_ROW_LIMIT} rekod "
            f"({model['record_count']} rekod).",
            st["small"],
        ))
    return story


def _class_story(model: Dict[str, Any], st) -> List:
    header_text = [Paragraph(escape(model["title"]), st["title"])]
    if model.get("subtitle"):
        header_text.append(Paragraph(escape(model["subtitle"]), st["subtitle"]))

    header = Table(
        [[_logo_flowable(model.get("logo_path"), model["organization"]), header_text]],
        colWidths=[2.6 * cm, 14 * cm],
    )
    header.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
    ]))

    return [
        header,
        Spacer(1, 4 * mm),
        Paragraph(escape(model["heading"]), st["body"]),
        Paragraph(escape(model["generated_label"]), st["body"]),
        Spacer(1, 3 * mm),
        _make_table(
            model["detail"],
            col_widths=[1.2 * cm, 5.8 * cm, 3 * cm, 2.2 * cm, 2.4 * cm, 2.6 * cm],
            right_align_cols=(5,),
        ),
        Spacer(1, 5 * mm),
        Paragraph(escape(model["total_line"]), st["body"]),
    ]


def render_report_pdf(model: Dict[str, Any]) -> bytes:
    """Render a statistics or class report model to PDF bytes."""
    try:
        st = _styles()
        if model["kind"] == "statistics":
            story = _statistics_story(model, st)
        elif model["kind"] == "class":
            story = _class_story(model, st)
        else:
            raise ValueError(f"Unknown report kind: {model['kind']}")

        buf = io.BytesIO()
        doc = SimpleDocTemplate(
            buf, pagesize=A4,
            leftMargin=2 * cm, rightMargin=2 * cm,
            topMargin=1.8 * cm, bottomMargin=2 * cm,
            title=model["title"], author=model["organization"],
        )
        footer_text = _footer_text(model["organization"], model["generated_at"])
        doc.build(
            story,
            onFirstPage=lambda c, d: _footer(c, d, footer_text),
            onLaterPages=lambda c, d: _footer(c, d, footer_text),
        )
        return buf.getvalue()
    except ExportError:
        raise
    except Exception as e:
        raise ExportError(f"Gagal menjana PDF: {e}") from e


# ═══════════════════════════════════════════════════════════════════
# WORKBOOK RENDERING
# ═══════════════════════════════════════════════════════════════════

def render_workbook(model: Dict[str, Any]) -> bytes:
    """Render a workbook model to .xlsx bytes."""
    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_fill = PatternFill(start_color="1f2937", end_color="1f2937", fill_type="solid")
    thin_border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )

    def _style_sheet(ws, money_cols):
        """Apply formatting to a worksheet."""
        for cell in ws[1]:
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center")
            cell.border = thin_border

        for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
            for cell in row:
                cell.border = thin_border
                if cell.column in money_cols:
                    cell.number_format = "#,##0.00"

        ws.freeze_panes = "A2"

        for col_cells in ws.columns:
            max_len = max(len(str(cell.value or "")) for cell in col_cells)
            ws.column_dimensions[col_cells[0].column_letter].width = min(max_len + 4, 40)

    try:
        wb = Workbook()
        wb.remove(wb.active)
        tab_colors = ["1f2937", "3b82f6", "10b981"]
        for i, (title, rows) in enumerate(model["sheets"].items()):
            ws = wb.create_sheet(title=title)
            ws.sheet_properties.tabColor = tab_colors[i % len(tab_colors)]
            for row in rows:
                ws.append(row)
            _style_sheet(ws, model.get("money_columns", {}).get(title, []))

        # Summary money rows are labelled "(RM)" in column A.
        if "Ringkasan" in wb.sheetnames:
            ws = wb["Ringkasan"]
            for label_cell, value_cell in ws.iter_rows(min_row=2, max_col=2):
                if "(RM)" in str(label_cell.value or ""):
                    value_cell.number_format = "#,##0.00"

        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()
    except Exception as e:
        raise ExportError(f"Gagal menjana fail Excel: {e}") from e
