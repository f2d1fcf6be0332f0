"""
PDF renderer built on reportlab.

Draws the shared document header (organization, legal id, project, date,
folio, issuer), an optional project info block, the data table with a
repeated header row and totals, and a "Página X de Y" footer.
"""

from datetime import datetime
from io import BytesIO
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import A4, LEGAL, LETTER, landscape, portrait
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from obra_erp.core.logging import get_logger
from obra_erp.exporters.base import ExportColumn, ExportConfig
from obra_erp.exporters.formatting import (
    format_currency,
    format_date,
    format_number,
    format_percentage,
    get_legal_id_display,
)

log = get_logger(__name__)

PAGE_SIZES = {"A4": A4, "Letter": LETTER, "Legal": LEGAL}

SLATE = HexColor("#64748B")
CHARCOAL = HexColor("#0F172A")
HEADER_BG = HexColor("#E2E8F0")
TABLE_HEAD_BG = HexColor("#F3F4F6")
GRID = HexColor("#E2E8F0")
MARGIN = 15 * mm


class NumberedCanvas(canvas.Canvas):
    """Canvas that knows the total page count when drawing footers."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_pages: list[dict[str, Any]] = []

    def showPage(self):
        self._saved_pages.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_pages)
        for state in self._saved_pages:
            self.__dict__.update(state)
            self._draw_footer(total)
            super().showPage()
        super().save()

    def _draw_footer(self, total: int) -> None:
        width, _ = self._pagesize
        self.setFont("Helvetica", 8)
        self.setFillColor(SLATE)
        self.drawCentredString(width / 2, 8 * mm, f"Página {self._pageNumber} de {total}")


def format_cell(column: ExportColumn, value: Any) -> str:
    if value is None or value == "":
        return ""
    if column.type == "currency":
        return format_currency(value)
    if column.type == "number":
        return format_number(value)
    if column.type == "percentage":
        return format_percentage(value)
    if column.type == "date":
        return format_date(value)
    return str(value)


class PdfRenderer:
    """Render an ExportConfig into PDF bytes."""

    def __init__(self, config: ExportConfig, issued_by: str | None = None):
        self.config = config
        self.issued_by = issued_by
        styles = getSampleStyleSheet()
        self.styles = {
            "org": ParagraphStyle(
                "org", parent=styles["Heading2"], fontSize=11, textColor=CHARCOAL, spaceAfter=1
            ),
            "small": ParagraphStyle("small", parent=styles["Normal"], fontSize=7.5, textColor=SLATE, leading=9),
            "small_right": ParagraphStyle(
                "small_right", parent=styles["Normal"], fontSize=7.5, textColor=SLATE,
                leading=9, alignment=TA_RIGHT,
            ),
            "title": ParagraphStyle("title", parent=styles["Heading2"], fontSize=13, textColor=CHARCOAL),
            "body": ParagraphStyle("body", parent=styles["Normal"], fontSize=8, leading=10),
            "cell": ParagraphStyle("cell", parent=styles["Normal"], fontSize=7, leading=8.5),
        }

    @property
    def pagesize(self) -> tuple[float, float]:
        size = PAGE_SIZES.get(self.config.page_size, A4)
        return landscape(size) if self.config.orientation == "landscape" else portrait(size)

    def _p(self, text: str, style: str) -> Paragraph:
        return Paragraph(escape(text), self.styles[style])

    def _header(self, width: float) -> Table:
        org = self.config.org
        left: list[Any] = []
        if org is not None and self.config.include_company_header:
            left.append(self._p(org.display_name.upper(), "org"))
            legal_id = get_legal_id_display(org.tax_id, org.country)
            for line in (str(legal_id) if legal_id else None, org.address, org.email, org.phone):
                if line and str(line).strip():
                    left.append(self._p(str(line), "small"))
        project = self.config.project
        if project is not None:
            label = project.name + (f" ({project.number})" if project.number else "")
            left.append(self._p(label, "small"))

        right = [self._p(f"Fecha: {datetime.now().strftime('%d/%m/%Y')}", "small_right")]
        if self.config.folio_line:
            right.append(self._p(self.config.folio_line, "small_right"))
        if self.issued_by and self.issued_by.strip():
            right.append(self._p(f"Emitido por: {self.issued_by.strip()}", "small_right"))

        table = Table([[left or "", right]], colWidths=[width * 0.65, width * 0.35])
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, -1), HEADER_BG),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("TOPPADDING", (0, 0), (-1, -1), 6),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        return table

    def _project_info(self) -> list[Any]:
        project = self.config.project
        if project is None:
            return []
        rows = [f"Proyecto: {project.name}"]
        if project.client:
            rows.append(f"Cliente: {project.client}")
        if project.location:
            rows.append(f"Ubicación: {project.location}")
        return [self._p(r, "body") for r in rows]

    def _table(self, width: float) -> Table:
        columns = self.config.visible_columns
        total_weight = sum(c.width or 15 for c in columns) or 1
        col_widths = [width * (c.width or 15) / total_weight for c in columns]

        data: list[list[Any]] = [[self._p(c.label, "cell") for c in columns]]
        for record in self.config.data:
            row = []
            for column in columns:
                text = format_cell(column, record.get(column.field))
                if column.type != "text":
                    row.append(text)
                    continue
                markup = escape(text)
                if column.field in ("code", "description") and "level" in record:
                    markup = "&nbsp;" * 3 * int(record.get("level") or 0) + markup
                row.append(Paragraph(markup, self.styles["cell"]))
            data.append(row)

        has_totals = self.config.totals is not None
        if has_totals:
            sums = self.config.totals_row()
            totals = []
            for index, column in enumerate(columns):
                if index == 0:
                    totals.append(self.config.totals.label)
                elif column.field in sums:
                    totals.append(format_cell(column, sums[column.field]))
                else:
                    totals.append("")
            data.append(totals)

        style = [
            ("GRID", (0, 0), (-1, -1), 0.5, GRID),
            ("BACKGROUND", (0, 0), (-1, 0), TABLE_HEAD_BG),
            ("FONTSIZE", (0, 0), (-1, -1), 7),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]
        for index, column in enumerate(columns):
            if column.alignment == "right":
                style.append(("ALIGN", (index, 1), (index, -1), "RIGHT"))
            elif column.alignment == "center":
                style.append(("ALIGN", (index, 1), (index, -1), "CENTER"))
        if has_totals:
            style.extend(
                [
                    ("BACKGROUND", (0, -1), (-1, -1), TABLE_HEAD_BG),
                    ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ]
            )

        table = Table(data, colWidths=col_widths, repeatRows=1)
        table.setStyle(TableStyle(style))
        return table

    def render(self) -> bytes:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=self.pagesize,
            leftMargin=MARGIN,
            rightMargin=MARGIN,
            topMargin=MARGIN,
            bottomMargin=MARGIN,
            title=self.config.title,
        )
        width = doc.width

        story: list[Any] = [self._header(width), Spacer(1, 8 * mm)]
        story.append(self._p(self.config.title, "title"))
        if self.config.subtitle:
            story.append(self._p(self.config.subtitle, "body"))
        story.extend(self._project_info())
        story.append(Spacer(1, 4 * mm))
        story.append(self._table(width))

        canvasmaker = NumberedCanvas if self.config.show_page_numbers else canvas.Canvas
        doc.build(story, canvasmaker=canvasmaker)
        log.info("pdf_rendered", title=self.config.title, rows=len(self.config.data))
        return buffer.getvalue()


def render_pdf(config: ExportConfig, issued_by: str | None = None) -> bytes:
    return PdfRenderer(config, issued_by=issued_by).render()
