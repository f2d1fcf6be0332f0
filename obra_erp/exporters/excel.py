"""
Excel renderer built on openpyxl.

Layout of the generated sheet, top to bottom:
company header, title, subtitle, project block, metadata, column header,
data rows, totals row.
"""

import re
from datetime import date, datetime
from io import BytesIO
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from obra_erp.core.logging import get_logger
from obra_erp.exporters.base import ExportColumn, ExportConfig, generated_by
from obra_erp.exporters.formatting import get_legal_id_display

log = get_logger(__name__)

NUMBER_FORMATS: dict[str, str] = {
    "currency": "#,##0.00",
    "number": "#,##0.##",
    "percentage": '0.00"%"',
    "date": "DD/MM/YYYY",
}

HEADER_FILL = PatternFill(start_color="1E3A5F", end_color="1E3A5F", fill_type="solid")
HEADER_FONT = Font(bold=True, color="FFFFFF")
TOTALS_FILL = PatternFill(start_color="F3F4F6", end_color="F3F4F6", fill_type="solid")
THIN = Side(style="thin", color="D1D5DB")
CELL_BORDER = Border(left=THIN, right=THIN, top=THIN, bottom=THIN)

_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")


def safe_sheet_name(name: str) -> str:
    """Excel sheet names: no []:*?/\\ and at most 31 characters."""
    cleaned = _INVALID_SHEET_CHARS.sub("", name or "").strip()
    return (cleaned or "Datos")[:31]


def _cell_value(column: ExportColumn, value: Any) -> Any:
    if value is None:
        return None
    if column.type in ("number", "currency", "percentage"):
        try:
            return float(value)
        except (TypeError, ValueError):
            return value
    if column.type == "date":
        if isinstance(value, (date, datetime)):
            return value
        try:
            return datetime.fromisoformat(str(value))
        except ValueError:
            return value
    return value


class ExcelExporter:
    """Render an ExportConfig into an .xlsx workbook."""

    def __init__(self, config: ExportConfig):
        self.config = config
        self.workbook = Workbook()
        self.sheet = self.workbook.active
        self.sheet.title = safe_sheet_name(config.sheet_name)
        self.row = 1

    @property
    def columns(self) -> list[ExportColumn]:
        return self.config.visible_columns

    def _write_line(self, text: str, font: Font | None = None) -> None:
        cell = self.sheet.cell(row=self.row, column=1, value=text)
        if font is not None:
            cell.font = font
        width = max(len(self.columns), 1)
        if width > 1:
            self.sheet.merge_cells(
                start_row=self.row, start_column=1, end_row=self.row, end_column=width
            )
        self.row += 1

    def _write_company_header(self) -> None:
        org = self.config.org
        if not self.config.include_company_header or org is None:
            return
        self._write_line(org.display_name, Font(bold=True, size=14))
        legal_id = get_legal_id_display(org.tax_id, org.country)
        if legal_id:
            self._write_line(str(legal_id), Font(size=9, color="64748B"))
        address = ", ".join(p for p in (org.address, org.city) if p)
        if address:
            self._write_line(address, Font(size=9, color="64748B"))
        self.row += 1

    def _write_titles(self) -> None:
        self._write_line(self.config.title, Font(bold=True, size=13))
        if self.config.subtitle:
            self._write_line(self.config.subtitle, Font(italic=True, size=10))

    def _write_project(self) -> None:
        project = self.config.project
        if project is None:
            return
        self._write_line(f"Proyecto: {project.name} ({project.number})", Font(bold=True))
        if project.client:
            self._write_line(f"Cliente: {project.client}")
        if project.location:
            self._write_line(f"Ubicación: {project.location}")

    def _write_metadata(self) -> None:
        meta = self.config.metadata
        if meta is None:
            return
        small = Font(size=9, color="64748B")
        if meta.version:
            self._write_line(f"Versión: {meta.version}", small)
        if meta.date:
            self._write_line(f"Fecha: {meta.date.strftime('%d/%m/%Y %H:%M')}", small)
        self._write_line(
            f"Generado por: {meta.generated_by or generated_by(self.config.org)}", small
        )
        for entry in meta.filters:
            self._write_line(entry, small)

    def _write_table(self) -> tuple[int, int]:
        self.row += 1
        header_row = self.row
        for index, column in enumerate(self.columns, start=1):
            cell = self.sheet.cell(row=header_row, column=index, value=column.label)
            cell.font = HEADER_FONT
            cell.fill = HEADER_FILL
            cell.border = CELL_BORDER
            cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
            self.sheet.column_dimensions[get_column_letter(index)].width = column.width or 15

        self.row += 1
        for record in self.config.data:
            for index, column in enumerate(self.columns, start=1):
                cell = self.sheet.cell(
                    row=self.row,
                    column=index,
                    value=_cell_value(column, record.get(column.field)),
                )
                cell.border = CELL_BORDER
                cell.alignment = Alignment(horizontal=column.alignment)
                if column.type in NUMBER_FORMATS:
                    cell.number_format = NUMBER_FORMATS[column.type]
            self.row += 1
        last_data_row = self.row - 1
        return header_row, last_data_row

    def _write_totals(self) -> None:
        totals = self.config.totals
        if totals is None:
            return
        sums = self.config.totals_row()
        for index, column in enumerate(self.columns, start=1):
            if index == 1:
                value: Any = totals.label
            else:
                value = sums.get(column.field)
            cell = self.sheet.cell(row=self.row, column=index, value=value)
            cell.font = Font(bold=True)
            cell.fill = TOTALS_FILL
            cell.border = CELL_BORDER
            if column.field in sums and column.type in NUMBER_FORMATS:
                cell.number_format = NUMBER_FORMATS[column.type]
                cell.alignment = Alignment(horizontal="right")
        self.row += 1

    def render(self) -> bytes:
        """Build the sheet and return the workbook as bytes."""
        self._write_company_header()
        self._write_titles()
        self._write_project()
        self._write_metadata()
        header_row, last_data_row = self._write_table()
        self._write_totals()

        if self.config.freeze_header:
            self.sheet.freeze_panes = self.sheet.cell(row=header_row + 1, column=1)
        if self.config.auto_filter and self.columns:
            last_col = get_column_letter(len(self.columns))
            end_row = max(last_data_row, header_row)
            self.sheet.auto_filter.ref = f"A{header_row}:{last_col}{end_row}"

        buffer = BytesIO()
        self.workbook.save(buffer)
        log.info(
            "excel_export_rendered",
            title=self.config.title,
            rows=len(self.config.data),
            columns=len(self.columns),
        )
        return buffer.getvalue()


def export_to_excel(config: ExportConfig) -> bytes:
    return ExcelExporter(config).render()
