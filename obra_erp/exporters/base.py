"""
Export configuration shared by the Excel and PDF renderers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from obra_erp.core.models import OrgProfile

COLUMN_TYPES = ("text", "number", "currency", "date", "percentage")


@dataclass
class ExportColumn:
    field: str
    label: str
    type: str = "text"
    width: int | None = None
    align: str | None = None
    visible: bool = True

    @property
    def alignment(self) -> str:
        if self.align:
            return self.align
        return "right" if self.type in ("number", "currency", "percentage") else "left"


@dataclass
class ProjectHeader:
    name: str
    number: str
    client: str | None = None
    location: str | None = None


@dataclass
class ExportMetadata:
    version: str | None = None
    date: datetime | None = None
    generated_by: str | None = None
    filters: list[str] = field(default_factory=list)


@dataclass
class ExportTotals:
    label: str
    fields: list[str]
    # precomputed sums, for hierarchical data where parent rows repeat their children
    values: dict[str, float] | None = None


@dataclass
class ExportConfig:
    """
    Everything a renderer needs: header blocks, columns, rows and totals.

    Excel-only options (sheet_name, freeze_header, auto_filter) and PDF-only
    options (orientation, page_size, show_page_numbers) live here too so one
    config can feed either renderer.
    """

    title: str
    columns: list[ExportColumn]
    data: list[dict[str, Any]]
    subtitle: str | None = None
    include_company_header: bool = True
    org: OrgProfile | None = None
    project: ProjectHeader | None = None
    metadata: ExportMetadata | None = None
    totals: ExportTotals | None = None
    group_by: str | None = None
    # Excel
    sheet_name: str = "Datos"
    freeze_header: bool = True
    auto_filter: bool = True
    # PDF
    orientation: str = "portrait"
    page_size: str = "A4"
    show_page_numbers: bool = True
    folio_line: str | None = None

    @property
    def visible_columns(self) -> list[ExportColumn]:
        return [c for c in self.columns if c.visible]

    def totals_row(self) -> dict[str, float]:
        """Sum of each totals field over the data rows."""
        if not self.totals:
            return {}
        if self.totals.values is not None:
            return {name: float(self.totals.values.get(name) or 0) for name in self.totals.fields}
        sums: dict[str, float] = {}
        for name in self.totals.fields:
            sums[name] = sum(float(row.get(name) or 0) for row in self.data)
        return sums


def select_columns(columns: list[ExportColumn], selected: list[str] | None) -> list[ExportColumn]:
    """Mark columns visible by field; no selection keeps every column."""
    if not selected:
        return columns
    wanted = set(selected)
    for column in columns:
        column.visible = column.field in wanted
    return columns


def generated_by(org: OrgProfile | None) -> str:
    if org is None:
        return "Sistema"
    return org.legal_name or org.name or "Sistema"
