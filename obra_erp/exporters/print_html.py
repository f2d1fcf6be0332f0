"""
Printable HTML for budget versions, rendered with Jinja2.

All values are autoescaped by the environment.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from obra_erp.core.budget import code_level, natural_code_key
from obra_erp.core.models import OrgProfile
from obra_erp.exporters.formatting import (
    format_currency,
    format_number,
    format_percentage,
    get_legal_id_display,
)

TEMPLATES_DIR = Path(__file__).parent / "templates"
INDENT_PX = 12

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


@dataclass
class BudgetPrintPage:
    project_name: str
    version_code: str
    rows: list[dict[str, Any]]
    grand_total: float
    project_number: str | None = None
    project_info: dict[str, Any] = field(default_factory=dict)


def build_budget_print_html(
    org: OrgProfile,
    page: BudgetPrintPage,
    issued_by: str | None = None,
    show_full_company_data: bool = True,
    include_incidence: bool = False,
) -> str:
    """
    Full HTML document for a budget version.

    Rows are sorted by WBS code (numeric-aware) and indented by code depth;
    none are filtered out.
    """
    legal_lines: list[str] = []
    if show_full_company_data:
        legal_id = get_legal_id_display(org.tax_id, org.country)
        for line in (str(legal_id) if legal_id else None, org.address, org.email, org.phone):
            if line is not None and str(line).strip():
                legal_lines.append(str(line))

    project_line = None
    if org.name and page.project_name:
        project_line = page.project_name + (f" ({page.project_number})" if page.project_number else "")

    info = page.project_info or {}
    info_rows = [
        (label, info[key])
        for key, label in (
            ("projectName", "Proyecto"),
            ("clientName", "Cliente"),
            ("location", "Ubicación"),
            ("startDate", "Inicio"),
            ("endDate", "Fecha de fin propuesta"),
        )
        if info.get(key) is not None and str(info.get(key)).strip()
    ]
    if info.get("surfaceM2") is not None and str(info["surfaceM2"]).strip():
        info_rows.append(("Superficie", f"{info['surfaceM2']} m²"))

    rows = []
    for row in sorted(page.rows, key=lambda r: natural_code_key(r.get("code") or "")):
        rows.append(
            {
                "indent": code_level(row.get("code") or "") * INDENT_PX,
                "code": row.get("code") or "",
                "description": row.get("description") or "",
                "unit": row.get("unit") or "",
                "quantity": format_number(row.get("quantity")),
                "unit_price": format_currency(row.get("unitPrice")),
                "total": format_currency(row.get("totalCost")),
                "incidence": format_percentage(row.get("incidenciaPct")),
            }
        )

    template = _env.get_template("budget_print.html")
    return template.render(
        document_title="Presupuesto",
        display_name=(org.legal_name or org.name or "").strip() or "—",
        legal_lines=legal_lines,
        project_line=project_line,
        date_str=datetime.now().strftime("%d/%m/%Y"),
        folio_line=f"Versión: {page.version_code}",
        issued_line=f"Emitido por: {issued_by.strip()}" if issued_by and issued_by.strip() else None,
        description=info.get("description"),
        info_rows=info_rows,
        rows=rows,
        include_incidence=include_incidence,
        grand_total=format_currency(page.grand_total),
    )
