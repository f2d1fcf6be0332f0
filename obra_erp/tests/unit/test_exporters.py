"""Unit tests for Excel, PDF and print exporters."""

from io import BytesIO

import pytest
from openpyxl import load_workbook

from obra_erp.core.models import OrgProfile
from obra_erp.exporters.base import ExportColumn, ExportConfig, ExportTotals, ProjectHeader, select_columns
from obra_erp.exporters.excel import export_to_excel, safe_sheet_name
from obra_erp.exporters.formatting import (
    format_currency,
    format_date,
    format_number,
    format_percentage,
    get_header_meta,
    get_legal_id_display,
)
from obra_erp.exporters.pdf import render_pdf
from obra_erp.exporters.print_html import BudgetPrintPage, build_budget_print_html


@pytest.fixture
def org() -> OrgProfile:
    return OrgProfile(name="Constructora Andina", legal_name="Constructora Andina S.A.", tax_id="155-1", country="PA")


@pytest.fixture
def config(org) -> ExportConfig:
    return ExportConfig(
        title="LISTADO DE MATERIALES",
        org=org,
        project=ProjectHeader(name="Casa López", number="P-0001", client="Ana López"),
        columns=[
            ExportColumn("name", "Material", "text", 30),
            ExportColumn("quantity", "Cantidad", "number", 12),
            ExportColumn("totalCost", "Total", "currency", 15),
        ],
        data=[
            {"name": "Cemento", "quantity": 20, "totalCost": 220},
            {"name": "Arena <fina>", "quantity": 3, "totalCost": 30.5},
        ],
        totals=ExportTotals(label="TOTAL GENERAL", fields=["totalCost"]),
    )


class TestFormatting:
    """Tests for display formatting."""

    def test_numbers(self):
        assert format_currency(1234.5) == "$ 1.234,50"
        assert format_currency(-10) == "$ -10,00"
        assert format_number(1234.5) == "1.234,5"
        assert format_number(3) == "3"
        assert format_percentage(12.5) == "12,5 %"
        assert format_percentage(None) == "—"

    def test_dates(self):
        assert format_date("2026-03-01") == "01/03/2026"
        assert format_date(None) == ""
        assert format_date("pronto") == "pronto"

    def test_legal_id(self):
        assert str(get_legal_id_display("155-1", "Panamá")) == "RUC: 155-1"
        assert get_legal_id_display("20-1", "ar").label == "CUIT"
        assert get_legal_id_display("X", None).label == "ID Fiscal"
        assert get_legal_id_display("  ", "PA") is None

    def test_header_meta(self):
        assert get_header_meta("budget", {"id": "V2"}).folio_line == "Versión: V2"
        assert get_header_meta("cashflow", {"from": "2026-01-01", "to": "2026-03-31"}).folio_line == (
            "Período: 01/01/2026 → 31/03/2026"
        )
        assert get_header_meta("purchases-by-supplier", {}).folio_line is None
        assert get_header_meta("unknown", {"id": "1"}).folio_line is None


class TestExportConfig:
    def test_totals_row_sums_data(self, config):
        assert config.totals_row() == {"totalCost": pytest.approx(250.5)}

    def test_precomputed_totals_win(self, config):
        config.totals = ExportTotals(label="TOTAL", fields=["totalCost"], values={"totalCost": 100})
        assert config.totals_row() == {"totalCost": 100.0}

    def test_select_columns(self, config):
        select_columns(config.columns, ["name", "totalCost"])
        assert [c.field for c in config.visible_columns] == ["name", "totalCost"]


class TestExcel:
    """Tests for the Excel renderer."""

    def test_round_trip(self, config):
        """Test the workbook has header, data and totals rows."""
        workbook = load_workbook(BytesIO(export_to_excel(config)))
        sheet = workbook.active
        values = [row for row in sheet.iter_rows(values_only=True)]
        flat = [cell for row in values for cell in row if cell is not None]
        assert "Constructora Andina S.A." in flat
        assert "RUC: 155-1" in flat
        assert "Material" in flat
        assert "Cemento" in flat
        assert "TOTAL GENERAL" in flat
        totals = next(row for row in values if row[0] == "TOTAL GENERAL")
        assert totals[2] == pytest.approx(250.5)

    def test_safe_sheet_name(self):
        assert safe_sheet_name("Materiales: [proveedor] / 2026") == "Materiales proveedor  2026"
        assert len(safe_sheet_name("x" * 40)) == 31
        assert safe_sheet_name("") == "Datos"


class TestPdf:
    def test_render_pdf(self, config):
        content = render_pdf(config, issued_by="María Pérez")
        assert content.startswith(b"%PDF")

    def test_render_landscape_without_org(self, config):
        config.org = None
        config.orientation = "landscape"
        assert render_pdf(config).startswith(b"%PDF")


class TestPrintHtml:
    """Tests for the printable budget view."""

    def _page(self):
        return BudgetPrintPage(
            project_name="Casa López",
            project_number="P-0001",
            version_code="V1",
            rows=[
                {"code": "1.10", "description": "Losas", "quantity": 2, "unitPrice": 50, "totalCost": 100},
                {"code": "1", "description": "Obra <gruesa>", "totalCost": 400},
                {"code": "1.9", "description": "Muros", "quantity": 1, "unitPrice": 300, "totalCost": 300},
            ],
            grand_total=400,
            project_info={"clientName": "Ana López", "surfaceM2": 120},
        )

    def test_rows_sorted_and_escaped(self, org):
        html = build_budget_print_html(org, self._page(), issued_by="María")
        assert html.index(">1.9<") < html.index(">1.10<")
        assert "Obra &lt;gruesa&gt;" in html
        assert "Versión: V1" in html
        assert "Emitido por: María" in html
        assert "120 m²" in html

    def test_incidence_column_optional(self, org):
        assert "Inc %" not in build_budget_print_html(org, self._page())
        assert "Inc %" in build_budget_print_html(org, self._page(), include_incidence=True)
