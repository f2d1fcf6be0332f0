"""Unit tests for the budget spreadsheet parser."""

from io import BytesIO

import pytest
from openpyxl import Workbook

from obra_erp.core.errors import ValidationError
from obra_erp.core.numbers import parse_number
from obra_erp.importers.excel_parser import ExcelParser, clean_code, code_level


def workbook_bytes(rows) -> bytes:
    wb = Workbook()
    sheet = wb.active
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def budget_xlsx() -> bytes:
    return workbook_bytes(
        [
            ["PRESUPUESTO OFICIAL"],
            [],
            ["ITEM", "DESIGNACIÓN", "UNIDAD", "CANTIDAD", "IMPORTE"],
            ["ARQ 1", "Albañilería", None, None, None],
            ["arq 1.2", "Muros", "m2", 10, "1.500,00"],
            ["ARQ 1.10", "Revoques", "m2", None, 200],
            ["ARQ 1.2", "Muros de ladrillo", "m2", 5, 500],
            ["ARQ 3.1", "Limpieza final", "gl", 1, 100],
            ["Nota", "texto libre"],
        ]
    )


class TestExcelParser:
    """Tests for ExcelParser."""

    def test_preview_tree(self, budget_xlsx):
        """Test hierarchy, natural order and orphan handling."""
        preview = ExcelParser().preview(budget_xlsx, "Casa López.xlsx")
        assert preview.project_name == "Casa López"
        assert preview.total_items == 4
        assert [r.code for r in preview.root_items] == ["ARQ 1", "ARQ 3.1"]
        assert [c.code for c in preview.root_items[0].children] == ["ARQ 1.2", "ARQ 1.10"]

    def test_last_duplicate_wins(self, budget_xlsx):
        preview = ExcelParser().preview(budget_xlsx, "x.xlsx")
        walls = preview.root_items[0].children[0]
        assert walls.name == "Muros de ladrillo"
        assert walls.quantity == 5
        assert walls.unit_price == pytest.approx(100)

    def test_total_amount_counts_leaves(self, budget_xlsx):
        preview = ExcelParser().preview(budget_xlsx, "x.xlsx")
        assert preview.total_amount == pytest.approx(800)

    def test_warnings(self, budget_xlsx):
        """Test missing quantity and duplicate code warnings."""
        preview = ExcelParser().preview(budget_xlsx, "x.xlsx")
        types = sorted(w.type for w in preview.warnings)
        assert types == ["duplicate_code", "missing_quantity"]
        revoques = preview.root_items[0].children[1]
        assert revoques.quantity == 1

    def test_missing_header(self):
        data = workbook_bytes([["foo", "bar"], ["ARQ 1", "x"]])
        with pytest.raises(ValidationError):
            ExcelParser().preview(data, "x.xlsx")

    def test_unreadable_file(self):
        with pytest.raises(ValidationError):
            ExcelParser().preview(b"not an xlsx", "x.xlsx")

    def test_to_dict(self, budget_xlsx):
        data = ExcelParser().preview(budget_xlsx, "x.xlsx").to_dict()
        assert data["totalItems"] == 4
        assert data["rootItems"][0]["children"][0]["parentCode"] == "ARQ 1"


class TestHelpers:
    def test_clean_code(self):
        assert clean_code(" arq 1.2 ") == "ARQ 1.2"
        assert clean_code("1.2") is None
        assert clean_code(None) is None

    def test_code_level(self):
        assert code_level("ARQ 1") == 0
        assert code_level("ARQ 1.2.3") == 2

    @pytest.mark.parametrize(
        "raw,expected",
        [("1.234,56", 1234.56), ("1,234.56", 1234.56), ("12,5", 12.5), ("$ 100", 100.0), ("abc", None), (7, 7.0)],
    )
    def test_parse_number(self, raw, expected):
        assert parse_number(raw) == expected

    @pytest.mark.parametrize("raw", ["nan", "NaN", "inf", "-inf", "Infinity", float("nan"), float("inf")])
    def test_non_finite_values_are_not_numbers(self, raw):
        assert parse_number(raw) is None
