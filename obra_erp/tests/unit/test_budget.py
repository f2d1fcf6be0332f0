"""Unit tests for budget consolidation and markup."""

import pytest

from obra_erp.core.budget import (
    MarkupRates,
    apply_markup,
    build_budget_tree,
    code_level,
    compute_line_cost,
    export_rows,
    flatten_tree,
    natural_code_key,
    parent_code,
    resolve_line_rates,
)
from obra_erp.core.errors import ValidationError
from obra_erp.services.budget import next_version_code


class TestMarkup:
    """Tests for the markup cascade."""

    def test_apply_markup_order(self):
        """Test overhead and financial on direct, profit on subtotal, tax on pre-tax."""
        result = apply_markup(1000, MarkupRates(overhead_pct=10, financial_pct=5, profit_pct=10, tax_pct=21))
        assert result.overhead == pytest.approx(100)
        assert result.financial == pytest.approx(50)
        assert result.subtotal == pytest.approx(1150)
        assert result.profit == pytest.approx(115)
        assert result.pre_tax == pytest.approx(1265)
        assert result.tax == pytest.approx(265.65)
        assert result.sale == pytest.approx(1530.65)

    def test_zero_rates_sale_equals_direct(self):
        """Test no markup keeps the direct cost."""
        assert apply_markup(250.5, MarkupRates()).sale == pytest.approx(250.5)

    def test_rate_out_of_range_rejected(self):
        """Test rates outside 0..100 raise ValidationError."""
        with pytest.raises(ValidationError):
            apply_markup(100, MarkupRates(profit_pct=101))
        with pytest.raises(ValidationError):
            MarkupRates(tax_pct=-1).validate()

    def test_global_mode_ignores_line_rates(self, sample_version):
        """Test GLOBAL mode uses version rates only."""
        rates = resolve_line_rates({"overhead_pct": 50}, sample_version)
        assert rates.overhead_pct == 10

    def test_per_line_mode_falls_back_per_field(self, sample_version):
        """Test PER_LINE overrides only the fields set on the line."""
        version = {**sample_version, "markup_mode": "PER_LINE"}
        rates = resolve_line_rates({"overhead_pct": 20, "profit_pct": None}, version)
        assert rates.overhead_pct == 20
        assert rates.profit_pct == 10


class TestLineCost:
    """Tests for per-line cost computation."""

    def test_resources_drive_direct_cost(self, sample_version):
        """Test resource quantities are per unit of line."""
        line = {"id": "l1", "quantity": 10}
        resources = [
            {"resource_type": "MATERIAL", "quantity": 2, "unit_cost": 5},
            {"resource_type": "LABOR", "quantity": 1, "unit_cost": 3},
            {"resource_type": "SUBCONTRACT", "quantity": 1, "unit_cost": 2},
        ]
        cost = compute_line_cost(line, resources, sample_version)
        assert cost.unit_cost == pytest.approx(15)
        assert cost.direct == pytest.approx(150)
        assert cost.materials == pytest.approx(100)
        assert cost.labor == pytest.approx(30)
        assert cost.equipment == pytest.approx(20)
        assert cost.sale == pytest.approx(150 * 1.1 * 1.1)

    def test_line_without_resources_keeps_stored_total(self, sample_version):
        """Test direct_cost_total is used when there are no resources."""
        cost = compute_line_cost({"id": "l1", "quantity": 4, "direct_cost_total": 200}, [], sample_version)
        assert cost.direct == 200
        assert cost.unit_cost == 50


class TestTree:
    """Tests for the WBS tree."""

    def _tree(self, version):
        nodes = [
            {"id": "n1", "code": "1", "name": "Obra gruesa"},
            {"id": "n10", "code": "1.10", "name": "Losas", "parent_id": "n1"},
            {"id": "n9", "code": "1.9", "name": "Muros", "parent_id": "n1"},
            {"id": "n2", "code": "2", "name": "Terminaciones"},
        ]
        lines = [
            {"id": "a", "wbs_node_id": "n9", "quantity": 1, "direct_cost_total": 300},
            {"id": "b", "wbs_node_id": "n10", "quantity": 2, "direct_cost_total": 100},
            {"id": "c", "wbs_node_id": "n2", "quantity": 1, "direct_cost_total": 600},
        ]
        return build_budget_tree(nodes, lines, [], version)

    def test_roll_up_and_totals(self, sample_version):
        """Test parents accumulate their children and totals count each line once."""
        roots, totals = self._tree(sample_version)
        assert [r.code for r in roots] == ["1", "2"]
        assert roots[0].direct_cost == pytest.approx(400)
        assert totals.direct == pytest.approx(1000)
        assert roots[0].incidence_pct == pytest.approx(40)

    def test_children_in_natural_order(self, sample_version):
        """Test 1.9 sorts before 1.10."""
        roots, _ = self._tree(sample_version)
        assert [c.code for c in roots[0].children] == ["1.9", "1.10"]
        assert [n.code for n in flatten_tree(roots)] == ["1", "1.9", "1.10", "2"]

    def test_export_rows_unit_price(self, sample_version):
        """Test export rows divide total by quantity only for nodes with lines."""
        roots, _ = self._tree(sample_version)
        rows = {r["code"]: r for r in export_rows(roots)}
        assert rows["1"]["quantity"] == 0
        assert rows["1"]["unitPrice"] == 0
        assert rows["1.10"]["unitPrice"] == pytest.approx(50)
        assert rows["1"]["isLeaf"] is False
        assert rows["2"]["isLeaf"] is True


class TestCodes:
    """Tests for WBS code helpers."""

    def test_code_level(self):
        assert code_level("1") == 0
        assert code_level("ARQ 1.2.3") == 2

    def test_parent_code(self):
        assert parent_code("ARQ 1.2.3") == "ARQ 1.2"
        assert parent_code("1") is None

    def test_natural_code_key(self):
        codes = ["1.10", "1.2", "1.9", "1"]
        assert sorted(codes, key=natural_code_key) == ["1", "1.2", "1.9", "1.10"]

    def test_next_version_code(self):
        assert next_version_code([]) == "V1"
        assert next_version_code(["V1", "V3", "borrador"]) == "V4"
