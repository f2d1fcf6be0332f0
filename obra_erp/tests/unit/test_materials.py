"""Unit tests for material consolidation and purchase orders."""

from datetime import date

import psycopg
import pytest

from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.materials import (
    UNNAMED_MATERIAL,
    consolidate_materials,
    group_by_supplier,
    purchase_order_lines,
)
from obra_erp.services.materials import MaterialsService


@pytest.fixture
def resources():
    return [
        {
            "id": "r1",
            "description": "Cemento",
            "unit": "bolsa",
            "quantity": 2,
            "unit_cost": 10,
            "line_quantity": 5,
            "wbs_code": "1.1",
            "wbs_name": "Fundaciones",
            "wbs_node_id": "n1",
            "attributes": {"supplierName": "Corralón Sur"},
        },
        {
            "id": "r2",
            "description": "cemento",
            "unit": "bolsa",
            "quantity": 1,
            "unit_cost": 12,
            "line_quantity": 10,
            "wbs_code": "1.2",
            "wbs_name": "Columnas",
            "wbs_node_id": "n2",
            "attributes": {"supplierName": "Hormigonera Norte"},
        },
        {
            "id": "r3",
            "description": "",
            "unit": "m",
            "quantity": 3,
            "unit_cost": 1,
            "line_quantity": None,
            "attributes": None,
        },
    ]


class TestConsolidation:
    """Tests for consolidate_materials."""

    def test_merges_case_insensitively(self, resources):
        """Test resources with the same name are merged, keeping the first spelling."""
        materials = consolidate_materials(resources)
        cement = materials[0]
        assert cement.name == "Cemento"
        assert cement.total_quantity == pytest.approx(20)
        assert cement.total_cost == pytest.approx(220)
        assert cement.average_unit_cost == pytest.approx(11)
        assert [s.name for s in cement.suppliers] == ["Corralón Sur", "Hormigonera Norte"]
        assert len(cement.used_in_items) == 2

    def test_unnamed_and_missing_line_quantity(self, resources):
        """Test blank names and missing line quantities get defaults."""
        unnamed = consolidate_materials(resources)[1]
        assert unnamed.name == UNNAMED_MATERIAL
        assert unnamed.total_quantity == pytest.approx(3)

    def test_to_dict_keys(self, resources):
        data = consolidate_materials(resources)[0].to_dict()
        assert data["totalQuantity"] == pytest.approx(20)
        assert data["usedInItems"][0]["wbsCode"] == "1.1"


class TestBySupplier:
    """Tests for group_by_supplier."""

    def test_sorted_by_total_desc_without_unassigned(self, resources):
        groups = group_by_supplier(resources)
        assert [g.supplier_name for g in groups] == ["Hormigonera Norte", "Corralón Sur"]
        assert groups[0].total_cost == pytest.approx(120)


class TestPurchaseOrderLines:
    """Tests for purchase_order_lines."""

    def test_one_line_per_resource(self, resources):
        lines = purchase_order_lines(resources)
        assert len(lines) == 3
        assert lines[0]["wbsNodeId"] == "n1"
        assert lines[0]["totalCost"] == pytest.approx(100)
        assert lines[2]["supplierName"] is None


class TestPurchaseOrderCommitment:
    @pytest.fixture
    def lines(self):
        return [
            {"wbs_node_id": "n1", "description": "Cemento", "unit": "bolsa", "quantity": 20, "unit_price": 10},
            {"wbs_node_id": "n1", "description": "Arena", "unit": "m3", "quantity": 2.5, "unit_price": 30},
        ]

    def _create(self, mock_db, ctx, lines):
        return MaterialsService(mock_db).create_purchase_order_commitment(
            ctx, "proj-1", "party-1", date(2026, 4, 1), lines
        )

    def test_numbers_after_highest_existing_order(self, mock_db, owner_ctx, lines):
        # project, member role, supplier, inserted order
        mock_db.fetch_one.side_effect = [{"id": "proj-1"}, None, {"id": "party-1", "name": "Corralón Sur"}, {"id": "po-1"}]
        # wbs nodes, existing numbers
        mock_db.fetch_all.side_effect = [
            [{"id": "n1"}],
            [{"commitment_number": "OC-0009"}, {"commitment_number": "OC-0002"}, {"commitment_number": "MANUAL"}],
        ]
        assert self._create(mock_db, owner_ctx, lines) == {"id": "po-1"}

        insert_params = mock_db.fetch_one.call_args_list[3][0][1]
        assert insert_params[3] == "OC-0010"
        assert insert_params[6] == 275.0
        conn = mock_db.transaction.return_value.__enter__.return_value
        mock_db.lock_sequence.assert_called_once_with(conn, "purchase-order:org-1")
        line_inserts = [c for c in mock_db.execute.call_args_list if "commitment_lines" in c[0][0]]
        assert len(line_inserts) == 2

    def test_first_order_of_org(self, mock_db, owner_ctx, lines):
        mock_db.fetch_one.side_effect = [{"id": "proj-1"}, None, {"id": "party-1", "name": "Corralón Sur"}, {"id": "po-1"}]
        mock_db.fetch_all.side_effect = [[{"id": "n1"}], []]
        self._create(mock_db, owner_ctx, lines)
        assert mock_db.fetch_one.call_args_list[3][0][1][3] == "OC-0001"

    def test_wbs_node_of_another_project(self, mock_db, owner_ctx, lines):
        mock_db.fetch_one.side_effect = [{"id": "proj-1"}, None, {"id": "party-1", "name": "Corralón Sur"}]
        mock_db.fetch_all.side_effect = [[]]
        with pytest.raises(ValidationError, match="partidas"):
            self._create(mock_db, owner_ctx, lines)
        mock_db.lock_sequence.assert_not_called()

    def test_unknown_supplier(self, mock_db, owner_ctx, lines):
        mock_db.fetch_one.side_effect = [{"id": "proj-1"}, None, None]
        with pytest.raises(NotFoundError):
            self._create(mock_db, owner_ctx, lines)

    def test_duplicate_number_is_a_conflict(self, mock_db, owner_ctx, lines):
        mock_db.fetch_one.side_effect = [
            {"id": "proj-1"},
            None,
            {"id": "party-1", "name": "Corralón Sur"},
            psycopg.errors.UniqueViolation("duplicate key"),
        ]
        mock_db.fetch_all.side_effect = [[{"id": "n1"}], [{"commitment_number": "OC-0004"}]]
        with pytest.raises(ConflictError, match="OC-0005"):
            self._create(mock_db, owner_ctx, lines)
        mock_db.execute.assert_not_called()

    def test_empty_order(self, mock_db, owner_ctx):
        with pytest.raises(ValidationError):
            self._create(mock_db, owner_ctx, [])
        mock_db.transaction.assert_not_called()
