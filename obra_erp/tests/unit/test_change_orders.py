"""Unit tests for change order numbering, workflow and guards."""

import psycopg
import pytest

from obra_erp.core.errors import ConflictError, NotFoundError, PermissionDeniedError
from obra_erp.core.models import ChangeOrderLineType, ChangeOrderStatus, ChangeType, OrgRole
from obra_erp.core.validators import ChangeOrderCreate, ChangeOrderLineCreate, ChangeOrderUpdate
from obra_erp.services.change_orders import (
    ChangeOrderService,
    can_transition,
    change_order_number,
    lines_cost_impact,
    parse_change_order_sequence,
)


class TestNumbering:
    def test_change_order_number(self):
        assert change_order_number(1) == "CO-001"
        assert change_order_number(42) == "CO-042"
        assert change_order_number(1234) == "CO-1234"

    @pytest.mark.parametrize(
        "number,expected",
        [
            ("CO-007", 7),
            ("CO-120", 120),
            ("CO-abc", 0),
            ("OC-0001", 0),
            ("", 0),
            (None, 0),
        ],
    )
    def test_parse_sequence(self, number, expected):
        assert parse_change_order_sequence(number) == expected


class TestWorkflow:
    """Tests for allowed status transitions."""

    def test_draft_can_only_be_submitted(self):
        assert can_transition("DRAFT", "SUBMITTED")
        assert not can_transition("DRAFT", "APPROVED")

    def test_submitted_outcomes(self):
        for target in ("APPROVED", "REJECTED", "CHANGES_REQUESTED"):
            assert can_transition(ChangeOrderStatus.SUBMITTED, target)
        assert not can_transition(ChangeOrderStatus.SUBMITTED, ChangeOrderStatus.DRAFT)

    def test_changes_requested_can_resubmit_or_return(self):
        assert can_transition("CHANGES_REQUESTED", "SUBMITTED")
        assert can_transition("CHANGES_REQUESTED", "DRAFT")

    def test_final_states(self):
        for status in ("APPROVED", "REJECTED"):
            for target in ChangeOrderStatus:
                assert not can_transition(status, target)


class TestCostImpact:
    def test_sum_of_dict_rows(self):
        lines = [{"delta_cost": "1500.50"}, {"delta_cost": -200}, {"delta_cost": None}]
        assert lines_cost_impact(lines) == 1300.5

    def test_sum_of_line_models(self):
        lines = [
            ChangeOrderLineCreate(wbs_node_id="n1", justification="Muro extra", delta_cost=1000),
            ChangeOrderLineCreate(
                wbs_node_id="n2",
                change_type=ChangeOrderLineType.DELETE,
                justification="Se elimina cielo raso",
                delta_cost=-250,
            ),
        ]
        assert lines_cost_impact(lines) == 750.0

    def test_empty(self):
        assert lines_cost_impact([]) == 0.0


class TestServiceGuards:
    """Role checks happen before any database access."""

    def test_viewer_cannot_create(self, mock_db, viewer_ctx):
        service = ChangeOrderService(mock_db)
        data = ChangeOrderCreate(title="Ampliación de losa", reason="Pedido del cliente", change_type=ChangeType.SCOPE)
        with pytest.raises(PermissionDeniedError):
            service.create_change_order(viewer_ctx, "project-1", data)
        mock_db.transaction.assert_not_called()

    def test_editor_cannot_approve(self, mock_db, editor_ctx):
        service = ChangeOrderService(mock_db)
        with pytest.raises(PermissionDeniedError):
            service.approve(editor_ctx, "co-1")
        mock_db.transaction.assert_not_called()

    @pytest.mark.parametrize("action", ["reject", "request_changes"])
    def test_editor_cannot_review(self, mock_db, make_ctx, action):
        service = ChangeOrderService(mock_db)
        with pytest.raises(PermissionDeniedError):
            getattr(service, action)(make_ctx(OrgRole.EDITOR), "co-1")


class TestTenantReferences:
    """Referenced rows must belong to the caller's organization."""

    def test_create_with_party_of_another_org(self, mock_db, owner_ctx):
        # project, member role, party lookup
        mock_db.fetch_one.side_effect = [{"id": "project-1"}, None, None]
        service = ChangeOrderService(mock_db)
        data = ChangeOrderCreate(title="Ampliación", reason="Pedido del cliente", party_id="party-x")
        with pytest.raises(NotFoundError):
            service.create_change_order(owner_ctx, "project-1", data)
        party_sql, party_params = mock_db.fetch_one.call_args_list[2][0]
        assert "FROM parties" in party_sql
        assert party_params == ("party-x", "org-1")
        mock_db.lock_sequence.assert_not_called()

    def test_update_with_party_of_another_org(self, mock_db, owner_ctx):
        # change order, project, member role, party lookup
        mock_db.fetch_one.side_effect = [
            {"id": "co-1", "project_id": "project-1", "status": "DRAFT"},
            {"id": "project-1"},
            None,
            None,
        ]
        service = ChangeOrderService(mock_db)
        with pytest.raises(NotFoundError):
            service.update_change_order(owner_ctx, "co-1", ChangeOrderUpdate(party_id="party-x"))


class TestNumberingConcurrency:
    def test_duplicate_number_is_a_conflict(self, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [
            {"id": "project-1"},
            None,
            {"id": "party-1"},
            psycopg.errors.UniqueViolation("duplicate key"),
        ]
        mock_db.fetch_all.return_value = [{"number": "CO-004"}]
        service = ChangeOrderService(mock_db)
        data = ChangeOrderCreate(title="Ampliación", reason="Pedido del cliente", party_id="party-1")
        with pytest.raises(ConflictError, match="CO-005"):
            service.create_change_order(owner_ctx, "project-1", data)
        conn = mock_db.transaction.return_value.__enter__.return_value
        mock_db.lock_sequence.assert_called_once_with(conn, "change-order:project-1")

    def test_missing_impact_type_defaults_to_approved_change(self, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [{"id": "project-1"}, None, {"id": "co-1", "number": "CO-001"}]
        service = ChangeOrderService(mock_db)
        data = ChangeOrderCreate(title="Ampliación", reason="Pedido del cliente", budget_impact_type=None)
        order = service.create_change_order(owner_ctx, "project-1", data)
        assert order["lines"] == []
        insert_params = mock_db.fetch_one.call_args_list[2][0][1]
        assert "APPROVED_CHANGE" in insert_params
