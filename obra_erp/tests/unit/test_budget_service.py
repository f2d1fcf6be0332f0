"""Unit tests for budget version workflow against a mocked database."""

import psycopg
import pytest

from obra_erp.core.budget import MarkupRates
from obra_erp.core.errors import ConflictError, ValidationError
from obra_erp.services.budget import BudgetService

PROJECT_ROW = {"id": "proj-1"}


def _locked(version: dict, status: str) -> dict:
    return {**version, "status": status}


class TestApproveVersion:
    def test_previous_approved_version_is_superseded(self, mock_db, owner_ctx, sample_version):
        # version, project, member role, approved row
        mock_db.fetch_one.side_effect = [
            sample_version,
            PROJECT_ROW,
            None,
            _locked(sample_version, "APPROVED"),
        ]
        approved = BudgetService(mock_db).approve_version(owner_ctx, "ver-1")
        assert approved["status"] == "APPROVED"

        supersede_sql, supersede_params = mock_db.execute.call_args_list[0][0]
        assert "SET status = 'SUPERSEDED'" in supersede_sql
        assert "status = 'APPROVED'" in supersede_sql
        assert supersede_params == ("proj-1", "ver-1")

        approve_params = mock_db.fetch_one.call_args_list[3][0][1]
        assert approve_params == ("user-1", 0.0, 0.0, "ver-1")

    @pytest.mark.parametrize("status", ["APPROVED", "SUPERSEDED"])
    def test_only_drafts_can_be_approved(self, mock_db, owner_ctx, sample_version, status):
        mock_db.fetch_one.side_effect = [_locked(sample_version, status), PROJECT_ROW, None]
        with pytest.raises(ValidationError, match="bloqueada"):
            BudgetService(mock_db).approve_version(owner_ctx, "ver-1")
        mock_db.execute.assert_not_called()


class TestLockedVersions:
    @pytest.mark.parametrize("status", ["APPROVED", "SUPERSEDED"])
    def test_markup_change_refused(self, mock_db, owner_ctx, sample_version, status):
        mock_db.fetch_one.side_effect = [_locked(sample_version, status), PROJECT_ROW, None]
        rates = MarkupRates(overhead_pct=5, financial_pct=0, profit_pct=10, tax_pct=21)
        with pytest.raises(ValidationError):
            BudgetService(mock_db).update_markup(owner_ctx, "ver-1", rates)
        assert mock_db.fetch_one.call_count == 3

    def test_new_line_refused(self, mock_db, owner_ctx, sample_version):
        mock_db.fetch_one.side_effect = [_locked(sample_version, "APPROVED"), PROJECT_ROW, None]
        with pytest.raises(ValidationError):
            BudgetService(mock_db).add_budget_line(owner_ctx, "ver-1", {"wbs_node_id": "n1", "quantity": 1})

    def test_line_edit_refused(self, mock_db, owner_ctx, sample_version):
        line = {"id": "line-1", "budget_version_id": "ver-1"}
        mock_db.fetch_one.side_effect = [line, _locked(sample_version, "APPROVED"), PROJECT_ROW, None]
        with pytest.raises(ValidationError):
            BudgetService(mock_db).update_budget_line(owner_ctx, "line-1", {"quantity": 3})


class TestUpdateMarkup:
    def test_line_sale_totals_follow_new_rates(self, mock_db, owner_ctx, sample_version):
        updated = {**sample_version, "global_overhead_pct": 0, "global_profit_pct": 20}
        line = {"id": "line-1", "quantity": 2, "direct_cost_total": 100}
        # version, project, member role, updated version, line, refreshed line
        mock_db.fetch_one.side_effect = [sample_version, PROJECT_ROW, None, updated, line, {**line, "sale_price_total": 120}]
        # version lines, resources of line-1
        mock_db.fetch_all.side_effect = [[{"id": "line-1"}], []]

        rates = MarkupRates(overhead_pct=0, financial_pct=0, profit_pct=20, tax_pct=0)
        assert BudgetService(mock_db).update_markup(owner_ctx, "ver-1", rates) == updated

        refresh_sql, refresh_params = mock_db.fetch_one.call_args_list[5][0]
        assert "UPDATE budget_lines SET direct_cost_total" in refresh_sql
        assert refresh_params == (100.0, 120.0, "line-1")

    def test_version_without_lines(self, mock_db, owner_ctx, sample_version):
        mock_db.fetch_one.side_effect = [sample_version, PROJECT_ROW, None, sample_version]
        rates = MarkupRates(overhead_pct=10, financial_pct=0, profit_pct=10, tax_pct=0)
        BudgetService(mock_db).update_markup(owner_ctx, "ver-1", rates)
        assert mock_db.fetch_one.call_count == 4


class TestCreateVersion:
    def test_code_is_numbered_under_lock(self, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [PROJECT_ROW, None, {"id": "ver-2", "version_code": "V2"}]
        mock_db.fetch_all.return_value = [{"version_code": "V1"}]
        BudgetService(mock_db).create_version(owner_ctx, "proj-1")

        conn = mock_db.transaction.return_value.__enter__.return_value
        mock_db.lock_sequence.assert_called_once_with(conn, "budget-version:proj-1")
        insert_params = mock_db.fetch_one.call_args_list[2][0][1]
        assert insert_params[2] == "V2"

    def test_duplicate_code_is_a_conflict(self, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [PROJECT_ROW, None, psycopg.errors.UniqueViolation("duplicate key")]
        mock_db.fetch_all.return_value = [{"version_code": "V1"}]
        with pytest.raises(ConflictError, match="V2"):
            BudgetService(mock_db).create_version(owner_ctx, "proj-1")
