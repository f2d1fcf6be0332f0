"""Unit tests for finance rules."""

from datetime import date

import psycopg
import pytest

from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.finance import (
    allocation_amounts,
    build_cashflow,
    can_transition,
    cash_projection,
    compute_amounts,
    days_overdue,
    is_editable_status,
    month_keys,
    transaction_number,
    validate_allocations,
)
from obra_erp.services.finance import FinanceService


class TestNumbering:
    def test_transaction_number(self):
        assert transaction_number("EXPENSE", 2026, 1) == "GAS-2026-0001"
        assert transaction_number("OVERHEAD", 2026, 123) == "GG-2026-0123"


class TestStatus:
    """Tests for the transaction status workflow."""

    def test_only_draft_editable(self):
        assert is_editable_status("DRAFT")
        assert not is_editable_status("APPROVED")

    def test_transitions(self):
        assert can_transition("DRAFT", "SUBMITTED")
        assert can_transition("APPROVED", "PAID")
        assert not can_transition("PAID", "VOIDED")
        assert not can_transition("DRAFT", "PAID")


class TestAmounts:
    """Tests for compute_amounts."""

    def test_lines_override_subtotal(self):
        lines = [{"quantity": 2, "unit_price": 50}, {"quantity": 1, "unit_price": 25.5}]
        amounts = compute_amounts(999, 21, 1.0, lines)
        assert amounts.subtotal == 125.5
        assert amounts.total == 146.5

    def test_exchange_rate(self):
        assert compute_amounts(100, 0, 950).amount_base_currency == 95000

    def test_invalid_values(self):
        with pytest.raises(ValidationError):
            compute_amounts(-1, 0)
        with pytest.raises(ValidationError):
            compute_amounts(100, 0, 0)


class TestAllocations:
    """Tests for overhead allocation rules."""

    def test_valid_split(self):
        validate_allocations([{"project_id": "a", "allocation_pct": 60}, {"project_id": "b", "allocation_pct": 40}])

    @pytest.mark.parametrize(
        "allocations",
        [
            [],
            [{"project_id": "a", "allocation_pct": 90}],
            [{"project_id": "a", "allocation_pct": 50}, {"project_id": "a", "allocation_pct": 50}],
            [{"project_id": "", "allocation_pct": 100}],
            [{"project_id": "a", "allocation_pct": 0.001}, {"project_id": "b", "allocation_pct": 99.999}],
        ],
    )
    def test_invalid_splits(self, allocations):
        with pytest.raises(ValidationError):
            validate_allocations(allocations)

    def test_allocation_amounts(self):
        rows = allocation_amounts(1000, [{"project_id": "a", "allocation_pct": 33.33}])
        assert rows[0]["allocation_amount"] == 333.3


class TestCashflow:
    """Tests for monthly cashflow aggregation."""

    def test_month_keys_cross_year(self):
        assert month_keys(date(2025, 11, 15), date(2026, 2, 1)) == ["2025-11", "2025-12", "2026-01", "2026-02"]

    def test_buckets_and_running_balance(self):
        transactions = [
            {"type": "INCOME", "issue_date": date(2026, 1, 10), "amount_base_currency": 1000},
            {"type": "PURCHASE", "issue_date": date(2026, 1, 20), "amount_base_currency": 300},
            {"type": "OVERHEAD", "issue_date": date(2026, 3, 5), "amount_base_currency": 100},
        ]
        allocated = [{"issue_date": date(2026, 3, 5), "allocation_amount": 50}]
        series = build_cashflow(transactions, date(2026, 1, 1), date(2026, 3, 31), allocated)
        assert [m["month"] for m in series] == ["2026-01", "2026-02", "2026-03"]
        assert series[0]["net"] == 700
        assert series[1]["balance"] == 700
        assert series[2]["expense"] == 150
        assert series[2]["overhead"] == 150
        assert series[2]["projectExpense"] == 0
        assert series[2]["balance"] == 550


class TestBalances:
    def test_days_overdue(self):
        today = date(2026, 3, 10)
        assert days_overdue(date(2026, 3, 1), today) == 9
        assert days_overdue(date(2026, 3, 10), today) == 0
        assert days_overdue(None, today) == 0

    def test_cash_projection(self):
        projection = cash_projection(1000, 400, 200, 300)
        assert projection["projectedBalance"] == 500


class TestTransactionService:
    @pytest.fixture
    def draft(self) -> dict:
        return {
            "id": "tx-1",
            "project_id": None,
            "status": "DRAFT",
            "subtotal": 100,
            "tax_total": 21,
            "exchange_rate": 1,
        }

    def test_null_document_type_is_ignored(self, mock_db, owner_ctx, draft):
        mock_db.fetch_one.side_effect = [draft, {**draft, "description": "Hormigón"}]
        updated = FinanceService(mock_db).update_transaction(
            owner_ctx, "tx-1", {"document_type": None, "description": "Hormigón"}
        )
        assert updated["description"] == "Hormigón"
        update_sql = mock_db.fetch_one.call_args_list[1][0][0]
        assert "document_type" not in update_sql
        assert "description = %s" in update_sql

    def test_invalid_document_type(self, mock_db, owner_ctx):
        with pytest.raises(ValidationError, match="Tipo de documento"):
            FinanceService(mock_db).update_transaction(owner_ctx, "tx-1", {"document_type": "TICKET"})
        mock_db.transaction.assert_not_called()

    def test_update_with_party_of_another_org(self, mock_db, owner_ctx, draft):
        mock_db.fetch_one.side_effect = [draft, None]
        with pytest.raises(NotFoundError, match="Contraparte"):
            FinanceService(mock_db).update_transaction(owner_ctx, "tx-1", {"party_id": "party-x"})

    def test_create_with_party_of_another_org(self, mock_db, owner_ctx):
        with pytest.raises(NotFoundError, match="Contraparte"):
            FinanceService(mock_db).create_transaction(
                owner_ctx, {"type": "EXPENSE", "party_id": "party-x", "subtotal": 10, "issue_date": date(2026, 3, 1)}
            )
        mock_db.lock_sequence.assert_not_called()

    def test_duplicate_number_is_a_conflict(self, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [
            {"transaction_number": "GAS-2026-0007"},
            psycopg.errors.UniqueViolation("duplicate key"),
        ]
        with pytest.raises(ConflictError, match="GAS-2026-0008"):
            FinanceService(mock_db).create_transaction(
                owner_ctx, {"type": "EXPENSE", "subtotal": 10, "issue_date": date(2026, 3, 1)}
            )
        conn = mock_db.transaction.return_value.__enter__.return_value
        mock_db.lock_sequence.assert_called_once_with(conn, "transaction:org-1:GAS-2026-")
