"""
Finance transactions: invoices, receipts and overhead, with their status
workflow, overhead allocation to projects, cashflow and receivables/payables.
"""

from dataclasses import dataclass
from datetime import date
from typing import Any

import psycopg

from obra_erp.core.database import Database
from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.finance import (
    EXPENSE_TYPES,
    INCOME_TYPES,
    allocation_amounts,
    build_cashflow,
    can_transition,
    cash_projection,
    compute_amounts,
    days_overdue,
    is_editable_status,
    transaction_number,
    validate_allocations,
)
from obra_erp.core.logging import get_logger
from obra_erp.core.models import (
    FinanceDocumentType,
    OrgContext,
    TransactionStatus,
    TransactionType,
)
from obra_erp.core.numbers import round_money, to_num
from obra_erp.core.permissions import require_permission, require_project_area_edit
from obra_erp.services.auth import (
    assert_org_reference,
    assert_project_access,
    get_visible_project_ids,
    visible_project_filter,
)

log = get_logger(__name__)

EDITABLE_FIELDS = (
    "project_id",
    "party_id",
    "document_type",
    "issue_date",
    "due_date",
    "description",
    "currency",
    "exchange_rate",
    "subtotal",
    "tax_total",
    "retention_amount",
)

OPEN_STATUSES = (TransactionStatus.SUBMITTED.value, TransactionStatus.APPROVED.value)


@dataclass
class TransactionFilters:
    type: str | None = None
    status: str | None = None
    party_id: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    search: str | None = None


def _filter_sql(filters: TransactionFilters | None) -> tuple[str, list[Any]]:
    if filters is None:
        return "", []
    sql = ""
    params: list[Any] = []
    if filters.type:
        sql += " AND t.type = %s"
        params.append(filters.type)
    if filters.status:
        sql += " AND t.status = %s"
        params.append(filters.status)
    if filters.party_id:
        sql += " AND t.party_id = %s"
        params.append(filters.party_id)
    if filters.date_from:
        sql += " AND t.issue_date >= %s"
        params.append(filters.date_from)
    if filters.date_to:
        sql += " AND t.issue_date <= %s"
        params.append(filters.date_to)
    if filters.search and filters.search.strip():
        pattern = f"%{filters.search.strip()}%"
        sql += " AND (t.description ILIKE %s OR t.transaction_number ILIKE %s OR p.name ILIKE %s)"
        params.extend([pattern, pattern, pattern])
    return sql, params


LIST_SQL = """
    SELECT t.*, p.name AS party_name, pr.name AS project_name, pr.project_number
    FROM finance_transactions t
    LEFT JOIN parties p ON p.id = t.party_id
    LEFT JOIN projects pr ON pr.id = t.project_id
    WHERE t.org_id = %s AND t.deleted = FALSE
"""


class FinanceService:
    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    # Guards

    def _check_project_edit(self, ctx: OrgContext, project_id: str | None, conn=None) -> None:
        if project_id:
            role = assert_project_access(self.db, project_id, ctx, conn=conn)
            require_project_area_edit(ctx, role, "finance")

    def _load(self, ctx: OrgContext, transaction_id: str, conn=None) -> dict[str, Any]:
        tx = self.db.fetch_one(
            "SELECT * FROM finance_transactions WHERE id = %s AND org_id = %s AND deleted = FALSE",
            (transaction_id, ctx.org_id),
            conn=conn,
        )
        if not tx:
            raise NotFoundError("Transacción no encontrada")
        if tx["project_id"]:
            assert_project_access(self.db, str(tx["project_id"]), ctx, conn=conn)
        return tx

    def _next_number(self, conn, org_id: str, tx_type: str, year: int) -> str:
        prefix = transaction_number(tx_type, year, 0)[:-4]
        self.db.lock_sequence(conn, f"transaction:{org_id}:{prefix}")
        row = self.db.fetch_one(
            """
            SELECT transaction_number FROM finance_transactions
            WHERE org_id = %s AND transaction_number LIKE %s
            ORDER BY transaction_number DESC
            LIMIT 1
            """,
            (org_id, prefix + "%"),
            conn=conn,
        )
        last = 0
        if row:
            try:
                last = int(row["transaction_number"][len(prefix):])
            except ValueError:
                last = 0
        return transaction_number(tx_type, year, last + 1)

    def _replace_lines(self, conn, ctx: OrgContext, transaction_id: str, lines: list[dict[str, Any]]) -> None:
        self.db.execute(
            "DELETE FROM finance_lines WHERE transaction_id = %s", (transaction_id,), conn=conn
        )
        for index, line in enumerate(lines):
            quantity = to_num(line.get("quantity", 1))
            unit_price = to_num(line.get("unit_price"))
            if quantity < 0 or unit_price < 0:
                raise ValidationError("Cantidad y precio no pueden ser negativos")
            self.db.execute(
                """
                INSERT INTO finance_lines (
                    org_id, transaction_id, wbs_node_id, description,
                    quantity, unit_price, line_total, sort_order
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    ctx.org_id,
                    transaction_id,
                    line.get("wbs_node_id"),
                    line.get("description") or "",
                    quantity,
                    unit_price,
                    round_money(quantity * unit_price),
                    index,
                ),
                conn=conn,
            )

    # CRUD

    def create_transaction(self, ctx: OrgContext, data: dict[str, Any]) -> dict[str, Any]:
        require_permission(ctx, "FINANCE", "create")
        tx_type = TransactionType(data["type"]).value
        document_type = FinanceDocumentType(data.get("document_type") or "INVOICE").value
        issue_date: date = data.get("issue_date") or date.today()
        lines = data.get("lines") or []
        amounts = compute_amounts(
            to_num(data.get("subtotal")),
            to_num(data.get("tax_total")),
            to_num(data.get("exchange_rate") or 1),
            lines,
        )
        if to_num(data.get("retention_amount")) < 0:
            raise ValidationError("La retención no puede ser negativa")

        with self.db.transaction() as conn:
            self._check_project_edit(ctx, data.get("project_id"), conn=conn)
            assert_org_reference(self.db, "parties", data.get("party_id"), ctx, "Contraparte no encontrada", conn=conn)

            number = self._next_number(conn, ctx.org_id, tx_type, issue_date.year)
            try:
                tx = self.db.fetch_one(
                    """
                    INSERT INTO finance_transactions (
                        org_id, project_id, party_id, transaction_number, type, status,
                        document_type, issue_date, due_date, description, currency,
                        exchange_rate, subtotal, tax_total, total, amount_base_currency,
                        retention_amount, created_by
                    )
                    VALUES (%s, %s, %s, %s, %s, 'DRAFT', %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        ctx.org_id,
                        data.get("project_id"),
                        data.get("party_id"),
                        number,
                        tx_type,
                        document_type,
                        issue_date,
                        data.get("due_date"),
                        data.get("description"),
                        data.get("currency") or "USD",
                        to_num(data.get("exchange_rate") or 1),
                        amounts.subtotal,
                        amounts.tax_total,
                        amounts.total,
                        amounts.amount_base_currency,
                        to_num(data.get("retention_amount")),
                        ctx.user_id,
                    ),
                    conn=conn,
                )
            except psycopg.errors.UniqueViolation as e:
                raise ConflictError(f"El número {number} ya existe") from e
            if lines:
                self._replace_lines(conn, ctx, str(tx["id"]), lines)

        log.info("transaction_created", transaction_id=str(tx["id"]), number=number, total=amounts.total)
        return tx

    def update_transaction(self, ctx: OrgContext, transaction_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        require_permission(ctx, "FINANCE", "edit")
        lines = changes.get("lines")
        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        if "document_type" in changes:
            document_type = changes.pop("document_type")
            # null leaves the stored document type untouched
            if document_type is not None:
                try:
                    changes["document_type"] = FinanceDocumentType(document_type).value
                except ValueError as e:
                    raise ValidationError(f"Tipo de documento inválido: {document_type}") from e

        with self.db.transaction() as conn:
            tx = self._load(ctx, transaction_id, conn=conn)
            if not is_editable_status(tx["status"]):
                raise ValidationError("Solo se pueden editar transacciones en borrador")
            self._check_project_edit(ctx, tx["project_id"], conn=conn)
            if changes.get("project_id") and str(changes["project_id"]) != str(tx["project_id"]):
                self._check_project_edit(ctx, changes["project_id"], conn=conn)
            assert_org_reference(self.db, "parties", changes.get("party_id"), ctx, "Contraparte no encontrada", conn=conn)

            merged = {**tx, **changes}
            amounts = compute_amounts(
                to_num(merged.get("subtotal")),
                to_num(merged.get("tax_total")),
                to_num(merged.get("exchange_rate") or 1),
                lines,
            )
            changes.update(
                {
                    "subtotal": amounts.subtotal,
                    "tax_total": amounts.tax_total,
                    "total": amounts.total,
                    "amount_base_currency": amounts.amount_base_currency,
                }
            )
            assignments = ", ".join(f"{name} = %s" for name in changes)
            updated = self.db.fetch_one(
                f"""
                UPDATE finance_transactions SET {assignments}, updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (*changes.values(), transaction_id),
                conn=conn,
            )
            if lines is not None:
                self._replace_lines(conn, ctx, transaction_id, lines)

        log.info("transaction_updated", transaction_id=transaction_id, fields=list(changes))
        return updated

    def change_status(
        self,
        ctx: OrgContext,
        transaction_id: str,
        status: TransactionStatus,
        paid_date: date | None = None,
    ) -> dict[str, Any]:
        require_permission(ctx, "FINANCE", "edit")
        target = TransactionStatus(status).value
        with self.db.transaction() as conn:
            tx = self._load(ctx, transaction_id, conn=conn)
            self._check_project_edit(ctx, tx["project_id"], conn=conn)
            if not can_transition(tx["status"], target):
                raise ValidationError(f"No se puede pasar de {tx['status']} a {target}")
            if target == TransactionStatus.PAID.value:
                paid = paid_date or date.today()
                updated = self.db.fetch_one(
                    """
                    UPDATE finance_transactions SET status = %s, paid_date = %s, updated_at = NOW()
                    WHERE id = %s RETURNING *
                    """,
                    (target, paid, transaction_id),
                    conn=conn,
                )
            else:
                updated = self.db.fetch_one(
                    """
                    UPDATE finance_transactions SET status = %s, updated_at = NOW()
                    WHERE id = %s RETURNING *
                    """,
                    (target, transaction_id),
                    conn=conn,
                )
        log.info("transaction_status_changed", transaction_id=transaction_id, status=target)
        return updated

    def delete_transaction(self, ctx: OrgContext, transaction_id: str) -> None:
        require_permission(ctx, "FINANCE", "delete")
        with self.db.transaction() as conn:
            tx = self._load(ctx, transaction_id, conn=conn)
            if not is_editable_status(tx["status"]):
                raise ValidationError("Solo se pueden eliminar transacciones en borrador")
            self._check_project_edit(ctx, tx["project_id"], conn=conn)
            self.db.execute(
                "UPDATE finance_transactions SET deleted = TRUE, updated_at = NOW() WHERE id = %s",
                (transaction_id,),
                conn=conn,
            )
        log.info("transaction_deleted", transaction_id=transaction_id)

    def get_transaction(self, ctx: OrgContext, transaction_id: str) -> dict[str, Any]:
        tx = self._load(ctx, transaction_id)
        tx["lines"] = self.db.fetch_all(
            "SELECT * FROM finance_lines WHERE transaction_id = %s ORDER BY sort_order",
            (transaction_id,),
        )
        tx["allocations"] = self.db.fetch_all(
            """
            SELECT a.*, p.name AS project_name
            FROM overhead_allocations a JOIN projects p ON p.id = a.project_id
            WHERE a.transaction_id = %s
            """,
            (transaction_id,),
        )
        return tx

    def list_company_transactions(
        self,
        ctx: OrgContext,
        filters: TransactionFilters | None = None,
    ) -> list[dict[str, Any]]:
        require_permission(ctx, "FINANCE", "view")
        visible = get_visible_project_ids(self.db, ctx)
        clause, visible_params = visible_project_filter(visible, "t.project_id")
        filter_sql, params = _filter_sql(filters)
        return self.db.fetch_all(
            LIST_SQL + clause + filter_sql + " ORDER BY t.issue_date DESC, t.transaction_number DESC",
            (ctx.org_id, *visible_params, *params),
        )

    def list_project_transactions(
        self,
        ctx: OrgContext,
        project_id: str,
        filters: TransactionFilters | None = None,
    ) -> list[dict[str, Any]]:
        assert_project_access(self.db, project_id, ctx)
        filter_sql, params = _filter_sql(filters)
        return self.db.fetch_all(
            LIST_SQL
            + " AND t.project_id = %s"
            + filter_sql
            + " ORDER BY t.issue_date DESC, t.transaction_number DESC",
            (ctx.org_id, project_id, *params),
        )

    # Overhead

    def allocate_overhead(
        self,
        ctx: OrgContext,
        transaction_id: str,
        allocations: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """Replace the project split of an OVERHEAD transaction."""
        require_permission(ctx, "FINANCE", "edit")
        validate_allocations(allocations)

        with self.db.transaction() as conn:
            tx = self._load(ctx, transaction_id, conn=conn)
            if tx["type"] != TransactionType.OVERHEAD.value:
                raise ValidationError("Solo los gastos generales se pueden distribuir entre proyectos")

            project_ids = [str(a["project_id"]) for a in allocations]
            found = self.db.fetch_all(
                "SELECT id FROM projects WHERE org_id = %s AND id = ANY(%s::uuid[])",
                (ctx.org_id, project_ids),
                conn=conn,
            )
            if len(found) != len(project_ids):
                raise NotFoundError("Proyecto no encontrado")

            rows = allocation_amounts(to_num(tx["total"]), allocations)
            self.db.execute(
                "DELETE FROM overhead_allocations WHERE transaction_id = %s",
                (transaction_id,),
                conn=conn,
            )
            for row in rows:
                self.db.execute(
                    """
                    INSERT INTO overhead_allocations (
                        org_id, transaction_id, project_id, allocation_pct, allocation_amount
                    )
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (ctx.org_id, transaction_id, row["project_id"], row["allocation_pct"], row["allocation_amount"]),
                    conn=conn,
                )

        log.info("overhead_allocated", transaction_id=transaction_id, projects=len(rows))
        return rows

    def list_overhead_transactions(self, ctx: OrgContext) -> list[dict[str, Any]]:
        require_permission(ctx, "FINANCE", "view")
        rows = self.db.fetch_all(
            """
            SELECT t.*, p.name AS party_name,
                   COALESCE(SUM(a.allocation_pct), 0) AS total_allocated_pct,
                   COALESCE(SUM(a.allocation_amount), 0) AS total_allocated_amount
            FROM finance_transactions t
            LEFT JOIN parties p ON p.id = t.party_id
            LEFT JOIN overhead_allocations a ON a.transaction_id = t.id
            WHERE t.org_id = %s AND t.type = 'OVERHEAD' AND t.deleted = FALSE
            GROUP BY t.id, p.name
            ORDER BY t.issue_date DESC
            """,
            (ctx.org_id,),
        )
        for row in rows:
            row["total_allocated_pct"] = round_money(to_num(row["total_allocated_pct"]))
            row["remaining_amount"] = round_money(
                to_num(row["total"]) - to_num(row.pop("total_allocated_amount"))
            )
        return rows

    def get_project_overhead(self, ctx: OrgContext, project_id: str) -> dict[str, Any]:
        assert_project_access(self.db, project_id, ctx)
        allocations = self.db.fetch_all(
            """
            SELECT a.allocation_pct, a.allocation_amount, t.id AS transaction_id,
                   t.transaction_number, t.issue_date, t.description, t.status
            FROM overhead_allocations a
            JOIN finance_transactions t ON t.id = a.transaction_id
            WHERE a.project_id = %s AND a.org_id = %s
              AND t.deleted = FALSE AND t.status <> 'VOIDED'
            ORDER BY t.issue_date DESC
            """,
            (project_id, ctx.org_id),
        )
        return {
            "total": round_money(sum(to_num(a["allocation_amount"]) for a in allocations)),
            "allocations": allocations,
        }

    # Cashflow

    def get_company_cashflow(self, ctx: OrgContext, date_from: date, date_to: date) -> list[dict[str, Any]]:
        require_permission(ctx, "FINANCE", "view")
        if date_to < date_from:
            raise ValidationError("El rango de fechas es inválido")
        visible = get_visible_project_ids(self.db, ctx)
        clause, visible_params = visible_project_filter(visible, "project_id")
        transactions = self.db.fetch_all(
            f"""
            SELECT type, issue_date, amount_base_currency FROM finance_transactions
            WHERE org_id = %s AND deleted = FALSE AND status <> 'VOIDED'
              AND issue_date BETWEEN %s AND %s{clause}
            """,
            (ctx.org_id, date_from, date_to, *visible_params),
        )
        return build_cashflow(transactions, date_from, date_to)

    def get_project_cashflow(
        self,
        ctx: OrgContext,
        project_id: str,
        date_from: date,
        date_to: date,
    ) -> list[dict[str, Any]]:
        assert_project_access(self.db, project_id, ctx)
        if date_to < date_from:
            raise ValidationError("El rango de fechas es inválido")
        transactions = self.db.fetch_all(
            """
            SELECT type, issue_date, amount_base_currency FROM finance_transactions
            WHERE org_id = %s AND project_id = %s AND deleted = FALSE AND status <> 'VOIDED'
              AND issue_date BETWEEN %s AND %s
            """,
            (ctx.org_id, project_id, date_from, date_to),
        )
        allocated = self.db.fetch_all(
            """
            SELECT t.issue_date, a.allocation_amount
            FROM overhead_allocations a
            JOIN finance_transactions t ON t.id = a.transaction_id
            WHERE a.project_id = %s AND a.org_id = %s
              AND t.deleted = FALSE AND t.status <> 'VOIDED'
              AND t.issue_date BETWEEN %s AND %s
            """,
            (project_id, ctx.org_id, date_from, date_to),
        )
        return build_cashflow(transactions, date_from, date_to, allocated_overhead=allocated)

    # Receivables and payables

    def _open_items(self, ctx: OrgContext, types: set[str], project_id: str | None) -> list[dict[str, Any]]:
        if project_id:
            assert_project_access(self.db, project_id, ctx)
            clause, extra = " AND t.project_id = %s", (project_id,)
        else:
            clause, extra = visible_project_filter(get_visible_project_ids(self.db, ctx), "t.project_id")
        rows = self.db.fetch_all(
            LIST_SQL
            + " AND t.type = ANY(%s) AND t.status = ANY(%s)"
            + clause
            + " ORDER BY t.due_date NULLS LAST, t.issue_date",
            (ctx.org_id, sorted(types), list(OPEN_STATUSES), *extra),
        )
        today = date.today()
        for row in rows:
            row["days_overdue"] = days_overdue(row.get("due_date"), today)
        return rows

    def get_accounts_receivable(self, ctx: OrgContext, project_id: str | None = None) -> list[dict[str, Any]]:
        require_permission(ctx, "FINANCE", "view")
        return self._open_items(ctx, INCOME_TYPES, project_id)

    def get_accounts_payable(self, ctx: OrgContext, project_id: str | None = None) -> list[dict[str, Any]]:
        require_permission(ctx, "FINANCE", "view")
        return self._open_items(ctx, EXPENSE_TYPES, project_id)

    def get_project_cash_projection(self, ctx: OrgContext, project_id: str, as_of: date) -> dict[str, float]:
        assert_project_access(self.db, project_id, ctx)
        row = self.db.fetch_one(
            """
            SELECT
                COALESCE(SUM(amount_base_currency) FILTER (
                    WHERE status = 'PAID' AND type = ANY(%(income)s) AND paid_date <= %(as_of)s), 0) AS paid_income,
                COALESCE(SUM(amount_base_currency) FILTER (
                    WHERE status = 'PAID' AND type = ANY(%(expense)s) AND paid_date <= %(as_of)s), 0) AS paid_expense,
                COALESCE(SUM(amount_base_currency) FILTER (
                    WHERE status = ANY(%(open)s) AND type = ANY(%(income)s)
                      AND COALESCE(due_date, issue_date) <= %(as_of)s), 0) AS receivables,
                COALESCE(SUM(amount_base_currency) FILTER (
                    WHERE status = ANY(%(open)s) AND type = ANY(%(expense)s)
                      AND COALESCE(due_date, issue_date) <= %(as_of)s), 0) AS payables
            FROM finance_transactions
            WHERE org_id = %(org_id)s AND project_id = %(project_id)s AND deleted = FALSE
            """,
            {
                "income": sorted(INCOME_TYPES),
                "expense": sorted(EXPENSE_TYPES),
                "open": list(OPEN_STATUSES),
                "as_of": as_of,
                "org_id": ctx.org_id,
                "project_id": project_id,
            },
        )
        return cash_projection(
            to_num(row["paid_income"]),
            to_num(row["paid_expense"]),
            to_num(row["receivables"]),
            to_num(row["payables"]),
        )

    # Dashboard

    def get_finance_dashboard(self, ctx: OrgContext) -> dict[str, Any]:
        """Month/year income and expense, open AR/AP and top 5 projects by expense."""
        require_permission(ctx, "FINANCE", "view")
        visible = get_visible_project_ids(self.db, ctx)
        clause, visible_params = visible_project_filter(visible, "t.project_id")
        today = date.today()
        month_start = today.replace(day=1)
        year_start = today.replace(month=1, day=1)
        params = {
            "org_id": ctx.org_id,
            "income": sorted(INCOME_TYPES),
            "expense": sorted(EXPENSE_TYPES),
            "open": list(OPEN_STATUSES),
            "month_start": month_start,
            "year_start": year_start,
        }
        visible_sql = clause.replace("%s", "%(visible)s")
        if visible_params:
            params["visible"] = visible_params[0]

        totals = self.db.fetch_one(
            f"""
            SELECT
                COALESCE(SUM(t.amount_base_currency) FILTER (
                    WHERE t.type = ANY(%(income)s) AND t.issue_date >= %(month_start)s), 0) AS income_month,
                COALESCE(SUM(t.amount_base_currency) FILTER (
                    WHERE t.type = ANY(%(expense)s) AND t.issue_date >= %(month_start)s), 0) AS expense_month,
                COALESCE(SUM(t.amount_base_currency) FILTER (
                    WHERE t.type = ANY(%(income)s) AND t.issue_date >= %(year_start)s), 0) AS income_year,
                COALESCE(SUM(t.amount_base_currency) FILTER (
                    WHERE t.type = ANY(%(expense)s) AND t.issue_date >= %(year_start)s), 0) AS expense_year,
                COALESCE(SUM(t.amount_base_currency) FILTER (
                    WHERE t.type = ANY(%(income)s) AND t.status = ANY(%(open)s)), 0) AS receivables,
                COALESCE(SUM(t.amount_base_currency) FILTER (
                    WHERE t.type = ANY(%(expense)s) AND t.status = ANY(%(open)s)), 0) AS payables
            FROM finance_transactions t
            WHERE t.org_id = %(org_id)s AND t.deleted = FALSE AND t.status <> 'VOIDED'{visible_sql}
            """,
            params,
        )
        top_projects = self.db.fetch_all(
            f"""
            SELECT pr.id, pr.name, pr.project_number, SUM(t.amount_base_currency) AS expense
            FROM finance_transactions t JOIN projects pr ON pr.id = t.project_id
            WHERE t.org_id = %(org_id)s AND t.deleted = FALSE AND t.status <> 'VOIDED'
              AND t.type = ANY(%(expense)s){visible_sql}
            GROUP BY pr.id, pr.name, pr.project_number
            ORDER BY expense DESC
            LIMIT 5
            """,
            params,
        )
        return {
            "incomeMonth": round_money(to_num(totals["income_month"])),
            "expenseMonth": round_money(to_num(totals["expense_month"])),
            "incomeYear": round_money(to_num(totals["income_year"])),
            "expenseYear": round_money(to_num(totals["expense_year"])),
            "accountsReceivable": round_money(to_num(totals["receivables"])),
            "accountsPayable": round_money(to_num(totals["payables"])),
            "topProjectsByExpense": [
                {
                    "projectId": str(p["id"]),
                    "name": p["name"],
                    "projectNumber": p["project_number"],
                    "expense": round_money(to_num(p["expense"])),
                }
                for p in top_projects
            ],
        }
