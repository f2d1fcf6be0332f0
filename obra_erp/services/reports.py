"""
Company-level reports. Every query is limited to the caller's visible
projects.
"""

from datetime import date, timedelta
from typing import Any

from obra_erp.core.database import Database
from obra_erp.core.errors import ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import OrgContext
from obra_erp.core.numbers import round_money, to_num
from obra_erp.core.permissions import require_project_area_edit
from obra_erp.services.auth import assert_project_access, get_visible_project_ids, visible_project_filter

log = get_logger(__name__)

UNKNOWN_SUPPLIER = "Sin proveedor"

# latest approved version per project
APPROVED_BUDGETS_SQL = """
    SELECT DISTINCT ON (project_id) project_id, id AS version_id, sale_price_total
    FROM budget_versions
    WHERE org_id = %s AND status = 'APPROVED'
    ORDER BY project_id, approved_at DESC NULLS LAST, created_at DESC
"""


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


class ReportService:
    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    def _projects(self, ctx: OrgContext) -> list[dict[str, Any]]:
        visible = get_visible_project_ids(self.db, ctx)
        if visible == []:
            return []
        clause, params = visible_project_filter(visible, "id")
        return self.db.fetch_all(
            f"SELECT id, name, project_number FROM projects WHERE org_id = %s{clause} ORDER BY name",
            (ctx.org_id, *params),
        )

    def _approved_budgets(self, ctx: OrgContext) -> dict[str, float]:
        rows = self.db.fetch_all(APPROVED_BUDGETS_SQL, (ctx.org_id,))
        return {str(r["project_id"]): to_num(r["sale_price_total"]) for r in rows}

    def _paid_spend(self, ctx: OrgContext, types: tuple[str, ...]) -> dict[str, float]:
        rows = self.db.fetch_all(
            """
            SELECT project_id, COALESCE(SUM(amount_base_currency), 0) AS total
            FROM finance_transactions
            WHERE org_id = %s AND project_id IS NOT NULL AND deleted = FALSE
              AND status = 'PAID' AND type = ANY(%s)
            GROUP BY project_id
            """,
            (ctx.org_id, list(types)),
        )
        return {str(r["project_id"]): to_num(r["total"]) for r in rows}

    def expenses_by_supplier(self, ctx: OrgContext, supplier_id: str | None = None) -> list[dict[str, Any]]:
        visible = get_visible_project_ids(self.db, ctx)
        if visible == []:
            return []
        clause, params = visible_project_filter(visible, "t.project_id")
        sql = f"""
            SELECT t.party_id, p.name AS party_name,
                   COALESCE(SUM(t.amount_base_currency), 0) AS total,
                   COUNT(*) AS count,
                   COUNT(DISTINCT t.project_id) AS project_count
            FROM finance_transactions t LEFT JOIN parties p ON p.id = t.party_id
            WHERE t.org_id = %s AND t.deleted = FALSE AND t.status <> 'VOIDED'
              AND t.type IN ('EXPENSE', 'PURCHASE'){clause}
        """
        query_params: list[Any] = [ctx.org_id, *params]
        if supplier_id:
            sql += " AND t.party_id = %s"
            query_params.append(supplier_id)
        sql += " GROUP BY t.party_id, p.name ORDER BY total DESC"
        rows = self.db.fetch_all(sql, tuple(query_params))
        return [
            {
                "supplierId": str(r["party_id"]) if r["party_id"] else None,
                "supplierName": r["party_name"] or UNKNOWN_SUPPLIER,
                "total": round_money(to_num(r["total"])),
                "count": int(r["count"]),
                "projectCount": int(r["project_count"]),
            }
            for r in rows
        ]

    def budget_vs_actual(self, ctx: OrgContext) -> list[dict[str, Any]]:
        budgets = self._approved_budgets(ctx)
        actuals = self._paid_spend(ctx, ("EXPENSE", "PURCHASE"))
        report = []
        for project in self._projects(ctx):
            project_id = str(project["id"])
            budgeted = budgets.get(project_id, 0.0)
            if budgeted <= 0:
                continue
            actual = actuals.get(project_id, 0.0)
            variance = budgeted - actual
            report.append(
                {
                    "projectId": project_id,
                    "projectName": project["name"],
                    "projectNumber": project["project_number"],
                    "budgeted": round_money(budgeted),
                    "actual": round_money(actual),
                    "variance": round_money(variance),
                    "variancePct": _pct(variance, budgeted),
                }
            )
        report.sort(key=lambda r: r["budgeted"], reverse=True)
        return report

    def progress_vs_cost(self, ctx: OrgContext) -> list[dict[str, Any]]:
        budgets = self._approved_budgets(ctx)
        consumed_by_project = self._paid_spend(ctx, ("EXPENSE", "PURCHASE", "OVERHEAD"))
        progress_rows = self.db.fetch_all(
            """
            SELECT u.project_id, AVG(u.progress_pct) AS progress
            FROM progress_updates u
            JOIN (
                SELECT project_id, MAX(as_of_date) AS as_of_date
                FROM progress_updates WHERE org_id = %s
                GROUP BY project_id
            ) latest ON latest.project_id = u.project_id AND latest.as_of_date = u.as_of_date
            WHERE u.org_id = %s
            GROUP BY u.project_id
            """,
            (ctx.org_id, ctx.org_id),
        )
        progress = {str(r["project_id"]): round(to_num(r["progress"]), 2) for r in progress_rows}

        report = []
        for project in self._projects(ctx):
            project_id = str(project["id"])
            budgeted = budgets.get(project_id, 0.0)
            consumed = consumed_by_project.get(project_id, 0.0)
            if budgeted <= 0 and consumed <= 0:
                continue
            report.append(
                {
                    "projectId": project_id,
                    "projectName": project["name"],
                    "projectNumber": project["project_number"],
                    "budgeted": round_money(budgeted),
                    "consumed": round_money(consumed),
                    "consumedPct": _pct(consumed, budgeted),
                    "progressPct": progress.get(project_id),
                }
            )
        return report

    def top_materials(self, ctx: OrgContext, limit: int = 10) -> list[dict[str, Any]]:
        visible = get_visible_project_ids(self.db, ctx)
        if visible == []:
            return []
        clause, params = visible_project_filter(visible, "v.project_id")
        rows = self.db.fetch_all(
            f"""
            SELECT r.description, r.unit,
                   SUM(r.quantity * l.quantity) AS quantity,
                   SUM(r.quantity * l.quantity * r.unit_cost) AS total_cost,
                   COUNT(DISTINCT v.project_id) AS project_count
            FROM budget_resources r
            JOIN budget_lines l ON l.id = r.budget_line_id
            JOIN budget_versions v ON v.id = l.budget_version_id
            WHERE r.org_id = %s AND r.resource_type = 'MATERIAL' AND v.status = 'APPROVED'{clause}
            GROUP BY r.description, r.unit
            ORDER BY total_cost DESC
            LIMIT %s
            """,
            (ctx.org_id, *params, max(1, limit)),
        )
        return [
            {
                "description": r["description"],
                "unit": r["unit"],
                "quantity": round(to_num(r["quantity"]), 4),
                "totalCost": round_money(to_num(r["total_cost"])),
                "projectCount": int(r["project_count"]),
            }
            for r in rows
        ]

    def purchases_by_supplier(
        self,
        ctx: OrgContext,
        date_from: date | None = None,
        date_to: date | None = None,
        party_id: str | None = None,
    ) -> list[dict[str, Any]]:
        visible = get_visible_project_ids(self.db, ctx)
        if visible == []:
            return []
        clause, params = visible_project_filter(visible, "c.project_id")
        sql = f"""
            SELECT c.party_id, p.name AS party_name,
                   COUNT(*) AS order_count, COALESCE(SUM(c.total), 0) AS total
            FROM commitments c JOIN parties p ON p.id = c.party_id
            WHERE c.org_id = %s AND c.commitment_type = 'PO' AND c.deleted = FALSE
              AND c.status <> 'CANCELLED'{clause}
        """
        query_params: list[Any] = [ctx.org_id, *params]
        if date_from:
            sql += " AND c.issue_date >= %s"
            query_params.append(date_from)
        if date_to:
            sql += " AND c.issue_date < %s"
            query_params.append(date_to + timedelta(days=1))
        if party_id:
            sql += " AND c.party_id = %s"
            query_params.append(party_id)
        sql += " GROUP BY c.party_id, p.name ORDER BY total DESC"
        rows = self.db.fetch_all(sql, tuple(query_params))
        return [
            {
                "supplierId": str(r["party_id"]),
                "supplierName": r["party_name"],
                "orderCount": int(r["order_count"]),
                "total": round_money(to_num(r["total"])),
            }
            for r in rows
        ]

    def record_progress_update(
        self,
        ctx: OrgContext,
        project_id: str,
        wbs_node_id: str | None,
        progress_pct: float,
        as_of_date: date | None = None,
    ) -> dict[str, Any]:
        progress_pct = to_num(progress_pct)
        if not 0 <= progress_pct <= 100:
            raise ValidationError("El avance debe estar entre 0 y 100")
        with self.db.transaction() as conn:
            role = assert_project_access(self.db, project_id, ctx, conn=conn)
            require_project_area_edit(ctx, role, "dailyReports")
            if wbs_node_id:
                node = self.db.fetch_one(
                    "SELECT id FROM wbs_nodes WHERE id = %s AND project_id = %s",
                    (wbs_node_id, project_id),
                    conn=conn,
                )
                if not node:
                    raise ValidationError("La partida no pertenece al proyecto")
            update = self.db.fetch_one(
                """
                INSERT INTO progress_updates (org_id, project_id, wbs_node_id, progress_pct, as_of_date, created_by)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (ctx.org_id, project_id, wbs_node_id, progress_pct, as_of_date or date.today(), ctx.user_id),
                conn=conn,
            )
        log.info("progress_update_recorded", project_id=project_id, progress_pct=progress_pct)
        return update
