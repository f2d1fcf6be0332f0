"""
Change orders: scope, time and cost changes to a project after the budget
is approved, with a submit/approve workflow and a budget impact summary.
"""

from datetime import date
from typing import Any

import psycopg

from obra_erp.core.database import Database
from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import (
    BudgetImpactType,
    ChangeOrderStatus,
    OrgContext,
    OrgRole,
)
from obra_erp.core.numbers import round_money, to_num
from obra_erp.core.permissions import require_permission, require_project_area_edit, require_role
from obra_erp.core.validators import (
    ChangeOrderCreate,
    ChangeOrderLineCreate,
    ChangeOrderLineUpdate,
    ChangeOrderUpdate,
)
from obra_erp.services.auth import assert_org_reference, assert_project_access
from obra_erp.services.outbox import publish_outbox_event

log = get_logger(__name__)

TRANSITIONS: dict[ChangeOrderStatus, set[ChangeOrderStatus]] = {
    ChangeOrderStatus.DRAFT: {ChangeOrderStatus.SUBMITTED},
    ChangeOrderStatus.SUBMITTED: {
        ChangeOrderStatus.APPROVED,
        ChangeOrderStatus.REJECTED,
        ChangeOrderStatus.CHANGES_REQUESTED,
    },
    ChangeOrderStatus.CHANGES_REQUESTED: {ChangeOrderStatus.SUBMITTED, ChangeOrderStatus.DRAFT},
    ChangeOrderStatus.APPROVED: set(),
    ChangeOrderStatus.REJECTED: set(),
}

EDITABLE_STATUSES = {ChangeOrderStatus.DRAFT, ChangeOrderStatus.CHANGES_REQUESTED}


def change_order_number(sequence: int) -> str:
    return f"CO-{sequence:03d}"


def parse_change_order_sequence(number: str | None) -> int:
    if not number or not number.startswith("CO-"):
        return 0
    try:
        return int(number[3:])
    except ValueError:
        return 0


def can_transition(current: ChangeOrderStatus | str, target: ChangeOrderStatus | str) -> bool:
    return ChangeOrderStatus(target) in TRANSITIONS[ChangeOrderStatus(current)]


def lines_cost_impact(lines: list[Any]) -> float:
    """Sum of line delta costs; accepts dict rows or line models."""
    total = 0.0
    for line in lines:
        delta = line["delta_cost"] if isinstance(line, dict) else line.delta_cost
        total += to_num(delta)
    return round_money(total)


def _values(changes: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()}


class ChangeOrderService:
    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    def _load(self, ctx: OrgContext, change_order_id: str, conn=None) -> dict[str, Any]:
        order = self.db.fetch_one(
            "SELECT * FROM change_orders WHERE id = %s AND org_id = %s",
            (change_order_id, ctx.org_id),
            conn=conn,
        )
        if not order:
            raise NotFoundError("Orden de cambio no encontrada")
        return order

    def _editable(self, ctx: OrgContext, change_order_id: str, conn) -> dict[str, Any]:
        require_permission(ctx, "BUDGET", "edit")
        order = self._load(ctx, change_order_id, conn=conn)
        role = assert_project_access(self.db, str(order["project_id"]), ctx, conn=conn)
        require_project_area_edit(ctx, role, "budget")
        if ChangeOrderStatus(order["status"]) not in EDITABLE_STATUSES:
            raise ValidationError("Solo se pueden editar órdenes en borrador o con cambios solicitados")
        return order

    def _check_nodes(self, project_id: str, node_ids: set[str], conn) -> None:
        if not node_ids:
            return
        rows = self.db.fetch_all(
            "SELECT id FROM wbs_nodes WHERE project_id = %s AND id = ANY(%s::uuid[])",
            (project_id, list(node_ids)),
            conn=conn,
        )
        if len(rows) != len(node_ids):
            raise ValidationError("Todas las partidas deben pertenecer al proyecto")

    def _insert_line(self, ctx: OrgContext, conn, change_order_id: str, line: ChangeOrderLineCreate) -> dict[str, Any]:
        return self.db.fetch_one(
            """
            INSERT INTO change_order_lines (
                org_id, change_order_id, wbs_node_id, change_type,
                justification, delta_cost, new_qty, new_unit_cost
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                ctx.org_id,
                change_order_id,
                line.wbs_node_id,
                line.change_type.value,
                line.justification,
                line.delta_cost,
                line.new_qty,
                line.new_unit_cost,
            ),
            conn=conn,
        )

    def _refresh_cost_impact(self, conn, change_order_id: str) -> None:
        """Cost impact follows the lines whenever the order has any."""
        lines = self.db.fetch_all(
            "SELECT delta_cost FROM change_order_lines WHERE change_order_id = %s",
            (change_order_id,),
            conn=conn,
        )
        if lines:
            self.db.execute(
                "UPDATE change_orders SET cost_impact = %s WHERE id = %s",
                (lines_cost_impact(lines), change_order_id),
                conn=conn,
            )

    # CRUD

    def create_change_order(self, ctx: OrgContext, project_id: str, data: ChangeOrderCreate) -> dict[str, Any]:
        require_permission(ctx, "BUDGET", "create")
        with self.db.transaction() as conn:
            role = assert_project_access(self.db, project_id, ctx, conn=conn)
            require_project_area_edit(ctx, role, "budget")
            self._check_nodes(project_id, {l.wbs_node_id for l in data.lines}, conn)
            assert_org_reference(self.db, "parties", data.party_id, ctx, "Contraparte no encontrada", conn=conn)

            self.db.lock_sequence(conn, f"change-order:{project_id}")
            numbers = self.db.fetch_all(
                "SELECT number FROM change_orders WHERE project_id = %s",
                (project_id,),
                conn=conn,
            )
            sequence = max((parse_change_order_sequence(r["number"]) for r in numbers), default=0)
            number = change_order_number(sequence + 1)
            cost_impact = lines_cost_impact(data.lines) if data.lines else data.cost_impact

            try:
                order = self.db.fetch_one(
                    """
                    INSERT INTO change_orders (
                        org_id, project_id, party_id, number, title, reason, justification,
                        change_type, budget_impact_type, status, cost_impact, time_impact_days,
                        request_date, implemented_date, created_by
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 'DRAFT', %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        ctx.org_id,
                        project_id,
                        data.party_id,
                        number,
                        data.title,
                        data.reason,
                        data.justification,
                        data.change_type.value,
                        (data.budget_impact_type or BudgetImpactType.APPROVED_CHANGE).value,
                        cost_impact,
                        data.time_impact_days,
                        data.request_date or date.today(),
                        data.implemented_date,
                        ctx.user_id,
                    ),
                    conn=conn,
                )
            except psycopg.errors.UniqueViolation as e:
                raise ConflictError(f"La orden de cambio {number} ya existe") from e
            order["lines"] = [self._insert_line(ctx, conn, order["id"], line) for line in data.lines]
            publish_outbox_event(
                self.db,
                conn,
                ctx.org_id,
                "CHANGE_ORDER.CREATED",
                "ChangeOrder",
                order["id"],
                {"number": number, "projectId": project_id, "costImpact": cost_impact},
            )

        log.info("change_order_created", change_order_id=str(order["id"]), number=number)
        return order

    def update_change_order(self, ctx: OrgContext, change_order_id: str, data: ChangeOrderUpdate) -> dict[str, Any]:
        changes = data.model_dump(exclude_unset=True)
        # status moves through the workflow methods only
        changes.pop("status", None)
        if not changes:
            raise ValidationError("No hay cambios")
        with self.db.transaction() as conn:
            self._editable(ctx, change_order_id, conn)
            assert_org_reference(self.db, "parties", changes.get("party_id"), ctx, "Contraparte no encontrada", conn=conn)
            has_lines = self.db.fetch_one(
                "SELECT COUNT(*) AS n FROM change_order_lines WHERE change_order_id = %s",
                (change_order_id,),
                conn=conn,
            )
            if has_lines and has_lines["n"]:
                changes.pop("cost_impact", None)
            if not changes:
                raise ValidationError("El impacto de costo se calcula desde las líneas")
            changes = _values(changes)
            assignments = ", ".join(f"{name} = %s" for name in changes)
            order = self.db.fetch_one(
                f"UPDATE change_orders SET {assignments} WHERE id = %s RETURNING *",
                (*changes.values(), change_order_id),
                conn=conn,
            )
        log.info("change_order_updated", change_order_id=change_order_id, fields=list(changes))
        return order

    def list_change_orders(
        self,
        ctx: OrgContext,
        project_id: str,
        status: ChangeOrderStatus | None = None,
    ) -> list[dict[str, Any]]:
        assert_project_access(self.db, project_id, ctx)
        sql = """
            SELECT co.*, p.name AS party_name,
                   (SELECT COUNT(*) FROM change_order_lines l WHERE l.change_order_id = co.id) AS line_count
            FROM change_orders co LEFT JOIN parties p ON p.id = co.party_id
            WHERE co.org_id = %s AND co.project_id = %s
        """
        params: list[Any] = [ctx.org_id, project_id]
        if status:
            sql += " AND co.status = %s"
            params.append(ChangeOrderStatus(status).value)
        return self.db.fetch_all(sql + " ORDER BY co.number", tuple(params))

    def get_change_order(self, ctx: OrgContext, change_order_id: str) -> dict[str, Any]:
        order = self._load(ctx, change_order_id)
        assert_project_access(self.db, str(order["project_id"]), ctx)
        order["lines"] = self.db.fetch_all(
            """
            SELECT l.*, n.code AS wbs_code, n.name AS wbs_name
            FROM change_order_lines l JOIN wbs_nodes n ON n.id = l.wbs_node_id
            WHERE l.change_order_id = %s
            ORDER BY n.code
            """,
            (change_order_id,),
        )
        return order

    # Lines

    def add_line(self, ctx: OrgContext, change_order_id: str, data: ChangeOrderLineCreate) -> dict[str, Any]:
        with self.db.transaction() as conn:
            order = self._editable(ctx, change_order_id, conn)
            self._check_nodes(str(order["project_id"]), {data.wbs_node_id}, conn)
            line = self._insert_line(ctx, conn, change_order_id, data)
            self._refresh_cost_impact(conn, change_order_id)
        return line

    def update_line(self, ctx: OrgContext, line_id: str, data: ChangeOrderLineUpdate) -> dict[str, Any]:
        changes = _values(data.model_dump(exclude_unset=True))
        if not changes:
            raise ValidationError("No hay cambios")
        with self.db.transaction() as conn:
            current = self.db.fetch_one(
                "SELECT change_order_id FROM change_order_lines WHERE id = %s AND org_id = %s",
                (line_id, ctx.org_id),
                conn=conn,
            )
            if not current:
                raise NotFoundError("Línea no encontrada")
            change_order_id = str(current["change_order_id"])
            order = self._editable(ctx, change_order_id, conn)
            if changes.get("wbs_node_id"):
                self._check_nodes(str(order["project_id"]), {changes["wbs_node_id"]}, conn)
            assignments = ", ".join(f"{name} = %s" for name in changes)
            line = self.db.fetch_one(
                f"UPDATE change_order_lines SET {assignments} WHERE id = %s RETURNING *",
                (*changes.values(), line_id),
                conn=conn,
            )
            self._refresh_cost_impact(conn, change_order_id)
        return line

    def delete_line(self, ctx: OrgContext, line_id: str) -> None:
        with self.db.transaction() as conn:
            current = self.db.fetch_one(
                "SELECT change_order_id FROM change_order_lines WHERE id = %s AND org_id = %s",
                (line_id, ctx.org_id),
                conn=conn,
            )
            if not current:
                raise NotFoundError("Línea no encontrada")
            change_order_id = str(current["change_order_id"])
            self._editable(ctx, change_order_id, conn)
            self.db.execute("DELETE FROM change_order_lines WHERE id = %s", (line_id,), conn=conn)
            self._refresh_cost_impact(conn, change_order_id)

    # Workflow

    def _transition(
        self,
        ctx: OrgContext,
        change_order_id: str,
        target: ChangeOrderStatus,
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        with self.db.transaction() as conn:
            order = self._load(ctx, change_order_id, conn=conn)
            role = assert_project_access(self.db, str(order["project_id"]), ctx, conn=conn)
            require_project_area_edit(ctx, role, "budget")
            if not can_transition(order["status"], target):
                raise ValidationError(f"No se puede pasar de {order['status']} a {target.value}")
            changes = {"status": target.value, **(extra or {})}
            assignments = ", ".join(f"{name} = %s" for name in changes)
            updated = self.db.fetch_one(
                f"UPDATE change_orders SET {assignments} WHERE id = %s RETURNING *",
                (*changes.values(), change_order_id),
                conn=conn,
            )
            publish_outbox_event(
                self.db,
                conn,
                ctx.org_id,
                f"CHANGE_ORDER.{target.value}",
                "ChangeOrder",
                change_order_id,
                {"number": order["number"], "from": order["status"]},
            )
        log.info("change_order_status_changed", change_order_id=change_order_id, status=target.value)
        return updated

    def submit(self, ctx: OrgContext, change_order_id: str) -> dict[str, Any]:
        require_permission(ctx, "BUDGET", "edit")
        return self._transition(ctx, change_order_id, ChangeOrderStatus.SUBMITTED)

    def approve(self, ctx: OrgContext, change_order_id: str) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.ADMIN)
        return self._transition(
            ctx,
            change_order_id,
            ChangeOrderStatus.APPROVED,
            {"approved_date": date.today(), "approved_by": ctx.user_id},
        )

    def reject(self, ctx: OrgContext, change_order_id: str) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.ADMIN)
        return self._transition(ctx, change_order_id, ChangeOrderStatus.REJECTED)

    def request_changes(self, ctx: OrgContext, change_order_id: str) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.ADMIN)
        return self._transition(ctx, change_order_id, ChangeOrderStatus.CHANGES_REQUESTED)

    def return_to_draft(self, ctx: OrgContext, change_order_id: str) -> dict[str, Any]:
        require_permission(ctx, "BUDGET", "edit")
        return self._transition(ctx, change_order_id, ChangeOrderStatus.DRAFT)

    # Impact

    def get_budget_impact(self, ctx: OrgContext, project_id: str) -> dict[str, float]:
        """
        Original budget (latest approved version) against approved changes.

        Deviations are reported apart and do not move the revised budget.
        """
        assert_project_access(self.db, project_id, ctx)
        version = self.db.fetch_one(
            """
            SELECT sale_price_total FROM budget_versions
            WHERE project_id = %s AND org_id = %s AND status = 'APPROVED'
            ORDER BY approved_at DESC NULLS LAST, created_at DESC
            LIMIT 1
            """,
            (project_id, ctx.org_id),
        )
        sums = self.db.fetch_one(
            """
            SELECT
                COALESCE(SUM(cost_impact) FILTER (
                    WHERE status = 'APPROVED' AND budget_impact_type = %s), 0) AS approved_changes,
                COALESCE(SUM(cost_impact) FILTER (
                    WHERE status = 'APPROVED' AND budget_impact_type = %s), 0) AS deviations,
                COALESCE(SUM(cost_impact) FILTER (WHERE status = 'SUBMITTED'), 0) AS pending
            FROM change_orders
            WHERE project_id = %s AND org_id = %s
            """,
            (
                BudgetImpactType.APPROVED_CHANGE.value,
                BudgetImpactType.DEVIATION.value,
                project_id,
                ctx.org_id,
            ),
        )
        original = round_money(to_num(version["sale_price_total"])) if version else 0.0
        approved = round_money(to_num(sums["approved_changes"]))
        return {
            "originalBudget": original,
            "approvedChanges": approved,
            "deviations": round_money(to_num(sums["deviations"])),
            "revisedBudget": round_money(original + approved),
            "pendingChanges": round_money(to_num(sums["pending"])),
        }
