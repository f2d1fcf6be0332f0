"""
Material lists derived from budget versions, and purchase orders
(commitments of type PO) issued against them.
"""

from datetime import date, timedelta
from typing import Any

import psycopg

from obra_erp.core.database import Database
from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.materials import (
    ConsolidatedMaterial,
    MaterialsBySupplier,
    consolidate_materials,
    group_by_supplier,
    purchase_order_lines,
)
from obra_erp.core.models import CommitmentStatus, OrgContext
from obra_erp.core.numbers import round_money, to_num
from obra_erp.core.permissions import require_permission, require_project_area_edit
from obra_erp.services.auth import assert_project_access
from obra_erp.services.outbox import publish_outbox_event

log = get_logger(__name__)

COMMITMENT_TRANSITIONS: dict[str, set[str]] = {
    "DRAFT": {"APPROVED", "CANCELLED"},
    "APPROVED": {"CLOSED", "CANCELLED"},
    "CLOSED": set(),
    "CANCELLED": set(),
}

MATERIAL_RESOURCES_SQL = """
    SELECT r.id, r.description, r.unit, r.quantity, r.unit_cost, r.attributes,
           l.quantity AS line_quantity, n.id AS wbs_node_id,
           n.code AS wbs_code, n.name AS wbs_name
    FROM budget_resources r
    JOIN budget_lines l ON l.id = r.budget_line_id
    JOIN wbs_nodes n ON n.id = l.wbs_node_id
    WHERE l.budget_version_id = %s AND r.org_id = %s AND r.resource_type = 'MATERIAL'
    ORDER BY n.code, r.sort_order
"""


def po_number(sequence: int) -> str:
    return f"OC-{sequence:04d}"


def parse_po_sequence(number: str | None) -> int:
    if not number or not number.startswith("OC-"):
        return 0
    try:
        return int(number[3:])
    except ValueError:
        return 0


class MaterialsService:
    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    def _material_resources(self, ctx: OrgContext, version_id: str) -> list[dict[str, Any]]:
        version = self.db.fetch_one(
            "SELECT id, project_id FROM budget_versions WHERE id = %s AND org_id = %s",
            (version_id, ctx.org_id),
        )
        if not version:
            raise NotFoundError("Versión de presupuesto no encontrada")
        assert_project_access(self.db, str(version["project_id"]), ctx)
        return self.db.fetch_all(MATERIAL_RESOURCES_SQL, (version_id, ctx.org_id))

    def get_consolidated_materials(self, ctx: OrgContext, version_id: str) -> list[ConsolidatedMaterial]:
        return consolidate_materials(self._material_resources(ctx, version_id))

    def get_materials_by_supplier(self, ctx: OrgContext, version_id: str) -> list[MaterialsBySupplier]:
        return group_by_supplier(self._material_resources(ctx, version_id))

    def get_materials_for_purchase_order(self, ctx: OrgContext, version_id: str) -> list[dict[str, Any]]:
        return purchase_order_lines(self._material_resources(ctx, version_id))

    def generate_purchase_order(self, ctx: OrgContext, version_id: str, supplier: str) -> dict[str, Any]:
        """Pre-order data for one supplier of the version."""
        groups = self.get_materials_by_supplier(ctx, version_id)
        group = next((g for g in groups if g.supplier_name == supplier), None)
        if group is None:
            raise NotFoundError(f"Proveedor {supplier} no encontrado")
        return {
            "supplierName": group.supplier_name,
            "items": [
                {
                    "description": m.name,
                    "unit": m.unit,
                    "quantity": m.quantity,
                    "unitCost": m.unit_cost,
                    "totalCost": m.total_cost,
                }
                for m in group.materials
            ],
            "totalCost": group.total_cost,
            "orderDate": date.today().isoformat(),
        }

    # Purchase orders

    def create_purchase_order_commitment(
        self,
        ctx: OrgContext,
        project_id: str,
        party_id: str,
        issue_date: date,
        lines: list[dict[str, Any]],
        description: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a DRAFT purchase order.

        Each line needs wbs_node_id, description, quantity and unit_price;
        every WBS node must belong to the project.
        """
        require_permission(ctx, "FINANCE", "create")
        if not lines:
            raise ValidationError("La orden de compra debe tener al menos una línea")

        with self.db.transaction() as conn:
            role = assert_project_access(self.db, project_id, ctx, conn=conn)
            require_project_area_edit(ctx, role, "finance")

            party = self.db.fetch_one(
                "SELECT id, name FROM parties WHERE id = %s AND org_id = %s",
                (party_id, ctx.org_id),
                conn=conn,
            )
            if not party:
                raise NotFoundError("Proveedor no encontrado")

            node_ids = {str(l["wbs_node_id"]) for l in lines if l.get("wbs_node_id")}
            if node_ids:
                nodes = self.db.fetch_all(
                    "SELECT id FROM wbs_nodes WHERE project_id = %s AND id = ANY(%s::uuid[])",
                    (project_id, list(node_ids)),
                    conn=conn,
                )
                if len(nodes) != len(node_ids):
                    raise ValidationError("Todas las partidas deben pertenecer al proyecto")

            self.db.lock_sequence(conn, f"purchase-order:{ctx.org_id}")
            numbers = self.db.fetch_all(
                """
                SELECT commitment_number FROM commitments
                WHERE org_id = %s AND commitment_type = 'PO'
                """,
                (ctx.org_id,),
                conn=conn,
            )
            sequence = max((parse_po_sequence(r["commitment_number"]) for r in numbers), default=0)
            number = po_number(sequence + 1)

            priced = []
            for line in lines:
                quantity = to_num(line.get("quantity"))
                unit_price = to_num(line.get("unit_price"))
                if quantity <= 0 or unit_price < 0:
                    raise ValidationError("Cantidad y precio deben ser positivos")
                priced.append({**line, "line_total": round_money(quantity * unit_price)})
            total = round_money(sum(l["line_total"] for l in priced))

            try:
                commitment = self.db.fetch_one(
                    """
                    INSERT INTO commitments (
                        org_id, project_id, party_id, commitment_type, commitment_number,
                        status, issue_date, description, total, created_by
                    )
                    VALUES (%s, %s, %s, 'PO', %s, 'DRAFT', %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (ctx.org_id, project_id, party_id, number, issue_date, description, total, ctx.user_id),
                    conn=conn,
                )
            except psycopg.errors.UniqueViolation as e:
                raise ConflictError(f"El número de orden {number} ya existe") from e
            for index, line in enumerate(priced):
                self.db.execute(
                    """
                    INSERT INTO commitment_lines (
                        org_id, commitment_id, wbs_node_id, description, unit,
                        quantity, unit_price, line_total, sort_order
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        ctx.org_id,
                        commitment["id"],
                        line.get("wbs_node_id"),
                        line.get("description") or "",
                        line.get("unit"),
                        line["quantity"],
                        line["unit_price"],
                        line["line_total"],
                        index,
                    ),
                    conn=conn,
                )
            publish_outbox_event(
                self.db,
                conn,
                ctx.org_id,
                "COMMITMENT.CREATED",
                "Commitment",
                commitment["id"],
                {"number": number, "projectId": project_id, "total": total},
            )

        log.info("purchase_order_created", commitment_id=str(commitment["id"]), number=number, total=total)
        return commitment

    def list_project_purchase_orders(
        self,
        ctx: OrgContext,
        project_id: str,
        status: str | None = None,
        party_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[dict[str, Any]]:
        assert_project_access(self.db, project_id, ctx)
        sql = """
            SELECT c.*, p.name AS party_name
            FROM commitments c JOIN parties p ON p.id = c.party_id
            WHERE c.org_id = %s AND c.project_id = %s
              AND c.commitment_type = 'PO' AND c.deleted = FALSE
        """
        params: list[Any] = [ctx.org_id, project_id]
        if status:
            sql += " AND c.status = %s"
            params.append(status)
        if party_id:
            sql += " AND c.party_id = %s"
            params.append(party_id)
        if date_from:
            sql += " AND c.issue_date >= %s"
            params.append(date_from)
        if date_to:
            # inclusive of the whole last day
            sql += " AND c.issue_date < %s"
            params.append(date_to + timedelta(days=1))
        sql += " ORDER BY c.issue_date DESC, c.commitment_number DESC"
        return self.db.fetch_all(sql, tuple(params))

    def get_commitment(self, ctx: OrgContext, commitment_id: str) -> dict[str, Any]:
        commitment = self.db.fetch_one(
            """
            SELECT c.*, p.name AS party_name, p.tax_id AS party_tax_id,
                   pr.name AS project_name, pr.project_number
            FROM commitments c
            JOIN parties p ON p.id = c.party_id
            JOIN projects pr ON pr.id = c.project_id
            WHERE c.id = %s AND c.org_id = %s AND c.deleted = FALSE
            """,
            (commitment_id, ctx.org_id),
        )
        if not commitment:
            raise NotFoundError("Orden de compra no encontrada")
        assert_project_access(self.db, str(commitment["project_id"]), ctx)
        commitment["lines"] = self.db.fetch_all(
            """
            SELECT cl.*, n.code AS wbs_code, n.name AS wbs_name
            FROM commitment_lines cl LEFT JOIN wbs_nodes n ON n.id = cl.wbs_node_id
            WHERE cl.commitment_id = %s
            ORDER BY cl.sort_order
            """,
            (commitment_id,),
        )
        return commitment

    def update_commitment_status(
        self,
        ctx: OrgContext,
        commitment_id: str,
        status: CommitmentStatus,
    ) -> dict[str, Any]:
        require_permission(ctx, "FINANCE", "edit")
        target = CommitmentStatus(status).value
        with self.db.transaction() as conn:
            current = self.db.fetch_one(
                "SELECT id, project_id, status FROM commitments WHERE id = %s AND org_id = %s AND deleted = FALSE",
                (commitment_id, ctx.org_id),
                conn=conn,
            )
            if not current:
                raise NotFoundError("Orden de compra no encontrada")
            role = assert_project_access(self.db, str(current["project_id"]), ctx, conn=conn)
            require_project_area_edit(ctx, role, "finance")
            if target not in COMMITMENT_TRANSITIONS.get(current["status"], set()):
                raise ValidationError(f"No se puede pasar de {current['status']} a {target}")
            updated = self.db.fetch_one(
                "UPDATE commitments SET status = %s WHERE id = %s RETURNING *",
                (target, commitment_id),
                conn=conn,
            )
        log.info("commitment_status_changed", commitment_id=commitment_id, status=target)
        return updated
