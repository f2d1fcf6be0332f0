"""
Budget versions, WBS nodes, lines and resources.

Only DRAFT versions can be edited. Approving a version supersedes the
previously approved one and stores its totals.
"""

from typing import Any

import psycopg
from psycopg.types.json import Json

from obra_erp.config import settings
from obra_erp.core.budget import (
    MarkupRates,
    build_budget_tree,
    compute_line_cost,
    export_rows,
    parent_code,
)
from obra_erp.core.database import Database
from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import BudgetVersionStatus, MarkupMode, OrgContext, ResourceType
from obra_erp.core.numbers import round_money
from obra_erp.core.permissions import require_permission, require_project_area_edit
from obra_erp.services.auth import assert_project_access
from obra_erp.services.outbox import publish_outbox_event

log = get_logger(__name__)

LINE_FIELDS = (
    "description",
    "unit",
    "quantity",
    "overhead_pct",
    "financial_pct",
    "profit_pct",
    "tax_pct",
    "direct_cost_total",
    "sort_order",
)
RESOURCE_FIELDS = ("resource_type", "description", "unit", "quantity", "unit_cost", "attributes", "sort_order")


def next_version_code(existing: list[str]) -> str:
    """V1, V2, ... after the highest existing Vn."""
    highest = 0
    for code in existing:
        if code and code.upper().startswith("V") and code[1:].isdigit():
            highest = max(highest, int(code[1:]))
    return f"V{highest + 1}"


def _set_clause(changes: dict[str, Any]) -> tuple[str, list[Any]]:
    values = []
    for value in changes.values():
        if isinstance(value, dict):
            value = Json(value)
        elif hasattr(value, "value"):
            value = value.value
        values.append(value)
    return ", ".join(f"{name} = %s" for name in changes), values


class BudgetService:
    """Budget editing and consolidation for a project."""

    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    # Loading and guards

    def _load_version(self, ctx: OrgContext, version_id: str, conn=None) -> dict[str, Any]:
        version = self.db.fetch_one(
            "SELECT * FROM budget_versions WHERE id = %s AND org_id = %s",
            (version_id, ctx.org_id),
            conn=conn,
        )
        if not version:
            raise NotFoundError("Versión de presupuesto no encontrada")
        return version

    def _editable_version(self, ctx: OrgContext, version_id: str, conn=None) -> dict[str, Any]:
        require_permission(ctx, "BUDGET", "edit")
        version = self._load_version(ctx, version_id, conn=conn)
        role = assert_project_access(self.db, str(version["project_id"]), ctx, conn=conn)
        require_project_area_edit(ctx, role, "budget")
        if version["status"] != BudgetVersionStatus.DRAFT.value:
            raise ValidationError("La versión está bloqueada: solo se editan versiones en borrador")
        return version

    def _line_with_version(self, ctx: OrgContext, line_id: str, conn=None) -> tuple[dict, dict]:
        line = self.db.fetch_one(
            "SELECT * FROM budget_lines WHERE id = %s AND org_id = %s",
            (line_id, ctx.org_id),
            conn=conn,
        )
        if not line:
            raise NotFoundError("Línea de presupuesto no encontrada")
        version = self._editable_version(ctx, str(line["budget_version_id"]), conn=conn)
        return line, version

    def _refresh_line_totals(self, conn, line_id: str, version: dict[str, Any]) -> dict[str, Any]:
        line = self.db.fetch_one("SELECT * FROM budget_lines WHERE id = %s", (line_id,), conn=conn)
        resources = self.db.fetch_all(
            "SELECT * FROM budget_resources WHERE budget_line_id = %s", (line_id,), conn=conn
        )
        cost = compute_line_cost(line, resources, version)
        return self.db.fetch_one(
            """
            UPDATE budget_lines SET direct_cost_total = %s, sale_price_total = %s
            WHERE id = %s
            RETURNING *
            """,
            (round_money(cost.direct), round_money(cost.sale), line_id),
            conn=conn,
        )

    # Versions

    def list_versions(self, ctx: OrgContext, project_id: str) -> list[dict[str, Any]]:
        assert_project_access(self.db, project_id, ctx)
        return self.db.fetch_all(
            """
            SELECT * FROM budget_versions
            WHERE project_id = %s AND org_id = %s
            ORDER BY created_at DESC
            """,
            (project_id, ctx.org_id),
        )

    def get_version(self, ctx: OrgContext, version_id: str) -> dict[str, Any]:
        version = self._load_version(ctx, version_id)
        assert_project_access(self.db, str(version["project_id"]), ctx)
        return version

    def create_version(
        self,
        ctx: OrgContext,
        project_id: str,
        copy_from_version_id: str | None = None,
    ) -> dict[str, Any]:
        """New DRAFT version, optionally copying lines and resources from another version."""
        require_permission(ctx, "BUDGET", "create")
        with self.db.transaction() as conn:
            role = assert_project_access(self.db, project_id, ctx, conn=conn)
            require_project_area_edit(ctx, role, "budget")

            self.db.lock_sequence(conn, f"budget-version:{project_id}")
            existing = self.db.fetch_all(
                "SELECT version_code FROM budget_versions WHERE project_id = %s",
                (project_id,),
                conn=conn,
            )
            code = next_version_code([r["version_code"] for r in existing])

            source = None
            if copy_from_version_id:
                source = self._load_version(ctx, copy_from_version_id, conn=conn)
                if str(source["project_id"]) != str(project_id):
                    raise ValidationError("La versión de origen pertenece a otro proyecto")

            rates = MarkupRates.from_version(source) if source else MarkupRates(
                overhead_pct=settings.default_overhead_pct,
                financial_pct=settings.default_financial_pct,
                profit_pct=settings.default_profit_pct,
                tax_pct=settings.default_tax_pct,
            )
            try:
                version = self.db.fetch_one(
                    """
                    INSERT INTO budget_versions (
                        org_id, project_id, version_code, status, markup_mode,
                        global_overhead_pct, global_financial_pct, global_profit_pct, global_tax_pct
                    )
                    VALUES (%s, %s, %s, 'DRAFT', %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        ctx.org_id,
                        project_id,
                        code,
                        source["markup_mode"] if source else MarkupMode.GLOBAL.value,
                        rates.overhead_pct,
                        rates.financial_pct,
                        rates.profit_pct,
                        rates.tax_pct,
                    ),
                    conn=conn,
                )
            except psycopg.errors.UniqueViolation as e:
                raise ConflictError(f"La versión {code} ya existe") from e
            if source:
                self._copy_lines(conn, ctx, str(source["id"]), str(version["id"]))

        log.info(
            "budget_version_created",
            version_id=str(version["id"]),
            code=code,
            copied_from=copy_from_version_id,
        )
        return version

    def _copy_lines(self, conn, ctx: OrgContext, source_id: str, target_id: str) -> None:
        lines = self.db.fetch_all(
            "SELECT * FROM budget_lines WHERE budget_version_id = %s ORDER BY sort_order",
            (source_id,),
            conn=conn,
        )
        for line in lines:
            new_line = self.db.fetch_one(
                """
                INSERT INTO budget_lines (
                    org_id, budget_version_id, wbs_node_id, description, unit, quantity,
                    overhead_pct, financial_pct, profit_pct, tax_pct,
                    direct_cost_total, sale_price_total, sort_order
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    ctx.org_id,
                    target_id,
                    line["wbs_node_id"],
                    line["description"],
                    line["unit"],
                    line["quantity"],
                    line["overhead_pct"],
                    line["financial_pct"],
                    line["profit_pct"],
                    line["tax_pct"],
                    line["direct_cost_total"],
                    line["sale_price_total"],
                    line["sort_order"],
                ),
                conn=conn,
            )
            self.db.execute(
                """
                INSERT INTO budget_resources (
                    org_id, budget_line_id, resource_type, description, unit,
                    quantity, unit_cost, attributes, sort_order
                )
                SELECT org_id, %s, resource_type, description, unit,
                       quantity, unit_cost, attributes, sort_order
                FROM budget_resources WHERE budget_line_id = %s
                """,
                (new_line["id"], line["id"]),
                conn=conn,
            )

    def update_markup(
        self,
        ctx: OrgContext,
        version_id: str,
        rates: MarkupRates,
        markup_mode: MarkupMode | None = None,
    ) -> dict[str, Any]:
        rates.validate()
        with self.db.transaction() as conn:
            version = self._editable_version(ctx, version_id, conn=conn)
            updated = self.db.fetch_one(
                """
                UPDATE budget_versions
                SET global_overhead_pct = %s, global_financial_pct = %s,
                    global_profit_pct = %s, global_tax_pct = %s, markup_mode = %s
                WHERE id = %s
                RETURNING *
                """,
                (
                    rates.overhead_pct,
                    rates.financial_pct,
                    rates.profit_pct,
                    rates.tax_pct,
                    MarkupMode(markup_mode).value if markup_mode else version["markup_mode"],
                    version_id,
                ),
                conn=conn,
            )
            lines = self.db.fetch_all(
                "SELECT id FROM budget_lines WHERE budget_version_id = %s", (version_id,), conn=conn
            )
            for line in lines:
                self._refresh_line_totals(conn, str(line["id"]), updated)
        log.info("budget_markup_updated", version_id=version_id, **rates.__dict__)
        return updated

    def approve_version(self, ctx: OrgContext, version_id: str) -> dict[str, Any]:
        """Approve a DRAFT version; the previously approved one becomes SUPERSEDED."""
        with self.db.transaction() as conn:
            version = self._editable_version(ctx, version_id, conn=conn)
            _, totals = self._tree(conn, version)

            superseded = self.db.execute(
                """
                UPDATE budget_versions SET status = 'SUPERSEDED'
                WHERE project_id = %s AND status = 'APPROVED' AND id <> %s
                """,
                (version["project_id"], version_id),
                conn=conn,
            )
            approved = self.db.fetch_one(
                """
                UPDATE budget_versions
                SET status = 'APPROVED', approved_at = NOW(), approved_by = %s,
                    direct_cost_total = %s, sale_price_total = %s
                WHERE id = %s
                RETURNING *
                """,
                (ctx.user_id, round_money(totals.direct), round_money(totals.sale), version_id),
                conn=conn,
            )
            publish_outbox_event(
                self.db,
                conn,
                ctx.org_id,
                "BUDGET_VERSION.APPROVED",
                "BudgetVersion",
                version_id,
                {
                    "projectId": str(version["project_id"]),
                    "versionCode": version["version_code"],
                    "salePriceTotal": round_money(totals.sale),
                },
            )

        log.info(
            "budget_version_approved",
            version_id=version_id,
            superseded=superseded,
            sale_total=round_money(totals.sale),
        )
        return approved

    # WBS

    def list_wbs_nodes(self, ctx: OrgContext, project_id: str) -> list[dict[str, Any]]:
        assert_project_access(self.db, project_id, ctx)
        return self.db.fetch_all(
            "SELECT * FROM wbs_nodes WHERE project_id = %s AND org_id = %s ORDER BY sort_order, code",
            (project_id, ctx.org_id),
        )

    def create_wbs_node(
        self,
        ctx: OrgContext,
        project_id: str,
        code: str,
        name: str,
        unit: str | None = None,
        parent_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a node; without parent_id the parent is found from the code prefix."""
        require_permission(ctx, "BUDGET", "edit")
        code = (code or "").strip()
        if not code or not (name or "").strip():
            raise ValidationError("Código y nombre son obligatorios")

        with self.db.transaction() as conn:
            role = assert_project_access(self.db, project_id, ctx, conn=conn)
            require_project_area_edit(ctx, role, "budget")

            duplicate = self.db.fetch_one(
                "SELECT id FROM wbs_nodes WHERE project_id = %s AND code = %s",
                (project_id, code),
                conn=conn,
            )
            if duplicate:
                raise ConflictError(f'El código "{code}" ya existe en el proyecto')

            if parent_id:
                parent = self.db.fetch_one(
                    "SELECT id FROM wbs_nodes WHERE id = %s AND project_id = %s",
                    (parent_id, project_id),
                    conn=conn,
                )
                if not parent:
                    raise NotFoundError("Nodo padre no encontrado")
            elif parent_code(code):
                parent = self.db.fetch_one(
                    "SELECT id FROM wbs_nodes WHERE project_id = %s AND code = %s",
                    (project_id, parent_code(code)),
                    conn=conn,
                )
                parent_id = str(parent["id"]) if parent else None

            order = self.db.fetch_one(
                """
                SELECT COALESCE(MAX(sort_order), -1) + 1 AS next_order FROM wbs_nodes
                WHERE project_id = %s AND parent_id IS NOT DISTINCT FROM %s
                """,
                (project_id, parent_id),
                conn=conn,
            )
            node = self.db.fetch_one(
                """
                INSERT INTO wbs_nodes (org_id, project_id, parent_id, code, name, unit, sort_order)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (ctx.org_id, project_id, parent_id, code, name.strip(), unit, order["next_order"]),
                conn=conn,
            )
        log.info("wbs_node_created", project_id=project_id, code=code)
        return node

    def reorder_wbs_nodes(
        self,
        ctx: OrgContext,
        project_id: str,
        parent_id: str | None,
        ordered_ids: list[str],
    ) -> None:
        require_permission(ctx, "BUDGET", "edit")
        with self.db.transaction() as conn:
            role = assert_project_access(self.db, project_id, ctx, conn=conn)
            require_project_area_edit(ctx, role, "budget")

            children = self.db.fetch_all(
                """
                SELECT id FROM wbs_nodes
                WHERE project_id = %s AND parent_id IS NOT DISTINCT FROM %s
                """,
                (project_id, parent_id),
                conn=conn,
            )
            child_ids = {str(r["id"]) for r in children}
            if any(str(node_id) not in child_ids for node_id in ordered_ids):
                raise ValidationError("Todos los nodos deben pertenecer al mismo padre")

            for index, node_id in enumerate(ordered_ids):
                self.db.execute(
                    "UPDATE wbs_nodes SET sort_order = %s WHERE id = %s",
                    (index, node_id),
                    conn=conn,
                )
        log.info("wbs_nodes_reordered", project_id=project_id, count=len(ordered_ids))

    # Lines

    def add_budget_line(self, ctx: OrgContext, version_id: str, data: dict[str, Any]) -> dict[str, Any]:
        with self.db.transaction() as conn:
            version = self._editable_version(ctx, version_id, conn=conn)
            node = self.db.fetch_one(
                "SELECT id FROM wbs_nodes WHERE id = %s AND project_id = %s",
                (data.get("wbs_node_id"), version["project_id"]),
                conn=conn,
            )
            if not node:
                raise NotFoundError("Nodo WBS no encontrado")

            line = self.db.fetch_one(
                """
                INSERT INTO budget_lines (
                    org_id, budget_version_id, wbs_node_id, description, unit, quantity,
                    overhead_pct, financial_pct, profit_pct, tax_pct, direct_cost_total, sort_order
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    ctx.org_id,
                    version_id,
                    node["id"],
                    data.get("description") or "",
                    data.get("unit"),
                    data.get("quantity", 1),
                    data.get("overhead_pct"),
                    data.get("financial_pct"),
                    data.get("profit_pct"),
                    data.get("tax_pct"),
                    data.get("direct_cost_total", 0),
                    data.get("sort_order", 0),
                ),
                conn=conn,
            )
            line = self._refresh_line_totals(conn, str(line["id"]), version)
        log.info("budget_line_added", version_id=version_id, line_id=str(line["id"]))
        return line

    def update_budget_line(self, ctx: OrgContext, line_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        changes = {k: v for k, v in changes.items() if k in LINE_FIELDS}
        with self.db.transaction() as conn:
            line, version = self._line_with_version(ctx, line_id, conn=conn)
            if changes:
                assignments, values = _set_clause(changes)
                self.db.execute(
                    f"UPDATE budget_lines SET {assignments} WHERE id = %s",
                    (*values, line_id),
                    conn=conn,
                )
            line = self._refresh_line_totals(conn, line_id, version)
        log.info("budget_line_updated", line_id=line_id, fields=list(changes))
        return line

    def delete_budget_line(self, ctx: OrgContext, line_id: str) -> None:
        with self.db.transaction() as conn:
            self._line_with_version(ctx, line_id, conn=conn)
            self.db.execute("DELETE FROM budget_lines WHERE id = %s", (line_id,), conn=conn)
        log.info("budget_line_deleted", line_id=line_id)

    # Resources

    def add_resource(self, ctx: OrgContext, line_id: str, data: dict[str, Any]) -> dict[str, Any]:
        resource_type = ResourceType(data.get("resource_type", ResourceType.MATERIAL.value))
        with self.db.transaction() as conn:
            _, version = self._line_with_version(ctx, line_id, conn=conn)
            resource = self.db.fetch_one(
                """
                INSERT INTO budget_resources (
                    org_id, budget_line_id, resource_type, description, unit,
                    quantity, unit_cost, attributes, sort_order
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    ctx.org_id,
                    line_id,
                    resource_type.value,
                    data.get("description") or "",
                    data.get("unit"),
                    data.get("quantity", 0),
                    data.get("unit_cost", 0),
                    Json(data["attributes"]) if data.get("attributes") else None,
                    data.get("sort_order", 0),
                ),
                conn=conn,
            )
            self._refresh_line_totals(conn, line_id, version)
        log.info("budget_resource_added", line_id=line_id, resource_type=resource_type.value)
        return resource

    def _resource_line(self, ctx: OrgContext, resource_id: str, conn) -> tuple[dict, dict]:
        resource = self.db.fetch_one(
            "SELECT * FROM budget_resources WHERE id = %s AND org_id = %s",
            (resource_id, ctx.org_id),
            conn=conn,
        )
        if not resource:
            raise NotFoundError("Recurso no encontrado")
        _, version = self._line_with_version(ctx, str(resource["budget_line_id"]), conn=conn)
        return resource, version

    def update_resource(self, ctx: OrgContext, resource_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        changes = {k: v for k, v in changes.items() if k in RESOURCE_FIELDS}
        if "resource_type" in changes:
            changes["resource_type"] = ResourceType(changes["resource_type"])
        with self.db.transaction() as conn:
            resource, version = self._resource_line(ctx, resource_id, conn)
            if changes:
                assignments, values = _set_clause(changes)
                resource = self.db.fetch_one(
                    f"UPDATE budget_resources SET {assignments} WHERE id = %s RETURNING *",
                    (*values, resource_id),
                    conn=conn,
                )
            self._refresh_line_totals(conn, str(resource["budget_line_id"]), version)
        log.info("budget_resource_updated", resource_id=resource_id, fields=list(changes))
        return resource

    def delete_resource(self, ctx: OrgContext, resource_id: str) -> None:
        with self.db.transaction() as conn:
            resource, version = self._resource_line(ctx, resource_id, conn)
            self.db.execute("DELETE FROM budget_resources WHERE id = %s", (resource_id,), conn=conn)
            self._refresh_line_totals(conn, str(resource["budget_line_id"]), version)
        log.info("budget_resource_deleted", resource_id=resource_id)

    # Consolidation

    def _tree(self, conn, version: dict[str, Any]):
        nodes = self.db.fetch_all(
            "SELECT * FROM wbs_nodes WHERE project_id = %s ORDER BY sort_order",
            (version["project_id"],),
            conn=conn,
        )
        lines = self.db.fetch_all(
            "SELECT * FROM budget_lines WHERE budget_version_id = %s ORDER BY sort_order",
            (version["id"],),
            conn=conn,
        )
        resources = self.db.fetch_all(
            """
            SELECT r.* FROM budget_resources r
            JOIN budget_lines l ON l.id = r.budget_line_id
            WHERE l.budget_version_id = %s
            ORDER BY r.sort_order
            """,
            (version["id"],),
            conn=conn,
        )
        return build_budget_tree(nodes, lines, resources, version)

    def get_budget_tree(self, ctx: OrgContext, version_id: str) -> dict[str, Any]:
        version = self.get_version(ctx, version_id)
        with self.db.get_connection() as conn:
            roots, totals = self._tree(conn, version)
        return {
            "version": version,
            "nodes": [root.to_dict() for root in roots],
            "totals": totals.to_dict(),
        }

    def get_budget_export_data(self, ctx: OrgContext, version_id: str) -> dict[str, Any]:
        """Project, version, flat rows sorted by code and totals, for exports and print."""
        version = self.get_version(ctx, version_id)
        with self.db.get_connection() as conn:
            project = self.db.fetch_one(
                "SELECT * FROM projects WHERE id = %s", (version["project_id"],), conn=conn
            )
            roots, totals = self._tree(conn, version)
        return {
            "project": project,
            "version": version,
            "rows": export_rows(roots),
            "totals": totals.to_dict(),
        }
