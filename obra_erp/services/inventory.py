"""
Inventory: items, locations, stock movements and KPIs.

Stock is never stored; it is derived from movements as inbound (to)
minus outbound (from) quantities per location.
"""

from datetime import date
from typing import Any

import psycopg

from obra_erp.core.database import Database
from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import LocationType, MovementType, OrgContext
from obra_erp.core.numbers import round_money, to_num
from obra_erp.core.permissions import require_permission
from obra_erp.services.auth import assert_org_reference

log = get_logger(__name__)

ITEM_FIELDS = ("sku", "name", "unit", "category_id", "min_stock_qty", "reorder_qty", "active")
LOCATION_FIELDS = ("name", "type", "project_id", "active")


def validate_movement_locations(
    movement_type: MovementType,
    from_location_id: str | None,
    to_location_id: str | None,
) -> None:
    """Location rules per movement type."""
    movement_type = MovementType(movement_type)
    if movement_type == MovementType.PURCHASE and not to_location_id:
        raise ValidationError("Una compra requiere ubicación de destino")
    if movement_type == MovementType.TRANSFER:
        if not from_location_id or not to_location_id:
            raise ValidationError("Una transferencia requiere ubicación de origen y destino")
        if str(from_location_id) == str(to_location_id):
            raise ValidationError("Origen y destino deben ser distintos")
    if movement_type == MovementType.ISSUE and not from_location_id:
        raise ValidationError("Un consumo requiere ubicación de origen")
    if movement_type == MovementType.ADJUSTMENT and bool(from_location_id) == bool(to_location_id):
        raise ValidationError("Un ajuste requiere solo origen (disminución) o solo destino (aumento)")


class InventoryService:
    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    # Categories

    def list_categories(self, ctx: OrgContext) -> list[dict[str, Any]]:
        return self.db.fetch_all(
            "SELECT * FROM inventory_categories WHERE org_id = %s ORDER BY name", (ctx.org_id,)
        )

    def create_category(self, ctx: OrgContext, name: str) -> dict[str, Any]:
        require_permission(ctx, "INVENTORY", "create")
        if not (name or "").strip():
            raise ValidationError("El nombre es obligatorio")
        try:
            return self.db.fetch_one(
                "INSERT INTO inventory_categories (org_id, name) VALUES (%s, %s) RETURNING *",
                (ctx.org_id, name.strip()),
            )
        except psycopg.errors.UniqueViolation as e:
            raise ConflictError("La categoría ya existe") from e

    # Items

    def list_items(self, ctx: OrgContext, include_inactive: bool = False) -> list[dict[str, Any]]:
        require_permission(ctx, "INVENTORY", "view")
        sql = """
            SELECT i.*, c.name AS category_name
            FROM inventory_items i LEFT JOIN inventory_categories c ON c.id = i.category_id
            WHERE i.org_id = %s
        """
        if not include_inactive:
            sql += " AND i.active = TRUE"
        return self.db.fetch_all(sql + " ORDER BY i.name", (ctx.org_id,))

    def get_item(self, ctx: OrgContext, item_id: str) -> dict[str, Any]:
        item = self.db.fetch_one(
            "SELECT * FROM inventory_items WHERE id = %s AND org_id = %s", (item_id, ctx.org_id)
        )
        if not item:
            raise NotFoundError("Ítem no encontrado")
        return item

    def create_item(self, ctx: OrgContext, data: dict[str, Any]) -> dict[str, Any]:
        require_permission(ctx, "INVENTORY", "create")
        if not (data.get("sku") or "").strip() or not (data.get("name") or "").strip():
            raise ValidationError("SKU y nombre son obligatorios")
        assert_org_reference(self.db, "inventory_categories", data.get("category_id"), ctx, "Categoría no encontrada")
        try:
            item = self.db.fetch_one(
                """
                INSERT INTO inventory_items (
                    org_id, category_id, sku, name, unit, min_stock_qty, reorder_qty
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    ctx.org_id,
                    data.get("category_id"),
                    data["sku"].strip(),
                    data["name"].strip(),
                    data.get("unit") or "un",
                    to_num(data.get("min_stock_qty")),
                    to_num(data.get("reorder_qty")),
                ),
            )
        except psycopg.errors.UniqueViolation as e:
            raise ConflictError(f"El SKU {data['sku']} ya existe") from e
        log.info("inventory_item_created", item_id=str(item["id"]), sku=item["sku"])
        return item

    def update_item(self, ctx: OrgContext, item_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        require_permission(ctx, "INVENTORY", "edit")
        changes = {k: v for k, v in changes.items() if k in ITEM_FIELDS}
        assert_org_reference(self.db, "inventory_categories", changes.get("category_id"), ctx, "Categoría no encontrada")
        if not changes:
            return self.get_item(ctx, item_id)
        assignments = ", ".join(f"{name} = %s" for name in changes)
        try:
            item = self.db.fetch_one(
                f"UPDATE inventory_items SET {assignments} WHERE id = %s AND org_id = %s RETURNING *",
                (*changes.values(), item_id, ctx.org_id),
            )
        except psycopg.errors.UniqueViolation as e:
            raise ConflictError("El SKU ya existe") from e
        if not item:
            raise NotFoundError("Ítem no encontrado")
        return item

    def deactivate_item(self, ctx: OrgContext, item_id: str) -> None:
        require_permission(ctx, "INVENTORY", "delete")
        if not self.db.execute(
            "UPDATE inventory_items SET active = FALSE WHERE id = %s AND org_id = %s",
            (item_id, ctx.org_id),
        ):
            raise NotFoundError("Ítem no encontrado")

    # Locations

    def list_locations(self, ctx: OrgContext) -> list[dict[str, Any]]:
        require_permission(ctx, "INVENTORY", "view")
        return self.db.fetch_all(
            """
            SELECT l.*, p.name AS project_name
            FROM inventory_locations l LEFT JOIN projects p ON p.id = l.project_id
            WHERE l.org_id = %s AND l.active = TRUE
            ORDER BY l.type, l.name
            """,
            (ctx.org_id,),
        )

    def create_location(
        self,
        ctx: OrgContext,
        name: str,
        location_type: LocationType,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        require_permission(ctx, "INVENTORY", "create")
        if not (name or "").strip():
            raise ValidationError("El nombre es obligatorio")
        location_type = LocationType(location_type)
        if location_type == LocationType.PROJECT_SITE and not project_id:
            raise ValidationError("Una ubicación de obra requiere proyecto")
        assert_org_reference(self.db, "projects", project_id, ctx, "Proyecto no encontrado")
        return self.db.fetch_one(
            """
            INSERT INTO inventory_locations (org_id, project_id, name, type)
            VALUES (%s, %s, %s, %s)
            RETURNING *
            """,
            (ctx.org_id, project_id, name.strip(), location_type.value),
        )

    def update_location(self, ctx: OrgContext, location_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        require_permission(ctx, "INVENTORY", "edit")
        changes = {k: v for k, v in changes.items() if k in LOCATION_FIELDS}
        assert_org_reference(self.db, "projects", changes.get("project_id"), ctx, "Proyecto no encontrado")
        if "type" in changes:
            changes["type"] = LocationType(changes["type"]).value
        if not changes:
            raise ValidationError("No hay cambios")
        assignments = ", ".join(f"{name} = %s" for name in changes)
        location = self.db.fetch_one(
            f"UPDATE inventory_locations SET {assignments} WHERE id = %s AND org_id = %s RETURNING *",
            (*changes.values(), location_id, ctx.org_id),
        )
        if not location:
            raise NotFoundError("Ubicación no encontrada")
        return location

    # Movements

    def stock_at(self, item_id: str, location_id: str, conn=None) -> float:
        row = self.db.fetch_one(
            """
            SELECT
                COALESCE(SUM(quantity) FILTER (WHERE to_location_id = %(loc)s), 0)
              - COALESCE(SUM(quantity) FILTER (WHERE from_location_id = %(loc)s), 0) AS stock
            FROM inventory_movements
            WHERE item_id = %(item)s
            """,
            {"loc": location_id, "item": item_id},
            conn=conn,
        )
        return to_num(row["stock"]) if row else 0.0

    def record_movement(self, ctx: OrgContext, data: dict[str, Any]) -> dict[str, Any]:
        """Validate locations and available stock, then store the movement."""
        require_permission(ctx, "INVENTORY", "create")
        movement_type = MovementType(data["movement_type"])
        from_location = data.get("from_location_id")
        to_location = data.get("to_location_id")
        quantity = to_num(data.get("quantity"))
        unit_cost = to_num(data.get("unit_cost"))
        if quantity <= 0:
            raise ValidationError("La cantidad debe ser mayor a 0")
        if unit_cost < 0:
            raise ValidationError("El costo unitario no puede ser negativo")
        validate_movement_locations(movement_type, from_location, to_location)

        with self.db.transaction() as conn:
            # serializes movements per item
            item = self.db.fetch_one(
                "SELECT id, name FROM inventory_items WHERE id = %s AND org_id = %s FOR UPDATE",
                (data["item_id"], ctx.org_id),
                conn=conn,
            )
            if not item:
                raise NotFoundError("Ítem no encontrado")

            location_ids = [l for l in (from_location, to_location) if l]
            found = self.db.fetch_all(
                "SELECT id FROM inventory_locations WHERE org_id = %s AND id = ANY(%s::uuid[])",
                (ctx.org_id, location_ids),
                conn=conn,
            )
            if len(found) != len(set(map(str, location_ids))):
                raise NotFoundError("Ubicación no encontrada")
            assert_org_reference(self.db, "projects", data.get("project_id"), ctx, "Proyecto no encontrado", conn=conn)
            assert_org_reference(self.db, "parties", data.get("party_id"), ctx, "Contraparte no encontrada", conn=conn)

            if from_location:
                available = self.stock_at(data["item_id"], from_location, conn=conn)
                if quantity > available:
                    raise ValidationError(
                        f"Stock insuficiente en la ubicación de origen (disponible: {available:g})"
                    )

            movement = self.db.fetch_one(
                """
                INSERT INTO inventory_movements (
                    org_id, item_id, movement_type, from_location_id, to_location_id,
                    project_id, party_id, quantity, unit_cost, total_cost,
                    movement_date, notes, created_by
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    ctx.org_id,
                    data["item_id"],
                    movement_type.value,
                    from_location,
                    to_location,
                    data.get("project_id"),
                    data.get("party_id"),
                    quantity,
                    unit_cost,
                    round_money(quantity * unit_cost),
                    data.get("movement_date") or date.today(),
                    data.get("notes"),
                    ctx.user_id,
                ),
                conn=conn,
            )
        log.info(
            "inventory_movement_recorded",
            movement_id=str(movement["id"]),
            movement_type=movement_type.value,
            quantity=quantity,
        )
        return movement

    def list_movements(
        self,
        ctx: OrgContext,
        movement_types: list[str] | None = None,
        item_id: str | None = None,
        location_id: str | None = None,
        project_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[dict[str, Any]]:
        require_permission(ctx, "INVENTORY", "view")
        sql = """
            SELECT m.*, i.name AS item_name, i.sku, i.unit,
                   fl.name AS from_location_name, tl.name AS to_location_name
            FROM inventory_movements m
            JOIN inventory_items i ON i.id = m.item_id
            LEFT JOIN inventory_locations fl ON fl.id = m.from_location_id
            LEFT JOIN inventory_locations tl ON tl.id = m.to_location_id
            WHERE m.org_id = %s
        """
        params: list[Any] = [ctx.org_id]
        if movement_types:
            sql += " AND m.movement_type = ANY(%s)"
            params.append([MovementType(t).value for t in movement_types])
        if item_id:
            sql += " AND m.item_id = %s"
            params.append(item_id)
        if location_id:
            sql += " AND (m.from_location_id = %s OR m.to_location_id = %s)"
            params.extend([location_id, location_id])
        if project_id:
            sql += " AND m.project_id = %s"
            params.append(project_id)
        if date_from:
            sql += " AND m.movement_date >= %s"
            params.append(date_from)
        if date_to:
            sql += " AND m.movement_date <= %s"
            params.append(date_to)
        return self.db.fetch_all(sql + " ORDER BY m.movement_date DESC, m.created_at DESC", tuple(params))

    # Stock

    def get_stock_levels(self, ctx: OrgContext, item_id: str | None = None) -> list[dict[str, Any]]:
        require_permission(ctx, "INVENTORY", "view")
        sql = """
            SELECT s.item_id, i.sku, i.name AS item_name, i.unit,
                   s.location_id, l.name AS location_name, SUM(s.qty) AS quantity
            FROM (
                SELECT item_id, to_location_id AS location_id, quantity AS qty
                FROM inventory_movements WHERE org_id = %(org)s AND to_location_id IS NOT NULL
                UNION ALL
                SELECT item_id, from_location_id, -quantity
                FROM inventory_movements WHERE org_id = %(org)s AND from_location_id IS NOT NULL
            ) s
            JOIN inventory_items i ON i.id = s.item_id
            JOIN inventory_locations l ON l.id = s.location_id
        """
        params: dict[str, Any] = {"org": ctx.org_id}
        if item_id:
            sql += " WHERE s.item_id = %(item)s"
            params["item"] = item_id
        sql += """
            GROUP BY s.item_id, i.sku, i.name, i.unit, s.location_id, l.name
            ORDER BY i.name, l.name
        """
        rows = self.db.fetch_all(sql, params)
        for row in rows:
            row["quantity"] = to_num(row["quantity"])
        return rows

    def _item_totals_sql(self) -> str:
        return """
            SELECT i.id, i.sku, i.name, i.unit, i.min_stock_qty, i.reorder_qty,
                   COALESCE(SUM(
                       CASE WHEN m.to_location_id IS NOT NULL THEN m.quantity ELSE 0 END
                     - CASE WHEN m.from_location_id IS NOT NULL THEN m.quantity ELSE 0 END
                   ), 0) AS total_stock,
                   COALESCE(
                       SUM(m.total_cost) FILTER (WHERE m.movement_type = 'PURCHASE')
                       / NULLIF(SUM(m.quantity) FILTER (WHERE m.movement_type = 'PURCHASE'), 0),
                   0) AS avg_unit_cost
            FROM inventory_items i
            LEFT JOIN inventory_movements m ON m.item_id = i.id
            WHERE i.org_id = %s AND i.active = TRUE
            GROUP BY i.id
        """

    def get_low_stock_items(self, ctx: OrgContext) -> list[dict[str, Any]]:
        """Items whose total stock is under their (non-zero) minimum."""
        require_permission(ctx, "INVENTORY", "view")
        rows = self.db.fetch_all(self._item_totals_sql(), (ctx.org_id,))
        low = []
        for row in rows:
            minimum = to_num(row["min_stock_qty"])
            stock = to_num(row["total_stock"])
            if minimum > 0 and stock < minimum:
                row["total_stock"] = stock
                row["shortfall"] = minimum - stock
                low.append(row)
        return sorted(low, key=lambda r: r["shortfall"], reverse=True)

    def get_inventory_kpis(self, ctx: OrgContext) -> dict[str, Any]:
        require_permission(ctx, "INVENTORY", "view")
        rows = self.db.fetch_all(self._item_totals_sql(), (ctx.org_id,))
        critical = sum(
            1
            for r in rows
            if to_num(r["min_stock_qty"]) > 0 and to_num(r["total_stock"]) < to_num(r["min_stock_qty"])
        )
        value = sum(max(to_num(r["total_stock"]), 0) * to_num(r["avg_unit_cost"]) for r in rows)
        month_start = date.today().replace(day=1)
        movements = self.db.fetch_one(
            "SELECT COUNT(*) AS count FROM inventory_movements WHERE org_id = %s AND movement_date >= %s",
            (ctx.org_id, month_start),
        )
        return {
            "activeItems": len(rows),
            "criticalStock": critical,
            "totalValue": round_money(value),
            "movementsThisMonth": int(movements["count"]) if movements else 0,
        }
