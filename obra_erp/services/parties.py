"""
Suppliers and clients.

Organizations keep their own party records and can also link suppliers
from the shared global directory. Linking creates a local party row that
points back to the global entry so transactions always reference parties.
"""

from typing import Any

from obra_erp.core.database import Database
from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import OrgContext, OrgRole, PartyType
from obra_erp.core.numbers import round_money, to_num
from obra_erp.core.permissions import require_permission, require_role
from obra_erp.services.outbox import publish_outbox_event

log = get_logger(__name__)

PARTY_FIELDS = (
    "name",
    "tax_id",
    "email",
    "phone",
    "address",
    "city",
    "country",
    "contact_name",
    "notes",
    "active",
)
LINK_FIELDS = (
    "local_alias",
    "local_contact_name",
    "local_contact_email",
    "local_contact_phone",
    "preferred",
    "status",
    "payment_terms",
    "discount_pct",
    "notes",
)


class PartyService:
    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    def _create_local(self, ctx: OrgContext, party_type: PartyType, data: dict[str, Any]) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.EDITOR)
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("El nombre es obligatorio")
        fields = {k: data.get(k) for k in PARTY_FIELDS if k not in ("name", "active")}
        with self.db.transaction() as conn:
            party = self.db.fetch_one(
                f"""
                INSERT INTO parties (org_id, party_type, name, {", ".join(fields)})
                VALUES (%s, %s, %s, {", ".join(["%s"] * len(fields))})
                RETURNING *
                """,
                (ctx.org_id, party_type.value, name, *fields.values()),
                conn=conn,
            )
            publish_outbox_event(
                self.db,
                conn,
                ctx.org_id,
                "PARTY.CREATED",
                "Party",
                party["id"],
                {"partyType": party_type.value, "name": name},
            )
        log.info("party_created", party_id=str(party["id"]), party_type=party_type.value)
        return party

    def create_local_supplier(self, ctx: OrgContext, data: dict[str, Any]) -> dict[str, Any]:
        return self._create_local(ctx, PartyType.SUPPLIER, data)

    def create_local_client(self, ctx: OrgContext, data: dict[str, Any]) -> dict[str, Any]:
        return self._create_local(ctx, PartyType.CLIENT, data)

    def update_local_party(self, ctx: OrgContext, party_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        require_permission(ctx, "SUPPLIERS", "edit")
        changes = {k: v for k, v in changes.items() if k in PARTY_FIELDS}
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("El nombre es obligatorio")
        if not changes:
            raise ValidationError("No hay cambios")
        assignments = ", ".join(f"{name} = %s" for name in changes)
        party = self.db.fetch_one(
            f"UPDATE parties SET {assignments} WHERE id = %s AND org_id = %s RETURNING *",
            (*changes.values(), party_id, ctx.org_id),
        )
        if not party:
            raise NotFoundError("Contraparte no encontrada")
        log.info("party_updated", party_id=party_id, fields=list(changes))
        return party

    def list_parties(
        self,
        ctx: OrgContext,
        party_type: PartyType | None = None,
        search: str | None = None,
    ) -> list[dict[str, Any]]:
        sql = "SELECT * FROM parties WHERE org_id = %s AND active = TRUE"
        params: list[Any] = [ctx.org_id]
        if party_type:
            sql += " AND party_type = %s"
            params.append(PartyType(party_type).value)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            sql += " AND (name ILIKE %s OR tax_id ILIKE %s OR email ILIKE %s)"
            params.extend([pattern, pattern, pattern])
        return self.db.fetch_all(sql + " ORDER BY name", tuple(params))

    # Global directory

    def search_global_suppliers(
        self,
        query: str | None = None,
        category: str | None = None,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        sql = "SELECT * FROM global_parties WHERE TRUE"
        params: list[Any] = []
        if query and query.strip():
            pattern = f"%{query.strip()}%"
            sql += " AND (name ILIKE %s OR tax_id ILIKE %s)"
            params.extend([pattern, pattern])
        if category:
            sql += " AND category = %s"
            params.append(category)
        sql += " ORDER BY org_count DESC, name LIMIT %s"
        params.append(max(1, min(limit, 100)))
        return self.db.fetch_all(sql, tuple(params))

    def link_global_supplier(
        self,
        ctx: OrgContext,
        global_party_id: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.EDITOR)
        data = {k: v for k, v in (data or {}).items() if k in LINK_FIELDS}
        with self.db.transaction() as conn:
            global_party = self.db.fetch_one(
                "SELECT * FROM global_parties WHERE id = %s", (global_party_id,), conn=conn
            )
            if not global_party:
                raise NotFoundError("Proveedor no encontrado en el directorio")
            existing = self.db.fetch_one(
                "SELECT id FROM org_party_links WHERE org_id = %s AND global_party_id = %s",
                (ctx.org_id, global_party_id),
                conn=conn,
            )
            if existing:
                raise ConflictError("El proveedor ya está vinculado")

            party = self.db.fetch_one(
                """
                INSERT INTO parties (org_id, party_type, name, tax_id, email, phone, global_party_id)
                VALUES (%s, 'SUPPLIER', %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    ctx.org_id,
                    data.get("local_alias") or global_party["name"],
                    global_party["tax_id"],
                    global_party["email"],
                    global_party["phone"],
                    global_party_id,
                ),
                conn=conn,
            )
            columns = ["org_id", "global_party_id", "party_id", "created_by", *data]
            link = self.db.fetch_one(
                f"""
                INSERT INTO org_party_links ({", ".join(columns)})
                VALUES ({", ".join(["%s"] * len(columns))})
                RETURNING *
                """,
                (ctx.org_id, global_party_id, party["id"], ctx.user_id, *data.values()),
                conn=conn,
            )
            self.db.execute(
                "UPDATE global_parties SET org_count = org_count + 1 WHERE id = %s",
                (global_party_id,),
                conn=conn,
            )
            publish_outbox_event(
                self.db, conn, ctx.org_id, "PARTY.LINKED", "OrgPartyLink", link["id"],
                {"globalPartyId": str(global_party_id)},
            )
        log.info("global_supplier_linked", global_party_id=str(global_party_id))
        return link

    def unlink_global_supplier(self, ctx: OrgContext, global_party_id: str) -> None:
        require_role(ctx.role, OrgRole.ADMIN)
        with self.db.transaction() as conn:
            link = self.db.fetch_one(
                "SELECT id, party_id FROM org_party_links WHERE org_id = %s AND global_party_id = %s",
                (ctx.org_id, global_party_id),
                conn=conn,
            )
            if not link:
                raise NotFoundError("El proveedor no está vinculado")
            self.db.execute("DELETE FROM org_party_links WHERE id = %s", (link["id"],), conn=conn)
            if link["party_id"]:
                self.db.execute(
                    "UPDATE parties SET active = FALSE WHERE id = %s", (link["party_id"],), conn=conn
                )
            self.db.execute(
                "UPDATE global_parties SET org_count = GREATEST(org_count - 1, 0) WHERE id = %s",
                (global_party_id,),
                conn=conn,
            )
            publish_outbox_event(
                self.db, conn, ctx.org_id, "PARTY.UNLINKED", "OrgPartyLink", link["id"],
                {"globalPartyId": str(global_party_id)},
            )
        log.info("global_supplier_unlinked", global_party_id=str(global_party_id))

    def update_supplier_link(self, ctx: OrgContext, link_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        require_permission(ctx, "SUPPLIERS", "edit")
        changes = {k: v for k, v in changes.items() if k in LINK_FIELDS}
        if "status" in changes and changes["status"] not in ("ACTIVE", "INACTIVE"):
            raise ValidationError("Estado inválido")
        if changes.get("discount_pct") is not None and not 0 <= to_num(changes["discount_pct"]) <= 100:
            raise ValidationError("El descuento debe estar entre 0 y 100")
        if not changes:
            raise ValidationError("No hay cambios")
        assignments = ", ".join(f"{name} = %s" for name in changes)
        link = self.db.fetch_one(
            f"UPDATE org_party_links SET {assignments} WHERE id = %s AND org_id = %s RETURNING *",
            (*changes.values(), link_id, ctx.org_id),
        )
        if not link:
            raise NotFoundError("Vínculo no encontrado")
        return link

    def get_party_detail_with_kpis(self, ctx: OrgContext, party_id: str) -> dict[str, Any]:
        party = self.db.fetch_one(
            "SELECT * FROM parties WHERE id = %s AND org_id = %s", (party_id, ctx.org_id)
        )
        if not party:
            raise NotFoundError("Contraparte no encontrada")
        kpis = self.db.fetch_one(
            """
            SELECT
                COALESCE(SUM(amount_base_currency) FILTER (WHERE type IN ('EXPENSE', 'PURCHASE')), 0) AS total_purchased,
                COALESCE(SUM(amount_base_currency) FILTER (WHERE type IN ('INCOME', 'SALE')), 0) AS total_sold,
                COUNT(*) AS transaction_count,
                COUNT(DISTINCT project_id) AS project_count,
                MAX(issue_date) AS last_transaction_date
            FROM finance_transactions
            WHERE org_id = %s AND party_id = %s AND deleted = FALSE AND status <> 'VOIDED'
            """,
            (ctx.org_id, party_id),
        )
        commitments = self.db.fetch_one(
            """
            SELECT COALESCE(SUM(total), 0) AS open_total FROM commitments
            WHERE org_id = %s AND party_id = %s AND deleted = FALSE
              AND status IN ('DRAFT', 'APPROVED')
            """,
            (ctx.org_id, party_id),
        )
        return {
            "party": party,
            "kpis": {
                "totalPurchased": round_money(to_num(kpis["total_purchased"])),
                "totalSold": round_money(to_num(kpis["total_sold"])),
                "transactionCount": int(kpis["transaction_count"]),
                "projectCount": int(kpis["project_count"]),
                "lastTransactionDate": kpis["last_transaction_date"],
                "openCommitmentsTotal": round_money(to_num(commitments["open_total"])),
            },
        }
