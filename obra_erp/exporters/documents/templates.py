"""
PDF document templates: budget, materials, purchase order, transactions,
cashflow and purchases by supplier.
"""

from datetime import date
from typing import Any

from obra_erp.core.database import Database
from obra_erp.core.errors import ValidationError
from obra_erp.core.models import OrgContext
from obra_erp.core.permissions import require_permission
from obra_erp.exporters.base import ExportColumn, ExportConfig, ExportTotals
from obra_erp.exporters.documents.base import DocumentTemplate
from obra_erp.exporters.documents.registry import register_template
from obra_erp.exporters.formatting import get_header_meta
from obra_erp.services.auth import assert_project_access
from obra_erp.services.exports import (
    BUDGET_COLUMNS,
    CASHFLOW_COLUMNS,
    MATERIAL_COLUMNS,
    PURCHASE_ORDER_COLUMNS,
    TRANSACTION_COLUMNS,
    ExportService,
    columns_from,
    filter_lines,
    load_org_profile,
    project_header,
    transaction_rows,
)
from obra_erp.services.finance import TransactionFilters
from obra_erp.services.reports import ReportService


def _require_id(doc_id: str | None) -> str:
    if not doc_id:
        raise ValidationError("Falta el parámetro id")
    return doc_id


def _parse_date(value: Any, name: str) -> date | None:
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Fecha inválida en {name}: {value}")


class ServiceTemplate(DocumentTemplate):
    """Template backed by the export services; db is resolved per call."""

    @property
    def exports(self) -> ExportService:
        return ExportService(self.db or Database())

    def folio(self, query: dict[str, Any]) -> str | None:
        return get_header_meta(self.template_id, query).folio_line


@register_template
class BudgetTemplate(ServiceTemplate):
    template_id = "budget"

    def file_name(self, doc_id: str | None) -> str:
        return f"presupuesto-{doc_id}.pdf"

    def validate_access(self, ctx: OrgContext, doc_id: str | None) -> None:
        require_permission(ctx, "BUDGET", "view")
        self.exports.budget.get_version(ctx, _require_id(doc_id))

    def build(self, ctx: OrgContext, doc_id: str | None, query: dict[str, Any]) -> ExportConfig:
        exports = self.exports
        data = exports.budget.get_budget_export_data(ctx, _require_id(doc_id))
        project, version = data["project"], data["version"]
        org = load_org_profile(exports.db, ctx.org_id)
        return ExportConfig(
            title="PRESUPUESTO OFICIAL",
            subtitle=f"{project['name']} - {version['version_code']}",
            org=org,
            project=project_header(project),
            columns=columns_from(BUDGET_COLUMNS, query.get("columns")),
            data=data["rows"],
            totals=ExportTotals(
                label="TOTAL PRESUPUESTO",
                fields=["totalCost", "salePrice"],
                values={"totalCost": data["totals"]["direct"], "salePrice": data["totals"]["sale"]},
            ),
            orientation="landscape",
            folio_line=self.folio({**query, "id": version["version_code"]}),
        )


@register_template
class MaterialsTemplate(ServiceTemplate):
    template_id = "materials"

    def file_name(self, doc_id: str | None) -> str:
        return f"materiales-{doc_id}.pdf"

    def validate_access(self, ctx: OrgContext, doc_id: str | None) -> None:
        require_permission(ctx, "BUDGET", "view")
        self.exports.budget.get_version(ctx, _require_id(doc_id))

    def build(self, ctx: OrgContext, doc_id: str | None, query: dict[str, Any]) -> ExportConfig:
        exports = self.exports
        version = exports.budget.get_version(ctx, _require_id(doc_id))
        project = exports.projects.get_project(ctx, str(version["project_id"]))
        materials = exports.materials.get_consolidated_materials(ctx, doc_id)
        org = load_org_profile(exports.db, ctx.org_id)
        return ExportConfig(
            title="LISTADO DE MATERIALES",
            subtitle=f"Proyecto: {project['name']}",
            org=org,
            project=project_header(project),
            columns=columns_from(MATERIAL_COLUMNS, query.get("columns")),
            data=[m.to_dict() for m in materials],
            totals=ExportTotals(label="TOTAL GENERAL", fields=["totalCost"]),
            folio_line=self.folio({**query, "id": version["version_code"]}),
        )


@register_template
class PurchaseOrderTemplate(ServiceTemplate):
    template_id = "purchase-order"

    def file_name(self, doc_id: str | None) -> str:
        return f"orden-compra-{doc_id}.pdf"

    def validate_access(self, ctx: OrgContext, doc_id: str | None) -> None:
        require_permission(ctx, "FINANCE", "view")
        self.exports.materials.get_commitment(ctx, _require_id(doc_id))

    def build(self, ctx: OrgContext, doc_id: str | None, query: dict[str, Any]) -> ExportConfig:
        exports = self.exports
        commitment = exports.materials.get_commitment(ctx, _require_id(doc_id))
        project = exports.projects.get_project(ctx, str(commitment["project_id"]))
        org = load_org_profile(exports.db, ctx.org_id)
        return ExportConfig(
            title=f"ORDEN DE COMPRA {commitment['commitment_number']}",
            subtitle=f"Proveedor: {commitment['party_name']}",
            org=org,
            project=project_header(project),
            columns=columns_from(PURCHASE_ORDER_COLUMNS),
            data=commitment["lines"],
            totals=ExportTotals(label="TOTAL", fields=["line_total"]),
            folio_line=self.folio({**query, "id": commitment["commitment_number"]}),
        )


@register_template
class TransactionsTemplate(ServiceTemplate):
    template_id = "transactions"

    def file_name(self, doc_id: str | None) -> str:
        return f"transacciones-{date.today().isoformat()}.pdf"

    def validate_access(self, ctx: OrgContext, doc_id: str | None) -> None:
        require_permission(ctx, "FINANCE", "view")
        if doc_id:
            assert_project_access(self.db or Database(), doc_id, ctx)

    def build(self, ctx: OrgContext, doc_id: str | None, query: dict[str, Any]) -> ExportConfig:
        exports = self.exports
        filters = TransactionFilters(
            type=query.get("type") or None,
            status=query.get("status") or None,
            party_id=query.get("partyId") or None,
            date_from=_parse_date(query.get("dateFrom"), "dateFrom"),
            date_to=_parse_date(query.get("dateTo"), "dateTo"),
            search=query.get("search") or None,
        )
        org = load_org_profile(exports.db, ctx.org_id)
        project = None
        if doc_id:
            project = exports.projects.get_project(ctx, doc_id)
            rows = exports.finance.list_project_transactions(ctx, doc_id, filters)
        else:
            rows = exports.finance.list_company_transactions(ctx, filters)
        return ExportConfig(
            title="TRANSACCIONES",
            subtitle="; ".join(filter_lines(filters)) or None,
            org=org,
            project=project_header(project) if project else None,
            columns=columns_from(TRANSACTION_COLUMNS),
            data=transaction_rows(rows),
            totals=ExportTotals(label="TOTAL", fields=["amount_base_currency"]),
            orientation="landscape",
            folio_line=self.folio(query),
        )


@register_template
class CashflowTemplate(ServiceTemplate):
    template_id = "cashflow"

    def file_name(self, doc_id: str | None) -> str:
        return f"flujo-de-caja-{date.today().isoformat()}.pdf"

    def validate_access(self, ctx: OrgContext, doc_id: str | None) -> None:
        require_permission(ctx, "FINANCE", "view")
        if doc_id:
            assert_project_access(self.db or Database(), doc_id, ctx)

    def build(self, ctx: OrgContext, doc_id: str | None, query: dict[str, Any]) -> ExportConfig:
        exports = self.exports
        date_from = _parse_date(query.get("from"), "from")
        date_to = _parse_date(query.get("to"), "to")
        if not date_from or not date_to:
            raise ValidationError("Se requieren las fechas from y to")
        org = load_org_profile(exports.db, ctx.org_id)
        project = None
        if doc_id:
            project = exports.projects.get_project(ctx, doc_id)
            series = exports.finance.get_project_cashflow(ctx, doc_id, date_from, date_to)
        else:
            series = exports.finance.get_company_cashflow(ctx, date_from, date_to)
        return ExportConfig(
            title="FLUJO DE CAJA",
            org=org,
            project=project_header(project) if project else None,
            columns=columns_from(CASHFLOW_COLUMNS),
            data=series,
            totals=ExportTotals(label="TOTAL", fields=["income", "expense", "overhead", "net"]),
            folio_line=self.folio(query),
        )


@register_template
class PurchasesBySupplierTemplate(ServiceTemplate):
    template_id = "purchases-by-supplier"

    def file_name(self, doc_id: str | None) -> str:
        return f"compras-por-proveedor-{date.today().isoformat()}.pdf"

    def validate_access(self, ctx: OrgContext, doc_id: str | None) -> None:
        require_permission(ctx, "REPORTS", "view")

    def build(self, ctx: OrgContext, doc_id: str | None, query: dict[str, Any]) -> ExportConfig:
        db = self.db or Database()
        rows = ReportService(db).purchases_by_supplier(
            ctx,
            date_from=_parse_date(query.get("dateFrom"), "dateFrom"),
            date_to=_parse_date(query.get("dateTo"), "dateTo"),
            party_id=query.get("partyId") or None,
        )
        party_name = rows[0]["supplierName"] if query.get("partyId") and rows else query.get("partyId")
        return ExportConfig(
            title="COMPRAS POR PROVEEDOR",
            org=load_org_profile(db, ctx.org_id),
            columns=[
                ExportColumn("supplierName", "Proveedor", "text", 35),
                ExportColumn("orderCount", "Órdenes", "number", 10),
                ExportColumn("total", "Total", "currency", 18),
            ],
            data=rows,
            totals=ExportTotals(label="TOTAL", fields=["total"]),
            folio_line=self.folio({**query, "partyId": party_name}),
        )
