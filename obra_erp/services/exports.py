"""
Excel downloads and the budget print view.

Each builder loads its data through the domain services (so access checks
apply), wraps it in an ExportConfig and returns (filename, bytes).
"""

import re
import time
from datetime import date, datetime
from typing import Any

from obra_erp.core.database import Database
from obra_erp.core.errors import NotFoundError, ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import (
    ORG_ROLE_LABELS,
    TRANSACTION_STATUS_LABELS,
    TRANSACTION_TYPE_LABELS,
    OrgContext,
    OrgProfile,
)
from obra_erp.core.numbers import to_num
from obra_erp.core.permissions import require_permission
from obra_erp.exporters.base import (
    ExportColumn,
    ExportConfig,
    ExportMetadata,
    ExportTotals,
    ProjectHeader,
    generated_by,
    select_columns,
)
from obra_erp.exporters.excel import export_to_excel
from obra_erp.exporters.print_html import BudgetPrintPage, build_budget_print_html
from obra_erp.services.budget import BudgetService
from obra_erp.services.finance import FinanceService, TransactionFilters
from obra_erp.services.materials import MaterialsService
from obra_erp.services.projects import ProjectService
from obra_erp.services.team import TeamService

log = get_logger(__name__)

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


def load_org_profile(db: Database, org_id: str) -> OrgProfile:
    row = db.fetch_one("SELECT * FROM organizations WHERE id = %s", (org_id,))
    if not row:
        raise NotFoundError("Organización no encontrada")
    return OrgProfile.from_row(row)


def safe_filename_part(value: Any) -> str:
    return _UNSAFE_FILENAME.sub("_", str(value or "").strip()).strip("_") or "sin_nombre"


def epoch_ms() -> int:
    return int(time.time() * 1000)


def project_header(project: dict[str, Any]) -> ProjectHeader:
    return ProjectHeader(
        name=project["name"],
        number=project["project_number"],
        client=project.get("client_name"),
        location=project.get("location"),
    )


BUDGET_COLUMNS = [
    ("code", "Código", "text", 12),
    ("description", "Descripción", "text", 40),
    ("unit", "Und", "text", 8),
    ("quantity", "Cantidad", "number", 12),
    ("unitPrice", "P.Unit", "currency", 15),
    ("totalCost", "Total", "currency", 18),
    ("salePrice", "Precio venta", "currency", 18),
    ("incidenciaPct", "Inc %", "percentage", 10),
]

MATERIAL_COLUMNS = [
    ("name", "Material", "text", 30),
    ("description", "Descripción", "text", 40),
    ("unit", "Unidad", "text", 10),
    ("totalQuantity", "Cantidad Total", "number", 15),
    ("averageUnitCost", "Costo Unit. Promedio", "currency", 18),
    ("totalCost", "Costo Total", "currency", 18),
]

SUPPLIER_MATERIAL_COLUMNS = [
    ("name", "Material", "text", 30),
    ("unit", "Unidad", "text", 10),
    ("quantity", "Cantidad", "number", 15),
    ("unitCost", "Costo Unit.", "currency", 15),
    ("totalCost", "Costo Total", "currency", 18),
]

PURCHASE_ORDER_COLUMNS = [
    ("wbs_code", "Partida", "text", 12),
    ("description", "Descripción", "text", 40),
    ("unit", "Unidad", "text", 10),
    ("quantity", "Cantidad", "number", 12),
    ("unit_price", "Precio Unit.", "currency", 15),
    ("line_total", "Total", "currency", 18),
]

PROJECT_COLUMNS = [
    ("project_number", "Número", "text", 15),
    ("name", "Nombre", "text", 35),
    ("client_name", "Cliente", "text", 25),
    ("location", "Ubicación", "text", 25),
    ("status", "Estado", "text", 12),
    ("phase", "Fase", "text", 15),
    ("start_date", "Inicio", "date", 12),
    ("planned_end_date", "Fin previsto", "date", 12),
]

TEAM_COLUMNS = [
    ("full_name", "Nombre", "text", 30),
    ("email", "Email", "text", 30),
    ("role_label", "Rol", "text", 18),
    ("status_label", "Estado", "text", 12),
    ("created_at", "Alta", "date", 12),
]

TRANSACTION_COLUMNS = [
    ("transaction_number", "Número", "text", 16),
    ("issue_date", "Fecha", "date", 12),
    ("type_label", "Tipo", "text", 14),
    ("status_label", "Estado", "text", 12),
    ("project_name", "Proyecto", "text", 25),
    ("party_name", "Contraparte", "text", 25),
    ("description", "Descripción", "text", 35),
    ("total", "Total", "currency", 16),
    ("amount_base_currency", "Total moneda base", "currency", 18),
]

CASHFLOW_COLUMNS = [
    ("month", "Mes", "text", 10),
    ("income", "Ingresos", "currency", 16),
    ("expense", "Egresos", "currency", 16),
    ("overhead", "Gastos generales", "currency", 16),
    ("net", "Neto", "currency", 16),
    ("balance", "Saldo acumulado", "currency", 18),
]

OVERHEAD_COLUMNS = [
    ("transaction_number", "Número", "text", 16),
    ("issue_date", "Fecha", "date", 12),
    ("description", "Descripción", "text", 35),
    ("amount_base_currency", "Total", "currency", 16),
    ("total_allocated_pct", "Asignado %", "percentage", 12),
    ("remaining_amount", "Sin asignar", "currency", 16),
]


def columns_from(definitions: list[tuple[str, str, str, int]], selected: list[str] | None = None) -> list[ExportColumn]:
    columns = [ExportColumn(field=f, label=label, type=kind, width=width) for f, label, kind, width in definitions]
    return select_columns(columns, selected)


def transaction_rows(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            **row,
            "type_label": TRANSACTION_TYPE_LABELS.get(row["type"], row["type"]),
            "status_label": TRANSACTION_STATUS_LABELS.get(row["status"], row["status"]),
        }
        for row in rows
    ]


def filter_lines(filters: TransactionFilters | None) -> list[str]:
    if filters is None:
        return []
    lines = []
    if filters.type:
        lines.append(f"Tipo: {TRANSACTION_TYPE_LABELS.get(filters.type, filters.type)}")
    if filters.status:
        lines.append(f"Estado: {TRANSACTION_STATUS_LABELS.get(filters.status, filters.status)}")
    if filters.date_from or filters.date_to:
        lines.append(f"Período: {filters.date_from or '—'} a {filters.date_to or '—'}")
    if filters.search:
        lines.append(f"Búsqueda: {filters.search}")
    return lines


class ExportService:
    def __init__(self, db: Database | None = None):
        self.db = db or Database()
        self.budget = BudgetService(self.db)
        self.materials = MaterialsService(self.db)
        self.finance = FinanceService(self.db)
        self.projects = ProjectService(self.db)
        self.team = TeamService(self.db)

    def _metadata(self, org: OrgProfile, version: str | None = None, filters: list[str] | None = None) -> ExportMetadata:
        return ExportMetadata(
            version=version,
            date=datetime.now(),
            generated_by=generated_by(org),
            filters=filters or [],
        )

    def _render(self, config: ExportConfig, filename: str) -> tuple[str, bytes]:
        content = export_to_excel(config)
        log.info("excel_export_generated", filename=filename, rows=len(config.data), size=len(content))
        return filename, content

    # Budget and materials

    def budget_excel(self, ctx: OrgContext, version_id: str, columns: list[str] | None = None) -> tuple[str, bytes]:
        data = self.budget.get_budget_export_data(ctx, version_id)
        project, version = data["project"], data["version"]
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="PRESUPUESTO OFICIAL",
            subtitle=f"{project['name']} - {version['version_code']}",
            org=org,
            project=project_header(project),
            metadata=self._metadata(org, version["version_code"]),
            columns=columns_from(BUDGET_COLUMNS, columns),
            data=data["rows"],
            totals=ExportTotals(
                label="TOTAL PRESUPUESTO",
                fields=["totalCost", "salePrice"],
                values={"totalCost": data["totals"]["direct"], "salePrice": data["totals"]["sale"]},
            ),
            sheet_name="Presupuesto",
        )
        filename = f"presupuesto_{project['project_number']}_{version['version_code']}_{epoch_ms()}.xlsx"
        return self._render(config, filename)

    def materials_excel(self, ctx: OrgContext, version_id: str, columns: list[str] | None = None) -> tuple[str, bytes]:
        data = self.budget.get_budget_export_data(ctx, version_id)
        project, version = data["project"], data["version"]
        materials = self.materials.get_consolidated_materials(ctx, version_id)
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="LISTADO DE MATERIALES",
            subtitle=f"Proyecto: {project['name']}",
            org=org,
            project=project_header(project),
            metadata=self._metadata(org, version["version_code"]),
            columns=columns_from(MATERIAL_COLUMNS, columns),
            data=[m.to_dict() for m in materials],
            totals=ExportTotals(label="TOTAL GENERAL", fields=["totalCost"]),
            sheet_name="Materiales",
        )
        filename = f"materiales_{project['project_number']}_{version['version_code']}_{epoch_ms()}.xlsx"
        return self._render(config, filename)

    def materials_by_supplier_excel(self, ctx: OrgContext, version_id: str, supplier: str) -> tuple[str, bytes]:
        groups = self.materials.get_materials_by_supplier(ctx, version_id)
        group = next((g for g in groups if g.supplier_name == supplier), None)
        if group is None:
            raise NotFoundError(f"Proveedor {supplier} no encontrado")
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="MATERIALES POR PROVEEDOR",
            subtitle=f"Proveedor: {group.supplier_name}",
            org=org,
            metadata=self._metadata(org),
            columns=columns_from(SUPPLIER_MATERIAL_COLUMNS),
            data=group.to_dict()["materials"],
            totals=ExportTotals(label="TOTAL", fields=["totalCost"]),
            sheet_name=group.supplier_name,
        )
        filename = f"materiales_{safe_filename_part(group.supplier_name)}_{epoch_ms()}.xlsx"
        return self._render(config, filename)

    def all_materials_by_supplier_excel(self, ctx: OrgContext, version_id: str) -> tuple[str, bytes]:
        groups = self.materials.get_materials_by_supplier(ctx, version_id)
        rows = [
            {"supplierName": g.supplier_name, "materialCount": len(g.materials), "totalCost": g.total_cost}
            for g in groups
        ]
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="TOTAL DE MATERIALES POR PROVEEDOR",
            org=org,
            metadata=self._metadata(org),
            columns=[
                ExportColumn("supplierName", "Proveedor", "text", 35),
                ExportColumn("materialCount", "Materiales", "number", 12),
                ExportColumn("totalCost", "Costo Total", "currency", 18),
            ],
            data=rows,
            totals=ExportTotals(label="TOTAL GENERAL", fields=["totalCost"]),
            sheet_name="Proveedores",
        )
        return self._render(config, f"materiales_por_proveedor_total_{epoch_ms()}.xlsx")

    def purchase_order_excel(self, ctx: OrgContext, commitment_id: str) -> tuple[str, bytes]:
        commitment = self.materials.get_commitment(ctx, commitment_id)
        org = load_org_profile(self.db, ctx.org_id)
        project = self.projects.get_project(ctx, str(commitment["project_id"]))
        config = ExportConfig(
            title=f"ORDEN DE COMPRA {commitment['commitment_number']}",
            subtitle=f"Proveedor: {commitment['party_name']}",
            org=org,
            project=project_header(project),
            metadata=self._metadata(org, filters=[f"Fecha de emisión: {commitment['issue_date']}"]),
            columns=columns_from(PURCHASE_ORDER_COLUMNS),
            data=commitment["lines"],
            totals=ExportTotals(label="TOTAL", fields=["line_total"]),
            sheet_name="Orden de compra",
        )
        number = safe_filename_part(commitment["commitment_number"])
        return self._render(config, f"orden-compra-{project['project_number']}-{number}.xlsx")

    # Organization

    def projects_excel(self, ctx: OrgContext) -> tuple[str, bytes]:
        projects = self.projects.list_projects(ctx)
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="LISTADO DE PROYECTOS",
            org=org,
            metadata=self._metadata(org),
            columns=columns_from(PROJECT_COLUMNS),
            data=projects,
            sheet_name="Proyectos",
        )
        return self._render(config, f"proyectos_{epoch_ms()}.xlsx")

    def team_excel(self, ctx: OrgContext) -> tuple[str, bytes]:
        members = [
            {
                **m,
                "role_label": ORG_ROLE_LABELS.get(m["role"], m["role"]),
                "status_label": "Activo" if m["active"] else "Inactivo",
            }
            for m in self.team.get_org_members(ctx)
        ]
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="EQUIPO",
            org=org,
            metadata=self._metadata(org),
            columns=columns_from(TEAM_COLUMNS),
            data=members,
            sheet_name="Equipo",
        )
        return self._render(config, f"equipo_{epoch_ms()}.xlsx")

    # Finance

    def company_transactions_excel(self, ctx: OrgContext, filters: TransactionFilters | None = None) -> tuple[str, bytes]:
        rows = transaction_rows(self.finance.list_company_transactions(ctx, filters))
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="TRANSACCIONES DE LA EMPRESA",
            org=org,
            metadata=self._metadata(org, filters=filter_lines(filters)),
            columns=columns_from(TRANSACTION_COLUMNS),
            data=rows,
            totals=ExportTotals(label="TOTAL", fields=["amount_base_currency"]),
            sheet_name="Transacciones",
        )
        return self._render(config, f"transacciones-empresa-{date.today().isoformat()}.xlsx")

    def project_transactions_excel(
        self,
        ctx: OrgContext,
        project_id: str,
        filters: TransactionFilters | None = None,
    ) -> tuple[str, bytes]:
        project = self.projects.get_project(ctx, project_id)
        rows = transaction_rows(self.finance.list_project_transactions(ctx, project_id, filters))
        org = load_org_profile(self.db, ctx.org_id)
        columns = [c for c in TRANSACTION_COLUMNS if c[0] != "project_name"]
        config = ExportConfig(
            title="TRANSACCIONES DEL PROYECTO",
            org=org,
            project=project_header(project),
            metadata=self._metadata(org, filters=filter_lines(filters)),
            columns=columns_from(columns),
            data=rows,
            totals=ExportTotals(label="TOTAL", fields=["amount_base_currency"]),
            sheet_name="Transacciones",
        )
        filename = f"transacciones-{project['project_number']}-{date.today().isoformat()}.xlsx"
        return self._render(config, filename)

    def company_cashflow_excel(self, ctx: OrgContext, date_from: date, date_to: date) -> tuple[str, bytes]:
        series = self.finance.get_company_cashflow(ctx, date_from, date_to)
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="FLUJO DE CAJA",
            subtitle=f"{date_from.isoformat()} a {date_to.isoformat()}",
            org=org,
            metadata=self._metadata(org),
            columns=columns_from(CASHFLOW_COLUMNS),
            data=series,
            totals=ExportTotals(label="TOTAL", fields=["income", "expense", "overhead", "net"]),
            sheet_name="Flujo de caja",
        )
        return self._render(config, f"cashflow-{date_from.isoformat()}-{date_to.isoformat()}.xlsx")

    def project_cashflow_excel(
        self,
        ctx: OrgContext,
        project_id: str,
        date_from: date,
        date_to: date,
    ) -> tuple[str, bytes]:
        project = self.projects.get_project(ctx, project_id)
        series = self.finance.get_project_cashflow(ctx, project_id, date_from, date_to)
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="FLUJO DE CAJA DEL PROYECTO",
            subtitle=f"{date_from.isoformat()} a {date_to.isoformat()}",
            org=org,
            project=project_header(project),
            metadata=self._metadata(org),
            columns=columns_from(CASHFLOW_COLUMNS),
            data=series,
            totals=ExportTotals(label="TOTAL", fields=["income", "expense", "overhead", "net"]),
            sheet_name="Flujo de caja",
        )
        return self._render(config, f"cashflow-proyecto-{date_from.isoformat()}-{date_to.isoformat()}.xlsx")

    def overhead_excel(self, ctx: OrgContext) -> tuple[str, bytes]:
        rows = self.finance.list_overhead_transactions(ctx)
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title="GASTOS GENERALES",
            org=org,
            metadata=self._metadata(org),
            columns=columns_from(OVERHEAD_COLUMNS),
            data=rows,
            totals=ExportTotals(label="TOTAL", fields=["amount_base_currency", "remaining_amount"]),
            sheet_name="Gastos generales",
        )
        return self._render(config, f"gastos-generales-{date.today().isoformat()}.xlsx")

    def generic_table_excel(
        self,
        ctx: OrgContext,
        title: str,
        columns: list[dict[str, Any]],
        data: list[dict[str, Any]],
        totals_fields: list[str] | None = None,
    ) -> tuple[str, bytes]:
        """Export an arbitrary table as shown on screen."""
        require_permission(ctx, "REPORTS", "view")
        if not columns:
            raise ValidationError("Se requiere al menos una columna")
        org = load_org_profile(self.db, ctx.org_id)
        config = ExportConfig(
            title=title.upper(),
            org=org,
            metadata=self._metadata(org),
            columns=[
                ExportColumn(
                    field=c["field"],
                    label=c.get("label") or c["field"],
                    type=c.get("type") or "text",
                    width=c.get("width"),
                    align=c.get("align"),
                )
                for c in columns
            ],
            data=data,
            totals=ExportTotals(label="TOTAL", fields=totals_fields) if totals_fields else None,
            sheet_name=title,
        )
        slug = re.sub(r"\s+", "_", title.strip().lower()) or "tabla"
        return self._render(config, f"{safe_filename_part(slug)}_{epoch_ms()}.xlsx")

    # Print view

    def budget_print_html(
        self,
        ctx: OrgContext,
        version_id: str,
        include_incidence: bool = False,
        issued_by: str | None = None,
    ) -> str:
        data = self.budget.get_budget_export_data(ctx, version_id)
        project, version = data["project"], data["version"]
        page = BudgetPrintPage(
            project_name=project["name"],
            project_number=project["project_number"],
            version_code=version["version_code"],
            rows=data["rows"],
            grand_total=to_num(data["totals"]["direct"]),
            project_info={
                "projectName": project["name"],
                "clientName": project.get("client_name"),
                "location": project.get("location"),
                "startDate": project.get("start_date"),
                "endDate": project.get("planned_end_date"),
                "surfaceM2": project.get("m2"),
            },
        )
        org = load_org_profile(self.db, ctx.org_id)
        return build_budget_print_html(org, page, issued_by=issued_by, include_incidence=include_incidence)
