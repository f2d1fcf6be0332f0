"""
Budget import from official spreadsheets.

A preview parses the workbook without writing anything; the import creates
the project, version V1, the WBS tree and one MATERIAL resource per leaf in
a single transaction.
"""

from typing import Any

from obra_erp.config import settings
from obra_erp.core.database import Database
from obra_erp.core.errors import ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import OrgContext, ResourceType
from obra_erp.core.numbers import round_money
from obra_erp.core.permissions import require_permission
from obra_erp.core.validators import ProjectCreate
from obra_erp.importers.excel_parser import ExcelParser, ImportPreview
from obra_erp.services.projects import insert_project

log = get_logger(__name__)


class ImportService:
    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    def preview(self, ctx: OrgContext, file_bytes: bytes, filename: str) -> ImportPreview:
        require_permission(ctx, "PROJECTS", "create")
        return ExcelParser().preview(file_bytes, filename)

    def import_budget_from_excel(
        self,
        ctx: OrgContext,
        file_bytes: bytes,
        filename: str,
        project: ProjectCreate | None = None,
    ) -> dict[str, Any]:
        """
        Create a project with budget version V1 from a spreadsheet.

        Returns:
            Dict with project_id, version_id, items_created and warnings
        """
        require_permission(ctx, "PROJECTS", "create")
        require_permission(ctx, "BUDGET", "create")

        parser = ExcelParser()
        preview = parser.preview(file_bytes, filename)
        if preview.total_items == 0:
            raise ValidationError("El archivo no contiene ítems de presupuesto válidos")

        project_data = project or ProjectCreate(name=preview.project_name)

        with self.db.transaction() as conn:
            created = insert_project(self.db, conn, ctx, project_data)
            project_id = str(created["id"])

            version = self.db.fetch_one(
                """
                INSERT INTO budget_versions (
                    org_id, project_id, version_code, status, markup_mode,
                    global_overhead_pct, global_financial_pct, global_profit_pct, global_tax_pct
                )
                VALUES (%s, %s, 'V1', 'DRAFT', 'GLOBAL', %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    ctx.org_id,
                    project_id,
                    settings.default_overhead_pct,
                    settings.default_financial_pct,
                    settings.default_profit_pct,
                    settings.default_tax_pct,
                ),
                conn=conn,
            )
            version_id = str(version["id"])

            node_ids: dict[str, str] = {}
            items_created = 0
            for sort_order, item in enumerate(i for root in preview.root_items for i in root.walk()):
                node = self.db.fetch_one(
                    """
                    INSERT INTO wbs_nodes (org_id, project_id, parent_id, code, name, unit, sort_order)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        ctx.org_id,
                        project_id,
                        node_ids.get(item.parent_code) if item.parent_code else None,
                        item.code,
                        item.name,
                        item.unit,
                        sort_order,
                    ),
                    conn=conn,
                )
                node_ids[item.code] = str(node["id"])
                items_created += 1

                if not item.is_leaf:
                    continue

                line = self.db.fetch_one(
                    """
                    INSERT INTO budget_lines (
                        org_id, budget_version_id, wbs_node_id, description, unit,
                        quantity, direct_cost_total, sort_order
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        ctx.org_id,
                        version_id,
                        node["id"],
                        item.name,
                        item.unit,
                        item.quantity,
                        round_money(item.quantity * item.unit_price),
                        sort_order,
                    ),
                    conn=conn,
                )
                self.db.execute(
                    """
                    INSERT INTO budget_resources (
                        org_id, budget_line_id, resource_type, description, unit, quantity, unit_cost
                    )
                    VALUES (%s, %s, %s, %s, %s, 1, %s)
                    """,
                    (
                        ctx.org_id,
                        line["id"],
                        ResourceType.MATERIAL.value,
                        item.name,
                        item.unit,
                        item.unit_price,
                    ),
                    conn=conn,
                )

        log.info(
            "budget_imported",
            project_id=project_id,
            version_id=version_id,
            items=items_created,
            warnings=len(preview.warnings),
            filename=filename,
        )
        return {
            "project_id": project_id,
            "version_id": version_id,
            "items_created": items_created,
            "warnings": [w.to_dict() for w in preview.warnings],
        }
