"""
Downloads: Excel workbooks, PDF documents and the printable budget view.

GET /exports/...            — .xlsx attachments
GET /pdf/{template}?id=...  — PDF rendered from a registered document template
GET /print/budget/{id}      — standalone HTML page for browser printing
"""

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from obra_erp.core.database import Database
from obra_erp.core.errors import NotFoundError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import OrgContext, User
from obra_erp.exporters.documents import get_template
from obra_erp.exporters.pdf import render_pdf
from obra_erp.routers.deps import get_current_user, get_db, get_org_context
from obra_erp.routers.finance import transaction_filters
from obra_erp.services.exports import ExportService
from obra_erp.services.finance import TransactionFilters

log = get_logger(__name__)
router = APIRouter(tags=["exports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class GenericTableRequest(BaseModel):
    title: str
    columns: list[dict[str, Any]]
    data: list[dict[str, Any]]
    totals_fields: list[str] | None = None


def _split_columns(columns: str | None) -> list[str] | None:
    if not columns:
        return None
    return [c.strip() for c in columns.split(",") if c.strip()]


def _attachment(filename: str, content: bytes, media_type: str = XLSX_MEDIA_TYPE) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Excel

@router.get("/exports/budget/{version_id}")
def export_budget(
    version_id: str,
    columns: str | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return _attachment(*ExportService(db).budget_excel(ctx, version_id, _split_columns(columns)))


@router.get("/exports/materials/{version_id}")
def export_materials(
    version_id: str,
    columns: str | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return _attachment(*ExportService(db).materials_excel(ctx, version_id, _split_columns(columns)))


@router.get("/exports/materials/{version_id}/by-supplier")
def export_materials_by_supplier(
    version_id: str,
    supplier: str | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    exports = ExportService(db)
    if supplier:
        return _attachment(*exports.materials_by_supplier_excel(ctx, version_id, supplier))
    return _attachment(*exports.all_materials_by_supplier_excel(ctx, version_id))


@router.get("/exports/purchase-orders/{commitment_id}")
def export_purchase_order(
    commitment_id: str,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return _attachment(*ExportService(db).purchase_order_excel(ctx, commitment_id))


@router.get("/exports/projects")
def export_projects(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return _attachment(*ExportService(db).projects_excel(ctx))


@router.get("/exports/team")
def export_team(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return _attachment(*ExportService(db).team_excel(ctx))


@router.get("/exports/transactions")
def export_company_transactions(
    filters: TransactionFilters = Depends(transaction_filters),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return _attachment(*ExportService(db).company_transactions_excel(ctx, filters))


@router.get("/exports/projects/{project_id}/transactions")
def export_project_transactions(
    project_id: str,
    filters: TransactionFilters = Depends(transaction_filters),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return _attachment(*ExportService(db).project_transactions_excel(ctx, project_id, filters))


@router.get("/exports/cashflow")
def export_company_cashflow(
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return _attachment(*ExportService(db).company_cashflow_excel(ctx, date_from, date_to))


@router.get("/exports/projects/{project_id}/cashflow")
def export_project_cashflow(
    project_id: str,
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return _attachment(*ExportService(db).project_cashflow_excel(ctx, project_id, date_from, date_to))


@router.get("/exports/overhead")
def export_overhead(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return _attachment(*ExportService(db).overhead_excel(ctx))


@router.post("/exports/table")
def export_generic_table(
    request: GenericTableRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return _attachment(
        *ExportService(db).generic_table_excel(
            ctx, request.title, request.columns, request.data, request.totals_fields
        )
    )


# PDF and print

@router.get("/pdf/{template_id}")
def export_pdf(
    template_id: str,
    request: Request,
    id: str | None = None,
    user: User = Depends(get_current_user),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    registered = get_template(template_id)
    if registered is None:
        raise NotFoundError(f"Plantilla desconocida: {template_id}")
    template = registered.for_db(db)

    query: dict[str, Any] = dict(request.query_params)
    query["columns"] = _split_columns(query.get("columns"))

    template.validate_access(ctx, id)
    config = template.build(ctx, id, query)
    content = render_pdf(config, issued_by=user.full_name or user.email)
    log.info("pdf_rendered", template=template_id, doc_id=id, size=len(content))
    return _attachment(template.file_name(id), content, media_type="application/pdf")


@router.get("/print/budget/{version_id}", response_class=HTMLResponse)
def print_budget(
    version_id: str,
    include_incidence: bool = False,
    user: User = Depends(get_current_user),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    html = ExportService(db).budget_print_html(
        ctx, version_id, include_incidence=include_incidence, issued_by=user.full_name or user.email
    )
    return HTMLResponse(html)
