"""
Company reports and progress updates.
"""

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from obra_erp.core.database import Database
from obra_erp.core.models import OrgContext
from obra_erp.core.permissions import require_permission
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.reports import ReportService

router = APIRouter(tags=["reports"])


class ProgressRequest(BaseModel):
    wbs_node_id: str | None = None
    progress_pct: float
    as_of_date: date | None = None


def reports_context(ctx: OrgContext = Depends(get_org_context)) -> OrgContext:
    require_permission(ctx, "REPORTS", "view")
    return ctx


@router.get("/reports/expenses-by-supplier")
def expenses_by_supplier(
    supplier_id: str | None = None,
    ctx: OrgContext = Depends(reports_context),
    db: Database = Depends(get_db),
):
    return ReportService(db).expenses_by_supplier(ctx, supplier_id)


@router.get("/reports/budget-vs-actual")
def budget_vs_actual(ctx: OrgContext = Depends(reports_context), db: Database = Depends(get_db)):
    return ReportService(db).budget_vs_actual(ctx)


@router.get("/reports/progress-vs-cost")
def progress_vs_cost(ctx: OrgContext = Depends(reports_context), db: Database = Depends(get_db)):
    return ReportService(db).progress_vs_cost(ctx)


@router.get("/reports/top-materials")
def top_materials(limit: int = 10, ctx: OrgContext = Depends(reports_context), db: Database = Depends(get_db)):
    return ReportService(db).top_materials(ctx, limit)


@router.get("/reports/purchases-by-supplier")
def purchases_by_supplier(
    date_from: date | None = None,
    date_to: date | None = None,
    party_id: str | None = None,
    ctx: OrgContext = Depends(reports_context),
    db: Database = Depends(get_db),
):
    return ReportService(db).purchases_by_supplier(ctx, date_from, date_to, party_id)


@router.post("/projects/{project_id}/progress", status_code=201)
def record_progress(
    project_id: str,
    request: ProgressRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ReportService(db).record_progress_update(
        ctx, project_id, request.wbs_node_id, request.progress_pct, request.as_of_date
    )
