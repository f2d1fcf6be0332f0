"""
Budget endpoints: versions, WBS nodes, budget lines and their resources.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from obra_erp.core.budget import MarkupRates
from obra_erp.core.database import Database
from obra_erp.core.models import MarkupMode, OrgContext, ResourceType
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.budget import BudgetService

router = APIRouter(tags=["budget"])


class CreateVersionRequest(BaseModel):
    copy_from_version_id: str | None = None


class MarkupRequest(BaseModel):
    overhead_pct: float = 0
    financial_pct: float = 0
    profit_pct: float = 0
    tax_pct: float = 0
    markup_mode: MarkupMode | None = None


class WbsNodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    unit: str | None = None
    parent_id: str | None = None


class ReorderRequest(BaseModel):
    parent_id: str | None = None
    ordered_ids: list[str]


class BudgetLineRequest(BaseModel):
    wbs_node_id: str
    description: str | None = None
    unit: str | None = None
    quantity: float = Field(default=1, ge=0)
    overhead_pct: float | None = None
    financial_pct: float | None = None
    profit_pct: float | None = None
    tax_pct: float | None = None
    direct_cost_total: float = Field(default=0, ge=0)
    sort_order: int = 0


class BudgetLineUpdate(BaseModel):
    description: str | None = None
    unit: str | None = None
    quantity: float | None = Field(default=None, ge=0)
    overhead_pct: float | None = None
    financial_pct: float | None = None
    profit_pct: float | None = None
    tax_pct: float | None = None
    direct_cost_total: float | None = Field(default=None, ge=0)
    sort_order: int | None = None


class ResourceRequest(BaseModel):
    resource_type: ResourceType = ResourceType.MATERIAL
    description: str = Field(min_length=1, max_length=500)
    unit: str | None = None
    quantity: float = Field(default=0, ge=0)
    unit_cost: float = Field(default=0, ge=0)
    attributes: dict[str, Any] | None = None
    sort_order: int = 0


class ResourceUpdate(BaseModel):
    resource_type: ResourceType | None = None
    description: str | None = Field(default=None, min_length=1, max_length=500)
    unit: str | None = None
    quantity: float | None = Field(default=None, ge=0)
    unit_cost: float | None = Field(default=None, ge=0)
    attributes: dict[str, Any] | None = None
    sort_order: int | None = None


# Versions

@router.get("/projects/{project_id}/budget-versions")
def list_versions(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return BudgetService(db).list_versions(ctx, project_id)


@router.post("/projects/{project_id}/budget-versions", status_code=201)
def create_version(
    project_id: str,
    request: CreateVersionRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return BudgetService(db).create_version(ctx, project_id, request.copy_from_version_id)


@router.get("/budget-versions/{version_id}")
def get_version(version_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return BudgetService(db).get_version(ctx, version_id)


@router.get("/budget-versions/{version_id}/tree")
def get_budget_tree(version_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return BudgetService(db).get_budget_tree(ctx, version_id)


@router.patch("/budget-versions/{version_id}/markup")
def update_markup(
    version_id: str,
    request: MarkupRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    rates = MarkupRates(
        overhead_pct=request.overhead_pct,
        financial_pct=request.financial_pct,
        profit_pct=request.profit_pct,
        tax_pct=request.tax_pct,
    )
    return BudgetService(db).update_markup(ctx, version_id, rates, request.markup_mode)


@router.post("/budget-versions/{version_id}/approve")
def approve_version(version_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return BudgetService(db).approve_version(ctx, version_id)


# WBS

@router.get("/projects/{project_id}/wbs-nodes")
def list_wbs_nodes(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return BudgetService(db).list_wbs_nodes(ctx, project_id)


@router.post("/projects/{project_id}/wbs-nodes", status_code=201)
def create_wbs_node(
    project_id: str,
    request: WbsNodeRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return BudgetService(db).create_wbs_node(
        ctx, project_id, request.code, request.name, request.unit, request.parent_id
    )


@router.post("/projects/{project_id}/wbs-nodes/reorder", status_code=204)
def reorder_wbs_nodes(
    project_id: str,
    request: ReorderRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    BudgetService(db).reorder_wbs_nodes(ctx, project_id, request.parent_id, request.ordered_ids)


# Lines and resources

@router.post("/budget-versions/{version_id}/lines", status_code=201)
def add_budget_line(
    version_id: str,
    request: BudgetLineRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return BudgetService(db).add_budget_line(ctx, version_id, request.model_dump())


@router.patch("/budget-lines/{line_id}")
def update_budget_line(
    line_id: str,
    request: BudgetLineUpdate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return BudgetService(db).update_budget_line(ctx, line_id, request.model_dump(exclude_unset=True))


@router.delete("/budget-lines/{line_id}", status_code=204)
def delete_budget_line(line_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    BudgetService(db).delete_budget_line(ctx, line_id)


@router.post("/budget-lines/{line_id}/resources", status_code=201)
def add_resource(
    line_id: str,
    request: ResourceRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return BudgetService(db).add_resource(ctx, line_id, request.model_dump(mode="json"))


@router.patch("/budget-resources/{resource_id}")
def update_resource(
    resource_id: str,
    request: ResourceUpdate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return BudgetService(db).update_resource(ctx, resource_id, request.model_dump(mode="json", exclude_unset=True))


@router.delete("/budget-resources/{resource_id}", status_code=204)
def delete_resource(resource_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    BudgetService(db).delete_resource(ctx, resource_id)
