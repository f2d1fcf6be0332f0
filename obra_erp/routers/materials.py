"""
Materials derived from budget resources, and purchase orders (commitments).
"""

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from obra_erp.core.database import Database
from obra_erp.core.models import CommitmentStatus, OrgContext
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.materials import MaterialsService

router = APIRouter(tags=["materials"])


class PurchaseOrderLine(BaseModel):
    wbs_node_id: str | None = None
    description: str = Field(min_length=1, max_length=500)
    unit: str | None = None
    quantity: float = Field(gt=0)
    unit_price: float = Field(ge=0)


class PurchaseOrderRequest(BaseModel):
    party_id: str
    issue_date: date
    description: str | None = None
    lines: list[PurchaseOrderLine]


class CommitmentStatusRequest(BaseModel):
    status: CommitmentStatus


@router.get("/budget-versions/{version_id}/materials")
def consolidated_materials(version_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return [m.to_dict() for m in MaterialsService(db).get_consolidated_materials(ctx, version_id)]


@router.get("/budget-versions/{version_id}/materials/by-supplier")
def materials_by_supplier(version_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return [g.to_dict() for g in MaterialsService(db).get_materials_by_supplier(ctx, version_id)]


@router.get("/budget-versions/{version_id}/materials/purchase-order-lines")
def purchase_order_lines(version_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return MaterialsService(db).get_materials_for_purchase_order(ctx, version_id)


@router.get("/budget-versions/{version_id}/materials/purchase-order")
def generate_purchase_order(
    version_id: str,
    supplier: str,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return MaterialsService(db).generate_purchase_order(ctx, version_id, supplier)


@router.get("/projects/{project_id}/purchase-orders")
def list_purchase_orders(
    project_id: str,
    status: str | None = None,
    party_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return MaterialsService(db).list_project_purchase_orders(
        ctx, project_id, status=status, party_id=party_id, date_from=date_from, date_to=date_to
    )


@router.post("/projects/{project_id}/purchase-orders", status_code=201)
def create_purchase_order(
    project_id: str,
    request: PurchaseOrderRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return MaterialsService(db).create_purchase_order_commitment(
        ctx,
        project_id,
        request.party_id,
        request.issue_date,
        [line.model_dump() for line in request.lines],
        request.description,
    )


@router.get("/purchase-orders/{commitment_id}")
def get_purchase_order(commitment_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return MaterialsService(db).get_commitment(ctx, commitment_id)


@router.post("/purchase-orders/{commitment_id}/status")
def update_purchase_order_status(
    commitment_id: str,
    request: CommitmentStatusRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return MaterialsService(db).update_commitment_status(ctx, commitment_id, request.status)
