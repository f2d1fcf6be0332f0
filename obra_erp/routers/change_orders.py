"""
Change orders: CRUD, lines, the approval workflow and the budget impact summary.
"""

from fastapi import APIRouter, Depends

from obra_erp.core.database import Database
from obra_erp.core.errors import NotFoundError
from obra_erp.core.models import ChangeOrderStatus, OrgContext
from obra_erp.core.validators import (
    ChangeOrderCreate,
    ChangeOrderLineCreate,
    ChangeOrderLineUpdate,
    ChangeOrderUpdate,
)
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.change_orders import ChangeOrderService

router = APIRouter(tags=["change-orders"])

WORKFLOW_ACTIONS = {
    "submit": ChangeOrderService.submit,
    "approve": ChangeOrderService.approve,
    "reject": ChangeOrderService.reject,
    "request-changes": ChangeOrderService.request_changes,
    "return-to-draft": ChangeOrderService.return_to_draft,
}


@router.get("/projects/{project_id}/change-orders")
def list_change_orders(
    project_id: str,
    status: ChangeOrderStatus | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ChangeOrderService(db).list_change_orders(ctx, project_id, status)


@router.post("/projects/{project_id}/change-orders", status_code=201)
def create_change_order(
    project_id: str,
    request: ChangeOrderCreate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ChangeOrderService(db).create_change_order(ctx, project_id, request)


@router.get("/projects/{project_id}/change-orders/budget-impact")
def budget_impact(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return ChangeOrderService(db).get_budget_impact(ctx, project_id)


@router.get("/change-orders/{change_order_id}")
def get_change_order(change_order_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return ChangeOrderService(db).get_change_order(ctx, change_order_id)


@router.patch("/change-orders/{change_order_id}")
def update_change_order(
    change_order_id: str,
    request: ChangeOrderUpdate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ChangeOrderService(db).update_change_order(ctx, change_order_id, request)


@router.post("/change-orders/{change_order_id}/lines", status_code=201)
def add_line(
    change_order_id: str,
    request: ChangeOrderLineCreate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ChangeOrderService(db).add_line(ctx, change_order_id, request)


@router.patch("/change-order-lines/{line_id}")
def update_line(
    line_id: str,
    request: ChangeOrderLineUpdate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ChangeOrderService(db).update_line(ctx, line_id, request)


@router.delete("/change-order-lines/{line_id}", status_code=204)
def delete_line(line_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    ChangeOrderService(db).delete_line(ctx, line_id)


@router.post("/change-orders/{change_order_id}/{action}")
def change_order_action(
    change_order_id: str,
    action: str,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    handler = WORKFLOW_ACTIONS.get(action)
    if handler is None:
        raise NotFoundError(f"Acción desconocida: {action}")
    return handler(ChangeOrderService(db), ctx, change_order_id)
