"""
Inventory endpoints: categories, items, locations, movements and stock.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from obra_erp.core.database import Database
from obra_erp.core.models import LocationType, MovementType, OrgContext
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.inventory import InventoryService

router = APIRouter(tags=["inventory"])


class CategoryRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class ItemCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    unit: str | None = None
    category_id: str | None = None
    min_stock_qty: float = Field(default=0, ge=0)
    reorder_qty: float = Field(default=0, ge=0)


class ItemUpdate(BaseModel):
    sku: str | None = Field(default=None, min_length=1, max_length=100)
    name: str | None = Field(default=None, min_length=1, max_length=255)
    unit: str | None = None
    category_id: str | None = None
    min_stock_qty: float | None = Field(default=None, ge=0)
    reorder_qty: float | None = Field(default=None, ge=0)
    active: bool | None = None


class LocationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: LocationType
    project_id: str | None = None


class LocationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: LocationType | None = None
    project_id: str | None = None
    active: bool | None = None


class MovementRequest(BaseModel):
    item_id: str
    movement_type: MovementType
    quantity: float
    unit_cost: float = 0
    from_location_id: str | None = None
    to_location_id: str | None = None
    project_id: str | None = None
    party_id: str | None = None
    movement_date: date | None = None
    notes: str | None = None


@router.get("/inventory/categories")
def list_categories(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return InventoryService(db).list_categories(ctx)


@router.post("/inventory/categories", status_code=201)
def create_category(
    request: CategoryRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return InventoryService(db).create_category(ctx, request.name)


@router.get("/inventory/items")
def list_items(
    include_inactive: bool = False,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return InventoryService(db).list_items(ctx, include_inactive)


@router.post("/inventory/items", status_code=201)
def create_item(request: ItemCreate, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return InventoryService(db).create_item(ctx, request.model_dump())


@router.get("/inventory/items/{item_id}")
def get_item(item_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return InventoryService(db).get_item(ctx, item_id)


@router.patch("/inventory/items/{item_id}")
def update_item(
    item_id: str,
    request: ItemUpdate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return InventoryService(db).update_item(ctx, item_id, request.model_dump(exclude_unset=True))


@router.delete("/inventory/items/{item_id}", status_code=204)
def deactivate_item(item_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    InventoryService(db).deactivate_item(ctx, item_id)


@router.get("/inventory/locations")
def list_locations(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return InventoryService(db).list_locations(ctx)


@router.post("/inventory/locations", status_code=201)
def create_location(
    request: LocationCreate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return InventoryService(db).create_location(ctx, request.name, request.type, request.project_id)


@router.patch("/inventory/locations/{location_id}")
def update_location(
    location_id: str,
    request: LocationUpdate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return InventoryService(db).update_location(ctx, location_id, request.model_dump(exclude_unset=True))


@router.get("/inventory/movements")
def list_movements(
    movement_type: list[str] | None = Query(default=None),
    item_id: str | None = None,
    location_id: str | None = None,
    project_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return InventoryService(db).list_movements(
        ctx,
        movement_types=movement_type,
        item_id=item_id,
        location_id=location_id,
        project_id=project_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.post("/inventory/movements", status_code=201)
def record_movement(
    request: MovementRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return InventoryService(db).record_movement(ctx, request.model_dump())


@router.get("/inventory/stock")
def stock_levels(
    item_id: str | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return InventoryService(db).get_stock_levels(ctx, item_id)


@router.get("/inventory/low-stock")
def low_stock(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return InventoryService(db).get_low_stock_items(ctx)


@router.get("/inventory/kpis")
def inventory_kpis(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return InventoryService(db).get_inventory_kpis(ctx)
