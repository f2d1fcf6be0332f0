"""
Parties: local suppliers and clients, and links to the global supplier directory.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from obra_erp.core.database import Database
from obra_erp.core.models import OrgContext, PartyType
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.parties import PartyService

router = APIRouter(tags=["parties"])


class PartyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    tax_id: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    contact_name: str | None = None
    notes: str | None = None


class PartyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    tax_id: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    contact_name: str | None = None
    notes: str | None = None
    active: bool | None = None


class SupplierLinkRequest(BaseModel):
    local_alias: str | None = None
    local_contact_name: str | None = None
    local_contact_email: str | None = None
    local_contact_phone: str | None = None
    preferred: bool | None = None
    status: str | None = None
    payment_terms: str | None = None
    discount_pct: float | None = Field(default=None, ge=0, le=100)
    notes: str | None = None


@router.get("/parties")
def list_parties(
    type: PartyType | None = None,
    search: str | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return PartyService(db).list_parties(ctx, type, search)


@router.post("/parties/suppliers", status_code=201)
def create_supplier(request: PartyCreate, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return PartyService(db).create_local_supplier(ctx, request.model_dump())


@router.post("/parties/clients", status_code=201)
def create_client(request: PartyCreate, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return PartyService(db).create_local_client(ctx, request.model_dump())


@router.get("/parties/{party_id}")
def party_detail(party_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return PartyService(db).get_party_detail_with_kpis(ctx, party_id)


@router.patch("/parties/{party_id}")
def update_party(
    party_id: str,
    request: PartyUpdate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return PartyService(db).update_local_party(ctx, party_id, request.model_dump(exclude_unset=True))


# Global supplier directory

@router.get("/global-suppliers")
def search_global_suppliers(
    q: str | None = None,
    category: str | None = None,
    limit: int = 20,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return PartyService(db).search_global_suppliers(q, category, limit)


@router.post("/global-suppliers/{global_party_id}/link", status_code=201)
def link_global_supplier(
    global_party_id: str,
    request: SupplierLinkRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return PartyService(db).link_global_supplier(ctx, global_party_id, request.model_dump(exclude_none=True))


@router.delete("/global-suppliers/{global_party_id}/link", status_code=204)
def unlink_global_supplier(
    global_party_id: str,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    PartyService(db).unlink_global_supplier(ctx, global_party_id)


@router.patch("/supplier-links/{link_id}")
def update_supplier_link(
    link_id: str,
    request: SupplierLinkRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return PartyService(db).update_supplier_link(ctx, link_id, request.model_dump(exclude_unset=True))
