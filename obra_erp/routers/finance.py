"""
Finance endpoints: transactions, overhead allocation, cashflow,
receivables/payables and the finance dashboard.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from obra_erp.core.database import Database
from obra_erp.core.models import FinanceDocumentType, OrgContext, TransactionStatus, TransactionType
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.finance import FinanceService, TransactionFilters

router = APIRouter(tags=["finance"])


class TransactionLine(BaseModel):
    wbs_node_id: str | None = None
    description: str = ""
    quantity: float = Field(default=1, ge=0)
    unit_price: float = Field(default=0, ge=0)


class TransactionCreate(BaseModel):
    type: TransactionType
    document_type: FinanceDocumentType | None = None
    project_id: str | None = None
    party_id: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    description: str | None = None
    currency: str | None = None
    exchange_rate: float | None = Field(default=None, gt=0)
    subtotal: float = 0
    tax_total: float = 0
    retention_amount: float = 0
    lines: list[TransactionLine] = Field(default_factory=list)


class TransactionUpdate(BaseModel):
    document_type: FinanceDocumentType | None = None
    project_id: str | None = None
    party_id: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    description: str | None = None
    currency: str | None = None
    exchange_rate: float | None = Field(default=None, gt=0)
    subtotal: float | None = None
    tax_total: float | None = None
    retention_amount: float | None = None
    lines: list[TransactionLine] | None = None


class StatusRequest(BaseModel):
    status: TransactionStatus
    paid_date: date | None = None


class Allocation(BaseModel):
    project_id: str
    allocation_pct: float


class AllocationRequest(BaseModel):
    allocations: list[Allocation]


def transaction_filters(
    type: str | None = None,
    status: str | None = None,
    party_id: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
) -> TransactionFilters:
    return TransactionFilters(
        type=type,
        status=status,
        party_id=party_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )


# Transactions

@router.get("/finance/transactions")
def list_company_transactions(
    filters: TransactionFilters = Depends(transaction_filters),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return FinanceService(db).list_company_transactions(ctx, filters)


@router.get("/projects/{project_id}/transactions")
def list_project_transactions(
    project_id: str,
    filters: TransactionFilters = Depends(transaction_filters),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return FinanceService(db).list_project_transactions(ctx, project_id, filters)


@router.post("/finance/transactions", status_code=201)
def create_transaction(
    request: TransactionCreate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    data = request.model_dump()
    data["lines"] = [line.model_dump() for line in request.lines]
    return FinanceService(db).create_transaction(ctx, data)


@router.get("/finance/transactions/{transaction_id}")
def get_transaction(transaction_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return FinanceService(db).get_transaction(ctx, transaction_id)


@router.patch("/finance/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    request: TransactionUpdate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return FinanceService(db).update_transaction(ctx, transaction_id, request.model_dump(exclude_unset=True))


@router.post("/finance/transactions/{transaction_id}/status")
def change_status(
    transaction_id: str,
    request: StatusRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return FinanceService(db).change_status(ctx, transaction_id, request.status, request.paid_date)


@router.delete("/finance/transactions/{transaction_id}", status_code=204)
def delete_transaction(transaction_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    FinanceService(db).delete_transaction(ctx, transaction_id)


# Overhead

@router.get("/finance/overhead")
def list_overhead(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return FinanceService(db).list_overhead_transactions(ctx)


@router.put("/finance/transactions/{transaction_id}/allocations")
def allocate_overhead(
    transaction_id: str,
    request: AllocationRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    allocations = [a.model_dump() for a in request.allocations]
    return FinanceService(db).allocate_overhead(ctx, transaction_id, allocations)


@router.get("/projects/{project_id}/overhead")
def project_overhead(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return FinanceService(db).get_project_overhead(ctx, project_id)


# Cashflow and balances

@router.get("/finance/cashflow")
def company_cashflow(
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return FinanceService(db).get_company_cashflow(ctx, date_from, date_to)


@router.get("/projects/{project_id}/cashflow")
def project_cashflow(
    project_id: str,
    date_from: date = Query(alias="from"),
    date_to: date = Query(alias="to"),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return FinanceService(db).get_project_cashflow(ctx, project_id, date_from, date_to)


@router.get("/projects/{project_id}/cash-projection")
def project_cash_projection(
    project_id: str,
    as_of: date | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return FinanceService(db).get_project_cash_projection(ctx, project_id, as_of or date.today())


@router.get("/finance/receivables")
def accounts_receivable(
    project_id: str | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return FinanceService(db).get_accounts_receivable(ctx, project_id)


@router.get("/finance/payables")
def accounts_payable(
    project_id: str | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return FinanceService(db).get_accounts_payable(ctx, project_id)


@router.get("/finance/dashboard")
def finance_dashboard(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return FinanceService(db).get_finance_dashboard(ctx)
