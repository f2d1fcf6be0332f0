"""
Finance rules: editability, status workflow, totals, overhead allocation
and cashflow aggregation.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable

from obra_erp.core.errors import ValidationError
from obra_erp.core.models import TransactionStatus, TransactionType
from obra_erp.core.numbers import round_money, to_num

INCOME_TYPES = {TransactionType.INCOME.value, TransactionType.SALE.value}
EXPENSE_TYPES = {
    TransactionType.EXPENSE.value,
    TransactionType.PURCHASE.value,
    TransactionType.OVERHEAD.value,
}

TRANSACTION_PREFIXES: dict[str, str] = {
    "EXPENSE": "GAS",
    "INCOME": "ING",
    "PURCHASE": "COM",
    "SALE": "VEN",
    "OVERHEAD": "GG",
}

STATUS_TRANSITIONS: dict[str, set[str]] = {
    "DRAFT": {"SUBMITTED", "VOIDED"},
    "SUBMITTED": {"APPROVED", "DRAFT", "VOIDED"},
    "APPROVED": {"PAID", "VOIDED"},
    "PAID": set(),
    "VOIDED": set(),
}

ALLOCATION_TOLERANCE = 0.01


def is_editable_status(status: str) -> bool:
    return status == TransactionStatus.DRAFT.value


def can_transition(current: str, target: str) -> bool:
    return target in STATUS_TRANSITIONS.get(current, set())


def transaction_number(tx_type: str, year: int, sequence: int) -> str:
    """GAS-2026-0001 style numbers, sequential per org, type and year."""
    return f"{TRANSACTION_PREFIXES[tx_type]}-{year}-{sequence:04d}"


@dataclass
class TransactionAmounts:
    subtotal: float
    tax_total: float
    total: float
    amount_base_currency: float


def compute_amounts(
    subtotal: float,
    tax_total: float,
    exchange_rate: float = 1.0,
    lines: list[dict[str, Any]] | None = None,
) -> TransactionAmounts:
    """
    total = subtotal + tax; base amount = total * exchange rate.

    When lines are given the subtotal is their sum of quantity * unit price.
    """
    if lines:
        subtotal = sum(to_num(l.get("quantity")) * to_num(l.get("unit_price")) for l in lines)
    for name, value in (("subtotal", subtotal), ("tax_total", tax_total)):
        if value < 0:
            raise ValidationError(f"{name} no puede ser negativo")
    if exchange_rate <= 0:
        raise ValidationError("El tipo de cambio debe ser mayor a 0")
    total = subtotal + tax_total
    return TransactionAmounts(
        subtotal=round_money(subtotal),
        tax_total=round_money(tax_total),
        total=round_money(total),
        amount_base_currency=round_money(total * exchange_rate),
    )


def validate_allocations(allocations: list[dict[str, Any]]) -> None:
    """
    Overhead split across projects: each 0.01..100 %, summing to exactly 100 %
    (within 0.01), no project repeated.
    """
    if not allocations:
        raise ValidationError("Debe asignar al menos un proyecto")
    seen: set[str] = set()
    total = 0.0
    for allocation in allocations:
        project_id = str(allocation.get("project_id") or "")
        pct = to_num(allocation.get("allocation_pct"))
        if not project_id:
            raise ValidationError("Seleccioná un proyecto")
        if pct < 0.01:
            raise ValidationError("Mínimo 0.01%")
        if pct > 100:
            raise ValidationError("Máximo 100%")
        if project_id in seen:
            raise ValidationError("No se puede asignar el mismo proyecto más de una vez")
        seen.add(project_id)
        total += pct
    if abs(total - 100) >= ALLOCATION_TOLERANCE:
        raise ValidationError("La suma de porcentajes debe ser exactamente 100%")


def allocation_amounts(total: float, allocations: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "project_id": str(a["project_id"]),
            "allocation_pct": to_num(a["allocation_pct"]),
            "allocation_amount": round_money(total * to_num(a["allocation_pct"]) / 100),
        }
        for a in allocations
    ]


def month_keys(date_from: date, date_to: date) -> list[str]:
    """YYYY-MM keys for every month touched by [date_from, date_to]."""
    keys = []
    year, month = date_from.year, date_from.month
    while (year, month) <= (date_to.year, date_to.month):
        keys.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return keys


def build_cashflow(
    transactions: Iterable[dict[str, Any]],
    date_from: date,
    date_to: date,
    allocated_overhead: Iterable[dict[str, Any]] = (),
) -> list[dict[str, Any]]:
    """
    Monthly income/expense buckets with a running balance.

    Args:
        transactions: rows with type, issue_date, amount_base_currency
        date_from: first day of the range
        date_to: last day of the range
        allocated_overhead: rows with issue_date, allocation_amount (project view)

    Returns:
        One dict per month (empty months included):
        month, income, expense, overhead, projectExpense, net, balance
    """
    income: dict[str, float] = defaultdict(float)
    expense: dict[str, float] = defaultdict(float)
    overhead: dict[str, float] = defaultdict(float)

    for tx in transactions:
        key = tx["issue_date"].strftime("%Y-%m")
        amount = to_num(tx.get("amount_base_currency"))
        tx_type = tx["type"]
        if tx_type in INCOME_TYPES:
            income[key] += amount
        elif tx_type in EXPENSE_TYPES:
            expense[key] += amount
            if tx_type == TransactionType.OVERHEAD.value:
                overhead[key] += amount

    for allocation in allocated_overhead:
        key = allocation["issue_date"].strftime("%Y-%m")
        amount = to_num(allocation.get("allocation_amount"))
        expense[key] += amount
        overhead[key] += amount

    series = []
    balance = 0.0
    for key in month_keys(date_from, date_to):
        net = income[key] - expense[key]
        balance += net
        series.append(
            {
                "month": key,
                "income": round_money(income[key]),
                "expense": round_money(expense[key]),
                "overhead": round_money(overhead[key]),
                "projectExpense": round_money(expense[key] - overhead[key]),
                "net": round_money(net),
                "balance": round_money(balance),
            }
        )
    return series


def days_overdue(due_date: date | None, today: date) -> int:
    if due_date is None or due_date >= today:
        return 0
    return (today - due_date).days


def cash_projection(
    paid_income: float,
    paid_expense: float,
    receivables_due: float,
    payables_due: float,
) -> dict[str, float]:
    return {
        "paidIncomeToDate": round_money(paid_income),
        "paidExpenseToDate": round_money(paid_expense),
        "receivablesDueByDate": round_money(receivables_due),
        "payablesDueByDate": round_money(payables_due),
        "projectedBalance": round_money(
            paid_income - paid_expense + receivables_due - payables_due
        ),
    }
