"""PDF document templates."""

from .base import DocumentTemplate
from .registry import get_template, register_template

# Import templates to trigger registration via @register_template decorator
from .templates import (
    BudgetTemplate,
    CashflowTemplate,
    MaterialsTemplate,
    PurchaseOrderTemplate,
    PurchasesBySupplierTemplate,
    TransactionsTemplate,
)

__all__ = [
    "DocumentTemplate",
    "register_template",
    "get_template",
    "BudgetTemplate",
    "CashflowTemplate",
    "MaterialsTemplate",
    "PurchaseOrderTemplate",
    "PurchasesBySupplierTemplate",
    "TransactionsTemplate",
]
