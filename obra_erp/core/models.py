"""
Data models for the construction ERP.

Enums mirror the values stored in PostgreSQL; dataclasses carry request
context and intermediate results between services and exporters.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class OrgRole(str, Enum):
    """Organization-level member role."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    ACCOUNTANT = "ACCOUNTANT"
    EDITOR = "EDITOR"
    VIEWER = "VIEWER"


class ProjectRole(str, Enum):
    """Role of a member inside a single project."""

    MANAGER = "MANAGER"
    SUPERINTENDENT = "SUPERINTENDENT"
    VIEWER = "VIEWER"


class ProjectStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    CLOSED = "CLOSED"


class ProjectPhase(str, Enum):
    PRE_CONSTRUCTION = "PRE_CONSTRUCTION"
    CONSTRUCTION = "CONSTRUCTION"
    CLOSEOUT = "CLOSEOUT"
    COMPLETE = "COMPLETE"


class BudgetVersionStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    SUPERSEDED = "SUPERSEDED"


class MarkupMode(str, Enum):
    """GLOBAL applies version percentages to every line; PER_LINE lets lines override them."""

    GLOBAL = "GLOBAL"
    PER_LINE = "PER_LINE"


class ResourceType(str, Enum):
    MATERIAL = "MATERIAL"
    LABOR = "LABOR"
    EQUIPMENT = "EQUIPMENT"
    SUBCONTRACT = "SUBCONTRACT"


class TransactionType(str, Enum):
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"
    PURCHASE = "PURCHASE"
    SALE = "SALE"
    OVERHEAD = "OVERHEAD"


class TransactionStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    VOIDED = "VOIDED"


class FinanceDocumentType(str, Enum):
    INVOICE = "INVOICE"
    RECEIPT = "RECEIPT"
    CREDIT_NOTE = "CREDIT_NOTE"
    DEBIT_NOTE = "DEBIT_NOTE"


class CommitmentStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class MovementType(str, Enum):
    PURCHASE = "PURCHASE"
    TRANSFER = "TRANSFER"
    ISSUE = "ISSUE"
    ADJUSTMENT = "ADJUSTMENT"


class LocationType(str, Enum):
    CENTRAL_WAREHOUSE = "CENTRAL_WAREHOUSE"
    PROJECT_SITE = "PROJECT_SITE"
    SUPPLIER = "SUPPLIER"


class PartyType(str, Enum):
    SUPPLIER = "SUPPLIER"
    CLIENT = "CLIENT"


class ChangeOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"


class ChangeType(str, Enum):
    SCOPE = "SCOPE"
    TIME = "TIME"
    COST = "COST"
    OTHER = "OTHER"


class BudgetImpactType(str, Enum):
    DEVIATION = "DEVIATION"
    APPROVED_CHANGE = "APPROVED_CHANGE"


class ChangeOrderLineType(str, Enum):
    ADD = "ADD"
    MODIFY = "MODIFY"
    DELETE = "DELETE"


class DependencyType(str, Enum):
    """Finish-to-start, start-to-start, finish-to-finish, start-to-finish."""

    FS = "FS"
    SS = "SS"
    FF = "FF"
    SF = "SF"


class InvitationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DocumentEntityType(str, Enum):
    FINANCE_TRANSACTION = "FINANCE_TRANSACTION"
    COMMITMENT = "COMMITMENT"


# Spanish display labels used by exports and print views

RESOURCE_TYPE_LABELS: dict[str, str] = {
    "MATERIAL": "Material",
    "LABOR": "Mano de Obra",
    "EQUIPMENT": "Equipo",
    "SUBCONTRACT": "Subcontrato",
}

TRANSACTION_TYPE_LABELS: dict[str, str] = {
    "EXPENSE": "Gasto",
    "INCOME": "Ingreso",
    "PURCHASE": "Compra",
    "SALE": "Venta",
    "OVERHEAD": "Gasto general",
}

TRANSACTION_STATUS_LABELS: dict[str, str] = {
    "DRAFT": "Borrador",
    "SUBMITTED": "Enviado",
    "APPROVED": "Aprobado",
    "PAID": "Pagado",
    "VOIDED": "Anulado",
}

MOVEMENT_TYPE_LABELS: dict[str, str] = {
    "PURCHASE": "Compra",
    "TRANSFER": "Transferencia",
    "ISSUE": "Consumo",
    "ADJUSTMENT": "Ajuste",
}

ORG_ROLE_LABELS: dict[str, str] = {
    "OWNER": "Propietario",
    "ADMIN": "Administrador",
    "ACCOUNTANT": "Contador",
    "EDITOR": "Editor",
    "VIEWER": "Lector",
}

PROJECT_ROLE_LABELS: dict[str, str] = {
    "MANAGER": "Gestor de proyecto",
    "SUPERINTENDENT": "Jefe de obra",
    "VIEWER": "Solo lectura",
}

CHANGE_ORDER_STATUS_LABELS: dict[str, str] = {
    "DRAFT": "Borrador",
    "SUBMITTED": "Enviada",
    "APPROVED": "Aprobada",
    "REJECTED": "Rechazada",
    "CHANGES_REQUESTED": "Cambios solicitados",
}


@dataclass
class User:
    """Authenticated user."""

    id: str
    email: str
    full_name: str = ""
    active: bool = True

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "User":
        return cls(
            id=str(row["id"]),
            email=row["email"],
            full_name=row.get("full_name") or "",
            active=row.get("active", True),
        )


@dataclass
class OrgContext:
    """Organization membership of the calling user, resolved once per request."""

    user_id: str
    org_id: str
    org_name: str
    member_id: str
    role: OrgRole
    restricted_to_projects: bool = False
    custom_permissions: dict[str, list[str]] | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "OrgContext":
        """Build from a joined org_members/organizations row."""
        return cls(
            user_id=str(row["user_id"]),
            org_id=str(row["org_id"]),
            org_name=row.get("org_name") or "",
            member_id=str(row["member_id"]),
            role=OrgRole(row["role"]),
            restricted_to_projects=bool(row.get("restricted_to_projects")),
            custom_permissions=row.get("custom_permissions"),
        )


@dataclass
class OrgProfile:
    """Organization data printed on document headers."""

    name: str
    legal_name: str | None = None
    tax_id: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    email: str | None = None
    phone: str | None = None

    @property
    def display_name(self) -> str:
        return self.legal_name or self.name or "Sistema"

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "OrgProfile":
        return cls(
            name=row.get("name") or "",
            legal_name=row.get("legal_name"),
            tax_id=row.get("tax_id"),
            address=row.get("address"),
            city=row.get("city"),
            country=row.get("country"),
            email=row.get("email"),
            phone=row.get("phone"),
        )


@dataclass
class EmailResult:
    """Outcome of an outbound email request."""

    success: bool
    message_id: str | None = None
    error: str | None = None

