"""
Input schemas shared by routers and services.

Dates arrive as YYYY-MM-DD strings and are kept as calendar dates. Empty
strings coming from HTML forms are treated as "not provided" on create and
as "clear the value" for dates on update.
"""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field, field_validator

from obra_erp.core.models import (
    BudgetImpactType,
    ChangeOrderLineType,
    ChangeOrderStatus,
    ChangeType,
    ProjectPhase,
    ProjectStatus,
)


def _empty_to_none(value: Any) -> Any:
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    client_name: str | None = Field(default=None, max_length=255)
    location: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    m2: float | None = Field(default=None, gt=0)
    start_date: date | None = None
    planned_end_date: date | None = None

    @field_validator("m2", "start_date", "planned_end_date", mode="before")
    @classmethod
    def blank_is_missing(cls, value: Any) -> Any:
        return _empty_to_none(value)


class ProjectUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    client_name: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    location: str | None = Field(default=None, max_length=255)
    m2: float | None = Field(default=None, gt=0)
    status: ProjectStatus | None = None
    phase: ProjectPhase | None = None
    start_date: date | None = None
    planned_end_date: date | None = None
    active: bool | None = None

    @field_validator("status", "phase", "m2", mode="before")
    @classmethod
    def blank_is_missing(cls, value: Any) -> Any:
        return _empty_to_none(value)

    @field_validator("start_date", "planned_end_date", mode="before")
    @classmethod
    def blank_clears_date(cls, value: Any) -> Any:
        return _empty_to_none(value)

    def changes(self) -> dict[str, Any]:
        """
        Fields explicitly sent by the client.

        A blank phase is dropped; blank dates are kept as None to clear them.
        """
        data = self.model_dump(exclude_unset=True)
        if data.get("phase") is None:
            data.pop("phase", None)
        return data


class ChangeOrderLineCreate(BaseModel):
    wbs_node_id: str
    change_type: ChangeOrderLineType = ChangeOrderLineType.ADD
    justification: str = Field(min_length=1, max_length=500)
    delta_cost: float
    new_qty: float | None = Field(default=None, ge=0)
    new_unit_cost: float | None = Field(default=None, ge=0)


class ChangeOrderLineUpdate(BaseModel):
    wbs_node_id: str | None = None
    change_type: ChangeOrderLineType | None = None
    justification: str | None = Field(default=None, min_length=1, max_length=500)
    delta_cost: float | None = None
    new_qty: float | None = Field(default=None, ge=0)
    new_unit_cost: float | None = Field(default=None, ge=0)


class ChangeOrderCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    reason: str = Field(min_length=1, max_length=2000)
    justification: str | None = Field(default=None, max_length=2000)
    change_type: ChangeType = ChangeType.SCOPE
    budget_impact_type: BudgetImpactType | None = BudgetImpactType.APPROVED_CHANGE
    cost_impact: float = 0
    time_impact_days: int = Field(default=0, ge=0)
    request_date: date | None = None
    implemented_date: date | None = None
    party_id: str | None = None
    lines: list[ChangeOrderLineCreate] = Field(default_factory=list)

    @field_validator("budget_impact_type", "request_date", "implemented_date", mode="before")
    @classmethod
    def blank_is_missing(cls, value: Any) -> Any:
        return _empty_to_none(value)

    @field_validator("budget_impact_type", mode="after")
    @classmethod
    def default_impact(cls, value: BudgetImpactType | None) -> BudgetImpactType:
        return value or BudgetImpactType.APPROVED_CHANGE


class ChangeOrderUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    reason: str | None = Field(default=None, min_length=1, max_length=2000)
    justification: str | None = Field(default=None, max_length=2000)
    change_type: ChangeType | None = None
    budget_impact_type: BudgetImpactType | None = None
    status: ChangeOrderStatus | None = None
    cost_impact: float | None = None
    time_impact_days: int | None = Field(default=None, ge=0)
    request_date: date | None = None
    approved_date: date | None = None
    implemented_date: date | None = None
    party_id: str | None = None

    @field_validator(
        "budget_impact_type",
        "request_date",
        "approved_date",
        "implemented_date",
        mode="before",
    )
    @classmethod
    def blank_is_missing(cls, value: Any) -> Any:
        return _empty_to_none(value)
