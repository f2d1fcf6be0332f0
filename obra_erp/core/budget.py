"""
Budget consolidation and markup calculation.

Pure functions over rows loaded from wbs_nodes, budget_lines and
budget_resources. Nothing here touches the database, so the same code
backs the tree view, version approval, exports and the print view.

Markup is applied to a direct cost D in this order:

    overhead  = D * overhead%
    financial = D * financial%
    subtotal  = D + overhead + financial
    profit    = subtotal * profit%
    pre_tax   = subtotal + profit
    tax       = pre_tax * tax%
    sale      = pre_tax + tax
"""

import re
from dataclasses import dataclass, field
from typing import Any

from obra_erp.core.errors import ValidationError
from obra_erp.core.models import MarkupMode, ResourceType
from obra_erp.core.numbers import to_num

_CODE_TOKEN = re.compile(r"(\d+)")


@dataclass
class MarkupRates:
    """Markup percentages expressed in 0..100."""

    overhead_pct: float = 0.0
    financial_pct: float = 0.0
    profit_pct: float = 0.0
    tax_pct: float = 0.0

    def validate(self) -> "MarkupRates":
        for name in ("overhead_pct", "financial_pct", "profit_pct", "tax_pct"):
            value = getattr(self, name)
            if value < 0 or value > 100:
                raise ValidationError(f"{name} debe estar entre 0 y 100")
        return self

    @classmethod
    def from_version(cls, version: dict[str, Any]) -> "MarkupRates":
        return cls(
            overhead_pct=to_num(version.get("global_overhead_pct")),
            financial_pct=to_num(version.get("global_financial_pct")),
            profit_pct=to_num(version.get("global_profit_pct")),
            tax_pct=to_num(version.get("global_tax_pct")),
        )


@dataclass
class MarkupBreakdown:
    direct: float = 0.0
    overhead: float = 0.0
    financial: float = 0.0
    subtotal: float = 0.0
    profit: float = 0.0
    pre_tax: float = 0.0
    tax: float = 0.0
    sale: float = 0.0

    def __add__(self, other: "MarkupBreakdown") -> "MarkupBreakdown":
        return MarkupBreakdown(
            direct=self.direct + other.direct,
            overhead=self.overhead + other.overhead,
            financial=self.financial + other.financial,
            subtotal=self.subtotal + other.subtotal,
            profit=self.profit + other.profit,
            pre_tax=self.pre_tax + other.pre_tax,
            tax=self.tax + other.tax,
            sale=self.sale + other.sale,
        )


def apply_markup(direct: float, rates: MarkupRates) -> MarkupBreakdown:
    """Apply overhead, financial cost, profit and tax to a direct cost."""
    rates.validate()
    overhead = direct * rates.overhead_pct / 100
    financial = direct * rates.financial_pct / 100
    subtotal = direct + overhead + financial
    profit = subtotal * rates.profit_pct / 100
    pre_tax = subtotal + profit
    tax = pre_tax * rates.tax_pct / 100
    return MarkupBreakdown(
        direct=direct,
        overhead=overhead,
        financial=financial,
        subtotal=subtotal,
        profit=profit,
        pre_tax=pre_tax,
        tax=tax,
        sale=pre_tax + tax,
    )


def resolve_line_rates(line: dict[str, Any], version: dict[str, Any]) -> MarkupRates:
    """Version rates in GLOBAL mode; line rates (falling back per field) in PER_LINE mode."""
    base = MarkupRates.from_version(version)
    if version.get("markup_mode", MarkupMode.GLOBAL.value) != MarkupMode.PER_LINE.value:
        return base
    return MarkupRates(
        overhead_pct=_override(line.get("overhead_pct"), base.overhead_pct),
        financial_pct=_override(line.get("financial_pct"), base.financial_pct),
        profit_pct=_override(line.get("profit_pct"), base.profit_pct),
        tax_pct=_override(line.get("tax_pct"), base.tax_pct),
    )


def _override(value: Any, default: float) -> float:
    return default if value is None else to_num(value)


def resource_bucket(resource_type: str) -> str:
    """Cost bucket for a resource type; subcontracts are reported with equipment."""
    if resource_type == ResourceType.MATERIAL.value:
        return "materials"
    if resource_type == ResourceType.LABOR.value:
        return "labor"
    return "equipment"


@dataclass
class LineCost:
    line_id: str
    quantity: float
    unit_cost: float
    direct: float
    materials: float
    labor: float
    equipment: float
    markup: MarkupBreakdown

    @property
    def sale(self) -> float:
        return self.markup.sale


def compute_line_cost(
    line: dict[str, Any],
    resources: list[dict[str, Any]],
    version: dict[str, Any],
) -> LineCost:
    """
    Direct cost and sale price of one budget line.

    Resource quantities are per unit of the line. A line without resources
    keeps its stored direct_cost_total.
    """
    quantity = to_num(line.get("quantity"))
    buckets = {"materials": 0.0, "labor": 0.0, "equipment": 0.0}

    if resources:
        unit_cost = 0.0
        for resource in resources:
            per_unit = to_num(resource.get("quantity")) * to_num(resource.get("unit_cost"))
            unit_cost += per_unit
            buckets[resource_bucket(resource.get("resource_type", ""))] += per_unit * quantity
        direct = unit_cost * quantity
    else:
        direct = to_num(line.get("direct_cost_total"))
        unit_cost = direct / quantity if quantity else 0.0

    markup = apply_markup(direct, resolve_line_rates(line, version))
    return LineCost(
        line_id=str(line.get("id")),
        quantity=quantity,
        unit_cost=unit_cost,
        direct=direct,
        materials=buckets["materials"],
        labor=buckets["labor"],
        equipment=buckets["equipment"],
        markup=markup,
    )


@dataclass
class BudgetNode:
    """WBS node with its own lines and rolled-up totals of its subtree."""

    id: str
    code: str
    name: str
    unit: str | None = None
    parent_id: str | None = None
    sort_order: int = 0
    lines: list[dict[str, Any]] = field(default_factory=list)
    children: list["BudgetNode"] = field(default_factory=list)
    direct_cost: float = 0.0
    sale_price: float = 0.0
    materials: float = 0.0
    labor: float = 0.0
    equipment: float = 0.0
    quantity: float = 0.0
    incidence_pct: float = 0.0

    @property
    def level(self) -> int:
        return code_level(self.code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "unit": self.unit,
            "parent_id": self.parent_id,
            "level": self.level,
            "direct_cost": round(self.direct_cost, 2),
            "sale_price": round(self.sale_price, 2),
            "materials": round(self.materials, 2),
            "labor": round(self.labor, 2),
            "equipment": round(self.equipment, 2),
            "incidence_pct": round(self.incidence_pct, 2),
            "lines": self.lines,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class BudgetTotals:
    direct: float = 0.0
    materials: float = 0.0
    labor: float = 0.0
    equipment: float = 0.0
    overhead: float = 0.0
    financial: float = 0.0
    profit: float = 0.0
    tax: float = 0.0
    sale: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {key: round(value, 2) for key, value in self.__dict__.items()}


def code_level(code: str) -> int:
    """Depth of a WBS code: "1" is 0, "1.2" is 1, "ARQ 1.2.3" is 2."""
    return (code or "").count(".")


def parent_code(code: str) -> str | None:
    """Code minus its last dot segment ("ARQ 1.2.3" -> "ARQ 1.2")."""
    parts = code.split(".")
    if len(parts) <= 1:
        return None
    return ".".join(parts[:-1])


def natural_code_key(code: str) -> tuple:
    """Sort key that orders "1.10" after "1.9"."""
    parts = []
    for token in _CODE_TOKEN.split((code or "").strip()):
        if not token:
            continue
        if token.isdigit():
            parts.append((0, int(token), ""))
        else:
            parts.append((1, 0, token))
    return tuple(parts)


def build_budget_tree(
    nodes: list[dict[str, Any]],
    lines: list[dict[str, Any]],
    resources: list[dict[str, Any]],
    version: dict[str, Any],
) -> tuple[list[BudgetNode], BudgetTotals]:
    """
    Assemble the WBS tree for a version and roll costs up to the roots.

    Args:
        nodes: wbs_nodes rows for the project
        lines: budget_lines rows for the version
        resources: budget_resources rows for those lines
        version: budget_versions row (markup mode and global rates)

    Returns:
        (root nodes sorted by code, version totals)
    """
    by_line: dict[str, list[dict[str, Any]]] = {}
    for resource in resources:
        by_line.setdefault(str(resource["budget_line_id"]), []).append(resource)

    tree: dict[str, BudgetNode] = {
        str(n["id"]): BudgetNode(
            id=str(n["id"]),
            code=n["code"],
            name=n["name"],
            unit=n.get("unit"),
            parent_id=str(n["parent_id"]) if n.get("parent_id") else None,
            sort_order=n.get("sort_order") or 0,
        )
        for n in nodes
    }

    totals = BudgetTotals()
    for line in lines:
        node = tree.get(str(line["wbs_node_id"]))
        if node is None:
            continue
        cost = compute_line_cost(line, by_line.get(str(line["id"]), []), version)
        node.direct_cost += cost.direct
        node.sale_price += cost.sale
        node.materials += cost.materials
        node.labor += cost.labor
        node.equipment += cost.equipment
        node.quantity += cost.quantity
        node.lines.append(
            {
                "id": cost.line_id,
                "description": line.get("description"),
                "unit": line.get("unit"),
                "quantity": cost.quantity,
                "unit_cost": round(cost.unit_cost, 4),
                "direct_cost": round(cost.direct, 2),
                "sale_price": round(cost.sale, 2),
                "resources": by_line.get(str(line["id"]), []),
            }
        )
        totals.direct += cost.direct
        totals.materials += cost.materials
        totals.labor += cost.labor
        totals.equipment += cost.equipment
        totals.overhead += cost.markup.overhead
        totals.financial += cost.markup.financial
        totals.profit += cost.markup.profit
        totals.tax += cost.markup.tax
        totals.sale += cost.markup.sale

    roots: list[BudgetNode] = []
    for node in tree.values():
        parent = tree.get(node.parent_id) if node.parent_id else None
        if parent is None:
            roots.append(node)
        else:
            parent.children.append(node)

    for root in roots:
        _roll_up(root)
    _sort_tree(roots)
    for root in roots:
        _set_incidence(root, totals.direct)

    return roots, totals


def _roll_up(node: BudgetNode) -> None:
    for child in node.children:
        _roll_up(child)
        node.direct_cost += child.direct_cost
        node.sale_price += child.sale_price
        node.materials += child.materials
        node.labor += child.labor
        node.equipment += child.equipment


def _sort_tree(nodes: list[BudgetNode]) -> None:
    nodes.sort(key=lambda n: natural_code_key(n.code))
    for node in nodes:
        _sort_tree(node.children)


def _set_incidence(node: BudgetNode, grand_direct: float) -> None:
    node.incidence_pct = node.direct_cost / grand_direct * 100 if grand_direct else 0.0
    for child in node.children:
        _set_incidence(child, grand_direct)


def flatten_tree(roots: list[BudgetNode]) -> list[BudgetNode]:
    """Depth-first list of every node, in code order."""
    out: list[BudgetNode] = []

    def walk(nodes: list[BudgetNode]) -> None:
        for node in nodes:
            out.append(node)
            walk(node.children)

    walk(roots)
    return out


def export_rows(roots: list[BudgetNode]) -> list[dict[str, Any]]:
    """
    Flat rows for Excel/PDF/print, sorted by natural code order.

    Unit price is total / quantity for nodes carrying a quantity and 0 otherwise.
    """
    rows = []
    for node in sorted(flatten_tree(roots), key=lambda n: natural_code_key(n.code)):
        quantity = node.quantity if node.lines else 0.0
        rows.append(
            {
                "code": node.code,
                "description": node.name,
                "unit": node.unit or "",
                "quantity": quantity,
                "unitPrice": node.direct_cost / quantity if quantity else 0.0,
                "totalCost": round(node.direct_cost, 2),
                "salePrice": round(node.sale_price, 2),
                "incidenciaPct": round(node.incidence_pct, 2),
                "level": node.level,
                "isLeaf": not node.children,
            }
        )
    return rows
