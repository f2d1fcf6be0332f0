"""
Material consolidation across a budget version.

Input rows are MATERIAL budget resources joined with their line quantity and
WBS node (see services.materials for the query). Resource quantities are per
unit of line, so the quantity needed is resource qty * line qty.
"""

from dataclasses import dataclass, field
from typing import Any

from obra_erp.core.numbers import to_num

UNNAMED_MATERIAL = "Sin nombre"


@dataclass
class SupplierShare:
    name: str
    quantity: float
    unit_cost: float


@dataclass
class MaterialUsage:
    wbs_code: str
    wbs_name: str
    quantity: float


@dataclass
class ConsolidatedMaterial:
    name: str
    description: str | None
    unit: str
    total_quantity: float = 0.0
    average_unit_cost: float = 0.0
    total_cost: float = 0.0
    suppliers: list[SupplierShare] = field(default_factory=list)
    used_in_items: list[MaterialUsage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "unit": self.unit,
            "totalQuantity": self.total_quantity,
            "averageUnitCost": self.average_unit_cost,
            "totalCost": self.total_cost,
            "suppliers": [s.__dict__ for s in self.suppliers],
            "usedInItems": [
                {"wbsCode": u.wbs_code, "wbsName": u.wbs_name, "quantity": u.quantity}
                for u in self.used_in_items
            ],
        }


@dataclass
class SupplierMaterial:
    name: str
    unit: str
    quantity: float
    unit_cost: float
    total_cost: float


@dataclass
class MaterialsBySupplier:
    supplier_name: str
    total_cost: float = 0.0
    materials: list[SupplierMaterial] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "supplierName": self.supplier_name,
            "totalCost": self.total_cost,
            "materials": [
                {
                    "name": m.name,
                    "unit": m.unit,
                    "quantity": m.quantity,
                    "unitCost": m.unit_cost,
                    "totalCost": m.total_cost,
                }
                for m in self.materials
            ],
        }


def supplier_name(attributes: Any) -> str | None:
    """supplierName from a resource's attributes JSON, if it is a string."""
    if not isinstance(attributes, dict):
        return None
    value = attributes.get("supplierName")
    return value if isinstance(value, str) and value else None


def material_name(resource: dict[str, Any]) -> str:
    return (resource.get("description") or "").strip() or UNNAMED_MATERIAL


def quantity_needed(resource: dict[str, Any]) -> float:
    line_qty = to_num(resource.get("line_quantity")) or 1.0
    return to_num(resource.get("quantity")) * line_qty


def consolidate_materials(resources: list[dict[str, Any]]) -> list[ConsolidatedMaterial]:
    """Merge resources by case-insensitive name, keeping first-seen order."""
    materials: dict[str, ConsolidatedMaterial] = {}

    for resource in resources:
        name = material_name(resource)
        key = name.lower()
        attributes = resource.get("attributes")

        material = materials.get(key)
        if material is None:
            description = attributes.get("description") if isinstance(attributes, dict) else None
            material = ConsolidatedMaterial(
                name=name,
                description=description,
                unit=resource.get("unit") or "",
            )
            materials[key] = material

        qty = quantity_needed(resource)
        unit_cost = to_num(resource.get("unit_cost"))
        material.total_quantity += qty
        material.total_cost += qty * unit_cost

        supplier = supplier_name(attributes)
        if supplier:
            existing = next((s for s in material.suppliers if s.name == supplier), None)
            if existing:
                existing.quantity += qty
            else:
                material.suppliers.append(SupplierShare(supplier, qty, unit_cost))

        material.used_in_items.append(
            MaterialUsage(
                wbs_code=resource.get("wbs_code") or "",
                wbs_name=resource.get("wbs_name") or "",
                quantity=qty,
            )
        )

    for material in materials.values():
        if material.total_quantity > 0:
            material.average_unit_cost = material.total_cost / material.total_quantity

    return list(materials.values())


def group_by_supplier(resources: list[dict[str, Any]]) -> list[MaterialsBySupplier]:
    """Resources with a supplier, merged by material name, suppliers by total cost desc."""
    suppliers: dict[str, MaterialsBySupplier] = {}

    for resource in resources:
        supplier = supplier_name(resource.get("attributes"))
        if not supplier:
            continue

        group = suppliers.setdefault(supplier, MaterialsBySupplier(supplier_name=supplier))
        qty = quantity_needed(resource)
        unit_cost = to_num(resource.get("unit_cost"))
        total = qty * unit_cost
        name = material_name(resource)

        group.total_cost += total
        existing = next((m for m in group.materials if m.name == name), None)
        if existing:
            existing.quantity += qty
            existing.total_cost += total
        else:
            group.materials.append(
                SupplierMaterial(
                    name=name,
                    unit=resource.get("unit") or "",
                    quantity=qty,
                    unit_cost=unit_cost,
                    total_cost=total,
                )
            )

    return sorted(suppliers.values(), key=lambda s: s.total_cost, reverse=True)


def purchase_order_lines(resources: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """One line per MATERIAL resource, carrying its WBS node for traceability."""
    lines = []
    for resource in resources:
        qty = quantity_needed(resource)
        unit_cost = to_num(resource.get("unit_cost"))
        lines.append(
            {
                "budgetResourceId": str(resource.get("id")),
                "wbsNodeId": str(resource.get("wbs_node_id")),
                "wbsCode": resource.get("wbs_code") or "",
                "wbsName": resource.get("wbs_name") or "",
                "description": material_name(resource),
                "unit": resource.get("unit") or "",
                "quantity": qty,
                "unitCost": unit_cost,
                "totalCost": qty * unit_cost,
                "supplierName": supplier_name(resource.get("attributes")),
            }
        )
    return lines
