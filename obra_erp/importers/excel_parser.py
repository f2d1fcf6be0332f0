"""
Parser for official budget spreadsheets (presupuesto oficial).

Expected layout: somewhere in the first 10 rows a header row naming the
code (ITEM/CÓDIGO), description (DESIGNACIÓN/DESCRIPCIÓN), unit, quantity
and amount columns, followed by one row per WBS item with codes such as
"ARQ 1", "ARQ 1.2", "ARQ 1.2.3".
"""

import re
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import PurePath
from typing import Any, Iterable

from openpyxl import load_workbook

from obra_erp.core.budget import natural_code_key, parent_code
from obra_erp.core.errors import ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.numbers import parse_number

log = get_logger(__name__)

HEADER_SCAN_ROWS = 10
HEADER_MARKERS = ("ITEM", "DESIGNACIÓN", "DESIGNACION", "CÓDIGO", "CODIGO")

CODE_HEADERS = ["ITEM", "CÓDIGO", "CODIGO"]
DESCRIPTION_HEADERS = ["DESIGNACIÓN", "DESIGNACION", "DESCRIPCIÓN", "DESCRIPCION"]
UNIT_HEADERS = ["UNIDAD", "UM", "U.M."]
QUANTITY_HEADERS = ["CANTIDAD", "CANT", "QTY"]
AMOUNT_HEADERS = ["IMPORTE", "PARCIAL", "TOTAL"]

_CODE_PATTERN = re.compile(r"^[A-Z]+\s+\d+")
_NUMERIC_PATH = re.compile(r"\d+(\.\d+)*")


@dataclass
class ExcelRow:
    row_number: int
    code: str
    description: str
    unit: str | None
    quantity: float | None
    amount: float | None


@dataclass
class ImportWarning:
    type: str  # missing_quantity | missing_unit | invalid_hierarchy | duplicate_code
    row_number: int
    code: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "rowNumber": self.row_number,
            "code": self.code,
            "message": self.message,
        }


@dataclass
class ParsedWbsItem:
    code: str
    name: str
    level: int
    unit: str | None
    quantity: float
    amount: float
    unit_price: float
    parent_code: str | None
    is_leaf: bool
    children: list["ParsedWbsItem"] = field(default_factory=list)

    def walk(self) -> Iterable["ParsedWbsItem"]:
        """This item followed by all its descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "level": self.level,
            "unit": self.unit,
            "quantity": self.quantity,
            "amount": self.amount,
            "unitPrice": self.unit_price,
            "parentCode": self.parent_code,
            "isLeaf": self.is_leaf,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class ImportPreview:
    project_name: str
    total_items: int
    total_amount: float
    root_items: list[ParsedWbsItem]
    warnings: list[ImportWarning]

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectName": self.project_name,
            "totalItems": self.total_items,
            "totalAmount": self.total_amount,
            "rootItems": [item.to_dict() for item in self.root_items],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class ExcelParser:
    """Reads the first worksheet of a budget workbook into a WBS tree."""

    def __init__(self):
        self.warnings: list[ImportWarning] = []

    def parse_file(self, data: bytes) -> list[ExcelRow]:
        """Load an .xlsx payload and extract its budget rows."""
        try:
            workbook = load_workbook(BytesIO(data), read_only=True, data_only=True)
        except Exception as e:
            log.warning("excel_read_failed", error=str(e))
            raise ValidationError("Error al leer el archivo") from e
        try:
            sheet = workbook.worksheets[0]
            rows = [list(row) for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()
        return self.extract_rows(rows)

    def extract_rows(self, rows: list[list[Any]]) -> list[ExcelRow]:
        """Find the header, map the columns and read every valid item row."""
        header_index = self._find_header_row(rows)
        headers = rows[header_index]

        code_col = find_column_index(headers, CODE_HEADERS)
        desc_col = find_column_index(headers, DESCRIPTION_HEADERS)
        unit_col = find_column_index(headers, UNIT_HEADERS)
        qty_col = find_column_index(headers, QUANTITY_HEADERS)
        amount_col = find_column_index(headers, AMOUNT_HEADERS)

        if code_col is None or desc_col is None:
            raise ValidationError("No se pudieron detectar las columnas de código y descripción")

        extracted: dict[str, ExcelRow] = {}
        for index in range(header_index + 1, len(rows)):
            row = rows[index]
            if not row:
                continue
            row_number = index + 1

            code = clean_code(_cell(row, code_col))
            if not code:
                continue
            description = clean_string(_cell(row, desc_col))
            if not description:
                continue

            unit = clean_string(_cell(row, unit_col)) if unit_col is not None else None
            quantity = parse_number(_cell(row, qty_col)) if qty_col is not None else None
            amount = parse_number(_cell(row, amount_col)) if amount_col is not None else None

            if unit and quantity is None:
                self.warnings.append(
                    ImportWarning(
                        type="missing_quantity",
                        row_number=row_number,
                        code=code,
                        message=(
                            f'Item "{description}" tiene unidad pero no cantidad. '
                            "Se asumirá cantidad = 1."
                        ),
                    )
                )

            if code in extracted:
                self.warnings.append(
                    ImportWarning(
                        type="duplicate_code",
                        row_number=row_number,
                        code=code,
                        message=(
                            f'El código "{code}" está repetido (fila {extracted[code].row_number}). '
                            "Se usará la última aparición."
                        ),
                    )
                )

            extracted[code] = ExcelRow(
                row_number=row_number,
                code=code,
                description=description,
                unit=unit,
                quantity=quantity,
                amount=amount,
            )

        log.info("excel_rows_extracted", rows=len(extracted), warnings=len(self.warnings))
        return list(extracted.values())

    def build_tree(self, rows: list[ExcelRow]) -> list[ParsedWbsItem]:
        """Link rows into parent/child items; orphans become roots."""
        items: dict[str, ParsedWbsItem] = {}

        for row in rows:
            quantity = row.quantity if row.quantity is not None else 1.0
            unit_price = 0.0
            if row.amount is not None:
                if quantity > 0:
                    unit_price = row.amount / quantity
                else:
                    quantity = 1.0
                    unit_price = row.amount

            items[row.code] = ParsedWbsItem(
                code=row.code,
                name=row.description,
                level=code_level(row.code),
                unit=row.unit,
                quantity=quantity,
                amount=row.amount or 0.0,
                unit_price=unit_price,
                parent_code=parent_code(row.code),
                is_leaf=bool(row.unit),
            )

        roots: list[ParsedWbsItem] = []
        for item in items.values():
            parent = items.get(item.parent_code) if item.parent_code else None
            if parent is None:
                roots.append(item)
            else:
                parent.children.append(item)

        _sort_items(roots)
        return roots

    def preview(self, data: bytes, filename: str) -> ImportPreview:
        """Parse a workbook and summarize what an import would create."""
        self.reset_warnings()
        rows = self.parse_file(data)
        roots = self.build_tree(rows)
        all_items = [item for root in roots for item in root.walk()]
        return ImportPreview(
            project_name=PurePath(filename).stem or "Proyecto importado",
            total_items=len(all_items),
            total_amount=sum(item.amount for item in all_items if item.is_leaf),
            root_items=roots,
            warnings=self.get_warnings(),
        )

    def get_warnings(self) -> list[ImportWarning]:
        return list(self.warnings)

    def reset_warnings(self) -> None:
        self.warnings = []

    @staticmethod
    def _find_header_row(rows: list[list[Any]]) -> int:
        for index, row in enumerate(rows[:HEADER_SCAN_ROWS]):
            if not row:
                continue
            text = " ".join("" if c is None else str(c) for c in row).upper()
            if any(marker in text for marker in HEADER_MARKERS):
                return index
        raise ValidationError(
            "No se encontró el encabezado del presupuesto. "
            "Verifica que el archivo tenga el formato correcto."
        )


def _cell(row: list[Any], index: int | None) -> Any:
    if index is None or index >= len(row):
        return None
    return row[index]


def _sort_items(items: list[ParsedWbsItem]) -> None:
    items.sort(key=lambda i: natural_code_key(i.code))
    for item in items:
        _sort_items(item.children)


def find_column_index(headers: list[Any], names: list[str]) -> int | None:
    """First header cell containing any of `names` (case-insensitive)."""
    for index, header in enumerate(headers):
        text = ("" if header is None else str(header)).upper().strip()
        if any(name in text for name in names):
            return index
    return None


def clean_code(value: Any) -> str | None:
    """Upper-cased code if it looks like "ARQ 1.2", else None."""
    if value is None:
        return None
    text = str(value).strip().upper()
    if not text or not _CODE_PATTERN.match(text):
        return None
    return text


def clean_string(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def code_level(code: str) -> int:
    """Dots in the numeric part of the code: "ARQ 1" is 0, "ARQ 1.2" is 1."""
    match = _NUMERIC_PATH.search(code)
    if not match:
        return 0
    return match.group(0).count(".")
