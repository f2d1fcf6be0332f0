"""
Display formatting for printed documents: numbers in es-AR style, legal id
labels by jurisdiction and the folio line shown in document headers.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from obra_erp.core.numbers import to_num


def _group(value: float, decimals: int) -> str:
    text = f"{abs(value):,.{decimals}f}"
    # 1,234.56 -> 1.234,56
    text = text.replace(",", "\x00").replace(".", ",").replace("\x00", ".")
    return f"-{text}" if value < 0 else text


def format_currency(value: Any, symbol: str = "$") -> str:
    return f"{symbol} {_group(to_num(value), 2)}"


def format_number(value: Any, max_decimals: int = 2) -> str:
    text = _group(to_num(value), max_decimals)
    if "," in text:
        text = text.rstrip("0").rstrip(",")
    return text


def format_percentage(value: Any) -> str:
    if value is None:
        return "—"
    return f"{format_number(value)} %"


def format_date(value: Any) -> str:
    """dd/mm/yyyy for dates, datetimes and ISO strings; other values pass through."""
    if value is None or value == "":
        return ""
    if isinstance(value, (date, datetime)):
        return value.strftime("%d/%m/%Y")
    try:
        return datetime.fromisoformat(str(value)).strftime("%d/%m/%Y")
    except ValueError:
        return str(value)


@dataclass
class LegalIdDisplay:
    label: str
    value: str

    def __str__(self) -> str:
        return f"{self.label}: {self.value}"


def get_legal_id_display(tax_id: str | None, country: str | None) -> LegalIdDisplay | None:
    """
    Label for the organization's tax id: RUC in Panama, CUIT in Argentina,
    "ID Fiscal" elsewhere. None when there is no tax id.
    """
    value = str(tax_id).strip() if tax_id is not None else ""
    if not value:
        return None
    country_key = str(country).strip().lower() if country is not None else ""
    if country_key in ("pa", "panama", "panamá"):
        label = "RUC"
    elif country_key in ("ar", "argentina"):
        label = "CUIT"
    else:
        label = "ID Fiscal"
    return LegalIdDisplay(label=label, value=value)


@dataclass
class HeaderMeta:
    folio_label: str | None = None
    folio_value: str | None = None
    title: str | None = None

    @property
    def folio_line(self) -> str | None:
        if not self.folio_label or not self.folio_value:
            return None
        return f"{self.folio_label}: {self.folio_value}"


def format_date_range(date_from: str | None, date_to: str | None) -> str | None:
    if not date_from and not date_to:
        return None
    left = format_date(date_from) if date_from else "—"
    right = format_date(date_to) if date_to else "—"
    return f"{left} → {right}"


def get_header_meta(template_id: str, params: dict[str, Any]) -> HeaderMeta:
    """Folio label/value shown at the top right of each document type."""
    doc_id = params.get("id")
    if template_id in ("computo", "budget", "materials"):
        return HeaderMeta("Versión", doc_id)
    if template_id == "certification":
        return HeaderMeta("Proyecto", doc_id)
    if template_id == "schedule":
        return HeaderMeta("Cronograma", doc_id)
    if template_id == "transactions":
        return HeaderMeta("Período", format_date_range(params.get("dateFrom"), params.get("dateTo")))
    if template_id == "cashflow":
        return HeaderMeta("Período", format_date_range(params.get("from"), params.get("to")))
    if template_id == "purchases-by-supplier":
        party_id = params.get("partyId")
        return HeaderMeta("Proveedor", party_id) if party_id else HeaderMeta()
    if template_id == "purchase-order":
        return HeaderMeta("OC", doc_id) if doc_id else HeaderMeta()
    return HeaderMeta()
