"""
Abstract base class for printable document templates.
"""

from abc import ABC, abstractmethod
from typing import Any

from obra_erp.core.database import Database
from obra_erp.core.models import OrgContext
from obra_erp.exporters.base import ExportConfig


class DocumentTemplate(ABC):
    """A PDF document served by GET /pdf/{template_id}."""

    template_id: str = ""

    def __init__(self, db: Database | None = None):
        self.db = db

    def for_db(self, db: Database) -> "DocumentTemplate":
        """Per-request copy bound to a database handle."""
        return type(self)(db)

    @abstractmethod
    def file_name(self, doc_id: str | None) -> str:
        """Download name for the rendered PDF."""
        pass

    @abstractmethod
    def validate_access(self, ctx: OrgContext, doc_id: str | None) -> None:
        """
        Raise a domain error when the caller cannot see the document.

        Args:
            ctx: Organization context of the caller
            doc_id: Document id from the query string (may be None)
        """
        pass

    @abstractmethod
    def build(self, ctx: OrgContext, doc_id: str | None, query: dict[str, Any]) -> ExportConfig:
        """
        Load the data and describe the document.

        Args:
            ctx: Organization context of the caller
            doc_id: Document id from the query string (may be None)
            query: Remaining query parameters (filters, date range)

        Returns:
            ExportConfig ready for render_pdf
        """
        pass
