"""
Template registry for PDF documents.
"""

from typing import Type

from obra_erp.core.logging import get_logger
from obra_erp.exporters.documents.base import DocumentTemplate

log = get_logger(__name__)

# Global template registry
_templates: dict[str, DocumentTemplate] = {}


def register_template(template_class: Type[DocumentTemplate]) -> Type[DocumentTemplate]:
    """
    Decorator to register a document template class.

    Usage:
        @register_template
        class BudgetTemplate(DocumentTemplate):
            template_id = "budget"
            ...
    """
    _templates[template_class.template_id] = template_class()
    log.debug("template_registered", template=template_class.template_id)
    return template_class


def get_template(template_id: str) -> DocumentTemplate | None:
    return _templates.get(template_id)


def get_all_templates() -> list[DocumentTemplate]:
    return list(_templates.values())

