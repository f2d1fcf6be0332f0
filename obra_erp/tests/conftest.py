"""
Shared pytest fixtures for obra_erp tests.
"""

import pytest
from unittest.mock import MagicMock

from obra_erp.core.models import OrgContext, OrgRole


def build_ctx(role: OrgRole = OrgRole.OWNER, restricted: bool = False, custom=None) -> OrgContext:
    return OrgContext(
        user_id="user-1",
        org_id="org-1",
        org_name="Constructora Andina",
        member_id="member-1",
        role=role,
        restricted_to_projects=restricted,
        custom_permissions=custom,
    )


@pytest.fixture
def make_ctx():
    """Factory for contexts with a given role, restriction and overrides."""
    return build_ctx


@pytest.fixture
def owner_ctx() -> OrgContext:
    return build_ctx(OrgRole.OWNER)


@pytest.fixture
def admin_ctx() -> OrgContext:
    return build_ctx(OrgRole.ADMIN)


@pytest.fixture
def editor_ctx() -> OrgContext:
    return build_ctx(OrgRole.EDITOR)


@pytest.fixture
def viewer_ctx() -> OrgContext:
    return build_ctx(OrgRole.VIEWER)


@pytest.fixture
def mock_db() -> MagicMock:
    """Database double; transaction() yields a fake connection and propagates errors."""
    db = MagicMock()
    db.transaction.return_value.__enter__.return_value = MagicMock(name="conn")
    db.transaction.return_value.__exit__.return_value = False
    db.fetch_one.return_value = None
    db.fetch_all.return_value = []
    db.execute.return_value = 1
    return db


@pytest.fixture
def sample_version() -> dict:
    return {
        "id": "ver-1",
        "project_id": "proj-1",
        "version_code": "V1",
        "status": "DRAFT",
        "markup_mode": "GLOBAL",
        "global_overhead_pct": 10,
        "global_financial_pct": 0,
        "global_profit_pct": 10,
        "global_tax_pct": 0,
    }
