"""Unit tests for role-based access rules."""

import pytest

from obra_erp.core.errors import PermissionDeniedError
from obra_erp.core.models import OrgRole, ProjectRole
from obra_erp.core.permissions import (
    can_access_project_area,
    can_edit_project_area,
    get_effective_permissions,
    has_min_role,
    has_permission,
    is_restricted_to_projects,
    require_permission,
    require_project_area_edit,
    require_role,
    validate_custom_permissions,
)


class TestRoles:
    """Tests for the organization role hierarchy."""

    def test_hierarchy(self):
        assert has_min_role(OrgRole.OWNER, OrgRole.ADMIN)
        assert has_min_role("ACCOUNTANT", "EDITOR")
        assert not has_min_role(OrgRole.VIEWER, OrgRole.EDITOR)

    def test_require_role_raises(self):
        with pytest.raises(PermissionDeniedError):
            require_role(OrgRole.EDITOR, OrgRole.ADMIN)

    def test_restriction_only_for_editor_and_viewer(self, make_ctx):
        assert is_restricted_to_projects(make_ctx(OrgRole.EDITOR, restricted=True))
        assert not is_restricted_to_projects(make_ctx(OrgRole.ADMIN, restricted=True))


class TestModulePermissions:
    """Tests for module permissions and member overrides."""

    def test_defaults(self, make_ctx):
        assert has_permission(make_ctx(OrgRole.EDITOR), "BUDGET", "edit")
        assert not has_permission(make_ctx(OrgRole.EDITOR), "TEAM", "create")
        assert has_permission(make_ctx(OrgRole.ACCOUNTANT), "FINANCE", "create")
        assert not has_permission(make_ctx(OrgRole.VIEWER), "PROJECTS", "edit")

    def test_overrides_replace_module_actions(self):
        effective = get_effective_permissions(OrgRole.EDITOR, {"BUDGET": ["view"]})
        assert effective["BUDGET"] == ["view"]
        assert effective["FINANCE"] == ["view", "create", "edit"]

    def test_owner_ignores_overrides(self):
        effective = get_effective_permissions(OrgRole.OWNER, {"BUDGET": []})
        assert effective["BUDGET"] == ["view", "create", "edit", "delete"]

    def test_require_permission(self, make_ctx):
        with pytest.raises(PermissionDeniedError):
            require_permission(make_ctx(OrgRole.VIEWER), "FINANCE", "create")

    def test_validate_custom_permissions(self):
        cleaned = validate_custom_permissions({"BUDGET": ["edit", "view", "fly"], "UNKNOWN": ["view"]})
        assert cleaned == {"BUDGET": ["view", "edit"]}


class TestProjectAreas:
    """Tests for the project role matrix."""

    def test_superintendent_cannot_edit_team(self):
        assert can_access_project_area(ProjectRole.SUPERINTENDENT, "team")
        assert not can_edit_project_area(ProjectRole.SUPERINTENDENT, "team")
        assert can_edit_project_area(ProjectRole.SUPERINTENDENT, "budget")

    def test_unknown_role_has_no_access(self):
        assert not can_access_project_area(None, "budget")
        assert not can_edit_project_area("NOPE", "budget")

    def test_require_project_area_edit(self, make_ctx):
        editor = make_ctx(OrgRole.EDITOR)
        require_project_area_edit(editor, None, "budget")
        require_project_area_edit(make_ctx(OrgRole.ADMIN), ProjectRole.VIEWER, "budget")
        with pytest.raises(PermissionDeniedError):
            require_project_area_edit(editor, ProjectRole.VIEWER, "budget")
        with pytest.raises(PermissionDeniedError):
            require_project_area_edit(make_ctx(OrgRole.EDITOR, restricted=True), None, "budget")
