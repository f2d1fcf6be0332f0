"""
Role-based access rules.

Three layers:
- organization role hierarchy (require_role)
- per-module permissions with optional member overrides (has_permission)
- per-project area matrix for project roles (can_access_project_area / can_edit_project_area)
"""

from typing import Iterable

from obra_erp.core.errors import PermissionDeniedError
from obra_erp.core.models import OrgContext, OrgRole, ProjectRole

ROLE_RANK: dict[OrgRole, int] = {
    OrgRole.OWNER: 5,
    OrgRole.ADMIN: 4,
    OrgRole.ACCOUNTANT: 3,
    OrgRole.EDITOR: 2,
    OrgRole.VIEWER: 1,
}

# Roles that always see every project in the organization
UNRESTRICTED_ROLES: set[OrgRole] = {OrgRole.OWNER, OrgRole.ADMIN, OrgRole.ACCOUNTANT}

MODULES: tuple[str, ...] = (
    "PROJECTS",
    "BUDGET",
    "FINANCE",
    "INVENTORY",
    "DOCUMENTS",
    "SUPPLIERS",
    "TEAM",
    "REPORTS",
)

ACTIONS: tuple[str, ...] = ("view", "create", "edit", "delete")

_ALL = list(ACTIONS)
_VIEW = ["view"]
_WRITE = ["view", "create", "edit"]

DEFAULT_PERMISSIONS: dict[OrgRole, dict[str, list[str]]] = {
    OrgRole.OWNER: {m: _ALL for m in MODULES},
    OrgRole.ADMIN: {m: _ALL for m in MODULES},
    OrgRole.ACCOUNTANT: {
        **{m: _VIEW for m in MODULES},
        "FINANCE": _WRITE,
        "SUPPLIERS": _WRITE,
        "REPORTS": _WRITE,
    },
    OrgRole.EDITOR: {**{m: _WRITE for m in MODULES}, "TEAM": _VIEW},
    OrgRole.VIEWER: {m: _VIEW for m in MODULES},
}

PROJECT_AREAS: tuple[str, ...] = (
    "overview",
    "dashboard",
    "budget",
    "schedule",
    "dailyReports",
    "finance",
    "team",
    "inventory",
    "suppliers",
    "documents",
    "quality",
    "reports",
)

# area -> (view, edit)
PROJECT_ROLE_MATRIX: dict[ProjectRole, dict[str, tuple[bool, bool]]] = {
    ProjectRole.MANAGER: {a: (True, True) for a in PROJECT_AREAS},
    ProjectRole.SUPERINTENDENT: {
        **{a: (True, True) for a in PROJECT_AREAS},
        "team": (True, False),
    },
    ProjectRole.VIEWER: {a: (True, False) for a in PROJECT_AREAS},
}


def has_min_role(actual: OrgRole | str, minimum: OrgRole | str) -> bool:
    """True when `actual` is at or above `minimum` in the role hierarchy."""
    return ROLE_RANK[OrgRole(actual)] >= ROLE_RANK[OrgRole(minimum)]


def require_role(actual: OrgRole | str, minimum: OrgRole | str) -> None:
    """Raise PermissionDeniedError unless `actual` is at least `minimum`."""
    if not has_min_role(actual, minimum):
        raise PermissionDeniedError(
            f"Esta acción requiere rol {OrgRole(minimum).value} o superior"
        )


def is_restricted_to_projects(ctx: OrgContext) -> bool:
    """Only EDITOR and VIEWER members can be limited to their assigned projects."""
    if ctx.role in UNRESTRICTED_ROLES:
        return False
    return bool(ctx.restricted_to_projects)


def get_effective_permissions(
    role: OrgRole | str,
    custom_permissions: dict[str, list[str]] | None = None,
) -> dict[str, list[str]]:
    """Role defaults with member overrides applied per module (never for OWNER)."""
    role = OrgRole(role)
    effective = {module: list(actions) for module, actions in DEFAULT_PERMISSIONS[role].items()}
    if role == OrgRole.OWNER or not custom_permissions:
        return effective
    for module, actions in custom_permissions.items():
        if module in effective:
            effective[module] = [a for a in ACTIONS if a in set(actions)]
    return effective


def has_permission(ctx: OrgContext, module: str, action: str) -> bool:
    permissions = get_effective_permissions(ctx.role, ctx.custom_permissions)
    return action in permissions.get(module, [])


def require_permission(ctx: OrgContext, module: str, action: str) -> None:
    if not has_permission(ctx, module, action):
        raise PermissionDeniedError(f"No tenés permiso para {action} en {module}")


def validate_custom_permissions(permissions: dict[str, Iterable[str]]) -> dict[str, list[str]]:
    """Drop unknown modules/actions and normalize ordering."""
    cleaned: dict[str, list[str]] = {}
    for module, actions in permissions.items():
        if module not in MODULES:
            continue
        wanted = set(actions)
        cleaned[module] = [a for a in ACTIONS if a in wanted]
    return cleaned


def _project_role(role: ProjectRole | str | None) -> ProjectRole | None:
    if role is None:
        return None
    try:
        return ProjectRole(role)
    except ValueError:
        return None


def can_access_project_area(role: ProjectRole | str | None, area: str) -> bool:
    project_role = _project_role(role)
    if project_role is None:
        return False
    return PROJECT_ROLE_MATRIX[project_role].get(area, (False, False))[0]


def can_edit_project_area(role: ProjectRole | str | None, area: str) -> bool:
    project_role = _project_role(role)
    if project_role is None:
        return False
    return PROJECT_ROLE_MATRIX[project_role].get(area, (False, False))[1]


def require_project_area_edit(
    ctx: OrgContext,
    project_role: ProjectRole | str | None,
    area: str,
) -> None:
    """
    Enforce project-level edit rights for `area`.

    Members outside a project are governed by their org role alone; restricted
    members and project members need the area in their project role.
    OWNER and ADMIN are never limited by a project role.
    """
    if ctx.role in (OrgRole.OWNER, OrgRole.ADMIN):
        return
    if project_role is None and not is_restricted_to_projects(ctx):
        return
    if not can_edit_project_area(project_role, area):
        raise PermissionDeniedError("No tenés permiso para editar esta sección del proyecto")
