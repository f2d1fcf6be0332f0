"""
Sessions, organization context and project access checks.
"""

from datetime import datetime, timedelta, timezone

from obra_erp.config import settings
from obra_erp.core.database import Database
from obra_erp.core.errors import NotFoundError, PermissionDeniedError, UnauthorizedError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import OrgContext, ProjectRole, User
from obra_erp.core.permissions import is_restricted_to_projects
from obra_erp.core.security import generate_token, verify_password

log = get_logger(__name__)


class AuthService:
    """Login/logout and session resolution."""

    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    def login(self, email: str, password: str) -> dict:
        """Verify credentials and open a session; returns token and expiry."""
        user = self.db.fetch_one(
            "SELECT id, email, full_name, password_hash, active FROM users WHERE email = %s",
            (email.strip().lower(),),
        )
        if not user or not user["active"] or not verify_password(password, user["password_hash"]):
            log.warning("login_failed", email=email.strip().lower())
            raise UnauthorizedError("Email o contraseña incorrectos")

        token = generate_token()
        expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.session_ttl_hours)
        self.db.execute(
            "INSERT INTO sessions (user_id, token, expires_at) VALUES (%s, %s, %s)",
            (user["id"], token, expires_at),
        )
        log.info("login_succeeded", user_id=str(user["id"]))
        return {"token": token, "expires_at": expires_at, "user": User.from_row(user)}

    def logout(self, token: str) -> None:
        self.db.execute("DELETE FROM sessions WHERE token = %s", (token,))

    def resolve_session(self, token: str | None) -> User:
        if not token:
            raise UnauthorizedError("Unauthorized")
        row = self.db.fetch_one(
            """
            SELECT u.id, u.email, u.full_name, u.active
            FROM sessions s JOIN users u ON u.id = s.user_id
            WHERE s.token = %s AND s.expires_at > NOW()
            """,
            (token,),
        )
        if not row or not row["active"]:
            raise UnauthorizedError("Unauthorized")
        return User.from_row(row)

    def get_org_context(self, user_id: str) -> OrgContext | None:
        """First active membership of the user (oldest first)."""
        row = self.db.fetch_one(
            """
            SELECT m.id AS member_id, m.user_id, m.org_id, m.role,
                   m.restricted_to_projects, m.custom_permissions,
                   o.name AS org_name
            FROM org_members m JOIN organizations o ON o.id = m.org_id
            WHERE m.user_id = %s AND m.active = TRUE
            ORDER BY m.created_at ASC
            LIMIT 1
            """,
            (user_id,),
        )
        return OrgContext.from_row(row) if row else None


def get_visible_project_ids(db: Database, ctx: OrgContext, conn=None) -> list[str] | None:
    """None means every project of the org; otherwise the member's project ids."""
    if not is_restricted_to_projects(ctx):
        return None
    rows = db.fetch_all(
        "SELECT project_id FROM project_members WHERE org_member_id = %s AND active = TRUE",
        (ctx.member_id,),
        conn=conn,
    )
    return [str(r["project_id"]) for r in rows]


def get_project_member_role(db: Database, project_id: str, ctx: OrgContext, conn=None) -> ProjectRole | None:
    row = db.fetch_one(
        """
        SELECT project_role FROM project_members
        WHERE project_id = %s AND org_member_id = %s AND active = TRUE
        """,
        (project_id, ctx.member_id),
        conn=conn,
    )
    return ProjectRole(row["project_role"]) if row else None


def assert_project_access(db: Database, project_id: str, ctx: OrgContext, conn=None) -> ProjectRole | None:
    """
    Check that the project belongs to the caller's org and, for restricted
    members, that they are assigned to it.

    Returns:
        The caller's project role, or None when they are not a project member.
    """
    project = db.fetch_one(
        "SELECT id FROM projects WHERE id = %s AND org_id = %s",
        (project_id, ctx.org_id),
        conn=conn,
    )
    if not project:
        raise NotFoundError("Proyecto no encontrado")

    role = get_project_member_role(db, project_id, ctx, conn=conn)
    if role is None and is_restricted_to_projects(ctx):
        raise PermissionDeniedError("No tenés acceso a este proyecto")
    return role


def assert_org_reference(
    db: Database,
    table: str,
    row_id: str | None,
    ctx: OrgContext,
    message: str,
    conn=None,
) -> None:
    """Raise NotFoundError unless `row_id` (when given) is a row of `table` in the caller's org."""
    if not row_id:
        return
    row = db.fetch_one(
        f"SELECT id FROM {table} WHERE id = %s AND org_id = %s",
        (row_id, ctx.org_id),
        conn=conn,
    )
    if not row:
        raise NotFoundError(message)


def visible_project_filter(visible: list[str] | None, column: str = "project_id") -> tuple[str, tuple]:
    """SQL fragment restricting `column` to visible projects (empty when unrestricted)."""
    if visible is None:
        return "", ()
    return f" AND {column} = ANY(%s::uuid[])", (visible,)
