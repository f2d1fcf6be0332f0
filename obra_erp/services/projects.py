"""
Projects and project membership.
"""

from datetime import date
from typing import Any

import psycopg

from obra_erp.core.database import Database
from obra_erp.core.errors import ConflictError, NotFoundError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import OrgContext, OrgRole, ProjectRole
from obra_erp.core.permissions import require_permission, require_project_area_edit, require_role
from obra_erp.core.validators import ProjectCreate, ProjectUpdate
from obra_erp.services.auth import assert_project_access, get_visible_project_ids, visible_project_filter
from obra_erp.services.outbox import publish_outbox_event

log = get_logger(__name__)

PROJECT_ROOT_FOLDER = "Documentos del proyecto"

_UPDATABLE_FIELDS = (
    "name",
    "client_name",
    "description",
    "location",
    "m2",
    "status",
    "phase",
    "start_date",
    "planned_end_date",
    "active",
)


def project_number(year: int, sequence: int) -> str:
    """PRJ-2026-001 style numbers, sequential per org and year."""
    return f"PRJ-{year}-{sequence:03d}"


def next_project_number(db: Database, org_id: str, year: int, conn=None) -> str:
    prefix = f"PRJ-{year}-"
    row = db.fetch_one(
        """
        SELECT project_number FROM projects
        WHERE org_id = %s AND project_number LIKE %s
        ORDER BY project_number DESC
        LIMIT 1
        """,
        (org_id, prefix + "%"),
        conn=conn,
    )
    last = 0
    if row:
        try:
            last = int(row["project_number"][len(prefix):])
        except ValueError:
            last = 0
    return project_number(year, last + 1)


def insert_project(db: Database, conn, ctx: OrgContext, data: ProjectCreate) -> dict[str, Any]:
    """Insert the project and its root document folder inside an open transaction."""
    db.lock_sequence(conn, f"project:{ctx.org_id}")
    number = next_project_number(db, ctx.org_id, date.today().year, conn=conn)
    try:
        project = db.fetch_one(
            """
            INSERT INTO projects (
                org_id, project_number, name, client_name, location, description,
                m2, start_date, planned_end_date, created_by
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                ctx.org_id,
                number,
                data.name.strip(),
                data.client_name,
                data.location,
                data.description,
                data.m2,
                data.start_date,
                data.planned_end_date,
                ctx.user_id,
            ),
            conn=conn,
        )
    except psycopg.errors.UniqueViolation as e:
        raise ConflictError(f"El número de proyecto {number} ya existe") from e
    db.execute(
        """
        INSERT INTO document_folders (org_id, project_id, parent_id, name, created_by)
        VALUES (%s, %s, NULL, %s, %s)
        """,
        (ctx.org_id, project["id"], PROJECT_ROOT_FOLDER, ctx.user_id),
        conn=conn,
    )
    publish_outbox_event(
        db,
        conn,
        ctx.org_id,
        "PROJECT.CREATED",
        "Project",
        project["id"],
        {"projectNumber": number, "name": project["name"]},
    )
    return project


class ProjectService:
    """CRUD for projects scoped to the caller's organization."""

    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    def create_project(self, ctx: OrgContext, data: ProjectCreate) -> dict[str, Any]:
        require_permission(ctx, "PROJECTS", "create")
        with self.db.transaction() as conn:
            project = insert_project(self.db, conn, ctx, data)
        log.info("project_created", project_id=str(project["id"]), number=project["project_number"])
        return project

    def list_projects(self, ctx: OrgContext) -> list[dict[str, Any]]:
        visible = get_visible_project_ids(self.db, ctx)
        if visible == []:
            return []
        clause, params = visible_project_filter(visible, "id")
        return self.db.fetch_all(
            f"""
            SELECT * FROM projects
            WHERE org_id = %s AND active = TRUE{clause}
            ORDER BY created_at DESC
            """,
            (ctx.org_id, *params),
        )

    def get_project(self, ctx: OrgContext, project_id: str) -> dict[str, Any]:
        assert_project_access(self.db, project_id, ctx)
        project = self.db.fetch_one(
            "SELECT * FROM projects WHERE id = %s AND org_id = %s",
            (project_id, ctx.org_id),
        )
        if not project:
            raise NotFoundError("Proyecto no encontrado")
        return project

    def get_my_role(self, ctx: OrgContext, project_id: str) -> ProjectRole | None:
        return assert_project_access(self.db, project_id, ctx)

    def update_project(self, ctx: OrgContext, project_id: str, data: ProjectUpdate) -> dict[str, Any]:
        require_permission(ctx, "PROJECTS", "edit")
        role = assert_project_access(self.db, project_id, ctx)
        require_project_area_edit(ctx, role, "overview")

        changes = {k: v for k, v in data.changes().items() if k in _UPDATABLE_FIELDS}
        if not changes:
            return self.get_project(ctx, project_id)

        assignments = ", ".join(f"{name} = %s" for name in changes)
        values = [v.value if hasattr(v, "value") else v for v in changes.values()]
        project = self.db.fetch_one(
            f"""
            UPDATE projects SET {assignments}, updated_at = NOW()
            WHERE id = %s AND org_id = %s
            RETURNING *
            """,
            (*values, project_id, ctx.org_id),
        )
        log.info("project_updated", project_id=project_id, fields=list(changes))
        return project

    def archive_project(self, ctx: OrgContext, project_id: str) -> None:
        require_role(ctx.role, OrgRole.ADMIN)
        count = self.db.execute(
            "UPDATE projects SET active = FALSE, updated_at = NOW() WHERE id = %s AND org_id = %s",
            (project_id, ctx.org_id),
        )
        if not count:
            raise NotFoundError("Proyecto no encontrado")
        log.info("project_archived", project_id=project_id)

    # Members

    def list_project_members(self, ctx: OrgContext, project_id: str) -> list[dict[str, Any]]:
        assert_project_access(self.db, project_id, ctx)
        return self.db.fetch_all(
            """
            SELECT pm.id, pm.project_role, pm.org_member_id, m.role AS org_role,
                   u.full_name, u.email
            FROM project_members pm
            JOIN org_members m ON m.id = pm.org_member_id
            JOIN users u ON u.id = m.user_id
            WHERE pm.project_id = %s AND pm.org_id = %s AND pm.active = TRUE
            ORDER BY u.full_name
            """,
            (project_id, ctx.org_id),
        )

    def add_project_member(
        self,
        ctx: OrgContext,
        project_id: str,
        org_member_id: str,
        role: ProjectRole,
    ) -> dict[str, Any]:
        caller_role = assert_project_access(self.db, project_id, ctx)
        require_project_area_edit(ctx, caller_role, "team")

        member = self.db.fetch_one(
            "SELECT id FROM org_members WHERE id = %s AND org_id = %s AND active = TRUE",
            (org_member_id, ctx.org_id),
        )
        if not member:
            raise NotFoundError("Miembro no encontrado")

        try:
            row = self.db.fetch_one(
                """
                INSERT INTO project_members (org_id, project_id, org_member_id, project_role)
                VALUES (%s, %s, %s, %s)
                RETURNING *
                """,
                (ctx.org_id, project_id, org_member_id, ProjectRole(role).value),
            )
        except psycopg.errors.UniqueViolation as e:
            raise ConflictError("El miembro ya está asignado a este proyecto") from e

        log.info("project_member_added", project_id=project_id, org_member_id=org_member_id)
        return row

    def remove_project_member(self, ctx: OrgContext, project_member_id: str) -> None:
        row = self.db.fetch_one(
            "SELECT project_id FROM project_members WHERE id = %s AND org_id = %s",
            (project_member_id, ctx.org_id),
        )
        if not row:
            raise NotFoundError("Miembro del proyecto no encontrado")
        caller_role = assert_project_access(self.db, str(row["project_id"]), ctx)
        require_project_area_edit(ctx, caller_role, "team")
        self.db.execute(
            "DELETE FROM project_members WHERE id = %s AND org_id = %s",
            (project_member_id, ctx.org_id),
        )
        log.info("project_member_removed", project_member_id=project_member_id)
