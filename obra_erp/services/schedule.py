"""
Project schedules: tasks with planned dates and dependencies between them.
"""

from datetime import date
from typing import Any

from obra_erp.core.database import Database
from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import DependencyType, OrgContext
from obra_erp.core.permissions import require_permission, require_project_area_edit
from obra_erp.core.schedule import Dependency, validate_task_dates_against_dependencies
from obra_erp.services.auth import assert_project_access

log = get_logger(__name__)


def _dependency(row: dict[str, Any]) -> Dependency:
    return Dependency(
        planned_start_date=row["planned_start_date"],
        planned_end_date=row["planned_end_date"],
        dependency_type=DependencyType(row["dependency_type"]),
        lag_days=int(row["lag_days"] or 0),
        code=row.get("code"),
    )


class ScheduleService:
    def __init__(self, db: Database | None = None):
        self.db = db or Database()

    def _task_with_schedule(self, ctx: OrgContext, task_id: str, conn=None) -> dict[str, Any]:
        task = self.db.fetch_one(
            """
            SELECT t.*, s.project_id, s.working_days_per_week
            FROM schedule_tasks t JOIN schedules s ON s.id = t.schedule_id
            WHERE t.id = %s AND t.org_id = %s
            """,
            (task_id, ctx.org_id),
            conn=conn,
        )
        if not task:
            raise NotFoundError("Tarea no encontrada")
        return task

    def _guard_edit(self, ctx: OrgContext, project_id: str, conn) -> None:
        require_permission(ctx, "PROJECTS", "edit")
        role = assert_project_access(self.db, project_id, ctx, conn=conn)
        require_project_area_edit(ctx, role, "schedule")

    def list_schedules(self, ctx: OrgContext, project_id: str) -> list[dict[str, Any]]:
        assert_project_access(self.db, project_id, ctx)
        return self.db.fetch_all(
            "SELECT * FROM schedules WHERE project_id = %s AND org_id = %s ORDER BY created_at",
            (project_id, ctx.org_id),
        )

    def create_schedule(
        self,
        ctx: OrgContext,
        project_id: str,
        name: str,
        working_days_per_week: int = 5,
    ) -> dict[str, Any]:
        if working_days_per_week not in (5, 6, 7):
            raise ValidationError("Los días laborables por semana deben ser 5, 6 o 7")
        if not (name or "").strip():
            raise ValidationError("El nombre del cronograma es obligatorio")
        with self.db.transaction() as conn:
            self._guard_edit(ctx, project_id, conn)
            schedule = self.db.fetch_one(
                """
                INSERT INTO schedules (org_id, project_id, name, working_days_per_week)
                VALUES (%s, %s, %s, %s)
                RETURNING *
                """,
                (ctx.org_id, project_id, name.strip(), working_days_per_week),
                conn=conn,
            )
        log.info("schedule_created", schedule_id=str(schedule["id"]), project_id=project_id)
        return schedule

    def get_schedule(self, ctx: OrgContext, schedule_id: str) -> dict[str, Any]:
        """Schedule with its tasks and dependencies."""
        schedule = self.db.fetch_one(
            "SELECT * FROM schedules WHERE id = %s AND org_id = %s",
            (schedule_id, ctx.org_id),
        )
        if not schedule:
            raise NotFoundError("Cronograma no encontrado")
        assert_project_access(self.db, str(schedule["project_id"]), ctx)
        schedule["tasks"] = self.db.fetch_all(
            "SELECT * FROM schedule_tasks WHERE schedule_id = %s ORDER BY sort_order, code",
            (schedule_id,),
        )
        schedule["dependencies"] = self.db.fetch_all(
            """
            SELECT d.* FROM task_dependencies d
            JOIN schedule_tasks t ON t.id = d.successor_id
            WHERE t.schedule_id = %s
            """,
            (schedule_id,),
        )
        return schedule

    def create_task(
        self,
        ctx: OrgContext,
        schedule_id: str,
        code: str,
        name: str,
        planned_start_date: date,
        planned_end_date: date,
        wbs_node_id: str | None = None,
    ) -> dict[str, Any]:
        if not (code or "").strip() or not (name or "").strip():
            raise ValidationError("Código y nombre son obligatorios")
        if planned_end_date < planned_start_date:
            raise ValidationError("La fecha de fin no puede ser anterior a la de inicio")
        with self.db.transaction() as conn:
            schedule = self.db.fetch_one(
                "SELECT * FROM schedules WHERE id = %s AND org_id = %s",
                (schedule_id, ctx.org_id),
                conn=conn,
            )
            if not schedule:
                raise NotFoundError("Cronograma no encontrado")
            self._guard_edit(ctx, str(schedule["project_id"]), conn)
            if wbs_node_id:
                node = self.db.fetch_one(
                    "SELECT id FROM wbs_nodes WHERE id = %s AND project_id = %s AND org_id = %s",
                    (wbs_node_id, schedule["project_id"], ctx.org_id),
                    conn=conn,
                )
                if not node:
                    raise ValidationError("La partida no pertenece al proyecto del cronograma")
            order = self.db.fetch_one(
                "SELECT COALESCE(MAX(sort_order), -1) + 1 AS next FROM schedule_tasks WHERE schedule_id = %s",
                (schedule_id,),
                conn=conn,
            )
            task = self.db.fetch_one(
                """
                INSERT INTO schedule_tasks (
                    org_id, schedule_id, wbs_node_id, code, name,
                    planned_start_date, planned_end_date, sort_order
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    ctx.org_id,
                    schedule_id,
                    wbs_node_id,
                    code.strip(),
                    name.strip(),
                    planned_start_date,
                    planned_end_date,
                    order["next"],
                ),
                conn=conn,
            )
        log.info("schedule_task_created", task_id=str(task["id"]), schedule_id=schedule_id)
        return task

    def add_dependency(
        self,
        ctx: OrgContext,
        predecessor_id: str,
        successor_id: str,
        dependency_type: DependencyType = DependencyType.FS,
        lag_days: int = 0,
    ) -> dict[str, Any]:
        if str(predecessor_id) == str(successor_id):
            raise ValidationError("Una tarea no puede depender de sí misma")
        dependency_type = DependencyType(dependency_type)
        with self.db.transaction() as conn:
            predecessor = self._task_with_schedule(ctx, predecessor_id, conn=conn)
            successor = self._task_with_schedule(ctx, successor_id, conn=conn)
            if predecessor["schedule_id"] != successor["schedule_id"]:
                raise ValidationError("Las tareas deben pertenecer al mismo cronograma")
            self._guard_edit(ctx, str(successor["project_id"]), conn)
            existing = self.db.fetch_one(
                """
                SELECT id FROM task_dependencies
                WHERE predecessor_id = %s AND successor_id = %s
                """,
                (predecessor_id, successor_id),
                conn=conn,
            )
            if existing:
                raise ConflictError("La dependencia ya existe")
            dependency = self.db.fetch_one(
                """
                INSERT INTO task_dependencies (org_id, predecessor_id, successor_id, dependency_type, lag_days)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (ctx.org_id, predecessor_id, successor_id, dependency_type.value, lag_days),
                conn=conn,
            )
        log.info(
            "task_dependency_added",
            predecessor_id=predecessor_id,
            successor_id=successor_id,
            dependency_type=dependency_type.value,
        )
        return dependency

    def remove_dependency(self, ctx: OrgContext, dependency_id: str) -> None:
        with self.db.transaction() as conn:
            row = self.db.fetch_one(
                """
                SELECT d.id, s.project_id
                FROM task_dependencies d
                JOIN schedule_tasks t ON t.id = d.successor_id
                JOIN schedules s ON s.id = t.schedule_id
                WHERE d.id = %s AND d.org_id = %s
                """,
                (dependency_id, ctx.org_id),
                conn=conn,
            )
            if not row:
                raise NotFoundError("Dependencia no encontrada")
            self._guard_edit(ctx, str(row["project_id"]), conn)
            self.db.execute("DELETE FROM task_dependencies WHERE id = %s", (dependency_id,), conn=conn)

    def update_task_dates(
        self,
        ctx: OrgContext,
        task_id: str,
        planned_start_date: date,
        planned_end_date: date,
    ) -> dict[str, Any]:
        """Move a task after checking it against its predecessors and successors."""
        if planned_end_date < planned_start_date:
            raise ValidationError("La fecha de fin no puede ser anterior a la de inicio")
        with self.db.transaction() as conn:
            task = self._task_with_schedule(ctx, task_id, conn=conn)
            self._guard_edit(ctx, str(task["project_id"]), conn)

            predecessors = self.db.fetch_all(
                """
                SELECT t.planned_start_date, t.planned_end_date, t.code, d.dependency_type, d.lag_days
                FROM task_dependencies d JOIN schedule_tasks t ON t.id = d.predecessor_id
                WHERE d.successor_id = %s
                """,
                (task_id,),
                conn=conn,
            )
            successors = self.db.fetch_all(
                """
                SELECT t.planned_start_date, t.planned_end_date, t.code, d.dependency_type, d.lag_days
                FROM task_dependencies d JOIN schedule_tasks t ON t.id = d.successor_id
                WHERE d.predecessor_id = %s
                """,
                (task_id,),
                conn=conn,
            )
            valid, message = validate_task_dates_against_dependencies(
                planned_start_date,
                planned_end_date,
                [_dependency(r) for r in predecessors],
                [_dependency(r) for r in successors],
                int(task["working_days_per_week"] or 5),
            )
            if not valid:
                raise ValidationError(message)

            updated = self.db.fetch_one(
                """
                UPDATE schedule_tasks SET planned_start_date = %s, planned_end_date = %s
                WHERE id = %s
                RETURNING *
                """,
                (planned_start_date, planned_end_date, task_id),
                conn=conn,
            )
        log.info("schedule_task_rescheduled", task_id=task_id)
        return updated
