"""
Schedules, tasks and task dependencies.
"""

from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from obra_erp.core.database import Database
from obra_erp.core.models import DependencyType, OrgContext
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.schedule import ScheduleService

router = APIRouter(tags=["schedule"])


class ScheduleRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    working_days_per_week: int = 5


class TaskRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    planned_start_date: date
    planned_end_date: date
    wbs_node_id: str | None = None


class TaskDatesRequest(BaseModel):
    planned_start_date: date
    planned_end_date: date


class DependencyRequest(BaseModel):
    predecessor_id: str
    successor_id: str
    dependency_type: DependencyType = DependencyType.FS
    lag_days: int = 0


@router.get("/projects/{project_id}/schedules")
def list_schedules(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return ScheduleService(db).list_schedules(ctx, project_id)


@router.post("/projects/{project_id}/schedules", status_code=201)
def create_schedule(
    project_id: str,
    request: ScheduleRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ScheduleService(db).create_schedule(ctx, project_id, request.name, request.working_days_per_week)


@router.get("/schedules/{schedule_id}")
def get_schedule(schedule_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return ScheduleService(db).get_schedule(ctx, schedule_id)


@router.post("/schedules/{schedule_id}/tasks", status_code=201)
def create_task(
    schedule_id: str,
    request: TaskRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ScheduleService(db).create_task(
        ctx,
        schedule_id,
        request.code,
        request.name,
        request.planned_start_date,
        request.planned_end_date,
        request.wbs_node_id,
    )


@router.patch("/schedule-tasks/{task_id}/dates")
def update_task_dates(
    task_id: str,
    request: TaskDatesRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ScheduleService(db).update_task_dates(
        ctx, task_id, request.planned_start_date, request.planned_end_date
    )


@router.post("/task-dependencies", status_code=201)
def add_dependency(
    request: DependencyRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ScheduleService(db).add_dependency(
        ctx, request.predecessor_id, request.successor_id, request.dependency_type, request.lag_days
    )


@router.delete("/task-dependencies/{dependency_id}", status_code=204)
def remove_dependency(dependency_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    ScheduleService(db).remove_dependency(ctx, dependency_id)
