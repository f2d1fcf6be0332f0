"""
Project endpoints: CRUD, the caller's project role and project members.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from obra_erp.core.database import Database
from obra_erp.core.models import OrgContext, ProjectRole
from obra_erp.core.validators import ProjectCreate, ProjectUpdate
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.projects import ProjectService

router = APIRouter(tags=["projects"])


class AddMemberRequest(BaseModel):
    org_member_id: str
    role: ProjectRole


@router.get("/projects")
def list_projects(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return ProjectService(db).list_projects(ctx)


@router.post("/projects", status_code=201)
def create_project(
    request: ProjectCreate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ProjectService(db).create_project(ctx, request)


@router.get("/projects/{project_id}")
def get_project(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return ProjectService(db).get_project(ctx, project_id)


@router.patch("/projects/{project_id}")
def update_project(
    project_id: str,
    request: ProjectUpdate,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ProjectService(db).update_project(ctx, project_id, request)


@router.delete("/projects/{project_id}", status_code=204)
def archive_project(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    ProjectService(db).archive_project(ctx, project_id)


@router.get("/projects/{project_id}/my-role")
def get_my_role(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    role = ProjectService(db).get_my_role(ctx, project_id)
    return {"role": role.value if role else None}


@router.get("/projects/{project_id}/members")
def list_members(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return ProjectService(db).list_project_members(ctx, project_id)


@router.post("/projects/{project_id}/members", status_code=201)
def add_member(
    project_id: str,
    request: AddMemberRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return ProjectService(db).add_project_member(ctx, project_id, request.org_member_id, request.role)


@router.delete("/project-members/{project_member_id}", status_code=204)
def remove_member(
    project_member_id: str,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    ProjectService(db).remove_project_member(ctx, project_member_id)
