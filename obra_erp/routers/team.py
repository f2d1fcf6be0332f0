"""
Team management: invitations, members, roles and custom permissions.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from obra_erp.core.database import Database
from obra_erp.core.models import OrgContext, OrgRole, User
from obra_erp.routers.deps import get_current_user, get_db, get_org_context
from obra_erp.services.team import TeamService

router = APIRouter(tags=["team"])


class InviteRequest(BaseModel):
    email: str
    role: OrgRole


class RoleRequest(BaseModel):
    role: OrgRole


class RestrictRequest(BaseModel):
    restricted: bool


class PermissionsRequest(BaseModel):
    permissions: dict[str, list[str]]


# Invitations

@router.get("/team/invitations")
def pending_invitations(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return TeamService(db).get_pending_invitations(ctx)


@router.post("/team/invitations", status_code=201)
def invite_user(
    request: InviteRequest,
    user: User = Depends(get_current_user),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return TeamService(db).invite_user(ctx, request.email, request.role, user.full_name or user.email)


@router.post("/team/invitations/{invitation_id}/resend")
def resend_invitation(
    invitation_id: str,
    user: User = Depends(get_current_user),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    sent = TeamService(db).resend_invitation_email(ctx, invitation_id, user.full_name or user.email)
    return {"email_sent": sent}


@router.delete("/team/invitations/{invitation_id}", status_code=204)
def revoke_invitation(invitation_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    TeamService(db).revoke_invitation(ctx, invitation_id)


# Members

@router.get("/team/members")
def list_members(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return TeamService(db).get_org_members(ctx)


@router.patch("/team/members/{member_id}/role")
def update_role(
    member_id: str,
    request: RoleRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return TeamService(db).update_member_role(ctx, member_id, request.role)


@router.post("/team/members/{member_id}/toggle-status")
def toggle_status(member_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return TeamService(db).toggle_member_status(ctx, member_id)


@router.patch("/team/members/{member_id}/restricted")
def set_restricted(
    member_id: str,
    request: RestrictRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return TeamService(db).set_member_restricted_to_projects(ctx, member_id, request.restricted)


@router.get("/team/members/{member_id}/permissions")
def effective_permissions(member_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return TeamService(db).get_effective_permissions(ctx, member_id)


@router.put("/team/members/{member_id}/permissions")
def update_permissions(
    member_id: str,
    request: PermissionsRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return TeamService(db).update_member_permissions(ctx, member_id, request.permissions)


@router.delete("/team/members/{member_id}/permissions")
def reset_permissions(member_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return TeamService(db).reset_member_permissions(ctx, member_id)


@router.get("/team/members/{member_id}/projects")
def member_projects(member_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return TeamService(db).get_project_assignments_for_member(ctx, member_id)
