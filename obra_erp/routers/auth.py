"""
Authentication endpoints.

POST /auth/login                    — open a session (token + cookie)
POST /auth/logout                   — close the current session
GET  /auth/me                       — user, organization and effective permissions
POST /auth/password-reset           — email a reset link
POST /auth/password-reset/confirm   — set a new password with the emailed token
POST /invitations/accept            — create the account for an invitation
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from obra_erp.config import settings
from obra_erp.core.database import Database
from obra_erp.core.logging import get_logger
from obra_erp.core.models import OrgContext, User
from obra_erp.core.permissions import get_effective_permissions
from obra_erp.routers.deps import SESSION_COOKIE, get_current_user, get_db, get_org_context, get_session_token
from obra_erp.services.auth import AuthService
from obra_erp.services.team import TeamService

log = get_logger(__name__)
router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str = Field(min_length=1)


class AcceptInvitationRequest(BaseModel):
    token: str
    full_name: str = Field(min_length=1, max_length=255)
    password: str


@router.post("/auth/login")
def login(request: LoginRequest, response: Response, db: Database = Depends(get_db)):
    result = AuthService(db).login(request.email, request.password)
    response.set_cookie(
        SESSION_COOKIE,
        result["token"],
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
    )
    return {
        "token": result["token"],
        "expires_at": result["expires_at"].isoformat(),
        "user": asdict(result["user"]),
    }


@router.post("/auth/logout")
def logout(
    response: Response,
    token: str | None = Depends(get_session_token),
    db: Database = Depends(get_db),
):
    if token:
        AuthService(db).logout(token)
    response.delete_cookie(SESSION_COOKIE)
    return {"status": "ok"}


@router.get("/auth/me")
def me(
    user: User = Depends(get_current_user),
    ctx: OrgContext = Depends(get_org_context),
):
    return {
        "user": asdict(user),
        "organization": {"id": ctx.org_id, "name": ctx.org_name},
        "member_id": ctx.member_id,
        "role": ctx.role.value,
        "restricted_to_projects": ctx.restricted_to_projects,
        "permissions": get_effective_permissions(ctx.role, ctx.custom_permissions),
    }


@router.post("/auth/password-reset")
def request_password_reset(request: PasswordResetRequest, db: Database = Depends(get_db)):
    # same answer whether or not the email exists
    TeamService(db).request_password_reset(request.email)
    return {"status": "ok"}


@router.post("/auth/password-reset/confirm")
def confirm_password_reset(request: PasswordResetConfirm, db: Database = Depends(get_db)):
    TeamService(db).reset_password(request.token, request.new_password)
    return {"status": "ok"}


@router.post("/invitations/accept")
def accept_invitation(request: AcceptInvitationRequest, db: Database = Depends(get_db)):
    return TeamService(db).accept_invitation(request.token, request.full_name, request.password)
