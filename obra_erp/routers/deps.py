"""
Request dependencies: database handle, session user and organization context.
"""

from fastapi import Depends, Header, Request

from obra_erp.core.database import Database
from obra_erp.core.errors import PermissionDeniedError
from obra_erp.core.logging import bind_request_context
from obra_erp.core.models import OrgContext, User
from obra_erp.services.auth import AuthService

SESSION_COOKIE = "session"


def get_db() -> Database:
    return Database()


def get_session_token(request: Request, authorization: str | None = Header(default=None)) -> str | None:
    """Bearer token from the Authorization header, falling back to the session cookie."""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE)


def get_current_user(
    token: str | None = Depends(get_session_token),
    db: Database = Depends(get_db),
) -> User:
    return AuthService(db).resolve_session(token)


def get_org_context(
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
) -> OrgContext:
    ctx = AuthService(db).get_org_context(user.id)
    if ctx is None:
        raise PermissionDeniedError("El usuario no pertenece a ninguna organización")
    bind_request_context(user_id=ctx.user_id, org_id=ctx.org_id)
    return ctx
