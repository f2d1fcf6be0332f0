"""
Organization members, invitations, per-member permission overrides and
the password reset flow.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from psycopg.types.json import Json

from obra_erp.config import settings
from obra_erp.core.database import Database
from obra_erp.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import ORG_ROLE_LABELS, InvitationStatus, OrgContext, OrgRole
from obra_erp.core.permissions import (
    get_effective_permissions,
    require_permission,
    require_role,
    validate_custom_permissions,
)
from obra_erp.core.security import generate_token, hash_password, hash_token
from obra_erp.services.email import EmailClient, reset_token_expires
from obra_erp.services.outbox import publish_outbox_event

log = get_logger(__name__)

INVITATION_TTL = timedelta(days=7)
MIN_PASSWORD_LENGTH = 8

MEMBERS_SQL = """
    SELECT m.id, m.user_id, m.role, m.active, m.restricted_to_projects,
           m.custom_permissions, m.created_at, u.email, u.full_name
    FROM org_members m JOIN users u ON u.id = m.user_id
    WHERE m.org_id = %s
"""


def _validate_password(password: str) -> None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres")


class TeamService:
    def __init__(self, db: Database | None = None, email: EmailClient | None = None):
        self.db = db or Database()
        self.email = email or EmailClient()

    # Invitations

    def _send_invitation(self, ctx: OrgContext, inviter_name: str, email: str, role: str, token: str) -> bool:
        result = self.email.send_invitation_email(
            to=email,
            inviter_name=inviter_name,
            org_name=ctx.org_name,
            invitation_url=f"{settings.invitation_url}/{token}",
            role=ORG_ROLE_LABELS.get(role, role),
        )
        if not result.success:
            log.warning("invitation_email_failed", email=email, error=result.error)
        return result.success

    def invite_user(self, ctx: OrgContext, email: str, role: OrgRole, inviter_name: str = "") -> dict[str, Any]:
        """
        Create or refresh the invitation for `email`.

        The invitation is kept even when the email cannot be sent; the
        result carries `email_sent` so the caller can offer a resend.
        """
        require_permission(ctx, "TEAM", "create")
        role = OrgRole(role)
        if role == OrgRole.OWNER:
            raise ValidationError("No se puede invitar con rol OWNER")
        email = (email or "").strip().lower()
        if "@" not in email:
            raise ValidationError("Email inválido")

        with self.db.transaction() as conn:
            member = self.db.fetch_one(
                """
                SELECT m.id FROM org_members m JOIN users u ON u.id = m.user_id
                WHERE m.org_id = %s AND u.email = %s
                """,
                (ctx.org_id, email),
                conn=conn,
            )
            if member:
                raise ConflictError("El usuario ya es miembro de la organización")
            pending = self.db.fetch_one(
                """
                SELECT id FROM invitations
                WHERE org_id = %s AND email = %s AND status = 'PENDING' AND expires_at > NOW()
                """,
                (ctx.org_id, email),
                conn=conn,
            )
            if pending:
                raise ConflictError("Ya existe una invitación pendiente para este email")

            token = generate_token()
            invitation = self.db.fetch_one(
                """
                INSERT INTO invitations (org_id, email, role, token, status, invited_by, expires_at)
                VALUES (%s, %s, %s, %s, 'PENDING', %s, %s)
                ON CONFLICT (org_id, email) DO UPDATE SET
                    role = EXCLUDED.role,
                    token = EXCLUDED.token,
                    status = 'PENDING',
                    invited_by = EXCLUDED.invited_by,
                    expires_at = EXCLUDED.expires_at,
                    accepted_at = NULL
                RETURNING id, email, role, status, expires_at
                """,
                (
                    ctx.org_id,
                    email,
                    role.value,
                    token,
                    ctx.user_id,
                    datetime.now(timezone.utc) + INVITATION_TTL,
                ),
                conn=conn,
            )
            publish_outbox_event(
                self.db, conn, ctx.org_id, "ORG_MEMBER.INVITED", "Invitation", invitation["id"],
                {"email": email, "role": role.value},
            )

        log.info("invitation_created", invitation_id=str(invitation["id"]), role=role.value)
        sent = self._send_invitation(ctx, inviter_name, email, role.value, token)
        return {**invitation, "email_sent": sent}

    def get_pending_invitations(self, ctx: OrgContext) -> list[dict[str, Any]]:
        require_permission(ctx, "TEAM", "view")
        return self.db.fetch_all(
            """
            SELECT i.id, i.email, i.role, i.status, i.expires_at, i.created_at,
                   u.full_name AS invited_by_name
            FROM invitations i LEFT JOIN users u ON u.id = i.invited_by
            WHERE i.org_id = %s AND i.status = 'PENDING'
            ORDER BY i.created_at DESC
            """,
            (ctx.org_id,),
        )

    def revoke_invitation(self, ctx: OrgContext, invitation_id: str) -> None:
        require_permission(ctx, "TEAM", "delete")
        count = self.db.execute(
            """
            UPDATE invitations SET status = 'REVOKED'
            WHERE id = %s AND org_id = %s AND status = 'PENDING'
            """,
            (invitation_id, ctx.org_id),
        )
        if not count:
            raise NotFoundError("Invitación pendiente no encontrada")
        log.info("invitation_revoked", invitation_id=invitation_id)

    def resend_invitation_email(self, ctx: OrgContext, invitation_id: str, inviter_name: str = "") -> bool:
        require_role(ctx.role, OrgRole.ADMIN)
        invitation = self.db.fetch_one(
            """
            UPDATE invitations SET token = %s, expires_at = %s
            WHERE id = %s AND org_id = %s AND status = 'PENDING'
            RETURNING email, role, token
            """,
            (generate_token(), datetime.now(timezone.utc) + INVITATION_TTL, invitation_id, ctx.org_id),
        )
        if not invitation:
            raise NotFoundError("Invitación pendiente no encontrada")
        return self._send_invitation(ctx, inviter_name, invitation["email"], invitation["role"], invitation["token"])

    def accept_invitation(self, token: str, full_name: str, password: str) -> dict[str, Any]:
        """Create the user (if new) and the membership, then close the invitation."""
        with self.db.transaction() as conn:
            invitation = self.db.fetch_one(
                "SELECT * FROM invitations WHERE token = %s",
                (token,),
                conn=conn,
            )
            if not invitation or invitation["status"] != InvitationStatus.PENDING.value:
                raise NotFoundError("Invitación inválida o ya utilizada")
            if invitation["expires_at"] <= datetime.now(timezone.utc):
                self.db.execute(
                    "UPDATE invitations SET status = 'EXPIRED' WHERE id = %s",
                    (invitation["id"],),
                    conn=conn,
                )
                expired = True
            else:
                expired = False

            if not expired:
                user = self.db.fetch_one(
                    "SELECT id FROM users WHERE email = %s", (invitation["email"],), conn=conn
                )
                if not user:
                    _validate_password(password)
                    user = self.db.fetch_one(
                        """
                        INSERT INTO users (email, full_name, password_hash)
                        VALUES (%s, %s, %s)
                        RETURNING id
                        """,
                        (invitation["email"], (full_name or "").strip(), hash_password(password)),
                        conn=conn,
                    )
                member = self.db.fetch_one(
                    "SELECT id FROM org_members WHERE org_id = %s AND user_id = %s",
                    (invitation["org_id"], user["id"]),
                    conn=conn,
                )
                if not member:
                    member = self.db.fetch_one(
                        """
                        INSERT INTO org_members (org_id, user_id, role)
                        VALUES (%s, %s, %s)
                        RETURNING id
                        """,
                        (invitation["org_id"], user["id"], invitation["role"]),
                        conn=conn,
                    )
                self.db.execute(
                    "UPDATE invitations SET status = 'ACCEPTED', accepted_at = NOW() WHERE id = %s",
                    (invitation["id"],),
                    conn=conn,
                )

        # raised after commit so the EXPIRED mark is kept
        if expired:
            log.info("invitation_expired", invitation_id=str(invitation["id"]))
            raise ValidationError("La invitación expiró")
        log.info("invitation_accepted", invitation_id=str(invitation["id"]), user_id=str(user["id"]))
        return {"user_id": str(user["id"]), "member_id": str(member["id"]), "org_id": str(invitation["org_id"])}

    # Members

    def get_org_members(self, ctx: OrgContext) -> list[dict[str, Any]]:
        require_permission(ctx, "TEAM", "view")
        return self.db.fetch_all(MEMBERS_SQL + " ORDER BY m.created_at", (ctx.org_id,))

    def _load_member(self, ctx: OrgContext, member_id: str, conn=None) -> dict[str, Any]:
        member = self.db.fetch_one(
            MEMBERS_SQL + " AND m.id = %s",
            (ctx.org_id, member_id),
            conn=conn,
        )
        if not member:
            raise NotFoundError("Miembro no encontrado")
        return member

    def _guard_target(self, ctx: OrgContext, member: dict[str, Any], allow_self: bool = False) -> None:
        if member["role"] == OrgRole.OWNER.value:
            raise PermissionDeniedError("No se puede modificar al propietario")
        if not allow_self and str(member["id"]) == str(ctx.member_id):
            raise PermissionDeniedError("No podés modificar tu propio usuario")

    def _update_member(self, ctx: OrgContext, member_id: str, changes: dict[str, Any], conn) -> dict[str, Any]:
        assignments = ", ".join(f"{name} = %s" for name in changes)
        updated = self.db.fetch_one(
            f"UPDATE org_members SET {assignments} WHERE id = %s AND org_id = %s RETURNING *",
            (*changes.values(), member_id, ctx.org_id),
            conn=conn,
        )
        publish_outbox_event(
            self.db, conn, ctx.org_id, "ORG_MEMBER.UPDATED", "OrgMember", member_id,
            {"fields": sorted(changes)},
        )
        return updated

    def update_member_role(self, ctx: OrgContext, member_id: str, role: OrgRole) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.ADMIN)
        role = OrgRole(role)
        if role == OrgRole.OWNER:
            raise ValidationError("No se puede asignar el rol OWNER")
        with self.db.transaction() as conn:
            member = self._load_member(ctx, member_id, conn=conn)
            self._guard_target(ctx, member)
            changes: dict[str, Any] = {"role": role.value}
            # restriction only applies to EDITOR and VIEWER
            if role not in (OrgRole.EDITOR, OrgRole.VIEWER):
                changes["restricted_to_projects"] = False
            updated = self._update_member(ctx, member_id, changes, conn)
        log.info("member_role_updated", member_id=member_id, role=role.value)
        return updated

    def toggle_member_status(self, ctx: OrgContext, member_id: str) -> dict[str, Any]:
        require_permission(ctx, "TEAM", "edit")
        with self.db.transaction() as conn:
            member = self._load_member(ctx, member_id, conn=conn)
            self._guard_target(ctx, member)
            updated = self._update_member(ctx, member_id, {"active": not member["active"]}, conn)
        log.info("member_status_toggled", member_id=member_id, active=updated["active"])
        return updated

    def set_member_restricted_to_projects(self, ctx: OrgContext, member_id: str, restricted: bool) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.ADMIN)
        with self.db.transaction() as conn:
            member = self._load_member(ctx, member_id, conn=conn)
            if member["role"] not in (OrgRole.EDITOR.value, OrgRole.VIEWER.value):
                raise ValidationError("Solo miembros EDITOR o VIEWER pueden restringirse a proyectos")
            updated = self._update_member(ctx, member_id, {"restricted_to_projects": bool(restricted)}, conn)
        log.info("member_restriction_updated", member_id=member_id, restricted=bool(restricted))
        return updated

    def update_member_permissions(
        self,
        ctx: OrgContext,
        member_id: str,
        permissions: dict[str, list[str]],
    ) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.ADMIN)
        cleaned = validate_custom_permissions(permissions)
        with self.db.transaction() as conn:
            member = self._load_member(ctx, member_id, conn=conn)
            self._guard_target(ctx, member)
            updated = self._update_member(ctx, member_id, {"custom_permissions": Json(cleaned)}, conn)
        log.info("member_permissions_updated", member_id=member_id, modules=sorted(cleaned))
        return updated

    def reset_member_permissions(self, ctx: OrgContext, member_id: str) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.ADMIN)
        with self.db.transaction() as conn:
            member = self._load_member(ctx, member_id, conn=conn)
            self._guard_target(ctx, member)
            updated = self._update_member(ctx, member_id, {"custom_permissions": None}, conn)
        log.info("member_permissions_reset", member_id=member_id)
        return updated

    def get_effective_permissions(self, ctx: OrgContext, member_id: str) -> dict[str, Any]:
        member = self._load_member(ctx, member_id)
        return {
            "role": member["role"],
            "custom": member["custom_permissions"],
            "effective": get_effective_permissions(member["role"], member["custom_permissions"]),
        }

    def get_project_assignments_for_member(self, ctx: OrgContext, member_id: str) -> list[dict[str, Any]]:
        self._load_member(ctx, member_id)
        return self.db.fetch_all(
            """
            SELECT pm.id, pm.project_id, pm.project_role, p.name AS project_name, p.project_number
            FROM project_members pm JOIN projects p ON p.id = pm.project_id
            WHERE pm.org_member_id = %s AND pm.active = TRUE AND p.org_id = %s
            ORDER BY p.name
            """,
            (member_id, ctx.org_id),
        )

    # Password reset

    def request_password_reset(self, email: str) -> None:
        """Store a reset token and email it; unknown addresses are ignored silently."""
        user = self.db.fetch_one(
            "SELECT id, email FROM users WHERE email = %s AND active = TRUE",
            ((email or "").strip().lower(),),
        )
        if not user:
            log.info("password_reset_unknown_email")
            return
        token = generate_token()
        self.db.execute(
            "INSERT INTO password_resets (user_id, token_hash, expires_at) VALUES (%s, %s, %s)",
            (user["id"], hash_token(token), reset_token_expires()),
        )
        result = self.email.send_password_reset_email(user["email"], token, settings.reset_password_url)
        log.info("password_reset_requested", user_id=str(user["id"]), email_sent=result.success)

    def reset_password(self, token: str, new_password: str) -> None:
        _validate_password(new_password)
        with self.db.transaction() as conn:
            reset = self.db.fetch_one(
                """
                SELECT id, user_id FROM password_resets
                WHERE token_hash = %s AND used_at IS NULL AND expires_at > NOW()
                """,
                (hash_token(token or ""),),
                conn=conn,
            )
            if not reset:
                raise ValidationError("El enlace es inválido o expiró")
            self.db.execute(
                "UPDATE users SET password_hash = %s WHERE id = %s",
                (hash_password(new_password), reset["user_id"]),
                conn=conn,
            )
            self.db.execute(
                "UPDATE password_resets SET used_at = NOW() WHERE id = %s", (reset["id"],), conn=conn
            )
            # log out everywhere
            self.db.execute("DELETE FROM sessions WHERE user_id = %s", (reset["user_id"],), conn=conn)
        log.info("password_reset_completed", user_id=str(reset["user_id"]))
