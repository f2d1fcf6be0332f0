"""Unit tests for invitations."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from obra_erp.core.errors import ConflictError, NotFoundError, ValidationError
from obra_erp.core.models import EmailResult, OrgRole
from obra_erp.services.team import TeamService


@pytest.fixture
def email_client() -> MagicMock:
    client = MagicMock()
    client.send_invitation_email.return_value = EmailResult(success=True, message_id="msg-1")
    return client


@pytest.fixture
def invitation() -> dict:
    return {
        "id": "inv-1",
        "org_id": "org-1",
        "email": "ana@example.com",
        "role": "EDITOR",
        "status": "PENDING",
        "expires_at": datetime.now(timezone.utc) + timedelta(days=3),
    }


class TestInviteUser:
    def test_existing_member_is_a_conflict(self, mock_db, admin_ctx, email_client):
        mock_db.fetch_one.side_effect = [{"id": "member-2"}]
        with pytest.raises(ConflictError, match="ya es miembro"):
            TeamService(mock_db, email_client).invite_user(admin_ctx, "ana@example.com", OrgRole.EDITOR)
        email_client.send_invitation_email.assert_not_called()

    def test_duplicate_pending_invitation_is_a_conflict(self, mock_db, admin_ctx, email_client):
        mock_db.fetch_one.side_effect = [None, {"id": "inv-1"}]
        with pytest.raises(ConflictError, match="pendiente"):
            TeamService(mock_db, email_client).invite_user(admin_ctx, " Ana@Example.com ", OrgRole.EDITOR)
        pending_params = mock_db.fetch_one.call_args_list[1][0][1]
        assert pending_params == ("org-1", "ana@example.com")
        email_client.send_invitation_email.assert_not_called()

    def test_invite_sends_email(self, mock_db, admin_ctx, email_client):
        mock_db.fetch_one.side_effect = [None, None, {"id": "inv-1", "email": "ana@example.com", "status": "PENDING"}]
        result = TeamService(mock_db, email_client).invite_user(admin_ctx, "ana@example.com", OrgRole.VIEWER)
        assert result["email_sent"] is True
        assert email_client.send_invitation_email.call_args.kwargs["to"] == "ana@example.com"

    def test_owner_role_cannot_be_invited(self, mock_db, admin_ctx, email_client):
        with pytest.raises(ValidationError):
            TeamService(mock_db, email_client).invite_user(admin_ctx, "ana@example.com", OrgRole.OWNER)
        mock_db.transaction.assert_not_called()


class TestAcceptInvitation:
    def test_expired_invitation_is_marked_and_refused(self, mock_db, email_client, invitation):
        invitation["expires_at"] = datetime.now(timezone.utc) - timedelta(minutes=1)
        mock_db.fetch_one.side_effect = [invitation]
        with pytest.raises(ValidationError, match="expiró"):
            TeamService(mock_db, email_client).accept_invitation("tok", "Ana", "secreto123")
        sql, params = mock_db.execute.call_args[0]
        assert "status = 'EXPIRED'" in sql
        assert params == ("inv-1",)
        # the mark is written inside a transaction that exits cleanly
        exit_args = mock_db.transaction.return_value.__exit__.call_args[0]
        assert exit_args == (None, None, None)

    def test_used_invitation(self, mock_db, email_client, invitation):
        invitation["status"] = "ACCEPTED"
        mock_db.fetch_one.side_effect = [invitation]
        with pytest.raises(NotFoundError):
            TeamService(mock_db, email_client).accept_invitation("tok", "Ana", "secreto123")

    def test_new_user_joins_org(self, mock_db, email_client, invitation):
        mock_db.fetch_one.side_effect = [invitation, None, {"id": "user-2"}, None, {"id": "member-2"}]
        result = TeamService(mock_db, email_client).accept_invitation("tok", "Ana Pérez", "secreto123")
        assert result == {"user_id": "user-2", "member_id": "member-2", "org_id": "org-1"}
        assert "status = 'ACCEPTED'" in mock_db.execute.call_args[0][0]
