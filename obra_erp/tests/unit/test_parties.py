"""Unit tests for linking suppliers from the global directory."""

import pytest

from obra_erp.core.errors import ConflictError, NotFoundError, PermissionDeniedError
from obra_erp.services.parties import PartyService

GLOBAL_PARTY = {
    "id": "gp-1",
    "name": "Hormigonera del Sur",
    "tax_id": "30-71234567-8",
    "email": "ventas@hormigonera.test",
    "phone": None,
}


def _executed(mock_db) -> list[str]:
    return [c[0][0] for c in mock_db.execute.call_args_list]


class TestLinkGlobalSupplier:
    def test_link_creates_party_and_counts_org(self, mock_db, editor_ctx):
        mock_db.fetch_one.side_effect = [GLOBAL_PARTY, None, {"id": "party-1"}, {"id": "link-1"}]
        link = PartyService(mock_db).link_global_supplier(editor_ctx, "gp-1", {"local_alias": "Hormigonera", "bogus": 1})
        assert link == {"id": "link-1"}

        party_params = mock_db.fetch_one.call_args_list[2][0][1]
        assert party_params[1] == "Hormigonera"
        link_sql = mock_db.fetch_one.call_args_list[3][0][0]
        assert "local_alias" in link_sql
        assert "bogus" not in link_sql
        assert any("org_count = org_count + 1" in sql for sql in _executed(mock_db))

    def test_linking_twice_is_a_conflict(self, mock_db, editor_ctx):
        mock_db.fetch_one.side_effect = [GLOBAL_PARTY, {"id": "link-1"}]
        with pytest.raises(ConflictError):
            PartyService(mock_db).link_global_supplier(editor_ctx, "gp-1")
        mock_db.execute.assert_not_called()

    def test_unknown_global_supplier(self, mock_db, editor_ctx):
        with pytest.raises(NotFoundError):
            PartyService(mock_db).link_global_supplier(editor_ctx, "gp-9")

    def test_viewer_cannot_link(self, mock_db, viewer_ctx):
        with pytest.raises(PermissionDeniedError):
            PartyService(mock_db).link_global_supplier(viewer_ctx, "gp-1")
        mock_db.transaction.assert_not_called()


class TestUnlinkGlobalSupplier:
    def test_unlink_deactivates_party_and_decrements_count(self, mock_db, admin_ctx):
        mock_db.fetch_one.return_value = {"id": "link-1", "party_id": "party-1"}
        PartyService(mock_db).unlink_global_supplier(admin_ctx, "gp-1")
        executed = _executed(mock_db)
        assert any(sql.startswith("DELETE FROM org_party_links") for sql in executed)
        assert any("SET active = FALSE" in sql for sql in executed)
        assert any("GREATEST(org_count - 1, 0)" in sql for sql in executed)

    def test_unlink_without_link(self, mock_db, admin_ctx):
        with pytest.raises(NotFoundError):
            PartyService(mock_db).unlink_global_supplier(admin_ctx, "gp-1")

    def test_editor_cannot_unlink(self, mock_db, editor_ctx):
        with pytest.raises(PermissionDeniedError):
            PartyService(mock_db).unlink_global_supplier(editor_ctx, "gp-1")
