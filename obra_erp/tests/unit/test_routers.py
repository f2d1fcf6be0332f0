"""HTTP-level tests with the database and session dependencies overridden."""

import psycopg
import pytest
from fastapi.testclient import TestClient

from obra_erp.core.models import OrgRole, User
from obra_erp.main import app
from obra_erp.routers.deps import get_current_user, get_db, get_org_context


@pytest.fixture
def client(mock_db, make_ctx):
    """TestClient without lifespan (no schema init, storage or scheduler)."""
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_org_context] = lambda: make_ctx(OrgRole.EDITOR, restricted=True)
    app.dependency_overrides[get_current_user] = lambda: User(id="user-1", email="ana@example.com")
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health_ok(self, client, mock_db):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["db"] == "ok"
        mock_db.ping.assert_called_once()

    def test_health_db_down(self, client, mock_db):
        mock_db.ping.side_effect = RuntimeError("connection refused")
        response = client.get("/health")
        assert response.status_code == 500
        body = response.json()
        assert body["status"] == "error"
        assert body["message"] == "connection refused"


class TestErrorMapping:
    """Domain errors come back as {"detail": message} with their status code."""

    def test_missing_project_is_404(self, client, mock_db):
        mock_db.fetch_one.return_value = None
        response = client.get("/projects/p-1/my-role")
        assert response.status_code == 404
        assert response.json() == {"detail": "Proyecto no encontrado"}

    def test_restricted_member_without_assignment_is_403(self, client, mock_db):
        mock_db.fetch_one.side_effect = [{"id": "p-1"}, None]
        response = client.get("/projects/p-1/my-role")
        assert response.status_code == 403

    def test_malformed_id_is_404(self, client, mock_db):
        mock_db.fetch_one.side_effect = psycopg.errors.InvalidTextRepresentation(
            'invalid input syntax for type uuid: "abc"'
        )
        response = client.get("/projects/abc/my-role")
        assert response.status_code == 404
        assert response.json() == {"detail": "Recurso no encontrado"}

    def test_other_data_errors_are_422(self, client, mock_db):
        mock_db.fetch_one.side_effect = psycopg.errors.NumericValueOutOfRange("numeric field overflow")
        response = client.get("/projects/p-1/my-role")
        assert response.status_code == 422

    def test_unknown_pdf_template_is_404(self, client):
        response = client.get("/pdf/does-not-exist")
        assert response.status_code == 404
        assert "does-not-exist" in response.json()["detail"]

    def test_unauthenticated_request_is_401(self, mock_db):
        app.dependency_overrides[get_db] = lambda: mock_db
        try:
            response = TestClient(app).get("/auth/me")
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 401


class TestProjects:
    def test_my_role(self, client, mock_db):
        mock_db.fetch_one.side_effect = [{"id": "p-1"}, {"project_role": "SUPERINTENDENT"}]
        response = client.get("/projects/p-1/my-role")
        assert response.status_code == 200
        assert response.json() == {"role": "SUPERINTENDENT"}

    def test_unknown_change_order_action_is_404(self, client):
        response = client.post("/change-orders/co-1/launch")
        assert response.status_code == 404
