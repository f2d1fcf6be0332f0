"""Unit tests for outbox cleanup, email client, security helpers and the PDF registry."""

import httpx
import pytest

from obra_erp.core.logging import redact_secrets
from obra_erp.core.security import generate_token, hash_password, hash_token, verify_password
from obra_erp.exporters.documents import get_template
from obra_erp.exporters.documents.registry import get_all_templates
from obra_erp.exporters.documents import registry
from obra_erp.exporters.documents.base import DocumentTemplate
from obra_erp.services.email import EmailClient
from obra_erp.scheduler import get_scheduler, run_now, start_scheduler, stop_scheduler
from obra_erp.services.outbox import cleanup_outbox, publish_outbox_event


class TestOutbox:
    def test_cleanup_runs_until_short_batch(self, mock_db):
        mock_db.execute.side_effect = [2, 2, 1]
        result = cleanup_outbox(db=mock_db, ttl_days=30, batch_size=2, pause_seconds=0)
        assert result["total_deleted"] == 5
        assert result["batches"] == 3
        assert "cutoff_date" in result

    def test_cleanup_single_empty_batch(self, mock_db):
        mock_db.execute.return_value = 0
        result = cleanup_outbox(db=mock_db, ttl_days=7, batch_size=100, pause_seconds=0)
        assert result["total_deleted"] == 0
        assert result["batches"] == 1

    def test_publish_uses_callers_connection(self, mock_db):
        conn = object()
        publish_outbox_event(mock_db, conn, "org-1", "PROJECT.CREATED", "Project", "p-1", {"name": "Torre"})
        args, kwargs = mock_db.execute.call_args
        assert kwargs["conn"] is conn
        assert args[1][:4] == ("org-1", "PROJECT.CREATED", "Project", "p-1")


class TestEmailClient:
    def test_disabled_without_api_key(self):
        client = EmailClient(api_key="")
        assert not client.enabled
        result = client.send("ana@example.com", "Hola", "<p>Hola</p>")
        assert not result.success
        assert result.error == "Email not configured"

    def test_send_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer re_test"
            assert request.url.path == "/emails"
            return httpx.Response(200, json={"id": "msg-123"})

        client = EmailClient(api_key="re_test", base_url="https://api.test")
        client._client = httpx.Client(transport=httpx.MockTransport(handler))
        result = client.send("ana@example.com", "Hola", "<p>Hola</p>")
        assert result.success
        assert result.message_id == "msg-123"

    def test_send_http_error(self):
        client = EmailClient(api_key="re_test", base_url="https://api.test")
        client._client = httpx.Client(
            transport=httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad"}))
        )
        result = client.send("ana@example.com", "Hola", "<p>Hola</p>")
        assert not result.success
        assert result.error == "HTTP 422"

    def test_send_success_with_plain_text_body(self):
        client = EmailClient(api_key="re_test", base_url="https://api.test")
        client._client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="OK")))
        result = client.send("ana@example.com", "Hola", "<p>Hola</p>")
        assert result.success
        assert result.message_id is None

    def test_send_success_with_non_object_body(self):
        client = EmailClient(api_key="re_test", base_url="https://api.test")
        client._client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(202, json=["queued"])))
        result = client.send("ana@example.com", "Hola", "<p>Hola</p>")
        assert result.success
        assert result.message_id is None

    def test_invitation_email_renders_template(self):
        sent = {}

        def handler(request: httpx.Request) -> httpx.Response:
            sent["body"] = request.read().decode("utf-8")
            return httpx.Response(200, json={"id": "msg-1"})

        client = EmailClient(api_key="re_test", base_url="https://api.test")
        client._client = httpx.Client(transport=httpx.MockTransport(handler))
        result = client.send_invitation_email(
            to="ana@example.com",
            inviter_name="Luis",
            org_name="Constructora Andina",
            invitation_url="https://app.test/invite/abc",
            role="EDITOR",
        )
        assert result.success
        assert "https://app.test/invite/abc" in sent["body"]


class TestSecurity:
    def test_password_round_trip(self):
        hashed = hash_password("s3creta-larga")
        assert hashed != "s3creta-larga"
        assert verify_password("s3creta-larga", hashed)
        assert not verify_password("otra", hashed)

    def test_verify_without_hash(self):
        assert not verify_password("s3creta-larga", None)

    def test_tokens(self):
        token = generate_token()
        assert len(token) == 64
        assert generate_token() != token
        assert hash_token(token) == hash_token(token)
        assert hash_token(token) != token


class TestTemplateRegistry:
    def test_builtin_templates_registered(self):
        for template_id in ("budget", "materials", "purchase-order", "transactions", "cashflow"):
            assert get_template(template_id) is not None
        assert get_template("nope") is None
        assert len(get_all_templates()) >= 6

    def test_register_and_bind_db(self, mock_db):
        @registry.register_template
        class DummyTemplate(DocumentTemplate):
            template_id = "dummy-test"

            def file_name(self, doc_id):
                return "dummy.pdf"

            def validate_access(self, ctx, doc_id):
                pass

            def build(self, ctx, doc_id, query):
                return None

        try:
            template = get_template("dummy-test")
            assert isinstance(template, DummyTemplate)
            assert template.db is None
            bound = template.for_db(mock_db)
            assert bound is not template
            assert bound.db is mock_db
            assert template.db is None
        finally:
            registry._templates.pop("dummy-test", None)


class TestScheduler:
    def test_start_and_stop(self):
        scheduler = start_scheduler()
        try:
            assert get_scheduler() is scheduler
            assert scheduler.get_job("outbox_cleanup") is not None
            assert start_scheduler() is scheduler
        finally:
            stop_scheduler()
        assert get_scheduler() is None

    def test_run_now_logs_failures(self, monkeypatch):
        calls = []

        def failing_cleanup():
            calls.append(True)
            raise RuntimeError("db down")

        monkeypatch.setattr("obra_erp.services.outbox.cleanup_outbox", failing_cleanup)
        run_now()
        assert calls == [True]


class TestLogging:
    def test_secrets_are_redacted(self):
        event = {"event": "login_failed", "email": "ana@example.com", "password": "hunter22", "token": "abc"}
        result = redact_secrets(None, "info", event)
        assert result["password"] == "***"
        assert result["token"] == "***"
        assert result["email"] == "ana@example.com"
