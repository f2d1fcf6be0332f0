"""Unit tests for document storage rules and quotas."""

from unittest.mock import MagicMock

import psycopg
import pytest

from obra_erp.config import settings
from obra_erp.core.errors import QuotaExceededError, ValidationError
from obra_erp.services.documents import GB, MB, DocumentService, check_quota, default_title, format_mb
from obra_erp.services.storage import build_storage_key


class TestHelpers:
    def test_default_title_strips_extension(self):
        assert default_title("planos-fase-1.pdf") == "planos-fase-1"

    def test_default_title_fallback(self):
        assert default_title(None) == "Documento"
        assert default_title("") == "Documento"

    def test_format_mb(self):
        assert format_mb(5 * MB) == "5.0 MB"
        assert format_mb(MB // 2) == "0.5 MB"

    def test_storage_key_layout(self):
        key = build_storage_key("org-1", "doc-9", 2, "informe.pdf")
        assert key == "org-1/doc-9/2/informe.pdf"

    def test_storage_key_escapes_separators(self):
        key = build_storage_key("org-1", "doc-9", 1, "a/b\\c.pdf")
        assert key == "org-1/doc-9/1/a_b_c.pdf"


class TestCheckQuota:
    def test_within_limit(self):
        check_quota(used=10 * MB, incoming=5 * MB, limit=20 * MB, scope="del proyecto")

    def test_exact_limit_is_allowed(self):
        check_quota(used=15 * MB, incoming=5 * MB, limit=20 * MB, scope="del proyecto")

    def test_over_limit_raises(self):
        with pytest.raises(QuotaExceededError) as exc:
            check_quota(used=18 * MB, incoming=5 * MB, limit=20 * MB, scope="del proyecto")
        assert "del proyecto" in exc.value.message
        assert "20.0 MB" in exc.value.message

    def test_zero_limit_is_unlimited(self):
        check_quota(used=100 * GB, incoming=GB, limit=0, scope="de la organización")


class TestUploadChecks:
    """Tests for DocumentService upload guards (no storage calls involved)."""

    @pytest.fixture
    def service(self, mock_db):
        return DocumentService(mock_db, storage=MagicMock())

    def test_empty_file_rejected(self, service, owner_ctx):
        with pytest.raises(ValidationError):
            service._check_upload(owner_ctx, None, 0, conn=MagicMock())

    def test_file_over_max_upload_size(self, service, owner_ctx):
        with pytest.raises(QuotaExceededError):
            service._check_upload(owner_ctx, None, settings.max_upload_bytes + 1, conn=MagicMock())

    def test_org_quota_exceeded(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.return_value = {"used": GB - MB, "max_storage_gb": 1}
        with pytest.raises(QuotaExceededError) as exc:
            service._check_upload(owner_ctx, None, 2 * MB, conn=MagicMock())
        assert "organización" in exc.value.message

    def test_project_quota_checked_before_org(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [
            {"used": settings.project_storage_limit_bytes},
            {"used": 0, "max_storage_gb": 10},
        ]
        with pytest.raises(QuotaExceededError) as exc:
            service._check_upload(owner_ctx, "project-1", MB, conn=MagicMock())
        assert "proyecto" in exc.value.message

    def test_upload_within_all_limits(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = [
            {"used": 0},
            {"used": 0, "max_storage_gb": 10},
        ]
        service._check_upload(owner_ctx, "project-1", MB, conn=MagicMock())
        assert mock_db.fetch_one.call_count == 2

    def test_org_usage_defaults_limit_from_settings(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.return_value = {"used": 1234, "max_storage_gb": None}
        usage = service.get_org_storage_usage(owner_ctx)
        assert usage == {"used_bytes": 1234, "limit_bytes": settings.default_org_storage_gb * GB}

    def test_failed_version_insert_removes_object(self, service, mock_db, owner_ctx):
        mock_db.fetch_one.side_effect = psycopg.Error("insert failed")
        with pytest.raises(psycopg.Error):
            service._store(owner_ctx, MagicMock(), "doc-1", 1, "plano.pdf", "application/pdf", b"%PDF-1.4")
        service.storage.upload.assert_called_once_with("org-1/doc-1/1/plano.pdf", b"%PDF-1.4", "application/pdf")
        service.storage.delete.assert_called_once_with("org-1/doc-1/1/plano.pdf")
