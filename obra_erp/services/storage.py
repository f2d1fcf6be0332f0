"""
MinIO / S3-compatible object storage for project documents.
"""

from datetime import timedelta
from io import BytesIO

from minio import Minio
from minio.error import S3Error

from obra_erp.config import settings
from obra_erp.core.logging import get_logger

log = get_logger(__name__)


def build_storage_key(org_id: str, document_id: str, version: int, file_name: str) -> str:
    """Object key layout: {org}/{document}/{version}/{file name}."""
    safe_name = file_name.replace("/", "_").replace("\\", "_")
    return f"{org_id}/{document_id}/{version}/{safe_name}"


class StorageClient:
    """Client for MinIO object storage."""

    def __init__(
        self,
        endpoint: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        bucket: str | None = None,
        secure: bool | None = None,
    ):
        self.endpoint = endpoint or settings.storage_endpoint
        self.access_key = access_key or settings.storage_access_key
        self.secret_key = secret_key or settings.storage_secret_key
        self.bucket = bucket or settings.storage_bucket
        self.secure = secure if secure is not None else settings.storage_secure
        self._client: Minio | None = None

    @property
    def enabled(self) -> bool:
        """Check if storage is configured."""
        return bool(self.endpoint and self.access_key and self.secret_key)

    def _get_client(self) -> Minio:
        if not self._client:
            if not self.enabled:
                raise RuntimeError("Object storage not configured")
            self._client = Minio(
                self.endpoint,
                access_key=self.access_key,
                secret_key=self.secret_key,
                secure=self.secure,
            )
        return self._client

    def ensure_bucket(self) -> None:
        """Create bucket if it doesn't exist."""
        client = self._get_client()
        if not client.bucket_exists(self.bucket):
            client.make_bucket(self.bucket)
            log.info("storage_bucket_created", bucket=self.bucket)

    def upload(self, key: str, data: bytes, content_type: str) -> None:
        client = self._get_client()
        client.put_object(
            self.bucket,
            key,
            BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        log.info("object_uploaded", key=key, size=len(data))

    def presigned_url(self, key: str, expires_minutes: int | None = None) -> str:
        minutes = expires_minutes or settings.storage_url_expiry_minutes
        return self._get_client().presigned_get_object(
            self.bucket, key, expires=timedelta(minutes=minutes)
        )

    def delete(self, key: str) -> bool:
        try:
            self._get_client().remove_object(self.bucket, key)
            log.info("object_deleted", key=key)
            return True
        except S3Error as e:
            log.error("object_delete_error", key=key, error=str(e))
            return False
