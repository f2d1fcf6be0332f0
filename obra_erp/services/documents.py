"""
Document management: folders, versioned files in object storage, links to
finance transactions and purchase orders, and storage quotas.
"""

import hashlib
from pathlib import PurePath
from typing import Any

import psycopg

from obra_erp.config import settings
from obra_erp.core.database import Database
from obra_erp.core.errors import NotFoundError, QuotaExceededError, ValidationError
from obra_erp.core.logging import get_logger
from obra_erp.core.models import DocumentEntityType, OrgContext, OrgRole
from obra_erp.core.numbers import to_num
from obra_erp.core.permissions import require_project_area_edit, require_role
from obra_erp.services.auth import assert_project_access
from obra_erp.services.storage import StorageClient, build_storage_key

log = get_logger(__name__)

GB = 1024 ** 3
MB = 1024 ** 2


def default_title(file_name: str | None) -> str:
    """File name without extension, or "Documento"."""
    stem = PurePath(file_name or "").stem.strip()
    return stem or "Documento"


def format_mb(size: int | float) -> str:
    return f"{size / MB:.1f} MB"


def check_quota(used: int, incoming: int, limit: int, scope: str) -> None:
    """Raise QuotaExceededError when used + incoming goes over limit (0 = unlimited)."""
    if limit and used + incoming > limit:
        raise QuotaExceededError(
            f"Se excede el límite de almacenamiento {scope}: "
            f"usado {format_mb(used)} de {format_mb(limit)}"
        )


class DocumentService:
    def __init__(self, db: Database | None = None, storage: StorageClient | None = None):
        self.db = db or Database()
        self.storage = storage or StorageClient()

    # Quotas

    def get_org_storage_usage(self, ctx: OrgContext, conn=None) -> dict[str, int]:
        row = self.db.fetch_one(
            """
            SELECT COALESCE(SUM(v.size_bytes), 0) AS used, o.max_storage_gb
            FROM organizations o
            LEFT JOIN document_versions v ON v.org_id = o.id
            WHERE o.id = %s
            GROUP BY o.max_storage_gb
            """,
            (ctx.org_id,),
            conn=conn,
        )
        max_gb = row["max_storage_gb"] if row and row["max_storage_gb"] is not None else settings.default_org_storage_gb
        return {"used_bytes": int(to_num(row["used"])) if row else 0, "limit_bytes": int(max_gb) * GB}

    def get_project_storage_usage(self, ctx: OrgContext, project_id: str, conn=None) -> dict[str, int]:
        row = self.db.fetch_one(
            """
            SELECT COALESCE(SUM(v.size_bytes), 0) AS used
            FROM document_versions v JOIN documents d ON d.id = v.document_id
            WHERE d.org_id = %s AND d.project_id = %s
            """,
            (ctx.org_id, project_id),
            conn=conn,
        )
        return {
            "used_bytes": int(to_num(row["used"])) if row else 0,
            "limit_bytes": settings.project_storage_limit_bytes,
        }

    def _check_upload(self, ctx: OrgContext, project_id: str | None, size: int, conn) -> None:
        if size <= 0:
            raise ValidationError("El archivo está vacío")
        if size > settings.max_upload_bytes:
            raise QuotaExceededError(
                f"El archivo supera el tamaño máximo de {format_mb(settings.max_upload_bytes)}"
            )
        if project_id:
            usage = self.get_project_storage_usage(ctx, project_id, conn=conn)
            check_quota(usage["used_bytes"], size, usage["limit_bytes"], "del proyecto")
        usage = self.get_org_storage_usage(ctx, conn=conn)
        check_quota(usage["used_bytes"], size, usage["limit_bytes"], "de la organización")

    def _store(self, ctx: OrgContext, conn, document_id: str, version_number: int,
               file_name: str, mime_type: str, data: bytes) -> dict[str, Any]:
        key = build_storage_key(ctx.org_id, document_id, version_number, file_name)
        self.storage.upload(key, data, mime_type)
        try:
            return self.db.fetch_one(
                """
                INSERT INTO document_versions (
                    org_id, document_id, version_number, file_name, mime_type,
                    size_bytes, storage_key, checksum, uploaded_by
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    ctx.org_id,
                    document_id,
                    version_number,
                    file_name,
                    mime_type,
                    len(data),
                    key,
                    hashlib.sha256(data).hexdigest(),
                    ctx.user_id,
                ),
                conn=conn,
            )
        except psycopg.Error:
            # object would be orphaned once the transaction rolls back
            self.storage.delete(key)
            raise

    # Documents

    def create_document(
        self,
        ctx: OrgContext,
        file_name: str,
        mime_type: str,
        data: bytes,
        title: str | None = None,
        project_id: str | None = None,
        folder_id: str | None = None,
        doc_type: str = "OTHER",
        category: str | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.EDITOR)
        with self.db.transaction() as conn:
            if project_id:
                role = assert_project_access(self.db, project_id, ctx, conn=conn)
                require_project_area_edit(ctx, role, "documents")
            if folder_id:
                self._load_folder(ctx, folder_id, project_id, conn=conn)
            self._check_upload(ctx, project_id, len(data), conn)

            document = self.db.fetch_one(
                """
                INSERT INTO documents (
                    org_id, project_id, folder_id, title, doc_type, category, description, created_by
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    ctx.org_id,
                    project_id,
                    folder_id,
                    (title or "").strip() or default_title(file_name),
                    doc_type,
                    category,
                    description,
                    ctx.user_id,
                ),
                conn=conn,
            )
            version = self._store(ctx, conn, str(document["id"]), 1, file_name, mime_type, data)

        log.info("document_created", document_id=str(document["id"]), size=len(data), project_id=project_id)
        return {**document, "latest_version": version}

    def upload_new_version(
        self,
        ctx: OrgContext,
        document_id: str,
        file_name: str,
        mime_type: str,
        data: bytes,
    ) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.EDITOR)
        with self.db.transaction() as conn:
            document = self.db.fetch_one(
                "SELECT * FROM documents WHERE id = %s AND org_id = %s",
                (document_id, ctx.org_id),
                conn=conn,
            )
            if not document:
                raise NotFoundError("Documento no encontrado")
            if document["deleted"]:
                raise ValidationError("No se puede subir una versión a un documento eliminado")
            project_id = str(document["project_id"]) if document["project_id"] else None
            if project_id:
                role = assert_project_access(self.db, project_id, ctx, conn=conn)
                require_project_area_edit(ctx, role, "documents")
            self._check_upload(ctx, project_id, len(data), conn)

            row = self.db.fetch_one(
                "SELECT COALESCE(MAX(version_number), 0) + 1 AS next FROM document_versions WHERE document_id = %s",
                (document_id,),
                conn=conn,
            )
            version = self._store(ctx, conn, document_id, row["next"], file_name, mime_type, data)

        log.info("document_version_uploaded", document_id=document_id, version=version["version_number"])
        return version

    def get_download_url(self, ctx: OrgContext, version_id: str) -> str:
        version = self.db.fetch_one(
            """
            SELECT v.storage_key, d.project_id, d.deleted
            FROM document_versions v JOIN documents d ON d.id = v.document_id
            WHERE v.id = %s AND v.org_id = %s
            """,
            (version_id, ctx.org_id),
        )
        if not version or version["deleted"]:
            raise NotFoundError("Versión no encontrada")
        if version["project_id"]:
            assert_project_access(self.db, str(version["project_id"]), ctx)
        return self.storage.presigned_url(version["storage_key"])

    def delete_document(self, ctx: OrgContext, document_id: str) -> None:
        require_role(ctx.role, OrgRole.ADMIN)
        count = self.db.execute(
            "UPDATE documents SET deleted = TRUE WHERE id = %s AND org_id = %s",
            (document_id, ctx.org_id),
        )
        if not count:
            raise NotFoundError("Documento no encontrado")
        log.info("document_deleted", document_id=document_id)

    # Links

    def link_document_to_entity(
        self,
        ctx: OrgContext,
        document_id: str,
        entity_type: DocumentEntityType,
        entity_id: str,
    ) -> dict[str, Any]:
        require_role(ctx.role, OrgRole.EDITOR)
        entity_type = DocumentEntityType(entity_type)
        table = "finance_transactions" if entity_type == DocumentEntityType.FINANCE_TRANSACTION else "commitments"
        with self.db.transaction() as conn:
            document = self.db.fetch_one(
                "SELECT id FROM documents WHERE id = %s AND org_id = %s AND deleted = FALSE",
                (document_id, ctx.org_id),
                conn=conn,
            )
            if not document:
                raise NotFoundError("Documento no encontrado")
            entity = self.db.fetch_one(
                f"SELECT id FROM {table} WHERE id = %s AND org_id = %s",
                (entity_id, ctx.org_id),
                conn=conn,
            )
            if not entity:
                raise NotFoundError("Entidad no encontrada")
            link = self.db.fetch_one(
                """
                INSERT INTO document_links (org_id, document_id, entity_type, entity_id)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (document_id, entity_type, entity_id) DO UPDATE SET entity_id = EXCLUDED.entity_id
                RETURNING *
                """,
                (ctx.org_id, document_id, entity_type.value, entity_id),
                conn=conn,
            )
        log.info("document_linked", document_id=document_id, entity_type=entity_type.value)
        return link

    def list_documents_for_entity(
        self,
        ctx: OrgContext,
        entity_type: DocumentEntityType,
        entity_id: str,
    ) -> list[dict[str, Any]]:
        return self.db.fetch_all(
            """
            SELECT d.*, v.id AS version_id, v.file_name, v.mime_type, v.size_bytes, v.version_number
            FROM document_links l
            JOIN documents d ON d.id = l.document_id
            LEFT JOIN LATERAL (
                SELECT * FROM document_versions WHERE document_id = d.id
                ORDER BY version_number DESC LIMIT 1
            ) v ON TRUE
            WHERE l.org_id = %s AND l.entity_type = %s AND l.entity_id = %s AND d.deleted = FALSE
            ORDER BY d.created_at DESC
            """,
            (ctx.org_id, DocumentEntityType(entity_type).value, entity_id),
        )

    # Folders

    def _load_folder(self, ctx: OrgContext, folder_id: str, project_id: str | None, conn=None) -> dict[str, Any]:
        folder = self.db.fetch_one(
            "SELECT * FROM document_folders WHERE id = %s AND org_id = %s",
            (folder_id, ctx.org_id),
            conn=conn,
        )
        if not folder:
            raise NotFoundError("Carpeta no encontrada")
        folder_project = str(folder["project_id"]) if folder["project_id"] else None
        if folder_project != (str(project_id) if project_id else None):
            raise ValidationError("La carpeta pertenece a otro proyecto")
        return folder

    def get_project_root_folder(self, ctx: OrgContext, project_id: str, conn=None) -> dict[str, Any]:
        assert_project_access(self.db, project_id, ctx, conn=conn)
        folder = self.db.fetch_one(
            """
            SELECT * FROM document_folders
            WHERE org_id = %s AND project_id = %s AND parent_id IS NULL
            ORDER BY created_at
            LIMIT 1
            """,
            (ctx.org_id, project_id),
            conn=conn,
        )
        if not folder:
            raise NotFoundError("Carpeta raíz del proyecto no encontrada")
        return folder

    def list_org_root_folders(self, ctx: OrgContext) -> list[dict[str, Any]]:
        return self.db.fetch_all(
            """
            SELECT * FROM document_folders
            WHERE org_id = %s AND project_id IS NULL AND parent_id IS NULL
            ORDER BY name
            """,
            (ctx.org_id,),
        )

    def create_folder(
        self,
        ctx: OrgContext,
        name: str,
        parent_id: str | None = None,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a folder; project folders without a parent go under the project root."""
        require_role(ctx.role, OrgRole.EDITOR)
        if not (name or "").strip():
            raise ValidationError("El nombre de la carpeta es obligatorio")
        with self.db.transaction() as conn:
            if project_id:
                role = assert_project_access(self.db, project_id, ctx, conn=conn)
                require_project_area_edit(ctx, role, "documents")
                if not parent_id:
                    parent_id = str(self.get_project_root_folder(ctx, project_id, conn=conn)["id"])
            if parent_id:
                self._load_folder(ctx, parent_id, project_id, conn=conn)
            folder = self.db.fetch_one(
                """
                INSERT INTO document_folders (org_id, project_id, parent_id, name, created_by)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (ctx.org_id, project_id, parent_id, name.strip(), ctx.user_id),
                conn=conn,
            )
        log.info("folder_created", folder_id=str(folder["id"]), project_id=project_id)
        return folder

    def delete_folder(self, ctx: OrgContext, folder_id: str) -> None:
        require_role(ctx.role, OrgRole.EDITOR)
        with self.db.transaction() as conn:
            folder = self.db.fetch_one(
                "SELECT * FROM document_folders WHERE id = %s AND org_id = %s",
                (folder_id, ctx.org_id),
                conn=conn,
            )
            if not folder:
                raise NotFoundError("Carpeta no encontrada")
            if folder["project_id"]:
                role = assert_project_access(self.db, str(folder["project_id"]), ctx, conn=conn)
                require_project_area_edit(ctx, role, "documents")
            contents = self.db.fetch_one(
                """
                SELECT
                    (SELECT COUNT(*) FROM document_folders WHERE parent_id = %(id)s) AS folders,
                    (SELECT COUNT(*) FROM documents WHERE folder_id = %(id)s AND deleted = FALSE) AS documents
                """,
                {"id": folder_id},
                conn=conn,
            )
            if contents["folders"] or contents["documents"]:
                raise ValidationError("La carpeta no está vacía")
            self.db.execute("DELETE FROM document_folders WHERE id = %s", (folder_id,), conn=conn)
        log.info("folder_deleted", folder_id=folder_id)

    def list_folder_contents(
        self,
        ctx: OrgContext,
        folder_id: str,
        project_id: str | None = None,
    ) -> dict[str, Any]:
        """Subfolders, documents with their latest version and the breadcrumb path."""
        if project_id:
            assert_project_access(self.db, project_id, ctx)
        folder = self._load_folder(ctx, folder_id, project_id)

        folders = self.db.fetch_all(
            "SELECT * FROM document_folders WHERE parent_id = %s AND org_id = %s ORDER BY name",
            (folder_id, ctx.org_id),
        )
        documents = self.db.fetch_all(
            """
            SELECT d.*, v.id AS version_id, v.version_number, v.file_name,
                   v.mime_type, v.size_bytes, v.uploaded_at
            FROM documents d
            LEFT JOIN LATERAL (
                SELECT * FROM document_versions WHERE document_id = d.id
                ORDER BY version_number DESC LIMIT 1
            ) v ON TRUE
            WHERE d.folder_id = %s AND d.org_id = %s AND d.deleted = FALSE
            ORDER BY d.title
            """,
            (folder_id, ctx.org_id),
        )
        path = self.db.fetch_all(
            """
            WITH RECURSIVE chain AS (
                SELECT id, parent_id, name, 0 AS depth FROM document_folders WHERE id = %s
                UNION ALL
                SELECT f.id, f.parent_id, f.name, c.depth + 1
                FROM document_folders f JOIN chain c ON f.id = c.parent_id
            )
            SELECT id, name FROM chain ORDER BY depth DESC
            """,
            (folder_id,),
        )
        return {"folder": folder, "folders": folders, "documents": documents, "path": path}
