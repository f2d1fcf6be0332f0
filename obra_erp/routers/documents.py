"""
Document management: folders, uploads with versions, downloads, entity links
and storage usage.
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field

from obra_erp.core.database import Database
from obra_erp.core.models import DocumentEntityType, OrgContext
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.documents import DocumentService

router = APIRouter(tags=["documents"])


class FolderRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    parent_id: str | None = None
    project_id: str | None = None


class LinkRequest(BaseModel):
    entity_type: DocumentEntityType
    entity_id: str


def _mime(file: UploadFile) -> str:
    return file.content_type or "application/octet-stream"


# Storage usage

@router.get("/storage/usage")
def org_storage_usage(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return DocumentService(db).get_org_storage_usage(ctx)


@router.get("/projects/{project_id}/storage/usage")
def project_storage_usage(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return DocumentService(db).get_project_storage_usage(ctx, project_id)


# Folders

@router.get("/folders")
def list_org_root_folders(ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return DocumentService(db).list_org_root_folders(ctx)


@router.get("/projects/{project_id}/folders/root")
def project_root_folder(project_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return DocumentService(db).get_project_root_folder(ctx, project_id)


@router.post("/folders", status_code=201)
def create_folder(request: FolderRequest, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return DocumentService(db).create_folder(ctx, request.name, request.parent_id, request.project_id)


@router.get("/folders/{folder_id}")
def folder_contents(
    folder_id: str,
    project_id: str | None = None,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return DocumentService(db).list_folder_contents(ctx, folder_id, project_id)


@router.delete("/folders/{folder_id}", status_code=204)
def delete_folder(folder_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    DocumentService(db).delete_folder(ctx, folder_id)


# Documents

@router.post("/documents", status_code=201)
def upload_document(
    file: UploadFile = File(...),
    title: str | None = Form(default=None),
    project_id: str | None = Form(default=None),
    folder_id: str | None = Form(default=None),
    doc_type: str = Form(default="OTHER"),
    category: str | None = Form(default=None),
    description: str | None = Form(default=None),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return DocumentService(db).create_document(
        ctx,
        file_name=file.filename or "archivo",
        mime_type=_mime(file),
        data=file.file.read(),
        title=title,
        project_id=project_id,
        folder_id=folder_id,
        doc_type=doc_type,
        category=category,
        description=description,
    )


@router.post("/documents/{document_id}/versions", status_code=201)
def upload_version(
    document_id: str,
    file: UploadFile = File(...),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return DocumentService(db).upload_new_version(
        ctx, document_id, file.filename or "archivo", _mime(file), file.file.read()
    )


@router.get("/document-versions/{version_id}/download")
def download_url(version_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    return {"url": DocumentService(db).get_download_url(ctx, version_id)}


@router.delete("/documents/{document_id}", status_code=204)
def delete_document(document_id: str, ctx: OrgContext = Depends(get_org_context), db: Database = Depends(get_db)):
    DocumentService(db).delete_document(ctx, document_id)


# Entity links

@router.post("/documents/{document_id}/links", status_code=201)
def link_document(
    document_id: str,
    request: LinkRequest,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return DocumentService(db).link_document_to_entity(ctx, document_id, request.entity_type, request.entity_id)


@router.get("/entities/{entity_type}/{entity_id}/documents")
def documents_for_entity(
    entity_type: DocumentEntityType,
    entity_id: str,
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    return DocumentService(db).list_documents_for_entity(ctx, entity_type, entity_id)
