"""
Budget spreadsheet import.

POST /imports/budget/preview — parse an .xlsx and return the WBS tree and warnings
POST /imports/budget         — create a project with version V1 from the .xlsx
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile

from obra_erp.core.database import Database
from obra_erp.core.logging import get_logger
from obra_erp.core.models import OrgContext
from obra_erp.core.validators import ProjectCreate
from obra_erp.routers.deps import get_db, get_org_context
from obra_erp.services.imports import ImportService

log = get_logger(__name__)
router = APIRouter(tags=["imports"])


@router.post("/imports/budget/preview")
def preview_import(
    file: UploadFile = File(...),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    data = file.file.read()
    return ImportService(db).preview(ctx, data, file.filename or "presupuesto.xlsx").to_dict()


@router.post("/imports/budget", status_code=201)
def import_budget(
    file: UploadFile = File(...),
    project_name: str | None = Form(default=None),
    client_name: str | None = Form(default=None),
    location: str | None = Form(default=None),
    ctx: OrgContext = Depends(get_org_context),
    db: Database = Depends(get_db),
):
    data = file.file.read()
    project = None
    if project_name:
        project = ProjectCreate(name=project_name, client_name=client_name, location=location)
    result = ImportService(db).import_budget_from_excel(ctx, data, file.filename or "presupuesto.xlsx", project)
    log.info("budget_import_requested", filename=file.filename, size=len(data))
    return result
