"""
FastAPI application for the construction ERP.
"""

from contextlib import asynccontextmanager

import psycopg

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from obra_erp.config import settings
from obra_erp.core.database import Database
from obra_erp.core.errors import ObraError
from obra_erp.core.logging import configure_logging, get_logger
from obra_erp.scheduler import start_scheduler, stop_scheduler
from obra_erp.services.storage import StorageClient
from obra_erp.routers.auth import router as auth_router
from obra_erp.routers.budget import router as budget_router
from obra_erp.routers.change_orders import router as change_orders_router
from obra_erp.routers.documents import router as documents_router
from obra_erp.routers.exports import router as exports_router
from obra_erp.routers.finance import router as finance_router
from obra_erp.routers.health import router as health_router
from obra_erp.routers.imports import router as imports_router
from obra_erp.routers.inventory import router as inventory_router
from obra_erp.routers.materials import router as materials_router
from obra_erp.routers.parties import router as parties_router
from obra_erp.routers.projects import router as projects_router
from obra_erp.routers.reports import router as reports_router
from obra_erp.routers.schedule import router as schedule_router
from obra_erp.routers.team import router as team_router

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.log_json)
    log.info("application_starting")

    db = Database()
    db.init_schema()

    storage = StorageClient()
    if storage.enabled:
        storage.ensure_bucket()
    else:
        log.warning("storage_disabled", reason="document uploads will fail until storage is configured")

    if settings.scheduler_enabled:
        start_scheduler()
    else:
        log.info("scheduler_disabled")

    yield

    # Shutdown
    if settings.scheduler_enabled:
        stop_scheduler()
    log.info("application_stopped")


app = FastAPI(
    title=settings.app_name,
    description="Budgets, purchasing, finance, inventory and documents for construction projects",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(ObraError)
async def obra_error_handler(request: Request, exc: ObraError):
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(psycopg.errors.DataError)
async def data_error_handler(request: Request, exc: psycopg.errors.DataError):
    # malformed ids (non-UUID path segments) cannot match any row
    if isinstance(exc, psycopg.errors.InvalidTextRepresentation):
        return JSONResponse(status_code=404, content={"detail": "Recurso no encontrado"})
    log.warning("request_data_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=422, content={"detail": "Datos inválidos"})


app.include_router(health_router)
app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(budget_router)
app.include_router(imports_router)
app.include_router(materials_router)
app.include_router(finance_router)
app.include_router(inventory_router)
app.include_router(parties_router)
app.include_router(documents_router)
app.include_router(change_orders_router)
app.include_router(schedule_router)
app.include_router(team_router)
app.include_router(reports_router)
app.include_router(exports_router)
