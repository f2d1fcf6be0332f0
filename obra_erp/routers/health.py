"""
GET /health — liveness plus a database round trip.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from obra_erp.core.database import Database
from obra_erp.core.logging import get_logger
from obra_erp.routers.deps import get_db

log = get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Database = Depends(get_db)):
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        db.ping()
    except Exception as e:
        log.error("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=500,
            content={"status": "error", "db": "error", "timestamp": timestamp, "message": str(e)},
        )
    return {"status": "ok", "db": "ok", "timestamp": timestamp}
