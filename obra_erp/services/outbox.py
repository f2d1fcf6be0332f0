"""
Transactional outbox: events are written in the same transaction as the
change they describe, and completed events are purged by a daily job.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any

from psycopg.types.json import Json

from obra_erp.config import settings
from obra_erp.core.database import Database
from obra_erp.core.logging import get_logger
from obra_erp.core.models import OutboxStatus

log = get_logger(__name__)

BATCH_PAUSE_SECONDS = 0.5


def publish_outbox_event(
    db: Database,
    conn,
    org_id: str,
    event_type: str,
    entity_type: str,
    entity_id: str,
    payload: dict[str, Any] | None = None,
) -> None:
    """Insert an event using the caller's open transaction."""
    db.execute(
        """
        INSERT INTO outbox_events (org_id, event_type, entity_type, entity_id, payload)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (org_id, event_type, entity_type, str(entity_id), Json(payload or {})),
        conn=conn,
    )
    log.debug("outbox_event_published", event_type=event_type, entity_id=str(entity_id))


def cleanup_outbox(
    db: Database | None = None,
    ttl_days: int | None = None,
    batch_size: int | None = None,
    pause_seconds: float = BATCH_PAUSE_SECONDS,
) -> dict[str, Any]:
    """
    Delete COMPLETED events older than the TTL, in batches.

    FAILED events are kept for inspection. Loops until a batch comes back
    short, pausing between full batches to keep lock pressure low.
    """
    db = db or Database()
    ttl_days = ttl_days if ttl_days is not None else settings.outbox_ttl_days
    batch_size = batch_size or settings.outbox_batch_size
    cutoff = datetime.now(timezone.utc) - timedelta(days=ttl_days)

    total_deleted = 0
    batches = 0
    while True:
        deleted = db.execute(
            """
            DELETE FROM outbox_events
            WHERE id IN (
                SELECT id FROM outbox_events
                WHERE status = %s AND created_at < %s
                LIMIT %s
            )
            """,
            (OutboxStatus.COMPLETED.value, cutoff, batch_size),
        )
        batches += 1
        total_deleted += deleted
        if deleted < batch_size:
            break
        time.sleep(pause_seconds)

    result = {
        "total_deleted": total_deleted,
        "batches": batches,
        "cutoff_date": cutoff.isoformat(),
    }
    log.info("outbox_cleanup_complete", **result)
    return result
