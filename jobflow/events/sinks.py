"""Event sinks for lifecycle audit events.

The engine treats every sink as fire-and-forget: a failing sink is logged
and never rolls back the transition that produced the event.
"""

import enum
import json
import logging
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from jobflow.config import Settings
from jobflow.events.audit import AuditService
from jobflow.logging_setup import log_event_line

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    CLEARANCE_SCHEDULED = "CLEARANCE_SCHEDULED"
    CLEARANCE_RESCHEDULED = "CLEARANCE_RESCHEDULED"
    CLEARANCE_SCHEDULE_CANCELLED = "CLEARANCE_SCHEDULE_CANCELLED"
    CLEARANCE_ISSUED = "CLEARANCE_ISSUED"
    DELIVERY_NOTE_DELETED = "DELIVERY_NOTE_DELETED"
    DELIVERY_NOTE_DELIVERED = "DELIVERY_NOTE_DELIVERED"
    DELIVERY_NOTE_UPDATED = "DELIVERY_NOTE_UPDATED"
    PAYMENT_REQUESTED = "PAYMENT_REQUESTED"
    PAYMENT_UPDATED = "PAYMENT_UPDATED"
    PAYMENT_DELETED = "PAYMENT_DELETED"
    PAYMENT_SENT_TO_ACCOUNTS = "PAYMENT_SENT_TO_ACCOUNTS"
    PAYMENT_APPROVED = "PAYMENT_APPROVED"
    PAYMENT_CONFIRMATION_REQUESTED = "PAYMENT_CONFIRMATION_REQUESTED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"
    PAYMENT_SETTLED = "PAYMENT_SETTLED"
    JOB_COMPLETED = "JOB_COMPLETED"
    STAGE_SIGNAL_CONFLICT = "STAGE_SIGNAL_CONFLICT"


class EventSink(Protocol):
    async def emit(self, event_type: str, job_id: str | None, details: dict) -> None: ...


class LoggingEventSink:
    """Writes each event as a JSON line on the ``jobflow.events`` logger."""

    async def emit(self, event_type: str, job_id: str | None, details: dict) -> None:
        log_event_line(event_type, job_id, details)


class AuditEventSink:
    """Appends events to the audit_events table through AuditService."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def emit(self, event_type: str, job_id: str | None, details: dict) -> None:
        # JSON columns need plain types (UUIDs, Decimals, dates)
        payload = json.loads(json.dumps(details, default=str))
        # Savepoint: a failed audit insert rolls back only its own row
        async with self.db.begin_nested():
            await AuditService.log_event(
                self.db,
                event_type=event_type,
                job_id=job_id,
                actor=payload.get("actor") or "system",
                details=payload,
            )


def get_event_sink(settings: Settings, db: AsyncSession) -> EventSink:
    if settings.event_sink == "log":
        return LoggingEventSink()
    return AuditEventSink(db)


async def emit_safely(sink: EventSink, event_type: str, job_id: str | None, details: dict) -> None:
    """Deliver an event; delivery failure is logged, never raised."""
    event_name = event_type.value if isinstance(event_type, EventType) else event_type
    try:
        await sink.emit(event_name, job_id, details)
    except Exception as e:
        logger.warning("Failed to deliver %s event for job %s: %s", event_name, job_id, e)
