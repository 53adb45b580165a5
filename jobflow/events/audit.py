"""AuditService — immutable append-only audit log.

Static methods so the sinks and the host layer can read and write events
without DI wiring.
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobflow.models.audit import AuditEvent


class AuditService:
    """Static audit event logger and query interface."""

    @staticmethod
    async def log_event(
        db: AsyncSession,
        *,
        event_type: str,
        job_id: str | None = None,
        actor: str = "system",
        details: dict | None = None,
    ) -> AuditEvent:
        """Append an immutable audit event."""
        event = AuditEvent(
            event_type=event_type,
            job_id=job_id,
            actor=actor,
            details=details,
        )
        db.add(event)
        await db.flush()
        return event

    @staticmethod
    async def get_events(
        db: AsyncSession,
        *,
        job_id: str | None = None,
        event_type: str | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> tuple[list[AuditEvent], int]:
        """Query audit events with filtering and pagination."""
        query = select(AuditEvent)
        count_query = select(func.count(AuditEvent.id))

        if job_id:
            query = query.where(AuditEvent.job_id == job_id)
            count_query = count_query.where(AuditEvent.job_id == job_id)
        if event_type:
            query = query.where(AuditEvent.event_type == event_type)
            count_query = count_query.where(AuditEvent.event_type == event_type)

        total = (await db.execute(count_query)).scalar_one()

        offset = (page - 1) * per_page
        query = query.order_by(AuditEvent.created_at.desc()).offset(offset).limit(per_page)
        result = await db.execute(query)
        events = list(result.scalars().all())

        return events, total
