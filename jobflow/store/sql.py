"""SqlEntityStore — EntityStore over a SQLAlchemy AsyncSession."""

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobflow.exceptions import ConflictError, ValidationError
from jobflow.models import (
    BillOfLading,
    ClearanceSchedule,
    Container,
    DeliveryNote,
    DeliveryNoteItem,
    DeliveryNoteStatus,
    DeliveryNoteVehicle,
    Job,
    JobDocument,
    Payment,
    PaymentItem,
    PaymentStatus,
)


class SqlEntityStore:
    """Flushes on every write; commit/rollback is left to the session owner."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save(self, *entities) -> None:
        self.db.add_all(entities)
        await self.db.flush()

    async def delete(self, entity) -> None:
        await self.db.delete(entity)
        await self.db.flush()

    # ── Jobs ──

    async def get_job(self, job_id: str, *, for_update: bool = False) -> Job | None:
        query = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        return (await self.db.execute(query)).scalar_one_or_none()

    async def list_jobs(self, *, status: str | None = None) -> list[Job]:
        query = select(Job)
        if status:
            query = query.where(Job.status == status)
        result = await self.db.execute(query.order_by(Job.created_at.desc()))
        return list(result.scalars().all())

    async def list_bills_of_lading(self, job_id: str) -> list[BillOfLading]:
        result = await self.db.execute(
            select(BillOfLading).where(BillOfLading.job_id == job_id).order_by(BillOfLading.created_at)
        )
        return list(result.scalars().all())

    async def get_bill_of_lading(self, bl_id: uuid.UUID) -> BillOfLading | None:
        return await self.db.get(BillOfLading, bl_id)

    async def list_containers(self, job_id: str) -> list[Container]:
        result = await self.db.execute(
            select(Container).where(Container.job_id == job_id).order_by(Container.created_at)
        )
        return list(result.scalars().all())

    async def get_container(self, container_id: uuid.UUID) -> Container | None:
        return await self.db.get(Container, container_id)

    async def list_documents(self, job_id: str) -> list[JobDocument]:
        result = await self.db.execute(
            select(JobDocument).where(JobDocument.job_id == job_id).order_by(JobDocument.uploaded_at)
        )
        return list(result.scalars().all())

    # ── Clearance ──

    async def get_schedule(self, schedule_id: uuid.UUID) -> ClearanceSchedule | None:
        result = await self.db.execute(
            select(ClearanceSchedule)
            .where(ClearanceSchedule.id == schedule_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_schedules(
        self,
        *,
        job_id: str | None = None,
        ids: Iterable[uuid.UUID] | None = None,
        awaiting_only: bool = False,
    ) -> list[ClearanceSchedule]:
        query = select(ClearanceSchedule).execution_options(populate_existing=True)
        if job_id:
            query = query.where(ClearanceSchedule.job_id == job_id)
        if ids is not None:
            query = query.where(ClearanceSchedule.id.in_(list(ids)))
        if awaiting_only:
            consumed = select(DeliveryNoteItem.schedule_id)
            query = query.where(ClearanceSchedule.id.not_in(consumed))
        result = await self.db.execute(
            query.order_by(ClearanceSchedule.clearance_date, ClearanceSchedule.created_at)
        )
        return list(result.scalars().all())

    async def consumed_schedule_ids(self, schedule_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]:
        result = await self.db.execute(
            select(DeliveryNoteItem.schedule_id).where(DeliveryNoteItem.schedule_id.in_(list(schedule_ids)))
        )
        return set(result.scalars().all())

    async def covered_bl_ids(self, job_id: str) -> set[uuid.UUID]:
        result = await self.db.execute(
            select(ClearanceSchedule.bl_id)
            .join(DeliveryNoteItem, DeliveryNoteItem.schedule_id == ClearanceSchedule.id)
            .where(ClearanceSchedule.job_id == job_id)
            .distinct()
        )
        return set(result.scalars().all())

    async def get_delivery_note(self, note_id: str) -> DeliveryNote | None:
        result = await self.db.execute(
            select(DeliveryNote).where(DeliveryNote.id == note_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_delivery_notes(
        self, *, status: DeliveryNoteStatus | None = None, job_id: str | None = None
    ) -> list[DeliveryNote]:
        query = select(DeliveryNote)
        if status:
            query = query.where(DeliveryNote.status == status)
        if job_id:
            covering = select(DeliveryNoteItem.delivery_note_id).where(DeliveryNoteItem.job_id == job_id)
            query = query.where(DeliveryNote.id.in_(covering))
        result = await self.db.execute(query.order_by(DeliveryNote.created_at.desc()))
        return list(result.scalars().all())

    async def list_delivery_note_items(
        self, *, note_id: str | None = None, job_id: str | None = None
    ) -> list[DeliveryNoteItem]:
        query = select(DeliveryNoteItem)
        if note_id:
            query = query.where(DeliveryNoteItem.delivery_note_id == note_id)
        if job_id:
            query = query.where(DeliveryNoteItem.job_id == job_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_delivery_note_vehicles(self, note_id: str) -> list[DeliveryNoteVehicle]:
        result = await self.db.execute(
            select(DeliveryNoteVehicle).where(DeliveryNoteVehicle.delivery_note_id == note_id)
        )
        return list(result.scalars().all())

    async def last_delivery_note_id(self, id_prefix: str) -> str | None:
        # Longer suffixes sort last: "-1000" follows "-999"
        result = await self.db.execute(
            select(DeliveryNote.id)
            .where(DeliveryNote.id.like(f"{id_prefix}%"))
            .order_by(func.length(DeliveryNote.id).desc(), DeliveryNote.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_delivery_note(
        self,
        note: DeliveryNote,
        items: Sequence[DeliveryNoteItem],
        vehicles: Sequence[DeliveryNoteVehicle],
    ) -> DeliveryNote:
        self.db.add(note)
        await self.db.flush()
        self.db.add_all([*items, *vehicles])
        await self.db.flush()
        return note

    async def delete_delivery_note(self, note_id: str) -> list[DeliveryNoteItem]:
        """Remove a note with its items and vehicles in the current transaction.

        Returns the removed item rows; their schedules are back in the
        awaiting pool once this returns.
        """
        items = await self.list_delivery_note_items(note_id=note_id)
        await self.db.execute(delete(DeliveryNoteItem).where(DeliveryNoteItem.delivery_note_id == note_id))
        await self.db.execute(delete(DeliveryNoteVehicle).where(DeliveryNoteVehicle.delivery_note_id == note_id))
        await self.db.execute(delete(DeliveryNote).where(DeliveryNote.id == note_id))
        await self.db.flush()
        return items

    # ── Payments ──

    async def get_payment(self, payment_id: uuid.UUID) -> Payment | None:
        result = await self.db.execute(
            select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_payments(
        self,
        *,
        job_id: str | None = None,
        status: PaymentStatus | Iterable[PaymentStatus] | None = None,
        ids: Iterable[uuid.UUID] | None = None,
    ) -> list[Payment]:
        query = select(Payment).execution_options(populate_existing=True)
        if job_id:
            query = query.where(Payment.job_id == job_id)
        if isinstance(status, PaymentStatus):
            query = query.where(Payment.status == status)
        elif status is not None:
            query = query.where(Payment.status.in_(list(status)))
        if ids is not None:
            query = query.where(Payment.id.in_(list(ids)))
        result = await self.db.execute(query.order_by(Payment.created_at.desc()))
        return list(result.scalars().all())

    async def get_payment_item(self, name: str) -> PaymentItem | None:
        result = await self.db.execute(select(PaymentItem).where(PaymentItem.name == name))
        return result.scalar_one_or_none()

    async def last_voucher_no(self, prefix: str) -> str | None:
        result = await self.db.execute(
            select(Payment.voucher_no)
            .where(Payment.voucher_no.like(f"{prefix}%"))
            .order_by(func.length(Payment.voucher_no).desc(), Payment.voucher_no.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def settle_payments(
        self,
        payment_ids: Sequence[uuid.UUID],
        *,
        voucher_no: str,
        paid_at: datetime,
        processed_by: str | None,
        payment_reference: str | None = None,
        payment_mode: str | None = None,
        comments: str | None = None,
    ) -> list[Payment]:
        """Mark every listed payment Paid, or none of them.

        Rows are locked and re-read before any write; a payment that has
        left Approved, or a vendor mix, aborts the whole batch.
        """
        wanted = set(payment_ids)
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id.in_(list(wanted)))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payments = list(result.scalars().all())

        missing = wanted - {p.id for p in payments}
        if missing:
            raise ValidationError(
                f"Payments not found: {', '.join(sorted(str(m) for m in missing))}",
                payment_ids=[str(m) for m in missing],
            )

        stale = [p for p in payments if p.status != PaymentStatus.APPROVED]
        if stale:
            details = ", ".join(f"{p.id} is {p.status.value}" for p in stale)
            raise ConflictError(
                f"Settlement aborted, payments are no longer Approved: {details}. Refresh and retry.",
                entity_ids=[p.id for p in stale],
            )

        vendors = {_vendor_key(p.vendor) for p in payments}
        if len(vendors) > 1:
            raise ConflictError(
                "Settlement aborted, payments now belong to more than one vendor. Refresh and retry.",
                entity_ids=[p.id for p in payments],
            )

        for payment in payments:
            payment.status = PaymentStatus.PAID
            payment.voucher_no = voucher_no
            payment.paid_at = paid_at
            payment.processed_by = processed_by
            payment.payment_reference = payment_reference
            payment.payment_mode = payment_mode
            payment.comments = comments
        await self.db.flush()
        return payments


def _vendor_key(vendor: str | None) -> str:
    return (vendor or "").strip().casefold()
