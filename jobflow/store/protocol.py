"""EntityStore — the persistence boundary the workflows depend on.

Implementations flush but never commit; the host owns the transaction.
Storage exceptions propagate unmodified.
"""

import uuid
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol

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


class EntityStore(Protocol):
    async def save(self, *entities) -> None: ...

    async def delete(self, entity) -> None: ...

    # Jobs and owned records
    async def get_job(self, job_id: str, *, for_update: bool = False) -> Job | None: ...

    async def list_jobs(self, *, status: str | None = None) -> list[Job]: ...

    async def list_bills_of_lading(self, job_id: str) -> list[BillOfLading]: ...

    async def get_bill_of_lading(self, bl_id: uuid.UUID) -> BillOfLading | None: ...

    async def list_containers(self, job_id: str) -> list[Container]: ...

    async def get_container(self, container_id: uuid.UUID) -> Container | None: ...

    async def list_documents(self, job_id: str) -> list[JobDocument]: ...

    # Clearance
    async def get_schedule(self, schedule_id: uuid.UUID) -> ClearanceSchedule | None: ...

    async def list_schedules(
        self,
        *,
        job_id: str | None = None,
        ids: Iterable[uuid.UUID] | None = None,
        awaiting_only: bool = False,
    ) -> list[ClearanceSchedule]: ...

    async def consumed_schedule_ids(self, schedule_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]: ...

    async def covered_bl_ids(self, job_id: str) -> set[uuid.UUID]: ...

    async def get_delivery_note(self, note_id: str) -> DeliveryNote | None: ...

    async def list_delivery_notes(
        self, *, status: DeliveryNoteStatus | None = None, job_id: str | None = None
    ) -> list[DeliveryNote]: ...

    async def list_delivery_note_items(
        self, *, note_id: str | None = None, job_id: str | None = None
    ) -> list[DeliveryNoteItem]: ...

    async def list_delivery_note_vehicles(self, note_id: str) -> list[DeliveryNoteVehicle]: ...

    async def last_delivery_note_id(self, id_prefix: str) -> str | None: ...

    async def create_delivery_note(
        self,
        note: DeliveryNote,
        items: Sequence[DeliveryNoteItem],
        vehicles: Sequence[DeliveryNoteVehicle],
    ) -> DeliveryNote: ...

    async def delete_delivery_note(self, note_id: str) -> list[DeliveryNoteItem]: ...

    # Payments
    async def get_payment(self, payment_id: uuid.UUID) -> Payment | None: ...

    async def list_payments(
        self,
        *,
        job_id: str | None = None,
        status: PaymentStatus | Iterable[PaymentStatus] | None = None,
        ids: Iterable[uuid.UUID] | None = None,
    ) -> list[Payment]: ...

    async def get_payment_item(self, name: str) -> PaymentItem | None: ...

    async def last_voucher_no(self, prefix: str) -> str | None: ...

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
    ) -> list[Payment]: ...
