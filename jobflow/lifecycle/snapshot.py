import uuid
from dataclasses import dataclass, field

from jobflow.exceptions import NotFoundError
from jobflow.models import (
    BillOfLading,
    ClearanceSchedule,
    Container,
    DeliveryNote,
    DeliveryNoteStatus,
    Job,
    JobDocument,
    Payment,
    PaymentStatus,
)
from jobflow.store import EntityStore


@dataclass
class JobSnapshot:
    """Everything the stage resolver and action gating read for one job.

    A snapshot may be stale as soon as it is taken; writes always re-load.
    """

    job: Job
    bls: list[BillOfLading]
    containers: list[Container]
    documents: list[JobDocument]
    covered_bl_ids: set[uuid.UUID]
    payments: list[Payment]
    schedules: list[ClearanceSchedule] = field(default_factory=list)
    awaiting_schedules: list[ClearanceSchedule] = field(default_factory=list)
    delivery_notes: list[DeliveryNote] = field(default_factory=list)

    def payments_in(self, *statuses: PaymentStatus) -> list[Payment]:
        return [p for p in self.payments if p.status in statuses]

    @property
    def pending_delivery_notes(self) -> list[DeliveryNote]:
        return [n for n in self.delivery_notes if n.status == DeliveryNoteStatus.PENDING]


async def load_snapshot(store: EntityStore, job_id: str, *, for_update: bool = False) -> JobSnapshot:
    job = await store.get_job(job_id, for_update=for_update)
    if job is None:
        raise NotFoundError("Job", job_id)
    schedules = await store.list_schedules(job_id=job_id)
    awaiting = await store.list_schedules(job_id=job_id, awaiting_only=True)
    return JobSnapshot(
        job=job,
        bls=await store.list_bills_of_lading(job_id),
        containers=await store.list_containers(job_id),
        documents=await store.list_documents(job_id),
        covered_bl_ids=await store.covered_bl_ids(job_id),
        payments=await store.list_payments(job_id=job_id),
        schedules=schedules,
        awaiting_schedules=awaiting,
        delivery_notes=await store.list_delivery_notes(job_id=job_id),
    )
