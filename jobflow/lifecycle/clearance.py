"""ClearanceWorkflow — clearance schedules and the delivery notes that consume them.

Per BL the lifecycle is:

    Uncovered -> Scheduled -> (Rescheduled)* -> Covered (by a delivery note)

A schedule is "awaiting" until a delivery-note item references it. Issuing a
note consumes its schedules; deleting the note returns them to the pool and
restores the job status labels the note changed.
"""

import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone

from jobflow.config import Settings
from jobflow.events import EventSink, EventType, emit_safely
from jobflow.exceptions import NotFoundError, ValidationError
from jobflow.lifecycle.numbering import next_delivery_note_id
from jobflow.lifecycle.stages import CLEARED_STATUS_LABELS
from jobflow.models import (
    BillOfLading,
    ClearanceSchedule,
    DeliveryNote,
    DeliveryNoteItem,
    DeliveryNoteStatus,
    DeliveryNoteVehicle,
    Job,
    JobStatus,
)
from jobflow.schemas.clearance import AttachedDocument, DeliveryNoteItemInput, VehicleInput
from jobflow.store import EntityStore

logger = logging.getLogger(__name__)


@dataclass
class DeliveryNoteDetail:
    note: DeliveryNote
    items: list[DeliveryNoteItem]
    vehicles: list[DeliveryNoteVehicle]

    @property
    def job_ids(self) -> list[str]:
        return list(dict.fromkeys(item.job_id for item in self.items))


def _consignee_key(name: str | None) -> str:
    return " ".join((name or "").split()).casefold()


def _today() -> date:
    return datetime.now(timezone.utc).date()


class ClearanceWorkflow:
    """Schedules customs clearance per BL and issues/reverses delivery notes."""

    def __init__(self, store: EntityStore, events: EventSink, settings: Settings):
        self.store = store
        self.events = events
        self.settings = settings

    async def _get_job(self, job_id: str) -> Job:
        job = await self.store.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def _get_schedule(self, schedule_id: uuid.UUID) -> ClearanceSchedule:
        schedule = await self.store.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError("Clearance schedule", schedule_id)
        return schedule

    async def _get_note(self, note_id: str) -> DeliveryNote:
        note = await self.store.get_delivery_note(note_id)
        if note is None:
            raise NotFoundError("Delivery note", note_id)
        return note

    async def _consuming_note_id(self, schedule: ClearanceSchedule) -> str | None:
        for item in await self.store.list_delivery_note_items(job_id=schedule.job_id):
            if item.schedule_id == schedule.id:
                return item.delivery_note_id
        return None

    async def _resolve_target_bl(
        self,
        job: Job,
        bls: list[BillOfLading],
        bl_id: uuid.UUID | None,
        container_id: uuid.UUID | None,
    ) -> BillOfLading:
        """Find the BL a new schedule attaches to.

        An explicit BL wins; otherwise the container's BL; otherwise the
        job's only BL. Anything ambiguous is rejected.
        """
        if not bls:
            raise ValidationError(
                f"Job {job.id} has no bill of lading to attach a clearance schedule to",
                job_id=job.id,
            )
        by_id = {bl.id: bl for bl in bls}

        container = None
        if container_id is not None:
            container = await self.store.get_container(container_id)
            if container is None or container.job_id != job.id:
                raise ValidationError(
                    f"Container {container_id} does not belong to job {job.id}",
                    job_id=job.id,
                )

        if bl_id is not None:
            if bl_id not in by_id:
                raise ValidationError(f"BL {bl_id} does not belong to job {job.id}", job_id=job.id)
            if container is not None and container.bl_id not in (None, bl_id):
                raise ValidationError(
                    f"Container {container.container_no} is not carried under BL {by_id[bl_id].reference}",
                    job_id=job.id,
                )
            return by_id[bl_id]
        if container is not None and container.bl_id in by_id:
            return by_id[container.bl_id]
        if len(bls) == 1:
            return bls[0]
        raise ValidationError(
            f"Job {job.id} has {len(bls)} BLs; choose which BL this clearance is for",
            job_id=job.id,
        )

    # ── Schedules ──

    async def schedule_clearance(
        self,
        job_id: str,
        *,
        clearance_date: date,
        bl_id: uuid.UUID | None = None,
        container_id: uuid.UUID | None = None,
        port: str | None = None,
        clearance_method: str | None = None,
        clearance_type: str | None = None,
        packages: str | None = None,
        remarks: str | None = None,
        actor: str | None = None,
    ) -> ClearanceSchedule:
        job = await self._get_job(job_id)
        bls = await self.store.list_bills_of_lading(job_id)
        bl = await self._resolve_target_bl(job, bls, bl_id, container_id)

        if bl.id in await self.store.covered_bl_ids(job_id):
            raise ValidationError(
                f"BL {bl.reference} is already covered by a delivery note; "
                "delete that note before scheduling it again",
                job_id=job_id,
            )

        schedule = ClearanceSchedule(
            id=uuid.uuid4(),
            job_id=job_id,
            bl_id=bl.id,
            container_id=container_id,
            clearance_date=clearance_date,
            port=port,
            clearance_method=clearance_method,
            clearance_type=clearance_type,
            packages=packages,
            remarks=remarks,
            created_by=actor,
        )
        await self.store.save(schedule)

        if job.status == JobStatus.NEW.value:
            job.status = JobStatus.PENDING.value
            await self.store.save(job)

        logger.info("Scheduled clearance for job %s BL %s on %s", job_id, bl.reference, clearance_date)
        await emit_safely(self.events, EventType.CLEARANCE_SCHEDULED, job_id, {
            "schedule_id": schedule.id,
            "bl": bl.reference,
            "clearance_date": clearance_date,
            "port": port,
            "actor": actor,
        })
        return schedule

    async def reschedule_clearance(
        self,
        schedule_id: uuid.UUID,
        *,
        clearance_date: date,
        reason: str,
        port: str | None = None,
        clearance_method: str | None = None,
        clearance_type: str | None = None,
        actor: str | None = None,
    ) -> ClearanceSchedule:
        schedule = await self._get_schedule(schedule_id)
        note_id = await self._consuming_note_id(schedule)
        if note_id is not None:
            raise ValidationError(
                f"Schedule {schedule_id} is already covered by delivery note {note_id} "
                "and can no longer be rescheduled",
                job_id=schedule.job_id,
                delivery_note_id=note_id,
            )
        if not reason or not reason.strip():
            raise ValidationError("A reschedule reason is required", job_id=schedule.job_id)

        previous_date = schedule.clearance_date
        schedule.clearance_date = clearance_date
        schedule.reschedule_reason = reason.strip()
        schedule.reschedule_count = (schedule.reschedule_count or 0) + 1
        if port is not None:
            schedule.port = port
        if clearance_method is not None:
            schedule.clearance_method = clearance_method
        if clearance_type is not None:
            schedule.clearance_type = clearance_type
        await self.store.save(schedule)

        await emit_safely(self.events, EventType.CLEARANCE_RESCHEDULED, schedule.job_id, {
            "schedule_id": schedule.id,
            "previous_date": previous_date,
            "clearance_date": clearance_date,
            "reason": schedule.reschedule_reason,
            "actor": actor,
        })
        return schedule

    async def cancel_schedule(self, schedule_id: uuid.UUID, *, actor: str | None = None) -> None:
        schedule = await self._get_schedule(schedule_id)
        note_id = await self._consuming_note_id(schedule)
        if note_id is not None:
            raise ValidationError(
                f"Schedule {schedule_id} is covered by delivery note {note_id} and cannot be cancelled",
                job_id=schedule.job_id,
                delivery_note_id=note_id,
            )
        job_id = schedule.job_id
        await self.store.delete(schedule)
        await emit_safely(self.events, EventType.CLEARANCE_SCHEDULE_CANCELLED, job_id, {
            "schedule_id": schedule_id,
            "actor": actor,
        })

    async def list_awaiting_schedules(self, job_id: str | None = None) -> list[ClearanceSchedule]:
        """Schedules not yet consumed by a delivery note, by clearance date."""
        return await self.store.list_schedules(job_id=job_id, awaiting_only=True)

    # ── Delivery notes ──

    async def issue_delivery_note(
        self,
        schedule_ids: Sequence[uuid.UUID],
        *,
        consignee: str | None = None,
        vehicles: Sequence[VehicleInput] = (),
        item_details: Mapping[uuid.UUID, DeliveryNoteItemInput] | None = None,
        loading_date: date | None = None,
        unloading_date: date | None = None,
        comments: str | None = None,
        issued_by: str | None = None,
    ) -> DeliveryNote:
        if not schedule_ids:
            raise ValidationError("No clearance schedules selected for the delivery note")
        if len(set(schedule_ids)) != len(schedule_ids):
            raise ValidationError("A clearance schedule was selected more than once")

        schedules = await self.store.list_schedules(ids=schedule_ids)
        found = {s.id: s for s in schedules}
        missing = [sid for sid in schedule_ids if sid not in found]
        if missing:
            raise ValidationError(
                f"Clearance schedules not found: {', '.join(str(m) for m in missing)}",
                schedule_ids=[str(m) for m in missing],
            )
        consumed = await self.store.consumed_schedule_ids(schedule_ids)
        if consumed:
            raise ValidationError(
                f"Clearance schedules already covered by a delivery note: {', '.join(str(c) for c in consumed)}",
                schedule_ids=[str(c) for c in consumed],
            )
        ordered = [found[sid] for sid in schedule_ids]

        jobs: dict[str, Job] = {}
        for schedule in ordered:
            if schedule.job_id not in jobs:
                jobs[schedule.job_id] = await self._get_job(schedule.job_id)

        unnamed = [job.id for job in jobs.values() if not _consignee_key(job.consignee)]
        if unnamed:
            raise ValidationError(
                f"Consignee missing on job(s) {', '.join(unnamed)}; cannot issue a delivery note",
                job_ids=unnamed,
            )
        consignees = {_consignee_key(job.consignee) for job in jobs.values()}
        if len(consignees) > 1:
            names = ", ".join(f"{job.id}: {job.consignee}" for job in jobs.values())
            raise ValidationError(
                f"Selected schedules belong to different consignees ({names}); "
                "a delivery note covers one consignee",
                job_ids=list(jobs),
            )
        first_job = next(iter(jobs.values()))
        if consignee and _consignee_key(consignee) not in consignees:
            raise ValidationError(
                f"Consignee '{consignee}' does not match the jobs' consignee '{first_job.consignee}'",
                job_ids=list(jobs),
            )

        # Which jobs this note will finish clearing, and the label to restore on delete.
        # A clearance label held without full coverage is not restorable.
        clearing: dict[str, str] = {}
        for job in jobs.values():
            bls = await self.store.list_bills_of_lading(job.id)
            covered = await self.store.covered_bl_ids(job.id)
            after = covered | {s.bl_id for s in ordered if s.job_id == job.id}
            if bls and all(bl.id in after for bl in bls) and not all(bl.id in covered for bl in bls):
                clearing[job.id] = (
                    JobStatus.PENDING.value if job.status in CLEARED_STATUS_LABELS else job.status
                )

        issued_on = _today()
        note_id = await next_delivery_note_id(self.store, self.settings.delivery_note_prefix, issued_on)
        note = DeliveryNote(
            id=note_id,
            consignee=consignee or first_job.consignee,
            exporter=first_job.exporter,
            issued_date=issued_on,
            issued_by=issued_by,
            status=DeliveryNoteStatus.PENDING,
            loading_date=loading_date,
            unloading_date=unloading_date,
            comments=comments,
            documents=[],
        )

        details = item_details or {}
        items = []
        recorded: set[str] = set()
        for schedule in ordered:
            detail = details.get(schedule.id)
            status_before = None
            if schedule.job_id in clearing and schedule.job_id not in recorded:
                status_before = clearing[schedule.job_id]
                recorded.add(schedule.job_id)
            items.append(DeliveryNoteItem(
                id=uuid.uuid4(),
                delivery_note_id=note_id,
                schedule_id=schedule.id,
                job_id=schedule.job_id,
                shortage=detail.shortage if detail else None,
                damaged=detail.damaged if detail else None,
                remarks=detail.remarks if detail else None,
                job_status_before=status_before,
            ))
        vehicle_rows = [
            DeliveryNoteVehicle(
                id=uuid.uuid4(),
                delivery_note_id=note_id,
                vehicle_id=(v.vehicle_id or "").strip() or None,
                driver_name=v.driver,
                driver_contact=v.driver_contact,
                discharge_location=v.discharge_location,
            )
            for v in vehicles
        ]
        await self.store.create_delivery_note(note, items, vehicle_rows)

        for job_id in clearing:
            job = jobs[job_id]
            if job.status not in CLEARED_STATUS_LABELS:
                job.status = JobStatus.CLEARED.value
                await self.store.save(job)

        logger.info("Issued delivery note %s covering %d schedule(s)", note_id, len(items))
        for job in jobs.values():
            await emit_safely(self.events, EventType.CLEARANCE_ISSUED, job.id, {
                "delivery_note_id": note_id,
                "schedule_ids": [s.id for s in ordered if s.job_id == job.id],
                "job_cleared": job.id in clearing,
                "actor": issued_by,
            })
        return note

    async def delete_delivery_note(self, note_id: str, *, actor: str | None = None) -> list[str]:
        """Compensating action for ``issue_delivery_note``.

        Returns the covered schedules to the awaiting pool and restores the
        status label of every job that loses full coverage. Returns the ids
        of the affected jobs.
        """
        await self._get_note(note_id)
        items = await self.store.list_delivery_note_items(note_id=note_id)

        jobs: dict[str, Job] = {}
        for item in items:
            if item.job_id not in jobs:
                jobs[item.job_id] = await self._get_job(item.job_id)
        completed = [job.id for job in jobs.values() if job.status == JobStatus.COMPLETED.value]
        if completed:
            raise ValidationError(
                f"Job(s) {', '.join(completed)} are Completed; their delivery notes can no longer be deleted",
                job_ids=completed,
            )

        status_before = {item.job_id: item.job_status_before for item in items if item.job_status_before}
        await self.store.delete_delivery_note(note_id)

        for job in jobs.values():
            bls = await self.store.list_bills_of_lading(job.id)
            covered = await self.store.covered_bl_ids(job.id)
            still_cleared = bool(bls) and all(bl.id in covered for bl in bls)
            restored = None
            if not still_cleared and job.status in CLEARED_STATUS_LABELS:
                restored = status_before.get(job.id) or JobStatus.PENDING.value
                job.status = restored
                await self.store.save(job)
            await emit_safely(self.events, EventType.DELIVERY_NOTE_DELETED, job.id, {
                "delivery_note_id": note_id,
                "schedule_ids": [i.schedule_id for i in items if i.job_id == job.id],
                "restored_status": restored,
                "actor": actor,
            })

        logger.info("Deleted delivery note %s; %d schedule(s) returned to the pool", note_id, len(items))
        return list(jobs)

    async def mark_delivered(
        self,
        note_id: str,
        *,
        signed_copy: AttachedDocument | None = None,
        comments: str | None = None,
        unloading_date: date | None = None,
        actor: str | None = None,
    ) -> DeliveryNote:
        """Pending -> Delivered. Delivered is terminal."""
        note = await self._get_note(note_id)
        if note.status == DeliveryNoteStatus.DELIVERED:
            raise ValidationError(
                f"Delivery note {note_id} is already Delivered; delete and reissue it to reopen",
                delivery_note_id=note_id,
            )
        if signed_copy is None and self.settings.require_signed_copy_on_delivery:
            raise ValidationError(
                f"Upload the signed copy of delivery note {note_id} to mark it Delivered",
                delivery_note_id=note_id,
            )

        if signed_copy is not None:
            note.documents = [*(note.documents or []), signed_copy.model_dump(mode="json")]
        if comments is not None:
            note.comments = comments
        if unloading_date is not None:
            note.unloading_date = unloading_date
        note.status = DeliveryNoteStatus.DELIVERED
        note.delivered_at = datetime.now(timezone.utc)
        await self.store.save(note)

        job_ids = {item.job_id for item in await self.store.list_delivery_note_items(note_id=note_id)}
        for job_id in sorted(job_ids):
            await emit_safely(self.events, EventType.DELIVERY_NOTE_DELIVERED, job_id, {
                "delivery_note_id": note_id,
                "signed_copy": signed_copy.name if signed_copy else None,
                "actor": actor,
            })
        return note

    async def attach_documents(
        self,
        note_id: str,
        documents: Sequence[AttachedDocument],
        *,
        comments: str | None = None,
        unloading_date: date | None = None,
        actor: str | None = None,
    ) -> DeliveryNote:
        """Append documents and update handover details without changing status."""
        note = await self._get_note(note_id)
        note.documents = [*(note.documents or []), *(d.model_dump(mode="json") for d in documents)]
        if comments is not None:
            note.comments = comments
        if unloading_date is not None:
            note.unloading_date = unloading_date
        await self.store.save(note)

        job_ids = {item.job_id for item in await self.store.list_delivery_note_items(note_id=note_id)}
        for job_id in sorted(job_ids):
            await emit_safely(self.events, EventType.DELIVERY_NOTE_UPDATED, job_id, {
                "delivery_note_id": note_id,
                "documents": [d.name for d in documents],
                "actor": actor,
            })
        return note

    async def list_pending_delivery_notes(self) -> list[DeliveryNote]:
        return await self.store.list_delivery_notes(status=DeliveryNoteStatus.PENDING)

    async def get_delivery_note(self, note_id: str) -> DeliveryNoteDetail:
        note = await self._get_note(note_id)
        return DeliveryNoteDetail(
            note=note,
            items=await self.store.list_delivery_note_items(note_id=note_id),
            vehicles=await self.store.list_delivery_note_vehicles(note_id),
        )
