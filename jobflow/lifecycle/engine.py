"""JobLifecycleEngine — the per-job façade over stage resolution and workflows.

Reads build a fresh snapshot and derive the stage plus the legal and
blocked actions from it. Writes go through ``perform_action``, which
re-reads the job, re-checks the action against that snapshot, runs it and
then brings ``progress`` in line with the resulting stage. It is also the
single place where storage and payload errors are translated.
"""

import contextlib
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PayloadValidationError
from sqlalchemy.exc import SQLAlchemyError

from jobflow.auth import Actor, AuthorizationProvider
from jobflow.config import Settings
from jobflow.events import EventSink, EventType, emit_safely
from jobflow.exceptions import PreconditionError, StorageError, ValidationError
from jobflow.lifecycle.actions import (
    ACTION_CAPABILITIES,
    ACTION_PAYLOADS,
    JobAction,
    check_action,
    evaluate_actions,
)
from jobflow.lifecycle.clearance import ClearanceWorkflow
from jobflow.lifecycle.payments import PaymentWorkflow, SettlementBucket
from jobflow.lifecycle.snapshot import JobSnapshot, load_snapshot
from jobflow.lifecycle.stages import Stage, StageReport, StageResolver
from jobflow.models import Job, JobStatus
from jobflow.schemas import (
    CompleteJobRequest,
    JobResponse,
    JobViewResponse,
    ProcessSettlementRequest,
    StageReportResponse,
)
from jobflow.store import EntityStore

logger = logging.getLogger(__name__)


def _actor_name(actor: Actor | str | None) -> str | None:
    if isinstance(actor, Actor):
        return actor.display_name
    return actor


def _format_payload_errors(e: PayloadValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "payload"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


@dataclass
class JobView:
    job: Job
    report: StageReport
    legal_actions: list[JobAction] = field(default_factory=list)
    blocked_actions: dict[JobAction, str] = field(default_factory=dict)

    @property
    def stage(self) -> Stage:
        return self.report.stage

    def to_response(self) -> JobViewResponse:
        report = self.report
        return JobViewResponse(
            job=JobResponse.model_validate(self.job),
            stage=StageReportResponse(
                stage=report.stage.label,
                percent=report.stage.percent,
                documentation_complete=report.documentation_complete,
                clearance_complete=report.clearance_complete,
                accounts_complete=report.accounts_complete,
                completed=report.completed,
                completion_eligible=report.completion_eligible,
                is_fully_paid=report.is_fully_paid,
                requested_total=report.totals.requested,
                paid_total=report.totals.paid,
                blockers=report.blockers,
                signal_conflict=report.signal_conflict,
            ),
            legal_actions=[a.value for a in self.legal_actions],
            blocked_actions={a.value: reason for a, reason in self.blocked_actions.items()},
        )


@dataclass
class ActionOutcome:
    action: JobAction
    job_id: str
    result: Any
    stage: Stage


class JobLifecycleEngine:
    """Façade the API layer calls for every stage-dependent read or write."""

    def __init__(
        self,
        store: EntityStore,
        events: EventSink,
        settings: Settings,
        authorization: AuthorizationProvider | None = None,
    ):
        self.store = store
        self.events = events
        self.settings = settings
        self.authorization = authorization
        self.resolver = StageResolver(settings)
        self.clearance = ClearanceWorkflow(store, events, settings)
        self.payments = PaymentWorkflow(store, events, settings)

    # ── Reads ──

    def _build_view(self, snapshot: JobSnapshot, report: StageReport, actor: Actor | None) -> JobView:
        legal: list[JobAction] = []
        blocked: dict[JobAction, str] = {}
        for check in evaluate_actions(snapshot, report):
            if not check.allowed:
                blocked[check.action] = "; ".join(check.reasons)
                continue
            if self.authorization is not None and actor is not None:
                capability = ACTION_CAPABILITIES[check.action]
                if not self.authorization.has_capability(actor, capability):
                    blocked[check.action] = f"Not permitted: requires {capability.value} capability"
                    continue
            legal.append(check.action)
        return JobView(job=snapshot.job, report=report, legal_actions=legal, blocked_actions=blocked)

    async def get_job_view(self, job_id: str, actor: Actor | None = None) -> JobView:
        """Current stage, legal actions and the reason every other action is blocked.

        Read-only. The result is a snapshot and may be stale by the time a
        write is attempted.
        """
        snapshot = await load_snapshot(self.store, job_id)
        report = self.resolver.evaluate(snapshot)
        if report.signal_conflict:
            logger.warning("Job %s stage signal conflict: %s", job_id, report.signal_conflict)
        return self._build_view(snapshot, report, actor)

    async def refresh(self, job_id: str, actor: Actor | None = None) -> JobView:
        """Re-derive the stage, reconcile ``progress`` and report signal conflicts.

        Hosts call this on their own schedule in place of polling timers.
        Progress is left untouched while the status/progress signals disagree
        with delivery-note coverage; the conflict is reported instead.
        """
        snapshot = await load_snapshot(self.store, job_id)
        report = await self._reconcile(snapshot)
        return self._build_view(snapshot, report, actor)

    async def _reconcile(self, snapshot: JobSnapshot) -> StageReport:
        job = snapshot.job
        report = self.resolver.evaluate(snapshot)
        if report.signal_conflict:
            logger.warning("Job %s stage signal conflict: %s", job.id, report.signal_conflict)
            await emit_safely(self.events, EventType.STAGE_SIGNAL_CONFLICT, job.id, {
                "status": job.status,
                "progress": job.progress,
                "coverage_complete": report.coverage_complete,
                "uncovered_bl_ids": list(report.uncovered_bl_ids),
                "message": report.signal_conflict,
            })
        elif job.progress != report.stage.percent:
            logger.info("Job %s progress %s -> %s", job.id, job.progress, report.stage.percent)
            job.progress = report.stage.percent
            await self.store.save(job)
        return report

    async def _sync_jobs(self, job_ids: Iterable[str]) -> None:
        for job_id in dict.fromkeys(job_ids):
            await self._reconcile(await load_snapshot(self.store, job_id))

    # ── Writes ──

    @contextlib.asynccontextmanager
    async def _storage_errors(self, operation: str, job_id: str | None):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error("Storage failure during %s for job %s: %s", operation, job_id, e)
            raise StorageError(
                f"Storage failure during {operation}; retry later",
                job_id=job_id,
                operation=operation,
            ) from e

    def _parse_payload(self, action: JobAction, payload) -> BaseModel:
        schema = ACTION_PAYLOADS[action]
        if isinstance(payload, schema):
            return payload
        try:
            return schema.model_validate(payload or {})
        except PayloadValidationError as e:
            raise ValidationError(
                f"Invalid {action.value} request: {_format_payload_errors(e)}",
                action=action.value,
            ) from e

    async def perform_action(
        self,
        job_id: str,
        action: JobAction | str,
        payload: BaseModel | dict | None = None,
        actor: Actor | str | None = None,
    ) -> ActionOutcome:
        """Run one action against a job after re-validating it on fresh state.

        Authorization is the caller's responsibility and is not re-checked.
        Raises PreconditionError naming the blocking predicate when the
        action is not legal right now.
        """
        try:
            action = JobAction(action)
        except ValueError as e:
            raise ValidationError(f"Unknown action: {action}") from e
        request = self._parse_payload(action, payload)
        name = _actor_name(actor)

        async with self._storage_errors(action.value, job_id):
            snapshot = await load_snapshot(self.store, job_id, for_update=True)
            check = check_action(action, snapshot, self.resolver.evaluate(snapshot))
            if not check.allowed:
                raise PreconditionError(
                    check.message,
                    gate=check.gate,
                    blockers=check.reasons,
                    job_id=job_id,
                    action=action.value,
                )

            handler = getattr(self, f"_do_{action.value}")
            result, touched = await handler(snapshot, request, name)
            await self._sync_jobs([job_id, *touched])
            stage = self.resolver.resolve(await load_snapshot(self.store, job_id))

        logger.info("Job %s: %s by %s, stage now %s", job_id, action.value, name or "system", stage.label)
        return ActionOutcome(action=action, job_id=job_id, result=result, stage=stage)

    async def settle_bucket(
        self,
        bucket: SettlementBucket,
        request: ProcessSettlementRequest | dict | None = None,
        actor: Actor | str | None = None,
    ):
        """Settle an operator's bucket, possibly spanning several jobs."""
        if isinstance(request, ProcessSettlementRequest):
            params = request.model_dump(exclude={"payment_ids"})
        else:
            params = dict(request or {})
            params.pop("payment_ids", None)
        async with self._storage_errors("settle_bucket", None):
            result = await self.payments.settle_bucket(bucket, processed_by=_actor_name(actor), **params)
            await self._sync_jobs(result.job_ids)
        return result

    # ── Action handlers: (snapshot, request, actor) -> (result, other touched job ids) ──

    def _require_schedule(self, snapshot: JobSnapshot, schedule_id: uuid.UUID) -> None:
        if schedule_id not in {s.id for s in snapshot.schedules}:
            raise ValidationError(
                f"Clearance schedule {schedule_id} does not belong to job {snapshot.job.id}",
                job_id=snapshot.job.id,
            )

    def _require_note(self, snapshot: JobSnapshot, note_id: str) -> None:
        if note_id not in {n.id for n in snapshot.delivery_notes}:
            raise ValidationError(
                f"Delivery note {note_id} does not cover job {snapshot.job.id}",
                job_id=snapshot.job.id,
            )

    def _require_payments(self, snapshot: JobSnapshot, payment_ids: Iterable[uuid.UUID]) -> None:
        own = {p.id for p in snapshot.payments}
        foreign = [pid for pid in payment_ids if pid not in own]
        if foreign:
            raise ValidationError(
                f"Payments do not belong to job {snapshot.job.id}: {', '.join(str(f) for f in foreign)}",
                job_id=snapshot.job.id,
            )

    async def _do_schedule_clearance(self, snapshot, request, actor):
        schedule = await self.clearance.schedule_clearance(
            snapshot.job.id, actor=actor, **request.model_dump()
        )
        return schedule, []

    async def _do_reschedule_clearance(self, snapshot, request, actor):
        self._require_schedule(snapshot, request.schedule_id)
        schedule = await self.clearance.reschedule_clearance(
            request.schedule_id,
            clearance_date=request.clearance_date,
            reason=request.reason,
            port=request.port,
            clearance_method=request.clearance_method,
            clearance_type=request.clearance_type,
            actor=actor,
        )
        return schedule, []

    async def _do_cancel_schedule(self, snapshot, request, actor):
        self._require_schedule(snapshot, request.schedule_id)
        await self.clearance.cancel_schedule(request.schedule_id, actor=actor)
        return None, []

    async def _do_issue_delivery_note(self, snapshot, request, actor):
        schedule_ids = [item.schedule_id for item in request.items]
        own = {s.id for s in snapshot.schedules}
        if not own.intersection(schedule_ids):
            raise ValidationError(
                f"None of the selected schedules belong to job {snapshot.job.id}",
                job_id=snapshot.job.id,
            )
        note = await self.clearance.issue_delivery_note(
            schedule_ids,
            consignee=request.consignee,
            vehicles=request.vehicles,
            item_details={item.schedule_id: item for item in request.items},
            loading_date=request.loading_date,
            unloading_date=request.unloading_date,
            comments=request.comments,
            issued_by=actor,
        )
        items = await self.store.list_delivery_note_items(note_id=note.id)
        return note, [item.job_id for item in items]

    async def _do_delete_delivery_note(self, snapshot, request, actor):
        self._require_note(snapshot, request.note_id)
        job_ids = await self.clearance.delete_delivery_note(request.note_id, actor=actor)
        return job_ids, job_ids

    async def _do_mark_delivered(self, snapshot, request, actor):
        self._require_note(snapshot, request.note_id)
        note = await self.clearance.mark_delivered(
            request.note_id,
            signed_copy=request.signed_copy,
            comments=request.comments,
            unloading_date=request.unloading_date,
            actor=actor,
        )
        return note, []

    async def _do_record_payment(self, snapshot, request, actor):
        payment = await self.payments.record_payment(
            snapshot.job.id, requested_by=actor, **request.model_dump()
        )
        return payment, []

    async def _do_send_to_accounts(self, snapshot, request, actor):
        payments = await self.payments.send_to_accounts(snapshot.job.id, request.payment_ids, actor=actor)
        return payments, []

    async def _do_approve_payment(self, snapshot, request, actor):
        self._require_payments(snapshot, [request.payment_id])
        return await self.payments.approve(request.payment_id, actor=actor), []

    async def _do_request_clearance_confirmation(self, snapshot, request, actor):
        self._require_payments(snapshot, [request.payment_id])
        return await self.payments.request_clearance_confirmation(request.payment_id, actor=actor), []

    async def _do_confirm_payments(self, snapshot, request, actor):
        self._require_payments(snapshot, request.payment_ids)
        return await self.payments.confirm_batch(request.payment_ids, request.confirmed, actor=actor), []

    async def _do_process_settlement(self, snapshot, request, actor):
        if not {p.id for p in snapshot.payments}.intersection(request.payment_ids):
            raise ValidationError(
                f"None of the selected payments belong to job {snapshot.job.id}",
                job_id=snapshot.job.id,
            )
        result = await self.payments.process_batch(
            request.payment_ids,
            voucher_no=request.voucher_no,
            payment_reference=request.payment_reference,
            payment_date=request.payment_date,
            processed_by=actor,
            payment_mode=request.payment_mode,
            comments=request.comments,
        )
        return result, result.job_ids

    async def _do_mark_completed(self, snapshot, request: CompleteJobRequest, actor):
        job = snapshot.job
        invoice_no = (request.job_invoice_no or job.job_invoice_no or "").strip()
        if not invoice_no:
            raise ValidationError(
                f"Job invoice number is required to complete job {job.id}",
                job_id=job.id,
            )
        job.job_invoice_no = invoice_no
        job.status = JobStatus.COMPLETED.value
        job.progress = Stage.COMPLETED.percent
        await self.store.save(job)

        await emit_safely(self.events, EventType.JOB_COMPLETED, job.id, {
            "job_invoice_no": invoice_no,
            "actor": actor,
        })
        return job, []
