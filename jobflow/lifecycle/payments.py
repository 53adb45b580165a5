"""PaymentWorkflow — payment status machine and vendor settlement batches.

    Draft -> Pending -> Approved -> Paid
                  \\-> Awaiting Clearance -> Approved
    Pending / Awaiting Clearance -> Rejected

Single-payment transitions are independent of each other, so confirm_batch
reports per item. Settlement is the exception: every payment in a batch is
marked Paid under one voucher, or none is.
"""

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation

from jobflow.config import Settings
from jobflow.events import EventSink, EventType, emit_safely
from jobflow.exceptions import JobflowError, NotFoundError, PreconditionError, ValidationError
from jobflow.lifecycle.numbering import next_voucher_no
from jobflow.lifecycle.snapshot import load_snapshot
from jobflow.lifecycle.stages import ZERO, Gate, StageResolver, is_fully_paid, payment_totals
from jobflow.models import JobStatus, PaidBy, Payment, PaymentStatus
from jobflow.schemas.payment import (
    BatchItemResult,
    ConfirmBatchResult,
    PaymentSummary,
    SettlementResult,
)
from jobflow.store import EntityStore

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

CLEARANCE_REQUIRED_MESSAGE = "Please issue Delivery Notes for all BLs first"


def vendor_key(vendor: str | None) -> str:
    return (vendor or "").strip().casefold()


def _to_amount(value) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite() or amount <= ZERO:
        raise ValidationError("Amount must be greater than zero", amount=str(value))
    if amount != amount.quantize(CENT):
        raise ValidationError("Amount must have at most two decimal places", amount=str(value))
    return amount.quantize(CENT)


def _as_timestamp(value: date | datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _status_error(payment: Payment, action: str, allowed: Iterable[PaymentStatus]) -> PreconditionError:
    allowed_text = " or ".join(s.value for s in allowed)
    return PreconditionError(
        f"Cannot {action} payment {payment.id}: status is {payment.status.value}, expected {allowed_text}",
        gate="payment_status",
        blockers=[f"Payment {payment.id} is {payment.status.value}"],
        payment_id=str(payment.id),
        job_id=payment.job_id,
    )


@dataclass(frozen=True)
class BucketEntry:
    payment_id: uuid.UUID
    job_id: str
    vendor: str
    amount: Decimal
    status: PaymentStatus


class SettlementBucket:
    """Per-session selection of payments to settle together.

    Never persisted and never shared between operators. Every member has
    the same vendor (compared case-insensitively); a rejected add leaves
    the bucket exactly as it was.
    """

    def __init__(self):
        self._entries: dict[uuid.UUID, BucketEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, payment_id) -> bool:
        return payment_id in self._entries

    def __iter__(self):
        return iter(self._entries.values())

    @property
    def vendor(self) -> str | None:
        first = next(iter(self._entries.values()), None)
        return first.vendor if first else None

    @property
    def payment_ids(self) -> list[uuid.UUID]:
        return list(self._entries)

    @property
    def job_ids(self) -> list[str]:
        return list(dict.fromkeys(e.job_id for e in self._entries.values()))

    @property
    def total(self) -> Decimal:
        return sum((e.amount for e in self._entries.values()), ZERO)

    @property
    def ineligible(self) -> list[BucketEntry]:
        return [e for e in self._entries.values() if e.status != PaymentStatus.APPROVED]

    @property
    def is_eligible(self) -> bool:
        """True when non-empty and every member is Approved."""
        return bool(self._entries) and not self.ineligible

    def add(self, payment: Payment) -> None:
        if payment.status in (PaymentStatus.PAID, PaymentStatus.REJECTED):
            raise ValidationError(
                f"Payment {payment.id} is {payment.status.value} and cannot be settled",
                payment_id=str(payment.id),
            )
        if vendor_key(payment.vendor) == "":
            raise ValidationError(f"Payment {payment.id} has no vendor", payment_id=str(payment.id))
        current = self.vendor
        if current is not None and vendor_key(current) != vendor_key(payment.vendor):
            raise ValidationError(
                f"Settlement batch holds payments for vendor '{current}'; "
                f"payment {payment.id} is for '{payment.vendor}'",
                payment_id=str(payment.id),
                vendor=current,
            )
        self._entries[payment.id] = BucketEntry(
            payment_id=payment.id,
            job_id=payment.job_id,
            vendor=payment.vendor.strip(),
            amount=_to_amount(payment.amount),
            status=payment.status,
        )

    def remove(self, payment_id: uuid.UUID) -> None:
        self._entries.pop(payment_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def refresh(self, payments: Iterable[Payment]) -> None:
        """Update member statuses and amounts from freshly loaded rows."""
        for payment in payments:
            if payment.id in self._entries:
                self._entries[payment.id] = BucketEntry(
                    payment_id=payment.id,
                    job_id=payment.job_id,
                    vendor=self._entries[payment.id].vendor,
                    amount=_to_amount(payment.amount),
                    status=payment.status,
                )


class PaymentWorkflow:
    """Payment requests, approvals and settlement for jobs."""

    def __init__(self, store: EntityStore, events: EventSink, settings: Settings):
        self.store = store
        self.events = events
        self.settings = settings
        self.resolver = StageResolver(settings)

    async def _get_payment(self, payment_id: uuid.UUID) -> Payment:
        payment = await self.store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def _transition(
        self,
        payment_id: uuid.UUID,
        *,
        allowed: Sequence[PaymentStatus],
        target: PaymentStatus,
        action: str,
        event_type: EventType,
        actor: str | None,
    ) -> Payment:
        payment = await self._get_payment(payment_id)
        if payment.status not in allowed:
            raise _status_error(payment, action, allowed)
        previous = payment.status
        payment.status = target
        if target == PaymentStatus.APPROVED or target == PaymentStatus.REJECTED:
            payment.processed_by = actor
        await self.store.save(payment)

        logger.info("Payment %s: %s -> %s", payment.id, previous.value, target.value)
        await emit_safely(self.events, event_type, payment.job_id, {
            "payment_id": payment.id,
            "previous_status": previous.value,
            "status": target.value,
            "actor": actor,
        })
        return payment

    # ── Requests ──

    async def record_payment(
        self,
        job_id: str,
        *,
        payment_type: str,
        amount,
        paid_by: PaidBy | str,
        vendor: str | None = None,
        bill_ref_no: str | None = None,
        requested_by: str | None = None,
    ) -> Payment:
        """Create a Draft payment request, taking the vendor from the catalog if not given."""
        job = await self.store.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        if job.status == JobStatus.COMPLETED.value:
            raise PreconditionError(
                f"Job {job_id} is Completed; no new payments can be requested",
                gate=Gate.COMPLETED.value,
                blockers=["Job already marked Completed"],
                job_id=job_id,
            )
        report = self.resolver.evaluate(await load_snapshot(self.store, job_id))
        if report.accounts_complete:
            raise PreconditionError(
                f"Job {job_id} is fully paid; accounts are closed to new payment requests",
                gate=Gate.ACCOUNTS.value,
                blockers=["Job is fully paid"],
                job_id=job_id,
            )
        if not payment_type or not payment_type.strip():
            raise ValidationError("Payment type is required", job_id=job_id)
        value = _to_amount(amount)
        try:
            paid_by = PaidBy(paid_by)
        except ValueError as e:
            raise ValidationError(f"paid_by must be Company or Customer, got {paid_by!r}") from e

        resolved_vendor = (vendor or "").strip()
        if not resolved_vendor:
            item = await self.store.get_payment_item(payment_type.strip())
            resolved_vendor = (item.vendor or "").strip() if item else ""
        if not resolved_vendor:
            raise ValidationError(
                f"Vendor is required: payment type '{payment_type}' has no catalog vendor",
                job_id=job_id,
            )

        payment = Payment(
            id=uuid.uuid4(),
            job_id=job_id,
            payment_type=payment_type.strip(),
            vendor=resolved_vendor,
            amount=value,
            paid_by=paid_by,
            status=PaymentStatus.DRAFT,
            requested_by=requested_by,
            bill_ref_no=bill_ref_no,
        )
        await self.store.save(payment)

        await emit_safely(self.events, EventType.PAYMENT_REQUESTED, job_id, {
            "payment_id": payment.id,
            "payment_type": payment.payment_type,
            "vendor": resolved_vendor,
            "amount": value,
            "actor": requested_by,
        })
        return payment

    async def update_amount(self, payment_id: uuid.UUID, amount, *, actor: str | None = None) -> Payment:
        payment = await self._get_payment(payment_id)
        allowed = (PaymentStatus.DRAFT, PaymentStatus.PENDING)
        if payment.status not in allowed:
            raise _status_error(payment, "change the amount of", allowed)
        previous = payment.amount
        payment.amount = _to_amount(amount)
        await self.store.save(payment)
        await emit_safely(self.events, EventType.PAYMENT_UPDATED, payment.job_id, {
            "payment_id": payment.id,
            "previous_amount": previous,
            "amount": payment.amount,
            "actor": actor,
        })
        return payment

    async def delete_payment(self, payment_id: uuid.UUID, *, actor: str | None = None) -> None:
        payment = await self._get_payment(payment_id)
        allowed = (PaymentStatus.DRAFT, PaymentStatus.REJECTED)
        if payment.status not in allowed:
            raise _status_error(payment, "delete", allowed)
        job_id = payment.job_id
        await self.store.delete(payment)
        await emit_safely(self.events, EventType.PAYMENT_DELETED, job_id, {
            "payment_id": payment_id,
            "actor": actor,
        })

    async def send_to_accounts(
        self,
        job_id: str,
        payment_ids: Sequence[uuid.UUID] | None = None,
        *,
        actor: str | None = None,
    ) -> list[Payment]:
        """Draft -> Pending for the listed payments (all Drafts when None).

        The job must be Clearance-complete at the moment of the call; the
        snapshot is re-read here, not trusted from the caller.
        """
        snapshot = await load_snapshot(self.store, job_id, for_update=True)
        report = self.resolver.evaluate(snapshot)
        if not report.clearance_complete:
            blockers = report.blockers_for(Gate.CLEARANCE)
            raise PreconditionError(
                f"Cannot send payments to accounts before clearance is complete. "
                f"{CLEARANCE_REQUIRED_MESSAGE}: {'; '.join(blockers)}",
                gate=Gate.CLEARANCE.value,
                blockers=blockers,
                job_id=job_id,
            )

        if payment_ids is None:
            targets = snapshot.payments_in(PaymentStatus.DRAFT)
            if not targets:
                raise ValidationError(f"Job {job_id} has no draft payments to send", job_id=job_id)
        else:
            if not payment_ids:
                raise ValidationError("No payments selected", job_id=job_id)
            by_id = {p.id: p for p in snapshot.payments}
            foreign = [pid for pid in payment_ids if pid not in by_id]
            if foreign:
                raise ValidationError(
                    f"Payments do not belong to job {job_id}: {', '.join(str(f) for f in foreign)}",
                    job_id=job_id,
                )
            targets = [by_id[pid] for pid in dict.fromkeys(payment_ids)]
            not_draft = [p for p in targets if p.status != PaymentStatus.DRAFT]
            if not_draft:
                raise _status_error(not_draft[0], "send to accounts", (PaymentStatus.DRAFT,))

        for payment in targets:
            payment.status = PaymentStatus.PENDING
        job = snapshot.job
        if job.status != JobStatus.COMPLETED.value:
            job.status = JobStatus.PAYMENT.value
        await self.store.save(job, *targets)

        logger.info("Sent %d payment(s) of job %s to accounts", len(targets), job_id)
        await emit_safely(self.events, EventType.PAYMENT_SENT_TO_ACCOUNTS, job_id, {
            "payment_ids": [p.id for p in targets],
            "total": sum((p.amount for p in targets), ZERO),
            "actor": actor,
        })
        return targets

    # ── Approval ──

    async def approve(self, payment_id: uuid.UUID, *, actor: str | None = None) -> Payment:
        return await self._transition(
            payment_id,
            allowed=(PaymentStatus.PENDING,),
            target=PaymentStatus.APPROVED,
            action="approve",
            event_type=EventType.PAYMENT_APPROVED,
            actor=actor,
        )

    async def request_clearance_confirmation(self, payment_id: uuid.UUID, *, actor: str | None = None) -> Payment:
        return await self._transition(
            payment_id,
            allowed=(PaymentStatus.PENDING, PaymentStatus.APPROVED),
            target=PaymentStatus.AWAITING_CLEARANCE,
            action="request clearance confirmation for",
            event_type=EventType.PAYMENT_CONFIRMATION_REQUESTED,
            actor=actor,
        )

    async def confirm_clearance(self, payment_id: uuid.UUID, *, actor: str | None = None) -> Payment:
        return await self._transition(
            payment_id,
            allowed=(PaymentStatus.AWAITING_CLEARANCE,),
            target=PaymentStatus.APPROVED,
            action="confirm",
            event_type=EventType.PAYMENT_CONFIRMED,
            actor=actor,
        )

    async def reject(self, payment_id: uuid.UUID, *, actor: str | None = None) -> Payment:
        return await self._transition(
            payment_id,
            allowed=(PaymentStatus.PENDING, PaymentStatus.AWAITING_CLEARANCE),
            target=PaymentStatus.REJECTED,
            action="reject",
            event_type=EventType.PAYMENT_REJECTED,
            actor=actor,
        )

    async def confirm_batch(
        self,
        payment_ids: Sequence[uuid.UUID],
        confirmed: bool,
        *,
        actor: str | None = None,
    ) -> ConfirmBatchResult:
        """Confirm (-> Approved) or reject each payment independently.

        A failing item is reported in the result and does not affect the
        others. Storage failures still propagate.
        """
        results = []
        for payment_id in dict.fromkeys(payment_ids):
            try:
                if confirmed:
                    payment = await self.confirm_clearance(payment_id, actor=actor)
                else:
                    payment = await self.reject(payment_id, actor=actor)
            except JobflowError as e:
                results.append(BatchItemResult(payment_id=payment_id, ok=False, error=e.message))
                continue
            results.append(BatchItemResult(payment_id=payment_id, ok=True, status=payment.status.value))

        batch = ConfirmBatchResult(confirmed=confirmed, results=results)
        if batch.failed:
            logger.warning(
                "%s batch: %d of %d payment(s) failed",
                "Confirm" if confirmed else "Reject", len(batch.failed), len(results),
            )
        return batch

    # ── Settlement ──

    async def add_to_settlement_bucket(self, bucket: SettlementBucket, payment_id: uuid.UUID) -> SettlementBucket:
        bucket.add(await self._get_payment(payment_id))
        return bucket

    def remove_from_settlement_bucket(self, bucket: SettlementBucket, payment_id: uuid.UUID) -> SettlementBucket:
        bucket.remove(payment_id)
        return bucket

    async def process_batch(
        self,
        payment_ids: Sequence[uuid.UUID],
        *,
        voucher_no: str | None = None,
        payment_reference: str | None = None,
        payment_date: date | datetime | None = None,
        processed_by: str | None = None,
        payment_mode: str | None = None,
        comments: str | None = None,
    ) -> SettlementResult:
        """Mark every listed payment Paid under one voucher, or none.

        Statuses are re-checked by the store under row locks right before
        the write; a payment that left Approved raises ConflictError.
        """
        ids = list(dict.fromkeys(payment_ids))
        if not ids:
            raise ValidationError("No payments selected for settlement")

        payments = await self.store.list_payments(ids=ids)
        missing = set(ids) - {p.id for p in payments}
        if missing:
            raise ValidationError(
                f"Payments not found: {', '.join(sorted(str(m) for m in missing))}",
                payment_ids=[str(m) for m in missing],
            )
        vendors = {vendor_key(p.vendor) for p in payments}
        if len(vendors) > 1:
            names = sorted({p.vendor for p in payments})
            raise ValidationError(
                f"A settlement batch must have one vendor, got: {', '.join(names)}",
                payment_ids=[str(i) for i in ids],
            )

        paid_at = _as_timestamp(payment_date)
        voucher = (voucher_no or "").strip() or await next_voucher_no(
            self.store, self.settings.voucher_prefix, paid_at.date()
        )
        settled = await self.store.settle_payments(
            ids,
            voucher_no=voucher,
            paid_at=paid_at,
            processed_by=processed_by,
            payment_reference=payment_reference,
            payment_mode=payment_mode,
            comments=comments,
        )

        job_ids = list(dict.fromkeys(p.job_id for p in settled))
        total = sum((p.amount for p in settled), ZERO)
        logger.info("Settled %d payment(s) for %s under voucher %s", len(settled), settled[0].vendor, voucher)
        for job_id in job_ids:
            await emit_safely(self.events, EventType.PAYMENT_SETTLED, job_id, {
                "voucher_no": voucher,
                "payment_ids": [p.id for p in settled if p.job_id == job_id],
                "vendor": settled[0].vendor,
                "batch_total": total,
                "payment_reference": payment_reference,
                "actor": processed_by,
            })
        return SettlementResult(
            voucher_no=voucher,
            vendor=settled[0].vendor,
            payment_ids=[p.id for p in settled],
            job_ids=job_ids,
            total=total,
            paid_at=paid_at,
        )

    async def settle_bucket(self, bucket: SettlementBucket, **kwargs) -> SettlementResult:
        """Settle a bucket and empty it on success.

        On failure the bucket is refreshed from storage and kept, so the
        operator sees which members went stale.
        """
        if not len(bucket):
            raise ValidationError("The settlement batch is empty")
        if not bucket.is_eligible:
            details = ", ".join(f"{e.payment_id} is {e.status.value}" for e in bucket.ineligible)
            raise ValidationError(
                f"Every payment in a settlement batch must be Approved: {details}",
                payment_ids=[str(e.payment_id) for e in bucket.ineligible],
            )
        try:
            result = await self.process_batch(bucket.payment_ids, **kwargs)
        except JobflowError:
            bucket.refresh(await self.store.list_payments(ids=bucket.payment_ids))
            raise
        bucket.clear()
        return result

    # ── Queries ──

    async def list_payments(
        self,
        *,
        status: PaymentStatus | Iterable[PaymentStatus] | None = None,
        job_id: str | None = None,
    ) -> list[Payment]:
        return await self.store.list_payments(job_id=job_id, status=status)

    async def payment_summary(self, job_id: str) -> PaymentSummary:
        if await self.store.get_job(job_id) is None:
            raise NotFoundError("Job", job_id)
        payments = await self.store.list_payments(job_id=job_id)
        totals = payment_totals(payments)
        counts: dict[str, int] = {}
        for payment in payments:
            counts[payment.status.value] = counts.get(payment.status.value, 0) + 1
        return PaymentSummary(
            job_id=job_id,
            requested=totals.requested,
            paid=totals.paid,
            outstanding=totals.outstanding,
            is_fully_paid=is_fully_paid(payments),
            counts=counts,
        )
