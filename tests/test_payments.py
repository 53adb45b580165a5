"""Tests for PaymentWorkflow: requests, the status machine and settlement."""

import re
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update

from jobflow.events import EventType
from jobflow.exceptions import ConflictError, NotFoundError, PreconditionError, ValidationError
from jobflow.lifecycle.payments import SettlementBucket
from jobflow.models import Payment, PaymentItem, PaymentStatus


async def clear_job(clearance, job_id, bls):
    schedules = [
        await clearance.schedule_clearance(job_id, clearance_date=date(2026, 3, 5), bl_id=bl.id)
        for bl in bls
    ]
    return await clearance.issue_delivery_note([s.id for s in schedules])


class TestRecordPayment:
    """Draft creation, vendor resolution and editable states."""

    @pytest.mark.asyncio
    async def test_record_creates_draft(self, payments, job_factory, recording_sink):
        job, _ = await job_factory()
        payment = await payments.record_payment(
            job.id, payment_type="Port Charges", amount="100.00", paid_by="Company",
            vendor="ACME", requested_by="agent",
        )
        assert payment.status == PaymentStatus.DRAFT
        assert payment.amount == Decimal("100.00")
        assert recording_sink.of(EventType.PAYMENT_REQUESTED)[0][2]["vendor"] == "ACME"

    @pytest.mark.asyncio
    async def test_vendor_from_catalog(self, payments, job_factory, db_session):
        job, _ = await job_factory()
        db_session.add(PaymentItem(name="Shipping Line DO", vendor="Maersk Kenya"))
        await db_session.flush()

        payment = await payments.record_payment(
            job.id, payment_type="Shipping Line DO", amount=Decimal("250.50"), paid_by="Customer"
        )
        assert payment.vendor == "Maersk Kenya"

    @pytest.mark.asyncio
    async def test_vendor_required_without_catalog_entry(self, payments, job_factory):
        job, _ = await job_factory()
        with pytest.raises(ValidationError, match="Vendor is required"):
            await payments.record_payment(job.id, payment_type="Misc", amount="10.00", paid_by="Company")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5.00", "10.005", "abc"])
    async def test_invalid_amounts(self, payments, job_factory, amount):
        job, _ = await job_factory()
        with pytest.raises(ValidationError):
            await payments.record_payment(
                job.id, payment_type="Misc", amount=amount, paid_by="Company", vendor="ACME"
            )

    @pytest.mark.asyncio
    async def test_invalid_paid_by(self, payments, job_factory):
        job, _ = await job_factory()
        with pytest.raises(ValidationError, match="paid_by"):
            await payments.record_payment(
                job.id, payment_type="Misc", amount="10.00", paid_by="Agent", vendor="ACME"
            )

    @pytest.mark.asyncio
    async def test_completed_job_takes_no_payments(self, payments, job_factory):
        job, _ = await job_factory(status="Completed")
        with pytest.raises(PreconditionError) as exc_info:
            await payments.record_payment(
                job.id, payment_type="Misc", amount="10.00", paid_by="Company", vendor="ACME"
            )
        assert exc_info.value.gate == "completed"

    @pytest.mark.asyncio
    async def test_fully_paid_job_takes_no_payments(self, payments, clearance, store, job_factory, payment_factory):
        job, bls = await job_factory()
        await clear_job(clearance, job.id, bls)
        await payment_factory(job.id, "100.00", status=PaymentStatus.PAID)

        with pytest.raises(PreconditionError, match="fully paid") as exc_info:
            await payments.record_payment(
                job.id, payment_type="Misc", amount="5.00", paid_by="Company", vendor="ACME"
            )

        assert exc_info.value.gate == "accounts"
        assert len(await store.list_payments(job_id=job.id)) == 1

    @pytest.mark.asyncio
    async def test_update_amount_only_while_draft_or_pending(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        draft = await payment_factory(job.id, "10.00", status=PaymentStatus.DRAFT)
        approved = await payment_factory(job.id, "10.00", status=PaymentStatus.APPROVED)

        updated = await payments.update_amount(draft.id, "12.50")
        assert updated.amount == Decimal("12.50")
        with pytest.raises(PreconditionError, match="status is Approved"):
            await payments.update_amount(approved.id, "12.50")

    @pytest.mark.asyncio
    async def test_delete_only_draft_or_rejected(self, payments, store, job_factory, payment_factory):
        job, _ = await job_factory()
        draft = await payment_factory(job.id, status=PaymentStatus.DRAFT)
        rejected = await payment_factory(job.id, status=PaymentStatus.REJECTED)
        pending = await payment_factory(job.id, status=PaymentStatus.PENDING)

        await payments.delete_payment(draft.id)
        await payments.delete_payment(rejected.id)
        with pytest.raises(PreconditionError):
            await payments.delete_payment(pending.id)
        assert [p.id for p in await store.list_payments(job_id=job.id)] == [pending.id]


class TestSendToAccounts:
    """The clearance gate on Draft -> Pending."""

    @pytest.mark.asyncio
    async def test_blocked_before_clearance(self, payments, store, job_factory, payment_factory):
        job, bls = await job_factory()
        draft = await payment_factory(job.id, status=PaymentStatus.DRAFT)

        with pytest.raises(PreconditionError) as exc_info:
            await payments.send_to_accounts(job.id, [draft.id])

        err = exc_info.value
        assert err.gate == "clearance"
        assert "Please issue Delivery Notes for all BLs first" in err.message
        assert f"Delivery notes not issued for BL(s): {bls[0].reference}" in err.blockers
        assert (await store.get_payment(draft.id)).status == PaymentStatus.DRAFT

    @pytest.mark.asyncio
    async def test_sends_drafts_after_clearance(self, payments, clearance, job_factory, payment_factory, recording_sink):
        job, bls = await job_factory()
        await clear_job(clearance, job.id, bls)
        d1 = await payment_factory(job.id, "40.00", status=PaymentStatus.DRAFT)
        d2 = await payment_factory(job.id, "60.00", status=PaymentStatus.DRAFT)

        sent = await payments.send_to_accounts(job.id, actor="agent")

        assert {p.id for p in sent} == {d1.id, d2.id}
        assert all(p.status == PaymentStatus.PENDING for p in sent)
        assert job.status == "Payment"
        details = recording_sink.of(EventType.PAYMENT_SENT_TO_ACCOUNTS)[0][2]
        assert details["total"] == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_listed_payment_must_be_draft(self, payments, clearance, job_factory, payment_factory):
        job, bls = await job_factory()
        await clear_job(clearance, job.id, bls)
        draft = await payment_factory(job.id, status=PaymentStatus.DRAFT)
        pending = await payment_factory(job.id, status=PaymentStatus.PENDING)

        with pytest.raises(PreconditionError, match="expected Draft"):
            await payments.send_to_accounts(job.id, [draft.id, pending.id])
        assert draft.status == PaymentStatus.DRAFT

    @pytest.mark.asyncio
    async def test_foreign_payment_rejected(self, payments, clearance, job_factory, payment_factory):
        job, bls = await job_factory("JOB-001")
        await job_factory("JOB-002")
        await clear_job(clearance, job.id, bls)
        foreign = await payment_factory("JOB-002", status=PaymentStatus.DRAFT)
        with pytest.raises(ValidationError, match="do not belong"):
            await payments.send_to_accounts(job.id, [foreign.id])


class TestApprovalStateMachine:
    """Pending -> Approved, the clearance-confirmation branch and rejection."""

    @pytest.mark.asyncio
    async def test_approve_pending(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        payment = await payment_factory(job.id, status=PaymentStatus.PENDING)
        approved = await payments.approve(payment.id, actor="accountant")
        assert approved.status == PaymentStatus.APPROVED
        assert approved.processed_by == "accountant"

    @pytest.mark.asyncio
    async def test_approve_requires_pending(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        payment = await payment_factory(job.id, status=PaymentStatus.DRAFT)
        with pytest.raises(PreconditionError) as exc_info:
            await payments.approve(payment.id)
        assert exc_info.value.gate == "payment_status"

    @pytest.mark.asyncio
    async def test_approve_unknown_payment(self, payments):
        with pytest.raises(NotFoundError):
            await payments.approve(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_confirmation_branch(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        payment = await payment_factory(job.id, status=PaymentStatus.PENDING)
        awaiting = await payments.request_clearance_confirmation(payment.id)
        assert awaiting.status == PaymentStatus.AWAITING_CLEARANCE
        confirmed = await payments.confirm_clearance(payment.id)
        assert confirmed.status == PaymentStatus.APPROVED

    @pytest.mark.asyncio
    async def test_confirm_batch_is_per_item(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        ok1 = await payment_factory(job.id, status=PaymentStatus.AWAITING_CLEARANCE)
        bad = await payment_factory(job.id, status=PaymentStatus.PAID)
        ok2 = await payment_factory(job.id, status=PaymentStatus.AWAITING_CLEARANCE)
        missing = uuid.uuid4()

        result = await payments.confirm_batch([ok1.id, bad.id, missing, ok2.id], confirmed=True)

        assert result.succeeded == [ok1.id, ok2.id]
        assert result.failed == [bad.id, missing]
        assert ok1.status == PaymentStatus.APPROVED
        assert ok2.status == PaymentStatus.APPROVED
        assert bad.status == PaymentStatus.PAID
        assert "status is Paid" in result.results[1].error

    @pytest.mark.asyncio
    async def test_reject_batch(self, payments, job_factory, payment_factory, recording_sink):
        job, _ = await job_factory()
        p1 = await payment_factory(job.id, status=PaymentStatus.PENDING)
        p2 = await payment_factory(job.id, status=PaymentStatus.AWAITING_CLEARANCE)

        result = await payments.confirm_batch([p1.id, p2.id], confirmed=False)

        assert result.failed == []
        assert p1.status == PaymentStatus.REJECTED
        assert p2.status == PaymentStatus.REJECTED
        assert len(recording_sink.of(EventType.PAYMENT_REJECTED)) == 2


class TestProcessBatch:
    """All-or-nothing settlement under one voucher."""

    @pytest.mark.asyncio
    async def test_batch_settles_with_shared_voucher(self, payments, job_factory, payment_factory, recording_sink):
        job, _ = await job_factory()
        p1 = await payment_factory(job.id, "50.00", vendor="ACME")
        p2 = await payment_factory(job.id, "75.00", vendor="ACME")
        paid_on = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)

        result = await payments.process_batch(
            [p1.id, p2.id], voucher_no="V100", payment_reference="TRX-1",
            payment_date=paid_on, processed_by="accountant",
        )

        assert result.voucher_no == "V100"
        assert result.total == Decimal("125.00")
        assert p1.status == p2.status == PaymentStatus.PAID
        assert p1.voucher_no == p2.voucher_no == "V100"
        assert p1.paid_at == p2.paid_at
        assert p1.processed_by == p2.processed_by == "accountant"
        assert (await payments.payment_summary(job.id)).is_fully_paid is True
        settled = recording_sink.of(EventType.PAYMENT_SETTLED)
        assert len(settled) == 1
        assert settled[0][2]["voucher_no"] == "V100"

    @pytest.mark.asyncio
    async def test_voucher_number_generated(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        p1 = await payment_factory(job.id)
        p2 = await payment_factory(job.id)

        first = await payments.process_batch([p1.id], payment_date=datetime(2026, 5, 1, tzinfo=timezone.utc))
        second = await payments.process_batch([p2.id], payment_date=datetime(2026, 5, 2, tzinfo=timezone.utc))

        assert first.voucher_no == "VH-2026-001"
        assert second.voucher_no == "VH-2026-002"

    @pytest.mark.asyncio
    async def test_stale_member_aborts_whole_batch(self, payments, job_factory, payment_factory, db_session):
        """One payment leaving Approved before commit leaves all three unpaid."""
        job, _ = await job_factory()
        batch = [await payment_factory(job.id, "10.00", vendor="ACME") for _ in range(3)]

        # Another session moves one payment back to awaiting clearance
        await db_session.execute(
            update(Payment)
            .where(Payment.id == batch[1].id)
            .values(status=PaymentStatus.AWAITING_CLEARANCE)
        )

        with pytest.raises(ConflictError) as exc_info:
            await payments.process_batch([p.id for p in batch], voucher_no="V200")

        assert exc_info.value.entity_ids == [batch[1].id]
        for payment in await payments.list_payments(job_id=job.id):
            assert payment.status != PaymentStatus.PAID
            assert payment.voucher_no is None

    @pytest.mark.asyncio
    async def test_mixed_vendors_rejected(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        p1 = await payment_factory(job.id, vendor="ACME")
        p2 = await payment_factory(job.id, vendor="Globex")
        with pytest.raises(ValidationError, match="one vendor"):
            await payments.process_batch([p1.id, p2.id])
        assert p1.status == PaymentStatus.APPROVED

    @pytest.mark.asyncio
    async def test_batch_across_jobs(self, payments, job_factory, payment_factory, recording_sink):
        await job_factory("JOB-001")
        await job_factory("JOB-002")
        p1 = await payment_factory("JOB-001", "30.00")
        p2 = await payment_factory("JOB-002", "20.00")

        result = await payments.process_batch([p1.id, p2.id], voucher_no="V300")

        assert sorted(result.job_ids) == ["JOB-001", "JOB-002"]
        assert {e[1] for e in recording_sink.of(EventType.PAYMENT_SETTLED)} == {"JOB-001", "JOB-002"}


class TestSettleBucket:
    """Bucket-driven settlement."""

    @pytest.mark.asyncio
    async def test_settle_bucket_clears_it(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        p1 = await payment_factory(job.id, "50.00")
        p2 = await payment_factory(job.id, "75.00")
        bucket = SettlementBucket()
        await payments.add_to_settlement_bucket(bucket, p1.id)
        await payments.add_to_settlement_bucket(bucket, p2.id)

        result = await payments.settle_bucket(bucket, voucher_no="V100")

        assert set(result.payment_ids) == {p1.id, p2.id}
        assert len(bucket) == 0

    @pytest.mark.asyncio
    async def test_ineligible_bucket_rejected(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        pending = await payment_factory(job.id, status=PaymentStatus.PENDING)
        bucket = SettlementBucket()
        await payments.add_to_settlement_bucket(bucket, pending.id)
        with pytest.raises(ValidationError, match="must be Approved"):
            await payments.settle_bucket(bucket)
        assert len(bucket) == 1

    @pytest.mark.asyncio
    async def test_stale_bucket_is_refreshed_on_conflict(self, payments, job_factory, payment_factory, db_session):
        job, _ = await job_factory()
        p1 = await payment_factory(job.id)
        p2 = await payment_factory(job.id)
        bucket = SettlementBucket()
        await payments.add_to_settlement_bucket(bucket, p1.id)
        await payments.add_to_settlement_bucket(bucket, p2.id)
        await db_session.execute(
            update(Payment).where(Payment.id == p2.id).values(status=PaymentStatus.REJECTED)
        )

        with pytest.raises(ConflictError, match="Refresh and retry"):
            await payments.settle_bucket(bucket)

        assert len(bucket) == 2
        assert [e.payment_id for e in bucket.ineligible] == [p2.id]

    @pytest.mark.asyncio
    async def test_cross_vendor_add_leaves_bucket(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        p1 = await payment_factory(job.id, vendor="ACME")
        p2 = await payment_factory(job.id, vendor="Globex")
        bucket = SettlementBucket()
        await payments.add_to_settlement_bucket(bucket, p1.id)
        with pytest.raises(ValidationError):
            await payments.add_to_settlement_bucket(bucket, p2.id)
        assert bucket.payment_ids == [p1.id]


class TestPaymentQueries:
    @pytest.mark.asyncio
    async def test_summary_counts_and_totals(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        await payment_factory(job.id, "50.00", status=PaymentStatus.PAID)
        await payment_factory(job.id, "25.00", status=PaymentStatus.PENDING)
        await payment_factory(job.id, "99.00", status=PaymentStatus.REJECTED)

        summary = await payments.payment_summary(job.id)

        assert summary.requested == Decimal("75.00")
        assert summary.paid == Decimal("50.00")
        assert summary.outstanding == Decimal("25.00")
        assert summary.is_fully_paid is False
        assert summary.counts == {"Paid": 1, "Pending": 1, "Rejected": 1}

    @pytest.mark.asyncio
    async def test_list_by_status(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        approved = await payment_factory(job.id)
        await payment_factory(job.id, status=PaymentStatus.DRAFT)
        listed = await payments.list_payments(status=PaymentStatus.APPROVED)
        assert [p.id for p in listed] == [approved.id]

    @pytest.mark.asyncio
    async def test_voucher_format(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        p = await payment_factory(job.id)
        result = await payments.process_batch([p.id])
        assert re.fullmatch(r"VH-\d{4}-001", result.voucher_no)


class TestRejectAndBucketRemoval:
    """Direct rejection and taking payments back out of a bucket."""

    @pytest.mark.asyncio
    async def test_reject_pending(self, payments, job_factory, payment_factory, recording_sink):
        job, _ = await job_factory()
        p = await payment_factory(job.id, status=PaymentStatus.PENDING)

        await payments.reject(p.id, actor="ann")

        assert p.status == PaymentStatus.REJECTED
        assert p.processed_by == "ann"
        assert EventType.PAYMENT_REJECTED.value in recording_sink.types

    @pytest.mark.asyncio
    async def test_reject_approved_refused(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        p = await payment_factory(job.id, status=PaymentStatus.APPROVED)

        with pytest.raises(PreconditionError, match="status is Approved"):
            await payments.reject(p.id)
        assert p.status == PaymentStatus.APPROVED

    @pytest.mark.asyncio
    async def test_remove_from_bucket(self, payments, job_factory, payment_factory):
        job, _ = await job_factory()
        p1 = await payment_factory(job.id, "10.00")
        p2 = await payment_factory(job.id, "20.00")
        bucket = SettlementBucket()
        await payments.add_to_settlement_bucket(bucket, p1.id)
        await payments.add_to_settlement_bucket(bucket, p2.id)

        payments.remove_from_settlement_bucket(bucket, p1.id)

        assert bucket.payment_ids == [p2.id]
        assert bucket.total == Decimal("20.00")
