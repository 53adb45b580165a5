"""Tests for the StageResolver pure functions."""

import uuid
from decimal import Decimal
from unittest.mock import MagicMock

from jobflow.lifecycle.snapshot import JobSnapshot
from jobflow.lifecycle.stages import (
    Gate,
    Stage,
    StageResolver,
    evaluate_stage,
    is_fully_paid,
    payment_totals,
    resolve_stage,
)
from jobflow.models import (
    BillOfLading,
    Container,
    Job,
    JobDocument,
    PaidBy,
    Payment,
    PaymentStatus,
    TransportMode,
)


def make_job(**overrides) -> Job:
    fields = dict(
        id="JOB-001",
        consignee="Acme Imports Ltd",
        transport_mode=TransportMode.SEA,
        status="Pending",
        progress=25,
        invoice_no="SINV-100",
        no_of_pkgs="10",
        cargo_type="General",
        job_invoice_no=None,
    )
    fields.update(overrides)
    return Job(**fields)


def make_bls(n: int) -> list[BillOfLading]:
    return [BillOfLading(id=uuid.uuid4(), job_id="JOB-001", house_bl=f"HBL-{i + 1}") for i in range(n)]


def make_payment(amount: str, status: PaymentStatus = PaymentStatus.PAID) -> Payment:
    return Payment(
        id=uuid.uuid4(),
        job_id="JOB-001",
        payment_type="Port Charges",
        vendor="ACME",
        amount=Decimal(amount),
        paid_by=PaidBy.COMPANY,
        status=status,
    )


CONTAINERS = [Container(id=uuid.uuid4(), job_id="JOB-001", container_no="MSCU0000001")]
DOCUMENTS = [JobDocument(id=uuid.uuid4(), job_id="JOB-001", file_name="invoice.pdf")]


# ── Documentation gate ──


class TestDocumentationGate:
    """Documentation completeness predicate."""

    def test_complete_documentation(self):
        report = evaluate_stage(make_job(), make_bls(1), CONTAINERS, DOCUMENTS, set(), [])
        assert report.documentation_complete is True
        assert report.stage == Stage.DOCUMENTATION

    def test_no_documents_blocks(self):
        report = evaluate_stage(make_job(), make_bls(1), CONTAINERS, [], set(), [])
        assert report.stage == Stage.NONE
        assert "No documents uploaded" in report.blockers["documentation"]

    def test_missing_invoice_fields_are_each_reported(self):
        job = make_job(invoice_no="", no_of_pkgs=None, cargo_type="  ")
        report = evaluate_stage(job, make_bls(1), CONTAINERS, DOCUMENTS, set(), [])
        reasons = report.blockers["documentation"]
        assert "Shipment invoice number missing" in reasons
        assert "Package count missing" in reasons
        assert "Cargo type missing" in reasons
        assert report.stage == Stage.NONE

    def test_no_bls_blocks(self):
        report = evaluate_stage(make_job(), [], CONTAINERS, DOCUMENTS, set(), [])
        assert "No bills of lading recorded" in report.blockers["documentation"]
        assert report.documentation_complete is False

    def test_sea_job_requires_containers(self):
        report = evaluate_stage(make_job(), make_bls(1), [], DOCUMENTS, set(), [])
        assert "SEA job has no containers" in report.blockers["documentation"]

    def test_air_job_without_containers_is_complete(self):
        job = make_job(transport_mode=TransportMode.AIR)
        report = evaluate_stage(job, make_bls(1), [], DOCUMENTS, set(), [])
        assert report.documentation_complete is True


# ── Clearance gate ──


class TestClearanceGate:
    """Per-BL delivery-note coverage and the status/progress signals."""

    def test_all_bls_covered_reaches_clearance(self):
        bls = make_bls(2)
        job = make_job(status="Cleared", progress=50)
        report = evaluate_stage(job, bls, CONTAINERS, DOCUMENTS, {bl.id for bl in bls}, [])
        assert report.clearance_complete is True
        assert report.stage == Stage.CLEARANCE
        assert report.signal_conflict is None

    def test_partial_coverage_stays_below_clearance(self):
        """N-1 of N BLs covered never reaches Clearance."""
        bls = make_bls(3)
        covered = {bls[0].id, bls[1].id}
        report = evaluate_stage(make_job(), bls, CONTAINERS, DOCUMENTS, covered, [])
        assert report.stage == Stage.DOCUMENTATION
        assert report.clearance_complete is False
        assert report.uncovered_bl_ids == (bls[2].id,)
        assert report.blockers["clearance"] == ["Delivery notes not issued for BL(s): HBL-3"]

    def test_coverage_without_documentation_is_not_clearance(self):
        bls = make_bls(1)
        job = make_job(cargo_type=None, status="Cleared")
        report = evaluate_stage(job, bls, CONTAINERS, DOCUMENTS, {bls[0].id}, [])
        assert report.coverage_complete is True
        assert report.clearance_complete is False
        assert report.stage == Stage.NONE

    def test_status_label_alone_is_a_conflict_not_clearance(self):
        bls = make_bls(2)
        job = make_job(status="Cleared")
        report = evaluate_stage(job, bls, CONTAINERS, DOCUMENTS, {bls[0].id}, [])
        assert report.stage == Stage.DOCUMENTATION
        assert report.status_signals_cleared is True
        assert "1 BL(s) lack a delivery note" in report.signal_conflict

    def test_progress_100_alone_is_a_conflict(self):
        bls = make_bls(1)
        job = make_job(status="Pending", progress=100)
        report = evaluate_stage(job, bls, CONTAINERS, DOCUMENTS, set(), [])
        assert report.clearance_complete is False
        assert report.signal_conflict is not None

    def test_coverage_with_stale_status_is_a_conflict(self):
        bls = make_bls(1)
        job = make_job(status="Pending", progress=25)
        report = evaluate_stage(job, bls, CONTAINERS, DOCUMENTS, {bls[0].id}, [])
        assert report.clearance_complete is True
        assert "status is 'Pending'" in report.signal_conflict

    def test_trusting_status_signal(self):
        bls = make_bls(1)
        job = make_job(status="Cleared")
        report = evaluate_stage(job, bls, CONTAINERS, DOCUMENTS, set(), [], trust_status_signal=True)
        assert report.clearance_complete is True
        assert report.signal_conflict is not None

    def test_resolver_reads_policy_from_settings(self):
        settings = MagicMock()
        settings.trust_status_clearance_signal = True
        bls = make_bls(1)
        snapshot = JobSnapshot(
            job=make_job(status="Cleared"),
            bls=bls,
            containers=CONTAINERS,
            documents=DOCUMENTS,
            covered_bl_ids=set(),
            payments=[],
        )
        assert StageResolver(settings).resolve(snapshot) == Stage.CLEARANCE


# ── Accounts gate ──


class TestAccountsGate:
    """is_fully_paid and the Accounts stage."""

    def _cleared(self, payments):
        bls = make_bls(1)
        job = make_job(status="Payment", progress=50)
        return evaluate_stage(job, bls, CONTAINERS, DOCUMENTS, {bls[0].id}, payments)

    def test_zero_payments_never_fully_paid(self):
        report = self._cleared([])
        assert report.is_fully_paid is False
        assert report.stage == Stage.CLEARANCE
        assert report.blockers["accounts"] == ["No payment requests recorded"]

    def test_all_paid_reaches_accounts(self):
        report = self._cleared([make_payment("50.00"), make_payment("75.00")])
        assert report.is_fully_paid is True
        assert report.stage == Stage.ACCOUNTS
        assert report.totals.requested == Decimal("125.00")

    def test_outstanding_payment_blocks(self):
        report = self._cleared([make_payment("50.00"), make_payment("75.00", PaymentStatus.APPROVED)])
        assert report.stage == Stage.CLEARANCE
        assert report.blockers["accounts"] == ["Outstanding payments: 75.00 of 125.00 not yet paid"]

    def test_decimal_sum_has_no_drift(self):
        payments = [make_payment("0.10") for _ in range(10)]
        totals = payment_totals(payments)
        assert totals.paid == Decimal("1.00")
        assert is_fully_paid(payments) is True

    def test_rejected_payments_are_not_requested(self):
        payments = [make_payment("100.00"), make_payment("40.00", PaymentStatus.REJECTED)]
        assert payment_totals(payments).requested == Decimal("100.00")
        assert is_fully_paid(payments) is True

    def test_only_rejected_payments_is_not_fully_paid(self):
        assert is_fully_paid([make_payment("40.00", PaymentStatus.REJECTED)]) is False

    def test_paid_amount_unaffected_by_clearance(self):
        """A fully paid job without clearance is still not at Accounts."""
        report = evaluate_stage(make_job(), make_bls(1), CONTAINERS, DOCUMENTS, set(), [make_payment("10.00")])
        assert report.is_fully_paid is True
        assert report.accounts_complete is False
        assert report.stage == Stage.DOCUMENTATION


# ── Completion and reporting ──


class TestCompletion:
    """Completed stage, eligibility and reporting helpers."""

    def _accounts_ready(self, **job_fields):
        bls = make_bls(1)
        job = make_job(**{"status": "Payment", "progress": 75, **job_fields})
        return evaluate_stage(job, bls, CONTAINERS, DOCUMENTS, {bls[0].id}, [make_payment("100.00")])

    def test_eligible_but_not_completed(self):
        report = self._accounts_ready(job_invoice_no="INV-001")
        assert report.stage == Stage.ACCOUNTS
        assert report.completion_eligible is True
        assert report.completed is False
        assert "Job not yet marked Completed" in report.blockers["completed"]

    def test_completed_requires_invoice_number(self):
        report = self._accounts_ready(status="Completed", progress=100)
        assert report.stage == Stage.ACCOUNTS
        assert "Job invoice number missing" in report.blockers["completed"]

    def test_completed(self):
        report = self._accounts_ready(status="Completed", progress=100, job_invoice_no="INV-001")
        assert report.stage == Stage.COMPLETED
        assert report.blockers == {}

    def test_stage_percentages(self):
        assert [s.percent for s in Stage] == [0, 25, 50, 75, 100]
        assert Stage.ACCOUNTS.label == "Accounts"

    def test_blockers_for_is_cumulative(self):
        bls = make_bls(1)
        report = evaluate_stage(make_job(), bls, [], DOCUMENTS, set(), [])
        reasons = report.blockers_for(Gate.CLEARANCE)
        assert "SEA job has no containers" in reasons
        assert "Delivery notes not issued for BL(s): HBL-1" in reasons
        assert report.blockers_for(Gate.DOCUMENTATION) == ["SEA job has no containers"]

    def test_resolve_stage_shortcut(self):
        assert resolve_stage(make_job(), make_bls(1), CONTAINERS, DOCUMENTS, set(), []) == Stage.DOCUMENTATION


class TestMonotonicity:
    """Stage never decreases along a sequence of forward transitions."""

    def test_forward_sequence_is_non_decreasing(self):
        bls = make_bls(2)
        payment = make_payment("100.00", PaymentStatus.APPROVED)
        job = make_job(status="New", progress=0)
        observed = []

        observed.append(resolve_stage(job, bls, CONTAINERS, [], set(), [payment]))
        observed.append(resolve_stage(job, bls, CONTAINERS, DOCUMENTS, set(), [payment]))
        observed.append(resolve_stage(job, bls, CONTAINERS, DOCUMENTS, {bls[0].id}, [payment]))
        job.status = "Cleared"
        covered = {bls[0].id, bls[1].id}
        observed.append(resolve_stage(job, bls, CONTAINERS, DOCUMENTS, covered, [payment]))
        payment.status = PaymentStatus.PAID
        observed.append(resolve_stage(job, bls, CONTAINERS, DOCUMENTS, covered, [payment]))
        job.status = "Completed"
        job.job_invoice_no = "INV-001"
        observed.append(resolve_stage(job, bls, CONTAINERS, DOCUMENTS, covered, [payment]))

        assert observed == sorted(observed)
        assert observed[0] == Stage.NONE
        assert observed[2] == Stage.DOCUMENTATION
        assert observed[-1] == Stage.COMPLETED
