"""StageResolver — derives a job's lifecycle stage from its sub-records.

Pure functions, no DB or service dependencies, safe to call on every read.
Each gate returns the list of reasons it is blocked; an empty list means
the predicate holds. Stages are cumulative: a job only reaches a stage
when every lower gate also holds.
"""

import enum
import uuid
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from jobflow.config import Settings
from jobflow.models import (
    BillOfLading,
    Container,
    Job,
    JobDocument,
    JobStatus,
    Payment,
    PaymentStatus,
    TransportMode,
)

ZERO = Decimal("0.00")

# Labels that claim clearance has happened
CLEARED_STATUS_LABELS = frozenset({JobStatus.CLEARED.value, JobStatus.PAYMENT.value, JobStatus.COMPLETED.value})


class Stage(enum.IntEnum):
    NONE = 0
    DOCUMENTATION = 1
    CLEARANCE = 2
    ACCOUNTS = 3
    COMPLETED = 4

    @property
    def label(self) -> str:
        return self.name.title()

    @property
    def percent(self) -> int:
        """Display aid only; never branch on it."""
        return int(self) * 25


class Gate(str, enum.Enum):
    DOCUMENTATION = "documentation"
    CLEARANCE = "clearance"
    ACCOUNTS = "accounts"
    COMPLETED = "completed"


@dataclass(frozen=True)
class PaymentTotals:
    requested: Decimal = ZERO
    paid: Decimal = ZERO

    @property
    def outstanding(self) -> Decimal:
        return self.requested - self.paid


@dataclass(frozen=True)
class StageReport:
    stage: Stage
    documentation_complete: bool
    clearance_complete: bool
    accounts_complete: bool
    completed: bool
    completion_eligible: bool
    coverage_complete: bool
    status_signals_cleared: bool
    uncovered_bl_ids: tuple[uuid.UUID, ...] = ()
    blockers: dict[str, list[str]] = field(default_factory=dict)
    totals: PaymentTotals = field(default_factory=PaymentTotals)
    signal_conflict: str | None = None

    @property
    def is_fully_paid(self) -> bool:
        return _fully_paid(self.totals)

    def blockers_for(self, gate: Gate) -> list[str]:
        """Reasons ``gate`` fails, including the reasons of every lower gate."""
        reasons: list[str] = []
        for g in Gate:
            reasons.extend(self.blockers.get(g.value, []))
            if g is gate:
                break
        return reasons


def _blank(value) -> bool:
    return value is None or not str(value).strip()


def documentation_blockers(
    job: Job,
    bls: Collection[BillOfLading],
    containers: Collection[Container],
    documents: Collection[JobDocument],
) -> list[str]:
    reasons = []
    if not documents:
        reasons.append("No documents uploaded")
    if _blank(job.invoice_no):
        reasons.append("Shipment invoice number missing")
    if _blank(job.no_of_pkgs):
        reasons.append("Package count missing")
    if _blank(job.cargo_type):
        reasons.append("Cargo type missing")
    if not bls:
        reasons.append("No bills of lading recorded")
    if job.transport_mode == TransportMode.SEA and not containers:
        reasons.append("SEA job has no containers")
    return reasons


def uncovered_bills(bls: Iterable[BillOfLading], covered_bl_ids: Collection[uuid.UUID]) -> list[BillOfLading]:
    return [bl for bl in bls if bl.id not in covered_bl_ids]


def status_signals_cleared(job: Job) -> bool:
    return (job.status or "") in CLEARED_STATUS_LABELS or (job.progress or 0) == 100


def payment_totals(payments: Iterable[Payment]) -> PaymentTotals:
    """Decimal totals over every live payment request (Rejected ones excluded)."""
    requested = ZERO
    paid = ZERO
    for payment in payments:
        if payment.status == PaymentStatus.REJECTED:
            continue
        amount = payment.amount if isinstance(payment.amount, Decimal) else Decimal(str(payment.amount))
        requested += amount
        if payment.status == PaymentStatus.PAID:
            paid += amount
    return PaymentTotals(requested=requested, paid=paid)


def _fully_paid(totals: PaymentTotals) -> bool:
    return totals.requested > ZERO and totals.paid == totals.requested


def is_fully_paid(payments: Iterable[Payment]) -> bool:
    """A job without payment requests is never fully paid."""
    return _fully_paid(payment_totals(payments))


def evaluate_stage(
    job: Job,
    bls: Collection[BillOfLading],
    containers: Collection[Container],
    documents: Collection[JobDocument],
    covered_bl_ids: Collection[uuid.UUID],
    payments: Collection[Payment],
    *,
    trust_status_signal: bool = False,
) -> StageReport:
    blockers: dict[str, list[str]] = {}

    doc_reasons = documentation_blockers(job, bls, containers, documents)
    if doc_reasons:
        blockers[Gate.DOCUMENTATION.value] = doc_reasons
    documentation_complete = not doc_reasons

    uncovered = uncovered_bills(bls, covered_bl_ids)
    coverage_complete = bool(bls) and not uncovered
    signals_cleared = status_signals_cleared(job)

    signal_conflict = None
    if coverage_complete and not signals_cleared:
        signal_conflict = (
            f"Every BL is covered by a delivery note but status is '{job.status}' "
            f"and progress is {job.progress}"
        )
    elif signals_cleared and not coverage_complete:
        missing = f"{len(uncovered)} BL(s) lack a delivery note" if bls else "the job has no BLs"
        signal_conflict = f"Status '{job.status}' / progress {job.progress} claims clearance but {missing}"

    cleared = coverage_complete or (trust_status_signal and signals_cleared)
    clearance_reasons = []
    if not cleared:
        if uncovered:
            refs = ", ".join(bl.reference for bl in uncovered)
            clearance_reasons.append(f"Delivery notes not issued for BL(s): {refs}")
        elif not bls:
            clearance_reasons.append("No BLs to clear")
    if clearance_reasons:
        blockers[Gate.CLEARANCE.value] = clearance_reasons
    clearance_complete = documentation_complete and cleared

    totals = payment_totals(payments)
    accounts_reasons = []
    if totals.requested == ZERO:
        accounts_reasons.append("No payment requests recorded")
    elif totals.paid != totals.requested:
        accounts_reasons.append(
            f"Outstanding payments: {totals.outstanding} of {totals.requested} not yet paid"
        )
    if accounts_reasons:
        blockers[Gate.ACCOUNTS.value] = accounts_reasons
    accounts_complete = clearance_complete and not accounts_reasons

    completion_reasons = []
    if _blank(job.job_invoice_no):
        completion_reasons.append("Job invoice number missing")
    if job.status != JobStatus.COMPLETED.value:
        completion_reasons.append("Job not yet marked Completed")
    if completion_reasons:
        blockers[Gate.COMPLETED.value] = completion_reasons
    completed = accounts_complete and not completion_reasons

    if completed:
        stage = Stage.COMPLETED
    elif accounts_complete:
        stage = Stage.ACCOUNTS
    elif clearance_complete:
        stage = Stage.CLEARANCE
    elif documentation_complete:
        stage = Stage.DOCUMENTATION
    else:
        stage = Stage.NONE

    return StageReport(
        stage=stage,
        documentation_complete=documentation_complete,
        clearance_complete=clearance_complete,
        accounts_complete=accounts_complete,
        completed=completed,
        completion_eligible=accounts_complete and not _blank(job.job_invoice_no),
        coverage_complete=coverage_complete,
        status_signals_cleared=signals_cleared,
        uncovered_bl_ids=tuple(bl.id for bl in uncovered),
        blockers=blockers,
        totals=totals,
        signal_conflict=signal_conflict,
    )


def resolve_stage(
    job: Job,
    bls: Collection[BillOfLading],
    containers: Collection[Container],
    documents: Collection[JobDocument],
    covered_bl_ids: Collection[uuid.UUID],
    payments: Collection[Payment],
) -> Stage:
    return evaluate_stage(job, bls, containers, documents, covered_bl_ids, payments).stage


class StageResolver:
    """Binds the clearance-signal policy from settings to ``evaluate_stage``."""

    def __init__(self, settings: Settings):
        self.trust_status_signal = settings.trust_status_clearance_signal

    def evaluate(self, snapshot) -> StageReport:
        return evaluate_stage(
            snapshot.job,
            snapshot.bls,
            snapshot.containers,
            snapshot.documents,
            snapshot.covered_bl_ids,
            snapshot.payments,
            trust_status_signal=self.trust_status_signal,
        )

    def resolve(self, snapshot) -> Stage:
        return self.evaluate(snapshot).stage
