"""Action gating — pure functions deciding which job actions are legal now.

No DB or service dependencies. Each check returns the gate it belongs to
and the reasons it is blocked; no reasons means the action is legal.
"""

import enum
from collections.abc import Callable
from dataclasses import dataclass, field

from pydantic import BaseModel

from jobflow.auth import Capability
from jobflow.lifecycle.snapshot import JobSnapshot
from jobflow.lifecycle.stages import Gate, StageReport
from jobflow.models import JobStatus, PaymentStatus
from jobflow.schemas import (
    CancelScheduleRequest,
    CompleteJobRequest,
    ConfirmPaymentsRequest,
    DeleteDeliveryNoteRequest,
    IssueDeliveryNoteRequest,
    MarkDeliveredRequest,
    PaymentIdRequest,
    ProcessSettlementRequest,
    RecordPaymentRequest,
    RescheduleClearanceRequest,
    ScheduleClearanceRequest,
    SendToAccountsRequest,
)

JOB_STATUS = "job_status"
CLEARANCE_SCHEDULE = "clearance_schedule"
DELIVERY_NOTE = "delivery_note"
PAYMENT_STATUS = "payment_status"

FULLY_PAID_REASON = "Job is fully paid; accounts are closed to new payment requests"


class JobAction(str, enum.Enum):
    SCHEDULE_CLEARANCE = "schedule_clearance"
    RESCHEDULE_CLEARANCE = "reschedule_clearance"
    CANCEL_SCHEDULE = "cancel_schedule"
    ISSUE_DELIVERY_NOTE = "issue_delivery_note"
    DELETE_DELIVERY_NOTE = "delete_delivery_note"
    MARK_DELIVERED = "mark_delivered"
    RECORD_PAYMENT = "record_payment"
    SEND_TO_ACCOUNTS = "send_to_accounts"
    APPROVE_PAYMENT = "approve_payment"
    REQUEST_CLEARANCE_CONFIRMATION = "request_clearance_confirmation"
    CONFIRM_PAYMENTS = "confirm_payments"
    PROCESS_SETTLEMENT = "process_settlement"
    MARK_COMPLETED = "mark_completed"


ACTION_CAPABILITIES: dict[JobAction, Capability] = {
    JobAction.SCHEDULE_CLEARANCE: Capability.EDIT_CLEARANCE,
    JobAction.RESCHEDULE_CLEARANCE: Capability.EDIT_CLEARANCE,
    JobAction.CANCEL_SCHEDULE: Capability.EDIT_CLEARANCE,
    JobAction.ISSUE_DELIVERY_NOTE: Capability.ISSUE_DELIVERY_NOTE,
    JobAction.DELETE_DELIVERY_NOTE: Capability.DELETE_DELIVERY_NOTE,
    JobAction.MARK_DELIVERED: Capability.ISSUE_DELIVERY_NOTE,
    JobAction.RECORD_PAYMENT: Capability.REQUEST_PAYMENT,
    JobAction.SEND_TO_ACCOUNTS: Capability.REQUEST_PAYMENT,
    JobAction.APPROVE_PAYMENT: Capability.APPROVE_PAYMENT,
    JobAction.REQUEST_CLEARANCE_CONFIRMATION: Capability.APPROVE_PAYMENT,
    JobAction.CONFIRM_PAYMENTS: Capability.CONFIRM_CLEARANCE,
    JobAction.PROCESS_SETTLEMENT: Capability.SETTLE_PAYMENT,
    JobAction.MARK_COMPLETED: Capability.COMPLETE_JOB,
}

ACTION_PAYLOADS: dict[JobAction, type[BaseModel]] = {
    JobAction.SCHEDULE_CLEARANCE: ScheduleClearanceRequest,
    JobAction.RESCHEDULE_CLEARANCE: RescheduleClearanceRequest,
    JobAction.CANCEL_SCHEDULE: CancelScheduleRequest,
    JobAction.ISSUE_DELIVERY_NOTE: IssueDeliveryNoteRequest,
    JobAction.DELETE_DELIVERY_NOTE: DeleteDeliveryNoteRequest,
    JobAction.MARK_DELIVERED: MarkDeliveredRequest,
    JobAction.RECORD_PAYMENT: RecordPaymentRequest,
    JobAction.SEND_TO_ACCOUNTS: SendToAccountsRequest,
    JobAction.APPROVE_PAYMENT: PaymentIdRequest,
    JobAction.REQUEST_CLEARANCE_CONFIRMATION: PaymentIdRequest,
    JobAction.CONFIRM_PAYMENTS: ConfirmPaymentsRequest,
    JobAction.PROCESS_SETTLEMENT: ProcessSettlementRequest,
    JobAction.MARK_COMPLETED: CompleteJobRequest,
}


@dataclass(frozen=True)
class ActionCheck:
    action: JobAction
    gate: str
    reasons: list[str] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return not self.reasons

    @property
    def message(self) -> str:
        return f"Cannot {self.action.value.replace('_', ' ')}: {'; '.join(self.reasons)}"


def _is_completed(snapshot: JobSnapshot) -> bool:
    return snapshot.job.status == JobStatus.COMPLETED.value


def _completed_reason(snapshot: JobSnapshot) -> list[str]:
    return ["Job already marked Completed"] if _is_completed(snapshot) else []


def _check_schedule(snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
    reasons = _completed_reason(snapshot)
    if not snapshot.bls:
        reasons.append("No bills of lading recorded")
    elif report.coverage_complete:
        reasons.append("Clearance complete: every BL is covered by a delivery note")
    return ActionCheck(JobAction.SCHEDULE_CLEARANCE, Gate.CLEARANCE.value, reasons)


def _check_edit_schedule(action: JobAction):
    def check(snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
        reasons = _completed_reason(snapshot)
        if not snapshot.awaiting_schedules:
            reasons.append("No clearance schedules awaiting a delivery note")
        return ActionCheck(action, CLEARANCE_SCHEDULE, reasons)
    return check


def _check_issue(snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
    reasons = _completed_reason(snapshot)
    if not snapshot.awaiting_schedules:
        reasons.append("No clearance schedules awaiting a delivery note")
    return ActionCheck(JobAction.ISSUE_DELIVERY_NOTE, CLEARANCE_SCHEDULE, reasons)


def _check_delete_note(snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
    reasons = _completed_reason(snapshot)
    if not snapshot.delivery_notes:
        reasons.append("No delivery notes issued for this job")
    return ActionCheck(JobAction.DELETE_DELIVERY_NOTE, DELIVERY_NOTE, reasons)


def _check_mark_delivered(snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
    reasons = []
    if not snapshot.pending_delivery_notes:
        reasons.append("No pending delivery notes for this job")
    return ActionCheck(JobAction.MARK_DELIVERED, DELIVERY_NOTE, reasons)


def _check_record_payment(snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
    if _is_completed(snapshot):
        return ActionCheck(JobAction.RECORD_PAYMENT, JOB_STATUS, ["Job already marked Completed"])
    if report.accounts_complete:
        return ActionCheck(JobAction.RECORD_PAYMENT, Gate.ACCOUNTS.value, [FULLY_PAID_REASON])
    return ActionCheck(JobAction.RECORD_PAYMENT, JOB_STATUS)


def _check_send_to_accounts(snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
    if not report.clearance_complete:
        reasons = [f"Clearance incomplete: {r}" for r in report.blockers_for(Gate.CLEARANCE)]
        return ActionCheck(JobAction.SEND_TO_ACCOUNTS, Gate.CLEARANCE.value, reasons)
    reasons = []
    if not snapshot.payments_in(PaymentStatus.DRAFT):
        reasons.append("No draft payments to send")
    return ActionCheck(JobAction.SEND_TO_ACCOUNTS, PAYMENT_STATUS, reasons)


def _check_payment_status(action: JobAction, statuses: tuple[PaymentStatus, ...]):
    wanted = " or ".join(s.value for s in statuses)

    def check(snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
        reasons = []
        if not snapshot.payments_in(*statuses):
            reasons.append(f"No payments in status {wanted}")
        return ActionCheck(action, PAYMENT_STATUS, reasons)
    return check


def _check_complete(snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
    if _is_completed(snapshot):
        return ActionCheck(JobAction.MARK_COMPLETED, JOB_STATUS, ["Job already marked Completed"])
    if not report.accounts_complete:
        reasons = [f"Accounts incomplete: {r}" for r in report.blockers_for(Gate.ACCOUNTS)]
        return ActionCheck(JobAction.MARK_COMPLETED, Gate.ACCOUNTS.value, reasons)
    return ActionCheck(JobAction.MARK_COMPLETED, Gate.COMPLETED.value)


ACTION_CHECKS: dict[JobAction, Callable[[JobSnapshot, StageReport], ActionCheck]] = {
    JobAction.SCHEDULE_CLEARANCE: _check_schedule,
    JobAction.RESCHEDULE_CLEARANCE: _check_edit_schedule(JobAction.RESCHEDULE_CLEARANCE),
    JobAction.CANCEL_SCHEDULE: _check_edit_schedule(JobAction.CANCEL_SCHEDULE),
    JobAction.ISSUE_DELIVERY_NOTE: _check_issue,
    JobAction.DELETE_DELIVERY_NOTE: _check_delete_note,
    JobAction.MARK_DELIVERED: _check_mark_delivered,
    JobAction.RECORD_PAYMENT: _check_record_payment,
    JobAction.SEND_TO_ACCOUNTS: _check_send_to_accounts,
    JobAction.APPROVE_PAYMENT: _check_payment_status(
        JobAction.APPROVE_PAYMENT, (PaymentStatus.PENDING,)
    ),
    JobAction.REQUEST_CLEARANCE_CONFIRMATION: _check_payment_status(
        JobAction.REQUEST_CLEARANCE_CONFIRMATION, (PaymentStatus.PENDING, PaymentStatus.APPROVED)
    ),
    JobAction.CONFIRM_PAYMENTS: _check_payment_status(
        JobAction.CONFIRM_PAYMENTS, (PaymentStatus.PENDING, PaymentStatus.AWAITING_CLEARANCE)
    ),
    JobAction.PROCESS_SETTLEMENT: _check_payment_status(
        JobAction.PROCESS_SETTLEMENT, (PaymentStatus.APPROVED,)
    ),
    JobAction.MARK_COMPLETED: _check_complete,
}


def check_action(action: JobAction, snapshot: JobSnapshot, report: StageReport) -> ActionCheck:
    return ACTION_CHECKS[action](snapshot, report)


def evaluate_actions(snapshot: JobSnapshot, report: StageReport) -> list[ActionCheck]:
    """Check every action, in declaration order."""
    return [check_action(action, snapshot, report) for action in JobAction]
