from jobflow.lifecycle.actions import ActionCheck, JobAction
from jobflow.lifecycle.clearance import ClearanceWorkflow, DeliveryNoteDetail
from jobflow.lifecycle.engine import ActionOutcome, JobLifecycleEngine, JobView
from jobflow.lifecycle.payments import PaymentWorkflow, SettlementBucket
from jobflow.lifecycle.snapshot import JobSnapshot, load_snapshot
from jobflow.lifecycle.stages import (
    Gate,
    Stage,
    StageReport,
    StageResolver,
    evaluate_stage,
    is_fully_paid,
    resolve_stage,
)

__all__ = [
    "ActionCheck",
    "ActionOutcome",
    "ClearanceWorkflow",
    "DeliveryNoteDetail",
    "Gate",
    "JobAction",
    "JobLifecycleEngine",
    "JobSnapshot",
    "JobView",
    "PaymentWorkflow",
    "SettlementBucket",
    "Stage",
    "StageReport",
    "StageResolver",
    "evaluate_stage",
    "is_fully_paid",
    "load_snapshot",
    "resolve_stage",
]
