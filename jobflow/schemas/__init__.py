from jobflow.schemas.clearance import (
    AttachedDocument,
    CancelScheduleRequest,
    ClearanceScheduleResponse,
    DeleteDeliveryNoteRequest,
    DeliveryNoteItemInput,
    DeliveryNoteResponse,
    IssueDeliveryNoteRequest,
    MarkDeliveredRequest,
    RescheduleClearanceRequest,
    ScheduleClearanceRequest,
    VehicleInput,
)
from jobflow.schemas.job import CompleteJobRequest, JobResponse, JobViewResponse, StageReportResponse
from jobflow.schemas.payment import (
    BatchItemResult,
    ConfirmBatchResult,
    ConfirmPaymentsRequest,
    PaymentIdRequest,
    PaymentIdsRequest,
    PaymentResponse,
    PaymentSummary,
    ProcessSettlementRequest,
    RecordPaymentRequest,
    SendToAccountsRequest,
    SettlementResult,
)

__all__ = [
    "AttachedDocument",
    "CancelScheduleRequest",
    "ClearanceScheduleResponse",
    "DeleteDeliveryNoteRequest",
    "DeliveryNoteItemInput",
    "DeliveryNoteResponse",
    "IssueDeliveryNoteRequest",
    "MarkDeliveredRequest",
    "RescheduleClearanceRequest",
    "ScheduleClearanceRequest",
    "VehicleInput",
    "CompleteJobRequest",
    "JobResponse",
    "JobViewResponse",
    "StageReportResponse",
    "BatchItemResult",
    "ConfirmBatchResult",
    "ConfirmPaymentsRequest",
    "PaymentIdRequest",
    "PaymentIdsRequest",
    "PaymentResponse",
    "PaymentSummary",
    "ProcessSettlementRequest",
    "RecordPaymentRequest",
    "SendToAccountsRequest",
    "SettlementResult",
]
