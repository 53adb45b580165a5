"""Pydantic schemas for payment requests and settlement."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from jobflow.models import PaidBy, PaymentStatus


class RecordPaymentRequest(BaseModel):
    payment_type: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    paid_by: PaidBy
    vendor: str | None = None
    bill_ref_no: str | None = None


class PaymentIdsRequest(BaseModel):
    payment_ids: list[uuid.UUID] = Field(..., min_length=1)


class SendToAccountsRequest(BaseModel):
    """Omitting payment_ids sends every Draft payment of the job."""
    payment_ids: list[uuid.UUID] | None = None


class PaymentIdRequest(BaseModel):
    payment_id: uuid.UUID


class ConfirmPaymentsRequest(PaymentIdsRequest):
    confirmed: bool


class ProcessSettlementRequest(PaymentIdsRequest):
    voucher_no: str | None = None
    payment_reference: str | None = None
    payment_date: datetime | None = None
    payment_mode: str | None = None
    comments: str | None = None


class PaymentResponse(BaseModel):
    id: uuid.UUID
    job_id: str
    payment_type: str
    vendor: str
    amount: Decimal
    paid_by: PaidBy
    status: PaymentStatus
    requested_by: str | None = None
    processed_by: str | None = None
    bill_ref_no: str | None = None
    voucher_no: str | None = None
    paid_at: datetime | None = None

    model_config = {"from_attributes": True}


class BatchItemResult(BaseModel):
    payment_id: uuid.UUID
    ok: bool
    status: str | None = None
    error: str | None = None


class ConfirmBatchResult(BaseModel):
    confirmed: bool
    results: list[BatchItemResult]

    @property
    def succeeded(self) -> list[uuid.UUID]:
        return [r.payment_id for r in self.results if r.ok]

    @property
    def failed(self) -> list[uuid.UUID]:
        return [r.payment_id for r in self.results if not r.ok]


class SettlementResult(BaseModel):
    voucher_no: str
    vendor: str
    payment_ids: list[uuid.UUID]
    job_ids: list[str]
    total: Decimal
    paid_at: datetime


class PaymentSummary(BaseModel):
    job_id: str
    requested: Decimal
    paid: Decimal
    outstanding: Decimal
    is_fully_paid: bool
    counts: dict[str, int] = Field(default_factory=dict)
