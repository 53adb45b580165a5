"""Pydantic schemas for the per-job view exposed by the engine."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from jobflow.models import ShipmentType, TransportMode


class CompleteJobRequest(BaseModel):
    job_invoice_no: str | None = None


class JobResponse(BaseModel):
    id: str
    customer: str | None = None
    consignee: str | None = None
    exporter: str | None = None
    transport_mode: TransportMode
    shipment_type: ShipmentType | None = None
    service: str | None = None
    status: str
    progress: int = 0
    invoice_no: str | None = None
    job_invoice_no: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class StageReportResponse(BaseModel):
    stage: str
    percent: int
    documentation_complete: bool
    clearance_complete: bool
    accounts_complete: bool
    completed: bool
    completion_eligible: bool
    is_fully_paid: bool
    requested_total: Decimal
    paid_total: Decimal
    blockers: dict[str, list[str]] = Field(default_factory=dict)
    signal_conflict: str | None = None


class JobViewResponse(BaseModel):
    job: JobResponse
    stage: StageReportResponse
    legal_actions: list[str]
    blocked_actions: dict[str, str] = Field(default_factory=dict)
