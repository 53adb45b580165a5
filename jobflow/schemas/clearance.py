"""Pydantic schemas for clearance scheduling and delivery notes."""

import uuid
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field

from jobflow.models import DeliveryNoteStatus


class ScheduleClearanceRequest(BaseModel):
    clearance_date: date
    bl_id: uuid.UUID | None = None
    container_id: uuid.UUID | None = None
    port: str | None = None
    clearance_method: str | None = None
    clearance_type: str | None = None
    packages: str | None = None
    remarks: str | None = None


class RescheduleClearanceRequest(BaseModel):
    schedule_id: uuid.UUID
    clearance_date: date
    reason: str = Field(..., min_length=1)
    port: str | None = None
    clearance_method: str | None = None
    clearance_type: str | None = None


class CancelScheduleRequest(BaseModel):
    schedule_id: uuid.UUID


class DeliveryNoteItemInput(BaseModel):
    """Per-schedule line details recorded at handover."""
    schedule_id: uuid.UUID
    shortage: str | None = None
    damaged: str | None = None
    remarks: str | None = None


class VehicleInput(BaseModel):
    vehicle_id: str | None = None
    driver: str | None = None
    driver_contact: str | None = None
    discharge_location: str | None = None


class AttachedDocument(BaseModel):
    name: str
    url: str
    size: int | None = None
    content_type: str | None = None
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class IssueDeliveryNoteRequest(BaseModel):
    items: list[DeliveryNoteItemInput] = Field(..., min_length=1)
    consignee: str | None = None
    vehicles: list[VehicleInput] = Field(default_factory=list)
    loading_date: date | None = None
    unloading_date: date | None = None
    comments: str | None = None


class DeleteDeliveryNoteRequest(BaseModel):
    note_id: str


class MarkDeliveredRequest(BaseModel):
    note_id: str
    signed_copy: AttachedDocument | None = None
    comments: str | None = None
    unloading_date: date | None = None


class ClearanceScheduleResponse(BaseModel):
    id: uuid.UUID
    job_id: str
    bl_id: uuid.UUID
    container_id: uuid.UUID | None = None
    clearance_date: date
    port: str | None = None
    clearance_method: str | None = None
    clearance_type: str | None = None
    reschedule_reason: str | None = None
    reschedule_count: int = 0

    model_config = {"from_attributes": True}


class DeliveryNoteResponse(BaseModel):
    id: str
    consignee: str
    exporter: str | None = None
    issued_date: date
    issued_by: str | None = None
    status: DeliveryNoteStatus
    loading_date: date | None = None
    unloading_date: date | None = None
    comments: str | None = None
    documents: list[dict] | None = None
    job_ids: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}
