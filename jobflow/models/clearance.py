"""ORM models for clearance schedules and delivery notes."""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from jobflow.models.base import Base, TimestampMixin


class DeliveryNoteStatus(str, enum.Enum):
    PENDING = "Pending"
    DELIVERED = "Delivered"


class ClearanceSchedule(Base, TimestampMixin):
    __tablename__ = "clearance_schedules"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bl_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("bills_of_lading.id", ondelete="CASCADE"), nullable=False
    )
    container_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("containers.id", ondelete="SET NULL"), nullable=True
    )
    clearance_date: Mapped[date] = mapped_column(Date, nullable=False)
    port: Mapped[str | None] = mapped_column(String(200), nullable=True)
    clearance_method: Mapped[str | None] = mapped_column(String(100), nullable=True)
    clearance_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    packages: Mapped[str | None] = mapped_column(String(100), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    reschedule_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(200), nullable=True)


class DeliveryNote(Base, TimestampMixin):
    __tablename__ = "delivery_notes"

    # DN-YYYY-MM-NNN
    id: Mapped[str] = mapped_column(String(30), primary_key=True)
    consignee: Mapped[str] = mapped_column(String(255), nullable=False)
    exporter: Mapped[str | None] = mapped_column(String(255), nullable=True)
    issued_date: Mapped[date] = mapped_column(Date, nullable=False)
    issued_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    status: Mapped[DeliveryNoteStatus] = mapped_column(
        SAEnum(DeliveryNoteStatus, name="delivery_note_status", values_callable=lambda e: [m.value for m in e]),
        default=DeliveryNoteStatus.PENDING,
        nullable=False,
    )
    loading_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    unloading_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    # [{"name", "url", "size", "content_type", "uploaded_at"}, ...]
    documents: Mapped[list | None] = mapped_column(JSON, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DeliveryNoteItem(Base):
    __tablename__ = "delivery_note_items"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    delivery_note_id: Mapped[str] = mapped_column(
        String(30), ForeignKey("delivery_notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # A schedule is consumed by at most one delivery note
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clearance_schedules.id"), nullable=False, unique=True
    )
    job_id: Mapped[str] = mapped_column(String(50), ForeignKey("jobs.id"), nullable=False, index=True)
    shortage: Mapped[str | None] = mapped_column(String(100), nullable=True)
    damaged: Mapped[str | None] = mapped_column(String(100), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Job status label before this note cleared the job; restored on note deletion
    job_status_before: Mapped[str | None] = mapped_column(String(50), nullable=True)


class DeliveryNoteVehicle(Base):
    __tablename__ = "delivery_note_vehicles"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    delivery_note_id: Mapped[str] = mapped_column(
        String(30), ForeignKey("delivery_notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    vehicle_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    driver_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    driver_contact: Mapped[str | None] = mapped_column(String(100), nullable=True)
    discharge_location: Mapped[str | None] = mapped_column(String(200), nullable=True)
