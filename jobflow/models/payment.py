"""ORM models for job payment requests and the payment-type catalog."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from jobflow.models.base import Base, TimestampMixin


class PaymentStatus(str, enum.Enum):
    DRAFT = "Draft"
    PENDING = "Pending"
    AWAITING_CLEARANCE = "Awaiting Clearance"
    APPROVED = "Approved"
    PAID = "Paid"
    REJECTED = "Rejected"


class PaidBy(str, enum.Enum):
    COMPANY = "Company"
    CUSTOMER = "Customer"


class PaymentItem(Base, TimestampMixin):
    """Catalog entry for a payment type; ``vendor`` pre-fills new requests."""

    __tablename__ = "payment_items"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Payment(Base, TimestampMixin):
    __tablename__ = "job_payments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    payment_type: Mapped[str] = mapped_column(String(200), nullable=False)
    vendor: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2, asdecimal=True), nullable=False)
    paid_by: Mapped[PaidBy] = mapped_column(
        SAEnum(PaidBy, name="paid_by", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus, name="payment_status", values_callable=lambda e: [m.value for m in e]),
        default=PaymentStatus.DRAFT,
        nullable=False,
        index=True,
    )
    requested_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    bill_ref_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    voucher_no: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    payment_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payment_mode: Mapped[str | None] = mapped_column(String(50), nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
