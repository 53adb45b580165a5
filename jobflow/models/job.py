"""ORM models for jobs and the shipping records they own."""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from jobflow.models.base import Base, TimestampMixin, utcnow


class TransportMode(str, enum.Enum):
    SEA = "SEA"
    AIR = "AIR"
    ROAD = "ROAD"
    POST = "POST"
    EXPORT = "EXPORT"


class ShipmentType(str, enum.Enum):
    IMP = "IMP"
    EXP = "EXP"
    TRANSIT = "TRANSIT"
    BOND = "BOND"


class JobStatus(str, enum.Enum):
    """Status labels the engine writes. ``Job.status`` itself is free-form."""

    NEW = "New"
    PENDING = "Pending"
    CLEARED = "Cleared"
    PAYMENT = "Payment"
    COMPLETED = "Completed"


class ContainerType(str, enum.Enum):
    GP20 = "20GP"
    GP40 = "40GP"
    HC40 = "40HC"
    RF20 = "20RF"
    RF40 = "40RF"
    OT20 = "20OT"
    OT40 = "40OT"
    FR20 = "20FR"
    FR40 = "40FR"


class DocumentType(str, enum.Enum):
    INVOICE = "Invoice"
    PACKING_LIST = "Packing List"
    BL_AWB = "BL/AWB"
    OTHER = "Other"


class Job(Base, TimestampMixin):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    customer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    consignee: Mapped[str | None] = mapped_column(String(255), nullable=True)
    exporter: Mapped[str | None] = mapped_column(String(255), nullable=True)
    transport_mode: Mapped[TransportMode] = mapped_column(
        SAEnum(TransportMode, name="transport_mode", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    shipment_type: Mapped[ShipmentType | None] = mapped_column(
        SAEnum(ShipmentType, name="shipment_type", values_callable=lambda e: [m.value for m in e]),
        nullable=True,
    )
    service: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(50), default=JobStatus.NEW.value, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Shipment invoice fields checked by the documentation gate
    invoice_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    no_of_pkgs: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cargo_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    job_invoice_no: Mapped[str | None] = mapped_column(String(100), nullable=True)


class BillOfLading(Base, TimestampMixin):
    __tablename__ = "bills_of_lading"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    master_bl: Mapped[str | None] = mapped_column(String(100), nullable=True)
    house_bl: Mapped[str | None] = mapped_column(String(100), nullable=True)
    loading_port: Mapped[str | None] = mapped_column(String(200), nullable=True)
    vessel: Mapped[str | None] = mapped_column(String(200), nullable=True)
    etd: Mapped[date | None] = mapped_column(Date, nullable=True)
    eta: Mapped[date | None] = mapped_column(Date, nullable=True)
    delivery_agent: Mapped[str | None] = mapped_column(String(200), nullable=True)
    # Ordered [{"count": 10, "weight": "1200 KG", "cbm": "3.2", "type": "PALLET"}, ...]
    packages: Mapped[list | None] = mapped_column(JSON, nullable=True)

    @property
    def reference(self) -> str:
        return self.house_bl or self.master_bl or str(self.id)


class Container(Base, TimestampMixin):
    __tablename__ = "containers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bl_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("bills_of_lading.id", ondelete="SET NULL"), nullable=True
    )
    container_no: Mapped[str] = mapped_column(String(20), nullable=False)
    container_type: Mapped[ContainerType | None] = mapped_column(
        SAEnum(ContainerType, name="container_type", values_callable=lambda e: [m.value for m in e]),
        nullable=True,
    )
    unloaded_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class JobDocument(Base):
    __tablename__ = "job_documents"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_type: Mapped[DocumentType] = mapped_column(
        SAEnum(DocumentType, name="job_document_type", values_callable=lambda e: [m.value for m in e]),
        default=DocumentType.OTHER,
        nullable=False,
    )
    file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    uploaded_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
