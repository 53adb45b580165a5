from jobflow.models.base import Base, TimestampMixin
from jobflow.models.job import (
    BillOfLading,
    Container,
    ContainerType,
    DocumentType,
    Job,
    JobDocument,
    JobStatus,
    ShipmentType,
    TransportMode,
)
from jobflow.models.clearance import (
    ClearanceSchedule,
    DeliveryNote,
    DeliveryNoteItem,
    DeliveryNoteStatus,
    DeliveryNoteVehicle,
)
from jobflow.models.payment import PaidBy, Payment, PaymentItem, PaymentStatus
from jobflow.models.audit import AuditEvent

__all__ = [
    "Base",
    "TimestampMixin",
    "Job",
    "JobStatus",
    "TransportMode",
    "ShipmentType",
    "BillOfLading",
    "Container",
    "ContainerType",
    "JobDocument",
    "DocumentType",
    "ClearanceSchedule",
    "DeliveryNote",
    "DeliveryNoteItem",
    "DeliveryNoteStatus",
    "DeliveryNoteVehicle",
    "Payment",
    "PaymentItem",
    "PaymentStatus",
    "PaidBy",
    "AuditEvent",
]
