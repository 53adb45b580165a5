import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from jobflow.models.base import Base
# Import all models so they register with Base.metadata for create_all
import jobflow.models  # noqa: F401
from jobflow.models import (
    BillOfLading,
    Container,
    ContainerType,
    DocumentType,
    Job,
    JobDocument,
    PaidBy,
    Payment,
    PaymentStatus,
    TransportMode,
)
from jobflow.lifecycle import ClearanceWorkflow, JobLifecycleEngine, PaymentWorkflow
from jobflow.store import SqlEntityStore

# In-memory SQLite per test (no Postgres dependency needed for unit tests)
TEST_DATABASE_URL = "sqlite+aiosqlite://"


class RecordingEventSink:
    """EventSink double that keeps every emitted event in memory."""

    def __init__(self):
        self.events: list[tuple[str, str | None, dict]] = []

    async def emit(self, event_type, job_id, details):
        self.events.append((event_type, job_id, details))

    @property
    def types(self) -> list[str]:
        return [event_type for event_type, _, _ in self.events]

    def of(self, event_type) -> list[tuple[str, str | None, dict]]:
        name = getattr(event_type, "value", event_type)
        return [e for e in self.events if e[0] == name]


class FailingEventSink:
    async def emit(self, event_type, job_id, details):
        raise RuntimeError("audit store unavailable")


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine):
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings():
    settings = MagicMock()
    settings.delivery_note_prefix = "DN"
    settings.voucher_prefix = "VH"
    settings.trust_status_clearance_signal = False
    settings.require_signed_copy_on_delivery = False
    settings.event_sink = "log"
    return settings


@pytest.fixture
def store(db_session):
    return SqlEntityStore(db_session)


@pytest.fixture
def recording_sink():
    return RecordingEventSink()


@pytest.fixture
def clearance(store, recording_sink, test_settings):
    return ClearanceWorkflow(store, recording_sink, test_settings)


@pytest.fixture
def payments(store, recording_sink, test_settings):
    return PaymentWorkflow(store, recording_sink, test_settings)


@pytest.fixture
def lifecycle(store, recording_sink, test_settings):
    return JobLifecycleEngine(store, recording_sink, test_settings)


@pytest.fixture
def job_factory(db_session):
    """Create a job with its BLs, containers and documents.

    Defaults give a SEA job whose documentation gate holds.
    """

    async def _create(
        job_id: str = "JOB-001",
        *,
        transport_mode: TransportMode = TransportMode.SEA,
        bl_count: int = 1,
        containers: int | None = None,
        documents: int = 1,
        consignee: str | None = "Acme Imports Ltd",
        exporter: str | None = "Shenzhen Export Co",
        invoice_no: str | None = "SINV-100",
        no_of_pkgs: str | None = "10",
        cargo_type: str | None = "General",
        status: str = "New",
        progress: int = 0,
        job_invoice_no: str | None = None,
    ):
        job = Job(
            id=job_id,
            customer="Acme Imports",
            consignee=consignee,
            exporter=exporter,
            transport_mode=transport_mode,
            status=status,
            progress=progress,
            invoice_no=invoice_no,
            no_of_pkgs=no_of_pkgs,
            cargo_type=cargo_type,
            job_invoice_no=job_invoice_no,
        )
        db_session.add(job)
        await db_session.flush()

        bls = []
        for i in range(bl_count):
            bl = BillOfLading(
                id=uuid.uuid4(),
                job_id=job_id,
                master_bl=f"MBL-{job_id}-{i + 1}",
                house_bl=f"HBL-{job_id}-{i + 1}",
                loading_port="Shanghai",
                vessel="MSC Aurora",
                eta=date(2026, 3, 1),
                packages=[{"count": 10, "weight": "1200 KG", "type": "PALLET"}],
            )
            db_session.add(bl)
            bls.append(bl)
        await db_session.flush()

        if containers is None:
            containers = 1 if transport_mode == TransportMode.SEA else 0
        for i in range(containers):
            db_session.add(Container(
                id=uuid.uuid4(),
                job_id=job_id,
                bl_id=bls[0].id if bls else None,
                container_no=f"MSCU{i:07d}",
                container_type=ContainerType.GP40,
            ))
        for i in range(documents):
            db_session.add(JobDocument(
                id=uuid.uuid4(),
                job_id=job_id,
                document_type=DocumentType.INVOICE,
                file_name=f"invoice-{i}.pdf",
                file_size=2048,
                uploaded_by="ops",
            ))
        await db_session.flush()
        return job, bls

    return _create


@pytest.fixture
def payment_factory(db_session):
    """Insert a payment row directly in the given status."""

    async def _create(
        job_id: str,
        amount: str | Decimal = "100.00",
        *,
        vendor: str = "ACME",
        status: PaymentStatus = PaymentStatus.APPROVED,
        payment_type: str = "Port Charges",
    ) -> Payment:
        payment = Payment(
            id=uuid.uuid4(),
            job_id=job_id,
            payment_type=payment_type,
            vendor=vendor,
            amount=Decimal(str(amount)),
            paid_by=PaidBy.COMPANY,
            status=status,
            requested_by="clearance.agent",
        )
        db_session.add(payment)
        await db_session.flush()
        return payment

    return _create
