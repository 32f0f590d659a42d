import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from glassflow.config import WorkflowConfig
from glassflow.db import crud
from glassflow.models import Base
from glassflow.services.workflow import WorkflowEngine


class RecordingDispatcher:
    """Stands in for the notification dispatcher; keeps emitted events in order."""

    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.name for e in self.events]


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def recorder():
    return RecordingDispatcher()


@pytest.fixture
def workflow(db, recorder):
    return WorkflowEngine(db, recorder, WorkflowConfig())


@pytest.fixture
def make_shop(db):
    async def _make(name="Shop A", **kwargs):
        email = kwargs.pop("email", name.lower().replace(" ", "") + "@shops.test")
        return await crud.create_shop(db, name=name, email=email, **kwargs)
    return _make


@pytest.fixture
def make_appointment(workflow):
    async def _make(**overrides):
        fields = {
            "customer_name": "Jane Doe",
            "customer_email": "jane.doe@example.com",
            "customer_phone": "+31 6 1234 5678",
            "vehicle_make": "Volvo",
            "vehicle_model": "V60",
            "vehicle_year": 2021,
            "license_plate": "GF-123-X",
            "service_type": "windshield_repair",
            "damage_type": "chip",
            "insurer_name": "Acme Insurance",
        }
        fields.update(overrides)
        return await workflow.submit_damage_report(**fields)
    return _make
