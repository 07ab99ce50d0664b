import random
import sys
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from factories import BASE_URL, Clock, FakeFhirSession  # noqa: E402
from wardsync.models import Base  # noqa: E402
from wardsync.services.fhir.client import FhirRecordClient  # noqa: E402
from wardsync.services.sync.store import SnapshotStore  # noqa: E402
from wardsync.services.sync.transformer import SnapshotTransformer  # noqa: E402
from wardsync.utils.cache import TTLCache  # noqa: E402


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def fake_session():
    return FakeFhirSession()


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def fhir_client(fake_session, sleeps):
    async def _record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return FhirRecordClient(
        base_url=BASE_URL,
        cache=TTLCache(600),
        session=fake_session,
        page_size=50,
        retry_backoff_seconds=0.5,
        sleep=_record_sleep,
    )


@pytest.fixture()
def transformer(clock):
    return SnapshotTransformer(rng=random.Random(7), now=clock)


@pytest.fixture()
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    await engine.dispose()


@pytest.fixture()
def store(session_maker, clock):
    return SnapshotStore(session_maker, now=clock)
