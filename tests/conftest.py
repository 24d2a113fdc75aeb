import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from mcp_server.main import app
from mcp_server.core import models
from mcp_server.core.database import Base
from mcp_server.core.query.engine import QueryEngine
from mcp_server.core.query.registry import build_schema
from mcp_server.api.dependencies import get_query_engine

COLLECTED_AT = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


def seed_rows():
    devices = [
        models.Device(id="dev-1", mac_address="00:11:22:33:44:01", hostname="laptop-001", os="Linux", platform="x86_64", version="Ubuntu 22.04", current_user="john.doe", org_unit="Engineering"),
        models.Device(id="dev-2", mac_address="00:11:22:33:44:02", hostname="laptop-002", os="Windows", platform="x86_64", version="11", current_user="jane.roe", org_unit="Finance"),
        models.Device(id="dev-3", mac_address="00:11:22:33:44:03", hostname="o'brien-mbp", os="Linux", platform="arm64", version="Debian 12", current_user="o'brien", org_unit=None),
    ]
    processes = [
        models.Process(id="proc-1", device_id="dev-1", pid=100, name="nginx", cmdline=["nginx", "-g", "daemon off;"], username="www-data", file_size=1048576, collected_at=COLLECTED_AT),
        models.Process(id="proc-2", device_id="dev-1", pid=200, name="python3", cmdline=["python3", "app.py"], username="john.doe", file_size=4096, collected_at=COLLECTED_AT),
        models.Process(id="proc-3", device_id="dev-2", pid=300, name="chrome", username="jane.roe", file_size=2048, collected_at=COLLECTED_AT),
    ]
    threats = [
        models.ThreatFinding(id="threat-1", device_id="dev-1", process_id="proc-1", description="Suspicious process detected", severity="critical", rule_id="rule-001", rule_name="Malware Detection", timestamp=COLLECTED_AT),
        models.ThreatFinding(id="threat-2", device_id="dev-2", description="Outdated browser", severity="low", rule_id="rule-002", rule_name="Patch Level", timestamp=COLLECTED_AT),
        models.ThreatFinding(id="threat-3", device_id="dev-1", description="Open admin port", severity="high", rule_id="rule-003", rule_name="Exposure", timestamp=COLLECTED_AT),
    ]
    return devices + processes + threats


# Fresh SQLite telemetry database per test, seeded with a few rows
@pytest_asyncio.fixture(scope="function")
async def storage(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'telemetry.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        # Parents first so foreign keys resolve
        for row in seed_rows():
            session.add(row)
            await session.flush()
        await session.commit()

    yield engine
    await engine.dispose()


@pytest.fixture
def schema():
    return build_schema()


@pytest.fixture
def devices(schema):
    return schema.entities["devices"]


@pytest.fixture
def processes(schema):
    return schema.entities["processes"]


@pytest_asyncio.fixture(scope="function")
async def query_engine(storage):
    return QueryEngine(storage=storage, timeout=5)


@pytest.fixture
def schema_only_engine():
    return QueryEngine(storage=None)


@asynccontextmanager
async def client_for(engine: QueryEngine):
    app.dependency_overrides[get_query_engine] = lambda: engine

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# Client talking to an engine backed by the seeded database
@pytest_asyncio.fixture(scope="function")
async def client(query_engine):
    async with client_for(query_engine) as ac:
        yield ac


# Client talking to an engine without storage
@pytest_asyncio.fixture(scope="function")
async def schema_only_client(schema_only_engine):
    async with client_for(schema_only_engine) as ac:
        yield ac


class SpyConnection:
    def __init__(self, delay: float):
        self.delay = delay

    async def execute(self, *args, **kwargs):
        await asyncio.sleep(self.delay)
        raise AssertionError("spy storage never returns rows")


class SpyStorage:
    """Stands in for an AsyncEngine and records every connection attempt."""

    def __init__(self, delay: float = 0):
        self.delay = delay
        self.connect_calls = 0

    @asynccontextmanager
    async def connect(self):
        self.connect_calls += 1
        yield SpyConnection(self.delay)


@pytest.fixture
def spy_storage():
    return SpyStorage()
