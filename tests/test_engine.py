import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from mcp_server.core.schemas import Filter, QueryRequest, QueryStatus
from mcp_server.core.query.engine import QueryEngine, run_result_sweeper
from mcp_server.core.query.errors import QueryNotFoundError


class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.mark.asyncio
async def test_completed_query(query_engine):
    request = QueryRequest(
        entity="devices",
        fields=["id"],
        filters=[Filter(field="os", operator="eq", value="Windows")],
    )
    response = await query_engine.execute_query(request)

    assert response.status == QueryStatus.COMPLETED
    assert response.data == [{"id": "dev-2"}]
    assert response.metadata.row_count == 1
    assert response.metadata.sql == "SELECT devices.id FROM devices WHERE devices.os = 'Windows'"
    assert response.completed_at is not None
    assert response.error is None
    assert query_engine.get_query_result(response.id) == response


@pytest.mark.asyncio
async def test_ids_are_assigned_or_kept(schema_only_engine):
    generated = await schema_only_engine.execute_query(QueryRequest(entity="devices"))
    assert generated.id

    mine = await schema_only_engine.execute_query(QueryRequest(id="my-query", entity="devices"))
    assert mine.id == "my-query"


@pytest.mark.asyncio
async def test_unknown_entity_never_reaches_storage(spy_storage):
    engine = QueryEngine(storage=spy_storage)
    response = await engine.execute_query(QueryRequest(id="q-1", entity="users"))

    assert response.status == QueryStatus.FAILED
    assert response.error_type == "unknown_entity"
    assert "users" in response.error
    assert response.metadata.sql is None
    assert spy_storage.connect_calls == 0


@pytest.mark.asyncio
async def test_compile_failure_never_reaches_storage(spy_storage):
    engine = QueryEngine(storage=spy_storage)
    request = QueryRequest(
        entity="devices",
        filters=[Filter(field="os", operator="in", value="Linux")],
    )
    response = await engine.execute_query(request)

    assert response.status == QueryStatus.FAILED
    assert response.error_type == "malformed_filter_value"
    assert spy_storage.connect_calls == 0


@pytest.mark.asyncio
async def test_schema_only_mode_fails_and_is_retrievable(schema_only_engine):
    response = await schema_only_engine.execute_query(QueryRequest(id="q-1", entity="devices"))

    assert response.status == QueryStatus.FAILED
    assert response.error_type == "storage_unavailable"
    assert response.completed_at is not None
    assert response.metadata.sql.startswith("SELECT ")
    assert schema_only_engine.get_query_result("q-1") == response


@pytest.mark.asyncio
async def test_storage_errors_are_recorded(query_engine):
    request = QueryRequest(entity="devices", fields=["os"], group_by=["no_such_column"])
    response = await query_engine.execute_query(request)

    assert response.status == QueryStatus.FAILED
    assert response.error_type == "storage_execution_failed"
    assert "no_such_column" in response.error


@pytest.mark.asyncio
async def test_timeout_marks_query_failed(spy_storage):
    spy_storage.delay = 5
    engine = QueryEngine(storage=spy_storage, timeout=0.05)
    response = await engine.execute_query(QueryRequest(id="slow", entity="devices"))

    assert response.status == QueryStatus.FAILED
    assert response.error_type == "query_timeout"
    assert engine.get_query_result("slow").status == QueryStatus.FAILED


def test_unknown_result_id(schema_only_engine):
    with pytest.raises(QueryNotFoundError):
        schema_only_engine.get_query_result("missing")


def test_validate_query_is_standalone(schema_only_engine):
    assert schema_only_engine.validate_query(QueryRequest(entity="devices")) is None
    error = schema_only_engine.validate_query(QueryRequest(entity="users"))
    assert error.code == "unknown_entity"
    # Nothing is stored by a pre-flight check
    assert len(schema_only_engine.results) == 0


def test_get_schema_refreshes_timestamp():
    clock = FakeClock(datetime(2030, 1, 1, tzinfo=timezone.utc))
    engine = QueryEngine(now=clock)
    snapshot = engine.get_schema()

    assert snapshot.timestamp == clock.current
    assert snapshot.entities == engine.schema.entities


def test_schema_snapshot_cannot_change_the_registry():
    engine = QueryEngine()
    snapshot = engine.get_schema()
    snapshot.entities["devices"].fields.pop("hostname")
    snapshot.entities.pop("processes")

    assert engine.schema.entities["devices"].has_field("hostname")
    assert engine.get_schema().get_entity("processes") is not None
    request = QueryRequest(entity="devices", fields=["hostname"])
    assert engine.validate_query(request) is None


@pytest.mark.asyncio
async def test_clear_expired():
    clock = FakeClock(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc))
    engine = QueryEngine(now=clock, result_ttl=3600)

    await engine.execute_query(QueryRequest(id="old", entity="devices"))
    clock.advance(minutes=90)
    await engine.execute_query(QueryRequest(id="new", entity="devices"))

    assert engine.clear_expired() == 1
    assert engine.get_query_result("new").id == "new"
    with pytest.raises(QueryNotFoundError):
        engine.get_query_result("old")


@pytest.mark.asyncio
async def test_result_sweeper_runs_until_cancelled():
    clock = FakeClock(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc))
    engine = QueryEngine(now=clock, result_ttl=60)
    await engine.execute_query(QueryRequest(id="old", entity="devices"))
    clock.advance(minutes=5)

    sweeper = asyncio.create_task(run_result_sweeper(engine, interval=0.01))
    await asyncio.sleep(0.05)
    sweeper.cancel()
    with pytest.raises(asyncio.CancelledError):
        await sweeper

    assert "old" not in engine.results


@pytest.mark.asyncio
async def test_concurrent_queries_all_land(query_engine):
    requests = [
        QueryRequest(id=f"q-{n}", entity="devices", fields=["id"], limit=1)
        for n in range(25)
    ]
    responses = await asyncio.gather(*(query_engine.execute_query(r) for r in requests))

    assert {response.id for response in responses} == {r.id for r in requests}
    for request in requests:
        stored = query_engine.get_query_result(request.id)
        assert stored.status == QueryStatus.COMPLETED
        assert stored.metadata.row_count == 1
