from datetime import date, datetime, timedelta, timezone

import pytest

from mcp_server.core.schemas import Aggregate, Filter, Join, OrderBy, QueryRequest
from mcp_server.core.query.compiler import CompiledQuery, compile_query
from mcp_server.core.query.errors import (
    QueryTimeoutError,
    StorageExecutionError,
    StorageUnavailableError,
)
from mcp_server.core.query.executor import QueryExecutor
from mcp_server.core.query.values import normalize_row, normalize_value


@pytest.mark.asyncio
async def test_execute_filtered_query(storage, devices):
    request = QueryRequest(
        entity="devices",
        fields=["id", "hostname"],
        filters=[Filter(field="os", operator="eq", value="Linux")],
        order_by=[OrderBy(field="hostname", direction="asc")],
    )
    result = await QueryExecutor(storage).execute(compile_query(request, devices))

    assert result.row_count == 2
    assert result.records == [
        {"id": "dev-1", "hostname": "laptop-001"},
        {"id": "dev-3", "hostname": "o'brien-mbp"},
    ]
    assert result.elapsed >= 0


@pytest.mark.asyncio
async def test_quoted_value_matches_stored_row(storage, devices):
    request = QueryRequest(
        entity="devices",
        fields=["id"],
        filters=[Filter(field="current_user", operator="eq", value="o'brien")],
    )
    result = await QueryExecutor(storage).execute(compile_query(request, devices))
    assert result.records == [{"id": "dev-3"}]


@pytest.mark.asyncio
async def test_in_like_and_null_filters(storage, devices):
    executor = QueryExecutor(storage)

    in_request = QueryRequest(
        entity="devices",
        fields=["id"],
        filters=[Filter(field="os", operator="in", value=["Windows", "Plan9"])],
    )
    assert (await executor.execute(compile_query(in_request, devices))).records == [{"id": "dev-2"}]

    like_request = QueryRequest(
        entity="devices",
        fields=["id"],
        filters=[Filter(field="hostname", operator="like", value="laptop-%")],
        order_by=[OrderBy(field="id")],
    )
    result = await executor.execute(compile_query(like_request, devices))
    assert [row["id"] for row in result.records] == ["dev-1", "dev-2"]

    null_request = QueryRequest(
        entity="devices",
        fields=["id", "org_unit"],
        filters=[Filter(field="org_unit", operator="is_null")],
    )
    result = await executor.execute(compile_query(null_request, devices))
    # NULL columns are kept in the record
    assert result.records == [{"id": "dev-3", "org_unit": None}]


@pytest.mark.asyncio
async def test_grouped_aggregate(storage, schema):
    request = QueryRequest(
        entity="threat_findings",
        fields=["device_id"],
        aggregates=[Aggregate(function="count", field="*", alias="findings")],
        group_by=["device_id"],
        order_by=[OrderBy(field="device_id")],
    )
    result = await QueryExecutor(storage).execute(
        compile_query(request, schema.entities["threat_findings"])
    )
    assert result.records == [
        {"device_id": "dev-1", "findings": 2},
        {"device_id": "dev-2", "findings": 1},
    ]


@pytest.mark.asyncio
async def test_join(storage, processes):
    request = QueryRequest(
        entity="processes",
        fields=["name", "pid"],
        joins=[Join(entity="devices", type="inner", condition="processes.device_id = devices.id")],
        filters=[Filter(field="pid", operator="gte", value=200)],
        order_by=[OrderBy(field="pid", direction="desc")],
        limit=1,
    )
    result = await QueryExecutor(storage).execute(compile_query(request, processes))
    assert result.records == [{"name": "chrome", "pid": 300}]


@pytest.mark.asyncio
async def test_no_storage_fails_fast(devices):
    executor = QueryExecutor(None)
    assert executor.available is False
    with pytest.raises(StorageUnavailableError):
        await executor.execute(compile_query(QueryRequest(entity="devices"), devices))


@pytest.mark.asyncio
async def test_backend_errors_pass_through(storage, devices):
    request = QueryRequest(entity="devices", fields=["os"], group_by=["no_such_column"])
    with pytest.raises(StorageExecutionError, match="no_such_column"):
        await QueryExecutor(storage).execute(compile_query(request, devices))


@pytest.mark.asyncio
async def test_timeout(spy_storage):
    spy_storage.delay = 5
    executor = QueryExecutor(spy_storage, timeout=0.05)
    with pytest.raises(QueryTimeoutError):
        await executor.execute(CompiledQuery(statement="SELECT 1", sql="SELECT 1"))
    assert spy_storage.connect_calls == 1


@pytest.mark.asyncio
async def test_join_condition_with_colon_literal(storage, processes):
    request = QueryRequest(
        entity="processes",
        fields=["name"],
        joins=[
            Join(
                entity="devices",
                type="inner",
                condition="processes.device_id = devices.id AND devices.hostname != 'x :y'",
            )
        ],
        filters=[Filter(field="pid", operator="eq", value=100)],
    )
    result = await QueryExecutor(storage).execute(compile_query(request, processes))
    assert result.records == [{"name": "nginx"}]


@pytest.mark.asyncio
async def test_numeric_string_filter_matches_integer_column(storage, processes):
    request = QueryRequest(
        entity="processes",
        fields=["name"],
        filters=[Filter(field="pid", operator="in", value=["100", "300"])],
        order_by=[OrderBy(field="pid")],
    )
    result = await QueryExecutor(storage).execute(compile_query(request, processes))
    assert result.records == [{"name": "nginx"}, {"name": "chrome"}]


def test_binary_payloads_are_decoded():
    assert normalize_value(b'{"env": "prod"}') == {"env": "prod"}
    assert normalize_value(bytearray(b'["a", "b"]')) == ["a", "b"]
    assert normalize_value(b"not json") == "not json"


def test_temporal_values_use_rfc3339():
    assert normalize_value(datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)) == "2025-01-15T10:30:00Z"
    offset = timezone(timedelta(hours=2))
    assert normalize_value(datetime(2025, 1, 15, 12, 30, tzinfo=offset)) == "2025-01-15T12:30:00+02:00"
    assert normalize_value(date(2025, 1, 15)) == "2025-01-15"


def test_rows_keep_every_column():
    row = {"id": "dev-1", "org_unit": None, "pid": 7, "ok": True}
    assert normalize_row(row) == row
