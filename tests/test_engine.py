"""Tests for ExecutionEngine behaviour, driven through a recording executor."""

from __future__ import annotations

import asyncio
import datetime
import logging
import threading
from decimal import Decimal

import pytest

from chainql import (
    AggregateTypeError,
    ChainQLConfig,
    Collection,
    Database,
    ExecResult,
    MalformedQueryError,
    QueryCancelledError,
    QueryExecutionError,
    RecordNotFoundError,
    RowIterationError,
)
from chainql.execute import normalize_aggregate, normalize_value
from tests.fixtures import FailingRows, RecordingExecutor

# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


def test_get_runs_compiled_select(mysql_db, executor):
    executor.rows = [{"id": 1, "name": "Ann"}]
    rows = mysql_db.table("users").where("age", ">", 18).get()
    assert isinstance(rows, Collection)
    assert rows.to_list() == [{"id": 1, "name": "Ann"}]
    assert executor.calls == [("query", "SELECT * FROM users WHERE age > ?", [18])]


def test_first_limits_a_copy(mysql_db, executor):
    executor.rows = [{"id": 1}, {"id": 2}]
    qb = mysql_db.table("users").order_by("id")
    assert qb.first() == {"id": 1}
    assert executor.last_sql == "SELECT * FROM users ORDER BY id ASC LIMIT 1"
    assert "LIMIT" not in qb.to_sql().sql


def test_first_or_fail_raises_on_empty(mysql_db):
    with pytest.raises(RecordNotFoundError, match="no record found in 'users'"):
        mysql_db.table("users").where("id", 0).first_or_fail()


def test_find_by_key(pg_db, executor):
    executor.queue([{"id": 5, "name": "Eve"}], [])
    assert pg_db.table("users").find(5)["name"] == "Eve"
    assert executor.last_sql == "SELECT * FROM users WHERE id = $1 LIMIT 1"
    with pytest.raises(RecordNotFoundError) as exc_info:
        pg_db.table("users").find("abc", key="uuid")
    assert exc_info.value.key == "abc"
    assert exc_info.value.table == "users"


def test_pluck_uses_last_segment_or_alias(mysql_db, executor):
    executor.queue([{"name": "A"}, {"name": "B"}], [{"mail": "a@x"}])
    assert mysql_db.table("users").select("id").pluck("users.name") == ["A", "B"]
    assert executor.last_sql == "SELECT users.name FROM users"
    assert mysql_db.table("users").pluck("email AS mail") == ["a@x"]


def test_value_returns_first_or_none(mysql_db, executor):
    executor.queue([{"name": "Ann"}], [])
    assert mysql_db.table("users").value("name") == "Ann"
    assert executor.last_sql == "SELECT name FROM users LIMIT 1"
    assert mysql_db.table("users").value("name") is None


def test_exists_drops_orders(mysql_db, executor):
    executor.queue([{"present": 1}], [])
    qb = mysql_db.table("users").where("id", 1).order_by("name")
    assert qb.exists() is True
    assert executor.last_sql == "SELECT 1 AS present FROM users WHERE id = ? LIMIT 1"
    assert qb.doesnt_exist() is True


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def test_count_strips_paging_and_order(mysql_db, executor):
    executor.rows = [{"aggregate": 7}]
    qb = mysql_db.table("users").where("status", "active").order_by("id").limit(5).offset(10)
    assert qb.count() == 7
    assert executor.last_sql == "SELECT COUNT(*) AS aggregate FROM users WHERE status = ?"
    assert qb.to_sql().sql.endswith("LIMIT 5 OFFSET 10")


def test_count_wraps_grouped_query(mysql_db, executor):
    executor.rows = [{"aggregate": 3}]
    assert mysql_db.table("users").group_by("role").count() == 3
    assert executor.last_sql == (
        "SELECT COUNT(*) AS aggregate FROM (SELECT * FROM users GROUP BY role) AS aggregate_table"
    )


def test_count_wraps_distinct_query(pg_db, executor):
    executor.rows = [{"aggregate": 2}]
    assert pg_db.table("users").select("role").distinct().where("age", ">", 1).count() == 2
    assert executor.last_sql == (
        "SELECT COUNT(*) AS aggregate FROM "
        "(SELECT DISTINCT role FROM users WHERE age > $1) AS aggregate_table"
    )
    assert executor.last_bindings == [1]


def test_sum_avg_min_max(mysql_db, executor):
    executor.queue(
        [{"aggregate": Decimal("12.50")}],
        [{"aggregate": None}],
        [{"aggregate": datetime.date(2024, 1, 5)}],
        [{"aggregate": "88"}],
    )
    users = mysql_db.table("users")
    assert users.sum("score") == 12.5
    assert executor.last_sql == "SELECT SUM(score) AS aggregate FROM users"
    assert users.avg("score") is None
    assert users.min("created_at") == datetime.date(2024, 1, 5)
    assert users.max("score") == 88.0


def test_unknown_aggregate_raises(mysql_db):
    with pytest.raises(MalformedQueryError) as exc_info:
        mysql_db.engine.aggregate(mysql_db.table("users").state, "median", "age")
    assert exc_info.value.code == "UNKNOWN_AGGREGATE"


@pytest.mark.parametrize(
    "function, raw, expected",
    [
        ("COUNT", None, 0),
        ("SUM", None, 0),
        ("AVG", None, None),
        ("COUNT", 4, 4),
        ("COUNT", 4.0, 4),
        ("COUNT", "17", 17),
        ("COUNT", b"3", 3),
        ("SUM", Decimal("10"), 10),
        ("SUM", Decimal("2.5"), 2.5),
        ("AVG", "2.25", 2.25),
        ("AVG", bytearray(b"1.5"), 1.5),
        ("MAX", datetime.datetime(2024, 4, 22, 7, 10), datetime.datetime(2024, 4, 22, 7, 10)),
    ],
)
def test_normalize_aggregate(function, raw, expected):
    result = normalize_aggregate(function, raw)
    assert result == expected
    assert type(result) is type(expected)


@pytest.mark.parametrize("raw", [True, "abc", "nan", object(), datetime.date(2024, 1, 1)])
def test_normalize_aggregate_rejects(raw):
    with pytest.raises(AggregateTypeError):
        normalize_aggregate("SUM", raw)


def test_byte_values_are_decoded(mysql_db, executor):
    executor.rows = [{"name": b"Ann", "tag": memoryview(b"x"), "n": 1}]
    assert mysql_db.table("users").first() == {"name": "Ann", "tag": "x", "n": 1}
    assert normalize_value(bytearray(b"ok")) == "ok"


def test_binary_values_are_kept_as_bytes(mysql_db, executor):
    png = b"\x89PNG\r\n\x1a\n\x00\x00"
    executor.rows = [{"id": 1, "avatar": png}, {"id": 2, "avatar": memoryview(b"\xff\xfe")}]
    rows = mysql_db.table("users").get()
    assert rows.pluck("avatar") == [png, b"\xff\xfe"]
    assert normalize_value(bytearray(b"\xc3\x28")) == b"\xc3\x28"
    with pytest.raises(AggregateTypeError):
        normalize_aggregate("MAX", b"\x89PNG")


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


def test_executor_failure_is_wrapped(mysql_db, executor):
    boom = RuntimeError("connection reset")
    executor.queue(boom)
    with pytest.raises(QueryExecutionError) as exc_info:
        mysql_db.table("users").where("id", 1).get()
    err = exc_info.value
    assert str(err) == "failed to execute select"
    assert err.__cause__ is boom
    assert err.sql == "SELECT * FROM users WHERE id = ?"
    assert err.bindings == [1]


def test_execute_failure_names_action(mysql_db, executor):
    executor.execute_error = RuntimeError("duplicate key")
    with pytest.raises(QueryExecutionError) as exc_info:
        mysql_db.table("users").insert({"email": "a@x"})
    assert exc_info.value.action == "insert"


def test_row_failure_discards_result(mysql_db, executor):
    executor.queue(FailingRows([{"id": 1}], ValueError("bad utf-8")))
    with pytest.raises(RowIterationError) as exc_info:
        mysql_db.table("users").get()
    assert exc_info.value.row_index == 1
    assert isinstance(exc_info.value.__cause__, ValueError)


def test_execution_is_logged(mysql_db, executor, caplog):
    with caplog.at_level(logging.DEBUG, logger="chainql.execute.engine"):
        mysql_db.table("users").where("id", 2).get()
    assert any(
        r.getMessage() == "executing select: SELECT * FROM users WHERE id = ? [2]"
        for r in caplog.records
    )


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------


def test_insert_returns_exec_result(mysql_db, executor):
    result = mysql_db.table("users").insert({"name": "Ann", "age": 30})
    assert isinstance(result, ExecResult)
    assert executor.calls[-1] == (
        "execute", "INSERT INTO users (name, age) VALUES (?, ?)", ["Ann", 30]
    )


def test_insert_get_id_mysql_uses_last_insert_id(executor):
    executor.exec_result = ExecResult(rows_affected=1, last_insert_id=42)
    db = Database(executor, dialect="mysql")
    assert db.table("users").insert_get_id({"name": "Ann"}) == 42
    assert executor.last_sql == "INSERT INTO users (name) VALUES (?)"


def test_insert_get_id_postgres_uses_returning(pg_db, executor):
    executor.queue([{"id": 9}])
    assert pg_db.table("users").insert_get_id({"name": "Ann"}) == 9
    assert executor.calls[-1] == (
        "query_one", "INSERT INTO users (name) VALUES ($1) RETURNING id", ["Ann"]
    )


def test_update_delete_return_rows_affected(executor):
    executor.exec_result = ExecResult(rows_affected=3)
    db = Database(executor, dialect="mysql")
    assert db.table("users").where("role", "user").update({"status": "x"}) == 3
    assert executor.last_sql == "UPDATE users SET status = ? WHERE role = ?"
    assert db.table("users").where("status", "x").delete() == 3
    assert executor.last_sql == "DELETE FROM users WHERE status = ?"


def test_increment_and_decrement(mysql_db, executor):
    mysql_db.table("posts").where("id", 4).increment("views")
    assert executor.last_bindings == [1, 4]
    mysql_db.table("posts").where("id", 4).decrement("views", 2, {"published": 0})
    assert executor.last_sql == "UPDATE posts SET views = views + ?, published = ? WHERE id = ?"
    assert executor.last_bindings == [-2, 0, 4]


def test_json_updates(pg_db, executor):
    pg_db.table("users").where("id", 1).update_json("settings", "theme", "dark")
    assert executor.last_sql.startswith("UPDATE users SET settings = jsonb_set(")
    pg_db.table("users").where("id", 1).update_json_remove("settings", "theme")
    assert executor.last_sql == "UPDATE users SET settings = settings #- '{theme}' WHERE id = $1"


def test_insert_batch_and_variants(mysql_db, executor):
    mysql_db.table("users").insert_batch([{"name": "A"}, {"name": "B"}])
    assert executor.last_sql == "INSERT INTO users (name) VALUES (?), (?)"
    mysql_db.table("users").upsert({"email": "a@x", "name": "A"}, ["email"], action="DO NOTHING")
    assert executor.last_sql.endswith("ON DUPLICATE KEY UPDATE email = email")
    mysql_db.table("users").insert_or_ignore([{"email": "a@x"}])
    assert executor.last_sql == "INSERT IGNORE INTO users (email) VALUES (?)"
    mysql_db.table("users").replace({"id": 1, "email": "a@x"})
    assert executor.last_sql == "REPLACE INTO users (id, email) VALUES (?, ?)"


def test_update_or_insert_inserts_when_missing(mysql_db, executor):
    executor.queue([])
    inserted = mysql_db.table("users").update_or_insert({"email": "a@x"}, {"name": "Ann"})
    assert inserted is True
    assert executor.statements == [
        "SELECT * FROM users WHERE email = ? LIMIT 1",
        "INSERT INTO users (email, name) VALUES (?, ?)",
    ]
    assert executor.last_bindings == ["a@x", "Ann"]


def test_update_or_insert_updates_when_found(mysql_db, executor):
    executor.queue([{"id": 1}], [{"id": 1}])
    assert mysql_db.table("users").update_or_insert({"email": "a@x"}, {"name": "Ann"}) is False
    assert executor.last_sql == "UPDATE users SET name = ? WHERE email = ?"
    calls_before = len(executor.calls)
    assert mysql_db.table("users").update_or_insert({"email": "a@x"}) is False
    assert len(executor.calls) == calls_before + 1


def test_update_or_create_returns_record(mysql_db, executor):
    executor.queue([{"id": 1, "email": "a@x", "name": "Old"}], [])
    record = mysql_db.table("users").update_or_create({"email": "a@x"}, {"name": "New"})
    assert record == {"id": 1, "email": "a@x", "name": "New"}
    created = mysql_db.table("users").update_or_create({"email": "b@x"}, {"name": "Bea"})
    assert created == {"email": "b@x", "name": "Bea"}
    assert executor.last_sql == "INSERT INTO users (email, name) VALUES (?, ?)"


# ---------------------------------------------------------------------------
# Optional layers
# ---------------------------------------------------------------------------


def test_cache_serves_repeated_gets():
    executor = RecordingExecutor(rows=[{"id": 1}])
    with Database(executor, config=ChainQLConfig(cache_enabled=True)) as db:
        first = db.table("users").where("id", 1).get()
        second = db.table("users").where("id", 1).get()
        assert first == second
        assert len(executor.calls) == 1
        db.table("users").count()
        db.table("users").count()
        assert len(executor.calls) == 3
        stats = db.cache_stats()
        assert stats is not None and stats.hits == 1


def test_cache_disabled_by_default(mysql_db):
    assert mysql_db.cache is None
    assert mysql_db.cache_stats() is None


def test_limiter_releases_slots():
    executor = RecordingExecutor(rows=[{"id": 1}])
    db = Database(executor, config=ChainQLConfig(max_concurrency=1))
    db.table("users").get()
    rows = list(db.table("users").cursor())
    assert rows == [{"id": 1}]
    db.table("users").get()
    assert len(executor.calls) == 3


def test_cancel_event_abandons_wait_for_slot():
    executor = RecordingExecutor(rows=[{"id": 1}])
    db = Database(executor, config=ChainQLConfig(max_concurrency=1))
    cancel = threading.Event()
    cancel.set()
    db.limiter.acquire()
    try:
        with pytest.raises(QueryCancelledError, match="cancelled"):
            db.table("users").cancellable(cancel).get()
    finally:
        db.limiter.release()
    assert executor.calls == []
    assert db.limiter.in_flight == 0


def test_slot_timeout_abandons_wait_for_slot():
    executor = RecordingExecutor(rows=[{"id": 1}])
    db = Database(executor, config=ChainQLConfig(max_concurrency=1))
    db.limiter.acquire()
    try:
        with pytest.raises(QueryCancelledError, match="timed out"):
            db.table("users").cancellable(timeout=0.05).count()
    finally:
        db.limiter.release()
    assert executor.calls == []
    assert db.table("users").cancellable(timeout=0.05).get().to_list() == [{"id": 1}]


def test_cancelled_async_call_stops_waiting_for_slot():
    executor = RecordingExecutor(rows=[{"id": 1}])
    db = Database(executor, config=ChainQLConfig(max_concurrency=1))

    async def scenario() -> int:
        task = asyncio.create_task(db.table("users").get_async())
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        # the worker re-checks the cancel event between waits
        await asyncio.sleep(0.2)
        return db.limiter.in_flight

    db.limiter.acquire()
    try:
        assert asyncio.run(scenario()) == 1
    finally:
        db.limiter.release()
    assert executor.calls == []
    assert db.limiter.in_flight == 0


def test_query_log_records_success_and_failure():
    executor = RecordingExecutor()
    db = Database(executor, config=ChainQLConfig(query_log_enabled=True))
    db.table("users").get()
    executor.queue(RuntimeError("down"))
    with pytest.raises(QueryExecutionError):
        db.table("users").get()
    entries = db.query_log.entries()
    assert [e.sql for e in entries] == ["SELECT * FROM users", "SELECT * FROM users"]
    assert entries[0].error is None
    assert "down" in entries[1].error


# ---------------------------------------------------------------------------
# Streaming and async
# ---------------------------------------------------------------------------


def test_cursor_streams_rows(mysql_db, executor):
    executor.rows = [{"id": 1, "name": b"A"}, {"id": 2, "name": b"B"}]
    stream = mysql_db.table("users").cursor()
    assert executor.calls == []
    assert list(stream) == [{"id": 1, "name": "A"}, {"id": 2, "name": "B"}]
    assert executor.calls[0][0] == "query"


def test_cursor_row_failure(mysql_db, executor):
    executor.queue(FailingRows([{"id": 1}], ValueError("truncated")))
    stream = mysql_db.table("users").cursor()
    assert next(stream) == {"id": 1}
    with pytest.raises(RowIterationError):
        next(stream)


def test_async_variants(mysql_db, executor):
    executor.queue([{"id": 1}], [{"id": 1}], [{"aggregate": 4}])
    qb = mysql_db.table("users").where("active", 1)
    rows = asyncio.run(qb.get_async())
    assert rows.to_list() == [{"id": 1}]
    assert asyncio.run(qb.first_async()) == {"id": 1}
    assert asyncio.run(qb.count_async()) == 4
    assert executor.statements[-1] == "SELECT COUNT(*) AS aggregate FROM users WHERE active = ?"


def test_async_paginate(mysql_db, executor):
    executor.queue([{"aggregate": 1}], [{"id": 1}])
    page = asyncio.run(mysql_db.table("users").paginate_async(1, 10))
    assert page.meta.total == 1
    assert page.data == [{"id": 1}]


# ---------------------------------------------------------------------------
# Debug capture
# ---------------------------------------------------------------------------


def test_debug_records_the_executed_aggregate(mysql_db, executor, caplog):
    executor.queue([{"aggregate": 2}])
    qb = mysql_db.table("users").where("active", 1).debug()
    with caplog.at_level(logging.DEBUG, logger="chainql.query.builder"):
        assert qb.count() == 2
    info = qb.last_debug_info
    assert info is not None
    assert info.sql == "SELECT COUNT(*) AS aggregate FROM users WHERE active = ?"
    assert info.sql == executor.last_sql
    assert info.bindings == [1]
    assert info.duration >= 0
    assert any("COUNT(*)" in r.getMessage() for r in caplog.records)


def test_debug_records_mutations(executor):
    executor.exec_result = ExecResult(rows_affected=1)
    db = Database(executor, dialect="mysql")
    qb = db.table("users").where("id", 7).debug()
    qb.update({"name": "Ann"})
    assert qb.last_debug_info.sql == "UPDATE users SET name = ? WHERE id = ?"
    assert qb.last_debug_info.bindings == ["Ann", 7]


def test_debug_records_cache_hits():
    executor = RecordingExecutor(rows=[{"id": 1}])
    with Database(executor, config=ChainQLConfig(cache_enabled=True)) as db:
        db.table("users").where("id", 1).get()
        qb = db.table("users").where("id", 1).debug()
        assert qb.get().to_list() == [{"id": 1}]
        assert len(executor.calls) == 1
        assert qb.last_debug_info.sql == "SELECT * FROM users WHERE id = ?"
        assert qb.last_debug_info.bindings == [1]
