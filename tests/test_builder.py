"""Tests for the fluent QueryBuilder surface."""

from __future__ import annotations

import datetime
import logging

import pytest

from chainql import ChainQLConfig, ConfigurationError, MalformedQueryError, QueryBuilder
from chainql.query import builder as builder_module
from chainql.schema import QueryState
from chainql.schema.clauses import where_basic


def _users(dialect: str = "mysql") -> QueryBuilder:
    return QueryBuilder("users", dialect=dialect)


# ---------------------------------------------------------------------------
# Construction and introspection
# ---------------------------------------------------------------------------


def test_dialect_from_config():
    qb = QueryBuilder("users", config=ChainQLConfig(dialect="postgres"))
    assert qb.dialect == "postgres"
    assert qb.where("id", 1).to_sql().sql == "SELECT * FROM users WHERE id = $1"


def test_explicit_dialect_overrides_config():
    qb = QueryBuilder("users", dialect="postgresql", config=ChainQLConfig(dialect="mysql"))
    assert qb.dialect == "postgres"


def test_table_and_from_alias():
    assert QueryBuilder(dialect="mysql").from_("posts").to_sql().sql == "SELECT * FROM posts"
    assert QueryBuilder(dialect="mysql").table("posts").state.table == "posts"


def test_get_bindings():
    assert _users().where("a", 1).where_in("b", [2, 3]).get_bindings() == [1, 2, 3]


def test_clone_is_independent():
    base = _users().where("age", ">", 18)
    copy = base.clone().where("role", "admin").limit(5)
    assert base.to_sql().sql == "SELECT * FROM users WHERE age > ?"
    assert copy.to_sql().sql == "SELECT * FROM users WHERE age > ? AND role = ? LIMIT 5"


def test_existing_state_is_continued():
    state = QueryState(table="users", wheres=[where_basic("id", ">", 10)])
    qb = QueryBuilder(dialect="mysql", state=state).order_by("id")
    assert qb.to_sql().sql == "SELECT * FROM users WHERE id > ? ORDER BY id ASC"


def test_debug_captures_last_compilation(caplog):
    qb = _users("postgres").where("id", 3).debug()
    with caplog.at_level(logging.DEBUG, logger="chainql.query.builder"):
        compiled = qb.to_sql()
    info = qb.last_debug_info
    assert info is not None
    assert info.sql == compiled.sql
    assert info.bindings == [3]
    assert info.dialect == "postgres"
    assert info.duration >= 0
    assert any("compiled postgres" in r.getMessage() for r in caplog.records)


def test_debug_off_by_default():
    qb = _users()
    qb.to_sql()
    assert qb.last_debug_info is None
    assert QueryBuilder("users", config=ChainQLConfig(debug=True)).tap(
        lambda q: q.to_sql()
    ).last_debug_info is not None


# ---------------------------------------------------------------------------
# Filter forms
# ---------------------------------------------------------------------------


def test_where_mapping_adds_equality_per_key():
    sql, bindings = _users().where({"status": "active", "deleted_at": None}).to_sql()
    assert sql == "SELECT * FROM users WHERE status = ? AND deleted_at IS NULL"
    assert bindings == ["active"]


def test_or_where_mapping_and_callable():
    sql, _ = (
        _users()
        .where("a", 1)
        .or_where({"b": 2})
        .or_where(lambda q: q.where("c", 3).where("d", 4))
        .to_sql()
    )
    assert sql == "SELECT * FROM users WHERE a = ? OR b = ? OR (c = ? AND d = ?)"


def test_empty_nested_group_is_dropped():
    assert _users().where(lambda q: None).to_sql().sql == "SELECT * FROM users"


def test_where_without_value_raises():
    with pytest.raises(MalformedQueryError) as exc_info:
        _users().where("age")
    assert exc_info.value.code == "INVALID_CLAUSE"


def test_where_not_rejects_uninvertible_operator():
    with pytest.raises(MalformedQueryError) as exc_info:
        _users().where_not("id", "in", [1, 2])
    assert exc_info.value.code == "UNKNOWN_OPERATOR"


def test_or_where_not_and_null_inversion():
    sql, _ = _users().where("a", 1).or_where_not("b", 2).where_not("c", None).to_sql()
    assert sql == "SELECT * FROM users WHERE a = ? OR b != ? AND c IS NOT NULL"


def test_where_column_default_operator():
    sql, bindings = _users().where_column("updated_at", "created_at").or_where_column(
        "a", ">", "b"
    ).to_sql()
    assert sql == "SELECT * FROM users WHERE updated_at = created_at OR a > b"
    assert bindings == []


def test_in_null_exists_variants():
    sql, _ = (
        _users()
        .where_not_in("id", [1])
        .or_where_in("role", ["admin"])
        .or_where_not_in("status", ["banned"])
        .where_not_null("email")
        .or_where_null("deleted_at")
        .or_where_not_null("age")
        .where_not_exists(QueryBuilder("bans", dialect="mysql").where_column("bans.user_id", "users.id"))
        .to_sql()
    )
    assert sql == (
        "SELECT * FROM users WHERE id NOT IN (?) OR role IN (?) OR status NOT IN (?) "
        "AND email IS NOT NULL OR deleted_at IS NULL OR age IS NOT NULL "
        "AND NOT EXISTS (SELECT * FROM bans WHERE bans.user_id = users.id)"
    )


def test_where_in_accepts_query_state():
    state = QueryState(table="posts", wheres=[where_basic("views", ">", 10)])
    sql, bindings = _users().where_in("id", state).to_sql()
    assert sql == "SELECT * FROM users WHERE id IN (SELECT * FROM posts WHERE views > ?)"
    assert bindings == [10]


def test_invalid_subquery_raises():
    with pytest.raises(MalformedQueryError) as exc_info:
        _users().where_exists(42)
    assert exc_info.value.code == "INVALID_SUBQUERY"


def test_or_variants_of_json_full_text_and_multi_column():
    sql, bindings = (
        _users()
        .where("a", 1)
        .or_where_json_contains("tags", "x")
        .or_where_json_length("tags", 0)
        .or_where_full_text("bio", "chess")
        .or_where_any(["name", "email"], "like", "%z%")
        .or_where_all(["x", "y"], 0)
        .or_where_none(["p", "q"], 1)
        .to_sql()
    )
    assert sql == (
        "SELECT * FROM users WHERE a = ? OR JSON_CONTAINS(tags, ?) OR JSON_LENGTH(tags) = ? "
        "OR MATCH(bio) AGAINST(?) OR (name LIKE ? OR email LIKE ?) OR (x = ? AND y = ?) "
        "OR NOT (p = ? OR q = ?)"
    )
    assert bindings == [1, "x", 0, "chess", "%z%", "%z%", 0, 0, 1, 1]


# ---------------------------------------------------------------------------
# Relative date helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def frozen_now(monkeypatch):
    moment = datetime.datetime(2024, 5, 1, 12, 30)
    monkeypatch.setattr(builder_module, "_now", lambda: moment)
    return moment


def test_past_and_future_bind_current_moment(frozen_now):
    sql, bindings = _users().where_past("expires_at").where_now_or_future("starts_at").to_sql()
    assert sql == "SELECT * FROM users WHERE expires_at < ? AND starts_at >= ?"
    assert bindings == [frozen_now, frozen_now]


def test_today_helpers_compare_date_part(frozen_now):
    sql, bindings = (
        _users()
        .where_today("created_at")
        .where_before_today("a")
        .where_after_today("b")
        .where_today_or_before("c")
        .where_today_or_after("d")
        .to_sql()
    )
    assert sql == (
        "SELECT * FROM users WHERE DATE(created_at) = ? AND DATE(a) < ? AND DATE(b) > ? "
        "AND DATE(c) <= ? AND DATE(d) >= ?"
    )
    assert bindings == ["2024-05-01"] * 5


# ---------------------------------------------------------------------------
# Joins
# ---------------------------------------------------------------------------


def test_join_builder_or_on_and_or_where():
    sql, bindings = (
        _users()
        .left_join(
            "posts",
            lambda j: j.on("users.id", "posts.user_id")
            .or_on("users.id", "=", "posts.editor_id")
            .or_where("posts.views", ">", 10),
        )
        .to_sql()
    )
    assert sql == (
        "SELECT * FROM users LEFT JOIN posts ON users.id = posts.user_id "
        "OR users.id = posts.editor_id OR posts.views > ?"
    )
    assert bindings == [10]


def test_join_builder_requires_on():
    with pytest.raises(MalformedQueryError, match="needs an on"):
        _users().join("posts", lambda j: j.where("posts.views", 1))


def test_right_join_and_kind_string():
    sql, _ = _users().right_join("teams", "users.team_id", "teams.id").join(
        "roles", "users.role_id", "=", "roles.id", kind="left"
    ).to_sql()
    assert sql == (
        "SELECT * FROM users RIGHT JOIN teams ON users.team_id = teams.id "
        "LEFT JOIN roles ON users.role_id = roles.id"
    )


# ---------------------------------------------------------------------------
# Paging, ordering, unions, locks
# ---------------------------------------------------------------------------


def test_take_skip_latest_oldest():
    sql, _ = _users().latest().oldest("id").take(3).skip(6).to_sql()
    assert sql == "SELECT * FROM users ORDER BY created_at DESC, id ASC LIMIT 3 OFFSET 6"


def test_for_page_uses_config_default_and_clamps_page():
    qb = QueryBuilder("users", config=ChainQLConfig(default_per_page=25)).for_page(0)
    assert qb.to_sql().sql == "SELECT * FROM users LIMIT 25 OFFSET 0"


def test_union_all():
    sql, bindings = (
        _users("postgres")
        .where("role", "admin")
        .union_all(QueryBuilder("admins", dialect="postgres").where("active", True))
        .to_sql()
    )
    assert sql == (
        "SELECT * FROM users WHERE role = $1 UNION ALL (SELECT * FROM admins WHERE active = $2)"
    )
    assert bindings == ["admin", True]


@pytest.mark.parametrize("value", [-1, True])
def test_invalid_limit_raises(value):
    with pytest.raises(MalformedQueryError) as exc_info:
        _users().limit(value)
    assert exc_info.value.code == "INVALID_CLAUSE"


def test_invalid_offset_raises():
    with pytest.raises(MalformedQueryError):
        _users().offset(-5)


def test_unknown_lock_mode_raises():
    with pytest.raises(MalformedQueryError) as exc_info:
        _users().lock("for lunch")
    assert exc_info.value.code == "UNKNOWN_LOCK"


# ---------------------------------------------------------------------------
# Conditional construction
# ---------------------------------------------------------------------------


def test_when_and_unless():
    role = "admin"
    sql, _ = (
        _users()
        .when(role, lambda q: q.where("role", role))
        .when(None, lambda q: q.where("never", 1), lambda q: q.order_by("id"))
        .unless(False, lambda q: q.limit(1))
        .unless(True, lambda q: q.where("never", 2))
        .to_sql()
    )
    assert sql == "SELECT * FROM users WHERE role = ? ORDER BY id ASC LIMIT 1"


def test_tap_ignores_return_value():
    qb = _users()
    assert qb.tap(lambda q: "ignored") is qb


def test_scopes_apply_once_before_compiling():
    calls = []

    def active(q: QueryBuilder) -> None:
        calls.append(1)
        q.where("status", "active")

    qb = _users().scope(active).where("age", ">", 18)
    first = qb.to_sql()
    second = qb.to_sql()
    assert first == second
    assert first.sql == "SELECT * FROM users WHERE age > ? AND status = ?"
    assert calls == [1]


def test_scopes_on_subquery_are_applied():
    sub = QueryBuilder("posts", dialect="mysql").select("user_id").scope(
        lambda q: q.where("published", 1)
    )
    sql, _ = _users().where_in("id", sub).to_sql()
    assert sql == "SELECT * FROM users WHERE id IN (SELECT user_id FROM posts WHERE published = ?)"


# ---------------------------------------------------------------------------
# Execution without an engine
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "call",
    [
        lambda q: q.get(),
        lambda q: q.count(),
        lambda q: q.insert({"a": 1}),
        lambda q: q.paginate(),
        lambda q: q.chunk(10, lambda batch: None),
    ],
)
def test_detached_builder_cannot_execute(call):
    with pytest.raises(ConfigurationError) as exc_info:
        call(_users())
    assert exc_info.value.field == "executor"
