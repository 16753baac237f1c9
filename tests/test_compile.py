"""Unit tests for StatementCompiler (all dialects)."""

from __future__ import annotations

from typing import Any

import pytest

from weaveql.compile.ansi import AnsiDialect
from weaveql.compile.base import Dialect
from weaveql.compile.context import CompilationContext
from weaveql.compile.mysql import MySQLDialect
from weaveql.compile.postgres import PostgresDialect
from weaveql.compile.sqlite import SQLiteDialect
from weaveql.compile.sqlserver import SQLServerDialect
from weaveql.compile.statement import StatementCompiler, resolve_upsert_columns
from weaveql.errors import UnsupportedOperationError, ValidationError
from weaveql.schema.config import SoftDeletePolicy
from weaveql.schema.context import OperationKind
from weaveql.schema.query_state import (
    BasicFilter,
    HavingClause,
    JoinClause,
    OrderByItem,
    QueryState,
    Visibility,
)

FIXED_CLOCK = "2024-01-01T00:00:00+00:00"


def _compiler(dialect: Dialect | None = None, **kwargs: Any) -> StatementCompiler:
    kwargs.setdefault("clock", lambda: FIXED_CLOCK)
    return StatementCompiler(CompilationContext(dialect=dialect or SQLiteDialect(), **kwargs))


def _soft(**overrides: Any) -> SoftDeletePolicy:
    return SoftDeletePolicy.model_validate({"enabled": True, **overrides})


def _users(**kwargs: Any) -> QueryState:
    return QueryState(table="users", **kwargs)


# ---------------------------------------------------------------------------
# SELECT
# ---------------------------------------------------------------------------


def test_select_star_default():
    r = _compiler().select(_users())
    assert r.sql == 'SELECT * FROM "users"'
    assert r.params == ()
    assert r.operation is OperationKind.SELECT
    assert r.dialect == "sqlite"


def test_select_full_clause_order():
    state = _users(
        columns=["users.id", "email AS mail", "COUNT(1) AS c"],
        joins=[JoinClause(table="orders", left="orders.user_id", right="users.id", type="LEFT")],
        filters=[BasicFilter(column="users.age", operator=">=", value=21)],
        group_by=["users.id", "email"],
        having=[HavingClause(expression="COUNT(1)", operator=">", value=1)],
        order_by=[OrderByItem(column="users.id", direction="DESC")],
        limit=10,
        offset=20,
    )
    r = _compiler().select(state)
    assert r.sql == (
        'SELECT "users"."id", "email" AS "mail", COUNT(1) AS c FROM "users" '
        'LEFT JOIN "orders" ON "orders"."user_id" = "users"."id" '
        'WHERE "users"."age" >= ? GROUP BY "users"."id", "email" HAVING COUNT(1) > ? '
        'ORDER BY "users"."id" DESC LIMIT 10 OFFSET 20'
    )
    assert r.params == (21, 1)


def test_select_join_operator_validated():
    state = _users(joins=[JoinClause(table="o", left="o.a", operator="~", right="users.b")])
    with pytest.raises(ValidationError):
        _compiler().select(state)


def test_select_applies_prefix_to_tables():
    state = _users(joins=[JoinClause(table="orders", left="orders.user_id", right="users.id")])
    r = _compiler(prefix="app_").select(state)
    assert r.sql.startswith('SELECT * FROM "app_users" INNER JOIN "app_orders"')


@pytest.mark.parametrize(
    "dialect, expected",
    [
        (SQLiteDialect(), 'SELECT * FROM "users" LIMIT 5'),
        (PostgresDialect(), 'SELECT * FROM "users" LIMIT 5'),
        (MySQLDialect(), "SELECT * FROM `users` LIMIT 5"),
        (
            SQLServerDialect(),
            "SELECT * FROM [users] ORDER BY (SELECT NULL) OFFSET 0 ROWS FETCH NEXT 5 ROWS ONLY",
        ),
        (AnsiDialect(), 'SELECT * FROM "users" FETCH FIRST 5 ROWS ONLY'),
    ],
)
def test_select_limit_per_dialect(dialect: Dialect, expected: str):
    assert _compiler(dialect).select(_users(limit=5)).sql == expected


def test_select_sqlserver_with_order_keeps_user_ordering():
    state = _users(order_by=[OrderByItem(column="id")], limit=5, offset=10)
    r = _compiler(SQLServerDialect()).select(state)
    assert r.sql == (
        "SELECT * FROM [users] ORDER BY [id] ASC OFFSET 10 ROWS FETCH NEXT 5 ROWS ONLY"
    )


def test_select_with_scope_and_soft_delete():
    state = _users(filters=[BasicFilter(column="name", operator="=", value="Ann")])
    r = _compiler(PostgresDialect(), scope={"tenant_id": 9}, soft_delete=_soft()).select(state)
    assert r.sql == (
        'SELECT * FROM "users" WHERE "tenant_id" = %s AND "deleted_at" IS NULL AND "name" = %s'
    )
    assert r.params == (9, "Ann")


def test_select_with_join_qualifies_injected_columns():
    state = _users(
        columns=["users.name", "posts.title"],
        joins=[JoinClause(table="posts", left="posts.user_id", right="users.id")],
        filters=[BasicFilter(column="posts.title", operator="=", value="Hi")],
    )
    r = _compiler(scope={"tenant_id": 1}, soft_delete=_soft(), prefix="app_").select(state)
    assert r.sql == (
        'SELECT "users"."name", "posts"."title" FROM "app_users" '
        'INNER JOIN "app_posts" ON "posts"."user_id" = "users"."id" '
        'WHERE "app_users"."tenant_id" = ? AND "app_users"."deleted_at" IS NULL '
        'AND "posts"."title" = ?'
    )
    assert r.params == (1, "Hi")


def test_select_with_join_keeps_qualified_scope_column():
    state = _users(joins=[JoinClause(table="posts", left="posts.user_id", right="users.id")])
    r = _compiler(scope={"posts.tenant_id": 2}).select(state)
    assert r.sql.endswith('WHERE "posts"."tenant_id" = ?')


# ---------------------------------------------------------------------------
# INSERT
# ---------------------------------------------------------------------------


class TestInsert:
    def test_single_row(self):
        r = _compiler().insert("users", [{"email": "a@x", "name": "A"}])
        assert r.sql == 'INSERT INTO "users" ("email", "name") VALUES (?, ?)'
        assert r.params == ("a@x", "A")
        assert r.operation is OperationKind.INSERT

    def test_multi_row_params_in_row_order(self):
        r = _compiler(MySQLDialect()).insert(
            "users", [{"email": "a", "name": "A"}, {"name": "B", "email": "b"}]
        )
        assert r.sql == "INSERT INTO `users` (`email`, `name`) VALUES (%s, %s), (%s, %s)"
        assert r.params == ("a", "A", "b", "B")

    def test_scope_not_applied(self):
        r = _compiler(scope={"tenant_id": 1}).insert("users", [{"name": "A"}])
        assert "tenant_id" not in r.sql

    def test_returning_on_postgres_only(self):
        pg = _compiler(PostgresDialect()).insert("users", [{"name": "A"}], returning=["id"])
        assert pg.sql == 'INSERT INTO "users" ("name") VALUES (%s) RETURNING "id"'
        lite = _compiler().insert("users", [{"name": "A"}], returning=["id"])
        assert "RETURNING" not in lite.sql

    def test_empty_rows_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _compiler().insert("users", [])
        assert exc_info.value.code == "EMPTY_INSERT"
        with pytest.raises(ValidationError):
            _compiler().insert("users", [{}])

    def test_row_shape_mismatch(self):
        with pytest.raises(ValidationError) as exc_info:
            _compiler().insert("users", [{"a": 1}, {"b": 2}])
        assert exc_info.value.code == "ROW_SHAPE_MISMATCH"


# ---------------------------------------------------------------------------
# UPSERT
# ---------------------------------------------------------------------------


class TestUpsert:
    def test_sqlite_native(self):
        r = _compiler().upsert("counters", {"key": "k", "hits": 1}, ["key"])
        assert r.sql == (
            'INSERT INTO "counters" ("key", "hits") VALUES (?, ?) '
            'ON CONFLICT ("key") DO UPDATE SET "hits" = excluded."hits"'
        )
        assert r.params == ("k", 1)
        assert r.operation is OperationKind.UPSERT

    def test_explicit_update_columns(self):
        r = _compiler(MySQLDialect()).upsert(
            "counters", {"key": "k", "hits": 1, "note": "n"}, ["key"], ["note"]
        )
        assert r.sql.endswith("ON DUPLICATE KEY UPDATE `note` = VALUES(`note`)")

    def test_sqlserver_requires_fallback(self):
        with pytest.raises(UnsupportedOperationError):
            _compiler(SQLServerDialect()).upsert("counters", {"key": "k", "hits": 1}, ["key"])


class TestResolveUpsertColumns:
    def test_defaults_to_non_conflict_columns(self):
        assert resolve_upsert_columns({"a": 1, "b": 2, "c": 3}, ["a"], None) == ["b", "c"]

    @pytest.mark.parametrize(
        "row, conflict, update",
        [
            ({"a": 1}, [], None),
            ({"a": 1}, ["z"], None),
            ({"a": 1, "b": 2}, ["a"], ["zz"]),
            ({"a": 1}, ["a"], None),
        ],
    )
    def test_invalid_arguments(self, row, conflict, update):
        with pytest.raises(ValidationError) as exc_info:
            resolve_upsert_columns(row, conflict, update)
        assert exc_info.value.code == "INVALID_UPSERT"


# ---------------------------------------------------------------------------
# UPDATE / DELETE / RESTORE
# ---------------------------------------------------------------------------


class TestUpdate:
    def test_set_params_precede_where_params(self):
        state = _users(filters=[BasicFilter(column="id", operator="=", value=5)])
        r = _compiler(scope={"tenant_id": 2}).update(state, {"name": "B", "age": 30})
        assert r.sql == (
            'UPDATE "users" SET "name" = ?, "age" = ? WHERE "tenant_id" = ? AND "id" = ?'
        )
        assert r.params == ("B", 30, 2, 5)
        assert r.operation is OperationKind.UPDATE

    def test_empty_values_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            _compiler().update(_users(), {})
        assert exc_info.value.code == "EMPTY_UPDATE"

    def test_soft_delete_hides_trashed_rows_from_update(self):
        r = _compiler(soft_delete=_soft()).update(_users(), {"name": "X"})
        assert r.sql == 'UPDATE "users" SET "name" = ? WHERE "deleted_at" IS NULL'


class TestDelete:
    def test_hard_delete_without_policy(self):
        state = _users(filters=[BasicFilter(column="id", operator="=", value=1)])
        r = _compiler().delete(state)
        assert r.sql == 'DELETE FROM "users" WHERE "id" = ?'
        assert r.operation is OperationKind.DELETE

    def test_timestamp_soft_delete_is_update(self):
        state = _users(filters=[BasicFilter(column="id", operator="=", value=1)])
        r = _compiler(soft_delete=_soft()).delete(state)
        assert r.sql == (
            'UPDATE "users" SET "deleted_at" = ? WHERE "deleted_at" IS NULL AND "id" = ?'
        )
        assert r.params == (FIXED_CLOCK, 1)
        assert r.operation is OperationKind.DELETE

    def test_boolean_soft_delete_writes_sentinel(self):
        policy = _soft(column="is_deleted", mode="boolean")
        r = _compiler(soft_delete=policy).delete(_users())
        assert r.sql == (
            'UPDATE "users" SET "is_deleted" = ? '
            'WHERE ("is_deleted" IS NULL OR "is_deleted" <> ?)'
        )
        assert r.params == (1, 1)

    def test_force_delete_ignores_visibility_filter(self):
        r = _compiler(soft_delete=_soft(), scope={"tenant_id": 4}).delete(_users(), force=True)
        assert r.sql == 'DELETE FROM "users" WHERE "tenant_id" = ?'
        assert r.params == (4,)

    def test_force_delete_only_trashed(self):
        state = _users(visibility=Visibility.ONLY_TRASHED)
        r = _compiler(soft_delete=_soft()).delete(state, force=True)
        assert r.sql == 'DELETE FROM "users" WHERE "deleted_at" IS NOT NULL'


class TestRestore:
    def test_restore_targets_trashed_rows(self):
        state = _users(filters=[BasicFilter(column="id", operator="=", value=3)])
        r = _compiler(soft_delete=_soft()).restore(state)
        assert r is not None
        assert r.sql == (
            'UPDATE "users" SET "deleted_at" = ? WHERE "deleted_at" IS NOT NULL AND "id" = ?'
        )
        assert r.params == (None, 3)

    def test_restore_boolean_writes_restored_value(self):
        r = _compiler(soft_delete=_soft(column="is_deleted", mode="boolean")).restore(_users())
        assert r is not None
        assert r.params == (0, 1)

    def test_restore_without_policy_is_none(self):
        assert _compiler().restore(_users()) is None

    def test_restore_does_not_mutate_state(self):
        state = _users()
        _compiler(soft_delete=_soft()).restore(state)
        assert state.visibility is Visibility.DEFAULT


# ---------------------------------------------------------------------------
# JSON set
# ---------------------------------------------------------------------------


class TestJsonSet:
    def test_nested_paths(self):
        state = _users(filters=[BasicFilter(column="id", operator="=", value=1)])
        r = _compiler().json_set(state, "profile", {"city": "Oslo", "tags.0": "a"})
        assert r.sql == (
            "UPDATE \"users\" SET \"profile\" = "
            "json_set(json_set(\"profile\", '$.city', json(?)), '$.tags[0]', json(?)) "
            'WHERE "id" = ?'
        )
        assert r.params == ('"Oslo"', '"a"', 1)

    def test_empty_values_rejected(self):
        with pytest.raises(ValidationError):
            _compiler().json_set(_users(), "profile", {})

    def test_ansi_unsupported(self):
        with pytest.raises(UnsupportedOperationError):
            _compiler(AnsiDialect()).json_set(_users(), "profile", {"a": 1})


def test_params_match_placeholders_across_statements():
    compiler = _compiler(PostgresDialect(), scope={"t": 1}, soft_delete=_soft())
    state = _users(filters=[BasicFilter(column="a", operator="=", value=1)], limit=3)
    for r in (
        compiler.select(state),
        compiler.update(state, {"b": 2}),
        compiler.delete(state),
        compiler.delete(state, force=True),
        compiler.insert("users", [{"a": 1}, {"a": 2}]),
    ):
        assert r.sql.count("%s") == len(r.params)
