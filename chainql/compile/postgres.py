"""PostgreSQL dialect compiler."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from chainql.compile.base import SQLCompiler, json_path_segments, sql_string_literal
from chainql.errors import UnsupportedFeatureError
from chainql.schema.clauses import ConflictAction, DatePart, JoinType


class PostgresCompiler(SQLCompiler):
    """Renders chainQL statements as PostgreSQL-flavoured parameterized SQL.

    Parameter style: ``$1``, ``$2`` … numbered by binding position.  The
    numbering runs across the whole statement, including joins, unions and
    sub-queries, and never restarts.
    """

    @property
    def dialect_name(self) -> str:
        return "postgres"

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def join_keyword(self, kind: JoinType) -> str:
        if kind is JoinType.FULL:
            return "FULL OUTER JOIN"
        return f"{kind.value} JOIN"

    def json_contains(self, column: str, marker: str) -> str:
        return f"{column} @> {marker}"

    def json_length(self, column: str) -> str:
        return f"jsonb_array_length({column})"

    def json_path(self, column: str, path: str) -> str:
        segments = json_path_segments(path)
        if len(segments) == 1 and "[" not in path:
            return f"{column} ->> {sql_string_literal(segments[0])}"
        return f"{column} #>> {sql_string_literal(self._path(segments))}"

    def json_set(self, column: str, path: str, marker: str) -> str:
        path_sql = sql_string_literal(self._path(json_path_segments(path)))
        return f"jsonb_set({column}, {path_sql}, {marker}::jsonb)"

    def json_set_value(self, value: Any) -> Any:
        return json.dumps(value)

    def json_remove(self, column: str, path: str) -> str:
        return f"{column} #- {sql_string_literal(self._path(json_path_segments(path)))}"

    def full_text(self, columns: Sequence[str], marker: str) -> str:
        document = " || ' ' || ".join(columns)
        return f"to_tsvector({document}) @@ plainto_tsquery({marker})"

    def date_part(self, column: str, part: DatePart) -> str:
        if part is DatePart.DATE:
            return f"DATE({column})"
        if part is DatePart.TIME:
            return f"CAST({column} AS TIME)"
        return f"EXTRACT({part.value} FROM {column})"

    def upsert_suffix(
        self,
        columns: Sequence[str],
        conflict_target: Sequence[str],
        update_columns: Sequence[str] | None,
        action: ConflictAction,
    ) -> str:
        if not conflict_target:
            raise UnsupportedFeatureError(
                "upsert",
                self.dialect_name,
                "upsert on postgres requires a conflict target",
            )
        target_sql = f"ON CONFLICT ({', '.join(conflict_target)})"
        if action is ConflictAction.DO_NOTHING:
            return f"{target_sql} DO NOTHING"
        if update_columns is None:
            update_columns = [c for c in columns if c not in conflict_target]
        if not update_columns:
            return f"{target_sql} DO NOTHING"
        assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in update_columns)
        return f"{target_sql} DO UPDATE SET {assignments}"

    def insert_or_ignore_parts(self) -> tuple[str, str]:
        return "INSERT INTO", "ON CONFLICT DO NOTHING"

    @property
    def supports_returning(self) -> bool:
        return True

    @staticmethod
    def _path(segments: list[str]) -> str:
        """Render path segments as a text-array literal body ``{a,b,0}``."""
        return "{" + ",".join(segments) + "}"
