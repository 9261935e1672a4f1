"""MySQL dialect compiler."""

from __future__ import annotations

from collections.abc import Sequence

from chainql.compile.base import SQLCompiler, json_path_segments, sql_string_literal
from chainql.schema.clauses import ConflictAction, DatePart, Operator


class MySQLCompiler(SQLCompiler):
    """Renders chainQL statements as MySQL-flavoured parameterized SQL.

    Parameter style: unnumbered ``?`` markers, paired positionally with the
    binding list by the driver.

    Note: MySQL does not support ``ILIKE``; it is mapped to ``LIKE``.
    MySQL's ``LIKE`` is case-insensitive for non-binary TEXT/VARCHAR columns
    by default.  ``FULL JOIN`` is not available and raises.
    """

    @property
    def dialect_name(self) -> str:
        return "mysql"

    def placeholder(self, index: int) -> str:
        return "?"

    def like_operator(self, op: Operator) -> str:
        if op is Operator.ILIKE:
            return "LIKE"
        if op is Operator.NOT_ILIKE:
            return "NOT LIKE"
        return op.value

    def json_contains(self, column: str, marker: str) -> str:
        return f"JSON_CONTAINS({column}, {marker})"

    def json_length(self, column: str) -> str:
        return f"JSON_LENGTH({column})"

    def json_path(self, column: str, path: str) -> str:
        return f"JSON_UNQUOTE(JSON_EXTRACT({column}, {sql_string_literal(self._path(path))}))"

    def json_set(self, column: str, path: str, marker: str) -> str:
        return f"JSON_SET({column}, {sql_string_literal(self._path(path))}, {marker})"

    def json_remove(self, column: str, path: str) -> str:
        return f"JSON_REMOVE({column}, {sql_string_literal(self._path(path))})"

    def full_text(self, columns: Sequence[str], marker: str) -> str:
        return f"MATCH({', '.join(columns)}) AGAINST({marker})"

    def date_part(self, column: str, part: DatePart) -> str:
        return f"{part.value}({column})"

    def upsert_suffix(
        self,
        columns: Sequence[str],
        conflict_target: Sequence[str],
        update_columns: Sequence[str] | None,
        action: ConflictAction,
    ) -> str:
        # The unique index decides the conflict; the target list is not used.
        if action is ConflictAction.DO_NOTHING:
            noop = (list(conflict_target) or list(columns))[0]
            return f"ON DUPLICATE KEY UPDATE {noop} = {noop}"
        targets = list(update_columns) if update_columns else list(columns)
        assignments = ", ".join(f"{c} = VALUES({c})" for c in targets)
        return f"ON DUPLICATE KEY UPDATE {assignments}"

    def insert_or_ignore_parts(self) -> tuple[str, str]:
        return "INSERT IGNORE INTO", ""

    def replace_keyword(self) -> str:
        return "REPLACE INTO"

    @staticmethod
    def _path(path: str) -> str:
        """Convert a dotted path to MySQL's ``$.a.b[0]`` form."""
        out = "$"
        for segment in json_path_segments(path):
            out += f"[{segment}]" if segment.isdigit() else f".{segment}"
        return out
