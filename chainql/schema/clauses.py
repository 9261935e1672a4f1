"""Immutable clause models for a chainQL query description.

Each clause *category* (select item, filter, join, order key, group key,
having condition, union branch) is a single frozen pydantic model carrying
an explicit ``kind`` discriminator.  The compiler dispatches on ``kind``
instead of on the Python type, so adding a new filter shape means adding an
enum member and one rendering branch.

Every select/filter/having/order/group clause carries exactly one of a
structured form or raw SQL text, never both.  Raw text marks its bound
values with ``?``; the compiler rewrites each marker to the active dialect's
placeholder and splices the fragment's bindings in at that position.

Construction helpers at the bottom of the module normalise loose caller
input (lists, generators, operator strings in any case) into these models
and default the boolean connective to ``AND``::

    from chainql.schema.clauses import where_basic, where_in

    where_basic("age", ">", 18)
    where_in("role", ["admin", "user"], boolean="or", negated=True)
"""
from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, model_validator

from chainql.errors import MalformedQueryError

if TYPE_CHECKING:
    from chainql.schema.query import QueryState

_FROZEN = ConfigDict(extra="forbid", frozen=True)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Operator(str, Enum):
    """Comparison operators accepted by structured filters."""

    EQ = "="
    NE = "!="
    NE_ALT = "<>"
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    LIKE = "LIKE"
    NOT_LIKE = "NOT LIKE"
    ILIKE = "ILIKE"
    NOT_ILIKE = "NOT ILIKE"
    IN = "IN"
    NOT_IN = "NOT IN"
    BETWEEN = "BETWEEN"
    NOT_BETWEEN = "NOT BETWEEN"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"
    EXISTS = "EXISTS"
    NOT_EXISTS = "NOT EXISTS"


class Boolean(str, Enum):
    """Connective joining a filter to the one before it."""

    AND = "AND"
    OR = "OR"


class JoinType(str, Enum):
    """Join kinds."""

    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    CROSS = "CROSS"
    FULL = "FULL"


class Direction(str, Enum):
    """Sort direction."""

    ASC = "ASC"
    DESC = "DESC"


class LockMode(str, Enum):
    """Row-lock suffixes appended after OFFSET."""

    FOR_UPDATE = "FOR UPDATE"
    FOR_SHARE = "FOR SHARE"
    FOR_UPDATE_NOWAIT = "FOR UPDATE NOWAIT"
    FOR_UPDATE_SKIP_LOCKED = "FOR UPDATE SKIP LOCKED"
    FOR_SHARE_NOWAIT = "FOR SHARE NOWAIT"
    FOR_SHARE_SKIP_LOCKED = "FOR SHARE SKIP LOCKED"


class ConflictAction(str, Enum):
    """What an upsert does when the conflict target already exists."""

    DO_NOTHING = "DO NOTHING"
    DO_UPDATE = "DO UPDATE"


class DatePart(str, Enum):
    """Date/time component extracted by ``where_date`` and friends."""

    DATE = "DATE"
    TIME = "TIME"
    DAY = "DAY"
    MONTH = "MONTH"
    YEAR = "YEAR"


class SelectKind(str, Enum):
    COLUMN = "column"
    RAW = "raw"


class WhereKind(str, Enum):
    """Discriminator for :class:`WhereClause`."""

    BASIC = "basic"
    BETWEEN = "between"
    IN = "in"
    NULL = "null"
    EXISTS = "exists"
    NESTED = "nested"
    RAW = "raw"
    COLUMN = "column"
    DATE = "date"
    JSON_CONTAINS = "json_contains"
    JSON_LENGTH = "json_length"
    JSON_PATH = "json_path"
    FULL_TEXT = "full_text"
    MULTI_COLUMN = "multi_column"


class OrderKind(str, Enum):
    COLUMN = "column"
    RAW = "raw"


class GroupKind(str, Enum):
    COLUMN = "column"
    RAW = "raw"


class HavingKind(str, Enum):
    BASIC = "basic"
    RAW = "raw"


#: Operators a BASIC / DATE / JSON filter may carry.
COMPARISON_OPERATORS: frozenset[Operator] = frozenset(
    {
        Operator.EQ, Operator.NE, Operator.NE_ALT,
        Operator.GT, Operator.GTE, Operator.LT, Operator.LTE,
        Operator.LIKE, Operator.NOT_LIKE, Operator.ILIKE, Operator.NOT_ILIKE,
    }
)

#: ``where_not`` rewrites each operator to its logical complement.
INVERSE_OPERATORS: dict[Operator, Operator] = {
    Operator.EQ: Operator.NE,
    Operator.NE: Operator.EQ,
    Operator.NE_ALT: Operator.EQ,
    Operator.GT: Operator.LTE,
    Operator.GTE: Operator.LT,
    Operator.LT: Operator.GTE,
    Operator.LTE: Operator.GT,
    Operator.LIKE: Operator.NOT_LIKE,
    Operator.NOT_LIKE: Operator.LIKE,
    Operator.ILIKE: Operator.NOT_ILIKE,
    Operator.NOT_ILIKE: Operator.ILIKE,
}


# ---------------------------------------------------------------------------
# Raw fragment helpers
# ---------------------------------------------------------------------------


def split_placeholders(raw: str) -> list[str]:
    """Split raw SQL on ``?`` markers that sit outside quoted literals.

    ``??`` is an escaped literal question mark (needed for PostgreSQL's
    jsonb ``?`` operator) and is emitted as a single ``?``.

    Returns:
        The text segments between markers; ``len(result) - 1`` markers.
    """
    segments: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0
    while i < len(raw):
        ch = raw[i]
        if quote is not None:
            current.append(ch)
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
            current.append(ch)
        elif ch == "?":
            if raw[i + 1 : i + 2] == "?":
                current.append("?")
                i += 1
            else:
                segments.append("".join(current))
                current = []
        else:
            current.append(ch)
        i += 1
    segments.append("".join(current))
    return segments


def count_placeholders(raw: str) -> int:
    """Return the number of ``?`` binding markers in ``raw``."""
    return len(split_placeholders(raw)) - 1


def _check_raw_bindings(raw: str, bindings: tuple[Any, ...]) -> None:
    markers = count_placeholders(raw)
    if markers != len(bindings):
        raise MalformedQueryError(
            f"raw fragment has {markers} placeholder(s) but {len(bindings)} binding(s)",
            code="BINDING_COUNT_MISMATCH",
            details={"raw": raw, "markers": markers, "bindings": len(bindings)},
        )


def _require(condition: bool, message: str, **details: Any) -> None:
    if not condition:
        raise MalformedQueryError(message, code="INVALID_CLAUSE", details=details)


def _operator_text(op: Operator | None) -> str:
    return "none" if op is None else op.value


def _operator_hint(op: Operator | None) -> str:
    if op in (Operator.IN, Operator.NOT_IN):
        return "; use where_in / where_not_in"
    if op in (Operator.BETWEEN, Operator.NOT_BETWEEN):
        return "; use where_between / where_not_between"
    if op in (Operator.IS_NULL, Operator.IS_NOT_NULL):
        return "; use where_null / where_not_null"
    if op in (Operator.EXISTS, Operator.NOT_EXISTS):
        return "; use where_exists / where_not_exists"
    return ""


# ---------------------------------------------------------------------------
# Clause models
# ---------------------------------------------------------------------------


class SelectItem(BaseModel):
    """A single item in the SELECT list.

    Raw select items never carry bindings themselves; their values live on
    :attr:`QueryState.select_bindings` and are bound after every other
    clause of the statement.
    """

    model_config = _FROZEN

    kind: SelectKind = SelectKind.COLUMN
    column: str | None = None
    alias: str | None = None
    raw: str | None = None

    @model_validator(mode="after")
    def _one_form(self) -> SelectItem:
        if self.kind is SelectKind.RAW:
            _require(bool(self.raw) and self.column is None, "raw select needs raw text only")
        else:
            _require(bool(self.column) and self.raw is None, "select item needs a column")
        return self


class WhereClause(BaseModel):
    """A single filter condition.

    Attributes:
        kind: Which shape of filter this is.
        boolean: Connective to the preceding filter (ignored for the first).
        column: Target column (most kinds).
        columns: Target columns (``full_text`` and ``multi_column``).
        operator: Comparison operator for kinds that compare a value.
        value: Scalar bound value.
        values: Bound value list (``between``: exactly two, ``in``: one+).
        negated: Polarity flag for between / in / null / exists /
            multi-column ("none").
        match_all: ``multi_column`` joins its comparisons with AND when set,
            otherwise with OR.
        query: Sub-query for ``exists`` and sub-select ``in``.
        wheres: Child filters of a ``nested`` group.
        second: Right-hand column for ``column`` comparisons.
        path: JSON path for ``json_path``.
        date_part: Component compared by ``date`` filters.
        raw: Raw SQL for ``raw`` filters.
        bindings: Values for the ``?`` markers in ``raw``.
    """

    model_config = _FROZEN

    kind: WhereKind
    boolean: Boolean = Boolean.AND
    column: str | None = None
    columns: tuple[str, ...] = ()
    operator: Operator | None = None
    value: Any = None
    values: tuple[Any, ...] = ()
    negated: bool = False
    match_all: bool = False
    query: QueryState | None = None
    wheres: tuple[WhereClause, ...] = ()
    second: str | None = None
    path: str | None = None
    date_part: DatePart | None = None
    raw: str | None = None
    bindings: tuple[Any, ...] = ()

    @model_validator(mode="after")
    def _check_shape(self) -> WhereClause:
        kind = self.kind
        if kind is WhereKind.RAW:
            _require(bool(self.raw), "raw filter needs raw text")
            _require(
                self.column is None and not self.columns,
                "raw filter cannot also carry a structured column",
                raw=self.raw,
            )
            _check_raw_bindings(self.raw or "", self.bindings)
            return self

        _require(self.raw is None, f"{kind.value} filter cannot carry raw text")
        if kind in (WhereKind.BASIC, WhereKind.DATE, WhereKind.JSON_LENGTH, WhereKind.JSON_PATH):
            _require(bool(self.column), f"{kind.value} filter needs a column")
            _require(
                self.operator in COMPARISON_OPERATORS,
                f"operator '{_operator_text(self.operator)}' is not valid for a {kind.value} filter"
                f"{_operator_hint(self.operator)}",
                column=self.column,
            )
        elif kind is WhereKind.BETWEEN:
            _require(bool(self.column), "between filter needs a column")
            _require(
                len(self.values) == 2,
                f"between requires exactly 2 values, got {len(self.values)}",
                column=self.column,
            )
        elif kind is WhereKind.IN:
            _require(bool(self.column), "in filter needs a column")
            _require(
                self.query is not None or len(self.values) > 0,
                "in filter needs at least one value",
                column=self.column,
            )
        elif kind in (WhereKind.NULL, WhereKind.JSON_CONTAINS):
            _require(bool(self.column), f"{kind.value} filter needs a column")
        elif kind is WhereKind.EXISTS:
            _require(self.query is not None, "exists filter needs a sub-query")
        elif kind is WhereKind.NESTED:
            _require(len(self.wheres) > 0, "nested filter group is empty")
        elif kind is WhereKind.COLUMN:
            _require(
                bool(self.column) and bool(self.second),
                "column comparison needs two columns",
            )
            _require(
                self.operator in COMPARISON_OPERATORS,
                f"operator '{_operator_text(self.operator)}' is not valid for a column comparison",
            )
        elif kind is WhereKind.FULL_TEXT:
            _require(len(self.columns) > 0, "full-text filter needs at least one column")
        elif kind is WhereKind.MULTI_COLUMN:
            _require(len(self.columns) > 0, "multi-column filter needs at least one column")
            _require(
                self.operator in COMPARISON_OPERATORS,
                f"operator '{_operator_text(self.operator)}' is not valid for a multi-column filter",
            )
        if kind is WhereKind.DATE:
            _require(self.date_part is not None, "date filter needs a date part")
        if kind is WhereKind.JSON_PATH:
            _require(bool(self.path), "json path filter needs a path")
        return self


class JoinClause(BaseModel):
    """A single JOIN.

    ``first operator second`` is the ON predicate; ``wheres`` are extra
    conditions appended after it with their own connective.  Cross joins
    carry only ``table``.
    """

    model_config = _FROZEN

    kind: JoinType = JoinType.INNER
    table: str
    first: str | None = None
    operator: Operator = Operator.EQ
    second: str | None = None
    wheres: tuple[WhereClause, ...] = ()

    @model_validator(mode="after")
    def _check_on(self) -> JoinClause:
        if self.kind is not JoinType.CROSS:
            _require(
                bool(self.first) and bool(self.second),
                f"{self.kind.value} join on '{self.table}' needs an ON condition",
                table=self.table,
            )
        return self


class OrderClause(BaseModel):
    model_config = _FROZEN

    kind: OrderKind = OrderKind.COLUMN
    column: str | None = None
    direction: Direction = Direction.ASC
    raw: str | None = None
    bindings: tuple[Any, ...] = ()

    @model_validator(mode="after")
    def _one_form(self) -> OrderClause:
        if self.kind is OrderKind.RAW:
            _require(bool(self.raw) and self.column is None, "raw order needs raw text only")
            _check_raw_bindings(self.raw or "", self.bindings)
        else:
            _require(bool(self.column) and self.raw is None, "order clause needs a column")
        return self


class GroupClause(BaseModel):
    model_config = _FROZEN

    kind: GroupKind = GroupKind.COLUMN
    column: str | None = None
    raw: str | None = None
    bindings: tuple[Any, ...] = ()

    @model_validator(mode="after")
    def _one_form(self) -> GroupClause:
        if self.kind is GroupKind.RAW:
            _require(bool(self.raw) and self.column is None, "raw group needs raw text only")
            _check_raw_bindings(self.raw or "", self.bindings)
        else:
            _require(bool(self.column) and self.raw is None, "group clause needs a column")
        return self


class HavingClause(BaseModel):
    """A post-aggregation filter; ``column`` may be an aggregate expression."""

    model_config = _FROZEN

    kind: HavingKind = HavingKind.BASIC
    boolean: Boolean = Boolean.AND
    column: str | None = None
    operator: Operator | None = None
    value: Any = None
    raw: str | None = None
    bindings: tuple[Any, ...] = ()

    @model_validator(mode="after")
    def _one_form(self) -> HavingClause:
        if self.kind is HavingKind.RAW:
            _require(bool(self.raw) and self.column is None, "raw having needs raw text only")
            _check_raw_bindings(self.raw or "", self.bindings)
        else:
            _require(bool(self.column) and self.raw is None, "having clause needs a column")
            _require(
                self.operator in COMPARISON_OPERATORS,
                f"operator '{_operator_text(self.operator)}' is not valid for a having clause",
            )
        return self


class UnionClause(BaseModel):
    """A UNION branch; ``all`` selects ``UNION ALL``."""

    model_config = _FROZEN

    query: QueryState
    all: bool = False


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------


def parse_operator(op: str | Operator) -> Operator:
    """Normalise operator text (any case, any inner spacing) to :class:`Operator`.

    Raises:
        MalformedQueryError: If ``op`` is not a known operator.
    """
    if isinstance(op, Operator):
        return op
    text = " ".join(str(op).split()).upper()
    try:
        return Operator(text)
    except ValueError:
        raise MalformedQueryError(
            f"unknown operator '{op}'",
            code="UNKNOWN_OPERATOR",
            details={"operator": op, "allowed": [o.value for o in Operator]},
        ) from None


def parse_boolean(boolean: str | Boolean) -> Boolean:
    if isinstance(boolean, Boolean):
        return boolean
    try:
        return Boolean(str(boolean).upper())
    except ValueError:
        raise MalformedQueryError(
            f"unknown boolean connective '{boolean}'", code="UNKNOWN_BOOLEAN"
        ) from None


def parse_direction(direction: str | Direction) -> Direction:
    if isinstance(direction, Direction):
        return direction
    try:
        return Direction(str(direction).upper())
    except ValueError:
        raise MalformedQueryError(
            f"unknown sort direction '{direction}'", code="UNKNOWN_DIRECTION"
        ) from None


def as_values(values: Any) -> tuple[Any, ...]:
    """Turn a list/tuple/set/generator into a tuple; strings stay scalar."""
    if isinstance(values, (str, bytes, bytearray)):
        return (values,)
    if isinstance(values, Iterable):
        return tuple(values)
    return (values,)


# ---------------------------------------------------------------------------
# Construction helpers
# ---------------------------------------------------------------------------


def select_column(column: str, alias: str | None = None) -> SelectItem:
    return SelectItem(kind=SelectKind.COLUMN, column=column, alias=alias)


def select_raw(raw: str) -> SelectItem:
    return SelectItem(kind=SelectKind.RAW, raw=raw)


def where_basic(
    column: str,
    operator: str | Operator,
    value: Any,
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.BASIC,
        column=column,
        operator=parse_operator(operator),
        value=value,
        boolean=parse_boolean(boolean),
    )


def where_between(
    column: str,
    values: Iterable[Any],
    boolean: str | Boolean = Boolean.AND,
    negated: bool = False,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.BETWEEN,
        column=column,
        values=as_values(values),
        boolean=parse_boolean(boolean),
        negated=negated,
    )


def where_in(
    column: str,
    values: Iterable[Any] | QueryState,
    boolean: str | Boolean = Boolean.AND,
    negated: bool = False,
) -> WhereClause:
    from chainql.schema.query import QueryState

    if isinstance(values, QueryState):
        return WhereClause(
            kind=WhereKind.IN,
            column=column,
            query=values,
            boolean=parse_boolean(boolean),
            negated=negated,
        )
    return WhereClause(
        kind=WhereKind.IN,
        column=column,
        values=as_values(values),
        boolean=parse_boolean(boolean),
        negated=negated,
    )


def where_null(
    column: str,
    boolean: str | Boolean = Boolean.AND,
    negated: bool = False,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.NULL,
        column=column,
        boolean=parse_boolean(boolean),
        negated=negated,
    )


def where_exists(
    query: QueryState,
    boolean: str | Boolean = Boolean.AND,
    negated: bool = False,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.EXISTS,
        query=query,
        boolean=parse_boolean(boolean),
        negated=negated,
    )


def where_nested(
    wheres: Iterable[WhereClause],
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.NESTED, wheres=tuple(wheres), boolean=parse_boolean(boolean)
    )


def where_raw(
    raw: str,
    bindings: Iterable[Any] = (),
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.RAW,
        raw=raw,
        bindings=tuple(bindings),
        boolean=parse_boolean(boolean),
    )


def where_column(
    first: str,
    operator: str | Operator,
    second: str,
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.COLUMN,
        column=first,
        operator=parse_operator(operator),
        second=second,
        boolean=parse_boolean(boolean),
    )


def where_date(
    column: str,
    part: str | DatePart,
    operator: str | Operator,
    value: Any,
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.DATE,
        column=column,
        date_part=DatePart(str(part.value if isinstance(part, DatePart) else part).upper()),
        operator=parse_operator(operator),
        value=value,
        boolean=parse_boolean(boolean),
    )


def where_json_contains(
    column: str,
    value: Any,
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.JSON_CONTAINS,
        column=column,
        value=value,
        boolean=parse_boolean(boolean),
    )


def where_json_length(
    column: str,
    operator: str | Operator,
    value: Any,
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.JSON_LENGTH,
        column=column,
        operator=parse_operator(operator),
        value=value,
        boolean=parse_boolean(boolean),
    )


def where_json_path(
    column: str,
    path: str,
    operator: str | Operator,
    value: Any,
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.JSON_PATH,
        column=column,
        path=path,
        operator=parse_operator(operator),
        value=value,
        boolean=parse_boolean(boolean),
    )


def where_full_text(
    columns: Iterable[str],
    value: str,
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    return WhereClause(
        kind=WhereKind.FULL_TEXT,
        columns=as_values(columns),
        value=value,
        boolean=parse_boolean(boolean),
    )


def where_multi_column(
    columns: Iterable[str],
    operator: str | Operator,
    value: Any,
    match_all: bool = False,
    negated: bool = False,
    boolean: str | Boolean = Boolean.AND,
) -> WhereClause:
    """``where_any`` (OR), ``where_all`` (AND) and ``where_none`` (NOT OR)."""
    return WhereClause(
        kind=WhereKind.MULTI_COLUMN,
        columns=as_values(columns),
        operator=parse_operator(operator),
        value=value,
        match_all=match_all,
        negated=negated,
        boolean=parse_boolean(boolean),
    )


def join_clause(
    kind: str | JoinType,
    table: str,
    first: str | None = None,
    operator: str | Operator = Operator.EQ,
    second: str | None = None,
    wheres: Iterable[WhereClause] = (),
) -> JoinClause:
    return JoinClause(
        kind=JoinType(str(kind.value if isinstance(kind, JoinType) else kind).upper()),
        table=table,
        first=first,
        operator=parse_operator(operator),
        second=second,
        wheres=tuple(wheres),
    )


def order_column(column: str, direction: str | Direction = Direction.ASC) -> OrderClause:
    return OrderClause(column=column, direction=parse_direction(direction))


def order_raw(raw: str, bindings: Iterable[Any] = ()) -> OrderClause:
    return OrderClause(kind=OrderKind.RAW, raw=raw, bindings=tuple(bindings))


def group_column(column: str) -> GroupClause:
    return GroupClause(column=column)


def group_raw(raw: str, bindings: Iterable[Any] = ()) -> GroupClause:
    return GroupClause(kind=GroupKind.RAW, raw=raw, bindings=tuple(bindings))


def having_basic(
    column: str,
    operator: str | Operator,
    value: Any,
    boolean: str | Boolean = Boolean.AND,
) -> HavingClause:
    return HavingClause(
        column=column,
        operator=parse_operator(operator),
        value=value,
        boolean=parse_boolean(boolean),
    )


def having_raw(
    raw: str,
    bindings: Iterable[Any] = (),
    boolean: str | Boolean = Boolean.AND,
) -> HavingClause:
    return HavingClause(
        kind=HavingKind.RAW,
        raw=raw,
        bindings=tuple(bindings),
        boolean=parse_boolean(boolean),
    )


def union_clause(query: QueryState, all: bool = False) -> UnionClause:
    return UnionClause(query=query, all=all)
