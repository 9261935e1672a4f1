"""Binding accumulator shared by every clause of one statement.

A single :class:`RuntimeContext` is created per compilation and threaded
through every clause builder and every nested sub-query (EXISTS / IN
sub-selects, UNION branches).  Its binding list doubles as the placeholder
counter, so ``$n`` numbering is contiguous across the whole statement and
the binding list always matches placeholder emission order.
"""
from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from chainql.compile.base import SQLCompiler
from chainql.errors import MalformedQueryError
from chainql.schema.clauses import split_placeholders


@dataclass
class RuntimeContext:
    """Accumulates bindings during a single compilation run.

    Attributes:
        compiler: Dialect compiler that renders placeholders.
        bindings: Values bound so far, in placeholder order.
        started: ``perf_counter`` reading taken when compilation began.
    """

    compiler: SQLCompiler
    bindings: list[Any] = field(default_factory=list)
    started: float = field(default_factory=time.perf_counter)

    def add_value(self, value: Any) -> str:
        """Store ``value`` and return the placeholder that stands for it."""
        self.bindings.append(value)
        return self.compiler.placeholder(len(self.bindings))

    def add_values(self, values: Iterable[Any]) -> list[str]:
        return [self.add_value(v) for v in values]

    def add_raw(self, raw: str, values: Iterable[Any]) -> str:
        """Rewrite the ``?`` markers in ``raw`` and bind ``values`` in place.

        Raises:
            MalformedQueryError: If the marker count differs from the number
                of values.
        """
        values = list(values)
        segments = split_placeholders(raw)
        if len(segments) - 1 != len(values):
            raise MalformedQueryError(
                f"raw fragment has {len(segments) - 1} placeholder(s) "
                f"but {len(values)} binding(s)",
                code="BINDING_COUNT_MISMATCH",
                details={"raw": raw},
            )
        out = [segments[0]]
        for value, segment in zip(values, segments[1:]):
            out.append(self.add_value(value))
            out.append(segment)
        return "".join(out)
