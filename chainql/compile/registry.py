"""Compiler registry (Open/Closed Principle).

``CompilerFactory`` is the central registry for
:class:`~chainql.compile.base.SQLCompiler` implementations.  Register a new
dialect once and every ``Database`` / ``QueryBuilder`` can target it by name
without any change to the compilation pipeline.

Usage::

    from chainql.compile.registry import CompilerFactory

    @CompilerFactory.register("sqlite")
    class SQLiteCompiler(SQLCompiler):
        ...
"""

from __future__ import annotations

from collections.abc import Callable
from typing import ClassVar

from chainql.compile.base import SQLCompiler
from chainql.errors import CompilationError


class CompilerFactory:
    """Registry mapping dialect names to :class:`SQLCompiler` classes.

    Callers register a compiler class once; the pipeline creates instances
    on demand via :meth:`create`.

    Example::

        @CompilerFactory.register("sqlite")
        class SQLiteCompiler(SQLCompiler):
            ...

        compiler = CompilerFactory.create("sqlite")
    """

    _compilers: ClassVar[dict[str, type[SQLCompiler]]] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[type[SQLCompiler]], type[SQLCompiler]]:
        """Decorator that registers a compiler class under ``name``.

        Args:
            name: The dialect name (case-insensitive).

        Returns:
            A decorator that registers and returns the compiler class.
        """

        def decorator(compiler_cls: type[SQLCompiler]) -> type[SQLCompiler]:
            cls.register_class(name, compiler_cls)
            return compiler_cls

        return decorator

    @classmethod
    def register_class(cls, name: str, compiler_cls: type[SQLCompiler]) -> None:
        """Register a compiler class without using the decorator form.

        Args:
            name: The dialect name.
            compiler_cls: The :class:`SQLCompiler` subclass to register.
        """
        cls._compilers[name.lower()] = compiler_cls

    @classmethod
    def create(cls, name: str) -> SQLCompiler:
        """Instantiate the compiler registered for ``name``.

        Args:
            name: The dialect name (case-insensitive).

        Returns:
            A fresh :class:`SQLCompiler` instance.

        Raises:
            CompilationError: If no compiler is registered for ``name``.
        """
        compiler_cls = cls._compilers.get(name.lower())
        if compiler_cls is None:
            registered = sorted(cls._compilers)
            raise CompilationError(
                f"Unsupported dialect: '{name}'. Registered dialects: {registered}."
            )
        return compiler_cls()

    @classmethod
    def registered_targets(cls) -> list[str]:
        """Return the sorted list of registered dialect names."""
        return sorted(cls._compilers)
