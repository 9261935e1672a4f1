"""Dialect compilers and the statement compiler."""
from __future__ import annotations

from chainql.compile.base import CompiledSQL, DebugInfo, SQLCompiler
from chainql.compile.builder import StatementCompiler
from chainql.compile.mysql import MySQLCompiler
from chainql.compile.postgres import PostgresCompiler
from chainql.compile.registry import CompilerFactory

CompilerFactory.register_class("mysql", MySQLCompiler)
CompilerFactory.register_class("mariadb", MySQLCompiler)
CompilerFactory.register_class("postgres", PostgresCompiler)
CompilerFactory.register_class("postgresql", PostgresCompiler)

__all__ = [
    "CompiledSQL",
    "CompilerFactory",
    "DebugInfo",
    "MySQLCompiler",
    "PostgresCompiler",
    "SQLCompiler",
    "StatementCompiler",
]
