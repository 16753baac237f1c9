"""Dialect registry (Open/Closed Principle).

Adding a backend means subclassing :class:`~weaveql.compile.base.Dialect`
and registering it once; :class:`~weaveql.database.Database` resolves the
configured dialect name through this registry, so no if-chain anywhere else
needs to change.

Usage::

    from weaveql.compile.registry import DialectFactory

    @DialectFactory.register("duckdb")
    class DuckDBDialect(Dialect):
        ...
"""

from __future__ import annotations

from collections.abc import Callable
from typing import ClassVar

from weaveql.compile.base import Dialect
from weaveql.errors import CompilationError


class DialectFactory:
    """Registry mapping dialect names (and aliases) to :class:`Dialect` classes.

    Example::

        @DialectFactory.register("oracle", aliases=("oci",))
        class OracleDialect(Dialect):
            ...

        dialect = DialectFactory.create("oci")
    """

    _dialects: ClassVar[dict[str, type[Dialect]]] = {}
    _aliases: ClassVar[dict[str, str]] = {}

    @classmethod
    def register(
        cls,
        name: str,
        aliases: tuple[str, ...] = (),
    ) -> Callable[[type[Dialect]], type[Dialect]]:
        """Decorator that registers a dialect class under ``name``.

        Args:
            name: The canonical dialect name (e.g. ``"postgres"``).
            aliases: Alternative names resolving to the same dialect.

        Returns:
            A decorator that registers and returns the dialect class.
        """

        def decorator(dialect_cls: type[Dialect]) -> type[Dialect]:
            cls.register_class(name, dialect_cls, aliases)
            return dialect_cls

        return decorator

    @classmethod
    def register_class(
        cls,
        name: str,
        dialect_cls: type[Dialect],
        aliases: tuple[str, ...] = (),
    ) -> None:
        """Register a dialect class without using the decorator form."""
        cls._dialects[name] = dialect_cls
        for alias in aliases:
            cls._aliases[alias] = name

    @classmethod
    def create(cls, name: str) -> Dialect:
        """Instantiate the dialect registered for ``name`` (or one of its aliases).

        Raises:
            CompilationError: If no dialect is registered for ``name``.
        """
        key = name.lower()
        dialect_cls = cls._dialects.get(cls._aliases.get(key, key))
        if dialect_cls is None:
            registered = sorted(cls._dialects)
            raise CompilationError(
                f"Unsupported dialect: '{name}'. Registered dialects: {registered}."
            )
        return dialect_cls()

    @classmethod
    def registered_dialects(cls) -> list[str]:
        """Return the sorted list of registered canonical dialect names."""
        return sorted(cls._dialects)
