"""Pydantic models for handle-level configuration.

Configuration is plain data: load it from whatever source the application
uses (YAML, env, a settings service) and pass the mapping to
``DatabaseConfig.model_validate``::

    config = DatabaseConfig.model_validate({
        "dialect": "postgres",
        "soft_delete": {"enabled": True, "column": "deleted_at"},
        "retry": {"attempts": 5},
    })
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from weaveql.policy.engine import PolicyConfig


class SoftDeleteMode(str, Enum):
    """How a soft-deleted row is marked."""

    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"


class SoftDeletePolicy(BaseModel):
    """Shared, read-only soft-delete configuration.

    Attributes:
        enabled: Master switch.  Even when enabled, the rules only apply to
            tables that actually have ``column``.
        column: Marker column name.
        mode: ``TIMESTAMP`` stores the deletion time; ``BOOLEAN`` stores
            ``deleted_value``.
        deleted_value: Sentinel written by ``delete()`` in BOOLEAN mode.
        restored_value: Value written by ``restore()``.  ``None`` in
            TIMESTAMP mode; defaults to ``0`` in BOOLEAN mode.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = False
    column: str = "deleted_at"
    mode: SoftDeleteMode = SoftDeleteMode.TIMESTAMP
    deleted_value: Any = 1
    restored_value: Any = None

    @model_validator(mode="before")
    @classmethod
    def _default_boolean_restore(cls, data: Any) -> Any:
        if (
            isinstance(data, dict)
            and str(data.get("mode", "")).lower() == SoftDeleteMode.BOOLEAN.value
            and "restored_value" not in data
        ):
            data = dict(data)
            data["restored_value"] = 0
        return data


class RetrySettings(BaseModel):
    """Transaction retry configuration.

    ``attempts`` is the TOTAL number of tries, not the number of retries.
    The sleep before attempt ``n + 1`` is
    ``min(base_delay * 2 ** (n - 1), max_delay) + uniform(0, jitter)``.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.1, ge=0.0)
    max_delay: float = Field(default=5.0, ge=0.0)
    jitter: float = Field(default=0.2, ge=0.0)


class DatabaseConfig(BaseModel):
    """Top-level configuration for a :class:`~weaveql.database.Database`.

    Attributes:
        dialect: Registered dialect name (see
            :class:`~weaveql.compile.registry.DialectFactory`).
        prefix: Optional table-name prefix.
        readonly: Block every write-classified statement.
        test_mode: Compile and record statements without executing them.
        max_in_params: Guard on the number of values in a single IN list.
        soft_delete: Soft-delete policy shared by every query of the handle.
        retry: Transaction retry settings.
        statement_cache_size: Capacity of the prepared-statement cache.
        policy: Static table / operation rules checked before policy hooks.
    """

    model_config = ConfigDict(extra="forbid")

    dialect: str = "sqlite"
    prefix: str | None = None
    readonly: bool = False
    test_mode: bool = False
    max_in_params: int = Field(default=1000, ge=1)
    soft_delete: SoftDeletePolicy = Field(default_factory=SoftDeletePolicy)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    statement_cache_size: int = Field(default=256, ge=0)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
