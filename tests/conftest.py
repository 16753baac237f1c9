"""Shared pytest fixtures for weaveQL unit and integration tests."""
from __future__ import annotations

import sqlite3
from collections.abc import Iterator

import pytest

from weaveql import Database, DatabaseConfig
from tests.fixtures import FakeDriver, load_ddl


@pytest.fixture()
def fake_driver() -> FakeDriver:
    """A recording driver speaking the SQLite dialect."""
    return FakeDriver()


@pytest.fixture()
def fake_db(fake_driver: FakeDriver) -> Database:
    """Handle over the recording driver with soft delete disabled."""
    return Database(fake_driver, DatabaseConfig(), sleep=lambda _: None)


@pytest.fixture()
def sqlite_conn() -> Iterator[sqlite3.Connection]:
    """In-memory SQLite connection with the sample schema applied."""
    conn = sqlite3.connect(":memory:")
    conn.executescript(load_ddl())
    yield conn
    conn.close()
