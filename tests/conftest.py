"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import os
from datetime import timedelta

import pytest

from fault_ledger.settings import IgnoreRules, LedgerSettings
from fault_ledger.stores import MemoryErrorStore
from fault_ledger.utils.config import get_settings


@pytest.fixture(autouse=True)
def _ensure_database_url(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Point the SQL store at a throwaway SQLite database unless one is configured."""

    if os.getenv("FAULT_LEDGER_STORE__DATABASE_URL") is None:
        db_path = tmp_path_factory.mktemp("sqlite-db") / "errors.sqlite"
        monkeypatch.setenv("FAULT_LEDGER_STORE__DATABASE_URL", f"sqlite:///{db_path}")

    get_settings(reload=True)
    yield
    monkeypatch.undo()
    get_settings(reload=True)


@pytest.fixture
def memory_store() -> MemoryErrorStore:
    """Fixture providing an empty in-memory store for the test application."""
    return MemoryErrorStore(application_name="TestApp", rollup_period=timedelta(minutes=10))


@pytest.fixture
def ledger_settings(memory_store: MemoryErrorStore) -> LedgerSettings:
    """Fixture providing runtime settings bound to the in-memory store."""
    return LedgerSettings(store=memory_store, application_name="TestApp", ignore=IgnoreRules())
