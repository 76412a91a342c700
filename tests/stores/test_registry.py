"""Tests for store registry behavior."""

from pathlib import Path

import pytest

from fault_ledger import stores as stores_module
from fault_ledger.exceptions import StorageUnavailableError, StoreNotFoundError
from fault_ledger.stores import (
    JSONErrorStore,
    MemoryErrorStore,
    SQLErrorStore,
    build_store,
    get_store,
    list_stores,
)
from fault_ledger.utils.config import StoreSettings


def test_get_store_returns_registered_class() -> None:
    """Ensure a registered store can be retrieved successfully."""
    assert get_store("memory") is MemoryErrorStore
    assert get_store("json") is JSONErrorStore
    assert get_store("sql") is SQLErrorStore
    assert set(list_stores()) >= {"memory", "json", "sql"}


def test_get_store_missing_store_raises_custom_error() -> None:
    """An unknown store name should raise StoreNotFoundError."""
    with pytest.raises(StoreNotFoundError) as exc:
        get_store("nonexistent")

    message = str(exc.value)
    assert "nonexistent" in message
    assert "Available stores" in message


def test_build_store_prefers_store_application_name() -> None:
    store = build_store(
        StoreSettings(type="memory", application_name="FromStore"), application_name="Global"
    )

    assert store.application_name == "FromStore"


def test_build_sql_store_from_settings(tmp_path: Path) -> None:
    store = build_store(
        StoreSettings(type="sql", database_url=f"sqlite:///{tmp_path / 'db.sqlite'}"),
        application_name="Billing",
    )

    assert isinstance(store, SQLErrorStore)
    assert store.supports_soft_delete is True
    assert store.count() == 0


def test_json_store_missing_directory_without_create(tmp_path: Path) -> None:
    with pytest.raises(StorageUnavailableError) as exc:
        JSONErrorStore(tmp_path / "missing", create_path_if_missing=False)

    assert exc.value.store == "json"
    assert exc.value.operation == "open"


class _CappedMemoryStore(MemoryErrorStore):
    """Custom backend registered by an application."""

    name = "capped"


def test_registered_store_is_selectable_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(stores_module._STORE_REGISTRY, "capped", _CappedMemoryStore)

    store = build_store(StoreSettings(type="capped"), application_name="Billing")

    assert isinstance(store, _CappedMemoryStore)
    assert store.application_name == "Billing"
