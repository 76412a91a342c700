"""Store registry for managing available error storage backends."""

from ..exceptions import StoreNotFoundError
from ..utils.config import StoreSettings
from .base import DEFAULT_ROLLUP_PERIOD, ErrorStore, FoldedRecord, RollupMatch
from .json_store import JSONErrorStore
from .memory_store import MemoryErrorStore
from .sql_store import SQLErrorStore

# Store registry - register new backends here
_STORE_REGISTRY: dict[str, type[ErrorStore]] = {}


def register_store(name: str, store_class: type[ErrorStore]) -> None:
    """
    Register a new error store class.

    Args:
        name: Unique identifier for the store
        store_class: Store class to register
    """
    _STORE_REGISTRY[name] = store_class


def get_store(name: str) -> type[ErrorStore]:
    """
    Get an error store class by name.

    Args:
        name: Store identifier

    Returns:
        Store class

    Raises:
        StoreNotFoundError: If store is not registered
    """
    if name not in _STORE_REGISTRY:
        available = sorted(_STORE_REGISTRY.keys())
        available_display = ", ".join(available) if available else "none"
        raise StoreNotFoundError(
            f"Error store '{name}' is not registered. Available stores: {available_display}."
        )
    return _STORE_REGISTRY[name]


def list_stores() -> list[str]:
    """Return list of registered store names."""
    return list(_STORE_REGISTRY.keys())


def build_store(settings: StoreSettings, *, application_name: str | None = None) -> ErrorStore:
    """Instantiate the store selected by ``settings.type``."""

    return get_store(settings.type).from_settings(settings, application_name=application_name)


register_store(MemoryErrorStore.name, MemoryErrorStore)
register_store(JSONErrorStore.name, JSONErrorStore)
register_store(SQLErrorStore.name, SQLErrorStore)

__all__ = [
    "DEFAULT_ROLLUP_PERIOD",
    "ErrorStore",
    "FoldedRecord",
    "JSONErrorStore",
    "MemoryErrorStore",
    "RollupMatch",
    "SQLErrorStore",
    "build_store",
    "get_store",
    "list_stores",
    "register_store",
]
