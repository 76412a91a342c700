"""Shared fixtures for the store contract suite."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import timedelta
from pathlib import Path

import pytest

from fault_ledger.stores import ErrorStore, JSONErrorStore, MemoryErrorStore, SQLErrorStore

ROLLUP_PERIOD = timedelta(minutes=10)


@pytest.fixture(params=["memory", "json", "sql"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[ErrorStore]:
    """Yield each shipped backend configured for the ``TestApp`` application."""

    if request.param == "memory":
        yield MemoryErrorStore(application_name="TestApp", rollup_period=ROLLUP_PERIOD)
    elif request.param == "json":
        yield JSONErrorStore(
            tmp_path / "errors", application_name="TestApp", rollup_period=ROLLUP_PERIOD
        )
    else:
        yield SQLErrorStore(
            f"sqlite:///{tmp_path / 'errors.sqlite'}",
            application_name="TestApp",
            rollup_period=ROLLUP_PERIOD,
        )
