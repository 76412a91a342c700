"""Tests for the SQL repository layer."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from fault_ledger.models.base import (
    _create_engine,
    build_session_factory,
    create_schema,
    session_scope,
)
from fault_ledger.models.error_row import ErrorRow
from fault_ledger.models.repository import COLUMN_LIMITS, ErrorRowRepository, row_to_record
from fault_ledger.schemas.error_record import ErrorRecord, as_pairs

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory(tmp_path: Path) -> Iterator[sessionmaker[Session]]:
    engine = _create_engine(f"sqlite:///{tmp_path / 'repo.sqlite'}")
    create_schema(engine)
    yield build_session_factory(engine)
    engine.dispose()


def test_long_values_are_truncated_but_kept_in_json(
    session_factory: sessionmaker[Session],
) -> None:
    message = "x" * (COLUMN_LIMITS["message"] + 50)
    record = ErrorRecord(message=message, creation_date=T0, form=as_pairs({"q": "1"}))

    with session_scope(session_factory) as session:
        row_id = ErrorRowRepository(session).create(record).id

    with session_scope(session_factory) as session:
        row = ErrorRowRepository(session).get(row_id)
        assert len(row.message) == COLUMN_LIMITS["message"]
        restored = row_to_record(row)

    assert restored.message == message
    assert restored.form[0].value == "1"
    assert restored.last_log_date == T0


def test_increment_duplicate_picks_most_recent_row(
    session_factory: sessionmaker[Session],
) -> None:
    with session_scope(session_factory) as session:
        repository = ErrorRowRepository(session)
        older = repository.create(
            ErrorRecord(error_hash=5, application_name="App", creation_date=T0)
        ).id
        newer = repository.create(
            ErrorRecord(
                error_hash=5,
                application_name="App",
                creation_date=T0 + timedelta(minutes=2),
            )
        ).id

    now = T0 + timedelta(minutes=3)
    with session_scope(session_factory) as session:
        matched = ErrorRowRepository(session).increment_duplicate(
            error_hash=5,
            application_name="App",
            since=T0 - timedelta(minutes=10),
            now=now,
        )

    assert matched.id == newer
    with session_scope(session_factory) as session:
        counts = {
            row.id: row.duplicate_count for row in session.query(ErrorRow).order_by(ErrorRow.id)
        }
    assert counts == {older: 1, newer: 2}


def test_protect_restores_soft_deleted_row(session_factory: sessionmaker[Session]) -> None:
    with session_scope(session_factory) as session:
        repository = ErrorRowRepository(session)
        row_id = repository.create(ErrorRecord(creation_date=T0)).id
        assert repository.mark_deleted(row_id, T0, force=False) is True

    with session_scope(session_factory) as session:
        repository = ErrorRowRepository(session)
        assert repository.set_protected(row_id, True) is True

    with session_scope(session_factory) as session:
        row = ErrorRowRepository(session).get(row_id)
        assert row.deletion_date is None
        assert row.is_protected is True


def test_null_application_only_matches_null(session_factory: sessionmaker[Session]) -> None:
    with session_scope(session_factory) as session:
        repository = ErrorRowRepository(session)
        repository.create(ErrorRecord(error_hash=9, application_name="App", creation_date=T0))

    with session_scope(session_factory) as session:
        matched = ErrorRowRepository(session).increment_duplicate(
            error_hash=9, application_name=None, since=T0, now=T0
        )

    assert matched is None
