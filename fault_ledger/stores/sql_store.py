"""Relational error store backed by SQLAlchemy."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..exceptions import StorageError, StorageUnavailableError, StorageWriteError
from ..models.base import _create_engine, build_session_factory, create_schema, session_scope
from ..models.repository import ErrorRowRepository, row_to_record
from ..schemas.error_record import ErrorRecord
from ..utils.config import StoreSettings
from .base import (
    DEFAULT_ROLLUP_PERIOD,
    ErrorStore,
    FoldedRecord,
    RollupMatch,
    rollup_period_from_settings,
)


class SQLErrorStore(ErrorStore):
    """
    Persist errors in the ``exceptions`` table.

    Supports soft deletion: deleted rows keep a ``deletion_date`` until they
    are restored or purged. Duplicate folding is a single conditional
    ``UPDATE ... RETURNING`` statement, which requires a database with
    ``RETURNING`` support (PostgreSQL, SQLite 3.35+).
    """

    name = "sql"
    supports_soft_delete = True

    def __init__(
        self,
        database_url: str | None = None,
        *,
        application_name: str | None = None,
        rollup_period: timedelta | None = DEFAULT_ROLLUP_PERIOD,
        session_factory: sessionmaker[Session] | None = None,
        create_tables: bool = True,
    ):
        super().__init__(application_name=application_name, rollup_period=rollup_period)
        if session_factory is None:
            try:
                engine = _create_engine(database_url)
                if create_tables:
                    create_schema(engine)
            except SQLAlchemyError as exc:
                raise self._storage_failure("open", exc, _failure_class(exc)) from exc
            session_factory = build_session_factory(engine)
        self._session_factory = session_factory

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings,
        *,
        application_name: str | None = None,
    ) -> SQLErrorStore:
        return cls(
            settings.database_url,
            application_name=settings.application_name or application_name,
            rollup_period=rollup_period_from_settings(settings),
        )

    @contextmanager
    def _repository(self, operation: str) -> Iterator[ErrorRowRepository]:
        """Yield a repository inside a transaction, translating database failures."""

        try:
            with session_scope(self._session_factory) as session:
                yield ErrorRowRepository(session)
        except SQLAlchemyError as exc:
            raise self._storage_failure(operation, exc, _failure_class(exc)) from exc

    def insert(self, record: ErrorRecord) -> int:
        if record.application_name is None:
            record.application_name = self.application_name
        with self._repository("insert") as repository:
            return repository.create(record).id

    def increment_duplicate(self, match: RollupMatch, now: datetime) -> FoldedRecord | None:
        with self._repository("increment_duplicate") as repository:
            updated = repository.increment_duplicate(
                error_hash=match.error_hash,
                application_name=match.application_name,
                since=match.since,
                now=now,
                increment=match.increment,
            )
        if updated is None:
            return None
        return FoldedRecord(key=updated.id, guid=UUID(updated.guid))

    def get(self, key: Any) -> ErrorRecord | None:
        row_id = _row_id(key)
        if row_id is None:
            return None
        with self._repository("get") as repository:
            row = repository.get(row_id)
            return row_to_record(row) if row is not None else None

    def get_by_guid(self, guid: UUID | str) -> ErrorRecord | None:
        with self._repository("get") as repository:
            row = repository.get_by_guid(str(guid))
            return row_to_record(row) if row is not None else None

    def list_records(
        self,
        application_name: str | None = None,
        *,
        include_deleted: bool = False,
    ) -> list[ErrorRecord]:
        with self._repository("list") as repository:
            rows = repository.list_rows(
                self._resolve_application(application_name),
                include_deleted=include_deleted,
            )
            return [row_to_record(row) for row in rows]

    def count(self, application_name: str | None = None, *, since: datetime | None = None) -> int:
        with self._repository("count") as repository:
            return repository.count(self._resolve_application(application_name), since=since)

    def protect(self, key: Any) -> bool:
        return self._mutate(key, "protect", lambda repo, row_id: repo.set_protected(row_id, True))

    def unprotect(self, key: Any) -> bool:
        return self._mutate(
            key, "unprotect", lambda repo, row_id: repo.set_protected(row_id, False)
        )

    def soft_delete(self, key: Any, *, force: bool = False) -> bool:
        now = datetime.now(timezone.utc)
        return self._mutate(
            key, "soft_delete", lambda repo, row_id: repo.mark_deleted(row_id, now, force=force)
        )

    def restore(self, key: Any) -> bool:
        return self._mutate(key, "restore", lambda repo, row_id: repo.restore(row_id))

    def hard_delete(self, key: Any) -> bool:
        return self._mutate(key, "hard_delete", lambda repo, row_id: repo.delete(row_id))

    def delete_all(self, application_name: str | None = None) -> int:
        now = datetime.now(timezone.utc)
        with self._repository("delete_all") as repository:
            return repository.mark_all_deleted(self._resolve_application(application_name), now)

    def purge_expired(self, older_than: datetime) -> int:
        with self._repository("purge_expired") as repository:
            return repository.purge(older_than)

    def _mutate(self, key: Any, operation: str, action) -> bool:
        row_id = _row_id(key)
        if row_id is None:
            return False
        with self._repository(operation) as repository:
            return action(repository, row_id)


def _row_id(key: Any) -> int | None:
    try:
        return int(key)
    except (TypeError, ValueError):
        return None


def _failure_class(exc: SQLAlchemyError) -> type[StorageError]:
    if isinstance(exc, OperationalError | InterfaceError):
        return StorageUnavailableError
    return StorageWriteError
