"""Repository helpers for persistence models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import ColumnElement, Row, delete, func, select, update
from sqlalchemy.orm import Session

from ..schemas.error_record import ErrorRecord
from .error_row import ErrorRow

# Column length limits; values are truncated explicitly, full_json keeps the originals.
COLUMN_LIMITS: dict[str, int] = {
    "application_name": 50,
    "category": 100,
    "machine_name": 50,
    "type": 100,
    "host": 100,
    "url": 500,
    "http_method": 10,
    "ip_address": 40,
    "source": 100,
    "message": 1000,
}


def _truncate(value: str | None, column: str) -> str | None:
    limit = COLUMN_LIMITS[column]
    if value is None or len(value) <= limit:
        return value
    return value[:limit]


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def row_to_record(row: ErrorRow) -> ErrorRecord:
    """Rebuild an :class:`ErrorRecord`, letting mutable columns win over ``full_json``."""

    if row.full_json:
        record = ErrorRecord.from_json(row.full_json)
    else:
        record = ErrorRecord(
            guid=row.guid,
            application_name=row.application_name,
            category=row.category,
            machine_name=row.machine_name,
            type=row.type,
            source=row.source,
            message=row.message,
            detail=row.detail,
            error_hash=row.error_hash,
            creation_date=row.creation_date,
            status_code=row.status_code,
            http_method=row.http_method,
            host=row.host,
            url_path=row.url,
            ip_address=row.ip_address,
        )
    record.id = row.id
    record.duplicate_count = row.duplicate_count
    record.last_log_date = _as_utc(row.last_log_date)
    record.deletion_date = _as_utc(row.deletion_date)
    record.is_protected = row.is_protected
    return record


def _application_clause(application_name: str | None) -> ColumnElement[bool]:
    # Stored names are truncated, so compare against the truncated form.
    if application_name is None:
        return ErrorRow.application_name.is_(None)
    return ErrorRow.application_name == _truncate(application_name, "application_name")


class ErrorRowRepository:
    """Data access helpers for :class:`ErrorRow`."""

    def __init__(self, session: Session):
        """Store the SQLAlchemy session used for persistence operations."""

        self._session = session

    def create(self, record: ErrorRecord) -> ErrorRow:
        """Persist a new error row and return the mapped instance."""

        row = ErrorRow(
            guid=str(record.guid),
            application_name=_truncate(record.application_name, "application_name"),
            category=_truncate(record.category, "category"),
            machine_name=_truncate(record.machine_name, "machine_name"),
            creation_date=record.creation_date,
            type=_truncate(record.type, "type"),
            is_protected=record.is_protected,
            host=_truncate(record.host, "host"),
            url=_truncate(record.url_path, "url"),
            http_method=_truncate(record.http_method, "http_method"),
            ip_address=_truncate(record.ip_address, "ip_address"),
            source=_truncate(record.source, "source"),
            message=_truncate(record.message, "message"),
            detail=record.detail,
            status_code=record.status_code,
            error_hash=record.error_hash,
            duplicate_count=record.duplicate_count,
            last_log_date=record.last_log_date or record.creation_date,
            deletion_date=record.deletion_date,
            full_json=record.to_json(),
        )
        self._session.add(row)
        self._session.flush()
        return row

    def increment_duplicate(
        self,
        *,
        error_hash: int,
        application_name: str | None,
        since: datetime,
        now: datetime,
        increment: int = 1,
    ) -> Row[tuple[int, str]] | None:
        """
        Fold one occurrence into the newest matching row with a single UPDATE.

        Returns:
            The ``(id, guid)`` of the updated row, or None when nothing matched
        """
        candidate = (
            select(ErrorRow.id)
            .where(
                ErrorRow.error_hash == error_hash,
                _application_clause(application_name),
                ErrorRow.deletion_date.is_(None),
                ErrorRow.last_log_date >= since,
            )
            .order_by(ErrorRow.last_log_date.desc())
            .limit(1)
            .scalar_subquery()
        )
        statement = (
            update(ErrorRow)
            .where(ErrorRow.id == candidate)
            .values(duplicate_count=ErrorRow.duplicate_count + increment, last_log_date=now)
            .returning(ErrorRow.id, ErrorRow.guid)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(statement).one_or_none()

    def get(self, row_id: Any) -> ErrorRow | None:
        return self._session.get(ErrorRow, row_id)

    def get_by_guid(self, guid: str) -> ErrorRow | None:
        return self._session.scalars(select(ErrorRow).where(ErrorRow.guid == guid)).first()

    def list_rows(self, application_name: str | None, *, include_deleted: bool) -> list[ErrorRow]:
        """Return rows newest-first, optionally limited to one application."""

        statement = select(ErrorRow)
        if application_name is not None:
            statement = statement.where(_application_clause(application_name))
        if not include_deleted:
            statement = statement.where(ErrorRow.deletion_date.is_(None))
        statement = statement.order_by(ErrorRow.last_log_date.desc(), ErrorRow.id.desc())
        return list(self._session.scalars(statement))

    def count(self, application_name: str | None, *, since: datetime | None) -> int:
        statement = select(func.count()).select_from(ErrorRow).where(
            ErrorRow.deletion_date.is_(None)
        )
        if application_name is not None:
            statement = statement.where(_application_clause(application_name))
        if since is not None:
            statement = statement.where(ErrorRow.last_log_date >= since)
        return int(self._session.scalar(statement) or 0)

    def set_protected(self, row_id: Any, value: bool) -> bool:
        row = self.get(row_id)
        if row is None:
            return False
        row.is_protected = value
        # Protecting a soft-deleted error brings it back.
        if value:
            row.deletion_date = None
        return True

    def mark_deleted(self, row_id: Any, now: datetime, *, force: bool) -> bool:
        row = self.get(row_id)
        if row is None or (row.is_protected and not force):
            return False
        if row.deletion_date is None:
            row.deletion_date = now
        return True

    def restore(self, row_id: Any) -> bool:
        row = self.get(row_id)
        if row is None or row.deletion_date is None:
            return False
        row.deletion_date = None
        return True

    def delete(self, row_id: Any) -> bool:
        result = self._session.execute(delete(ErrorRow).where(ErrorRow.id == row_id))
        return result.rowcount > 0

    def mark_all_deleted(self, application_name: str | None, now: datetime) -> int:
        statement = update(ErrorRow).where(
            ErrorRow.is_protected.is_(False),
            ErrorRow.deletion_date.is_(None),
        )
        if application_name is not None:
            statement = statement.where(_application_clause(application_name))
        result = self._session.execute(
            statement.values(deletion_date=now).execution_options(synchronize_session=False)
        )
        return result.rowcount

    def purge(self, older_than: datetime) -> int:
        result = self._session.execute(
            delete(ErrorRow)
            .where(ErrorRow.is_protected.is_(False), ErrorRow.creation_date < older_than)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
