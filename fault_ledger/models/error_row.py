"""SQLAlchemy model definitions for error persistence."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ErrorRow(Base):
    """Database representation of a stored error record.

    Indexed columns serve filtering and rollups; ``full_json`` keeps the
    complete serialized record, including request context.
    """

    __tablename__ = "exceptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    application_name: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    machine_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    creation_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_protected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    host: Mapped[str | None] = mapped_column(String(100), nullable=True)
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    http_method: Mapped[str | None] = mapped_column(String(10), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(40), nullable=True)
    source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    message: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_hash: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    duplicate_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_log_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deletion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    full_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""

        return (
            f"<ErrorRow id={self.id} guid={self.guid} "
            f"application={self.application_name} duplicates={self.duplicate_count}>"
        )
