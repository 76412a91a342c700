"""SQLAlchemy base declarations and session helpers."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from importlib import import_module
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from ..utils.config import get_settings

DEFAULT_DATABASE_URL = "sqlite:///./fault_ledger.db"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


_MODELS_IMPORTED = False


def _load_models() -> None:
    """Import model modules so metadata is aware of mapped classes."""

    global _MODELS_IMPORTED
    if _MODELS_IMPORTED:
        return

    import_module("fault_ledger.models.error_row")
    _MODELS_IMPORTED = True


def _create_engine(database_url: str | None = None) -> Engine:
    """Instantiate the SQLAlchemy engine using the given or configured database URL."""

    settings = get_settings()
    database_url = database_url or settings.store.database_url or DEFAULT_DATABASE_URL

    connect_args: dict[str, object] = {}
    pool_kwargs: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    else:
        pool_config = settings.database
        pool_kwargs = {
            "pool_size": pool_config.pool_size,
            "max_overflow": pool_config.max_overflow,
            "pool_timeout": pool_config.timeout,
            "pool_pre_ping": pool_config.pre_ping,
        }
        if pool_config.recycle_seconds > 0:
            pool_kwargs["pool_recycle"] = pool_config.recycle_seconds

    return create_engine(
        database_url,
        echo=False,
        future=True,
        connect_args=connect_args,
        **pool_kwargs,
    )


def create_schema(engine: Engine) -> None:
    """Create any missing tables for mapped models."""

    _load_models()
    Base.metadata.create_all(bind=engine)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine``."""

    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
