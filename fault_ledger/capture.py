"""Turn raised exceptions into error records.

Capture never persists anything: it builds a fully populated
:class:`ErrorRecord`, fingerprint included, and leaves storage to the ledger.
"""

from __future__ import annotations

import socket
import sys
import traceback
from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from typing import Final, Protocol, runtime_checkable

from .exceptions import InvalidCaptureError
from .fingerprint import fingerprint
from .monitoring.metrics import record_handler_failure
from .schemas.error_record import ErrorRecord
from .settings import ExceptionAction, LedgerSettings
from .utils.logging import setup_logger

CUSTOM_DATA_KEY_PREFIX: Final[str] = "ledger-custom-"
CUSTOM_DATA_ERROR_KEY: Final[str] = "CustomDataFetchError"
FULL_TRACE_HEADER: Final[str] = "\n\nFull Trace:\n\n"

logger = setup_logger(__name__)


@runtime_checkable
class ExceptionalHandled(Protocol):
    """Exceptions that know how to enrich the error record built from them."""

    def exceptional_handler(self, record: ErrorRecord) -> None:
        ...


def full_type_name(cls: type) -> str:
    """Return ``module.QualName`` for a class; builtins use the bare name."""

    module = cls.__module__
    if not module or module == "builtins":
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


def is_standard_library_exception(exc: BaseException) -> bool:
    """Return True when the exception's type comes from the Python standard library."""

    module = type(exc).__module__ or "builtins"
    top_level = module.split(".", 1)[0]
    return top_level == "builtins" or top_level in sys.stdlib_module_names


def _inner_exception(exc: BaseException) -> BaseException | None:
    if exc.__cause__ is not None:
        return exc.__cause__
    if exc.__context__ is not None and not exc.__suppress_context__:
        return exc.__context__
    return None


def iter_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield the exception and each nested cause, outermost first."""

    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = _inner_exception(current)


def get_base_exception(exc: BaseException) -> BaseException:
    """Return the innermost exception of the cause chain."""

    base = exc
    for base in iter_exception_chain(exc):
        pass
    return base


def _raising_module(exc: BaseException) -> str | None:
    tb = exc.__traceback__
    if tb is None:
        return type(exc).__module__
    while tb.tb_next is not None:
        tb = tb.tb_next
    return tb.tb_frame.f_globals.get("__name__")


def should_be_ignored(exc: BaseException, settings: LedgerSettings) -> bool:
    """
    Decide whether an exception is excluded from logging.

    An exception is ignored when its type, or any class it inherits from, is
    listed by fully-qualified name in ``settings.ignore.types``, or when its
    message matches one of ``settings.ignore.regexes``.
    """
    rules = settings.ignore
    if rules.types and any(full_type_name(cls) in rules.types for cls in type(exc).__mro__):
        return True
    if not rules.regexes:
        return False
    message = str(exc)
    return any(pattern.search(message) for pattern in rules.regexes)


def capture_exception(
    exc: BaseException | None,
    settings: LedgerSettings,
    *,
    category: str | None = None,
    application_name: str | None = None,
    rollup_per_server: bool | None = None,
    initial_custom_data: Mapping[str, str] | None = None,
) -> ErrorRecord:
    """
    Build an error record from an exception.

    Standard library exceptions are unwrapped to their innermost cause for the
    type, message and source; application exceptions usually carry the more
    useful message themselves and are used as-is.

    Args:
        exc: The exception to capture
        settings: Shared runtime settings
        category: Optional tag stored with the record
        application_name: Overrides the configured application name
        rollup_per_server: Only roll up duplicates from the same machine;
            defaults to ``settings.rollup_per_server``
        initial_custom_data: Custom data to start from

    Returns:
        A populated record that has not been persisted

    Raises:
        InvalidCaptureError: If no exception is given
    """
    if exc is None:
        raise InvalidCaptureError("An exception is required to capture an error")

    base = get_base_exception(exc) if is_standard_library_exception(exc) else exc
    if rollup_per_server is None:
        rollup_per_server = settings.rollup_per_server

    detail = "".join(traceback.format_exception(exc))
    if settings.append_full_stack_traces:
        detail += FULL_TRACE_HEADER + "".join(traceback.format_stack()[:-1])

    now = datetime.now(timezone.utc)
    record = ErrorRecord(
        application_name=application_name or settings.resolved_application_name,
        category=category,
        machine_name=socket.gethostname(),
        type=full_type_name(type(base)),
        message=str(base),
        source=_raising_module(base),
        detail=detail,
        creation_date=now,
        last_log_date=now,
        duplicate_count=1,
        custom_data=dict(initial_custom_data) if initial_custom_data is not None else None,
        exception=exc,
    )
    record.error_hash = fingerprint(record.detail, record.machine_name, rollup_per_server)

    for current in iter_exception_chain(exc):
        _run_handlers(record, current, settings)
        _add_exception_data(record, current, settings)
    _add_custom_data(record, exc, settings)
    return record


def find_exception_action(exc: BaseException, settings: LedgerSettings) -> ExceptionAction | None:
    """
    Return the action registered for the most specific class in the exception's MRO.

    Registering an action for a base class deliberately covers its subclasses
    too; an exact full-name registration still wins because it comes first.
    """
    if not settings.exception_actions:
        return None
    for cls in type(exc).__mro__:
        action = settings.exception_actions.get(full_type_name(cls))
        if action is not None:
            return action
    return None


def _run_handlers(record: ErrorRecord, exc: BaseException, settings: LedgerSettings) -> None:
    type_name = full_type_name(type(exc))
    action = find_exception_action(exc, settings)
    if action is not None:
        try:
            action(record)
        except Exception:
            record_handler_failure("type")
            logger.warning("Exception action for %s failed", type_name, exc_info=True)

    if isinstance(exc, ExceptionalHandled):
        try:
            exc.exceptional_handler(record)
        except Exception:
            record_handler_failure("self")
            logger.warning("exceptional_handler of %s failed", type_name, exc_info=True)


def _add_exception_data(
    record: ErrorRecord,
    exc: BaseException,
    settings: LedgerSettings,
) -> None:
    """Copy matching entries of an exception's ``data`` mapping into custom data."""

    data = getattr(exc, "data", None)
    if not isinstance(data, Mapping) or not data:
        return

    pattern = settings.data_include_pattern
    prefix_length = len(CUSTOM_DATA_KEY_PREFIX)
    for raw_key, value in data.items():
        key = str(raw_key)
        text = "" if value is None else str(value)
        if pattern is not None and pattern.search(key):
            _custom_data(record)[key] = text
        elif key.startswith(CUSTOM_DATA_KEY_PREFIX) and len(key) > prefix_length:
            _custom_data(record)[key[prefix_length:]] = text


def _add_custom_data(record: ErrorRecord, exc: BaseException, settings: LedgerSettings) -> None:
    collector = settings.get_custom_data
    if collector is None:
        return

    custom_data = _custom_data(record)
    try:
        collector(exc, custom_data)
    except Exception as failure:
        # Keep the original error; show why custom data is missing instead.
        record_handler_failure("custom_data")
        custom_data[CUSTOM_DATA_ERROR_KEY] = "".join(traceback.format_exception(failure))
    record.custom_data = {
        str(key): "" if value is None else str(value) for key, value in custom_data.items()
    }


def _custom_data(record: ErrorRecord) -> dict[str, str]:
    if record.custom_data is None:
        record.custom_data = {}
    return record.custom_data
