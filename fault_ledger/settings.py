"""Runtime settings shared by every capture.

``LedgerSettings`` is built once, typically from :class:`GlobalSettings`, and
then only read. Callbacks (per-type handlers, the custom data collector and
the lifecycle hooks) can only be supplied in code.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import timedelta
from types import MappingProxyType
from typing import Any

from .schemas.error_record import ErrorRecord
from .stores import ErrorStore, build_store
from .utils.config import GlobalSettings, IgnoreSettings, get_settings

ExceptionAction = Callable[[ErrorRecord], None]
CustomDataCollector = Callable[[BaseException, dict[str, str]], None]
BeforeLogHook = Callable[[ErrorRecord, ErrorStore], bool | None]
AfterLogHook = Callable[[ErrorRecord, ErrorStore], None]


@dataclass(slots=True, frozen=True)
class IgnoreRules:
    """Exception type names (matched along the MRO) and message patterns to skip."""

    types: frozenset[str] = frozenset()
    regexes: tuple[re.Pattern[str], ...] = ()

    @classmethod
    def build(
        cls,
        types: Iterable[str] = (),
        regexes: Iterable[str | re.Pattern[str]] = (),
    ) -> IgnoreRules:
        return cls(
            types=frozenset(types),
            regexes=tuple(re.compile(pattern) for pattern in regexes),
        )

    @classmethod
    def from_settings(cls, ignore: IgnoreSettings) -> IgnoreRules:
        return cls.build(ignore.types, ignore.regexes)


@dataclass(frozen=True)
class LedgerSettings:
    """Process-wide capture configuration, read-only after construction."""

    store: ErrorStore | None = None
    application_name: str | None = None
    ignore: IgnoreRules = field(default_factory=IgnoreRules)
    data_include_pattern: re.Pattern[str] | None = None
    append_full_stack_traces: bool = False
    rollup_per_server: bool = False
    retention: timedelta | None = None
    exception_actions: Mapping[str, ExceptionAction] = field(default_factory=dict)
    get_custom_data: CustomDataCollector | None = None
    before_log: tuple[BeforeLogHook, ...] = ()
    after_log: tuple[AfterLogHook, ...] = ()

    def __post_init__(self) -> None:
        pattern: Any = self.data_include_pattern
        if isinstance(pattern, str):
            object.__setattr__(self, "data_include_pattern", re.compile(pattern))
        object.__setattr__(
            self, "exception_actions", MappingProxyType(dict(self.exception_actions))
        )
        object.__setattr__(self, "before_log", tuple(self.before_log))
        object.__setattr__(self, "after_log", tuple(self.after_log))

    @property
    def resolved_application_name(self) -> str | None:
        """Application name from settings, falling back to the default store's."""

        if self.application_name is not None:
            return self.application_name
        return self.store.application_name if self.store is not None else None

    def with_changes(self, **changes: Any) -> LedgerSettings:
        """Return a copy with the given fields replaced."""

        return replace(self, **changes)

    @classmethod
    def from_config(
        cls,
        config: GlobalSettings | None = None,
        *,
        store: ErrorStore | None = None,
        **callbacks: Any,
    ) -> LedgerSettings:
        """
        Build runtime settings from validated configuration.

        Args:
            config: Global settings; the cached environment settings when omitted
            store: Default store; built from ``config.store`` when omitted
            **callbacks: ``exception_actions``, ``get_custom_data``, ``before_log``
                and ``after_log`` values

        Returns:
            Frozen settings ready to be shared by all captures
        """
        config = config or get_settings()
        if store is None:
            store = build_store(config.store, application_name=config.application_name)
        return cls(
            store=store,
            application_name=config.application_name,
            ignore=IgnoreRules.from_settings(config.ignore),
            data_include_pattern=(
                re.compile(config.data_include_pattern) if config.data_include_pattern else None
            ),
            append_full_stack_traces=config.append_full_stack_traces,
            rollup_per_server=config.rollup_per_server,
            retention=(
                timedelta(days=config.store.retention_days)
                if config.store.retention_days
                else None
            ),
            **callbacks,
        )
