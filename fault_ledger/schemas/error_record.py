"""Pydantic schemas for captured error records."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, Final
from urllib.parse import parse_qsl
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FORWARDED_PROTO_HEADER: Final[str] = "X-Forwarded-Proto"
LEGACY_SQL_COMMAND_TYPE: Final[str] = "SQL Server Query"

PAIR_FIELDS: Final[tuple[str, ...]] = (
    "server_variables",
    "query_string",
    "form",
    "cookies",
    "request_headers",
)

# Field names written by older persisted records.
_LEGACY_FIELD_ALIASES: Final[dict[str, str]] = {
    "GUID": "guid",
    "ApplicationName": "application_name",
    "Category": "category",
    "MachineName": "machine_name",
    "Type": "type",
    "Source": "source",
    "Message": "message",
    "Detail": "detail",
    "ErrorHash": "error_hash",
    "CreationDate": "creation_date",
    "LastLogDate": "last_log_date",
    "DeletionDate": "deletion_date",
    "StatusCode": "status_code",
    "DuplicateCount": "duplicate_count",
    "IsProtected": "is_protected",
    "Host": "host",
    "Url": "url_path",
    "url": "url_path",
    "UrlPath": "url_path",
    "FullUrl": "full_url",
    "HTTPMethod": "http_method",
    "IPAddress": "ip_address",
    "CustomData": "custom_data",
    "Commands": "commands",
    "ServerVariablesSerializable": "server_variables",
    "QueryStringSerializable": "query_string",
    "FormSerializable": "form",
    "CookiesSerializable": "cookies",
    "RequestHeadersSerializable": "request_headers",
}

_LEGACY_SQL_KEYS: Final[tuple[str, ...]] = ("SQL", "sql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _rename_legacy_keys(data: dict[str, Any], aliases: Mapping[str, str]) -> dict[str, Any]:
    renamed = dict(data)
    for legacy, current in aliases.items():
        if legacy in renamed:
            value = renamed.pop(legacy)
            renamed.setdefault(current, value)
    return renamed


class NameValuePair(BaseModel):
    """One entry of a multi-valued collection such as a query string or header set."""

    name: str | None = None
    value: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_shape(cls, data: Any) -> Any:
        if isinstance(data, tuple | list) and len(data) == 2:
            return {"name": data[0], "value": data[1]}
        if isinstance(data, dict):
            return _rename_legacy_keys(data, {"Name": "name", "Value": "value"})
        return data


class Command(BaseModel):
    """A command that was executing when the error occurred (a SQL query, a cache call, ...)."""

    type: str = Field(..., description="Kind of command, e.g. 'SQL Server Query'")
    command_string: str | None = Field(None, description="Command text")
    data: dict[str, str] | None = Field(None, description="Structured command metadata")

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_shape(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return _rename_legacy_keys(
                data,
                {"Type": "type", "CommandString": "command_string", "Data": "data"},
            )
        return data


def as_pairs(items: Mapping[str, Any] | Iterable[tuple[str, Any]] | None) -> list[NameValuePair] | None:
    """Convert a mapping or an iterable of ``(name, value)`` tuples into ordered pairs."""

    if items is None:
        return None
    source = items.items() if isinstance(items, Mapping) else items
    return [
        NameValuePair(name=name, value=None if value is None else str(value))
        for name, value in source
    ]


def pairs_from_query_string(query: str | None) -> list[NameValuePair] | None:
    """Parse a raw query string keeping repeated names and their original order."""

    if query is None:
        return None
    return as_pairs(parse_qsl(query.lstrip("?"), keep_blank_values=True))


def get_pair_value(pairs: list[NameValuePair] | None, name: str) -> str | None:
    """Return the first value stored under ``name`` (case-insensitive), if any."""

    if not pairs:
        return None
    wanted = name.lower()
    for pair in pairs:
        if pair.name is not None and pair.name.lower() == wanted:
            return pair.value
    return None


class ErrorRecord(BaseModel):
    """A logical application error, as opposed to the exception instance it represents."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: Any = Field(default=None, exclude=True, description="Store-assigned key")
    guid: UUID = Field(default_factory=uuid4, description="Client-generated identifier")
    application_name: str | None = None
    category: str | None = Field(None, description="Free-form tag, severity, etc.")
    machine_name: str | None = None
    type: str | None = Field(None, description="Fully-qualified exception type name")
    source: str | None = Field(None, description="Module the exception was raised from")
    message: str | None = None
    detail: str | None = Field(None, description="Formatted traceback")
    error_hash: int | None = Field(None, description="Fingerprint used for rollups")
    creation_date: datetime = Field(default_factory=_utcnow)
    last_log_date: datetime | None = None
    deletion_date: datetime | None = None
    status_code: int | None = None
    http_method: str | None = None
    host: str | None = None
    url_path: str | None = None
    full_url: str | None = None
    ip_address: str | None = None
    server_variables: list[NameValuePair] | None = None
    query_string: list[NameValuePair] | None = None
    form: list[NameValuePair] | None = None
    cookies: list[NameValuePair] | None = None
    request_headers: list[NameValuePair] | None = None
    custom_data: dict[str, str] | None = None
    duplicate_count: int = Field(default=1, ge=1)
    commands: list[Command] | None = None
    is_protected: bool = False

    exception: BaseException | None = Field(default=None, exclude=True, repr=False)
    is_duplicate: bool = Field(
        default=False,
        exclude=True,
        description="Set when the occurrence was folded into an existing record",
    )

    @model_validator(mode="before")
    @classmethod
    def _apply_legacy_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = _rename_legacy_keys(data, _LEGACY_FIELD_ALIASES)
        for key in _LEGACY_SQL_KEYS:
            sql = data.pop(key, None)
            if sql:
                commands = list(data.get("commands") or [])
                commands.append({"type": LEGACY_SQL_COMMAND_TYPE, "command_string": sql})
                data["commands"] = commands
        return data

    @field_validator("creation_date", "last_log_date", "deletion_date")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        """Stored timestamps are UTC; naive values are assumed to already be UTC."""

        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("custom_data", mode="before")
    @classmethod
    def _stringify_custom_data(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value

    def __str__(self) -> str:
        return self.message or ""

    def add_command(self, command: Command) -> Command:
        """Attach a command to this error and return it."""

        if self.commands is None:
            self.commands = []
        self.commands.append(command)
        return command

    def get_full_url(self) -> str:
        """
        Return the full URL of the request that raised this error.

        Accounts for HTTPS terminated at a load balancer via ``X-Forwarded-Proto``.
        Returns an empty string when no URL is known.
        """
        if not self.full_url:
            return ""
        proto = get_pair_value(self.request_headers, FORWARDED_PROTO_HEADER)
        if proto is not None and proto.startswith("https") and self.full_url.startswith("http://"):
            return "https://" + self.full_url[len("http://") :]
        return self.full_url

    def clone(self) -> ErrorRecord:
        """Copy the record and its collections so later edits do not leak into stored copies."""

        update: dict[str, Any] = {}
        for name in PAIR_FIELDS:
            pairs = getattr(self, name)
            if pairs is not None:
                update[name] = [pair.model_copy() for pair in pairs]
        if self.custom_data is not None:
            update["custom_data"] = dict(self.custom_data)
        if self.commands is not None:
            update["commands"] = [command.model_copy(deep=True) for command in self.commands]
        return self.model_copy(update=update)

    def to_json(self) -> str:
        """Serialize every persisted field to JSON."""

        return self.model_dump_json()

    @classmethod
    def from_json(cls, text: str | bytes) -> ErrorRecord:
        """Deserialize JSON produced by :meth:`to_json` or by older record formats."""

        return cls.model_validate(json.loads(text))

    def to_detailed_dict(self) -> dict[str, Any]:
        """Return a flattened view for consumers that expect one value per name."""

        def _epoch_ms(value: datetime | None) -> int | None:
            return None if value is None else int(value.timestamp() * 1000)

        def _pairs(pairs: list[NameValuePair] | None) -> dict[str, str | None]:
            return {pair.name or "": pair.value for pair in pairs or []}

        return {
            "GUID": str(self.guid),
            "ApplicationName": self.application_name,
            "Category": self.category,
            "CreationDate": _epoch_ms(self.creation_date),
            "DeletionDate": _epoch_ms(self.deletion_date),
            "Detail": self.detail,
            "DuplicateCount": self.duplicate_count,
            "ErrorHash": self.error_hash,
            "HTTPMethod": self.http_method,
            "Host": self.host,
            "IPAddress": self.ip_address,
            "IsProtected": self.is_protected,
            "MachineName": self.machine_name,
            "Message": self.message,
            "Source": self.source,
            "StatusCode": self.status_code,
            "Type": self.type,
            "Url": self.url_path,
            "FullUrl": self.full_url,
            "CustomData": dict(self.custom_data or {}),
            "Commands": [
                {
                    "Type": command.type,
                    "CommandString": command.command_string,
                    "Data": dict(command.data or {}),
                }
                for command in self.commands or []
            ],
            "ServerVariables": _pairs(self.server_variables),
            "Cookies": _pairs(self.cookies),
            "RequestHeaders": _pairs(self.request_headers),
            "QueryString": _pairs(self.query_string),
            "Form": _pairs(self.form),
        }
