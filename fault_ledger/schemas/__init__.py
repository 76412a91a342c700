"""Schemas package initialization."""
from .error_record import (
    Command,
    ErrorRecord,
    NameValuePair,
    as_pairs,
    get_pair_value,
    pairs_from_query_string,
)

__all__ = [
    "Command",
    "ErrorRecord",
    "NameValuePair",
    "as_pairs",
    "get_pair_value",
    "pairs_from_query_string",
]
