"""Stable fingerprints used to recognize recurring errors.

Python's built-in ``hash`` is salted per process, so fingerprints are derived
from a fixed BLAKE2b digest instead. Values are signed 32-bit integers, which
keeps them comparable with hashes persisted by earlier processes and storable
in a plain integer column.
"""

from __future__ import annotations

import hashlib
from typing import Final

MACHINE_MIX_PRIME: Final[int] = 397

_INT32_MASK: Final[int] = 0xFFFFFFFF
_INT32_SIGN: Final[int] = 0x80000000


def _wrap_int32(value: int) -> int:
    value &= _INT32_MASK
    return value - (1 << 32) if value & _INT32_SIGN else value


def stable_hash(text: str) -> int:
    """Return a deterministic signed 32-bit hash of ``text``."""

    digest = hashlib.blake2b(text.encode("utf-8"), digest_size=4).digest()
    return int.from_bytes(digest, "big", signed=True)


def fingerprint(
    detail: str | None,
    machine_name: str | None = None,
    include_machine: bool = False,
) -> int | None:
    """
    Compute the rollup fingerprint for an error.

    Args:
        detail: Full detail text (traceback) of the error
        machine_name: Host the error occurred on
        include_machine: Mix the host into the hash so rollups happen per server;
            a missing host name is mixed in as the empty string

    Returns:
        Signed 32-bit fingerprint, or ``None`` when there is no detail text
    """
    if not detail:
        return None

    result = stable_hash(detail)
    if include_machine:
        result = _wrap_int32((result * MACHINE_MIX_PRIME) ^ stable_hash(machine_name or ""))
    return result
