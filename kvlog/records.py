"""Domain records: history entries and their inline-or-referenced values."""

import hashlib
from dataclasses import dataclass
from typing import Union


def normalize(value: str) -> str:
    """Strip surrounding whitespace; every stored value goes through this."""
    return value.strip()


def content_hash(payload: str) -> str:
    """SHA-1 hex digest of the normalized payload, used as the value id."""
    return hashlib.sha1(normalize(payload).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Inline:
    """Value stored directly inside the history entry."""

    value: str


@dataclass(frozen=True)
class Reference:
    """Content hash of a value record held in the value store."""

    vid: str


ValueRef = Union[Inline, Reference]


@dataclass(frozen=True)
class Entry:
    """One version of a key. Immutable once created."""

    key: str
    timestamp: int
    value_ref: ValueRef
