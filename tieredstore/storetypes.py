"""Types shared by the storage tiers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Tier(str, Enum):
    """A storage tier a block can live in."""

    MEMORY = "memory"
    FILE = "file"
    BLOB = "blob"


class StoreError(Exception):
    """Raised when a tier store cannot complete an operation."""


@dataclass(frozen=True)
class BlockRef:
    """Identifies a sealed block of a stream."""

    stream: str
    block_id: int
    first_seq: int = 0
    last_seq: int = 0


@dataclass
class StoredMessage:
    """A message read back from a tier; timestamp is Unix nanoseconds."""

    stream: str
    subject: str
    sequence: int
    data: bytes
    timestamp: int


@dataclass
class TierStats:
    """Occupancy of one tier; a capacity of -1 means unlimited."""

    tier: Tier
    block_count: int = 0
    total_bytes: int = 0
    capacity_max: int = 0