"""Per-block message index and its compact binary form."""

from __future__ import annotations

import bisect
import struct
from dataclasses import dataclass, field

_COUNT = struct.Struct(">I")
_ENTRY = struct.Struct(">Qqi")


class IndexError_(ValueError):
    """Raised when an encoded block index cannot be parsed."""


@dataclass(frozen=True)
class IndexEntry:
    """Position of one message inside an encoded block."""

    sequence: int
    offset: int
    size: int


@dataclass
class BlockIndex:
    """Sequence-ordered entries allowing direct lookup of a message."""

    entries: list[IndexEntry] = field(default_factory=list)

    def lookup(self, seq: int) -> IndexEntry | None:
        """Return the entry for ``seq``, or None if it is not indexed."""
        pos = bisect.bisect_left(self.entries, seq, key=lambda e: e.sequence)
        if pos < len(self.entries) and self.entries[pos].sequence == seq:
            return self.entries[pos]
        return None

    def encode(self) -> bytes:
        """Serialize as a 4-byte count followed by 20-byte entries."""
        parts = [_COUNT.pack(len(self.entries))]
        parts.extend(
            _ENTRY.pack(e.sequence, e.offset, e.size) for e in self.entries
        )
        return b"".join(parts)


def decode_index(data: bytes) -> BlockIndex:
    """Parse an index produced by :meth:`BlockIndex.encode`."""
    if len(data) < _COUNT.size:
        raise IndexError_(f"index too small: {len(data)} bytes")
    (count,) = _COUNT.unpack_from(data, 0)
    if len(data) < _COUNT.size + count * _ENTRY.size:
        raise IndexError_(
            f"index truncated: expected {count} entries, got {len(data)} bytes"
        )
    entries = [
        IndexEntry(*fields)
        for fields in _ENTRY.iter_unpack(
            data[_COUNT.size:_COUNT.size + count * _ENTRY.size]
        )
    ]
    return BlockIndex(entries)