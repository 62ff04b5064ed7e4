"""Binary block format: encoding, decoding and incremental building."""

from __future__ import annotations

import struct
import threading
import zlib
from dataclasses import dataclass, field

from .index import BlockIndex, IndexEntry

DEFAULT_BLOCK_SIZE = 8 * 1024 * 1024
MSG_HEADER_SIZE = 22
CHECKSUM_SIZE = 4
BLOCK_MAGIC = 0x4E545342
BLOCK_VERSION = 1
BLOCK_HEADER_SIZE = 48

_BLOCK_HEADER = struct.Struct(">IIQQQQQ")
_MSG_HEADER = struct.Struct(">IQQH")
_U32 = struct.Struct(">I")
_U64_MASK = (1 << 64) - 1


def _to_int64(value: int) -> int:
    return value - (1 << 64) if value >= 1 << 63 else value


class BlockFormatError(ValueError):
    """Raised when a block or message cannot be encoded or decoded."""


@dataclass
class Message:
    """A single message; timestamp is nanoseconds since the Unix epoch."""

    sequence: int
    subject: str
    data: bytes = b""
    headers: bytes = b""
    timestamp: int = 0
    offset: int = 0
    size: int = 0


def _encoded_size(msg: Message) -> int:
    return (
        MSG_HEADER_SIZE
        + len(msg.subject.encode())
        + 4
        + len(msg.headers)
        + len(msg.data)
        + CHECKSUM_SIZE
    )


@dataclass
class Block:
    """An immutable run of messages together with its encoded form."""

    block_id: int = 0
    stream: str = ""
    first_seq: int = 0
    last_seq: int = 0
    first_ts: int = 0
    last_ts: int = 0
    msg_count: int = 0
    size_bytes: int = 0
    messages: list[Message] = field(default_factory=list)
    index: BlockIndex | None = None
    raw: bytes = b""

    def encode(self) -> None:
        """Serialize the block, filling in raw, index, size and message offsets."""
        buf = bytearray(
            _BLOCK_HEADER.pack(
                BLOCK_MAGIC,
                BLOCK_VERSION,
                self.block_id & _U64_MASK,
                self.first_seq & _U64_MASK,
                self.last_seq & _U64_MASK,
                self.msg_count & _U64_MASK,
                self.size_bytes & _U64_MASK,
            )
        )
        entries = []
        for msg in self.messages:
            offset = len(buf)
            subject = msg.subject.encode()
            if len(subject) > 0xFFFF:
                raise BlockFormatError(
                    f"subject too long: {len(subject)} bytes"
                )
            size = _encoded_size(msg)
            buf += _MSG_HEADER.pack(
                size,
                msg.sequence & _U64_MASK,
                msg.timestamp & _U64_MASK,
                len(subject),
            )
            buf += subject
            buf += _U32.pack(len(msg.headers))
            buf += msg.headers
            buf += msg.data
            buf += _U32.pack(zlib.crc32(bytes(buf[offset:])))

            msg.offset = offset
            msg.size = size
            entries.append(IndexEntry(msg.sequence, offset, size))

        self.raw = bytes(buf)
        self.index = BlockIndex(entries)
        self.size_bytes = len(self.raw)


def decode(raw: bytes) -> Block:
    """Parse an encoded block, verifying every message checksum."""
    raw = bytes(raw)
    if len(raw) < BLOCK_HEADER_SIZE:
        raise BlockFormatError(f"block too small: {len(raw)} bytes")

    magic, version, block_id, first_seq, last_seq, msg_count, size = (
        _BLOCK_HEADER.unpack_from(raw, 0)
    )
    if magic != BLOCK_MAGIC:
        raise BlockFormatError(f"invalid block magic: 0x{magic:08X}")
    if version != BLOCK_VERSION:
        raise BlockFormatError(f"unsupported block version: {version}")

    blk = Block(
        block_id=block_id,
        first_seq=first_seq,
        last_seq=last_seq,
        msg_count=msg_count,
        size_bytes=_to_int64(size),
        raw=raw,
    )
    entries = []
    pos = BLOCK_HEADER_SIZE
    end = len(raw)
    while pos < end:
        if pos + MSG_HEADER_SIZE > end:
            raise BlockFormatError(f"truncated message at offset {pos}")
        msg_size, seq, ts, subject_len = _MSG_HEADER.unpack_from(raw, pos)
        msg_start = pos
        pos += MSG_HEADER_SIZE

        if pos + subject_len > end:
            raise BlockFormatError(f"truncated subject at offset {pos}")
        subject = raw[pos:pos + subject_len].decode(errors="replace")
        pos += subject_len

        if pos + 4 > end:
            raise BlockFormatError(f"truncated header length at offset {pos}")
        (header_len,) = _U32.unpack_from(raw, pos)
        pos += 4

        headers = b""
        if header_len > 0:
            if pos + header_len > end:
                raise BlockFormatError(f"truncated headers at offset {pos}")
            headers = raw[pos:pos + header_len]
            pos += header_len

        data_len = msg_size - MSG_HEADER_SIZE - subject_len - 4 - header_len - CHECKSUM_SIZE
        if data_len < 0 or pos + data_len > end:
            raise BlockFormatError(f"invalid data length at offset {pos}")
        data = raw[pos:pos + data_len]
        pos += data_len

        if pos + CHECKSUM_SIZE > end:
            raise BlockFormatError(f"truncated checksum at offset {pos}")
        (expected,) = _U32.unpack_from(raw, pos)
        actual = zlib.crc32(raw[msg_start:pos])
        if expected != actual:
            raise BlockFormatError(
                f"checksum mismatch at offset {msg_start}: "
                f"expected 0x{expected:08X}, got 0x{actual:08X}"
            )
        pos += CHECKSUM_SIZE

        msg = Message(
            sequence=seq,
            subject=subject,
            data=data,
            headers=headers,
            timestamp=_to_int64(ts),
            offset=msg_start,
            size=msg_size,
        )
        blk.messages.append(msg)
        entries.append(IndexEntry(seq, msg_start, msg_size))

    if blk.messages:
        blk.first_ts = blk.messages[0].timestamp
        blk.last_ts = blk.messages[-1].timestamp
    blk.index = BlockIndex(entries)
    return blk


def decode_message(raw: bytes) -> Message:
    """Decode one message from its encoded bytes (checksum not verified)."""
    raw = bytes(raw)
    if len(raw) < MSG_HEADER_SIZE:
        raise BlockFormatError(f"message too small: {len(raw)} bytes")
    _, seq, ts, subject_len = _MSG_HEADER.unpack_from(raw, 0)

    pos = MSG_HEADER_SIZE
    if pos + subject_len > len(raw):
        raise BlockFormatError("truncated subject")
    subject = raw[pos:pos + subject_len].decode(errors="replace")
    pos += subject_len

    if pos + 4 > len(raw):
        raise BlockFormatError("truncated header length")
    (header_len,) = _U32.unpack_from(raw, pos)
    pos += 4

    headers = b""
    if header_len > 0:
        if pos + header_len > len(raw):
            raise BlockFormatError("truncated headers")
        headers = raw[pos:pos + header_len]
        pos += header_len

    data_len = len(raw) - pos - CHECKSUM_SIZE
    if data_len < 0:
        raise BlockFormatError("invalid data length")

    return Message(
        sequence=seq,
        subject=subject,
        data=raw[pos:pos + data_len],
        headers=headers,
        timestamp=_to_int64(ts),
    )


class Builder:
    """Accumulates messages into a block up to a target encoded size."""

    def __init__(self, stream: str, block_id: int, target_size: int) -> None:
        self._lock = threading.Lock()
        self._stream = stream
        self._block_id = block_id
        self._target_size = target_size
        self._messages: list[Message] = []
        self._cur_size = BLOCK_HEADER_SIZE

    def add(self, msg: Message) -> bool:
        """Append ``msg``; return False if it would overflow a non-empty block."""
        with self._lock:
            size = _encoded_size(msg)
            if self._cur_size + size > self._target_size and self._messages:
                return False
            self._messages.append(msg)
            self._cur_size += size
            return True

    def seal(self) -> Block | None:
        """Encode the accumulated messages; None when nothing was added."""
        with self._lock:
            if not self._messages:
                return None
            first, last = self._messages[0], self._messages[-1]
            blk = Block(
                block_id=self._block_id,
                stream=self._stream,
                first_seq=first.sequence,
                last_seq=last.sequence,
                first_ts=first.timestamp,
                last_ts=last.timestamp,
                msg_count=len(self._messages),
                messages=list(self._messages),
            )
            blk.encode()
            return blk

    def current_size(self) -> int:
        """Bytes the block would occupy so far."""
        with self._lock:
            return self._cur_size

    def message_count(self) -> int:
        """Number of messages accumulated."""
        with self._lock:
            return len(self._messages)

    def last_timestamp(self) -> int:
        """Timestamp of the last message, or 0 when empty."""
        with self._lock:
            return self._messages[-1].timestamp if self._messages else 0