"""Storage tier that keeps blocks as files on the local filesystem."""

from __future__ import annotations

import contextlib
import logging
import os
import threading
from pathlib import Path

from .block import Block, decode, decode_message
from .config import FileTierConfig
from .index import IndexError_, decode_index
from .storetypes import BlockRef, StoredMessage, StoreError, Tier, TierStats


class FileStore:
    """Block store writing ``<data_dir>/<stream>/<id>.blk`` plus an index file."""

    def __init__(
        self, cfg: FileTierConfig, logger: logging.Logger | None = None
    ) -> None:
        self._cfg = cfg
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._total_bytes = 0
        self._block_count = 0
        self.data_dir = Path(cfg.data_dir) if cfg.data_dir else Path()
        if cfg.data_dir:
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StoreError(f"creating data dir {cfg.data_dir}: {exc}") from exc

    def __enter__(self) -> FileStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def block_path(self, ref: BlockRef) -> Path:
        """Path of the block file for ``ref``."""
        return self.data_dir / ref.stream / f"{ref.block_id:010d}.blk"

    def index_path(self, ref: BlockRef) -> Path:
        """Path of the index sidecar for ``ref``."""
        return self.data_dir / ref.stream / f"{ref.block_id:010d}.idx"

    def put(self, ref: BlockRef, data: Block) -> None:
        """Write the block and its index to disk."""
        blk_path = self.block_path(ref)
        try:
            blk_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"creating stream dir: {exc}") from exc
        try:
            blk_path.write_bytes(data.raw)
        except OSError as exc:
            raise StoreError(f"writing block file: {exc}") from exc

        if data.index is not None:
            try:
                self.index_path(ref).write_bytes(data.index.encode())
            except OSError as exc:
                with contextlib.suppress(OSError):
                    blk_path.unlink()
                raise StoreError(f"writing index file: {exc}") from exc

        with self._lock:
            self._total_bytes += data.size_bytes
            self._block_count += 1

        self._logger.debug(
            "block stored on disk: block_id=%d path=%s size=%d",
            ref.block_id, blk_path, data.size_bytes,
        )

    def get(self, ref: BlockRef) -> Block:
        """Read and decode the whole block."""
        try:
            raw = self.block_path(ref).read_bytes()
        except OSError as exc:
            raise StoreError(f"reading block file: {exc}") from exc
        return decode(raw)

    def get_message(self, ref: BlockRef, seq: int) -> StoredMessage:
        """Read one message, using the index when it is present and valid."""
        try:
            index = decode_index(self.index_path(ref).read_bytes())
        except (OSError, IndexError_):
            index = None
        if index is not None:
            entry = index.lookup(seq)
            if entry is not None:
                return self._read_message_at(ref, entry.offset, entry.size)

        blk = self.get(ref)
        for msg in blk.messages:
            if msg.sequence == seq:
                return StoredMessage(
                    stream=blk.stream,
                    subject=msg.subject,
                    sequence=msg.sequence,
                    data=msg.data,
                    timestamp=msg.timestamp,
                )
        raise StoreError(f"sequence {seq} not found in block {ref.block_id}")

    def _read_message_at(self, ref: BlockRef, offset: int, size: int) -> StoredMessage:
        try:
            with self.block_path(ref).open("rb") as fh:
                fh.seek(offset)
                buf = fh.read(size)
        except OSError as exc:
            raise StoreError(f"reading block file: {exc}") from exc
        if len(buf) < size:
            raise StoreError(
                f"short read at offset {offset}: wanted {size} bytes, got {len(buf)}"
            )
        msg = decode_message(buf)
        return StoredMessage(
            stream=ref.stream,
            subject=msg.subject,
            sequence=msg.sequence,
            data=msg.data,
            timestamp=msg.timestamp,
        )

    def delete(self, ref: BlockRef) -> None:
        """Remove the block and its index; a missing block is not an error."""
        blk_path = self.block_path(ref)
        try:
            size = blk_path.stat().st_size
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StoreError(f"inspecting block file: {exc}") from exc

        for path in (blk_path, self.index_path(ref)):
            with contextlib.suppress(OSError):
                os.remove(path)

        with self._lock:
            self._total_bytes -= size
            self._block_count -= 1

    def exists(self, ref: BlockRef) -> bool:
        """Whether the block file is present."""
        try:
            self.block_path(ref).stat()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StoreError(f"inspecting block file: {exc}") from exc
        return True

    def stats(self) -> TierStats:
        """Blocks and bytes written through this store."""
        with self._lock:
            return TierStats(
                tier=Tier.FILE,
                block_count=self._block_count,
                total_bytes=self._total_bytes,
                capacity_max=self._cfg.max_bytes,
            )

    def close(self) -> None:
        """Release resources; files stay on disk."""