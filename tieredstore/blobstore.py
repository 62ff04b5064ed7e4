"""Storage tier backed by S3-compatible object storage."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from .block import Block, decode, decode_message
from .config import BlobTierConfig
from .index import BlockIndex, decode_index
from .storetypes import BlockRef, StoredMessage, StoreError, Tier, TierStats


class S3API(Protocol):
    """The object-storage operations the blob store relies on."""

    def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> object:
        """Store ``body`` under ``key``."""

    def get_object(
        self, bucket: str, key: str, byte_range: str | None = None
    ) -> bytes:
        """Return the object's bytes, or the slice named by an HTTP Range value."""

    def delete_object(self, bucket: str, key: str) -> object:
        """Remove the object."""

    def head_object(self, bucket: str, key: str) -> object:
        """Return object metadata; raise if it does not exist."""


class BlobStore:
    """Block store keeping blocks and index sidecars as S3 objects."""

    def __init__(
        self,
        s3: S3API,
        bucket: str,
        cfg: BlobTierConfig,
        logger: logging.Logger | None = None,
    ) -> None:
        self._s3 = s3
        self._bucket = bucket
        self._cfg = cfg
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._index_cache: dict[str, BlockIndex] = {}

    def __enter__(self) -> BlobStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _key(self, ref: BlockRef, ext: str) -> str:
        name = f"{ref.stream}/blocks/{ref.block_id:010d}.{ext}"
        return f"{self._cfg.prefix}/{name}" if self._cfg.prefix else name

    def object_key(self, ref: BlockRef) -> str:
        """Object key of the block data."""
        return self._key(ref, "blk")

    def index_key(self, ref: BlockRef) -> str:
        """Object key of the index sidecar."""
        return self._key(ref, "idx")

    @staticmethod
    def _cache_key(ref: BlockRef) -> str:
        return f"{ref.stream}/{ref.block_id}"

    def put(self, ref: BlockRef, data: Block) -> None:
        """Upload the block, then its index sidecar (best effort)."""
        key = self.object_key(ref)
        metadata = {
            "nts-stream": ref.stream,
            "nts-block-id": str(ref.block_id),
            "nts-first-seq": str(ref.first_seq),
            "nts-last-seq": str(ref.last_seq),
            "nts-msg-count": str(data.msg_count),
        }
        try:
            self._s3.put_object(
                self._bucket, key, data.raw, "application/octet-stream", metadata
            )
        except Exception as exc:
            raise StoreError(f"uploading block to S3: {exc}") from exc

        if data.index is not None:
            idx_key = self.index_key(ref)
            try:
                self._s3.put_object(
                    self._bucket, idx_key, data.index.encode(), "application/octet-stream", None
                )
            except Exception as exc:
                self._logger.warning(
                    "failed to upload index sidecar %s: %s", idx_key, exc
                )

        self._logger.debug(
            "block uploaded to S3: block_id=%d key=%s size=%d",
            ref.block_id, key, data.size_bytes,
        )

    def get(self, ref: BlockRef) -> Block:
        """Download and decode the whole block."""
        try:
            raw = self._s3.get_object(self._bucket, self.object_key(ref), None)
        except Exception as exc:
            raise StoreError(f"downloading block from S3: {exc}") from exc
        return decode(raw)

    def get_message(self, ref: BlockRef, seq: int) -> StoredMessage:
        """Fetch one message by range request, falling back to the full block."""
        try:
            index = self._block_index(ref)
        except Exception:
            index = None
        if index is not None:
            entry = index.lookup(seq)
            if entry is not None:
                return self._read_message_range(ref, entry.offset, entry.size)

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

    def _block_index(self, ref: BlockRef) -> BlockIndex:
        cache_key = self._cache_key(ref)
        with self._lock:
            cached = self._index_cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            data = self._s3.get_object(self._bucket, self.index_key(ref), None)
        except Exception as exc:
            raise StoreError(f"downloading index from S3: {exc}") from exc
        index = decode_index(data)

        with self._lock:
            self._index_cache[cache_key] = index
        return index

    def _read_message_range(self, ref: BlockRef, offset: int, size: int) -> StoredMessage:
        byte_range = f"bytes={offset}-{offset + size - 1}"
        try:
            raw = self._s3.get_object(self._bucket, self.object_key(ref), byte_range)
        except Exception as exc:
            raise StoreError(f"S3 range request: {exc}") from exc
        msg = decode_message(raw)
        return StoredMessage(
            stream=ref.stream,
            subject=msg.subject,
            sequence=msg.sequence,
            data=msg.data,
            timestamp=msg.timestamp,
        )

    def delete(self, ref: BlockRef) -> None:
        """Delete the block and its index, and drop the cached index."""
        try:
            self._s3.delete_object(self._bucket, self.object_key(ref))
        except Exception as exc:
            raise StoreError(f"deleting block from S3: {exc}") from exc

        try:
            self._s3.delete_object(self._bucket, self.index_key(ref))
        except Exception as exc:
            self._logger.debug("failed to delete index sidecar: %s", exc)

        with self._lock:
            self._index_cache.pop(self._cache_key(ref), None)

    def exists(self, ref: BlockRef) -> bool:
        """Whether the block object exists; any failure counts as absent."""
        try:
            self._s3.head_object(self._bucket, self.object_key(ref))
        except Exception:
            return False
        return True

    def stats(self) -> TierStats:
        """Blob storage is reported as unlimited."""
        return TierStats(tier=Tier.BLOB, capacity_max=-1)

    def close(self) -> None:
        """Drop all cached indexes."""
        with self._lock:
            self._index_cache.clear()