# tieredstore

Tiered block storage for message streams. Messages are packed into
immutable blocks, and each message carries a CRC32 checksum. A block is
kept on the local disk or in an S3-compatible object store. A sidecar
index lets you read a single message without decoding the whole block.

## Installation

```
pip install tieredstore
```

## Blocks

```python
import time
from tieredstore.block import Builder, Message, decode

builder = Builder("ORDERS", 1, 8 * 1024 * 1024)
builder.add(Message(sequence=1, subject="orders.new", data=b"{}",
                    timestamp=time.time_ns()))
block = builder.seal()

again = decode(block.raw)
entry = again.index.lookup(1)   # IndexEntry(sequence, offset, size) or None
```

Message timestamps are integers: nanoseconds since the Unix epoch.

- `Builder.add` returns `False` when the message would push a non-empty block past the target size. When that happens, seal the current block and start a new one.
- `Builder.seal` returns `None` if no messages were added.
- `decode` raises `BlockFormatError` for a bad magic number, a bad version, a truncated block or a checksum mismatch.
- `decode_message` decodes one message from its own bytes.

`tieredstore.index` holds `BlockIndex` and `IndexEntry`. It also provides
`BlockIndex.encode` and `decode_index`, which handle the compact sidecar
form: a 4-byte count, then 20 bytes per entry.

## Storage tiers

```python
from tieredstore.config import FileTierConfig
from tieredstore.filestore import FileStore
from tieredstore.storetypes import BlockRef

with FileStore(FileTierConfig(enabled=True, data_dir="/tmp/nts")) as store:
    ref = BlockRef(stream="ORDERS", block_id=1, first_seq=1, last_seq=1)
    store.put(ref, block)
    message = store.get_message(ref, 1)   # StoredMessage
    print(store.stats())                  # TierStats(tier=Tier.FILE, ...)
```

`FileStore` writes each block to `<data_dir>/<stream>/<block id, 10 digits>.blk`,
with a matching `.idx` file beside it.

- `get_message` uses the index when it is present and valid. Otherwise it decodes the full block.
- `delete` does nothing if the block is missing.
- Failures raise `StoreError`.

`BlobStore(s3, bucket, cfg)` offers the same operations (`put`, `get`,
`get_message`, `delete`, `exists`, `stats`, `close`) on top of any object
that implements the `S3API` protocol: `put_object`, `get_object` (which
returns bytes and accepts an HTTP `byte_range`), `delete_object` and
`head_object`.

- Keys are `[prefix/]<stream>/blocks/<id>.blk` and `.idx`.
- Single-message reads use an in-memory cache of indexes and ranged GETs. If the index cannot be read, they fall back to downloading the whole block.
- `exists` treats any error as "absent".
- `stats` reports the capacity as unlimited (`-1`).

## Configuration

`tieredstore.config.load(path)` reads a YAML file, lays it over
`default_config()` and validates the result. An invalid file raises
`ConfigError`. `config_from_dict` does the same from a parsed mapping,
without validating.

- Durations are written as `"30s"`, `"5m"`, `"1h30m"` or `"1.5h"`. They become `datetime.timedelta` values.
- Byte sizes are written as `"256MB"`, `"10GB"`, `"100B"` (binary multiples) or as a plain integer.

```yaml
nats:
  url: "nats://localhost:4222"
streams:
  - name: "ORDERS"
    consumer_name: "nts-archiver"
    tiers:
      file:
        enabled: true
        data_dir: "/var/lib/nts/data"
metadata:
  path: "/var/lib/nts/meta.db"
```

`StreamConfig` has helpers for the derived settings:

- `resolved_type`: the type is detected from the `KV_` / `OBJ_` name prefixes.
- `resolved_kv_bucket` and `resolved_obj_bucket`.
- `auto_mirror_enabled` and `auto_create_if_missing_enabled`: both default to true.

`TiersConfig.max_tier_retention(default_age)` returns the longest
`max_age` among the enabled tiers. If none is set, it returns `default_age`.

## Subjects and ingest helpers

`tieredstore.subjects` has these parsers. Each returns a `(bucket, key)`
or `(bucket, name)` tuple, or `None`:

- `parse_kv_subject` for `$KV.<bucket>.<key>`
- `parse_obj_meta_subject` for `$O.<bucket>.M.<name>`
- `parse_obj_chunk_subject` for `$O.<bucket>.C.<nuid>`

`extract_kv_operation` reads the `KV-Operation` header. It returns `"PUT"`
when the header is absent.

`tieredstore.ingest` provides:

- `mirror_stream_name`, which prefixes `NTS_MIRROR_`.
- `calc_backoff(n, initial, maximum)`, an exponential backoff that doubles up to `maximum` and subtracts up to 25% jitter.
- `is_stream_not_found_error`.

## Command line

`nts-ctl` is a client for the HTTP API of a running storage service:

```
nts-ctl [-addr http://localhost:8080] <command> [args]

  status                        Show overall status
  streams                       List managed streams
  stream info <name>            Show tier breakdown for a stream
  blocks <stream>               List all blocks with tier info
  demote <stream> <id>          Force-demote a specific block
  promote <stream> <id>         Force-promote a specific block
  kv get <bucket> <key>         Get a KV value from cold storage
  kv keys <bucket> [prefix]     List KV keys in cold storage
  kv history <bucket> <key>     Show key revision history
  kv restore <bucket> <key>     Restore a KV key back to the hot tier
  obj get <bucket> <name>       Get an object (to stdout)
  obj info <bucket> <name>      Show object metadata
  obj list <bucket>             List objects in cold storage
  version                       Show version
```

JSON responses are pretty-printed. List responses are shown as aligned
tables (`tieredstore.ctl.format_table`).

## What this package does not do

This package provides the building blocks and the client. It does not
run the storage service:

- It does not connect to a NATS server or consume JetStream streams.
- It has no in-memory tier, no metadata store and no tier controller that moves blocks between tiers.
- It does not serve the HTTP API that `nts-ctl` talks to.
- It ships no S3 client. You supply an object that implements `S3API`.

## Tests

```
pip install -e ".[test]"
pytest
```