"""Service configuration: data model, defaults, YAML loading and validation."""

import dataclasses
import re
import types
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Any, Union, get_args, get_origin

import yaml

KB = 1024
MB = 1024 * KB
GB = 1024 * MB
TB = 1024 * GB

_ZERO = timedelta(0)
_BYTES = {"bytes": True}
_MAX_NS = (1 << 63) - 1

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_DURATION_PART = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class ConfigError(ValueError):
    """Raised when configuration cannot be read, parsed or validated."""


class StreamType(str, Enum):
    """Kind of JetStream stream being archived."""

    RAW = "stream"
    KV = "kv"
    OBJECT_STORE = "objectstore"


def _bytes_field(default: int = 0) -> Any:
    return field(default=default, metadata=_BYTES)


@dataclass
class TLSConfig:
    ca_file: str = ""
    cert_file: str = ""
    key_file: str = ""


@dataclass
class NATSConfig:
    url: str = ""
    credentials_file: str = ""
    nkey_seed_file: str = ""
    tls: TLSConfig = field(default_factory=TLSConfig)
    connection_name: str = ""
    max_reconnects: int = 0
    reconnect_wait: timedelta = _ZERO


@dataclass
class FetchRetryConfig:
    """Exponential backoff bounds for failing JetStream fetches."""

    initial_delay: timedelta = _ZERO
    max_delay: timedelta = _ZERO


@dataclass
class KVArchiveConfig:
    bucket_name: str = ""
    index_all_revisions: bool = False


@dataclass
class ObjArchiveConfig:
    bucket_name: str = ""


@dataclass
class MemoryTierConfig:
    enabled: bool = False
    max_bytes: int = _bytes_field()
    max_blocks: int = 0
    max_age: timedelta = _ZERO


@dataclass
class FileTierConfig:
    enabled: bool = False
    data_dir: str = ""
    max_bytes: int = _bytes_field()
    max_blocks: int = 0
    max_age: timedelta = _ZERO


@dataclass
class BlobTierConfig:
    enabled: bool = False
    endpoint: str = ""
    region: str = ""
    bucket: str = ""
    prefix: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    force_path_style: bool = False
    storage_class: str = ""
    max_age: timedelta = _ZERO
    multipart: bool = False


@dataclass
class TiersConfig:
    memory: MemoryTierConfig = field(default_factory=MemoryTierConfig)
    file: FileTierConfig = field(default_factory=FileTierConfig)
    blob: BlobTierConfig = field(default_factory=BlobTierConfig)

    def max_tier_retention(self, default_age: timedelta) -> timedelta:
        """Longest max_age among enabled tiers, or ``default_age`` if none is set."""
        ages = [t.max_age for t in (self.memory, self.file, self.blob) if t.enabled]
        longest = max([_ZERO, *ages])
        return default_age if longest == _ZERO else longest


def detect_stream_type(name: str) -> StreamType:
    """Infer the stream type from the conventional name prefix."""
    if len(name) > 3 and name.startswith("KV_"):
        return StreamType.KV
    if len(name) > 4 and name.startswith("OBJ_"):
        return StreamType.OBJECT_STORE
    return StreamType.RAW


@dataclass
class StreamConfig:
    name: str = ""
    type: Union[StreamType, None] = None
    auto_create_if_missing: Union[bool, None] = None
    subjects: list[str] = field(default_factory=list)
    consumer_name: str = ""
    auto_mirror: Union[bool, None] = None
    fetch_batch: int = 0
    fetch_timeout: timedelta = _ZERO
    retry: FetchRetryConfig = field(default_factory=FetchRetryConfig)
    tiers: TiersConfig = field(default_factory=TiersConfig)
    kv: KVArchiveConfig = field(default_factory=KVArchiveConfig)
    object_store: ObjArchiveConfig = field(
        default_factory=ObjArchiveConfig, metadata={"yaml": "objectstore"}
    )

    def auto_mirror_enabled(self) -> bool:
        """Whether a mirror may be created; true unless explicitly disabled."""
        return True if self.auto_mirror is None else self.auto_mirror

    def auto_create_if_missing_enabled(self) -> bool:
        """Whether a missing stream is created at startup; true unless disabled."""
        if self.auto_create_if_missing is None:
            return True
        return self.auto_create_if_missing

    def resolved_type(self) -> StreamType:
        """The explicit stream type, or the one detected from the name."""
        return self.type if self.type is not None else detect_stream_type(self.name)

    def resolved_kv_bucket(self) -> str:
        """The KV bucket name, derived from the stream name when not set."""
        if self.kv.bucket_name:
            return self.kv.bucket_name
        if len(self.name) > 3 and self.name.startswith("KV_"):
            return self.name[3:]
        return self.name

    def resolved_obj_bucket(self) -> str:
        """The object store bucket name, derived from the stream name when not set."""
        if self.object_store.bucket_name:
            return self.object_store.bucket_name
        if len(self.name) > 4 and self.name.startswith("OBJ_"):
            return self.name[4:]
        return self.name


@dataclass
class BlockConfig:
    target_size: int = _bytes_field()
    max_linger: timedelta = _ZERO
    compression: str = ""


@dataclass
class PolicyConfig:
    eval_interval: timedelta = _ZERO


@dataclass
class MetadataConfig:
    path: str = ""
    no_sync: bool = False


@dataclass
class NATSResponderConfig:
    enabled: bool = False
    subject_prefix: str = ""


@dataclass
class APIConfig:
    enabled: bool = False
    listen: str = ""
    nats_responder: NATSResponderConfig = field(default_factory=NATSResponderConfig)


@dataclass
class MetricsConfig:
    enabled: bool = False
    listen: str = ""
    path: str = ""


@dataclass
class HealthConfig:
    enabled: bool = False
    listen: str = ""
    liveness_path: str = ""
    readiness_path: str = ""


@dataclass
class LoggingConfig:
    level: str = ""
    format: str = ""
    output: str = ""


@dataclass
class ObservabilityConfig:
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


@dataclass
class Config:
    nats: NATSConfig = field(default_factory=NATSConfig)
    streams: list[StreamConfig] = field(default_factory=list)
    block: BlockConfig = field(default_factory=BlockConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    api: APIConfig = field(default_factory=APIConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def validate(self) -> None:
        """Raise ConfigError describing the first invalid setting."""
        if not self.nats.url:
            raise ConfigError("nats.url is required")
        if not self.streams:
            raise ConfigError("at least one stream must be configured")

        for i, sc in enumerate(self.streams):
            if not sc.name:
                raise ConfigError(f"streams[{i}].name is required")
            tiers = sc.tiers
            if not (tiers.memory.enabled or tiers.file.enabled or tiers.blob.enabled):
                raise ConfigError(
                    f"streams[{i}] ({sc.name}): at least one tier must be enabled"
                )
            if tiers.file.enabled and not tiers.file.data_dir:
                raise ConfigError(f"streams[{i}] ({sc.name}): file tier requires data_dir")
            if tiers.blob.enabled:
                if not tiers.blob.endpoint:
                    raise ConfigError(
                        f"streams[{i}] ({sc.name}): blob tier requires endpoint"
                    )
                if not tiers.blob.bucket:
                    raise ConfigError(f"streams[{i}] ({sc.name}): blob tier requires bucket")

        if not 256 * KB <= self.block.target_size <= 16 * MB:
            raise ConfigError(
                "block.target_size must be between 256KB and 16MB, "
                f"got {self.block.target_size}"
            )
        if self.block.max_linger <= _ZERO:
            raise ConfigError("block.max_linger must be > 0")
        if not self.metadata.path:
            raise ConfigError("metadata.path is required")


def default_config() -> Config:
    """Configuration holding every built-in default."""
    return Config(
        nats=NATSConfig(
            url="nats://localhost:4222",
            connection_name="nats-tiered-storage",
            max_reconnects=-1,
            reconnect_wait=timedelta(seconds=2),
        ),
        block=BlockConfig(
            target_size=8 * MB,
            max_linger=timedelta(seconds=30),
            compression="s2",
        ),
        policy=PolicyConfig(eval_interval=timedelta(seconds=30)),
        metadata=MetadataConfig(path="/var/lib/nts/meta.db"),
        api=APIConfig(
            enabled=True,
            listen=":8080",
            nats_responder=NATSResponderConfig(enabled=False, subject_prefix="nts"),
        ),
        observability=ObservabilityConfig(
            metrics=MetricsConfig(enabled=True, listen=":9090", path="/metrics"),
            health=HealthConfig(
                enabled=True,
                listen=":8081",
                liveness_path="/healthz",
                readiness_path="/readyz",
            ),
            logging=LoggingConfig(level="info", format="json", output="stderr"),
        ),
    )


def parse_byte_size(s: str) -> int:
    """Parse sizes such as "256MB", "10GB" or "100B" (binary multiples)."""
    if not s:
        raise ConfigError("empty byte size")
    multiplier = 1
    number = s
    for suffix, factor in (("KB", KB), ("MB", MB), ("GB", GB), ("TB", TB)):
        if s.endswith(suffix):
            multiplier, number = factor, s[:-2]
            break
    else:
        if s.endswith("B"):
            number = s[:-1]
    match = _LEADING_INT.match(number)
    if match is None:
        raise ConfigError(f"invalid byte size {s!r}: expected integer")
    return int(match.group(1)) * multiplier


def parse_duration(s: str) -> timedelta:
    """Parse durations such as "5m", "1h30m", "1.5h" or "300ms"."""
    invalid = ConfigError(f"invalid duration {s!r}")
    text = s
    negative = False
    if text[:1] in ("+", "-"):
        negative = text[0] == "-"
        text = text[1:]
    if text == "0":
        return _ZERO
    if not text:
        raise invalid

    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        whole, frac, unit = match.group(1), match.group(2), match.group(3)
        if not whole and not frac:
            raise invalid
        if not unit:
            raise ConfigError(f"invalid duration {s!r}: missing unit")
        if unit not in _DURATION_UNITS:
            raise ConfigError(f"invalid duration {s!r}: unknown unit {unit!r}")
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _DURATION_UNITS[unit]
        pos = match.end()

    nanos = int(total)
    if nanos > _MAX_NS + (1 if negative else 0):
        raise invalid
    result = timedelta(seconds=nanos // 1_000_000_000, microseconds=(nanos % 1_000_000_000) / 1000)
    return -result if negative else result


def _scalar_str(value: Any, path: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise ConfigError(f"{path}: expected a scalar value, got {type(value).__name__}")


def _byte_size_value(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{path}: expected a byte size, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, (str, float)):
        try:
            return parse_byte_size(_scalar_str(value, path))
        except ConfigError as exc:
            raise ConfigError(f"{path}: {exc}") from exc
    raise ConfigError(f"{path}: expected a byte size, got {type(value).__name__}")


def _convert(tp: Any, value: Any, path: str, meta: Any, current: Any) -> Any:
    origin = get_origin(tp)
    if origin in (Union, types.UnionType):
        if value is None:
            return None
        (inner,) = [a for a in get_args(tp) if a is not type(None)]
        return _convert(inner, value, path, meta, current)
    if origin is list:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ConfigError(f"{path}: expected a list, got {type(value).__name__}")
        (item,) = get_args(tp)
        return [
            _convert(item, v, f"{path}[{i}]", {}, None) for i, v in enumerate(value)
        ]
    if dataclasses.is_dataclass(tp):
        return _merge(tp(), value, path)
    if value is None:
        return current
    if tp is bool:
        if not isinstance(value, bool):
            raise ConfigError(f"{path}: expected a boolean, got {value!r}")
        return value
    if tp is int:
        if meta.get("bytes"):
            return _byte_size_value(value, path)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{path}: expected an integer, got {value!r}")
        return value
    if tp is str:
        return _scalar_str(value, path)
    if tp is timedelta:
        try:
            return parse_duration(_scalar_str(value, path))
        except ConfigError as exc:
            raise ConfigError(f"{path}: {exc}") from exc
    if tp is StreamType:
        text = _scalar_str(value, path)
        if not text:
            return None
        try:
            return StreamType(text)
        except ValueError as exc:
            raise ConfigError(f"{path}: unknown stream type {text!r}") from exc
    raise ConfigError(f"{path}: unsupported setting type")


def _merge(target: Any, data: Any, path: str) -> Any:
    if data is None:
        return target
    if not isinstance(data, dict):
        raise ConfigError(
            f"{path or 'config'}: expected a mapping, got {type(data).__name__}"
        )
    for f in dataclasses.fields(target):
        key = f.metadata.get("yaml", f.name)
        if key not in data:
            continue
        value = data[key]
        child = f"{path}.{key}" if path else key
        current = getattr(target, f.name)
        if dataclasses.is_dataclass(current):
            setattr(target, f.name, _merge(current, value, child))
        else:
            setattr(target, f.name, _convert(f.type, value, child, f.metadata, current))
    return target


def config_from_dict(data: Any) -> Config:
    """Overlay a parsed YAML document on the defaults, without validating."""
    return _merge(default_config(), data, "")


def load(path: Union[str, Path]) -> Config:
    """Read, parse and validate the YAML configuration file at ``path``."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"reading config file: {exc}") from exc
    try:
        cfg = config_from_dict(yaml.safe_load(text))
    except (yaml.YAMLError, ConfigError) as exc:
        raise ConfigError(f"parsing config file: {exc}") from exc
    try:
        cfg.validate()
    except ConfigError as exc:
        raise ConfigError(f"validating config: {exc}") from exc
    return cfg