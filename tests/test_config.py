from datetime import timedelta

import pytest

from tieredstore.config import (
    BlobTierConfig,
    ConfigError,
    FileTierConfig,
    KVArchiveConfig,
    MemoryTierConfig,
    ObjArchiveConfig,
    StreamConfig,
    StreamType,
    TiersConfig,
    config_from_dict,
    default_config,
    detect_stream_type,
    load,
    parse_byte_size,
    parse_duration,
)

SAMPLE_YAML = """
nats:
  url: "nats://localhost:4222"

streams:
  - name: "ORDERS"
    consumer_name: "nts-archiver"
    tiers:
      memory:
        enabled: true
        max_bytes: "128MB"
        max_age: "5m"
      file:
        enabled: true
        data_dir: "/tmp/nts/test"
        max_bytes: "1GB"
        max_age: "1h"
      blob:
        enabled: false

metadata:
  path: "/tmp/nts/test-meta.db"
"""


def _valid_config():
    cfg = default_config()
    cfg.streams = [
        StreamConfig(name="TEST", tiers=TiersConfig(memory=MemoryTierConfig(enabled=True)))
    ]
    return cfg


def test_load_and_validate(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(SAMPLE_YAML)
    cfg = load(path)
    assert cfg.nats.url == "nats://localhost:4222"
    assert len(cfg.streams) == 1
    assert cfg.streams[0].name == "ORDERS"
    assert cfg.streams[0].tiers.memory.max_bytes == 128 * 1024 * 1024
    assert cfg.streams[0].tiers.memory.max_age == timedelta(minutes=5)
    assert cfg.streams[0].tiers.file.max_age == timedelta(hours=1)
    assert cfg.streams[0].consumer_name == "nts-archiver"


def test_load_keeps_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(SAMPLE_YAML)
    cfg = load(path)
    assert cfg.block.target_size == 8 * 1024 * 1024
    assert cfg.block.max_linger == timedelta(seconds=30)
    assert cfg.api.listen == ":8080"
    assert cfg.api.nats_responder.subject_prefix == "nts"
    assert cfg.nats.max_reconnects == -1


def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="reading config file"):
        load(tmp_path / "absent.yaml")


def test_load_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("nats: [unclosed")
    with pytest.raises(ConfigError, match="parsing config file"):
        load(path)


def test_load_validation_failure(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("nats:\n  url: nats://localhost:4222\n")
    with pytest.raises(ConfigError, match="validating config: at least one stream"):
        load(path)


def test_validate_no_streams():
    cfg = default_config()
    cfg.streams = []
    with pytest.raises(ConfigError, match="at least one stream"):
        cfg.validate()


def test_validate_no_tiers():
    cfg = default_config()
    cfg.streams = [StreamConfig(name="TEST")]
    with pytest.raises(ConfigError, match="at least one tier must be enabled"):
        cfg.validate()


def test_validate_accepts_valid_config():
    cfg = _valid_config()
    cfg.validate()
    assert cfg.streams[0].name == "TEST"


def test_validate_missing_name():
    cfg = _valid_config()
    cfg.streams[0].name = ""
    with pytest.raises(ConfigError, match=r"streams\[0\]\.name is required"):
        cfg.validate()


def test_validate_file_tier_requires_data_dir():
    cfg = _valid_config()
    cfg.streams[0].tiers.file = FileTierConfig(enabled=True)
    with pytest.raises(ConfigError, match="file tier requires data_dir"):
        cfg.validate()


def test_validate_blob_requires_endpoint_and_bucket():
    cfg = _valid_config()
    cfg.streams[0].tiers.blob = BlobTierConfig(enabled=True, bucket="b")
    with pytest.raises(ConfigError, match="blob tier requires endpoint"):
        cfg.validate()
    cfg.streams[0].tiers.blob = BlobTierConfig(enabled=True, endpoint="http://localhost:9000")
    with pytest.raises(ConfigError, match="blob tier requires bucket"):
        cfg.validate()


@pytest.mark.parametrize("size", [1024, 32 * 1024 * 1024])
def test_validate_target_size_range(size):
    cfg = _valid_config()
    cfg.block.target_size = size
    with pytest.raises(ConfigError, match="target_size must be between"):
        cfg.validate()


def test_validate_max_linger_positive():
    cfg = _valid_config()
    cfg.block.max_linger = timedelta(0)
    with pytest.raises(ConfigError, match="max_linger"):
        cfg.validate()


def test_validate_metadata_path_required():
    cfg = _valid_config()
    cfg.metadata.path = ""
    with pytest.raises(ConfigError, match="metadata.path is required"):
        cfg.validate()


def test_validate_nats_url_required():
    cfg = _valid_config()
    cfg.nats.url = ""
    with pytest.raises(ConfigError, match="nats.url is required"):
        cfg.validate()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1KB", 1024),
        ("256MB", 256 * 1024 * 1024),
        ("10GB", 10 * 1024 * 1024 * 1024),
        ("1TB", 1024 * 1024 * 1024 * 1024),
        ("100B", 100),
        ("512", 512),
    ],
)
def test_parse_byte_sizes(text, expected):
    assert parse_byte_size(text) == expected


@pytest.mark.parametrize("text", ["", "MB", "abc"])
def test_parse_byte_size_invalid(text):
    with pytest.raises(ConfigError):
        parse_byte_size(text)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("5m", timedelta(minutes=5)),
        ("24h", timedelta(hours=24)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5h", timedelta(minutes=90)),
        ("300ms", timedelta(milliseconds=300)),
        ("-2s", timedelta(seconds=-2)),
        ("0", timedelta(0)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "5", "5x", "h", "-"])
def test_parse_duration_invalid(text):
    with pytest.raises(ConfigError):
        parse_duration(text)


def test_auto_mirror_default():
    sc = StreamConfig(name="ORDERS")
    assert sc.auto_mirror_enabled() is True
    sc.auto_mirror = True
    assert sc.auto_mirror_enabled() is True


def test_auto_mirror_explicit_false():
    sc = StreamConfig(name="ORDERS", auto_mirror=False)
    assert sc.auto_mirror_enabled() is False


def test_auto_create_if_missing():
    assert StreamConfig(name="X").auto_create_if_missing_enabled() is True
    assert StreamConfig(name="X", auto_create_if_missing=False).auto_create_if_missing_enabled() is False


DEFAULT_AGE = timedelta(hours=72)


@pytest.mark.parametrize(
    "tiers, expected",
    [
        (TiersConfig(), DEFAULT_AGE),
        (
            TiersConfig(memory=MemoryTierConfig(enabled=True, max_age=timedelta(minutes=5))),
            timedelta(minutes=5),
        ),
        (
            TiersConfig(
                memory=MemoryTierConfig(enabled=True, max_age=timedelta(minutes=5)),
                file=FileTierConfig(enabled=True, max_age=timedelta(hours=24)),
            ),
            timedelta(hours=24),
        ),
        (
            TiersConfig(
                memory=MemoryTierConfig(enabled=True, max_age=timedelta(minutes=5)),
                file=FileTierConfig(enabled=True, max_age=timedelta(hours=24)),
                blob=BlobTierConfig(enabled=True, max_age=timedelta(hours=720)),
            ),
            timedelta(hours=720),
        ),
        (
            TiersConfig(
                memory=MemoryTierConfig(enabled=True),
                file=FileTierConfig(enabled=True),
            ),
            DEFAULT_AGE,
        ),
        (
            TiersConfig(
                memory=MemoryTierConfig(enabled=True, max_age=timedelta(minutes=5)),
                file=FileTierConfig(enabled=False, max_age=timedelta(hours=999)),
            ),
            timedelta(minutes=5),
        ),
    ],
    ids=[
        "no tiers enabled",
        "memory only",
        "file is largest",
        "blob is largest",
        "zero max_age falls back",
        "disabled tier ignored",
    ],
)
def test_max_tier_retention(tiers, expected):
    assert tiers.max_tier_retention(DEFAULT_AGE) == expected


@pytest.mark.parametrize(
    "name, expected",
    [
        ("KV_config", StreamType.KV),
        ("OBJ_files", StreamType.OBJECT_STORE),
        ("ORDERS", StreamType.RAW),
        ("KV_", StreamType.RAW),
        ("OBJ_", StreamType.RAW),
    ],
)
def test_detect_stream_type(name, expected):
    assert detect_stream_type(name) == expected


def test_resolved_type_explicit_overrides_name():
    assert StreamConfig(name="KV_x", type=StreamType.RAW).resolved_type() == StreamType.RAW
    assert StreamConfig(name="KV_x").resolved_type() == StreamType.KV


def test_resolved_buckets():
    assert StreamConfig(name="KV_config").resolved_kv_bucket() == "config"
    assert StreamConfig(name="KV_").resolved_kv_bucket() == "KV_"
    assert StreamConfig(name="X", kv=KVArchiveConfig(bucket_name="b")).resolved_kv_bucket() == "b"
    assert StreamConfig(name="OBJ_files").resolved_obj_bucket() == "files"
    assert StreamConfig(name="PLAIN").resolved_obj_bucket() == "PLAIN"
    sc = StreamConfig(name="OBJ_files", object_store=ObjArchiveConfig(bucket_name="other"))
    assert sc.resolved_obj_bucket() == "other"


def test_config_from_dict_nested_and_types():
    cfg = config_from_dict(
        {
            "streams": [
                {
                    "name": "KV_cfg",
                    "type": "kv",
                    "auto_mirror": False,
                    "subjects": ["a.>", "b.*"],
                    "fetch_timeout": "10s",
                    "retry": {"initial_delay": "500ms", "max_delay": "1m"},
                    "tiers": {"file": {"enabled": True, "max_bytes": 2048}},
                    "objectstore": {"bucket_name": "objs"},
                }
            ],
            "block": {"target_size": "1MB"},
        }
    )
    sc = cfg.streams[0]
    assert sc.type == StreamType.KV
    assert sc.auto_mirror is False
    assert sc.subjects == ["a.>", "b.*"]
    assert sc.fetch_timeout == timedelta(seconds=10)
    assert sc.retry.initial_delay == timedelta(milliseconds=500)
    assert sc.retry.max_delay == timedelta(minutes=1)
    assert sc.tiers.file.max_bytes == 2048
    assert sc.object_store.bucket_name == "objs"
    assert cfg.block.target_size == 1024 * 1024
    assert cfg.block.max_linger == timedelta(seconds=30)


def test_config_from_dict_none_gives_defaults():
    cfg = config_from_dict(None)
    assert cfg.metadata.path == "/var/lib/nts/meta.db"
    assert cfg.observability.health.readiness_path == "/readyz"


@pytest.mark.parametrize(
    "data",
    [
        {"streams": [{"name": "X", "type": "weird"}]},
        {"block": {"max_linger": "forever"}},
        {"api": {"enabled": "yes please"}},
        {"nats": {"max_reconnects": "many"}},
        {"streams": {"name": "X"}},
        ["not", "a", "mapping"],
    ],
)
def test_config_from_dict_rejects_bad_values(data):
    with pytest.raises(ConfigError):
        config_from_dict(data)