import pytest

from tieredstore.subjects import (
    extract_kv_operation,
    parse_kv_subject,
    parse_obj_chunk_subject,
    parse_obj_meta_subject,
)


@pytest.mark.parametrize(
    "subject, expected",
    [
        ("$KV.config.app.database_url", ("config", "app.database_url")),
        ("$KV.mystore.simple", ("mystore", "simple")),
        ("$KV.b.k", ("b", "k")),
        ("$KV.config.", None),
        ("$KV.config", None),
        ("$KV.", None),
        ("ORDERS.new", None),
        ("", None),
    ],
)
def test_parse_kv_subject(subject, expected):
    assert parse_kv_subject(subject) == expected


@pytest.mark.parametrize(
    "headers, expected",
    [
        ("", "PUT"),
        ("KV-Operation: DEL\r\n", "DEL"),
        ("KV-Operation: PURGE\r\n", "PURGE"),
        ("Content-Type: text/plain\r\nKV-Operation: DEL\r\n", "DEL"),
        ("Content-Type: text/plain\r\n", "PUT"),
    ],
)
def test_extract_kv_operation(headers, expected):
    assert extract_kv_operation(headers.encode()) == expected


def test_extract_kv_operation_accepts_text():
    assert extract_kv_operation("KV-Operation: DEL\r\n") == "DEL"


@pytest.mark.parametrize(
    "subject, expected",
    [
        ("$O.files.M.report.pdf", ("files", "report.pdf")),
        ("$O.mystore.M.doc", ("mystore", "doc")),
        ("$O.files.C.abc123", None),
        ("$O.files.X.abc", None),
        ("$O.files", None),
        ("ORDERS.new", None),
    ],
)
def test_parse_obj_meta_subject(subject, expected):
    assert parse_obj_meta_subject(subject) == expected


@pytest.mark.parametrize(
    "subject, expected",
    [
        ("$O.files.C.abc123", ("files", "abc123")),
        ("$O.mystore.C.xyz", ("mystore", "xyz")),
        ("$O.files.M.report", None),
        ("$O.files", None),
        ("ORDERS.new", None),
    ],
)
def test_parse_obj_chunk_subject(subject, expected):
    assert parse_obj_chunk_subject(subject) == expected