"""Classification of KV and object-store subjects and headers."""

from __future__ import annotations

KV_PREFIX = "$KV."
OBJ_PREFIX = "$O."
KV_OPERATION_HEADER = "KV-Operation: "
DEFAULT_KV_OPERATION = "PUT"


def parse_kv_subject(subject: str) -> tuple[str, str] | None:
    """Split ``$KV.{bucket}.{key}`` into ``(bucket, key)``; None if it is not one."""
    if not subject.startswith(KV_PREFIX):
        return None
    rest = subject[len(KV_PREFIX):]
    dot = rest.find(".")
    if dot < 0 or dot == len(rest) - 1:
        return None
    return rest[:dot], rest[dot + 1:]


def extract_kv_operation(headers: bytes | str) -> str:
    """Return the KV-Operation header value, or "PUT" when it is absent."""
    if not headers:
        return DEFAULT_KV_OPERATION
    text = headers.decode(errors="replace") if isinstance(headers, bytes) else headers
    for line in text.split("\r\n"):
        if line.startswith(KV_OPERATION_HEADER):
            return line[len(KV_OPERATION_HEADER):]
    return DEFAULT_KV_OPERATION


def _parse_obj_subject(subject: str, marker: str) -> tuple[str, str] | None:
    if not subject.startswith(OBJ_PREFIX):
        return None
    parts = subject[len(OBJ_PREFIX):].split(".", 2)
    if len(parts) < 3 or parts[1] != marker:
        return None
    return parts[0], parts[2]


def parse_obj_meta_subject(subject: str) -> tuple[str, str] | None:
    """Split ``$O.{bucket}.M.{name}`` into ``(bucket, name)``; None otherwise."""
    return _parse_obj_subject(subject, "M")


def parse_obj_chunk_subject(subject: str) -> tuple[str, str] | None:
    """Split ``$O.{bucket}.C.{nuid}`` into ``(bucket, nuid)``; None otherwise."""
    return _parse_obj_subject(subject, "C")