"""Command-line client for the tiered storage HTTP API."""

from __future__ import annotations

import json
import math
import sys
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Sequence

VERSION = "dev"
DEFAULT_ADDR = "http://localhost:8080"
OCTET_STREAM = "application/octet-stream"
TABLE_PADDING = 2

USAGE = """nts-ctl - NATS Tiered Storage management CLI

Usage:
  nts-ctl [flags] <command> [args]

Commands:
  status                        Show overall status
  streams                       List managed streams
  stream info <name>            Show tier breakdown for a stream
  blocks <stream>               List all blocks with tier info
  demote <stream> <id>          Force-demote a specific block
  promote <stream> <id>         Force-promote a specific block
  kv get <bucket> <key>         Get a KV value from cold storage
  kv keys <bucket> [prefix]     List KV keys in cold storage
  kv history <bucket> <key>     Show key revision history
  kv restore <bucket> <key>     Restore a KV key from cold storage back to hot tier
  obj get <bucket> <name>       Get an object from cold storage (to stdout)
  obj info <bucket> <name>      Show object metadata
  obj list <bucket>             List objects in cold storage
  version                       Show version

Flags:
  -addr string   API address (default "http://localhost:8080")"""

_LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}
_JSON_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026",
                 "\u2028": "\\u2028", "\u2029": "\\u2029"}


class CtlError(Exception):
    """A failure that ends the command with a message and an exit code."""

    def __init__(self, message: str, exit_code: int = 1, show_usage: bool = False) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.show_usage = show_usage


class _HelpRequested(Exception):
    pass


@dataclass
class _Response:
    content_type: str
    body: bytes


def _format_float(f: float) -> str:
    if math.isnan(f):
        return "NaN"
    if math.isinf(f):
        return "+Inf" if f > 0 else "-Inf"
    if f == 0:
        return "-0" if math.copysign(1.0, f) < 0 else "0"
    sign = "-" if f < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(f))).as_tuple()
    digits = "".join(map(str, digit_tuple))
    point = len(digits) + exponent
    digits = digits.rstrip("0") or "0"
    count = len(digits)
    exp10 = point - 1
    if exp10 < -4 or exp10 >= 6:
        mantissa = digits[0] + ("." + digits[1:] if count > 1 else "")
        exp_sign = "-" if exp10 < 0 else "+"
        return f"{sign}{mantissa}e{exp_sign}{abs(exp10):02d}"
    if point <= 0:
        return f"{sign}0.{'0' * -point}{digits}"
    if point >= count:
        return f"{sign}{digits}{'0' * (point - count)}"
    return f"{sign}{digits[:point]}.{digits[point:]}"


def _format_value(value: Any) -> str:
    """Render a decoded JSON value the way the server's tables expect."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _format_float(float(value))
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        items = " ".join(f"{k}:{_format_value(value[k])}" for k in sorted(value))
        return f"map[{items}]"
    if isinstance(value, list):
        return "[" + " ".join(_format_value(v) for v in value) + "]"
    return str(value)


def format_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Left-aligned columns separated by two spaces; the last column is unpadded."""
    lines = [list(headers)] + [[_format_value(c) for c in row] for row in rows]
    columns = max(len(line) for line in lines)
    widths = [
        max(len(line[i]) for line in lines if i < len(line) - 1) + TABLE_PADDING
        if any(i < len(line) - 1 for line in lines) else 0
        for i in range(columns)
    ]
    out = []
    for line in lines:
        cells = [
            cell if i == len(line) - 1 else cell.ljust(widths[i])
            for i, cell in enumerate(line)
        ]
        out.append("".join(cells) + "\n")
    return "".join(out)


def _opener_for(url: str) -> urllib.request.OpenerDirector:
    host = urllib.parse.urlsplit(url).hostname or ""
    if host in _LOOPBACK_HOSTS:
        return urllib.request.build_opener(urllib.request.ProxyHandler({}))
    return urllib.request.build_opener()


def _fetch(method: str, url: str) -> _Response:
    data = b"" if method == "POST" else None
    try:
        request = urllib.request.Request(url, data=data, method=method)
        with _opener_for(url).open(request) as resp:
            return _Response(resp.headers.get("Content-Type", ""), resp.read())
    except urllib.error.HTTPError as exc:
        with exc:
            return _Response(exc.headers.get("Content-Type", ""), exc.read())
    except urllib.error.URLError as exc:
        raise CtlError(f"error: {exc.reason}") from exc
    except (OSError, ValueError) as exc:
        raise CtlError(f"error: {exc}") from exc


def _decode_json(body: bytes) -> Any:
    text = body.decode("utf-8", errors="replace").lstrip(" \t\r\n")
    if not text:
        raise ValueError("EOF")
    value, _ = json.JSONDecoder().raw_decode(text)
    return value


def _decode_list(body: bytes, item_type: type) -> list:
    try:
        value = _decode_json(body)
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError(f"cannot unmarshal {type(value).__name__} into a list")
        items = []
        for item in value:
            if item is None:
                items.append(item_type())
            elif isinstance(item, item_type) and not isinstance(item, bool):
                items.append(item)
            else:
                raise ValueError(
                    f"cannot unmarshal {type(item).__name__} into {item_type.__name__}"
                )
        return items
    except ValueError as exc:
        raise CtlError(f"error decoding response: {exc}") from exc


def _print_json(body: bytes) -> None:
    try:
        value = _decode_json(body)
    except ValueError as exc:
        print(f"error decoding response: {exc}", file=sys.stderr)
        return
    text = json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False)
    for char, escaped in _JSON_ESCAPES.items():
        text = text.replace(char, escaped)
    sys.stdout.write(text + "\n")


def _write_bytes(data: bytes) -> None:
    stream = sys.stdout
    stream.flush()
    buffer = getattr(stream, "buffer", None)
    if buffer is None:
        stream.write(data.decode("utf-8", errors="replace"))
    else:
        buffer.write(data)
        buffer.flush()


def _print_rows(headers: Sequence[str], keys: Sequence[str], items: list[dict]) -> None:
    sys.stdout.write(format_table(headers, [[item.get(k) for k in keys] for item in items]))


def _usage_error(text: str) -> CtlError:
    return CtlError(text)


def _cmd_kv(addr: str, args: list[str]) -> None:
    if len(args) < 2:
        raise _usage_error("usage: nts-ctl kv <get|keys|history|restore> <bucket> [key|prefix]")
    op, bucket = args[0], args[1]
    base = f"{addr}/v1/kv/{bucket}"
    if op == "get":
        if len(args) < 3:
            raise _usage_error("usage: nts-ctl kv get <bucket> <key>")
        _print_json(_fetch("GET", f"{base}/get/{args[2]}").body)
    elif op == "keys":
        url = f"{base}/keys"
        if len(args) >= 3:
            url += "?prefix=" + args[2]
        for key in _decode_list(_fetch("GET", url).body, str):
            print(key)
    elif op == "history":
        if len(args) < 3:
            raise _usage_error("usage: nts-ctl kv history <bucket> <key>")
        _print_json(_fetch("GET", f"{base}/history/{args[2]}").body)
    elif op == "restore":
        if len(args) < 3:
            raise _usage_error("usage: nts-ctl kv restore <bucket> <key>")
        _print_json(_fetch("POST", f"{base}/restore/{args[2]}").body)
    else:
        raise CtlError(f"unknown kv command: {op}")


def _cmd_obj(addr: str, args: list[str]) -> None:
    if len(args) < 2:
        raise _usage_error("usage: nts-ctl obj <get|info|list> <bucket> [name]")
    op, bucket = args[0], args[1]
    base = f"{addr}/v1/objects/{bucket}"
    if op == "get":
        if len(args) < 3:
            raise _usage_error("usage: nts-ctl obj get <bucket> <name>")
        resp = _fetch("GET", f"{base}/get/{args[2]}")
        if resp.content_type == OCTET_STREAM:
            _write_bytes(resp.body)
        else:
            _print_json(resp.body)
    elif op == "info":
        if len(args) < 3:
            raise _usage_error("usage: nts-ctl obj info <bucket> <name>")
        _print_json(_fetch("GET", f"{base}/info/{args[2]}").body)
    elif op == "list":
        objects = _decode_list(_fetch("GET", f"{base}/list").body, dict)
        _print_rows(
            ["NAME", "SIZE", "CHUNKS", "DIGEST", "DELETED"],
            ["name", "size", "chunks", "digest", "deleted"],
            objects,
        )
    else:
        raise CtlError(f"unknown obj command: {op}")


def _dispatch(addr: str, args: list[str]) -> None:
    command = args[0]
    if command == "version":
        print(f"nts-ctl {VERSION}")
    elif command == "status":
        _print_json(_fetch("GET", f"{addr}/v1/status").body)
    elif command == "streams":
        streams = _decode_list(_fetch("GET", f"{addr}/v1/streams").body, dict)
        _print_rows(
            ["NAME", "BLOCKS", "MEMORY", "FILE", "BLOB"],
            ["name", "total_blocks", "memory_blocks", "file_blocks", "blob_blocks"],
            streams,
        )
    elif command == "stream":
        if len(args) < 3 or args[1] != "info":
            raise _usage_error("usage: nts-ctl stream info <name>")
        _print_json(_fetch("GET", f"{addr}/v1/streams/{args[2]}/stats").body)
    elif command == "blocks":
        if len(args) < 2:
            raise _usage_error("usage: nts-ctl blocks <stream>")
        blocks = _decode_list(_fetch("GET", f"{addr}/v1/blocks/{args[1]}").body, dict)
        _print_rows(
            ["BLOCK_ID", "FIRST_SEQ", "LAST_SEQ", "MSGS", "SIZE", "TIER", "AGE"],
            ["block_id", "first_seq", "last_seq", "msg_count", "size_bytes", "tier", "age"],
            blocks,
        )
    elif command in ("demote", "promote"):
        if len(args) < 3:
            raise _usage_error(f"usage: nts-ctl {command} <stream> <blockID>")
        _print_json(_fetch("POST", f"{addr}/v1/admin/{command}/{args[1]}/{args[2]}").body)
    elif command == "kv":
        _cmd_kv(addr, args[1:])
    elif command == "obj":
        _cmd_obj(addr, args[1:])
    else:
        raise CtlError(f"unknown command: {command}", show_usage=True)


def _parse_flags(args: list[str]) -> tuple[str, list[str]]:
    addr = DEFAULT_ADDR
    while args:
        arg = args[0]
        if not arg.startswith("-") or arg == "-":
            break
        args = args[1:]
        if arg == "--":
            break
        name = arg[2:] if arg.startswith("--") else arg[1:]
        value = None
        if "=" in name:
            name, value = name.split("=", 1)
        if name in ("h", "help"):
            raise _HelpRequested
        if name != "addr":
            raise CtlError(f"flag provided but not defined: -{name}", 2, True)
        if value is None:
            if not args:
                raise CtlError("flag needs an argument: -addr", 2, True)
            value, args = args[0], args[1:]
        addr = value
    return addr, args


def _print_usage() -> None:
    print(USAGE, file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; returns the process exit code."""
    args = list(sys.argv[1:] if argv is None else argv)
    try:
        addr, rest = _parse_flags(args)
    except _HelpRequested:
        _print_usage()
        return 0
    except CtlError as exc:
        print(exc, file=sys.stderr)
        _print_usage()
        return exc.exit_code

    if not rest:
        _print_usage()
        return 1

    try:
        _dispatch(addr, rest)
    except CtlError as exc:
        print(exc, file=sys.stderr)
        if exc.show_usage:
            _print_usage()
        return exc.exit_code
    return 0


if __name__ == "__main__":
    sys.exit(main())