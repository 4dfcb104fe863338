from __future__ import annotations

import urllib.parse
from typing import Any


def normalize_path(path: str) -> str:
    value = str(path or "").strip().split("?", 1)[0]
    if not value.startswith("/"):
        value = "/" + value
    return value


def split_path_and_query(target: str) -> tuple[str, dict[str, list[str]]]:
    path, _, raw_query = str(target or "").strip().partition("?")
    query: dict[str, list[str]] = {}
    for key, item in urllib.parse.parse_qsl(raw_query, keep_blank_values=True):
        query.setdefault(key, []).append(item)
    return normalize_path(path), query


def _string_values(value: Any) -> list[str]:
    items = value if isinstance(value, (list, tuple)) else [value]
    return [str(v) for v in items]


def canonicalize_headers(headers: dict[str, Any] | None) -> dict[str, list[str]]:
    """Lowercase names, list values, sorted by original name. Blank names are dropped."""
    out: dict[str, list[str]] = {}
    for key in sorted((headers or {}).keys()):
        lower = str(key).strip().lower()
        if lower:
            out.setdefault(lower, []).extend(_string_values(headers[key]))
    return out


def ordered_headers(headers: dict[str, Any] | None) -> dict[str, list[str]]:
    """Like ``canonicalize_headers`` but keeps caller casing and insertion order."""
    out: dict[str, list[str]] = {}
    for key, value in (headers or {}).items():
        name = str(key).strip()
        if name:
            out.setdefault(name, []).extend(_string_values(value))
    return out


def header_values(headers: dict[str, list[str]] | None, name: str) -> list[str]:
    wanted = str(name or "").strip().lower()
    out: list[str] = []
    for key, values in (headers or {}).items():
        if str(key).lower() == wanted:
            out.extend(values)
    return out


def first_header_value(headers: dict[str, list[str]] | None, name: str) -> str:
    values = header_values(headers, name)
    return values[0] if values else ""


def clone_query(query: dict[str, Any] | None) -> dict[str, list[str]]:
    return {str(key): _string_values(value) for key, value in (query or {}).items()}


def parse_cookies(cookie_headers: list[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for header in cookie_headers:
        for part in str(header).split(";"):
            name, sep, value = part.strip().partition("=")
            if sep and name.strip():
                out[name.strip()] = value.strip()
    return out


def to_bytes(value: Any) -> bytes:
    match value:
        case None:
            return b""
        case bytes() | bytearray():
            return bytes(value)
        case memoryview():
            return value.tobytes()
        case str():
            return value.encode("utf-8")
        case _:
            raise TypeError("body must be bytes-like or str")
