"""``application/x-www-form-urlencoded`` body encoding.

Encoding table: text is UTF-8 encoded, RFC 3986 unreserved characters
(``A-Z a-z 0-9 - . _ ~``) are emitted as-is and every other byte becomes
``%XX`` with upper-case hex digits. A space is always ``%20``, never ``+``.

The encoder never touches headers; callers set
``Content-Type: application/x-www-form-urlencoded`` themselves (or build the
request with ``appharness.request.form_request``).
"""

from __future__ import annotations

import urllib.parse
from collections.abc import Iterable
from dataclasses import dataclass

from appharness.util import to_bytes

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass(slots=True, frozen=True)
class FormField:
    name: str
    value: str


FieldLike = FormField | tuple[str, str]


def _pair(field: FieldLike) -> tuple[str, str]:
    if isinstance(field, FormField):
        return field.name, field.value
    name, value = field
    return str(name), str(value)


def percent_encode(value: str) -> str:
    return urllib.parse.quote(str(value), safe="", encoding="utf-8")


def encode_form(fields: Iterable[FieldLike]) -> bytes:
    pairs = [_pair(f) for f in fields]
    encoded = "&".join(f"{percent_encode(name)}={percent_encode(value)}" for name, value in pairs)
    return encoded.encode("ascii")


def decode_form(body: bytes | str) -> list[tuple[str, str]]:
    raw = body if isinstance(body, str) else to_bytes(body).decode("utf-8")
    if not raw:
        return []
    return urllib.parse.parse_qsl(raw, keep_blank_values=True, encoding="utf-8", errors="strict")
