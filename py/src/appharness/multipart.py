"""``multipart/form-data`` body encoding and parsing.

Layout produced for every part, in input order::

    --<boundary>\\r\\n
    <Name: Value\\r\\n ...>\\r\\n
    <content>\\r\\n

followed by ``--<boundary>--\\r\\n``.

The caller owns the boundary and must put the same value in the request's
``Content-Type`` header (``multipart_content_type`` formats it). Boundaries are
checked against RFC 2046: 1-70 characters from ``bchars``, not ending in a
space. Any occurrence of ``--<boundary>`` inside part content is treated as a
collision and rejected. Quoted ``Content-Disposition`` parameters escape
``%`` as ``%25`` and then ``"``, CR and LF as ``%22``, ``%0D`` and ``%0A``.
Backslashes are written as-is and the parser does not treat them as escapes,
so names and filenames such as ``C:\\dir\\a.txt`` come back unchanged.
"""

from __future__ import annotations

import re
import string
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Callable
from uuid import uuid4

from appharness.body import BodySource
from appharness.errors import EncodingError
from appharness.util import first_header_value, ordered_headers, to_bytes

MULTIPART_FORM_DATA = "multipart/form-data"
CRLF = b"\r\n"
MAX_BOUNDARY_LENGTH = 70

_BCHARS = frozenset(string.ascii_letters + string.digits + "'()+_,-./:=? ")
_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_PARAM_RE = re.compile(r';\s*([^\s=;]+)\s*=\s*("[^"]*"|[^;]*)')

ContentProvider = Callable[[], Any]


@dataclass(slots=True)
class FieldPart:
    name: str
    value: str
    headers: dict[str, list[str]]

    def __init__(self, name: str, value: str, headers: dict[str, Any] | None = None) -> None:
        self.name = str(name)
        self.value = str(value)
        self.headers = ordered_headers(headers)

    def part_headers(self) -> dict[str, list[str]]:
        disposition = f'form-data; name="{_quote(self.name)}"'
        return _with_disposition(disposition, None, self.headers)

    def open(self) -> BodySource:
        return BodySource.of(self.value.encode("utf-8"), label=f"field part {self.name!r}")


@dataclass(slots=True)
class FilePart:
    """A file upload part.

    ``content`` may be bytes or ``str`` (reusable), a zero-argument callable
    (called once per encode, never here), or a ``BodySource`` / iterable of
    chunks (single use: a second encode raises ``ReuseError``).
    """

    name: str
    filename: str
    content_type: str | None
    headers: dict[str, list[str]]
    _data: bytes | None
    _provider: ContentProvider | None
    _source: BodySource | None

    def __init__(
        self,
        name: str,
        filename: str,
        content: Any,
        headers: dict[str, Any] | None = None,
        *,
        content_type: str | None = None,
    ) -> None:
        self.name = str(name)
        self.filename = str(filename)
        self.content_type = str(content_type) if content_type else None
        self.headers = ordered_headers(headers)
        self._data = None
        self._provider = None
        self._source = None
        if content is None or isinstance(content, (bytes, bytearray, memoryview, str)):
            self._data = to_bytes(content)
        elif isinstance(content, BodySource):
            self._source = content
        elif callable(content):
            self._provider = content
        else:
            self._source = BodySource.of(content, label=self._label())

    def _label(self) -> str:
        return f"file part {self.name!r}"

    def part_headers(self) -> dict[str, list[str]]:
        disposition = f'form-data; name="{_quote(self.name)}"; filename="{_quote(self.filename)}"'
        return _with_disposition(disposition, self.content_type, self.headers)

    def open(self) -> BodySource:
        if self._provider is not None:
            return BodySource(self._provider, label=self._label())
        if self._source is not None:
            return self._source
        return BodySource.of(self._data or b"", label=self._label())


Part = FieldPart | FilePart


@dataclass(slots=True)
class ParsedPart:
    name: str
    filename: str | None
    headers: dict[str, list[str]]
    content: bytes

    @property
    def is_file(self) -> bool:
        return self.filename is not None

    @property
    def value(self) -> str:
        return self.content.decode("utf-8")

    def header(self, name: str) -> str:
        return first_header_value(self.headers, name)


def validate_boundary(boundary: str) -> str:
    value = str(boundary or "")
    if not value:
        raise EncodingError("multipart boundary is empty")
    if len(value) > MAX_BOUNDARY_LENGTH:
        raise EncodingError(f"multipart boundary is longer than {MAX_BOUNDARY_LENGTH} characters")
    if value.endswith(" "):
        raise EncodingError("multipart boundary must not end with a space")
    bad = sorted({c for c in value if c not in _BCHARS})
    if bad:
        raise EncodingError(f"multipart boundary contains invalid characters: {''.join(bad)!r}")
    return value


def multipart_content_type(boundary: str) -> str:
    value = validate_boundary(boundary)
    if _TOKEN_RE.match(value):
        return f"{MULTIPART_FORM_DATA}; boundary={value}"
    return f'{MULTIPART_FORM_DATA}; boundary="{value}"'


def generate_boundary() -> str:
    return f"appharness-{uuid4().hex}"


def boundary_from_content_type(content_type: str) -> str:
    value = str(content_type or "").strip()
    media_type = value.split(";", 1)[0].strip().lower()
    if not media_type.startswith("multipart/"):
        raise EncodingError(f"not a multipart content type: {value!r}")
    params = _parse_params(value)
    boundary = params.get("boundary", "")
    if not boundary:
        raise EncodingError("multipart content type has no boundary")
    return validate_boundary(boundary)


def iter_multipart(boundary: str, parts: Iterable[Part]) -> Iterator[bytes]:
    """Stream the encoded body chunk by chunk.

    The boundary and every part's headers are validated before the first
    chunk; a boundary collision inside content raises once the offending
    chunk is reached, after earlier chunks have been yielded.
    """
    delimiter = b"--" + validate_boundary(boundary).encode("ascii")
    prepared = [(part, _serialize_headers(part.part_headers())) for part in parts]
    return _frames(delimiter, prepared)


def encode_multipart(boundary: str, parts: Iterable[Part]) -> bytes:
    return b"".join(iter_multipart(boundary, parts))


def parse_multipart(body: bytes | str, boundary: str) -> list[ParsedPart]:
    data = to_bytes(body)
    delimiter = b"--" + validate_boundary(boundary).encode("ascii")

    start = data.find(delimiter)
    while start > 0 and data[start - 2 : start] != CRLF:
        start = data.find(delimiter, start + 1)
    if start < 0:
        raise EncodingError("multipart body has no opening boundary")

    parts: list[ParsedPart] = []
    pos = start + len(delimiter)
    while True:
        if data.startswith(b"--", pos):
            return parts

        eol = data.find(CRLF, pos)
        if eol < 0 or data[pos:eol].strip(b" \t"):
            raise EncodingError("malformed multipart boundary line")
        pos = eol + len(CRLF)

        if data.startswith(CRLF, pos):
            raw_headers = b""
            content_start = pos + len(CRLF)
        else:
            header_end = data.find(CRLF + CRLF, pos)
            if header_end < 0:
                raise EncodingError("multipart part headers are not terminated")
            raw_headers = data[pos:header_end]
            content_start = header_end + 2 * len(CRLF)

        next_delimiter = data.find(CRLF + delimiter, content_start)
        if next_delimiter < 0:
            raise EncodingError("multipart body has no closing boundary")

        parts.append(_parsed_part(raw_headers, data[content_start:next_delimiter]))
        pos = next_delimiter + len(CRLF) + len(delimiter)


def _frames(delimiter: bytes, prepared: list[tuple[Part, bytes]]) -> Iterator[bytes]:
    for part, head in prepared:
        yield delimiter + CRLF + head + CRLF
        yield from _checked_chunks(part.open().iter_chunks(), delimiter, part.name)
        yield CRLF
    yield delimiter + b"--" + CRLF


def _checked_chunks(chunks: Iterator[bytes], delimiter: bytes, name: str) -> Iterator[bytes]:
    keep = len(delimiter) - 1
    tail = b""
    for chunk in chunks:
        if not chunk:
            continue
        window = tail + chunk
        if delimiter in window:
            raise EncodingError(f"multipart boundary occurs in the content of part {name!r}")
        tail = window[-keep:]
        yield chunk


def _serialize_headers(headers: dict[str, list[str]]) -> bytes:
    lines: list[bytes] = []
    for name, values in headers.items():
        if not _TOKEN_RE.match(name):
            raise EncodingError(f"invalid multipart header name: {name!r}")
        for value in values:
            if "\r" in value or "\n" in value:
                raise EncodingError(f"multipart header {name!r} contains a line break")
            lines.append(f"{name}: {value}".encode("utf-8") + CRLF)
    return b"".join(lines)


def _with_disposition(
    disposition: str, content_type: str | None, extra: dict[str, list[str]]
) -> dict[str, list[str]]:
    for name in extra:
        if name.lower() == "content-disposition":
            raise EncodingError("Content-Disposition is generated from the part name")
    headers: dict[str, list[str]] = {"Content-Disposition": [disposition]}
    if content_type:
        headers["Content-Type"] = [content_type]
    for name, values in extra.items():
        headers.setdefault(name, []).extend(values)
    return headers


def _quote(value: str) -> str:
    # "%" goes first so every "%" in the output starts one of these escapes.
    return str(value).replace("%", "%25").replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")


def _unquote(value: str) -> str:
    raw = value.strip()
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        raw = raw[1:-1]
    return raw.replace("%22", '"').replace("%0D", "\r").replace("%0A", "\n").replace("%25", "%")


def _parse_params(header_value: str) -> dict[str, str]:
    return {m.group(1).lower(): _unquote(m.group(2)) for m in _PARAM_RE.finditer(header_value)}


def _parsed_part(raw_headers: bytes, content: bytes) -> ParsedPart:
    headers: dict[str, list[str]] = {}
    for line in raw_headers.split(CRLF) if raw_headers else []:
        if b":" not in line:
            raise EncodingError(f"malformed multipart header line: {line!r}")
        name, value = line.split(b":", 1)
        try:
            headers.setdefault(name.decode("utf-8").strip(), []).append(value.decode("utf-8").strip())
        except UnicodeDecodeError as exc:
            raise EncodingError(f"multipart header is not valid UTF-8: {line!r}") from exc

    disposition = first_header_value(headers, "content-disposition")
    if not disposition.split(";", 1)[0].strip().lower() == "form-data":
        raise EncodingError("multipart part is missing a form-data Content-Disposition")
    params = _parse_params(disposition)
    if "name" not in params:
        raise EncodingError("multipart part has no name")

    return ParsedPart(
        name=params["name"],
        filename=params.get("filename"),
        headers=headers,
        content=content,
    )
