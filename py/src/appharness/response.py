from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from appharness.util import canonicalize_headers, first_header_value, to_bytes

TEXT_PLAIN = "text/plain; charset=utf-8"
TEXT_HTML = "text/html; charset=utf-8"


@dataclass(slots=True)
class Response:
    """A complete response a handler or stage can return instead of writing.

    The outermost pipeline level commits it to the call's sink. Headers may
    be given in any casing; ``normalize_response`` lowercases them.
    """

    status: int
    headers: dict[str, Any] = field(default_factory=dict)
    cookies: list[str] = field(default_factory=list)
    body: bytes = b""

    def header(self, name: str) -> str:
        return first_header_value(self.headers, name)

    def with_header(self, name: str, value: Any) -> Response:
        self.headers.setdefault(str(name).lower(), []).append(str(value))
        return self


def text(status: int, body: str, content_type: str = TEXT_PLAIN) -> Response:
    return _content(status, str(body).encode("utf-8"), content_type)


def html(status: int, body: str) -> Response:
    return text(status, body, content_type=TEXT_HTML)


def binary(status: int, body: Any, content_type: str | None = None) -> Response:
    return _content(status, to_bytes(body), content_type)


def redirect(location: str, status: int = 302) -> Response:
    return normalize_response(Response(status=status, headers={"location": [str(location)]}))


def no_content() -> Response:
    return Response(status=204)


def normalize_response(resp: Response) -> Response:
    status = int(resp.status or 200)
    if not 100 <= status <= 599:
        raise ValueError(f"appharness: invalid response status {status}")
    return Response(
        status=status,
        headers=canonicalize_headers(resp.headers),
        cookies=[str(c) for c in (resp.cookies or [])],
        body=to_bytes(resp.body),
    )


def _content(status: int, body: bytes, content_type: str | None) -> Response:
    headers: dict[str, Any] = {"content-type": [str(content_type)]} if content_type else {}
    return normalize_response(Response(status=status, headers=headers, body=body))
