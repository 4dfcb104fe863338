from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from appharness.body import BodySource
from appharness.form import FORM_CONTENT_TYPE, FieldLike, encode_form
from appharness.multipart import Part, iter_multipart, multipart_content_type
from appharness.util import canonicalize_headers, clone_query, split_path_and_query

CallState = Literal["created", "dispatched", "responded", "unhandled"]


@dataclass(slots=True)
class Request:
    method: str
    path: str
    query: dict[str, list[str]] = field(default_factory=dict)
    headers: dict[str, list[str]] = field(default_factory=dict)
    body: BodySource = field(default_factory=BodySource.empty)
    state: CallState = field(default="created", compare=False)


def build_request(
    method: str,
    path: str,
    *,
    headers: dict[str, Any] | None = None,
    body: Any = None,
    query: dict[str, Any] | None = None,
) -> Request:
    """Build a synthetic request.

    ``path`` may carry a query string; its parameters are merged ahead of the
    explicit ``query`` mapping. ``body`` is wrapped in a ``BodySource`` and is
    not read here.
    """
    path_value, parsed_query = split_path_and_query(path)
    for key, values in clone_query(query).items():
        parsed_query.setdefault(key, []).extend(values)
    return Request(
        method=str(method or "").strip().upper(),
        path=path_value,
        query=parsed_query,
        headers=canonicalize_headers(headers),
        body=BodySource.of(body),
    )


def form_request(
    method: str,
    path: str,
    fields: Iterable[FieldLike],
    *,
    headers: dict[str, Any] | None = None,
) -> Request:
    pairs = list(fields)
    request = build_request(method, path, headers=headers, body=lambda: encode_form(pairs))
    request.headers["content-type"] = [FORM_CONTENT_TYPE]
    return request


def multipart_request(
    method: str,
    path: str,
    boundary: str,
    parts: Iterable[Part],
    *,
    headers: dict[str, Any] | None = None,
) -> Request:
    content_type = multipart_content_type(boundary)
    items = list(parts)
    request = build_request(method, path, headers=headers, body=lambda: iter_multipart(boundary, items))
    request.headers["content-type"] = [content_type]
    return request


def normalize_request(req: Request) -> Request:
    """Pipeline-facing copy of ``req``; the body source is shared, not read."""
    path, query = split_path_and_query(req.path)
    for key, values in clone_query(req.query).items():
        query.setdefault(key, []).extend(values)
    return Request(
        method=str(req.method or "").strip().upper(),
        path=path,
        query=query,
        headers=canonicalize_headers(req.headers),
        body=req.body if isinstance(req.body, BodySource) else BodySource.of(req.body),
        state=req.state,
    )
