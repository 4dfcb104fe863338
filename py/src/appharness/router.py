from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from appharness.util import normalize_path

SegmentKind = Literal["static", "param", "proxy"]
ANY_METHOD = "*"


@dataclass(slots=True)
class RouteMatch:
    handler: Any
    params: dict[str, str]
    pattern: str


@dataclass(slots=True)
class _Route:
    method: str
    pattern: str
    segments: list[tuple[SegmentKind, str]]
    handler: Any
    order: int

    @property
    def static_count(self) -> int:
        return sum(1 for kind, _ in self.segments if kind == "static")

    @property
    def param_count(self) -> int:
        return sum(1 for kind, _ in self.segments if kind == "param")

    @property
    def has_proxy(self) -> bool:
        return bool(self.segments) and self.segments[-1][0] == "proxy"


class Router:
    """Method + path pattern table.

    Patterns are ``/static``, ``/{name}`` (or ``/:name``) for one segment and a
    trailing ``/{name+}`` for the rest of the path. ``*`` as the method matches
    any method. When several routes match, the one with more static segments,
    then more params, then no proxy, then more segments, then earlier
    registration wins.
    """

    def __init__(self) -> None:
        self._routes: list[_Route] = []

    def __len__(self) -> int:
        return len(self._routes)

    def add(self, method: str, pattern: str, handler: Any) -> None:
        method_value = str(method or "").strip().upper() or ANY_METHOD
        segments = _parse_pattern(pattern)
        self._routes.append(
            _Route(
                method=method_value,
                pattern=_format_pattern(segments),
                segments=segments,
                handler=handler,
                order=len(self._routes),
            )
        )

    def match(self, method: str, path: str) -> RouteMatch | None:
        method_value = str(method or "").strip().upper()
        path_segments = _split_path(path)

        best: _Route | None = None
        best_params: dict[str, str] = {}
        for route in self._routes:
            if route.method not in (ANY_METHOD, method_value):
                continue
            params = _match_segments(route.segments, path_segments)
            if params is None:
                continue
            if best is None or _more_specific(route, best):
                best = route
                best_params = params

        if best is None:
            return None
        return RouteMatch(handler=best.handler, params=best_params, pattern=best.pattern)


def _split_path(path: str) -> list[str]:
    value = normalize_path(path).lstrip("/")
    if not value:
        return []
    return value.split("/")


def _parse_pattern(pattern: str) -> list[tuple[SegmentKind, str]]:
    raw_segments = _split_path(pattern)
    segments: list[tuple[SegmentKind, str]] = []
    for idx, raw in enumerate(raw_segments):
        value = raw.strip()
        if not value:
            raise ValueError(f"appharness: empty segment in route pattern {pattern!r}")
        if value.startswith(":") and len(value) > 1:
            value = "{" + value[1:] + "}"
        if not (value.startswith("{") and value.endswith("}")):
            segments.append(("static", value))
            continue

        inner = value[1:-1].strip()
        if inner.endswith("+"):
            name = inner[:-1].strip()
            if not name or idx != len(raw_segments) - 1:
                raise ValueError(f"appharness: proxy segment must be last and named in {pattern!r}")
            segments.append(("proxy", name))
        elif inner:
            segments.append(("param", inner))
        else:
            raise ValueError(f"appharness: unnamed parameter in route pattern {pattern!r}")
    return segments


def _format_pattern(segments: list[tuple[SegmentKind, str]]) -> str:
    rendered = []
    for kind, value in segments:
        match kind:
            case "static":
                rendered.append(value)
            case "param":
                rendered.append("{" + value + "}")
            case "proxy":
                rendered.append("{" + value + "+}")
    return "/" + "/".join(rendered)


def _match_segments(pattern: list[tuple[SegmentKind, str]], path: list[str]) -> dict[str, str] | None:
    has_proxy = bool(pattern) and pattern[-1][0] == "proxy"
    fixed = pattern[:-1] if has_proxy else pattern
    if has_proxy and len(path) <= len(fixed):
        return None
    if not has_proxy and len(path) != len(fixed):
        return None

    params: dict[str, str] = {}
    for (kind, value), segment in zip(fixed, path):
        if not segment:
            return None
        if kind == "static" and value != segment:
            return None
        if kind == "param":
            params[value] = segment

    if has_proxy:
        params[pattern[-1][1]] = "/".join(path[len(fixed) :])
    return params


def _more_specific(a: _Route, b: _Route) -> bool:
    if a.static_count != b.static_count:
        return a.static_count > b.static_count
    if a.param_count != b.param_count:
        return a.param_count > b.param_count
    if a.has_proxy != b.has_proxy:
        return not a.has_proxy
    if len(a.segments) != len(b.segments):
        return len(a.segments) > len(b.segments)
    return a.order < b.order
