from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from appharness.errors import ResponseAlreadySentError
from appharness.util import canonicalize_headers, to_bytes


@runtime_checkable
class ResponseSink(Protocol):
    """Where a pipeline writes its response.

    The harness supplies ``InMemorySink``; a real transport would supply a
    socket-backed one with the same methods.
    """

    @property
    def committed(self) -> bool: ...

    def start(self, status: int, headers: dict[str, Any], cookies: list[str] | None = None) -> None: ...

    def write(self, chunk: bytes) -> None: ...

    def finish(self) -> None: ...


@dataclass(slots=True)
class InMemorySink:
    status: int = 0
    headers: dict[str, list[str]] = field(default_factory=dict)
    cookies: list[str] = field(default_factory=list)
    chunks: list[bytes] = field(default_factory=list)
    finished: bool = False
    _committed: bool = False

    @property
    def committed(self) -> bool:
        return self._committed

    def start(self, status: int, headers: dict[str, Any], cookies: list[str] | None = None) -> None:
        if self._committed:
            raise ResponseAlreadySentError()
        self._committed = True
        self.status = int(status or 200)
        self.headers = canonicalize_headers(headers)
        self.cookies = [str(c) for c in (cookies or [])]

    def write(self, chunk: bytes) -> None:
        if not self._committed:
            raise RuntimeError("appharness: response body written before status")
        if self.finished:
            raise ResponseAlreadySentError("response already finished")
        data = to_bytes(chunk)
        if data:
            self.chunks.append(data)

    def finish(self) -> None:
        self.finished = True

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)
