"""Single-consumption byte sources for request bodies and file parts."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any, Callable

from appharness.errors import ReuseError
from appharness.util import to_bytes

Producer = Callable[[], Any]


class BodySource:
    """Lazy, one-shot byte source.

    The wrapped producer is not called until the first ``read()`` or
    ``iter_chunks()``. It may return bytes, ``str``, ``None`` or an iterable
    of bytes-like chunks. A second read raises ``ReuseError``.
    """

    __slots__ = ("_producer", "_consumed", "_label")

    def __init__(self, producer: Producer, *, label: str = "body") -> None:
        if not callable(producer):
            raise TypeError("producer must be callable")
        self._producer = producer
        self._consumed = False
        self._label = str(label or "body")

    @classmethod
    def of(cls, value: Any, *, label: str = "body") -> BodySource:
        if isinstance(value, BodySource):
            return value
        if value is None or isinstance(value, (bytes, bytearray, memoryview, str)):
            data = to_bytes(value)
            return cls(lambda: data, label=label)
        if callable(value):
            return cls(value, label=label)
        if isinstance(value, Iterable):
            return cls(lambda: value, label=label)
        raise TypeError("body must be bytes-like, str, an iterable of chunks, or a callable")

    @classmethod
    def empty(cls) -> BodySource:
        return cls.of(b"")

    @property
    def consumed(self) -> bool:
        return self._consumed

    def iter_chunks(self) -> Iterator[bytes]:
        if self._consumed:
            raise ReuseError(f"{self._label} has already been read")
        self._consumed = True
        produced = self._producer()
        if isinstance(produced, BodySource):
            return produced.iter_chunks()
        if produced is None or isinstance(produced, (bytes, bytearray, memoryview, str)):
            data = to_bytes(produced)
            return iter([data] if data else [])
        return (to_bytes(chunk) for chunk in produced)

    def read(self) -> bytes:
        return b"".join(self.iter_chunks())

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else "pending"
        return f"BodySource({self._label}, {state})"
