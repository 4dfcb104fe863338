from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

LogLevel = Literal["debug", "info", "warn", "error"]


@runtime_checkable
class StructuredLogger(Protocol):
    """Leveled logger taking a message plus one optional field mapping.

    ``with_fields`` and ``with_request_id`` return a bound logger; the
    engine binds every dispatch to its call id.
    """

    def debug(self, message: str, *fields: dict[str, Any]) -> None: ...

    def info(self, message: str, *fields: dict[str, Any]) -> None: ...

    def warn(self, message: str, *fields: dict[str, Any]) -> None: ...

    def error(self, message: str, *fields: dict[str, Any]) -> None: ...

    def with_fields(self, fields: dict[str, Any]) -> StructuredLogger: ...

    def with_request_id(self, request_id: str) -> StructuredLogger: ...


class NoOpLogger:
    def debug(self, _message: str, *fields: dict[str, Any]) -> None:
        return None

    def info(self, _message: str, *fields: dict[str, Any]) -> None:
        return None

    def warn(self, _message: str, *fields: dict[str, Any]) -> None:
        return None

    def error(self, _message: str, *fields: dict[str, Any]) -> None:
        return None

    def with_fields(self, _fields: dict[str, Any]) -> StructuredLogger:
        return self

    def with_request_id(self, _request_id: str) -> StructuredLogger:
        return self


@dataclass(slots=True, frozen=True)
class LogRecord:
    level: LogLevel
    message: str
    fields: dict[str, Any]
    context: dict[str, Any]

    @property
    def request_id(self) -> str:
        return str(self.context.get("request_id", ""))


@dataclass(slots=True)
class CapturingLogger:
    """Keeps every record in memory so tests can assert on engine logging.

    Bound loggers share the parent's ``records`` list; their bound fields
    land in ``LogRecord.context``, separate from the per-call fields.
    """

    records: list[LogRecord] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)

    def debug(self, message: str, *fields: dict[str, Any]) -> None:
        self._log("debug", message, fields)

    def info(self, message: str, *fields: dict[str, Any]) -> None:
        self._log("info", message, fields)

    def warn(self, message: str, *fields: dict[str, Any]) -> None:
        self._log("warn", message, fields)

    def error(self, message: str, *fields: dict[str, Any]) -> None:
        self._log("error", message, fields)

    def with_fields(self, fields: dict[str, Any]) -> StructuredLogger:
        return CapturingLogger(records=self.records, context={**self.context, **(fields or {})})

    def with_request_id(self, request_id: str) -> StructuredLogger:
        return self.with_fields({"request_id": str(request_id)})

    def messages(self, level: LogLevel | None = None) -> list[str]:
        return [r.message for r in self.records if level is None or r.level == level]

    def find(self, message: str) -> list[LogRecord]:
        return [r for r in self.records if r.message == message]

    def _log(self, level: LogLevel, message: str, fields: tuple[dict[str, Any], ...]) -> None:
        merged: dict[str, Any] = {}
        for extra in fields:
            merged.update(extra or {})
        self.records.append(LogRecord(level=level, message=str(message), fields=merged, context=dict(self.context)))


_global_logger: StructuredLogger = NoOpLogger()


def get_logger() -> StructuredLogger:
    return _global_logger


def set_logger(logger: StructuredLogger | None) -> None:
    global _global_logger
    _global_logger = logger if logger is not None else NoOpLogger()


__all__ = [
    "CapturingLogger",
    "LogLevel",
    "LogRecord",
    "NoOpLogger",
    "StructuredLogger",
    "get_logger",
    "set_logger",
]
