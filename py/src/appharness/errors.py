from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from appharness.response import Response, normalize_response
from appharness.util import canonicalize_headers


@dataclass(slots=True)
class HarnessError(Exception):
    code: str
    message: str

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class EncodingError(HarnessError):
    """A request body could not be encoded or parsed without corrupting its framing."""

    def __init__(self, message: str) -> None:
        HarnessError.__init__(self, "harness.encoding", str(message))


class ReuseError(HarnessError):
    """A single-consumption source was read, or a request dispatched, a second time."""

    def __init__(self, message: str) -> None:
        HarnessError.__init__(self, "harness.reuse", str(message))


class ConfigError(HarnessError):
    def __init__(self, message: str) -> None:
        HarnessError.__init__(self, "harness.config", str(message))


class ResponseAlreadySentError(HarnessError):
    def __init__(self, message: str = "response already sent") -> None:
        HarnessError.__init__(self, "harness.response_sent", str(message))


@dataclass(slots=True)
class AppError(Exception):
    """An error a handler raises to have ``recover_middleware`` answer for it.

    ``status`` overrides the status derived from ``code``; ``details`` is
    copied into the JSON error body.
    """

    code: str
    message: str
    status: int | None = None
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def status_for_error_code(code: str) -> int:
    match code:
        case "app.bad_request" | "app.validation_failed" | "harness.encoding":
            return 400
        case "app.unauthorized":
            return 401
        case "app.forbidden":
            return 403
        case "app.not_found":
            return 404
        case "app.method_not_allowed":
            return 405
        case "app.conflict":
            return 409
        case "app.too_large":
            return 413
        case "app.unsupported_media_type":
            return 415
        case _:
            return 500


def error_response(
    code: str,
    message: str,
    *,
    status: int | None = None,
    headers: dict[str, Any] | None = None,
    request_id: str = "",
    details: dict[str, Any] | None = None,
) -> Response:
    """JSON body ``{"error": {"code", "message", ...}}`` with a status from ``code``."""
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    if request_id:
        error["request_id"] = str(request_id)

    headers_out = canonicalize_headers(headers)
    headers_out["content-type"] = ["application/json; charset=utf-8"]
    return normalize_response(
        Response(
            status=status if status else status_for_error_code(code),
            headers=headers_out,
            body=json.dumps({"error": error}, ensure_ascii=False, sort_keys=True).encode("utf-8"),
        )
    )


def response_for_error(exc: Exception, request_id: str = "") -> Response:
    match exc:
        case AppError():
            return error_response(exc.code, exc.message, status=exc.status, request_id=request_id, details=exc.details)
        case EncodingError():
            return error_response(exc.code, exc.message, request_id=request_id)
        case _:
            return error_response("app.internal", "internal error", request_id=request_id)
