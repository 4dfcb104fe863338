from __future__ import annotations

from typing import Any

from appharness.app import ApplicationCall, Proceed, Stage
from appharness.errors import AppError, response_for_error


def recover_middleware(*, catch_all: bool = False) -> Stage:
    """Turn errors raised further down the pipeline into error responses.

    ``AppError`` always becomes its JSON error response. Other exceptions
    propagate unless ``catch_all`` is set, in which case they become
    ``500 app.internal``. Errors raised after a response was committed are
    re-raised untouched.
    """

    def stage(call: ApplicationCall, proceed: Proceed) -> Any:
        logger = call.environment.logger.with_request_id(call.call_id)
        try:
            return proceed()
        except AppError as exc:
            if call.responded:
                raise
            logger.warn("pipeline.app_error", {"code": exc.code, "path": call.request.path})
            call.respond(response_for_error(exc, call.call_id))
            return None
        except Exception as exc:
            if not catch_all or call.responded:
                raise
            logger.error("pipeline.error", {"error": type(exc).__name__, "path": call.request.path})
            call.respond(response_for_error(exc, call.call_id))
            return None

    return stage
