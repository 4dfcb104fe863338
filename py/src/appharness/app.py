from __future__ import annotations

import asyncio
import inspect
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable

from appharness.config import MapConfig, as_config
from appharness.errors import AppError, EncodingError
from appharness.form import FORM_CONTENT_TYPE, decode_form
from appharness.logger import StructuredLogger, get_logger
from appharness.multipart import ParsedPart, boundary_from_content_type, parse_multipart
from appharness.request import Request
from appharness.response import Response, binary, normalize_response, text
from appharness.router import ANY_METHOD, Router
from appharness.sink import ResponseSink
from appharness.util import first_header_value, parse_cookies

Handler = Callable[["ApplicationCall"], Any]
Proceed = Callable[[], Any]
Stage = Callable[["ApplicationCall", Proceed], Any]
Module = Callable[["Application"], Any]
Hook = Callable[["Application"], Any]


@dataclass(slots=True)
class ApplicationEnvironment:
    """State shared by every call during one application lifetime.

    Holds the configuration, the logger, an attribute store for
    application-wide state, and the event loop used to drive awaitables.
    """

    config: MapConfig
    attributes: dict[str, Any]
    loop: asyncio.AbstractEventLoop | None
    _logger: StructuredLogger | None

    def __init__(
        self,
        *,
        config: MapConfig | dict[str, Any] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.config = as_config(config)
        self.attributes = {}
        self.loop = None
        self._logger = logger

    @property
    def logger(self) -> StructuredLogger:
        return self._logger if self._logger is not None else get_logger()

    @logger.setter
    def logger(self, logger: StructuredLogger | None) -> None:
        self._logger = logger

    def open(self) -> None:
        if self.loop is None or self.loop.is_closed():
            self.loop = asyncio.new_event_loop()

    def close(self) -> None:
        if self.loop is not None and not self.loop.is_closed():
            self.loop.run_until_complete(self.loop.shutdown_asyncgens())
            self.loop.close()
        self.loop = None

    def resolve(self, value: Any) -> Any:
        if not inspect.isawaitable(value):
            return value
        self.open()
        return self.loop.run_until_complete(_awaited(value))


async def _awaited(value: Any) -> Any:
    return await value


@dataclass(slots=True)
class ApplicationCall:
    request: Request
    environment: ApplicationEnvironment
    sink: ResponseSink
    call_id: str
    params: dict[str, str]
    route: str
    attributes: dict[str, Any]

    def __init__(
        self,
        *,
        request: Request,
        environment: ApplicationEnvironment,
        sink: ResponseSink,
        call_id: str = "",
    ) -> None:
        self.request = request
        self.environment = environment
        self.sink = sink
        self.call_id = str(call_id)
        self.params = {}
        self.route = ""
        self.attributes = {}

    @property
    def responded(self) -> bool:
        return bool(self.sink.committed)

    @property
    def config(self) -> MapConfig:
        return self.environment.config

    @property
    def cookies(self) -> dict[str, str]:
        return parse_cookies(self.request.headers.get("cookie", []))

    def param(self, name: str) -> str:
        return self.params.get(name, "")

    def header(self, name: str) -> str:
        return first_header_value(self.request.headers, name)

    def query_param(self, name: str) -> str:
        values = self.request.query.get(name, [])
        return values[0] if values else ""

    def receive_bytes(self) -> bytes:
        return self.request.body.read()

    def receive_text(self) -> str:
        return self.receive_bytes().decode("utf-8")

    def receive_form(self) -> list[tuple[str, str]]:
        if _media_type(self.header("content-type")) != FORM_CONTENT_TYPE:
            raise AppError("app.unsupported_media_type", "expected a form-urlencoded body")
        try:
            return decode_form(self.receive_bytes())
        except UnicodeDecodeError:
            raise AppError("app.bad_request", "invalid form encoding") from None

    def receive_multipart(self) -> list[ParsedPart]:
        content_type = self.header("content-type")
        if not _media_type(content_type).startswith("multipart/"):
            raise AppError("app.unsupported_media_type", "expected a multipart body")
        try:
            boundary = boundary_from_content_type(content_type)
            return parse_multipart(self.receive_bytes(), boundary)
        except EncodingError as exc:
            raise AppError("app.bad_request", exc.message) from exc

    def respond(self, response: Response) -> None:
        resp = normalize_response(response)
        self.sink.start(resp.status, resp.headers, resp.cookies)
        self.sink.write(resp.body)
        self.sink.finish()

    def respond_text(self, body: str, status: int = 200, content_type: str = "text/plain; charset=utf-8") -> None:
        self.respond(text(status, body, content_type=content_type))

    def respond_bytes(self, body: Any, status: int = 200, content_type: str | None = None) -> None:
        self.respond(binary(status, body, content_type=content_type))

    def respond_stream(
        self,
        chunks: Iterable[Any],
        status: int = 200,
        headers: dict[str, Any] | None = None,
    ) -> None:
        self.sink.start(status, headers or {})
        for chunk in chunks:
            self.sink.write(chunk)
        self.sink.finish()


class Application:
    """Request pipeline: ordered stages followed by routing.

    Stages are ``stage(call, proceed)`` and run in registration order; a
    stage may respond itself and skip ``proceed()``. ``proceed()`` is
    synchronous and returns whatever the rest of the pipeline returned;
    ``async def`` stages are rejected with ``TypeError``.
    Route handlers may respond through the call or return a ``Response``
    (which the outermost level commits). When no route matches nothing is
    written.
    """

    def __init__(self, environment: ApplicationEnvironment | None = None) -> None:
        self.environment = environment or ApplicationEnvironment()
        self._router = Router()
        self._stages: list[Stage] = []
        self._start_hooks: list[Hook] = []
        self._stop_hooks: list[Hook] = []
        self._running = False

    @property
    def config(self) -> MapConfig:
        return self.environment.config

    @property
    def attributes(self) -> dict[str, Any]:
        return self.environment.attributes

    @property
    def running(self) -> bool:
        return self._running

    def use(self, stage: Stage) -> Application:
        if inspect.iscoroutinefunction(stage) or inspect.iscoroutinefunction(getattr(stage, "__call__", None)):
            raise TypeError("appharness: stages must be synchronous; use an async handler instead")
        self._stages.append(stage)
        return self

    def handle(self, method: str, pattern: str, handler: Handler) -> Application:
        self._router.add(method, pattern, handler)
        return self

    def route(self, pattern: str, handler: Handler) -> Application:
        return self.handle(ANY_METHOD, pattern, handler)

    def get(self, pattern: str, handler: Handler) -> Application:
        return self.handle("GET", pattern, handler)

    def post(self, pattern: str, handler: Handler) -> Application:
        return self.handle("POST", pattern, handler)

    def put(self, pattern: str, handler: Handler) -> Application:
        return self.handle("PUT", pattern, handler)

    def patch(self, pattern: str, handler: Handler) -> Application:
        return self.handle("PATCH", pattern, handler)

    def delete(self, pattern: str, handler: Handler) -> Application:
        return self.handle("DELETE", pattern, handler)

    def install(self, module: Module) -> Application:
        self.environment.resolve(module(self))
        return self

    def on_start(self, hook: Hook) -> Application:
        self._start_hooks.append(hook)
        return self

    def on_stop(self, hook: Hook) -> Application:
        self._stop_hooks.append(hook)
        return self

    def start(self) -> None:
        if self._running:
            return
        for hook in self._start_hooks:
            self.environment.resolve(hook(self))
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        for hook in reversed(self._stop_hooks):
            self.environment.resolve(hook(self))

    def execute(self, call: ApplicationCall) -> None:
        result = self._run(call, 0)
        if isinstance(result, Response) and not call.responded:
            call.respond(result)

    def _run(self, call: ApplicationCall, index: int) -> Any:
        if index < len(self._stages):
            stage = self._stages[index]
            result = stage(call, lambda: self._run(call, index + 1))
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise TypeError("appharness: stages must be synchronous; use an async handler instead")
            return result

        match = self._router.match(call.request.method, call.request.path)
        if match is None:
            return None
        call.params = match.params
        call.route = match.pattern
        return self.environment.resolve(match.handler(call))


def create_app(
    *,
    config: MapConfig | dict[str, Any] | None = None,
    logger: StructuredLogger | None = None,
) -> Application:
    return Application(ApplicationEnvironment(config=config, logger=logger))


def _media_type(content_type: str) -> str:
    return str(content_type or "").split(";", 1)[0].strip().lower()
