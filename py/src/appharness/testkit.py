from __future__ import annotations

import itertools
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from appharness.app import Application, ApplicationCall, ApplicationEnvironment, Module
from appharness.config import MapConfig, as_config
from appharness.errors import ReuseError
from appharness.form import FieldLike
from appharness.logger import StructuredLogger
from appharness.multipart import Part
from appharness.request import CallState, Request, build_request, form_request, multipart_request, normalize_request
from appharness.sink import InMemorySink
from appharness.util import first_header_value

T = TypeVar("T")


@dataclass(slots=True)
class TestResponse:
    """What the pipeline wrote. ``status`` is ``None`` when nothing was written."""

    __test__ = False

    status: int | None
    headers: dict[str, list[str]]
    cookies: list[str]
    chunks: list[bytes]
    body: bytes

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def header(self, name: str) -> str:
        return first_header_value(self.headers, name)


@dataclass(slots=True)
class CallRecord:
    request: Request
    response: TestResponse
    handled: bool
    call_id: str
    state: CallState

    @property
    def status(self) -> int | None:
        return self.response.status

    @property
    def text(self) -> str:
        return self.response.text

    @property
    def headers(self) -> dict[str, list[str]]:
        return self.response.headers

    @property
    def body(self) -> bytes:
        return self.response.body

    @property
    def chunks(self) -> list[bytes]:
        return self.response.chunks

    def header(self, name: str) -> str:
        return self.response.header(name)


class TestEngine:
    """Runs synthetic requests through an application pipeline in-process.

    ``application`` is an ``Application`` or any pipeline entry point: an
    object with ``execute(call)`` or a plain ``fn(call)``. Either may return
    an awaitable, which is driven on the engine's event loop. ``modules``
    are installed on ``start()``, after ``config`` is in place.
    """

    __test__ = False

    def __init__(
        self,
        application: Any | None = None,
        *,
        config: MapConfig | dict[str, Any] | None = None,
        logger: StructuredLogger | None = None,
        modules: Iterable[Module] = (),
        call_ids: Callable[[], str] | None = None,
    ) -> None:
        if isinstance(application, Application):
            self.environment = application.environment
            for key, value in as_config(config).to_dict().items():
                self.environment.config.put(key, value)
            if logger is not None:
                self.environment.logger = logger
        else:
            self.environment = ApplicationEnvironment(config=config, logger=logger)
        self.application = application if application is not None else Application(self.environment)
        self._modules = list(modules)
        self._counter = itertools.count(1)
        self._call_ids = call_ids
        self._started = False
        self._stopped = False

    @property
    def config(self) -> MapConfig:
        return self.environment.config

    def __enter__(self) -> TestEngine:
        return self.start()

    def __exit__(self, *_exc: object) -> None:
        self.stop()

    def start(self) -> TestEngine:
        if self._started:
            return self
        if self._stopped:
            raise RuntimeError("appharness: engine has been stopped")
        self.environment.open()
        self._started = True
        for module in self._modules:
            self.install(module)
        if isinstance(self.application, Application):
            self.application.start()
        self.environment.logger.info("engine.started", {"modules": len(self._modules)})
        return self

    def stop(self) -> None:
        if not self._started or self._stopped:
            self._stopped = True
            return
        self._stopped = True
        try:
            if isinstance(self.application, Application):
                self.application.stop()
        finally:
            self.environment.close()
            self.environment.logger.info("engine.stopped")

    def install(self, module: Module) -> TestEngine:
        if isinstance(self.application, Application):
            self.application.install(module)
        else:
            self.environment.resolve(module(self.application))
        return self

    def dispatch(self, request: Request) -> CallRecord:
        if request.state != "created":
            raise ReuseError(f"request {request.method} {request.path} has already been dispatched")
        self.start()
        request.state = "dispatched"

        call_id = self._call_ids() if self._call_ids is not None else f"call-{next(self._counter)}"
        logger = self.environment.logger.with_request_id(call_id)
        sink = InMemorySink()
        call = ApplicationCall(
            request=normalize_request(request),
            environment=self.environment,
            sink=sink,
            call_id=call_id,
        )
        fields = {"method": call.request.method, "path": call.request.path}

        logger.debug("dispatch.started", fields)
        try:
            self._execute(call)
        except Exception as exc:
            logger.error("dispatch.failed", {**fields, "error": type(exc).__name__})
            raise

        handled = sink.committed
        request.state = "responded" if handled else "unhandled"
        response = TestResponse(
            status=sink.status if handled else None,
            headers=dict(sink.headers),
            cookies=list(sink.cookies),
            chunks=list(sink.chunks),
            body=sink.body,
        )
        logger.info("dispatch.completed", {**fields, "handled": handled, "status": response.status})
        return CallRecord(
            request=request,
            response=response,
            handled=handled,
            call_id=call_id,
            state=request.state,
        )

    def _execute(self, call: ApplicationCall) -> None:
        entry = getattr(self.application, "execute", None)
        if callable(entry):
            result = entry(call)
        elif callable(self.application):
            result = self.application(call)
        else:
            raise TypeError("appharness: application must define execute(call) or be callable")
        self.environment.resolve(result)

    def handle_request(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, Any] | None = None,
        body: Any = None,
        query: dict[str, Any] | None = None,
    ) -> CallRecord:
        return self.dispatch(build_request(method, path, headers=headers, body=body, query=query))

    def handle_form(
        self,
        method: str,
        path: str,
        fields: Iterable[FieldLike],
        *,
        headers: dict[str, Any] | None = None,
    ) -> CallRecord:
        return self.dispatch(form_request(method, path, fields, headers=headers))

    def handle_multipart(
        self,
        method: str,
        path: str,
        boundary: str,
        parts: Iterable[Part],
        *,
        headers: dict[str, Any] | None = None,
    ) -> CallRecord:
        return self.dispatch(multipart_request(method, path, boundary, parts, headers=headers))


def create_test_engine(
    application: Any | None = None,
    *,
    config: MapConfig | dict[str, Any] | None = None,
    logger: StructuredLogger | None = None,
    modules: Iterable[Module] = (),
) -> TestEngine:
    return TestEngine(application, config=config, logger=logger, modules=modules)


def with_test_application(
    module: Module,
    test: Callable[[TestEngine], T],
    *,
    config: MapConfig | dict[str, Any] | None = None,
    logger: StructuredLogger | None = None,
) -> T:
    engine = TestEngine(config=config, logger=logger, modules=[module])
    try:
        engine.start()
        return test(engine)
    finally:
        engine.stop()
