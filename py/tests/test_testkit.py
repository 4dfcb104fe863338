from __future__ import annotations

import asyncio
import sys
import unittest
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(REPO_ROOT / "py" / "src"))

from appharness.app import Application, ApplicationCall, create_app  # noqa: E402
from appharness.errors import ConfigError, ResponseAlreadySentError, ReuseError  # noqa: E402
from appharness.logger import CapturingLogger, set_logger  # noqa: E402
from appharness.multipart import FieldPart, FilePart  # noqa: E402
from appharness.request import build_request  # noqa: E402
from appharness.response import text  # noqa: E402
from appharness.testkit import TestEngine, create_test_engine, with_test_application  # noqa: E402


def _root_module(app: Application) -> None:
    app.get("/", lambda call: call.respond_text("Test String"))


class TestEngineDispatch(unittest.TestCase):
    def test_root_route_is_handled(self) -> None:
        def check(engine: TestEngine) -> None:
            call = engine.handle_request("GET", "/")
            self.assertTrue(call.handled)
            self.assertEqual(call.status, 200)
            self.assertEqual(call.text, "Test String")
            self.assertEqual(call.response.header("Content-Type"), "text/plain; charset=utf-8")
            self.assertEqual(call.state, "responded")
            self.assertEqual(call.header("content-type"), "text/plain; charset=utf-8")
            self.assertEqual(call.headers, call.response.headers)
            self.assertEqual(call.body, b"Test String")
            self.assertEqual(call.chunks, [b"Test String"])

        with_test_application(_root_module, check)

    def test_unmatched_route_is_unhandled(self) -> None:
        def check(engine: TestEngine) -> None:
            call = engine.handle_request("GET", "/index.html")
            self.assertFalse(call.handled)
            self.assertIsNone(call.status)
            self.assertEqual(call.response.body, b"")
            self.assertEqual(call.response.chunks, [])
            self.assertEqual(call.state, "unhandled")

        with_test_application(_root_module, check)

    def test_application_404_is_handled(self) -> None:
        def module(app: Application) -> None:
            app.get("/missing", lambda call: call.respond_text("nope", status=404))

        def check(engine: TestEngine) -> None:
            call = engine.handle_request("GET", "/missing")
            self.assertTrue(call.handled)
            self.assertEqual(call.status, 404)

        with_test_application(module, check)

    def test_pipeline_exceptions_propagate(self) -> None:
        def boom(_call: ApplicationCall) -> None:
            raise RuntimeError("boom")

        with TestEngine(modules=[lambda app: app.get("/", boom)]) as engine:
            request = build_request("GET", "/")
            with self.assertRaisesRegex(RuntimeError, "boom"):
                engine.dispatch(request)
            self.assertEqual(request.state, "dispatched")

    def test_engine_stays_usable_after_a_pipeline_error(self) -> None:
        def module(app: Application) -> None:
            app.get("/fail", lambda _call: 1 / 0)
            app.get("/ok", lambda call: call.respond_text("ok"))

        with TestEngine(modules=[module]) as engine:
            with self.assertRaises(ZeroDivisionError):
                engine.handle_request("GET", "/fail")
            self.assertEqual(engine.handle_request("GET", "/ok").text, "ok")

    def test_request_is_consumed_exactly_once(self) -> None:
        with TestEngine(modules=[_root_module]) as engine:
            request = build_request("GET", "/")
            engine.dispatch(request)
            with self.assertRaises(ReuseError):
                engine.dispatch(request)

    def test_body_can_only_be_received_once(self) -> None:
        def twice(call: ApplicationCall) -> None:
            call.receive_bytes()
            call.receive_bytes()

        with TestEngine(modules=[lambda app: app.post("/", twice)]) as engine:
            with self.assertRaises(ReuseError):
                engine.handle_request("POST", "/", body=b"x")

    def test_responding_twice_raises(self) -> None:
        def twice(call: ApplicationCall) -> None:
            call.respond_text("a")
            call.respond_text("b")

        with TestEngine(modules=[lambda app: app.get("/", twice)]) as engine:
            with self.assertRaises(ResponseAlreadySentError):
                engine.handle_request("GET", "/")

    def test_sequential_calls_share_application_state(self) -> None:
        def module(app: Application) -> None:
            app.attributes["hits"] = 0

            def hit(call: ApplicationCall) -> None:
                call.environment.attributes["hits"] += 1
                call.respond_text(str(call.environment.attributes["hits"]))

            app.post("/hit", hit)

        with TestEngine(modules=[module]) as engine:
            self.assertEqual(engine.handle_request("POST", "/hit").text, "1")
            self.assertEqual(engine.handle_request("POST", "/hit").text, "2")
            self.assertEqual(engine.environment.attributes["hits"], 2)

    def test_async_handlers_are_driven_to_completion(self) -> None:
        async def handler(call: ApplicationCall) -> None:
            await asyncio.sleep(0)
            call.respond_text("async")

        with TestEngine(modules=[lambda app: app.get("/", handler)]) as engine:
            call = engine.handle_request("GET", "/")
            self.assertEqual(call.text, "async")

    def test_handlers_may_return_responses(self) -> None:
        with TestEngine(modules=[lambda app: app.get("/", lambda _call: text(201, "made"))]) as engine:
            call = engine.handle_request("GET", "/")
            self.assertTrue(call.handled)
            self.assertEqual(call.status, 201)
            self.assertEqual(call.text, "made")

    def test_streamed_responses_keep_chunks(self) -> None:
        def stream(call: ApplicationCall) -> None:
            call.respond_stream([b"a", "b", b""], headers={"Content-Type": "text/plain"})

        with TestEngine(modules=[lambda app: app.get("/", stream)]) as engine:
            call = engine.handle_request("GET", "/")
            self.assertEqual(call.response.chunks, [b"a", b"b"])
            self.assertEqual(call.response.body, b"ab")
            self.assertEqual(call.response.headers, {"content-type": ["text/plain"]})

    def test_call_ids_are_sequential_or_supplied(self) -> None:
        with TestEngine(modules=[_root_module]) as engine:
            self.assertEqual(engine.handle_request("GET", "/").call_id, "call-1")
            self.assertEqual(engine.handle_request("GET", "/").call_id, "call-2")

        ids = iter(["a", "b"])
        with TestEngine(modules=[_root_module], call_ids=lambda: next(ids)) as engine:
            self.assertEqual(engine.handle_request("GET", "/").call_id, "a")


class TestEngineBodies(unittest.TestCase):
    def test_form_bodies_reach_the_pipeline_unchanged(self) -> None:
        def echo(call: ApplicationCall) -> None:
            call.respond_text("|".join(f"{k}:{v}" for k, v in call.receive_form()))

        with TestEngine(modules=[lambda app: app.post("/form", echo)]) as engine:
            call = engine.handle_form("POST", "/form", [("name1", "value 1"), ("name2", "a&b=c")])
            self.assertEqual(call.text, "name1:value 1|name2:a&b=c")

    def test_multipart_bodies_reach_the_pipeline_unchanged(self) -> None:
        seen: dict[str, Any] = {}

        def upload(call: ApplicationCall) -> None:
            parts = call.receive_multipart()
            seen["parts"] = parts
            call.respond_text(",".join(p.name for p in parts))

        reads: list[int] = []

        def content() -> bytes:
            reads.append(1)
            return b"\x00\x01binary"

        with TestEngine(modules=[lambda app: app.post("/upload", upload)]) as engine:
            call = engine.handle_multipart(
                "POST",
                "/upload",
                "---bbb---",
                [FieldPart("title", "Hello"), FilePart("file", "a.bin", content, content_type="application/octet-stream")],
            )

        self.assertEqual(call.text, "title,file")
        self.assertEqual(reads, [1])
        parts = seen["parts"]
        self.assertEqual(parts[0].value, "Hello")
        self.assertEqual(parts[1].filename, "a.bin")
        self.assertEqual(parts[1].content, b"\x00\x01binary")
        self.assertEqual(parts[1].header("Content-Type"), "application/octet-stream")

    def test_unread_bodies_are_never_encoded(self) -> None:
        reads: list[int] = []

        def content() -> bytes:
            reads.append(1)
            return b"x"

        with TestEngine(modules=[_root_module]) as engine:
            engine.handle_multipart("POST", "/", "b1", [FilePart("f", "f.txt", content)])
        self.assertEqual(reads, [])


class TestEngineLifecycle(unittest.TestCase):
    def tearDown(self) -> None:
        set_logger(None)

    def test_config_is_installed_before_modules_run(self) -> None:
        seen: list[str] = []

        def module(app: Application) -> None:
            seen.append(app.config.get_string("service.session.cookie.key"))
            app.get("/", lambda call: call.respond_text(call.config.get_string("service.name")))

        config = {"service.session.cookie.key": "secret", "service.name": "demo"}
        result = with_test_application(module, lambda engine: engine.handle_request("GET", "/").text, config=config)
        self.assertEqual(seen, ["secret"])
        self.assertEqual(result, "demo")

    def test_missing_config_fails_start(self) -> None:
        def module(app: Application) -> None:
            app.config.get_string("required.key")

        with self.assertRaises(ConfigError):
            with_test_application(module, lambda engine: None)

    def test_start_and_stop_hooks_and_loop_teardown(self) -> None:
        events: list[str] = []

        def module(app: Application) -> None:
            app.on_start(lambda _app: events.append("start"))
            app.on_stop(lambda _app: events.append("stop"))

        engine = TestEngine(modules=[module])
        self.assertEqual(events, [])
        engine.start()
        self.assertEqual(events, ["start"])
        self.assertIsNotNone(engine.environment.loop)
        engine.stop()
        self.assertEqual(events, ["start", "stop"])
        self.assertIsNone(engine.environment.loop)

        with self.assertRaises(RuntimeError):
            engine.handle_request("GET", "/")

    def test_dispatch_starts_the_engine_on_demand(self) -> None:
        engine = create_test_engine(modules=[_root_module])
        try:
            self.assertTrue(engine.handle_request("GET", "/").handled)
        finally:
            engine.stop()

    def test_existing_application_receives_config_overrides(self) -> None:
        app = create_app(config={"a.b": "original"})
        app.get("/", lambda call: call.respond_text(call.config.get_string("a.b")))
        with TestEngine(app, config={"a.b": "override"}) as engine:
            self.assertIs(engine.application, app)
            self.assertEqual(engine.handle_request("GET", "/").text, "override")

    def test_foreign_entry_points(self) -> None:
        def pipeline(call: ApplicationCall) -> None:
            if call.request.path == "/ping":
                call.respond_text("pong")

        with TestEngine(pipeline) as engine:
            self.assertEqual(engine.handle_request("GET", "/ping").text, "pong")
            self.assertFalse(engine.handle_request("GET", "/other").handled)

        class AsyncPipeline:
            async def execute(self, call: ApplicationCall) -> None:
                await asyncio.sleep(0)
                call.respond_bytes(b"async", content_type="application/octet-stream")

        with TestEngine(AsyncPipeline()) as engine:
            call = engine.handle_request("GET", "/")
            self.assertEqual(call.response.body, b"async")
            self.assertEqual(call.response.header("content-type"), "application/octet-stream")

        with TestEngine(object()) as engine:
            with self.assertRaises(TypeError):
                engine.handle_request("GET", "/")

    def test_dispatch_is_logged_with_the_call_id(self) -> None:
        logger = CapturingLogger()
        with TestEngine(modules=[_root_module], logger=logger) as engine:
            engine.handle_request("GET", "/")
            engine.handle_request("GET", "/nothing")

        self.assertEqual(
            logger.messages(),
            [
                "engine.started",
                "dispatch.started",
                "dispatch.completed",
                "dispatch.started",
                "dispatch.completed",
                "engine.stopped",
            ],
        )
        completed = logger.find("dispatch.completed")
        self.assertEqual(completed[0].fields, {"method": "GET", "path": "/", "handled": True, "status": 200})
        self.assertEqual(completed[0].request_id, "call-1")
        self.assertEqual(completed[1].fields["handled"], False)
        self.assertEqual(completed[1].request_id, "call-2")

    def test_failures_are_logged_before_propagating(self) -> None:
        logger = CapturingLogger()
        set_logger(logger)

        def boom(_call: ApplicationCall) -> None:
            raise ValueError("bad")

        with TestEngine(modules=[lambda app: app.get("/", boom)]) as engine:
            with self.assertRaises(ValueError):
                engine.handle_request("GET", "/")

        failed = [(r.level, r.fields) for r in logger.find("dispatch.failed")]
        self.assertEqual(failed, [("error", {"method": "GET", "path": "/", "error": "ValueError"})])
