import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT / "py" / "src"))

from appharness import FieldPart, FilePart, recover_middleware, with_test_application  # noqa: E402


def module(app) -> None:
    app.use(recover_middleware())

    def stamp(call, proceed):
        call.attributes["stage"] = "ok"
        return proceed()

    app.use(stamp)
    app.post("/login", lambda call: call.respond_text(dict(call.receive_form())["user"]))
    app.post(
        "/upload",
        lambda call: call.respond_text(",".join(f"{p.name}={len(p.content)}" for p in call.receive_multipart())),
    )


def check(engine) -> None:
    call = engine.handle_form("POST", "/login", [("user", "ada lovelace"), ("pass", "x&y")])
    assert call.handled
    assert call.text == "ada lovelace"
    assert call.request.headers["content-type"] == ["application/x-www-form-urlencoded"]

    parts = [FieldPart("title", "report"), FilePart("file", "a.txt", b"hello", content_type="text/plain")]
    call = engine.handle_multipart("POST", "/upload", "example-boundary", parts)
    assert call.status == 200
    assert call.text == "title=6,file=5"

    missing = engine.handle_request("GET", "/nowhere")
    assert not missing.handled
    assert missing.status is None


def main() -> None:
    with_test_application(module, check, config={"app.name": "example"})
    print("examples/testkit/py.py: PASS")


if __name__ == "__main__":
    main()
