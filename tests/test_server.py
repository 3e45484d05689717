import asyncio
import json

import pytest

from apiforge import resp
from apiforge.cancel import new_cancel
from apiforge.context import HttpContext, Request
from apiforge.errors import HttpError
from apiforge.middleware import CorsMiddleware, HttpMiddleware
from apiforge.server import (
    FuzzyFind,
    HttpServer,
    Next,
    default_error_handler,
    register_apis,
)


async def hello(ctx):
    return resp.ok("hello")


async def other(ctx):
    return resp.ok("other")


def body_of(res):
    return json.loads(res.body)


def test_exact_match_and_trailing_slash():
    srv = HttpServer()
    srv.register("ping", hello)
    assert srv.find_handler("/ping") == (hello, 0)
    assert srv.find_handler("/ping/") == (hello, 0)
    assert srv.find_handler("/pong") == (None, 0)


def test_no_fuzzy_does_not_fall_back():
    srv = HttpServer()
    srv.register("/user/*", hello)
    assert srv.find_handler("/user/42") == (None, 0)


def test_fuzzy_one_only_immediate_parent():
    srv = HttpServer()
    srv.set_fuzzy_find(FuzzyFind.ONE)
    srv.register("/user/*", hello)
    handler, path_len = srv.find_handler("/user/42")
    assert handler is hello
    assert "/user/42"[path_len:] == "42"
    assert srv.find_handler("/user/42/x") == (None, 0)


def test_fuzzy_many_walks_ancestors():
    srv = HttpServer()
    srv.set_fuzzy_find(FuzzyFind.MANY)
    srv.register("/files/*", hello)
    handler, path_len = srv.find_handler("/files/a/b")
    assert handler is hello
    assert "/files/a/b"[path_len:] == "a/b"


def test_context_path_normalised_and_required():
    srv = HttpServer()
    srv.set_context_path("api")
    srv.register("/ping", hello)
    assert srv.find_handler("/api/ping") == (hello, 0)
    assert srv.find_handler("/ping") == (None, 0)


def test_empty_context_path_ignored():
    srv = HttpServer()
    srv.set_context_path("")
    srv.register("/ping", hello)
    assert srv.find_handler("/ping") == (hello, 0)


def test_register_empty_path_rejected():
    with pytest.raises(ValueError):
        HttpServer().register("", hello)


def test_register_apis_uses_base():
    srv = HttpServer()
    register_apis(srv, "/v1", {"/a": hello, "/b": other})
    assert srv.find_handler("/v1/a")[0] is hello
    assert srv.find_handler("/v1/b")[0] is other


@pytest.mark.asyncio
async def test_path_param_through_context_path():
    seen = {}

    async def handler(ctx):
        seen["id"] = ctx.get_path_param(0)
        return resp.ok_with_empty()

    srv = HttpServer()
    srv.set_context_path("/api/")
    srv.set_fuzzy_find(FuzzyFind.ONE)
    srv.register("/user/*", handler)
    res = await srv.handle_request(Request.from_target("GET", "/api/user/42"))
    assert res.status == 200
    assert seen["id"] == "42"


@pytest.mark.asyncio
async def test_not_found_reply():
    srv = HttpServer()
    res = await srv.handle_request(Request.from_target("GET", "/missing"))
    assert res.status == 404
    assert body_of(res) == {"code": 404, "message": "Not Found"}


@pytest.mark.asyncio
async def test_custom_default_handler():
    srv = HttpServer()
    srv.set_default_handler(other)
    res = await srv.handle_request(Request.from_target("GET", "/missing"))
    assert body_of(res) == {"code": 200, "data": "other"}


@pytest.mark.asyncio
async def test_http_error_becomes_failure_reply():
    async def handler(ctx):
        raise HttpError("bad input", code=601)

    srv = HttpServer()
    srv.register("/x", handler)
    res = await srv.handle_request(Request.from_target("GET", "/x"))
    assert res.status == 500
    assert body_of(res) == {"code": 601, "message": "bad input"}


@pytest.mark.asyncio
async def test_generic_error_reports_request_id():
    seen = {}

    async def handler(ctx):
        seen["id"] = ctx.id
        raise RuntimeError("boom")

    srv = HttpServer()
    srv.register("/x", handler)
    res = await srv.handle_request(Request.from_target("GET", "/x"))
    assert body_of(res) == {"code": 500, "message": f"internal server error: {seen['id']}"}


@pytest.mark.asyncio
async def test_custom_error_handler():
    async def handler(ctx):
        raise KeyError("k")

    srv = HttpServer()
    srv.register("/x", handler)
    srv.set_error_handler(lambda req_id, err: resp.fail_with_code(req_id, type(err).__name__))
    res = await srv.handle_request(Request.from_target("GET", "/x"))
    data = body_of(res)
    assert data["message"] == "KeyError"
    assert data["code"] == srv.request_count() - 1


def test_default_error_handler_values():
    res = default_error_handler(7, ValueError("x"))
    assert body_of(res) == {"code": 500, "message": "internal server error: 7"}
    res = default_error_handler(7, HttpError("oops", code=400, source=ValueError("y")))
    assert body_of(res) == {"code": 400, "message": "oops"}


@pytest.mark.asyncio
async def test_request_ids_increase():
    ids = []

    async def handler(ctx):
        ids.append(ctx.id)
        return resp.ok_with_empty()

    srv = HttpServer()
    srv.register("/x", handler)
    for _ in range(3):
        await srv.handle_request(Request.from_target("GET", "/x"))
    assert ids == sorted(ids)
    assert len(set(ids)) == 3
    assert srv.request_count() == ids[-1] + 1
    assert srv.active_connections() == 0


@pytest.mark.asyncio
async def test_middleware_order():
    calls = []

    class Tag(HttpMiddleware):
        def __init__(self, name):
            self.name = name

        async def handle(self, ctx, next):
            calls.append(self.name)
            return await next.run(ctx)

    async def handler(ctx):
        calls.append("endpoint")
        return resp.ok_with_empty()

    srv = HttpServer()
    first = srv.set_middleware(Tag("first"))
    srv.set_middleware(Tag("second"))
    srv.register("/x", handler)
    await srv.handle_request(Request.from_target("GET", "/x"))
    assert first.name == "first"
    assert calls == ["first", "second", "endpoint"]


@pytest.mark.asyncio
async def test_next_without_middlewares_calls_endpoint():
    res = await Next(hello).run(HttpContext(req=Request()))
    assert body_of(res) == {"code": 200, "data": "hello"}


@pytest.mark.asyncio
async def test_cors_middleware_applied():
    srv = HttpServer()
    cors = CorsMiddleware()
    assert srv.set_middleware(cors) is cors
    srv.register("/x", hello)
    res = await srv.handle_request(Request.from_target("GET", "/x"))
    assert res.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_request_tracked_by_cancel_manager():
    sender, manager = new_cancel()
    counts = []

    async def handler(ctx):
        counts.append(manager.count())
        return resp.ok_with_empty()

    srv = HttpServer()
    srv.set_cancel_manager(manager)
    srv.register("/x", handler)
    await srv.handle_request(Request.from_target("GET", "/x"))
    assert counts == [1]
    assert sender.count() == 0


@pytest.mark.asyncio
async def test_run_stops_on_cancel():
    sender, manager = new_cancel()
    started = asyncio.Event()
    srv = HttpServer()
    srv.set_cancel_manager(manager)

    async def on_start():
        started.set()

    task = asyncio.create_task(srv.run("127.0.0.1", 0, on_start))
    await asyncio.wait_for(started.wait(), 5)
    assert manager.count() == 1
    sender.cancel()
    await asyncio.wait_for(task, 5)
    assert task.exception() is None
    assert manager.count() == 0