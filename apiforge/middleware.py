"""Request middlewares: the base type, access logging and CORS."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from .context import APPLICATION_JSON_TYPE, FORM_URLENCODED, HttpContext
from .resp import CONTENT_TYPE, Response

if TYPE_CHECKING:
    from .server import Next

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ACCESS_CONTROL_ALLOW_HEADERS = "Access-Control-Allow-Headers"
ACCESS_CONTROL_ALLOW_METHODS = "Access-Control-Allow-Methods"
ACCESS_CONTROL_ALLOW_ORIGIN = "Access-Control-Allow-Origin"
ALLOW = "Allow"
ALLOW_ANY = "*"
ALLOWED_METHODS = "GET,HEAD,OPTIONS"

_log = logging.getLogger("apiforge")


def _req_log(level: int, req_id: int, message: str) -> None:
    _log.log(level, "[http-req:%s] %s", req_id, message)


class HttpMiddleware:
    """A step in the request chain; the base class simply passes through."""

    async def handle(self, ctx: HttpContext, next: Next) -> Response:
        return await next.run(ctx)


class AccessLog(HttpMiddleware):
    """Logs each request, its parameters, timing and result."""

    async def handle(self, ctx: HttpContext, next: Next) -> Response:
        start = time.perf_counter()
        ip = ctx.remote_ip()
        req_id = ctx.id
        method = ctx.req.method
        path = ctx.req.path
        _req_log(logging.DEBUG, req_id, f"{method} \x1b[33m{path}\x1b[0m")

        if _log.isEnabledFor(logging.DEBUG) and ctx.req.query:
            _req_log(logging.DEBUG, req_id, f"[QUERY] {ctx.req.query}")

        if _log.isEnabledFor(TRACE):
            lines = "".join(f"\n\t{name}: {value}" for name, value in ctx.req.headers.items())
            _req_log(TRACE, req_id, f"[HEADER] ->{lines}")

        if _log.isEnabledFor(logging.DEBUG):
            content_type = ctx.req.header(CONTENT_TYPE)
            if content_type is not None and content_type.startswith(
                (APPLICATION_JSON_TYPE, FORM_URLENCODED)
            ):
                body = ctx.body.decode("utf-8", errors="replace")
                _req_log(logging.DEBUG, req_id, f"[BODY] {body}")

        try:
            res = await next.run(ctx)
        except Exception as exc:
            ms = int((time.perf_counter() - start) * 1000)
            _req_log(
                logging.ERROR,
                req_id,
                f"{method} \x1b[34m{path}\x1b[0m \x1b[31m500\x1b[0m {ms}ms, error: {exc!r}",
            )
            raise

        ms = int((time.perf_counter() - start) * 1000)
        color = 2 if res.status == 200 else 1
        _req_log(
            logging.INFO,
            req_id,
            f"{method} \x1b[34m{path} \x1b[3{color}m{int(res.status)}\x1b[0m {ms}ms, client: {ip}",
        )

        if _log.isEnabledFor(TRACE):
            _req_log(TRACE, req_id, f"[RESP] {res.body.decode('utf-8', errors='replace')}")
        return res


class CorsMiddleware(HttpMiddleware):
    """Answers preflight requests and marks every reply as cross-origin friendly."""

    async def handle(self, ctx: HttpContext, next: Next) -> Response:
        if ctx.req.method.upper() == "OPTIONS":
            return Response(
                200,
                {
                    ACCESS_CONTROL_ALLOW_HEADERS: ALLOW_ANY,
                    ACCESS_CONTROL_ALLOW_METHODS: ALLOW_ANY,
                    ACCESS_CONTROL_ALLOW_ORIGIN: ALLOW_ANY,
                    ALLOW: ALLOWED_METHODS,
                },
                b"",
            )
        res = await next.run(ctx)
        res.headers[ACCESS_CONTROL_ALLOW_HEADERS] = ALLOW_ANY
        res.headers[ACCESS_CONTROL_ALLOW_METHODS] = ALLOW_ANY
        res.headers[ACCESS_CONTROL_ALLOW_ORIGIN] = ALLOW_ANY
        return res