"""Routing HTTP server: handler lookup, middleware chain and the listening loop."""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, TypeVar

from aiohttp import web

from . import resp
from .cancel import CancelManager
from .context import HttpContext, Request
from .errors import HttpError
from .middleware import TRACE, HttpMiddleware
from .resp import Response

Handler = Callable[[HttpContext], Awaitable[Response]]
ErrorHandler = Callable[[int, BaseException], Response]
M = TypeVar("M", bound=HttpMiddleware)

_U32_MASK = 0xFFFFFFFF

_log = logging.getLogger("apiforge")


def _req_log(level: int, req_id: int, message: str) -> None:
    _log.log(level, "[http-req:%s] %s", req_id, message)


class FuzzyFind(enum.Enum):
    """How a request path may fall back to a registered parent path."""

    NONE = "none"
    """Exact match only."""
    ONE = "one"
    """Fall back to the immediate parent path."""
    MANY = "many"
    """Fall back through every ancestor path."""


@dataclass
class Next:
    """The remaining part of the request chain: middlewares, then the endpoint."""

    endpoint: Handler
    middlewares: Sequence[HttpMiddleware] = ()

    async def run(self, ctx: HttpContext) -> Response:
        """Call the next middleware, or the endpoint when none are left."""
        if self.middlewares:
            current, *rest = self.middlewares
            return await current.handle(ctx, Next(self.endpoint, tuple(rest)))
        return await self.endpoint(ctx)


def default_error_handler(req_id: int, err: BaseException) -> Response:
    """Turn an exception raised while handling a request into a failure reply."""
    if isinstance(err, HttpError):
        if err.source is not None:
            _req_log(logging.ERROR, req_id, repr(err))
        code, message = err.code, err.message
    else:
        _req_log(logging.ERROR, req_id, f"internal server error, {err!r}")
        code, message = 500, f"internal server error: {req_id}"

    try:
        return resp.fail_with_code(code, message)
    except (ValueError, TypeError) as exc:
        _req_log(logging.ERROR, req_id, f"handle_error except: {exc!r}")
        return Response(HTTPStatus.INTERNAL_SERVER_ERROR, {}, b"internal server error")


async def _handle_not_found(ctx: HttpContext) -> Response:
    return resp.fail_with_status(HTTPStatus.NOT_FOUND, 404, "Not Found")


def _fix_path_of_reg(path: str) -> str:
    if not path:
        raise ValueError("route path must not be empty")
    if len(path) > 2 and path.endswith("/*"):
        path = path[:-1]
    return path if path.startswith("/") else "/" + path


class HttpServer:
    """An HTTP/1.1 server that dispatches requests to registered async handlers."""

    def __init__(self) -> None:
        self._id = 1
        self._count = 0
        self._context_path = ""
        self._router: dict[str, Handler] = {}
        self._middlewares: list[HttpMiddleware] = []
        self._default_handler: Handler = _handle_not_found
        self._error_handler: ErrorHandler = default_error_handler
        self._fuzzy_find = FuzzyFind.NONE
        self._cancel_manager: CancelManager | None = None

    def request_count(self) -> int:
        """The request id counter: the id the next request will receive."""
        return self._id

    def active_connections(self) -> int:
        """Number of requests currently being handled."""
        return self._count

    def set_context_path(self, prefix: str) -> None:
        """Set the path prefix every API path lives under; empty leaves it unchanged."""
        if not prefix:
            return
        if not prefix.startswith("/"):
            prefix = "/" + prefix
        if not prefix.endswith("/"):
            prefix += "/"
        self._context_path = prefix

    def set_fuzzy_find(self, fuzzy_find: FuzzyFind) -> None:
        self._fuzzy_find = fuzzy_find

    def set_default_handler(self, handler: Handler) -> None:
        """Handler used when no registered path matches."""
        self._default_handler = handler

    def set_error_handler(self, handler: ErrorHandler) -> None:
        """Function turning a handler exception into a response."""
        self._error_handler = handler

    def register(self, path: str, handler: Handler) -> None:
        """Register ``handler`` for ``path``; a trailing ``/*`` marks a parent route."""
        self._router[_fix_path_of_reg(path)] = handler

    def set_middleware(self, middleware: M) -> M:
        """Append a middleware to the chain and return it."""
        self._middlewares.append(middleware)
        return middleware

    def set_cancel_manager(self, cancel: CancelManager) -> None:
        """Use ``cancel`` to learn when the server should shut down."""
        self._cancel_manager = cancel

    def find_handler(self, path: str) -> tuple[Handler | None, int]:
        """Look up the handler for ``path`` and the length of the matched prefix.

        The length is 0 for an exact match; for a fuzzy match it is where the
        path parameters begin in the request path.
        """
        prefix_len = 0
        if self._context_path:
            if not path.startswith(self._context_path):
                return None, 0
            prefix_len = len(self._context_path) - 1
            path = path[prefix_len:]
        if len(path) > 1 and path.endswith("/"):
            path = path[:-1]

        handler = self._router.get(path)
        if handler is not None:
            return handler, 0

        if self._fuzzy_find is FuzzyFind.ONE:
            pos = path.rfind("/")
            if pos >= 0:
                handler = self._router.get(path[: pos + 1])
                if handler is not None:
                    return handler, prefix_len + pos + 1
        elif self._fuzzy_find is FuzzyFind.MANY:
            pos = path.rfind("/")
            while pos >= 0:
                handler = self._router.get(path[: pos + 1])
                if handler is not None:
                    return handler, prefix_len + pos + 1
                path = path[:pos]
                pos = path.rfind("/")

        return None, 0

    def _next_id(self) -> int:
        current = self._id
        self._id = (self._id + 1) & _U32_MASK
        if current == 0:
            current = self._id
            self._id = (self._id + 1) & _U32_MASK
        return current

    async def handle_request(
        self, request: Request, body: bytes = b"", addr: tuple[str, int] | None = None
    ) -> Response:
        """Route one request through the middlewares to its handler."""
        req_id = self._next_id()
        self._count += 1
        receiver = self._cancel_manager.new_task_cancel() if self._cancel_manager else None
        try:
            endpoint, path_len = self.find_handler(request.path)
            chain = Next(endpoint or self._default_handler, tuple(self._middlewares))
            ctx = HttpContext(req=request, body=body, path_len=path_len, addr=addr, id=req_id)
            try:
                return await chain.run(ctx)
            except Exception as exc:
                return self._error_handler(req_id, exc)
        finally:
            self._count -= 1
            if receiver is not None:
                receiver.finish()

    async def _serve_aiohttp(self, request: web.BaseRequest) -> web.StreamResponse:
        try:
            body = await request.read()
        except Exception as exc:
            req_id = self._next_id()
            _req_log(logging.ERROR, req_id, f"Failed to read the request body: {exc!r}")
            res = self._error_handler(req_id, HttpError("network error", source=exc))
        else:
            query = request.rel_url.raw_query_string
            req = Request(
                method=request.method,
                path=request.rel_url.raw_path,
                query=query or None,
                headers=dict(request.headers),
            )
            peer = request.transport.get_extra_info("peername") if request.transport else None
            addr = (str(peer[0]), int(peer[1])) if peer else None
            res = await self.handle_request(req, body, addr)
        return web.Response(status=int(res.status), headers=res.headers, body=res.body)

    async def run(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        on_start: Callable[[], Any] | None = None,
    ) -> None:
        """Listen on ``host:port`` and serve until the cancel signal (or forever).

        ``on_start`` is called, and awaited if needed, once the socket is bound.
        """
        runner = web.ServerRunner(web.Server(self._serve_aiohttp))
        await runner.setup()
        try:
            site = web.TCPSite(runner, host, port)
            await site.start()
            if on_start is not None:
                result = on_start()
                if inspect.isawaitable(result):
                    await result
            self._log_api_info(host, port)

            if self._cancel_manager is None:
                await asyncio.Event().wait()
            else:
                receiver = self._cancel_manager.new_task_cancel()
                try:
                    await receiver.cancelled()
                finally:
                    receiver.finish()
                _log.log(
                    TRACE,
                    "end listening task, wait for the number of cancelled tasks: %s",
                    receiver.count(),
                )
        finally:
            await runner.cleanup()

    def _log_api_info(self, host: str, port: int) -> None:
        if _log.isEnabledFor(TRACE):
            if not self._router:
                text = "Registered interface: <Empty>"
            elif self._context_path:
                text = f"Registered interface: prefix = {self._context_path[:-1]}"
            else:
                text = "Registered interface:"
            for path in self._router:
                text += f"\n\t{path}*" if path.endswith("/") else f"\n\t{path}"
            _log.log(TRACE, "%s", text)
        _log.info("Startup http server on \x1b[34m%s:%s\x1b[0m", host, port)


def register_apis(
    server: HttpServer,
    base: str,
    routes: Mapping[str, Handler] | Iterable[tuple[str, Handler]],
) -> None:
    """Register every ``(path, handler)`` in ``routes`` under the ``base`` path."""
    items = routes.items() if isinstance(routes, Mapping) else routes
    for path, handler in items:
        server.register(f"{base}{path}", handler)