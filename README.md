# apiforge

A small asyncio HTTP server for JSON REST APIs, plus a fluent builder for
parameterised SQL statements.

## Features

- `apiforge.server`: `HttpServer` keeps a route table. It supports an
  optional context path (`set_context_path`) and fuzzy matching of parent
  paths (`FuzzyFind.NONE`, `FuzzyFind.ONE`, `FuzzyFind.MANY`), so trailing
  path segments can be read as parameters. A route registered as `/user/*`
  matches `/user/<anything>`. `register_apis` registers a group of routes
  under one base path. `HttpServer.run` serves over aiohttp.
  `HttpServer.handle_request` sends a single request through the chain
  without opening a socket.
- `apiforge.middleware`: `HttpMiddleware` is the base class of the middleware
  chain (`Next`). The module also provides `AccessLog`, which logs each
  request with its timing and result, and `CorsMiddleware`, which answers
  `OPTIONS` requests and adds `Access-Control-Allow-*` headers to every reply.
- `apiforge.context`: an `HttpContext` is passed to every handler. Its
  methods are:
  - `parse_json`, `parse_json_opt` and `parse_json_fast` parse JSON bodies.
  - `parse_form` and `parse_query` parse form bodies and query strings.
  - `get_url_param`, `get_form_param` and `get_path_param` read single
    parameters.
  - `get_param_from_multi` looks a name up in the body, then the query, then
    the path.
  - `remote_ip` returns the client address. It prefers `X-Real-IP`, then
    `X-Forwarded-For`.
  - `header` reads a header, and `attr`/`set_attr` hold per-request values.
- `apiforge.resp`: functions for uniform JSON replies: `ok`, `ok_opt`,
  `ok_with_empty`, `fail`, `fail_with_code`, `fail_with_status` and
  `internal_server_error`. The module also has the `ApiResult` envelope and
  a plain `Response` dataclass.
- `apiforge.errors`: `HttpError` carries a code and a message. The server's
  `default_error_handler` turns any other exception into a code-500 JSON
  reply. The helpers `check_required`, `assign_required` and `fail_if` raise
  `HttpError` when a check fails.
- `apiforge.cancel`: cooperative shutdown with `new_cancel`, `CancelSender`,
  `CancelManager` and `CancelReceiver`.
- `apiforge.sqltrim` and `apiforge.sqlbuild`: the builders `SelectSql`,
  `InsertSql`, `UpdateSql`, `DeleteSql`, `BatchInsertSql`, `BatchDeleteSql`,
  `WhereSql` and `TrimSql` each return the statement text together with its
  list of parameters.

## Installation

```
pip install apiforge
```

## A minimal server

```python
import asyncio

from apiforge.errors import fail_if
from apiforge.middleware import AccessLog, CorsMiddleware
from apiforge.resp import ok
from apiforge.server import FuzzyFind, HttpServer, register_apis


async def ping(ctx):
    return ok({"pong": True})


async def user(ctx):
    user_id = ctx.get_path_param(0)
    fail_if(user_id is None, "user id is required")
    return ok({"id": user_id})


server = HttpServer()
server.set_context_path("/api")
server.set_fuzzy_find(FuzzyFind.ONE)
server.set_middleware(AccessLog())
server.set_middleware(CorsMiddleware())
register_apis(server, "", {"/ping": ping, "/user/*": user})

asyncio.run(server.run("127.0.0.1", 8080, None))
```

With this server:

- `GET /api/ping` returns `{"code":200,"data":{"pong":true}}`.
- `GET /api/user/42` returns `{"code":200,"data":{"id":"42"}}`.
- An unknown path returns status 404 with
  `{"code":404,"message":"Not Found"}`.

## Graceful shutdown

```python
from apiforge.cancel import new_cancel

sender, manager = new_cancel()
server.set_cancel_manager(manager)
# ... later, from another task:
await sender.cancel_and_wait(5)
```

Once the signal is sent, `HttpServer.run` returns. `cancel_and_wait` then
waits up to the given number of seconds for in-flight requests to finish.

## Building SQL

```python
from apiforge.sqlbuild import SelectSql

sql, params = (
    SelectSql()
    .select("u", "id")
    .select("u", "name")
    .from_as("t_user", "u")
    .where_sql(lambda w: w.eq("u", "status", 1).like("u", "name", "kim"))
    .order_by("u", "id")
    .limits(0, 20)
    .build()
)
# sql:    select u.id, u.name from t_user u where u.status = ? and u.name like ? order by u.id limit 0, 20
# params: [1, "%kim%"]
```

`SelectSql.build_with_page` produces both the paged statement and a matching
count statement. `apiforge.sqltrim.trans_to_select_count` converts an
existing select statement into a count statement.

## What this package does not do

- There is no database access. The SQL builders only produce statement text
  and parameters. Connecting to a database, running the statements and
  reading the results are left to whatever driver you use.
- There are no table-mapping or model classes. Statements are always built
  with the builders above.
- The server handles plain HTTP requests only. It has no websocket endpoints
  and no special support for file uploads.

## Running the tests

```
pip install -e ".[test]"
pytest
```