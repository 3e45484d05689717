"""JSON reply envelope and helpers that build HTTP responses."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

CONTENT_TYPE = "Content-Type"
APPLICATION_JSON = "application/json;charset=UTF-8"


@dataclass
class Response:
    """An HTTP response: status, headers and body bytes."""

    status: int = HTTPStatus.OK
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class ApiResultError(Exception):
    """Raised when a failed ApiResult is unwrapped."""


@dataclass
class ApiResult(Generic[T]):
    """Universal API result: 200 means success, anything else failure."""

    code: int
    message: str | None = None
    data: T | None = None

    @classmethod
    def ok(cls, data: T) -> ApiResult[T]:
        return cls(200, None, data)

    @classmethod
    def ok_with_empty(cls) -> ApiResult[T]:
        return cls(200)

    @classmethod
    def fail(cls, message: str) -> ApiResult[T]:
        return cls(500, message)

    @classmethod
    def fail_with_code(cls, code: int, message: str) -> ApiResult[T]:
        return cls(code, message)

    def is_ok(self) -> bool:
        return self.code == 200

    def is_fail(self) -> bool:
        return self.code != 200

    def _failure_text(self) -> str:
        if self.message is not None:
            return f"ApiResult failed: code = {self.code}, message = {self.message}"
        return f"ApiResult failed: code = {self.code}"

    def unwrap(self) -> T | None:
        """Return the data, raising ApiResultError if the result is a failure."""
        if self.is_ok():
            return self.data
        raise ApiResultError(self._failure_text())

    def context(self, context: str) -> T | None:
        """Return the data, or raise an error described by ``context``."""
        if self.is_ok():
            return self.data
        raise ApiResultError(context) from ApiResultError(self._failure_text())

    def with_context(self, f: Callable[[], Any]) -> T | None:
        """Like context(), but the description is produced lazily by ``f``."""
        if self.is_ok():
            return self.data
        raise ApiResultError(str(f())) from ApiResultError(self._failure_text())

    def to_dict(self) -> dict[str, Any]:
        """Serializable form, omitting message and data when they are None."""
        result: dict[str, Any] = {"code": self.code}
        if self.message is not None:
            result["message"] = self.message
        if self.data is not None:
            result["data"] = self.data
        return result


def _to_json(value: Any) -> bytes:
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise ValueError("json serialization failed") from exc


def _as_bytes(body: bytes | bytearray | str) -> bytes:
    if isinstance(body, str):
        return body.encode("utf-8")
    return bytes(body)


def resp(status: int, body: bytes | bytearray | str) -> Response:
    """Build a JSON response with the given status and body."""
    return Response(int(status), {CONTENT_TYPE: APPLICATION_JSON}, _as_bytes(body))


def resp_with(result: ApiResult[Any]) -> Response:
    """Build a response whose body is the serialized data of ``result``."""
    status = HTTPStatus.OK if result.is_ok() else HTTPStatus.INTERNAL_SERVER_ERROR
    return resp(status, _to_json(result.data))


def resp_ok(body: bytes | bytearray | str) -> Response:
    """Build a 200 JSON response with the given body."""
    return resp(HTTPStatus.OK, body)


def ok_with_empty() -> Response:
    """A 200 reply carrying only the success code."""
    return resp_ok(b'{"code":200}')


def ok(data: Any) -> Response:
    """A 200 reply carrying ``data``."""
    return resp_ok(b'{"code":200,"data":' + _to_json(data) + b"}")


def ok_opt(data: Any | None) -> Response:
    """Like ok(), but an empty success reply when ``data`` is None."""
    return ok_with_empty() if data is None else ok(data)


def fail(message: str) -> Response:
    """A 500 reply with error code 500 and ``message``."""
    return fail_with_code(500, message)


def fail_with_code(code: int, message: str) -> Response:
    """A 500 reply with the given error code and message."""
    return fail_with_status(HTTPStatus.INTERNAL_SERVER_ERROR, code, message)


def fail_with_status(status: int, code: int, message: str) -> Response:
    """A reply with the given HTTP status, error code and message."""
    body = b'{"code":' + str(int(code)).encode() + b',"message":' + _to_json(message) + b"}"
    return resp(status, body)


def internal_server_error() -> Response:
    """The generic internal server error reply."""
    return fail("internal server error")