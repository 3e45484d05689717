"""Per-request context handed to API handlers."""

from __future__ import annotations

import ipaddress
import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar
from urllib.parse import parse_qsl, unquote

from .errors import HttpError
from .resp import CONTENT_TYPE

T = TypeVar("T")

APPLICATION_JSON_TYPE = "application/json"
FORM_URLENCODED = "application/x-www-form-urlencoded"

_NOT_JSON = "the request must be in application/json format"
_NOT_FORM = "the request must be in application/x-www-form-urlencoded format"
_U32_MAX = 0xFFFFFFFF
_UNSIGNED = re.compile(r"\+?[0-9]+")
_MISSING = object()

_log = logging.getLogger("apiforge")


def _req_log(level: int, req_id: int, message: str) -> None:
    _log.log(level, "[http-req:%s] %s", req_id, message)


def _form_pairs(data: bytes | str) -> list[tuple[str, str]]:
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    if not text:
        return []
    return parse_qsl(text, keep_blank_values=True)


def _is_header_text(value: str) -> bool:
    return all(ch == "\t" or " " <= ch <= "~" for ch in value)


def _parse_ipv4(text: str) -> ipaddress.IPv4Address | None:
    try:
        return ipaddress.IPv4Address(text)
    except ValueError:
        return None


def _json_path(doc: Any, path: str) -> Any:
    node = doc
    for part in path.split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return _MISSING
    return node


def _json_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


@dataclass
class Request:
    """The request line and headers of an incoming HTTP request."""

    method: str = "GET"
    path: str = "/"
    query: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_target(
        cls, method: str, target: str, headers: Mapping[str, str] | None = None
    ) -> Request:
        """Build a request from a request target such as ``/a/b?x=1``."""
        path, sep, query = target.partition("?")
        return cls(method, path or "/", query if sep else None, dict(headers or {}))

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        value = self.headers.get(name)
        if value is not None:
            return value
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass
class HttpContext:
    """Everything a handler needs to know about one request."""

    req: Request
    body: bytes = b""
    path_len: int = 0
    addr: tuple[str, int] | None = None
    id: int = 0
    uid: str = ""
    attrs: dict[str, Any] | None = None

    def is_json(self) -> bool:
        return bool(self.body) and self.is_content_type(APPLICATION_JSON_TYPE)

    def is_form_urlencoded(self) -> bool:
        return bool(self.body) and self.is_content_type(FORM_URLENCODED)

    def parse_json(self) -> Any:
        """Parse the JSON body, raising HttpError if it is missing or invalid."""
        value = self.parse_json_opt()
        if value is None:
            raise HttpError("required body")
        return value

    def parse_json_opt(self) -> Any:
        """Parse the JSON body; None when the body is empty."""
        if not self.body:
            return None
        if not self.is_json():
            raise HttpError(_NOT_JSON)
        try:
            return json.loads(self.body)
        except ValueError as exc:
            _req_log(logging.ERROR, self.id, f"deserialize body to json fail: {exc!r}")
            raise HttpError(str(exc), source=exc) from exc

    def parse_json_fast(self) -> Any:
        """Validate and parse the JSON body with specific error messages."""
        if not self.is_json():
            raise HttpError(_NOT_JSON)
        try:
            text = self.body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise HttpError("request body is not utf8 string") from exc
        try:
            return json.loads(text)
        except ValueError as exc:
            raise HttpError("request body is not json string") from exc

    def parse_form(self) -> dict[str, str]:
        """Parse an x-www-form-urlencoded body into a dict."""
        if not self.is_form_urlencoded():
            raise HttpError(_NOT_FORM)
        return dict(_form_pairs(self.body))

    def parse_query(self) -> dict[str, str]:
        """Parse the URL query string into a dict."""
        return dict(_form_pairs(self.req.query or ""))

    def get_path_param(self, index: int) -> str | None:
        """The decoded path segment at ``index`` after the matched route prefix."""
        if self.path_len <= 0 or index < 0:
            return None
        parts = self.req.path[self.path_len:].split("/")
        if index >= len(parts):
            return None
        try:
            value = unquote(parts[index], errors="strict")
        except UnicodeDecodeError as exc:
            _req_log(logging.ERROR, self.id, f"url decode value error: {exc!r}")
            return None
        return value.replace("+", " ")

    def get_url_param(self, key: str, convert: Callable[[str], T] = str) -> T | None:
        """Convert the first query value for ``key``; HttpError if it is malformed."""
        return self._get_param(self.req.query or "", key, convert)

    def get_url_param_str(self, key: str) -> str | None:
        if self.req.query is None:
            return None
        return self._get_param_str(self.req.query, key)

    def get_form_param(self, key: str, convert: Callable[[str], T] = str) -> T | None:
        """Convert the first form body value for ``key``; HttpError if malformed."""
        return self._get_param(self.body, key, convert)

    def get_form_param_str(self, key: str) -> str | None:
        if not self.body:
            return None
        return self._get_param_str(self.body, key)

    def get_param_from_multi(self, name: str, idx: int | None = None) -> str | None:
        """Look up a parameter in JSON body, form body, query, then path."""
        if self.is_json():
            try:
                text = self.body.decode("utf-8")
            except UnicodeDecodeError:
                _req_log(logging.WARNING, self.id, "request body is not utf8 string")
            else:
                try:
                    doc = json.loads(text)
                except ValueError:
                    doc = _MISSING
                if doc is not _MISSING:
                    value = _json_path(doc, name)
                    if value is not _MISSING:
                        return _json_text(value)

        if self.is_form_urlencoded():
            value = self._get_param_str(self.body, name)
            if value is not None:
                return value

        value = self.get_url_param_str(name)
        if value is not None:
            return value

        return None if idx is None else self.get_path_param(idx)

    def remote_ip(self) -> ipaddress.IPv4Address:
        """Client address: X-Real-IP, then X-Forwarded-For, then the socket peer."""
        real_ip = self.req.header("X-Real-IP")
        if real_ip is not None:
            ip = _parse_ipv4(real_ip)
            if ip is not None:
                return ip

        forwarded = self.req.header("X-Forwarded-For")
        if forwarded is not None:
            ip = _parse_ipv4(forwarded.split(",")[0])
            if ip is not None:
                return ip

        if self.addr is not None:
            ip = _parse_ipv4(str(self.addr[0]))
            if ip is not None:
                return ip
        return ipaddress.IPv4Address(0)

    def header(self, key: str) -> str | None:
        value = self.req.header(key)
        if value is None:
            return None
        if not _is_header_text(value):
            _req_log(logging.WARNING, self.id, f"header key:{key} is not a ascii string")
            return None
        return value

    def attr(self, key: str) -> Any:
        return None if self.attrs is None else self.attrs.get(key)

    def set_attr(self, key: str, value: Any) -> None:
        if self.attrs is None:
            self.attrs = {}
        self.attrs[key] = value

    def user_id(self) -> int:
        """The logged-in user's numeric id, or 0 when it is absent or invalid."""
        if not _UNSIGNED.fullmatch(self.uid):
            return 0
        value = int(self.uid)
        return value if value <= _U32_MAX else 0

    def is_content_type(self, content_type: str) -> bool:
        value = self.req.header(CONTENT_TYPE)
        return value is not None and value.startswith(content_type)

    @staticmethod
    def _get_param(data: bytes | str, key: str, convert: Callable[[str], T]) -> T | None:
        for name, value in _form_pairs(data):
            if name == key:
                try:
                    return convert(value)
                except (ValueError, TypeError) as exc:
                    raise HttpError(f"{key} format error") from exc
        return None

    @staticmethod
    def _get_param_str(data: bytes | str, key: str) -> str | None:
        for name, value in _form_pairs(data):
            if name == key:
                return value
        return None