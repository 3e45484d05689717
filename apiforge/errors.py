"""Error type carried through request handlers, plus small validation helpers."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

T = TypeVar("T")

_REQUIRED_SUFFIX = " cannot be null"


class HttpError(Exception):
    """An error that maps to an API failure reply with a code and message."""

    def __init__(self, message: str, code: int = 500, source: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.source = source
        if source is not None:
            self.__cause__ = source

    def __str__(self) -> str:
        text = f"code = {self.code}, message = {self.message}"
        if self.source is not None:
            text += f", source = {self.source!r}"
        return text


def _lookup(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def check_required(obj: Any, *args: str) -> None:
    """Raise HttpError for the first named field of ``obj`` that is None."""
    for name in args:
        if _lookup(obj, name) is None:
            raise HttpError(f"{name}{_REQUIRED_SUFFIX}")


def assign_required(obj: Any, *args: str) -> tuple[Any, ...]:
    """Return the named fields of ``obj`` as a tuple, raising if any is None."""
    values = []
    for name in args:
        value = _lookup(obj, name)
        if value is None:
            raise HttpError(f"{name}{_REQUIRED_SUFFIX}")
        values.append(value)
    return tuple(values)


def fail_if(condition: bool, message: str) -> None:
    """Raise HttpError with ``message`` when ``condition`` is true."""
    if condition:
        raise HttpError(message)


def if_else(condition: bool, value1: T, value2: T) -> T:
    """Return ``value1`` if ``condition`` holds, otherwise ``value2``."""
    return value1 if condition else value2