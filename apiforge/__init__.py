"""Asyncio HTTP server for JSON REST APIs with a fluent SQL statement builder."""

__version__ = "0.1.0"
__all__ = [
    "errors",
    "resp",
    "cancel",
    "context",
    "middleware",
    "server",
    "sqltrim",
    "sqlbuild",
]