"""Incremental SQL text with bound parameters, and trimmed/where clause builders."""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

AND = " and "
OR = " or "
ON = " on "
WHERE = " where "

_log = logging.getLogger("apiforge")


class GenSqlError(Exception):
    """Raised when a statement cannot be rewritten as requested."""


class _LikeType(enum.Enum):
    FULL = "full"
    LEFT = "left"
    RIGHT = "right"


def db_log_sql(sql: str) -> None:
    """Log a statement at debug level."""
    _log.debug("[SQL]: %s", sql)


def db_log_params(params: Sequence[Any]) -> None:
    """Log statement parameters at debug level, if there are any."""
    if params:
        _log.debug("[SQL-PARAMS]: %r", list(params))


def db_log_sql_params(sql: str, params: Sequence[Any]) -> None:
    """Log a statement and its parameters."""
    db_log_sql(sql)
    db_log_params(params)


def trans_to_select_count(select_sql: str) -> str:
    """Turn a field-selecting statement into one that counts the matching rows."""
    from_pos = select_sql.find(" from ")
    if from_pos < 0:
        raise GenSqlError("unsearch ` from ` in sql")
    limit_pos = select_sql.rfind(" limit ")
    if limit_pos < 0:
        limit_pos = len(select_sql)
    return "select count(*)" + select_sql[from_pos:limit_pos]


def _make_col_expr(table: str, col: str, expr: str) -> str:
    if not col:
        raise ValueError("column name must not be empty")
    qualified = f"{table}.{col}" if table else col
    return f"{qualified} {expr}"


@dataclass
class SqlBuffer:
    """SQL text under construction together with its positional parameters."""

    sql: str = ""
    params: list[Any] = field(default_factory=list)

    def remove_suffix(self, suffix: str) -> bool:
        """Drop ``suffix`` from the end of the text; report whether it was there."""
        if suffix and self.sql.endswith(suffix):
            self.sql = self.sql[: -len(suffix)]
            return True
        return False

    def push_col(self, table: str, col: str) -> None:
        """Append ``table.col``, or just ``col`` when the table is empty."""
        if table:
            self.sql += table + "."
        self.sql += col

    def push_col_alias(self, table: str, col: str, alias: str) -> None:
        """Append a column, an optional ``as alias``, and a trailing separator."""
        self.push_col(table, col)
        if alias:
            self.sql += " as " + alias
        self.sql += ", "

    def replace_prefix(self, prefix: str, text: str) -> None:
        """Append ``text`` unless the text still ends with ``prefix``."""
        if not self.sql.endswith(prefix):
            self.sql += text

    def add_trimmed(self, prefix: str, prefix_overrides: Sequence[str], sql: str) -> None:
        """Append ``sql``, dropping a leading override when it directly follows ``prefix``."""
        if not sql:
            raise ValueError("sql fragment must not be empty")
        start_space = sql[0] == " "
        if prefix and self.sql.endswith(prefix):
            for item in prefix_overrides:
                if not start_space:
                    item = item[1:]
                if sql.startswith(item):
                    sql = sql[len(item):]
                    break
        if not start_space:
            self.sql += " "
        self.sql += sql

    def add_for_each(
        self,
        prefix: str,
        prefix_overrides: Sequence[str],
        sql_prefix: str,
        open: str,
        close: str,
        sep: str,
        values: Iterable[Any],
    ) -> None:
        """Append one placeholder per value, wrapped by ``open`` and ``close``."""
        if not sep:
            raise ValueError("separator must not be empty")
        items = list(values)
        if not items:
            return
        self.params.extend(items)
        self.add_trimmed(prefix, prefix_overrides, sql_prefix)
        self.sql += open + sep.join("?" for _ in items) + close

    def add_expr(
        self, prefix: str, and_or: str, table: str, col: str, op: str, val: Any
    ) -> None:
        """Append ``col op ?`` joined by ``and_or`` and bind ``val``."""
        if not col or not op:
            raise ValueError("column and operator must not be empty")
        self.replace_prefix(prefix, and_or)
        self.push_col(table, col)
        self.sql += f" {op} ?"
        self.params.append(val)


class TrimSql:
    """A clause that adds a prefix only when it gets content, and trims overrides.

    When the clause ends with nothing added, the prefix is removed again;
    otherwise a trailing suffix override is dropped and the suffix appended.
    """

    def __init__(
        self,
        prefix: str = "",
        suffix: str = "",
        prefix_overrides: Iterable[str] = (),
        suffix_overrides: Iterable[str] = (),
        parent: SqlBuffer | None = None,
    ) -> None:
        self.prefix_overrides = tuple(prefix_overrides)
        self.suffix_overrides = tuple(suffix_overrides)
        if any(not s for s in self.prefix_overrides + self.suffix_overrides):
            raise ValueError("overrides must not be empty strings")
        self.prefix = prefix
        self.suffix = suffix
        self.buffer = parent if parent is not None else SqlBuffer()
        self._finished = False
        if prefix:
            self.buffer.sql += prefix

    def finish(self) -> SqlBuffer:
        """Close the clause (only once) and return the underlying buffer."""
        if self._finished:
            return self.buffer
        self._finished = True
        buf = self.buffer
        if self.prefix and buf.sql.endswith(self.prefix):
            buf.remove_suffix(self.prefix)
        else:
            for item in self.suffix_overrides:
                if buf.remove_suffix(item):
                    break
            if self.suffix:
                buf.sql += self.suffix
        return buf

    def to_sql_params(self) -> tuple[str, list[Any]]:
        """Close the clause and return its text and parameters."""
        buf = self.finish()
        return buf.sql, list(buf.params)

    def _add(self, sql: str) -> None:
        self.buffer.add_trimmed(self.prefix, self.prefix_overrides, sql)

    def add_sql(self, sql: str) -> TrimSql:
        self._add(sql)
        return self

    def add_sql_if(self, cond: bool, sql: str) -> TrimSql:
        if cond:
            self._add(sql)
        return self

    def add_sql_if_cb(self, cond: bool, f: Callable[[], str]) -> TrimSql:
        """Add the fragment produced by ``f`` when ``cond`` holds; ``f`` is lazy."""
        if cond:
            self._add(f())
        return self

    def add_value(self, sql: str, val: Any) -> TrimSql:
        """Add a fragment with one placeholder and bind ``val``."""
        self._add(sql)
        self.buffer.params.append(val)
        return self

    def add_value_if(self, cond: bool, sql: str, val: Any) -> TrimSql:
        return self.add_value(sql, val) if cond else self

    def add_value_opt(self, sql: str, val: Any | None) -> TrimSql:
        return self if val is None else self.add_value(sql, val)

    def add_value_str(self, sql: str, val: str | None) -> TrimSql:
        return self.add_value(sql, val) if val else self

    def add_values(self, sql: str, values: Iterable[Any]) -> TrimSql:
        """Bind every value; add the fragment only if there was at least one."""
        before = len(self.buffer.params)
        self.buffer.params.extend(values)
        if len(self.buffer.params) > before:
            self._add(sql)
        return self

    def add_values_if(self, cond: bool, sql: str, values: Iterable[Any]) -> TrimSql:
        return self.add_values(sql, values) if cond else self

    def for_each(
        self, prefix: str, open: str, close: str, sep: str, values: Iterable[Any]
    ) -> TrimSql:
        """Add ``prefix open ?sep?... close`` with one placeholder per value."""
        self.buffer.add_for_each(
            self.prefix, self.prefix_overrides, prefix, open, close, sep, values
        )
        return self


class WhereSql(TrimSql):
    """A ``where`` clause whose conditions are joined with ``and``."""

    def __init__(self, parent: SqlBuffer | None = None) -> None:
        super().__init__(WHERE, "", (AND, OR), (), parent)

    def add_value_if_cb(self, cond: bool, val: Any, f: Callable[[], str]) -> WhereSql:
        if cond:
            self.add_value(f(), val)
        return self

    def expr(self, table: str, col: str, expr: str, val: Any) -> WhereSql:
        """Add ``table.col expr ?`` binding ``val``."""
        self.buffer.add_expr(self.prefix, AND, table, col, expr, val)
        return self

    def expr_if(self, pred: bool, table: str, col: str, expr: str, val: Any) -> WhereSql:
        return self.expr(table, col, expr, val) if pred else self

    def expr_opt(self, table: str, col: str, expr: str, val: Any | None) -> WhereSql:
        return self if val is None else self.expr(table, col, expr, val)

    def eq(self, table: str, col: str, val: Any) -> WhereSql:
        return self.expr(table, col, "=", val)

    def eq_if(self, pred: bool, table: str, col: str, val: Any) -> WhereSql:
        return self.eq(table, col, val) if pred else self

    def eq_opt(self, table: str, col: str, val: Any | None) -> WhereSql:
        return self if val is None else self.eq(table, col, val)

    def eq_str(self, table: str, col: str, val: str | None) -> WhereSql:
        return self.eq(table, col, val) if val else self

    def _like(self, table: str, col: str, like_type: _LikeType, val: str) -> WhereSql:
        if val:
            left = "" if like_type is _LikeType.RIGHT else "%"
            right = "" if like_type is _LikeType.LEFT else "%"
            self.buffer.add_expr(self.prefix, AND, table, col, "like", f"{left}{val}{right}")
        return self

    def like(self, table: str, col: str, val: str) -> WhereSql:
        """Match ``val`` anywhere in the column; an empty value adds nothing."""
        return self._like(table, col, _LikeType.FULL, val)

    def like_opt(self, table: str, col: str, val: str | None) -> WhereSql:
        return self if val is None else self.like(table, col, val)

    def like_right(self, table: str, col: str, val: str) -> WhereSql:
        """Match columns starting with ``val``; an empty value adds nothing."""
        return self._like(table, col, _LikeType.RIGHT, val)

    def like_right_opt(self, table: str, col: str, val: str | None) -> WhereSql:
        return self if val is None else self.like_right(table, col, val)

    def between(self, table: str, col: str, v1: Any, v2: Any) -> WhereSql:
        """Add the closed range condition ``v1 <= col <= v2``."""
        buf = self.buffer
        buf.replace_prefix(self.prefix, AND)
        buf.push_col(table, col)
        buf.sql += " between ? and ?"
        buf.params.extend((v1, v2))
        return self

    def between_opt(self, table: str, col: str, v1: Any | None, v2: Any | None) -> WhereSql:
        if v1 is None or v2 is None:
            return self
        return self.between(table, col, v1, v2)

    def in_(self, table: str, col: str, values: Iterable[Any]) -> WhereSql:
        """Add ``col in (?, ...)``; nothing is added for an empty collection."""
        open_ = _make_col_expr(table, col, "in (")
        self.buffer.add_for_each(
            self.prefix, self.prefix_overrides, AND, open_, ")", ", ", values
        )
        return self

    def in_opt(self, table: str, col: str, values: Iterable[Any] | None) -> WhereSql:
        return self if values is None else self.in_(table, col, values)