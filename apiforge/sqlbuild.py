"""Fluent builders for insert, select, update and delete statements."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from .sqltrim import AND, ON, SqlBuffer, WhereSql, db_log_sql, db_log_sql_params

_SEP = ", "


@dataclass(frozen=True)
class RawSql:
    """A SQL fragment inserted verbatim in place of a bound ``?`` placeholder."""

    sql: str

    def __post_init__(self) -> None:
        if not self.sql:
            raise ValueError("raw sql must not be empty")


@dataclass(frozen=True)
class FieldInfo:
    """A column to select: optional table (or alias), column name, optional alias."""

    table: str
    column: str
    alias: str = ""


def _render_values(values: Iterable[Any], params: list[Any]) -> str:
    """Join values as placeholders (raw fragments inline), collecting bound params."""
    parts = []
    for value in values:
        if isinstance(value, RawSql):
            parts.append(value.sql)
        else:
            parts.append("?")
            params.append(value)
    return _SEP.join(parts)


def _require(name: str, what: str) -> None:
    if not name:
        raise ValueError(f"{what} must not be empty")


class InsertSql:
    """Builds ``insert into table (cols) values (...)`` one column at a time."""

    def __init__(self, table: str) -> None:
        _require(table, "table name")
        self._table = table
        self._columns: list[str] = []
        self._values: list[Any] = []

    def value(self, col: str, val: Any) -> InsertSql:
        """Add a column bound to ``val`` (a RawSql value is inlined instead)."""
        _require(col, "column name")
        self._columns.append(col)
        self._values.append(val)
        return self

    def value_opt(self, col: str, val: Any | None) -> InsertSql:
        return self if val is None else self.value(col, val)

    def value_str(self, col: str, val: str | None) -> InsertSql:
        return self.value(col, val) if val else self

    def value_sql(self, col: str, raw: str | RawSql) -> InsertSql:
        """Add a column whose value is the raw SQL expression ``raw``."""
        return self.value(col, raw if isinstance(raw, RawSql) else RawSql(raw))

    def build(self) -> tuple[str, list[Any]]:
        if not self._values:
            raise ValueError("insert statement has no values")
        params: list[Any] = []
        values = _render_values(self._values, params)
        sql = f"insert into {self._table} ({_SEP.join(self._columns)}) values ({values})"
        db_log_sql_params(sql, params)
        return sql, params


class SelectSql:
    """Builds a select statement: columns, from, joins, where, grouping, ordering."""

    def __init__(self) -> None:
        self._buf = SqlBuffer("select ")

    def select_all_with_table(self, table: str) -> SelectSql:
        return self.select_as(table, "*", "")

    def select(self, table: str, col: str) -> SelectSql:
        return self.select_as(table, col, "")

    def select_as(self, table: str, col: str, alias: str) -> SelectSql:
        _require(col, "column name")
        self._buf.push_col_alias(table, col, alias)
        return self

    def select_columns(self, table: str, cols: Sequence[str]) -> SelectSql:
        if not cols or not all(cols):
            raise ValueError("columns must be a non-empty list of names")
        for col in cols:
            self._buf.push_col_alias(table, col, "")
        return self

    def select_with_iter(self, fields: Iterable[FieldInfo]) -> SelectSql:
        for item in fields:
            self.select_as(item.table, item.column, item.alias)
        return self

    def from_(self, table: str) -> SelectSql:
        return self.from_as(table, "")

    def from_as(self, table: str, alias: str) -> SelectSql:
        """Add the from clause; selects ``*`` when no column was chosen."""
        _require(table, "table name")
        buf = self._buf
        if not buf.remove_suffix(_SEP):
            buf.sql += "*"
        buf.sql += " from " + table
        if alias:
            buf.sql += " " + alias
        return self

    def _join(self, join_type: str, table: str, alias: str,
              f: Callable[[JoinSql], Any]) -> SelectSql:
        f(JoinSql(self, join_type, table, alias))
        return self

    def join(self, table: str, alias: str, f: Callable[[JoinSql], Any]) -> SelectSql:
        return self._join(" join ", table, alias, f)

    def left_join(self, table: str, alias: str, f: Callable[[JoinSql], Any]) -> SelectSql:
        return self._join(" left join ", table, alias, f)

    def right_join(self, table: str, alias: str, f: Callable[[JoinSql], Any]) -> SelectSql:
        return self._join(" right join ", table, alias, f)

    def full_join(self, table: str, alias: str, f: Callable[[JoinSql], Any]) -> SelectSql:
        return self._join(" full join ", table, alias, f)

    def where_sql(self, f: Callable[[WhereSql], Any]) -> SelectSql:
        """Add a where clause filled in by ``f``; nothing is added if it stays empty."""
        where = WhereSql(self._buf)
        f(where)
        where.finish()
        return self

    def group_by(self, table: str, col: str) -> SelectSql:
        return self.group_by_columns(table, [col])

    def group_by_columns(self, table: str, cols: Sequence[str]) -> SelectSql:
        if not cols or not all(cols):
            raise ValueError("columns must be a non-empty list of names")
        buf = self._buf
        buf.sql += " group by "
        for col in cols:
            buf.push_col_alias(table, col, "")
        buf.remove_suffix(_SEP)
        return self

    def having(self, expr: str) -> SelectSql:
        self._buf.sql += " having " + expr
        return self

    def order_by(self, table: str, col: str) -> SelectSql:
        return self.order_by_columns(table, [col])

    def order_by_columns(self, table: str, cols: Sequence[str]) -> SelectSql:
        return self.order_by_with_iter((table, col, False) for col in cols)

    def order_by_with_iter(self, items: Iterable[tuple[str, str, bool]]) -> SelectSql:
        """Order by ``(table, column, descending)`` triples, in the given order."""
        parts = []
        for table, col, desc in items:
            _require(col, "column name")
            part = f"{table}.{col}" if table else col
            parts.append(part + " desc" if desc else part)
        if not parts:
            raise ValueError("order by needs at least one column")
        self._buf.sql += " order by " + _SEP.join(parts)
        return self

    def limits(self, offset: int, count: int) -> SelectSql:
        """Add ``limit offset, count``; a zero count adds nothing."""
        if count > 0:
            self._buf.sql += f" limit {offset}, {count}"
        return self

    def add_sql(self, sql: str) -> SelectSql:
        self._buf.sql += sql
        return self

    def add_sql_if(self, cond: bool, sql: str) -> SelectSql:
        return self.add_sql(sql) if cond else self

    def add_sql_val(self, sql: str, val: Any) -> SelectSql:
        self._buf.params.append(val)
        return self.add_sql(sql)

    def add_sql_val_if(self, cond: bool, sql: str, val: Any) -> SelectSql:
        return self.add_sql_val(sql, val) if cond else self

    def add_sql_vals(self, sql: str, values: Iterable[Any]) -> SelectSql:
        self._buf.params.extend(values)
        return self.add_sql(sql)

    def add_sql_vals_if(self, cond: bool, sql: str, values: Iterable[Any]) -> SelectSql:
        return self.add_sql_vals(sql, values) if cond else self

    def build(self) -> tuple[str, list[Any]]:
        sql, params = self._buf.sql, list(self._buf.params)
        db_log_sql_params(sql, params)
        return sql, params

    def build_with_page(
        self, page_index: int, page_size: int, total: int | None = None
    ) -> tuple[str, str, list[Any]]:
        """Return ``(count_sql, paged_sql, params)`` for 1-based page ``page_index``.

        Paging applies only when both numbers are positive; the count statement
        is produced only when ``total`` is not already known.
        """
        sql = self._buf.sql
        params = list(self._buf.params)
        total_sql = ""
        if page_index > 0 and page_size > 0:
            if total is None:
                pos = sql.find(" from ")
                if pos >= 0:
                    total_sql = "select count(*)" + sql[pos:]
                db_log_sql(total_sql)
            sql += f" limit {(page_index - 1) * page_size}, {page_size}"
        db_log_sql_params(sql, params)
        return total_sql, sql, params


class JoinSql:
    """The ``on`` conditions of one join inside a SelectSql."""

    def __init__(self, parent: SelectSql, join_type: str, table: str, alias: str) -> None:
        _require(table, "table name")
        self._buf = parent._buf
        self._buf.sql += join_type + table
        if alias:
            self._buf.sql += " " + alias
        self._buf.sql += ON
        self._table = alias or table

    def _join_on(self, col1: str, expr: str, table2: str, col2: str) -> None:
        buf = self._buf
        buf.replace_prefix(ON, AND)
        buf.sql += f"{self._table}.{col1} {expr} "
        if table2:
            buf.sql += table2 + "."
        buf.sql += col2

    def on(self, expr: str) -> JoinSql:
        """Add a raw join condition."""
        _require(expr, "join condition")
        self._buf.replace_prefix(ON, AND)
        self._buf.sql += expr
        return self

    def on_eq(self, self_col: str, other_table: str, other_col: str) -> JoinSql:
        """Join this table's column to a column of another table."""
        for name in (self_col, other_table, other_col):
            _require(name, "join column")
        self._join_on(self_col, " = ", other_table, other_col)
        return self

    def on_val(self, self_col: str, expr: str, val: Any) -> JoinSql:
        """Compare this table's column with a bound value using ``expr``."""
        _require(self_col, "column name")
        _require(expr, "comparison")
        self._buf.params.append(val)
        self._join_on(self_col, expr, "", "?")
        return self

    def on_val_opt(self, col: str, expr: str, val: Any | None) -> JoinSql:
        return self if val is None else self.on_val(col, expr, val)

    def on_eq_val(self, col: str, val: Any) -> JoinSql:
        return self.on_val(col, "=", val)

    def on_eq_val_opt(self, col: str, val: Any | None) -> JoinSql:
        return self if val is None else self.on_val(col, "=", val)

    def on_eq_str(self, col: str, val: str | None) -> JoinSql:
        return self.on_val(col, "=", val) if val else self


class UpdateSql:
    """Builds ``update table set col = ?, ...`` with an optional where clause."""

    def __init__(self, table: str) -> None:
        self._buf = SqlBuffer(f"update {table} set ")

    def set(self, col: str, val: Any) -> UpdateSql:
        self._buf.sql += f"{col} = ?, "
        self._buf.params.append(val)
        return self

    def set_opt(self, col: str, val: Any | None) -> UpdateSql:
        return self if val is None else self.set(col, val)

    def set_str(self, col: str, val: str | None) -> UpdateSql:
        return self.set(col, val) if val else self

    def set_sql(self, col: str, raw: str) -> UpdateSql:
        """Set a column to the raw SQL expression ``raw``."""
        self._buf.sql += f"{col} = {raw}, "
        return self

    def where_sql(self, f: Callable[[WhereSql], Any]) -> UpdateSql:
        """Add a where clause; at least one column must have been set before."""
        if not self._buf.remove_suffix(_SEP):
            raise ValueError("update statement sets no column")
        where = WhereSql(self._buf)
        f(where)
        where.finish()
        return self

    def build(self) -> tuple[str, list[Any]]:
        if not self._buf.params:
            raise ValueError("update statement has no values")
        sql = self._buf.sql
        if sql.endswith(_SEP):
            sql = sql[: -len(_SEP)]
        params = list(self._buf.params)
        db_log_sql_params(sql, params)
        return sql, params


class DeleteSql:
    """Builds ``delete from table`` with a where clause filled in by ``f``."""

    def __init__(self, table: str, f: Callable[[WhereSql], Any]) -> None:
        _require(table, "table name")
        self._buf = SqlBuffer("delete from " + table)
        where = WhereSql(self._buf)
        f(where)
        where.finish()

    def build(self) -> tuple[str, list[Any]]:
        sql, params = self._buf.sql, list(self._buf.params)
        db_log_sql_params(sql, params)
        return sql, params


class BatchInsertSql:
    """Builds a multi-row insert; each row holds one value per column."""

    def __init__(self, table: str, cols: Sequence[str]) -> None:
        _require(table, "table name")
        if not cols or not all(cols):
            raise ValueError("columns must be a non-empty list of names")
        self._head = f"insert into {table} ({_SEP.join(cols)}) values "
        self._width = len(cols)
        self._rows: list[list[Any]] = []

    def value(self, val: Sequence[Any]) -> BatchInsertSql:
        """Add one row; RawSql items are inlined, others bound."""
        row = list(val)
        if len(row) != self._width:
            raise ValueError(f"row has {len(row)} values, expected {self._width}")
        self._rows.append(row)
        return self

    def values(self, rows: Iterable[Sequence[Any]]) -> BatchInsertSql:
        for row in rows:
            self.value(row)
        return self

    def build(self) -> tuple[str, list[Any]]:
        if not self._rows:
            raise ValueError("batch insert has no rows")
        params: list[Any] = []
        rows = _SEP.join(f"({_render_values(row, params)})" for row in self._rows)
        sql = self._head + rows
        db_log_sql_params(sql, params)
        return sql, params


class BatchDeleteSql:
    """Builds ``delete from table where col in (?, ...)`` for the given values."""

    def __init__(self, table: str, col: str, values: Iterable[Any]) -> None:
        _require(table, "table name")
        _require(col, "column name")
        self._params = list(values)
        if not self._params:
            raise ValueError("batch delete needs at least one value")
        marks = _SEP.join("?" for _ in self._params)
        self._sql = f"delete from {table} where {col} in ({marks})"

    def build(self) -> tuple[str, list[Any]]:
        params = list(self._params)
        db_log_sql_params(self._sql, params)
        return self._sql, params