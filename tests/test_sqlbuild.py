import pytest

from apiforge.sqlbuild import (
    BatchDeleteSql,
    BatchInsertSql,
    DeleteSql,
    FieldInfo,
    InsertSql,
    RawSql,
    SelectSql,
    UpdateSql,
)
from apiforge.sqltrim import trans_to_select_count


def test_insert_build_pinned():
    sql, params = InsertSql("t_user").value("name", "kiven").value("age", 48).build()
    assert sql == "insert into t_user (name, age) values (?, ?)"
    assert params == ["kiven", 48]


def test_insert_skips_none_and_empty():
    sql, params = (
        InsertSql("t")
        .value_opt("skipped_a", None)
        .value_str("skipped_b", "")
        .value_str("kept", "x")
        .build()
    )
    assert params == ["x"]
    assert sql.count("?") == 1
    assert "skipped" not in sql
    assert "kept" in sql


def test_insert_value_sql_inlines_raw():
    sql, params = InsertSql("t").value_sql("created", "now()").value("n", 1).build()
    assert "now()" in sql
    assert sql.count("?") == 1
    assert params == [1]
    assert sql.startswith("insert into t (")


def test_insert_without_values_raises():
    with pytest.raises(ValueError):
        InsertSql("t").build()


def test_raw_sql_rejects_empty():
    with pytest.raises(ValueError):
        RawSql("")


def test_select_star_pinned():
    sql, params = SelectSql().from_("t").build()
    assert sql == "select * from t"
    assert params == []


def test_select_columns_have_no_dangling_separator():
    sql, _ = (
        SelectSql()
        .select_columns("u", ["id", "name"])
        .select_with_iter([FieldInfo("r", "title", "role")])
        .from_as("t_user", "u")
        .build()
    )
    assert ", from" not in sql
    assert " as role" in sql
    assert "*" not in sql
    assert sql.index("title") < sql.index(" from ")


def test_select_empty_where_adds_nothing():
    plain, _ = SelectSql().from_("t").build()
    sql, params = SelectSql().from_("t").where_sql(lambda w: w.eq_opt("", "a", None)).build()
    assert sql == plain
    assert params == []


def test_select_where_conditions():
    sql, params = (
        SelectSql()
        .from_("t")
        .where_sql(lambda w: w.eq("", "a", 1).eq("", "b", 2))
        .build()
    )
    assert params == [1, 2]
    assert sql.count(" where ") == 1
    assert sql.count(" and ") == 1
    assert sql.count("?") == 2


def test_left_join_conditions():
    sql, params = (
        SelectSql()
        .select_all_with_table("u")
        .from_as("t_user", "u")
        .left_join("t_role", "r", lambda j: j.on_eq("id", "u", "role_id").on_eq_val("status", 1))
        .build()
    )
    assert " left join t_role r on " in sql
    assert sql.count(" and ") == 1
    assert params == [1]


def test_join_on_raw_and_optional():
    sql, params = (
        SelectSql()
        .from_("a")
        .join("b", "", lambda j: j.on("b.x = a.x").on_eq_val_opt("y", None).on_eq_str("z", ""))
        .build()
    )
    assert "b.x = a.x" in sql
    assert " and " not in sql
    assert params == []


def test_join_on_empty_raises():
    with pytest.raises(ValueError):
        SelectSql().from_("a").join("b", "", lambda j: j.on(""))


def test_join_params_precede_where_params():
    _, params = (
        SelectSql()
        .from_("a")
        .join("b", "", lambda j: j.on_val("k", ">", "join"))
        .where_sql(lambda w: w.eq("a", "k", "where"))
        .build()
    )
    assert params == ["join", "where"]


def test_order_group_and_limits():
    base = SelectSql().from_("t").group_by("", "g").having("count(*) > 1")
    sql, _ = base.order_by_with_iter([("u", "id", True), ("", "name", False)]).limits(20, 10).build()
    assert sql.endswith(" limit 20, 10")
    assert sql.count(" desc") == 1
    assert " group by " in sql
    assert " having " in sql
    assert sql.index(" group by ") < sql.index(" order by ")


def test_limits_with_zero_count_is_noop():
    before, _ = SelectSql().from_("t").build()
    after, _ = SelectSql().from_("t").limits(5, 0).build()
    assert before == after


def test_order_by_empty_raises():
    with pytest.raises(ValueError):
        SelectSql().from_("t").order_by_columns("", [])


def test_add_sql_vals_collect_params():
    sql, params = (
        SelectSql()
        .from_("t")
        .add_sql_val(" where a = ?", 1)
        .add_sql_val_if(False, " and b = ?", 2)
        .add_sql_vals(" and c in (?, ?)", [3, 4])
        .add_sql_if(False, " and never")
        .build()
    )
    assert params == [1, 3, 4]
    assert "never" not in sql
    assert sql.count("?") == 3


def test_build_with_page_count_matches_trans():
    def make():
        return SelectSql().from_("t").where_sql(lambda w: w.eq("", "a", 1))

    plain, _ = make().build()
    total_sql, sql, params = make().build_with_page(3, 10)
    assert total_sql == trans_to_select_count(plain)
    assert trans_to_select_count(sql) == total_sql
    assert sql.startswith(plain)
    assert params == [1]


def test_build_with_page_known_total_and_no_paging():
    plain, _ = SelectSql().from_("t").build()
    total_sql, sql, _ = SelectSql().from_("t").build_with_page(1, 10, 99)
    assert total_sql == ""
    assert sql.startswith(plain) and sql != plain
    total_sql, sql, _ = SelectSql().from_("t").build_with_page(0, 10)
    assert (total_sql, sql) == ("", plain)


def test_update_with_where():
    sql, params = (
        UpdateSql("t")
        .set("a", 1)
        .set_opt("b", None)
        .set_str("c", "")
        .set_sql("d", "now()")
        .where_sql(lambda w: w.eq("", "id", 5))
        .build()
    )
    assert params == [1, 5]
    assert ", where" not in sql
    assert "now()" in sql
    assert sql.startswith("update t set ")


def test_update_without_where_trims_separator():
    sql, params = UpdateSql("t").set("a", 1).build()
    assert not sql.endswith(", ")
    assert params == [1]


def test_update_errors():
    with pytest.raises(ValueError):
        UpdateSql("t").set_sql("a", "now()").build()
    with pytest.raises(ValueError):
        UpdateSql("t").where_sql(lambda w: w.eq("", "id", 1))


def test_delete_with_in():
    sql, params = DeleteSql("t", lambda w: w.in_("", "id", [1, 2, 3])).build()
    assert params == [1, 2, 3]
    assert sql.count("?") == 3
    assert sql.startswith("delete from t where ")


def test_batch_insert():
    sql, params = (
        BatchInsertSql("t", ["a", "b"])
        .value([1, RawSql("now()")])
        .values([[2, 3]])
        .build()
    )
    assert params == [1, 2, 3]
    assert sql.count("?") == 3
    assert "now()" in sql
    assert not sql.endswith(", ")


def test_batch_insert_errors():
    with pytest.raises(ValueError):
        BatchInsertSql("t", ["a", "b"]).value([1])
    with pytest.raises(ValueError):
        BatchInsertSql("t", ["a"]).build()
    with pytest.raises(ValueError):
        BatchInsertSql("t", [])


def test_batch_delete():
    sql, params = BatchDeleteSql("t", "id", [7, 8]).build()
    assert params == [7, 8]
    assert sql.count("?") == 2
    assert " in (" in sql
    with pytest.raises(ValueError):
        BatchDeleteSql("t", "id", [])