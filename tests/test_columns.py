"""Unit tests: column table resolution."""

from __future__ import annotations

import pytest

from vulnmanage.columns import (
    ColumnDecl,
    column_type_is_numeric,
    columns_build_select,
    columns_select_column,
    columns_select_column_with_type,
    filter_column_applies,
    valid_db_resource_type,
)
from vulnmanage.keywords import KeywordType


@pytest.mark.unit
class TestColumnResolution:
    def test_filter_name(self, select_columns, where_columns) -> None:
        assert columns_select_column(select_columns, where_columns, "name") == "resourcetable.name"

    def test_with_type(self, select_columns, where_columns) -> None:
        assert columns_select_column_with_type(select_columns, where_columns, "severity") == (
            "resourcetable.severity",
            KeywordType.DOUBLE,
        )

    def test_private_alias_by_bare_name(self, select_columns, where_columns) -> None:
        assert columns_select_column(select_columns, where_columns, "owner") == "resourcetable.owner_name"
        assert columns_select_column(select_columns, where_columns, "_owner") == "resourcetable.owner_name"

    def test_raw_select_expression(self, select_columns, where_columns) -> None:
        assert columns_select_column(select_columns, where_columns, "resourcetable.uuid") == "resourcetable.uuid"

    def test_where_table_is_second(self, select_columns, where_columns) -> None:
        assert columns_select_column(select_columns, where_columns, "note") == "resourcetable.hidden_note"

    def test_select_table_wins(self) -> None:
        select = [ColumnDecl("a.x", "x", KeywordType.STRING)]
        where = [ColumnDecl("b.x", "x", KeywordType.INTEGER)]
        assert columns_select_column_with_type(select, where, "x") == ("a.x", KeywordType.STRING)

    def test_alias_pass_before_raw_pass(self) -> None:
        select = [
            ColumnDecl("name", "label", KeywordType.STRING),
            ColumnDecl("other.name", "name", KeywordType.STRING),
        ]
        assert columns_select_column(select, None, "name") == "other.name"

    @pytest.mark.parametrize("name", ["", "missing"])
    def test_unresolved(self, select_columns, where_columns, name: str) -> None:
        assert columns_select_column(select_columns, where_columns, name) is None

    def test_no_tables(self) -> None:
        assert columns_select_column(None, None, "name") is None


@pytest.mark.unit
class TestColumnHelpers:
    def test_filter_column_applies(self) -> None:
        assert filter_column_applies(["name", "_owner"], "name")
        assert filter_column_applies(["name", "_owner"], "owner")
        assert not filter_column_applies(["name"], "comment")
        assert not filter_column_applies(None, "name")

    def test_numeric_types(self) -> None:
        assert column_type_is_numeric(KeywordType.INTEGER)
        assert column_type_is_numeric(KeywordType.DOUBLE)
        assert not column_type_is_numeric(KeywordType.STRING)
        assert not column_type_is_numeric(KeywordType.UNKNOWN)

    def test_build_select(self) -> None:
        columns = [
            ColumnDecl("t.name", "name", KeywordType.STRING),
            ColumnDecl("t.uuid", None, KeywordType.STRING),
        ]
        assert columns_build_select(columns) == "t.name AS name, t.uuid"

    def test_build_select_empty(self) -> None:
        assert columns_build_select([]) == "''"

    @pytest.mark.parametrize("name, valid", [("task", True), ("Host", True), ("widget", False), ("", False), (None, False)])
    def test_valid_db_resource_type(self, name, valid: bool) -> None:
        assert valid_db_resource_type(name) is valid
