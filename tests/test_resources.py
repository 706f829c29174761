"""Unit tests: registered resource type column tables."""

from __future__ import annotations

import pytest

from vulnmanage.columns import ColumnDecl, columns_select_column
from vulnmanage.errors import UnknownResourceType
from vulnmanage.filter_clause import EXTRACTED_COLUMNS, TAG_COLUMNS, compile_resource_filter
from vulnmanage.keywords import KeywordType
from vulnmanage.resources import RESOURCE_TYPES, ResourceType, get_resource_type, register_resource_type

ALL_TYPES = sorted(RESOURCE_TYPES)


def _sortable(resource: ResourceType):
    return [name for name in resource.filter_columns if not name.endswith("_id")]


@pytest.mark.unit
class TestColumnTables:
    @pytest.mark.parametrize("type_name", ALL_TYPES)
    def test_every_filter_column_resolves(self, type_name: str) -> None:
        resource = RESOURCE_TYPES[type_name]
        for name in resource.filter_columns:
            if name in TAG_COLUMNS or name in EXTRACTED_COLUMNS or name.endswith("_id"):
                continue
            assert columns_select_column(resource.select_columns(), resource.where_columns(), name), name

    @pytest.mark.parametrize("type_name", ALL_TYPES)
    def test_every_sortable_column_orders(self, type_name: str, settings) -> None:
        resource = RESOURCE_TYPES[type_name]
        for name in _sortable(resource):
            order = compile_resource_filter(type_name, f"sort={name}", settings=settings).order
            assert order.startswith("ORDER BY "), name

    @pytest.mark.parametrize("type_name", ALL_TYPES)
    def test_table_placeholder_is_bound(self, type_name: str) -> None:
        resource = RESOURCE_TYPES[type_name]
        for trash in (False, True):
            for column in resource.select_columns(trash) + resource.where_columns(trash):
                assert "{table}" not in column.select

    def test_trash_table(self) -> None:
        task = get_resource_type("task")
        assert task.table_name(True) == "tasks_trash"
        selects = [column.select for column in task.select_columns(trash=True)]
        assert "tasks_trash.name" in selects
        assert "tasks.name" not in selects

    def test_severity_is_numeric(self) -> None:
        columns = {c.filter: c for c in get_resource_type("task").select_columns()}
        assert columns["severity"].type == KeywordType.DOUBLE

    @pytest.mark.parametrize("type_name", ["note", "override"])
    def test_text_hosts_sort_ignores_case(self, type_name: str, settings) -> None:
        table = RESOURCE_TYPES[type_name].table
        order = compile_resource_filter(type_name, "sort=hosts", settings=settings).order
        assert order == f"ORDER BY lower(CAST({table}.hosts AS TEXT)) ASC"

    def test_numeric_hosts_sort(self, settings) -> None:
        order = compile_resource_filter("report", "sort-reverse=hosts", settings=settings).order
        assert order == "ORDER BY CAST(report_host_count (reports.id) AS NUMERIC) DESC"


@pytest.mark.unit
class TestRegistry:
    def test_lookup_is_case_insensitive(self) -> None:
        assert get_resource_type(" Task ").name == "task"

    def test_unknown(self) -> None:
        with pytest.raises(UnknownResourceType) as excinfo:
            get_resource_type("widget")
        assert excinfo.value.resource_type == "widget"
        assert isinstance(excinfo.value, LookupError)

    def test_register(self, settings) -> None:
        widget = ResourceType(
            "widget",
            "widgets",
            ("name", "size"),
            [
                ColumnDecl("{table}.name", "name", KeywordType.STRING),
                ColumnDecl("{table}.size", "size", KeywordType.INTEGER),
            ],
        )
        try:
            register_resource_type(widget)
            clause = compile_resource_filter("widget", "size>3 sort-reverse=size", settings=settings)
            assert clause.where == "(CAST(widgets.size AS NUMERIC) > 3)"
            assert clause.order == "ORDER BY CAST(widgets.size AS NUMERIC) DESC"
        finally:
            RESOURCE_TYPES.pop("widget", None)
