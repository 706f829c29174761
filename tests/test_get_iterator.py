"""Unit tests: SELECT and COUNT assembly around a compiled filter."""

from __future__ import annotations

import pytest

from vulnmanage.errors import FilterNotFound
from vulnmanage.get_iterator import (
    GetData,
    build_count_query,
    build_get_query,
    count_resources,
    get_resources,
    resolve_get_filter,
)

TASK_NAME = "CAST(tasks.name AS TEXT)"
TASK_ORDER = "ORDER BY lower(CAST(tasks.name AS TEXT)) ASC"


# ---------------------------------------------------------------------------
# Query assembly
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestBuildQuery:
    def test_page(self, settings) -> None:
        sql, params, compiled = build_get_query("task", GetData(filter="name=foo rows=5 first=3"), settings)
        assert sql.startswith("SELECT tasks.id AS id, tasks.uuid AS uuid")
        assert sql.endswith(
            f" FROM tasks WHERE (({TASK_NAME} = :fp_0)) {TASK_ORDER} LIMIT :limit OFFSET :offset"
        )
        assert params == {"fp_0": "foo", "limit": 5, "offset": 2}
        assert (compiled.first, compiled.max) == (2, 5)

    def test_first_page_has_no_offset(self, settings) -> None:
        sql, params, _ = build_get_query("task", GetData(filter=""), settings)
        assert sql.endswith(f"FROM tasks {TASK_ORDER} LIMIT :limit")
        assert params == {"limit": 10}

    def test_unlimited(self, settings) -> None:
        sql, params, _ = build_get_query("task", GetData(filter="rows=-1", ignore_max_rows_per_page=True), settings)
        assert "LIMIT" not in sql
        assert "limit" not in params

    def test_ignore_pagination(self, settings) -> None:
        sql, params, _ = build_get_query("task", GetData(filter="first=11", ignore_pagination=True), settings)
        assert "LIMIT" not in sql
        assert "OFFSET" not in sql

    def test_owner(self, settings) -> None:
        sql, params, _ = build_get_query("task", GetData(filter="owner=bob"), settings)
        assert " WHERE (tasks.owner IN (SELECT id FROM users WHERE name = :owner_name)) " in sql
        assert params["owner_name"] == "bob"

    def test_owner_any(self, settings) -> None:
        sql, params, _ = build_get_query("task", GetData(filter="owner=any"), settings)
        assert " FROM tasks ORDER BY " in sql
        assert "owner_name" not in params

    def test_extra_where_intersects(self, settings) -> None:
        sql, params, _ = build_get_query(
            "task",
            GetData(filter="name=foo owner=bob"),
            settings,
            extra_where="tasks.hidden = :hidden",
            extra_params={"hidden": 0},
        )
        assert (
            f" WHERE (({TASK_NAME} = :fp_0))"
            " AND (tasks.owner IN (SELECT id FROM users WHERE name = :owner_name))"
            " AND (tasks.hidden = :hidden) "
        ) in sql
        assert params["hidden"] == 0

    def test_trash(self, settings) -> None:
        sql, _, _ = build_get_query("task", GetData(filter="name=foo", trash=True), settings)
        assert " FROM tasks_trash WHERE ((CAST(tasks_trash.name AS TEXT) = :fp_0))" in sql

    def test_term_overrides_inline_filter(self, settings) -> None:
        _, params, _ = build_get_query("task", GetData(filter="name=inline"), settings, term="name=stored")
        assert params["fp_0"] == "stored"

    def test_count(self, settings) -> None:
        sql, params, _ = build_count_query("task", GetData(filter="name=foo rows=5 first=3"), settings)
        assert sql == f"SELECT count(*) FROM tasks WHERE (({TASK_NAME} = :fp_0))"
        assert params == {"fp_0": "foo"}


# ---------------------------------------------------------------------------
# Stored filters and execution
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestResolveFilter:
    def test_inline(self) -> None:
        assert resolve_get_filter(GetData(filter="name=x")) == "name=x"
        assert resolve_get_filter(GetData()) == ""

    def test_zero_means_no_stored_filter(self) -> None:
        assert resolve_get_filter(GetData(filter="name=x", filt_id="0")) == "name=x"

    def test_stored(self, stub_session_factory, stub_result) -> None:
        session = stub_session_factory(stub_result(scalar="name=stored"))
        assert resolve_get_filter(GetData(filter="name=x", filt_id="f-1"), session) == "name=stored"
        assert session.calls == [("SELECT term FROM filters WHERE uuid = :uuid", {"uuid": "f-1"})]

    def test_missing(self, stub_session_factory, stub_result) -> None:
        session = stub_session_factory(stub_result(scalar=None))
        with pytest.raises(FilterNotFound) as excinfo:
            resolve_get_filter(GetData(filt_id="f-404"), session)
        assert excinfo.value.filt_id == "f-404"

    def test_no_session(self) -> None:
        with pytest.raises(FilterNotFound):
            resolve_get_filter(GetData(filt_id="f-1"))


@pytest.mark.unit
class TestExecute:
    def test_get_resources(self, settings, stub_session_factory, stub_result) -> None:
        session = stub_session_factory(stub_result(rows=[{"id": 1, "name": "scan"}]))
        rows, compiled = get_resources(session, "task", GetData(filter="name=scan"), settings)
        assert rows == [{"id": 1, "name": "scan"}]
        assert compiled.max == 10
        sql, params = session.calls[0]
        assert "FROM tasks WHERE" in sql
        assert params["fp_0"] == "scan"

    def test_get_resources_with_stored_filter(self, settings, stub_session_factory, stub_result) -> None:
        session = stub_session_factory(stub_result(scalar="name=stored"), stub_result(rows=[]))
        rows, _ = get_resources(session, "task", GetData(filt_id="f-1"), settings)
        assert rows == []
        assert len(session.calls) == 2
        assert session.calls[1][1]["fp_0"] == "stored"

    def test_count_resources(self, settings, stub_session_factory, stub_result) -> None:
        session = stub_session_factory(stub_result(scalar=7))
        assert count_resources(session, "task", GetData(filter="name=x"), settings) == 7
        assert session.calls[0][0].startswith("SELECT count(*) FROM tasks")

    def test_count_empty(self, settings, stub_session_factory, stub_result) -> None:
        session = stub_session_factory(stub_result(scalar=None))
        assert count_resources(session, "task", GetData(), settings) == 0
