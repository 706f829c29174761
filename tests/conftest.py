"""Shared pytest fixtures for the vulnmanage test suite."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pytest

from vulnmanage import keywords
from vulnmanage.columns import ColumnDecl
from vulnmanage.config_loader import FilterSettings
from vulnmanage.filter_clause import CompiledClause, filter_clause
from vulnmanage.keywords import KeywordType


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> FilterSettings:
    return FilterSettings(rows_per_page=10, max_rows_per_page=1000)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "VULNMANAGE_ROWS_PER_PAGE",
        "VULNMANAGE_MAX_ROWS_PER_PAGE",
        "VULNMANAGE_STRICT_FILTER_COLUMNS",
        "VULNMANAGE_TABLE_ORDER_IF_SORT_NOT_SPECIFIED",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def frozen_now(monkeypatch: pytest.MonkeyPatch) -> float:
    now = 1_000_000.0
    monkeypatch.setattr(keywords, "_now", lambda: now)
    return now


# ---------------------------------------------------------------------------
# Column tables
# ---------------------------------------------------------------------------


@pytest.fixture
def select_columns() -> List[ColumnDecl]:
    return [
        ColumnDecl("resourcetable.name", "name", KeywordType.STRING),
        ColumnDecl("resourcetable.comment", "comment", KeywordType.STRING),
        ColumnDecl("active", "active", KeywordType.INTEGER),
        ColumnDecl("resourcetable.severity", "severity", KeywordType.DOUBLE),
        ColumnDecl("resourcetable.owner_name", "_owner", KeywordType.STRING),
        ColumnDecl("resourcetable.uuid", None, KeywordType.STRING),
    ]


@pytest.fixture
def where_columns() -> List[ColumnDecl]:
    return [ColumnDecl("resourcetable.hidden_note", "note", KeywordType.STRING)]


@pytest.fixture
def filter_columns() -> List[str]:
    return ["name", "comment"]


@pytest.fixture
def compile_filter(settings, filter_columns, select_columns, where_columns):
    """Compile against the fixture tables of an unregistered resource type."""

    def _compile(
        term: Optional[str],
        columns: Optional[List[str]] = None,
        **kwargs: Any,
    ) -> CompiledClause:
        kwargs.setdefault("settings", settings)
        return filter_clause(
            "resource",
            term,
            columns if columns is not None else filter_columns,
            select_columns,
            where_columns,
            **kwargs,
        )

    return _compile


# ---------------------------------------------------------------------------
# Database stand-ins
# ---------------------------------------------------------------------------


class StubResult:
    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, scalar: Any = None):
        self._rows = rows or []
        self._scalar = scalar

    def mappings(self) -> "StubResult":
        return self

    def all(self) -> List[Dict[str, Any]]:
        return list(self._rows)

    def scalar(self) -> Any:
        return self._scalar


class StubSession:
    """Records executed statements and replays canned results in order."""

    def __init__(self, results: Optional[List[Any]] = None):
        self.results = list(results or [])
        self.calls: List[tuple] = []

    def execute(self, statement: Any, params: Optional[Dict[str, Any]] = None) -> StubResult:
        self.calls.append((str(statement), dict(params or {})))
        result = self.results.pop(0) if self.results else StubResult()
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def stub_session_factory():
    def _factory(*results: Any) -> StubSession:
        return StubSession(list(results))

    return _factory


@pytest.fixture
def patch_session_scope(monkeypatch: pytest.MonkeyPatch):
    """Route ``vulnmanage.api.session_scope`` to a stub session."""

    def _patch(session: StubSession) -> StubSession:
        @contextmanager
        def _scope():
            yield session

        monkeypatch.setattr("vulnmanage.api.session_scope", _scope)
        return session

    return _patch


@pytest.fixture
def stub_result():
    return StubResult
