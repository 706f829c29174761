# backend/vulnmanage/filter_controls.py
"""
Pagination and sort controls of a filter, plus canonical re-serialization.

These helpers only look at the control keywords (``first``, ``rows``,
``sort``, ``sort-reverse`` and the report options).  The WHERE clause is the
business of :mod:`vulnmanage.filter_clause`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from .config_loader import DEFAULT_SETTINGS, FilterSettings
from .keywords import (
    Keyword,
    KeywordRelation,
    _leading_int,
    keyword_relation_symbol,
    split_filter,
)

log = logging.getLogger(__name__)

ROWS_USE_SETTING = -2
ROWS_UNLIMITED = -1
REPORT_ROWS_DEFAULT = 100
DEFAULT_SORT_FIELD = "name"


def _settings(settings: Optional[FilterSettings]) -> FilterSettings:
    return settings if settings is not None else DEFAULT_SETTINGS


def manage_max_rows(
    max_rows: int,
    ignore_max_rows_per_page: bool = False,
    settings: Optional[FilterSettings] = None,
) -> int:
    """Clamp a row count to the configured cap.  A cap of 0 means no cap."""
    if ignore_max_rows_per_page:
        return max_rows
    cap = _settings(settings).max_rows_per_page
    if cap and (max_rows < 0 or max_rows > cap):
        return cap
    return max_rows


def resolve_rows(
    rows: int,
    ignore_max_rows_per_page: bool = False,
    settings: Optional[FilterSettings] = None,
) -> int:
    """Turn a ``rows`` keyword value into the effective page size."""
    if rows == ROWS_USE_SETTING:
        rows = _settings(settings).rows_per_page
    elif rows < 1:
        rows = ROWS_UNLIMITED
    return manage_max_rows(rows, ignore_max_rows_per_page, settings)


def resolve_first(first: int) -> int:
    """1-based ``first`` keyword value to a 0-based offset."""
    return max(first - 1, 0)


def keyword_int_value(keyword: Keyword) -> int:
    return keyword.integer_value if keyword.is_numeric else _leading_int(keyword.string)


def _find(parts: List[Keyword], column: str) -> Optional[Keyword]:
    for keyword in parts:
        if keyword.column == column:
            return keyword
    return None


def _first_sort(parts: List[Keyword]):
    for keyword in parts:
        if keyword.column == "sort":
            return keyword.string, 1
        if keyword.column == "sort-reverse":
            return keyword.string, 0
    return None, 1


@dataclass(frozen=True)
class FilterControls:
    first: int
    max: int
    sort_field: str
    sort_order: int

    @property
    def ascending(self) -> bool:
        return self.sort_order != 0


def filter_controls(
    filter: Optional[str],
    ignore_max_rows_per_page: bool = False,
    settings: Optional[FilterSettings] = None,
) -> FilterControls:
    """
    Pagination and primary sort of a filter, for listings that do not compile
    a WHERE clause.  ``first`` is 0-based and ``max`` is resolved and capped.
    """
    settings = _settings(settings)
    parts = split_filter(filter, default_sort=None) if filter is not None else []

    first_keyword = _find(parts, "first")
    first = resolve_first(keyword_int_value(first_keyword) if first_keyword else 1)

    rows_keyword = _find(parts, "rows")
    rows = keyword_int_value(rows_keyword) if rows_keyword else ROWS_USE_SETTING
    max_rows = resolve_rows(rows, ignore_max_rows_per_page, settings)

    sort_field, sort_order = _first_sort(parts)
    return FilterControls(first, max_rows, sort_field or DEFAULT_SORT_FIELD, sort_order)


@dataclass(frozen=True)
class ReportFilterControls:
    first: int = 0
    max: int = REPORT_ROWS_DEFAULT
    sort_field: str = DEFAULT_SORT_FIELD
    sort_order: int = 1
    result_hosts_only: int = 1
    min_qod: Optional[str] = None
    levels: Optional[str] = None
    compliance_levels: Optional[str] = None
    delta_states: Optional[str] = None
    search_phrase: str = ""
    search_phrase_exact: int = 0
    notes: int = 1
    overrides: int = 1
    apply_overrides: int = 1
    zone: Optional[str] = None


def _control_int(parts: List[Keyword], column: str, fallback: int) -> int:
    keyword = _find(parts, column)
    return keyword_int_value(keyword) if keyword else fallback


def _control_str(parts: List[Keyword], column: str) -> Optional[str]:
    keyword = _find(parts, column)
    return keyword.string if keyword else None


def report_filter_controls(
    filter: Optional[str],
    settings: Optional[FilterSettings] = None,
) -> ReportFilterControls:
    """
    Controls of a result filter applied to a single report.

    Free-text terms are folded into one search phrase, which is exact as soon
    as any one of them is.  ``max`` is not capped here; callers pass it through
    :func:`manage_max_rows`.
    """
    if filter is None:
        return ReportFilterControls()

    settings = _settings(settings)
    parts = split_filter(filter, default_sort=None)

    first_keyword = _find(parts, "first")
    first = resolve_first(keyword_int_value(first_keyword) if first_keyword else 1)

    rows_keyword = _find(parts, "rows")
    if rows_keyword is None:
        max_rows = REPORT_ROWS_DEFAULT
    else:
        max_rows = keyword_int_value(rows_keyword)
        if max_rows == ROWS_USE_SETTING:
            max_rows = settings.rows_per_page
        elif max_rows < 1:
            max_rows = ROWS_UNLIMITED

    sort_field, sort_order = _first_sort(parts)

    phrase: List[str] = []
    exact = 0
    for keyword in parts:
        if keyword.column is None:
            if keyword.equal:
                exact = 1
            phrase.append(keyword.string)

    overrides = _control_int(parts, "overrides", 1)
    apply_keyword = _find(parts, "apply_overrides")
    apply_overrides = keyword_int_value(apply_keyword) if apply_keyword else overrides

    return ReportFilterControls(
        first=first,
        max=max_rows,
        sort_field=sort_field or DEFAULT_SORT_FIELD,
        sort_order=sort_order,
        result_hosts_only=_control_int(parts, "result_hosts_only", 1),
        min_qod=_control_str(parts, "min_qod"),
        levels=_control_str(parts, "levels"),
        compliance_levels=_control_str(parts, "compliance_levels"),
        delta_states=_control_str(parts, "delta_states"),
        search_phrase=" ".join(phrase).rstrip(),
        search_phrase_exact=exact,
        notes=_control_int(parts, "notes", 1),
        overrides=overrides,
        apply_overrides=apply_overrides,
        zone=_control_str(parts, "timezone"),
    )


def _quote(value: str) -> str:
    if '"' in value and "'" not in value:
        return f"'{value}'"
    return f'"{value}"'


def _serialize_value(keyword: Keyword) -> str:
    if keyword.quoted:
        return _quote(keyword.string)
    return keyword.string


def _serialize(keyword: Keyword, ignore_max_rows_per_page: bool, settings: FilterSettings) -> str:
    if keyword.column is None:
        if keyword.equal:
            prefix = "="
        elif keyword.approx:
            prefix = "~"
        else:
            prefix = ""
        return prefix + _serialize_value(keyword)

    symbol = keyword_relation_symbol(keyword.relation)
    if keyword.relation == KeywordRelation.NONE:
        symbol = "="

    if keyword.column == "rows":
        if keyword.string == str(ROWS_USE_SETTING):
            rows = settings.rows_per_page
        else:
            rows = keyword_int_value(keyword)
        return f"rows{symbol}{manage_max_rows(rows, ignore_max_rows_per_page, settings)}"

    return f"{keyword.column}{symbol}{_serialize_value(keyword)}"


def _drops(keyword: Keyword, column: Optional[str]) -> bool:
    if not column or keyword.column is None:
        return False
    return keyword.column_is(column)


def clean_filter_remove(
    filter: Optional[str],
    column: Optional[str],
    ignore_max_rows_per_page: bool = False,
    settings: Optional[FilterSettings] = None,
) -> str:
    """
    Re-serialize a filter canonically, leaving out every keyword on ``column``.

    The ``rows`` sentinel is resolved to the configured page size so stored
    filters carry a concrete row count.
    """
    if filter is None:
        return ""
    settings = _settings(settings)
    pieces = []
    for keyword in split_filter(filter, default_sort=settings.default_sort):
        if _drops(keyword, column):
            continue
        pieces.append(_serialize(keyword, ignore_max_rows_per_page, settings))
    cleaned = " ".join(pieces).strip()
    log.debug("Cleaned filter %r -> %r", filter, cleaned)
    return cleaned


def clean_filter(
    filter: Optional[str],
    ignore_max_rows_per_page: bool = False,
    settings: Optional[FilterSettings] = None,
) -> str:
    return clean_filter_remove(filter, None, ignore_max_rows_per_page, settings)
