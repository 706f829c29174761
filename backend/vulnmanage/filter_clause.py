# backend/vulnmanage/filter_clause.py
"""
Compile a filter string into a WHERE fragment, an ORDER BY clause and a page
window.

The compiler walks the keywords left to right.  Terms are joined with OR
unless the previous keyword was ``and``; ``not`` negates only the next term.
There is no grouping beyond the parentheses around each term.  Every column
name in the output comes from a column declaration, and every user value is
either a number parsed by the tokenizer or a bound parameter.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .columns import (
    ColumnDecl,
    column_type_is_numeric,
    columns_select_column_with_type,
    filter_column_applies,
    valid_db_resource_type,
)
from .config_loader import DEFAULT_SETTINGS, FilterSettings
from .filter_controls import resolve_first, resolve_rows, keyword_int_value
from .keywords import CONTROL_COLUMNS, Keyword, KeywordRelation, KeywordType, split_filter
from .resources import FREE_TEXT_ENUMS, RESOURCE_TYPES, get_resource_type
from .sql_builder import ClauseBuilder

log = logging.getLogger(__name__)

# Column keywords handled by the compiler itself rather than the resolver.
EXTRACTED_COLUMNS = frozenset({"permission", "owner"})
TAG_COLUMNS = frozenset({"tag", "tag_id"})
_ID_SUFFIX_EXCEPTIONS = frozenset({"nvt_id", "result_id"})

_COMPARISON_OPERATORS: Dict[KeywordRelation, str] = {
    KeywordRelation.COLUMN_EQUAL: "=",
    KeywordRelation.COLUMN_ABOVE: ">",
    KeywordRelation.COLUMN_BELOW: "<",
}


@dataclass
class CompiledClause:
    """
    Result of compiling one filter.

    ``where`` is ready to embed after ``WHERE`` (None when no term applied) and
    refers to ``params`` by name.  ``order`` is a complete ``ORDER BY ...``
    clause or the empty string.  ``first`` is 0-based; ``max`` is -1 for no
    limit.
    """

    where: Optional[str]
    order: str
    first: int
    max: int
    permissions: List[str] = field(default_factory=list)
    owner_filter: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)


def get_join(first: bool, last_was_and: bool, last_was_not: bool) -> str:
    """SQL words placed in front of a compiled term."""
    if first:
        return "NOT " if last_was_not else ""
    if last_was_and:
        return " AND NOT " if last_was_not else " AND "
    return " OR NOT " if last_was_not else " OR "


def _numeric_literal(keyword: Keyword) -> Any:
    if keyword.type == KeywordType.INTEGER:
        return keyword.integer_value
    return keyword.double_value


def _column_condition(builder: ClauseBuilder, expr: str, column_type: KeywordType, keyword: Keyword) -> Optional[str]:
    """Comparison of one resolved column against a column-relation keyword."""
    relation = keyword.relation
    numeric = keyword.is_numeric and column_type_is_numeric(column_type)

    if relation == KeywordRelation.COLUMN_APPROX:
        return f"(CAST({expr} AS TEXT) ILIKE {builder.contains_pattern(keyword.string)})"

    if relation == KeywordRelation.COLUMN_REGEXP:
        return f"(CAST({expr} AS TEXT) ~ {builder.literal(keyword.string)})"

    operator = _COMPARISON_OPERATORS.get(relation)
    if operator is None:
        return None

    if numeric:
        return f"(CAST({expr} AS NUMERIC) {operator} {builder.literal(_numeric_literal(keyword))})"

    value = builder.literal(keyword.string)
    if relation == KeywordRelation.COLUMN_EQUAL and keyword.string == "":
        return f"(CAST({expr} AS TEXT) {operator} {value} OR {expr} IS NULL)"
    return f"(CAST({expr} AS TEXT) {operator} {value})"


def _id_reference_type(column: str) -> Optional[str]:
    """Resource type referenced by a ``<type>_id`` column, if any."""
    if not column.endswith("_id") or column in _ID_SUFFIX_EXCEPTIONS:
        return None
    type_name = column[: -len("_id")]
    if not valid_db_resource_type(type_name):
        return None
    return type_name


def _id_reference_condition(builder: ClauseBuilder, table: str, type_name: str, keyword: Keyword) -> str:
    reference = f"{table}.{type_name}"
    if keyword.string == "":
        return f"({reference} IS NULL OR {reference} = 0)"
    uuid = builder.literal(keyword.string)
    return (
        f"((SELECT id FROM {type_name}s WHERE {type_name}s.uuid = {uuid}) = {reference}"
        f" OR {reference} IS NULL OR {reference} = 0)"
    )


def _tag_resources_exists(builder: ClauseBuilder, table: str, resource_type: str, tag_match: str) -> str:
    return (
        "EXISTS (SELECT * FROM tag_resources"
        f" WHERE tag_resources.resource_uuid = {table}.uuid"
        f" AND tag_resources.resource_type = {builder.literal(resource_type)}"
        f" AND tag_resources.tag = {tag_match})"
    )


def _tag_condition(builder: ClauseBuilder, table: str, resource_type: str, keyword: Keyword) -> Optional[str]:
    """
    Tag terms as an EXISTS over tags and tag_resources.

    ``tag=name`` and ``tag=name=value`` match exactly, ``tag~`` matches
    contained text, ``tag:`` a regular expression; the name and the value are
    compared separately.  ``tag_id=<uuid>`` matches a single tag.
    """
    relation = keyword.relation
    if keyword.column == "tag_id":
        if relation != KeywordRelation.COLUMN_EQUAL:
            return None
        tag_match = f"(SELECT id FROM tags WHERE tags.uuid = {builder.literal(keyword.string)})"
        return f"({_tag_resources_exists(builder, table, resource_type, tag_match)})"

    name, has_value, value = keyword.string.partition("=")
    if relation == KeywordRelation.COLUMN_EQUAL:
        name_condition = f"tags.name = {builder.literal(name)}"
        value_condition = f" AND tags.value = {builder.literal(value)}" if has_value else ""
    elif relation == KeywordRelation.COLUMN_APPROX:
        name_condition = f"tags.name ILIKE {builder.contains_pattern(name)}"
        value_condition = f" AND tags.value ILIKE {builder.contains_pattern(value)}" if has_value else ""
    elif relation == KeywordRelation.COLUMN_REGEXP:
        name_condition = f"tags.name ~ {builder.literal(name)}"
        value_condition = f" AND tags.value ~ {builder.literal(value)}" if has_value else ""
    else:
        return None

    exists = _tag_resources_exists(builder, table, resource_type, "tags.id")
    return (
        "(EXISTS (SELECT * FROM tags"
        f" WHERE {name_condition}{value_condition}"
        " AND tags.active != 0"
        f" AND {exists}))"
    )


def _enum_applies(enums: Mapping[str, Sequence[str]], column: str, text: str) -> bool:
    """Whether free text could match a column limited to a known value set."""
    name = column[1:] if column.startswith("_") else column
    values = enums.get(name)
    if values is None:
        return True
    needle = text.lower()
    return any(needle in value.lower() for value in values)


def _free_text_condition(
    builder: ClauseBuilder,
    keyword: Keyword,
    filter_columns: Sequence[str],
    select_columns: Sequence[ColumnDecl],
    where_columns: Sequence[ColumnDecl],
    enums: Mapping[str, Sequence[str]],
    negate: bool,
    regexp: bool,
) -> Optional[str]:
    """OR across the filter columns, or AND of negations after ``not``."""
    conditions: List[str] = []
    text_value: Optional[str] = None

    for name in filter_columns:
        if name in TAG_COLUMNS or name in EXTRACTED_COLUMNS:
            continue
        resolved = columns_select_column_with_type(select_columns, where_columns, name)
        if resolved is None:
            log.debug("Free text skips column %r: no declaration", name)
            continue
        expr, column_type = resolved

        if keyword.equal:
            if keyword.is_numeric and column_type_is_numeric(column_type):
                number = builder.literal(_numeric_literal(keyword))
                if negate:
                    conditions.append(f"({expr} IS NULL OR CAST({expr} AS NUMERIC) != {number})")
                else:
                    conditions.append(f"CAST({expr} AS NUMERIC) = {number}")
                continue
            if text_value is None:
                text_value = builder.literal(keyword.string)
            if negate:
                conditions.append(f"({expr} IS NULL OR CAST({expr} AS TEXT) != {text_value})")
            else:
                conditions.append(f"CAST({expr} AS TEXT) = {text_value}")
            continue

        if not _enum_applies(enums, name, keyword.string):
            continue
        if text_value is None:
            text_value = builder.literal(keyword.string) if regexp else builder.contains_pattern(keyword.string)
        if regexp:
            operator = "!~" if negate else "~"
        else:
            operator = "NOT ILIKE" if negate else "ILIKE"
        if negate:
            conditions.append(f"({expr} IS NULL OR CAST({expr} AS TEXT) {operator} {text_value})")
        else:
            conditions.append(f"CAST({expr} AS TEXT) {operator} {text_value}")

    if not conditions:
        return None
    joiner = " AND " if negate else " OR "
    return "(" + joiner.join(conditions) + ")"


class _OrderBuilder:
    """ORDER BY terms: the first sort keyword is primary, later ones are tie-breakers."""

    def __init__(
        self,
        filter_columns: Sequence[str],
        select_columns: Sequence[ColumnDecl],
        where_columns: Sequence[ColumnDecl],
        sort_expressions: Mapping[str, str],
        table: Optional[str],
    ):
        self.filter_columns = filter_columns
        self.select_columns = select_columns
        self.where_columns = where_columns
        self.sort_expressions = sort_expressions
        self.table = table
        self.terms: List[str] = []

    def _primary(self, field_name: str, resolved: Optional[Tuple[str, KeywordType]], direction: str) -> Optional[str]:
        template = self.sort_expressions.get(field_name)
        expr = resolved[0] if resolved else None
        if template:
            needs_column = "{column}" in template
            needs_table = "{table}" in template
            if (expr or not needs_column) and (self.table or not needs_table):
                return template.format(column=expr, table=self.table, direction=direction)
        if resolved is None:
            return None
        expr, column_type = resolved
        if column_type_is_numeric(column_type):
            return f"CAST({expr} AS NUMERIC) {direction}"
        return f"lower(CAST({expr} AS TEXT)) {direction}"

    def add(self, keyword: Keyword) -> None:
        direction = "ASC" if keyword.column == "sort" else "DESC"
        field_name = keyword.string.strip()
        if not filter_column_applies(self.filter_columns, field_name):
            log.debug("Dropping sort on %r: not a filter column", field_name)
            return
        resolved = columns_select_column_with_type(self.select_columns, self.where_columns, field_name)
        if not self.terms:
            term = self._primary(field_name, resolved, direction)
        elif resolved is not None:
            term = f"{resolved[0]} {direction}"
        else:
            term = None
        if term is None:
            log.debug("Dropping sort on %r: no column declaration", field_name)
            return
        self.terms.append(term)

    def sql(self) -> str:
        if not self.terms:
            return ""
        return "ORDER BY " + ", ".join(self.terms)


def _default_table(resource_type: str, trash: bool) -> Optional[str]:
    registered = RESOURCE_TYPES.get(resource_type)
    if registered is not None:
        return registered.table_name(trash)
    if valid_db_resource_type(resource_type):
        return f"{resource_type}s_trash" if trash else f"{resource_type}s"
    return None


def filter_clause(
    resource_type: str,
    filter: Optional[str],
    filter_columns: Sequence[str],
    select_columns: Sequence[ColumnDecl],
    where_columns: Sequence[ColumnDecl],
    trash: bool = False,
    ignore_max_rows_per_page: bool = False,
    settings: Optional[FilterSettings] = None,
    table: Optional[str] = None,
) -> CompiledClause:
    """
    Compile ``filter`` for one resource type.

    Never raises for user input: unknown columns, unsupported tag relations
    and malformed quoting are dropped or absorbed.  ``table`` defaults to the
    registered (or trash) table of ``resource_type``; without a table the
    ``tag``, ``tag_id`` and ``<type>_id`` terms are dropped.
    """
    settings = settings if settings is not None else DEFAULT_SETTINGS
    resource_type = (resource_type or "").lower()
    if table is None:
        table = _default_table(resource_type, trash)

    registered = RESOURCE_TYPES.get(resource_type)
    sort_expressions = registered.sort_expressions if registered else {}
    enums = registered.free_text_enums if registered else FREE_TEXT_ENUMS

    filter_columns = list(filter_columns or ())
    select_columns = list(select_columns or ())
    where_columns = list(where_columns or ())

    builder = ClauseBuilder(prefix="fp")
    order = _OrderBuilder(filter_columns, select_columns, where_columns, sort_expressions, table)
    permissions: List[str] = []
    owner_filter: Optional[str] = None
    first_row = 0
    max_rows = resolve_rows(-2, ignore_max_rows_per_page, settings)

    first_keyword = True
    last_was_and = False
    last_was_not = False
    last_was_re = False

    for keyword in split_filter(filter, default_sort=settings.default_sort):
        column = keyword.column

        if keyword.is_special:
            word = keyword.string.lower()
            if word == "and":
                last_was_and = True
            elif word == "not":
                last_was_not = True
            elif word in ("re", "regexp"):
                last_was_re = True
            continue

        if column in CONTROL_COLUMNS:
            if column in ("sort", "sort-reverse"):
                order.add(keyword)
            elif column == "first":
                first_row = resolve_first(keyword_int_value(keyword))
            elif column == "rows":
                max_rows = resolve_rows(keyword_int_value(keyword), ignore_max_rows_per_page, settings)
            continue

        if column == "permission":
            permissions.append(keyword.string)
            continue

        if column == "owner":
            if owner_filter is None:
                owner_filter = keyword.string
            continue

        if column is None:
            condition = _free_text_condition(
                builder,
                keyword,
                filter_columns,
                select_columns,
                where_columns,
                enums,
                negate=last_was_not,
                regexp=last_was_re,
            )
            join = get_join(first_keyword, last_was_and, False)
        elif column in TAG_COLUMNS:
            condition = _tag_condition(builder, table, resource_type, keyword) if table else None
            join = get_join(first_keyword, last_was_and, last_was_not)
        else:
            reference_type = _id_reference_type(column)
            if reference_type is not None and table:
                condition = _id_reference_condition(builder, table, reference_type, keyword)
            else:
                resolved = columns_select_column_with_type(select_columns, where_columns, column)
                if resolved is None:
                    condition = None
                else:
                    condition = _column_condition(builder, resolved[0], resolved[1], keyword)
            join = get_join(first_keyword, last_was_and, last_was_not)

        if condition is None:
            log.debug("Skipping filter term %r on %s", keyword.string if column is None else column, resource_type)
        else:
            builder.append(join + condition)
            first_keyword = False
        last_was_and = False
        last_was_not = False
        last_was_re = False

    where = builder.sql() or None
    clause = CompiledClause(
        where=where,
        order=order.sql(),
        first=first_row,
        max=max_rows,
        permissions=permissions,
        owner_filter=owner_filter,
        params=dict(builder.params),
    )
    log.debug("Compiled %s filter %r: where=%r order=%r", resource_type, filter, clause.where, clause.order)
    return clause


def compile_resource_filter(
    resource_type: str,
    filter: Optional[str],
    trash: bool = False,
    ignore_max_rows_per_page: bool = False,
    settings: Optional[FilterSettings] = None,
) -> CompiledClause:
    """:func:`filter_clause` with the column tables of a registered resource type."""
    resource = get_resource_type(resource_type)
    return filter_clause(
        resource.name,
        filter,
        resource.filter_columns,
        resource.select_columns(trash),
        resource.where_columns(trash),
        trash=trash,
        ignore_max_rows_per_page=ignore_max_rows_per_page,
        settings=settings,
        table=resource.table_name(trash),
    )


def filter_unknown_columns(
    filter: Optional[str],
    select_columns: Sequence[ColumnDecl],
    where_columns: Sequence[ColumnDecl],
) -> List[str]:
    """Column keywords that name neither a control nor a declared column."""
    unknown: List[str] = []
    for keyword in split_filter(filter, default_sort=None):
        column = keyword.column
        if column is None or column in CONTROL_COLUMNS or column in EXTRACTED_COLUMNS or column in TAG_COLUMNS:
            continue
        if _id_reference_type(column) is not None:
            continue
        if columns_select_column_with_type(select_columns, where_columns, column) is None and column not in unknown:
            unknown.append(column)
    return unknown
