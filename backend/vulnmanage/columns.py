# backend/vulnmanage/columns.py
from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Tuple

from .keywords import KeywordType

log = logging.getLogger(__name__)


class ColumnDecl:
    """
    One entry of a resource type's column table.

    ``select`` is the trusted SQL expression, ``filter`` the name used in filter
    terms (None to use ``select`` itself).  A filter name with a leading ``_``
    can be filtered on by its bare name.
    """

    __slots__ = ("select", "filter", "type")

    def __init__(self, select: str, filter: Optional[str] = None, type: KeywordType = KeywordType.UNKNOWN):
        self.select = select
        self.filter = filter
        self.type = type

    def matches_alias(self, name: str) -> bool:
        if not self.filter:
            return False
        return self.filter == name or (self.filter.startswith("_") and self.filter[1:] == name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ColumnDecl):
            return NotImplemented
        return (self.select, self.filter, self.type) == (other.select, other.filter, other.type)

    def __hash__(self) -> int:
        return hash((self.select, self.filter, self.type))

    def __repr__(self) -> str:
        return f"ColumnDecl(select={self.select!r}, filter={self.filter!r}, type={self.type.name})"


# Resource types whose rows live in a "<type>s" table with integer ids and a
# uuid column, so "<type>_id=<uuid>" terms can be resolved.
DB_RESOURCE_TYPES = frozenset(
    {
        "alert",
        "config",
        "cpe",
        "credential",
        "credential_store",
        "cve",
        "cert_bund_adv",
        "dfn_cert_adv",
        "filter",
        "group",
        "host",
        "os",
        "note",
        "nvt",
        "ovaldef",
        "override",
        "port_list",
        "permission",
        "report",
        "report_format",
        "result",
        "role",
        "scanner",
        "schedule",
        "tag",
        "target",
        "task",
        "ticket",
        "tls_certificate",
        "user",
    }
)


def valid_db_resource_type(type_name: Optional[str]) -> bool:
    if not type_name:
        return False
    return type_name.lower() in DB_RESOURCE_TYPES


def _select_column_single(columns: Optional[Sequence[ColumnDecl]], name: str) -> Optional[ColumnDecl]:
    if not columns:
        return None
    for column in columns:
        if column.matches_alias(name):
            return column
    for column in columns:
        if column.select == name:
            return column
    return None


def columns_select_column_decl(
    select_columns: Optional[Sequence[ColumnDecl]],
    where_columns: Optional[Sequence[ColumnDecl]],
    name: str,
) -> Optional[ColumnDecl]:
    if not name:
        return None
    found = _select_column_single(select_columns, name)
    if found is None:
        found = _select_column_single(where_columns, name)
    return found


def columns_select_column_with_type(
    select_columns: Optional[Sequence[ColumnDecl]],
    where_columns: Optional[Sequence[ColumnDecl]],
    name: str,
) -> Optional[Tuple[str, KeywordType]]:
    """Resolve a filter column name to its SQL expression and declared type."""
    found = columns_select_column_decl(select_columns, where_columns, name)
    if found is None:
        return None
    return found.select, found.type


def columns_select_column(
    select_columns: Optional[Sequence[ColumnDecl]],
    where_columns: Optional[Sequence[ColumnDecl]],
    name: str,
) -> Optional[str]:
    resolved = columns_select_column_with_type(select_columns, where_columns, name)
    return resolved[0] if resolved else None


def filter_column_applies(filter_columns: Optional[Iterable[str]], name: str) -> bool:
    """Whether ``name`` is one of the filterable names (directly or as ``_name``)."""
    if not filter_columns or not name:
        return False
    for candidate in filter_columns:
        if candidate == name or (candidate.startswith("_") and candidate[1:] == name):
            return True
    return False


def column_type_is_numeric(column_type: KeywordType) -> bool:
    return column_type in (KeywordType.INTEGER, KeywordType.DOUBLE)


def columns_build_select(select_columns: Optional[Sequence[ColumnDecl]]) -> str:
    """Column list for a SELECT statement: ``expr AS alias, ...``."""
    if not select_columns:
        return "''"
    pieces = []
    for column in select_columns:
        if column.filter:
            pieces.append(f"{column.select} AS {column.filter}")
        else:
            pieces.append(column.select)
    return ", ".join(pieces)
