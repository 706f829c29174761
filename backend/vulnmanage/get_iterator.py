# backend/vulnmanage/get_iterator.py
"""
Assemble and run the SELECT and COUNT statements behind resource listings.

The WHERE clause comes from :func:`vulnmanage.filter_clause.filter_clause`;
this module adds the select list, the owner restriction, any caller supplied
access clause and the LIMIT/OFFSET window.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import text
from sqlalchemy.orm import Session

from .columns import columns_build_select
from .config_loader import FilterSettings
from .errors import FilterNotFound
from .filter_clause import CompiledClause, filter_clause
from .resources import ResourceType, get_resource_type

log = logging.getLogger(__name__)

OWNER_ANY = "any"


@dataclass
class GetData:
    """Parameters of one GET request for a resource type."""

    filter: Optional[str] = None
    filt_id: Optional[str] = None
    trash: bool = False
    ignore_max_rows_per_page: bool = False
    ignore_pagination: bool = False


def filter_term(session: Session, filt_id: str) -> Optional[str]:
    """Term of the stored filter with UUID ``filt_id``."""
    return session.execute(
        text("SELECT term FROM filters WHERE uuid = :uuid"),
        {"uuid": filt_id},
    ).scalar()


def resolve_get_filter(get: GetData, session: Optional[Session] = None) -> str:
    """
    The filter a GET applies: a stored filter named by ``filt_id`` wins over
    the inline ``filter``.  ``filt_id`` of ``"0"`` means no stored filter.
    """
    if get.filt_id and get.filt_id != "0":
        if session is None:
            raise FilterNotFound(get.filt_id)
        term = filter_term(session, get.filt_id)
        if term is None:
            raise FilterNotFound(get.filt_id)
        return term
    return get.filter or ""


def _resource(resource: Union[str, ResourceType]) -> ResourceType:
    if isinstance(resource, ResourceType):
        return resource
    return get_resource_type(resource)


def _compile(resource: ResourceType, get: GetData, term: str, settings: Optional[FilterSettings]) -> CompiledClause:
    return filter_clause(
        resource.name,
        term,
        resource.filter_columns,
        resource.select_columns(get.trash),
        resource.where_columns(get.trash),
        trash=get.trash,
        ignore_max_rows_per_page=get.ignore_max_rows_per_page,
        settings=settings,
        table=resource.table_name(get.trash),
    )


def _where_sql(
    table: str,
    compiled: CompiledClause,
    params: Dict[str, Any],
    extra_where: Optional[str],
) -> str:
    clauses: List[str] = []
    if compiled.where:
        clauses.append(f"({compiled.where})")
    owner = compiled.owner_filter
    if owner and owner.lower() != OWNER_ANY:
        # intersects with any access clause the caller passes in extra_where
        clauses.append(f"({table}.owner IN (SELECT id FROM users WHERE name = :owner_name))")
        params["owner_name"] = owner
    if extra_where:
        clauses.append(f"({extra_where})")
    if not clauses:
        return ""
    return " WHERE " + " AND ".join(clauses)


def build_get_query(
    resource: Union[str, ResourceType],
    get: GetData,
    settings: Optional[FilterSettings] = None,
    extra_where: Optional[str] = None,
    extra_params: Optional[Dict[str, Any]] = None,
    term: Optional[str] = None,
) -> Tuple[str, Dict[str, Any], CompiledClause]:
    """
    ``SELECT`` for one page of a resource listing.

    ``extra_where`` is trusted SQL (an access-control clause for example) and
    may reference names in ``extra_params``.  ``term`` overrides the GET's
    inline filter; pass the result of :func:`resolve_get_filter`.
    """
    resource = _resource(resource)
    term = (get.filter or "") if term is None else term
    compiled = _compile(resource, get, term, settings)
    table = resource.table_name(get.trash)

    params: Dict[str, Any] = dict(compiled.params)
    if extra_params:
        params.update(extra_params)

    sql = f"SELECT {columns_build_select(resource.select_columns(get.trash))} FROM {table}"
    sql += _where_sql(table, compiled, params, extra_where)
    if compiled.order:
        sql += " " + compiled.order
    if not get.ignore_pagination:
        if compiled.max > 0:
            sql += " LIMIT :limit"
            params["limit"] = compiled.max
        if compiled.first > 0:
            sql += " OFFSET :offset"
            params["offset"] = compiled.first
    log.debug("GET %s: %s", resource.name, sql)
    return sql, params, compiled


def build_count_query(
    resource: Union[str, ResourceType],
    get: GetData,
    settings: Optional[FilterSettings] = None,
    extra_where: Optional[str] = None,
    extra_params: Optional[Dict[str, Any]] = None,
    term: Optional[str] = None,
) -> Tuple[str, Dict[str, Any], CompiledClause]:
    """``SELECT count(*)`` over everything the filter matches, ignoring the page window."""
    resource = _resource(resource)
    term = (get.filter or "") if term is None else term
    compiled = _compile(resource, get, term, settings)
    table = resource.table_name(get.trash)

    params: Dict[str, Any] = dict(compiled.params)
    if extra_params:
        params.update(extra_params)

    sql = f"SELECT count(*) FROM {table}" + _where_sql(table, compiled, params, extra_where)
    log.debug("COUNT %s: %s", resource.name, sql)
    return sql, params, compiled


def get_resources(
    session: Session,
    resource: Union[str, ResourceType],
    get: GetData,
    settings: Optional[FilterSettings] = None,
    extra_where: Optional[str] = None,
    extra_params: Optional[Dict[str, Any]] = None,
) -> Tuple[List[Dict[str, Any]], CompiledClause]:
    term = resolve_get_filter(get, session)
    sql, params, compiled = build_get_query(resource, get, settings, extra_where, extra_params, term=term)
    rows = session.execute(text(sql), params).mappings().all()
    return [dict(row) for row in rows], compiled


def count_resources(
    session: Session,
    resource: Union[str, ResourceType],
    get: GetData,
    settings: Optional[FilterSettings] = None,
    extra_where: Optional[str] = None,
    extra_params: Optional[Dict[str, Any]] = None,
) -> int:
    term = resolve_get_filter(get, session)
    sql, params, _compiled = build_count_query(resource, get, settings, extra_where, extra_params, term=term)
    return int(session.execute(text(sql), params).scalar() or 0)
