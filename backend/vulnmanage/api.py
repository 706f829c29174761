# backend/vulnmanage/api.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from .config_loader import FilterSettings, get_filter_settings
from .db import session_scope
from .errors import InvalidFilterColumn
from .filter_clause import filter_unknown_columns
from .filter_controls import clean_filter, clean_filter_remove
from .get_iterator import GetData, count_resources, get_resources, resolve_get_filter
from .resources import ResourceType, get_resource_type

log = logging.getLogger(__name__)

bp = Blueprint("resources", __name__, url_prefix="/api")

_TRUE_WORDS = {"1", "true", "yes", "on"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_WORDS


def _settings() -> FilterSettings:
    settings = current_app.config.get("FILTER_SETTINGS")
    if isinstance(settings, FilterSettings):
        return settings
    return get_filter_settings()


def _request_values() -> Mapping[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, Mapping):
        merged = dict(request.values)
        merged.update(data)
        return merged
    return request.values


def _get_data_from_request() -> GetData:
    values = _request_values()
    return GetData(
        filter=values.get("filter"),
        filt_id=values.get("filt_id") or None,
        trash=_to_bool(values.get("trash")),
        ignore_max_rows_per_page=_to_bool(values.get("ignore_max_rows_per_page")),
        ignore_pagination=_to_bool(values.get("ignore_pagination")),
    )


def _check_columns(resource: ResourceType, term: str, trash: bool, settings: FilterSettings) -> None:
    """Reject unknown filter columns when strict mode is on."""
    if not settings.strict_filter_columns:
        return
    unknown = filter_unknown_columns(term, resource.select_columns(trash), resource.where_columns(trash))
    if unknown:
        raise InvalidFilterColumn(unknown)


@bp.route("/resources/<resource_type>", methods=["GET"])
def list_resources_api(resource_type: str):
    """
    GET /api/resources/<type>?filter=...&filt_id=...&trash=0|1

    Response:
      { "ok": true, "rows": [...], "first": 0, "max": 10, "filter": "<cleaned>" }
    """
    resource = get_resource_type(resource_type)
    settings = _settings()
    get = _get_data_from_request()
    try:
        with session_scope() as session:
            term = resolve_get_filter(get, session)
            _check_columns(resource, term, get.trash, settings)
            rows, compiled = get_resources(session, resource, replace(get, filter=term, filt_id=None), settings)
    except SQLAlchemyError:
        log.exception("list_resources_api: query failed for %s", resource.name)
        return jsonify(ok=False, error="database error"), 500

    return jsonify(
        ok=True,
        rows=rows,
        first=compiled.first,
        max=compiled.max,
        filter=clean_filter(term, get.ignore_max_rows_per_page, settings),
    )


@bp.route("/resources/<resource_type>/count", methods=["GET"])
def count_resources_api(resource_type: str):
    """GET /api/resources/<type>/count?filter=... -> { "ok": true, "count": N }"""
    resource = get_resource_type(resource_type)
    settings = _settings()
    get = _get_data_from_request()
    try:
        with session_scope() as session:
            term = resolve_get_filter(get, session)
            _check_columns(resource, term, get.trash, settings)
            count = count_resources(session, resource, replace(get, filter=term, filt_id=None), settings)
    except SQLAlchemyError:
        log.exception("count_resources_api: query failed for %s", resource.name)
        return jsonify(ok=False, error="database error"), 500
    return jsonify(ok=True, count=count)


@bp.route("/filters/clean", methods=["GET", "POST"])
def clean_filter_api():
    """
    GET|POST /api/filters/clean
      filter: the filter term
      remove: optional column whose keywords are dropped
    """
    values = _request_values()
    term = values.get("filter") or ""
    remove = values.get("remove") or None
    ignore = _to_bool(values.get("ignore_max_rows_per_page"))
    settings = _settings()
    if remove:
        cleaned = clean_filter_remove(term, remove, ignore, settings)
    else:
        cleaned = clean_filter(term, ignore, settings)
    return jsonify(ok=True, filter=cleaned)
