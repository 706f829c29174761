# backend/vulnmanage/resources.py
"""
Per resource type column tables.

Each resource type is plain data: its table, the names a filter may use, the
columns that appear in SELECT output, the columns that may only be filtered
on, and the sort expressions that differ from plain ``lower (column)``.
Expressions use ``{table}`` for the (possibly trash) table name.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .columns import ColumnDecl
from .errors import UnknownResourceType
from .keywords import KeywordType

log = logging.getLogger(__name__)

INTEGER = KeywordType.INTEGER
DOUBLE = KeywordType.DOUBLE
STRING = KeywordType.STRING

THREAT_LEVELS: Tuple[str, ...] = (
    "Critical",
    "High",
    "Medium",
    "Low",
    "Log",
    "None",
    "False Positive",
    "Error",
    "Debug",
)

TRENDS: Tuple[str, ...] = ("up", "down", "more", "less", "same")

RUN_STATUSES: Tuple[str, ...] = (
    "Container",
    "Delete Requested",
    "Ultimate Delete Requested",
    "Done",
    "New",
    "Requested",
    "Running",
    "Queued",
    "Stop Requested",
    "Stopped",
    "Interrupted",
    "Processing",
)

# Columns with a small fixed value set.  Free text only searches them when one
# of the values could match.
FREE_TEXT_ENUMS: Dict[str, Tuple[str, ...]] = {
    "threat": THREAT_LEVELS,
    "trend": TRENDS,
    "status": RUN_STATUSES,
}

SEVERITY_SORT = (
    "CASE CAST ({column} AS text)"
    " WHEN '' THEN '-Infinity'::real"
    " ELSE coalesce ({column}::real, '-Infinity'::real)"
    " END {direction}"
)
NATIVE_SORT = "{column} {direction}"
INET_SORT = "order_inet ({column}) {direction}"
THREAT_SORT = "order_threat ({column}) {direction}"
ROLES_SORT = (
    "CASE WHEN {column} LIKE 'Admin%' THEN '0' || {column}"
    " ELSE '1' || {column} END {direction}"
)
TASK_STATUS_SORT = (
    "(CASE WHEN {table}.target = 0 THEN 'Container'"
    " ELSE run_status_name ({table}.run_status)"
    " || lpad (CAST (task_progress ({table}.id) AS text), 3, '0')"
    " END) {direction}"
)
REPORT_STATUS_SORT = (
    "(CASE WHEN (SELECT target FROM tasks WHERE tasks.id = {table}.task) = 0"
    " THEN 'Container'"
    " ELSE run_status_name ({table}.scan_run_status)"
    " || lpad (CAST (report_progress ({table}.id) AS text), 3, '0')"
    " END) {direction}"
)
NOTE_NVT_SORT = "{table}.nvt {direction}, lower ({table}.text) ASC"

SEVERITY_COLUMNS: Tuple[str, ...] = (
    "severity",
    "new_severity",
    "original_severity",
    "cvss",
    "cvss_base",
    "max_cvss",
    "fp_per_host",
    "log_per_host",
    "low_per_host",
    "medium_per_host",
    "high_per_host",
    "critical_per_host",
)

NATIVE_COLUMNS: Tuple[str, ...] = (
    "created",
    "modified",
    "updated",
    "date",
    "total",
    "result_hosts",
    "results",
    "critical",
    "high",
    "medium",
    "low",
    "log",
    "false_positive",
    "qod",
    "next_due",
)


class ResourceType:
    """Column tables and sort rules of one resource type."""

    def __init__(
        self,
        name: str,
        table: str,
        filter_columns: Sequence[str],
        select_columns: Sequence[ColumnDecl],
        where_columns: Sequence[ColumnDecl] = (),
        sort_expressions: Optional[Mapping[str, str]] = None,
        free_text_enums: Optional[Mapping[str, Sequence[str]]] = None,
        trash_table: Optional[str] = None,
    ):
        self.name = name
        self.table = table
        self.trash_table = trash_table or f"{table}_trash"
        self.filter_columns: Tuple[str, ...] = tuple(filter_columns)
        self._select_columns: Tuple[ColumnDecl, ...] = tuple(select_columns)
        self._where_columns: Tuple[ColumnDecl, ...] = tuple(where_columns)
        sorts: Dict[str, str] = {}
        for column in SEVERITY_COLUMNS:
            sorts[column] = SEVERITY_SORT
        for column in NATIVE_COLUMNS:
            sorts[column] = NATIVE_SORT
        sorts.update(sort_expressions or {})
        self.sort_expressions: Dict[str, str] = sorts
        self.free_text_enums: Dict[str, Tuple[str, ...]] = {
            key: tuple(values) for key, values in (free_text_enums or FREE_TEXT_ENUMS).items()
        }

    def table_name(self, trash: bool = False) -> str:
        return self.trash_table if trash else self.table

    @staticmethod
    def _bind(columns: Iterable[ColumnDecl], table: str) -> List[ColumnDecl]:
        return [ColumnDecl(c.select.replace("{table}", table), c.filter, c.type) for c in columns]

    def select_columns(self, trash: bool = False) -> List[ColumnDecl]:
        return self._bind(self._select_columns, self.table_name(trash))

    def where_columns(self, trash: bool = False) -> List[ColumnDecl]:
        return self._bind(self._where_columns, self.table_name(trash))

    def __repr__(self) -> str:
        return f"ResourceType(name={self.name!r}, table={self.table!r})"


GET_ITERATOR_FILTER_COLUMNS: Tuple[str, ...] = ("uuid", "name", "comment", "created", "modified", "_owner")


def get_iterator_columns() -> List[ColumnDecl]:
    return [
        ColumnDecl("{table}.id", "id", INTEGER),
        ColumnDecl("{table}.uuid", "uuid", STRING),
        ColumnDecl("{table}.name", "name", STRING),
        ColumnDecl("{table}.comment", "comment", STRING),
        ColumnDecl("{table}.creation_time", "created", INTEGER),
        ColumnDecl("{table}.modification_time", "modified", INTEGER),
        ColumnDecl(
            "(SELECT name FROM users AS inner_users WHERE inner_users.id = {table}.owner)",
            "_owner",
            STRING,
        ),
        ColumnDecl("{table}.owner", None, INTEGER),
    ]


def _host_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl("1", "writable", INTEGER),
        ColumnDecl("0", "in_use", INTEGER),
        ColumnDecl(
            "(SELECT round (CAST (severity AS numeric), 1) FROM host_max_severities"
            " WHERE host = {table}.id ORDER BY creation_time DESC LIMIT 1)",
            "severity",
            DOUBLE,
        ),
        ColumnDecl(
            "(SELECT coalesce (value, '[unknown]') FROM host_details"
            " WHERE host = {table}.id AND name = 'best_os_cpe'"
            " ORDER BY id DESC LIMIT 1)",
            "os",
            STRING,
        ),
        ColumnDecl(
            "(SELECT string_agg (name, ', ') FROM oss"
            " WHERE id IN (SELECT DISTINCT os FROM host_oss WHERE host = {table}.id))",
            "oss",
            STRING,
        ),
        ColumnDecl(
            "(SELECT value FROM host_identifiers WHERE host = {table}.id"
            " AND name = 'hostname' ORDER BY creation_time DESC LIMIT 1)",
            "hostname",
            STRING,
        ),
        ColumnDecl(
            "(SELECT value FROM host_identifiers WHERE host = {table}.id"
            " AND name = 'ip' ORDER BY creation_time DESC LIMIT 1)",
            "ip",
            STRING,
        ),
    ]
    where = [
        ColumnDecl(
            "(SELECT severity_to_level (CAST (severity AS numeric), 0) FROM host_max_severities"
            " WHERE host = {table}.id ORDER BY creation_time DESC LIMIT 1)",
            "severity_level",
            STRING,
        ),
        ColumnDecl("{table}.modification_time", "updated", INTEGER),
        ColumnDecl(
            "(SELECT value FROM host_details WHERE host = {table}.id"
            " AND name = 'best_os_cpe' ORDER BY id DESC LIMIT 1)",
            "best_os_cpe",
            STRING,
        ),
    ]
    return ResourceType(
        "host",
        "hosts",
        GET_ITERATOR_FILTER_COLUMNS
        + ("severity", "os", "oss", "hostname", "ip", "severity_level", "updated", "best_os_cpe"),
        select,
        where,
        sort_expressions={"ip": INET_SORT},
    )


def _filter_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl("{table}.type", "type", STRING),
        ColumnDecl("{table}.term", "term", STRING),
    ]
    return ResourceType("filter", "filters", GET_ITERATOR_FILTER_COLUMNS + ("type", "term"), select)


def _task_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl("run_status_name ({table}.run_status)", "status", STRING),
        ColumnDecl(
            "(SELECT count(*) FROM reports WHERE reports.task = {table}.id)",
            "total",
            INTEGER,
        ),
        ColumnDecl("task_threat_level ({table}.id, 0, 70)", "threat", STRING),
        ColumnDecl("task_trend ({table}.id, 0, 70)", "trend", STRING),
        ColumnDecl("task_severity ({table}.id, 0, 70)", "severity", DOUBLE),
        ColumnDecl(
            "(SELECT name FROM targets WHERE targets.id = {table}.target)",
            "target",
            STRING,
        ),
        ColumnDecl("{table}.usage_type", "usage_type", STRING),
        ColumnDecl("{table}.hosts_ordering", "hosts_ordering", STRING),
    ]
    where = [
        ColumnDecl(
            "(SELECT max (creation_time) FROM reports WHERE reports.task = {table}.id)",
            "last",
            INTEGER,
        ),
        ColumnDecl(
            "(SELECT name FROM schedules WHERE schedules.id = {table}.schedule)",
            "schedule",
            STRING,
        ),
    ]
    return ResourceType(
        "task",
        "tasks",
        GET_ITERATOR_FILTER_COLUMNS
        + ("status", "total", "threat", "trend", "severity", "target", "usage_type", "schedule", "last"),
        select,
        where,
        sort_expressions={
            "status": TASK_STATUS_SORT,
            "threat": THREAT_SORT,
            "last": NATIVE_SORT,
        },
    )


def _report_type() -> ResourceType:
    select = [
        ColumnDecl("{table}.id", "id", INTEGER),
        ColumnDecl("{table}.uuid", "uuid", STRING),
        ColumnDecl(
            "(SELECT name FROM tasks WHERE tasks.id = {table}.task)",
            "name",
            STRING,
        ),
        ColumnDecl("''", "comment", STRING),
        ColumnDecl("{table}.creation_time", "created", INTEGER),
        ColumnDecl("{table}.modification_time", "modified", INTEGER),
        ColumnDecl("{table}.date", "date", INTEGER),
        ColumnDecl("run_status_name ({table}.scan_run_status)", "status", STRING),
        ColumnDecl("report_severity ({table}.id, 0, 70)", "severity", DOUBLE),
        ColumnDecl("report_severity_count ({table}.id, 0, 70, 'High')", "high", INTEGER),
        ColumnDecl("report_severity_count ({table}.id, 0, 70, 'Medium')", "medium", INTEGER),
        ColumnDecl("report_severity_count ({table}.id, 0, 70, 'Low')", "low", INTEGER),
        ColumnDecl("report_severity_count ({table}.id, 0, 70, 'Log')", "log", INTEGER),
        ColumnDecl("report_host_count ({table}.id)", "hosts", INTEGER),
        ColumnDecl("report_result_host_count ({table}.id, 70)", "result_hosts", INTEGER),
        ColumnDecl("{table}.task", None, INTEGER),
        ColumnDecl(
            "(SELECT name FROM users AS inner_users WHERE inner_users.id = {table}.owner)",
            "_owner",
            STRING,
        ),
    ]
    return ResourceType(
        "report",
        "reports",
        ("uuid", "name", "created", "modified", "date", "status", "severity", "high", "medium", "low",
         "log", "hosts", "result_hosts", "_owner"),
        select,
        sort_expressions={"status": REPORT_STATUS_SORT},
    )


def _result_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl("{table}.host", "host", STRING),
        ColumnDecl("{table}.hostname", "hostname", STRING),
        ColumnDecl("{table}.port", "port", STRING),
        ColumnDecl("{table}.nvt", "nvt", STRING),
        ColumnDecl("{table}.severity", "severity", DOUBLE),
        ColumnDecl("{table}.qod", "qod", INTEGER),
        ColumnDecl("{table}.type", "type", STRING),
        ColumnDecl("{table}.description", "description", STRING),
        ColumnDecl("severity_to_level ({table}.severity, 0)", "threat", STRING),
    ]
    return ResourceType(
        "result",
        "results",
        GET_ITERATOR_FILTER_COLUMNS
        + ("host", "hostname", "port", "nvt", "severity", "qod", "type", "description", "threat"),
        select,
        sort_expressions={"host": INET_SORT, "ip": INET_SORT},
    )


def _credential_store_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl("{table}.version", "version", STRING),
        ColumnDecl("{table}.host", "host", STRING),
        ColumnDecl("{table}.path", "path", STRING),
        ColumnDecl("{table}.port", "port", INTEGER),
        ColumnDecl("{table}.active", "active", INTEGER),
    ]
    return ResourceType(
        "credential_store",
        "credential_stores",
        GET_ITERATOR_FILTER_COLUMNS + ("version", "host", "path", "port", "active"),
        select,
        sort_expressions={"host": INET_SORT},
    )


def _note_columns(extra: Sequence[ColumnDecl]) -> List[ColumnDecl]:
    return [
        ColumnDecl("{table}.id", "id", INTEGER),
        ColumnDecl("{table}.uuid", "uuid", STRING),
        ColumnDecl(
            "(SELECT name FROM nvts WHERE nvts.oid = {table}.nvt)",
            "name",
            STRING,
        ),
        ColumnDecl("''", "comment", STRING),
        ColumnDecl("{table}.creation_time", "created", INTEGER),
        ColumnDecl("{table}.modification_time", "modified", INTEGER),
        ColumnDecl("{table}.nvt", "nvt_id", STRING),
        ColumnDecl("{table}.text", "text", STRING),
        ColumnDecl("{table}.hosts", "hosts", STRING),
        ColumnDecl("{table}.port", "port", STRING),
        ColumnDecl(
            "(CASE WHEN {table}.end_time = 0 OR {table}.end_time >= m_now () THEN 1 ELSE 0 END)",
            "active",
            INTEGER,
        ),
        ColumnDecl(
            "(SELECT name FROM tasks WHERE tasks.id = {table}.task)",
            "task_name",
            STRING,
        ),
        ColumnDecl(
            "(SELECT name FROM users AS inner_users WHERE inner_users.id = {table}.owner)",
            "_owner",
            STRING,
        ),
    ] + list(extra)


def _note_type() -> ResourceType:
    return ResourceType(
        "note",
        "notes",
        ("uuid", "name", "nvt", "text", "nvt_id", "task_name", "task_id", "hosts", "port", "active",
         "created", "modified", "_owner"),
        _note_columns([]),
        [ColumnDecl("{table}.nvt", "nvt", STRING)],
        sort_expressions={"name": NOTE_NVT_SORT, "nvt": NOTE_NVT_SORT},
    )


def _override_type() -> ResourceType:
    return ResourceType(
        "override",
        "overrides",
        ("uuid", "name", "nvt", "text", "nvt_id", "task_name", "task_id", "hosts", "port", "active",
         "new_severity", "created", "modified", "_owner"),
        _note_columns([ColumnDecl("{table}.new_severity", "new_severity", DOUBLE)]),
        [ColumnDecl("{table}.nvt", "nvt", STRING)],
        sort_expressions={"name": NOTE_NVT_SORT, "nvt": NOTE_NVT_SORT},
    )


def _role_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl(
            "(SELECT string_agg (name, ', ') FROM users"
            " WHERE id IN (SELECT \"user\" FROM role_users WHERE role = {table}.id))",
            "users",
            STRING,
        ),
    ]
    return ResourceType("role", "roles", GET_ITERATOR_FILTER_COLUMNS + ("users",), select)


def _user_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl("{table}.method", "method", STRING),
        ColumnDecl("{table}.hosts", "hosts", STRING),
        ColumnDecl(
            "(SELECT string_agg (name, ', ' ORDER BY name) FROM roles"
            " WHERE id IN (SELECT role FROM role_users WHERE \"user\" = {table}.id))",
            "roles",
            STRING,
        ),
    ]
    return ResourceType(
        "user",
        "users",
        GET_ITERATOR_FILTER_COLUMNS + ("method", "roles", "hosts"),
        select,
        sort_expressions={"roles": ROLES_SORT, "hosts": "lower ({column}) {direction}"},
    )


def _target_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl("{table}.hosts", "hosts", STRING),
        ColumnDecl("{table}.exclude_hosts", "exclude_hosts", STRING),
        ColumnDecl(
            "(SELECT name FROM port_lists WHERE port_lists.id = {table}.port_list)",
            "port_list",
            STRING,
        ),
        ColumnDecl("{table}.port_list", None, INTEGER),
    ]
    return ResourceType(
        "target",
        "targets",
        GET_ITERATOR_FILTER_COLUMNS + ("hosts", "exclude_hosts", "port_list"),
        select,
        sort_expressions={"hosts": "lower ({column}) {direction}"},
    )


def _tag_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl("{table}.resource_type", "resource_type", STRING),
        ColumnDecl("{table}.active", "active", INTEGER),
        ColumnDecl("{table}.value", "value", STRING),
        ColumnDecl(
            "(SELECT count(*) FROM tag_resources WHERE tag = {table}.id)",
            "resources",
            INTEGER,
        ),
    ]
    return ResourceType(
        "tag",
        "tags",
        GET_ITERATOR_FILTER_COLUMNS + ("resource_type", "active", "value", "resources"),
        select,
        sort_expressions={"resources": NATIVE_SORT},
    )


def _port_list_type() -> ResourceType:
    select = get_iterator_columns() + [
        ColumnDecl(
            "(SELECT count(*) FROM port_ranges WHERE port_list = {table}.id)",
            "port_ranges",
            INTEGER,
        ),
        ColumnDecl("{table}.predefined", "predefined", INTEGER),
    ]
    return ResourceType(
        "port_list",
        "port_lists",
        GET_ITERATOR_FILTER_COLUMNS + ("port_ranges", "predefined"),
        select,
        sort_expressions={"port_ranges": NATIVE_SORT},
    )


def _build_registry() -> Dict[str, ResourceType]:
    types = [
        _host_type(),
        _filter_type(),
        _task_type(),
        _report_type(),
        _result_type(),
        _credential_store_type(),
        _note_type(),
        _override_type(),
        _role_type(),
        _user_type(),
        _target_type(),
        _tag_type(),
        _port_list_type(),
    ]
    return {resource.name: resource for resource in types}


RESOURCE_TYPES: Dict[str, ResourceType] = _build_registry()


def get_resource_type(name: str) -> ResourceType:
    """Look up a registered resource type; a miss is a caller bug, not bad user input."""
    key = (name or "").strip().lower()
    try:
        return RESOURCE_TYPES[key]
    except KeyError:
        raise UnknownResourceType(name) from None


def register_resource_type(resource: ResourceType) -> None:
    if resource.name in RESOURCE_TYPES:
        log.warning("Replacing column tables of resource type %r", resource.name)
    RESOURCE_TYPES[resource.name] = resource
