# backend/vulnmanage/sql_builder.py
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.dialects import postgresql

log = logging.getLogger(__name__)


def quote_sql_string(value: Any) -> str:
    """Standard SQL string literal: single quotes, embedded quotes doubled."""
    return "'" + str(value).replace("'", "''") + "'"


class ClauseBuilder:
    """
    Accumulates SQL text fragments for one clause.

    Everything passed to :meth:`append` must be trusted text (SQL keywords,
    declared column expressions, whitelisted table names).  User supplied
    values go through :meth:`literal`, which turns strings into bound
    parameters.  Numbers that were parsed by the tokenizer are inlined.
    """

    def __init__(self, prefix: str = "fp", params: Optional[Dict[str, Any]] = None):
        self.prefix = prefix
        self.params: Dict[str, Any] = params if params is not None else {}
        self._parts: List[str] = []

    def literal(self, value: Any) -> str:
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float) and math.isfinite(value):
            return repr(value)
        name = f"{self.prefix}_{len(self.params)}"
        while name in self.params:
            name = f"{name}_"
        self.params[name] = str(value)
        return f":{name}"

    def contains_pattern(self, value: str) -> str:
        """Bound ``%value%`` pattern for ILIKE."""
        return self.literal(f"%{value}%")

    def append(self, fragment: str) -> "ClauseBuilder":
        self._parts.append(fragment)
        return self

    def sql(self) -> str:
        return "".join(self._parts).strip()

    def __bool__(self) -> bool:
        return bool(self.sql())


def render_literal_sql(sql: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Inline bound parameters for display and logging.

    Never feed the result back to the database; execute ``sql`` with ``params``.
    """
    statement = text(sql)
    if params:
        statement = statement.bindparams(**dict(params))
    dialect = postgresql.dialect(paramstyle="named")
    return str(statement.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))
