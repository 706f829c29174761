"""
Filter compiler package.

Avoid side effects here: no network, DB, or logging setup.  Run the HTTP
surface with ``python -m flask --app vulnmanage.main:create_app run``.
"""

from .filter_clause import CompiledClause, compile_resource_filter, filter_clause, get_join
from .filter_controls import clean_filter, clean_filter_remove, filter_controls, manage_max_rows
from .keywords import Keyword, KeywordRelation, KeywordType, split_filter

__all__ = [
    "CompiledClause",
    "Keyword",
    "KeywordRelation",
    "KeywordType",
    "clean_filter",
    "clean_filter_remove",
    "compile_resource_filter",
    "filter_clause",
    "filter_controls",
    "get_join",
    "manage_max_rows",
    "split_filter",
]
