# backend/tools/explain_filter.py
# run it from the repo root or backend/. --count uses backend/.env (DATABASE_URL).

from __future__ import annotations
import argparse, sys
from pathlib import Path

if __package__ in (None, ""):
    sys.path.insert(0, str(Path(__file__).resolve().parents[2]))
    from backend import bootstrap
    bootstrap(__file__)

from sqlalchemy import text

from vulnmanage.config_loader import get_filter_settings
from vulnmanage.filter_clause import compile_resource_filter, filter_unknown_columns
from vulnmanage.filter_controls import clean_filter, clean_filter_remove
from vulnmanage.get_iterator import GetData, build_count_query, build_get_query
from vulnmanage.resources import RESOURCE_TYPES, get_resource_type
from vulnmanage.sql_builder import render_literal_sql


def explain(resource_type: str, term: str, trash: bool, ignore_cap: bool) -> None:
    settings = get_filter_settings()
    resource = get_resource_type(resource_type)
    compiled = compile_resource_filter(resource.name, term, trash=trash,
                                       ignore_max_rows_per_page=ignore_cap, settings=settings)
    print(f"type:        {resource.name} ({resource.table_name(trash)})")
    print(f"filter:      {term!r}")
    print(f"where:       {compiled.where}")
    print(f"params:      {compiled.params}")
    print(f"order:       {compiled.order}")
    print(f"first/max:   {compiled.first} / {compiled.max}")
    if compiled.permissions:
        print(f"permissions: {compiled.permissions}")
    if compiled.owner_filter is not None:
        print(f"owner:       {compiled.owner_filter}")
    unknown = filter_unknown_columns(term, resource.select_columns(trash), resource.where_columns(trash))
    if unknown:
        print(f"unknown:     {', '.join(unknown)}")
    sql, params, _ = build_get_query(resource, GetData(filter=term, trash=trash,
                                                       ignore_max_rows_per_page=ignore_cap),
                                     settings=settings)
    print("\nSQL:")
    print(render_literal_sql(sql, params))


def count(resource_type: str, term: str, trash: bool) -> None:
    from vulnmanage.db import get_db_conn
    sql, params, _ = build_count_query(resource_type, GetData(filter=term, trash=trash),
                                       settings=get_filter_settings())
    with get_db_conn() as conn:
        print(f"\ncount: {conn.execute(text(sql), params).scalar()}")


def main():
    ap = argparse.ArgumentParser(description="Show the SQL a filter compiles to")
    ap.add_argument("filter", nargs="?", default="", help="Filter term, e.g. 'name=foo rows=5'")
    ap.add_argument("--type", default="task", choices=sorted(RESOURCE_TYPES), help="Resource type (default: task)")
    ap.add_argument("--trash", action="store_true", help="Compile against the trash table")
    ap.add_argument("--ignore-cap", action="store_true", help="Ignore the max rows per page setting")
    g = ap.add_mutually_exclusive_group()
    g.add_argument("--clean", action="store_true", help="Print the cleaned filter only")
    g.add_argument("--remove", metavar="COLUMN", help="Print the cleaned filter without COLUMN")
    g.add_argument("--count", action="store_true", help="Also run the count query against the database")
    args = ap.parse_args()

    settings = get_filter_settings()
    if args.clean:
        print(clean_filter(args.filter, args.ignore_cap, settings))
        return
    if args.remove:
        print(clean_filter_remove(args.filter, args.remove, args.ignore_cap, settings))
        return

    explain(args.type, args.filter, args.trash, args.ignore_cap)
    if args.count:
        count(args.type, args.filter, args.trash)

if __name__ == "__main__":
    main()
