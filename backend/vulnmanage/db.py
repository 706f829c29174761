# backend/vulnmanage/db.py
from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from flask import g, has_app_context
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

log = logging.getLogger(__name__)

# Module-level singletons
_ENGINE: Optional[Engine] = None
_SESSION_FACTORY: Optional[sessionmaker] = None
_SESSION_LOCAL: Optional[scoped_session] = None
_INIT_LOCK = threading.Lock()

#   repo_root/backend/vulnmanage/db.py  -> parents[2] == repo_root
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_ENV = REPO_ROOT / "backend" / ".env"
ROOT_ENV = REPO_ROOT / ".env"
OPTIONAL_DB_JSON = REPO_ROOT / "config" / "db.json"


def _load_env_once() -> None:
    """Load env files if present, never overwriting the real environment."""
    if BACKEND_ENV.exists():
        log.debug("loading backend/.env")
        load_dotenv(BACKEND_ENV, override=False)
    if ROOT_ENV.exists():
        log.debug("loading root .env")
        load_dotenv(ROOT_ENV, override=False)


def _from_db_json() -> dict[str, str]:
    """
    Connection parts from config/db.json, used when the environment lacks them.
    File format example:
        {
          "DB_USER": "gvm",
          "DB_NAME": "gvmd",
          "DB_HOST": "127.0.0.1",
          "DB_PORT": 5432
        }
    """
    if not OPTIONAL_DB_JSON.exists():
        return {}
    try:
        data = json.loads(OPTIONAL_DB_JSON.read_text(encoding="utf-8"))
    except Exception:
        log.warning("Failed to read %s", OPTIONAL_DB_JSON, exc_info=True)
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items()}


def _build_db_url() -> str:
    """
    Decide the effective database URL.
    Precedence:
      1) DATABASE_URL
      2) DB_* envs (or PG*), gaps filled from config/db.json
    """
    _load_env_once()

    url = os.getenv("DATABASE_URL")
    if url:
        return url

    cfg = {
        "DB_USER": os.getenv("DB_USER") or os.getenv("PGUSER"),
        "DB_PASSWORD": os.getenv("DB_PASSWORD") or os.getenv("PGPASSWORD"),
        "DB_NAME": os.getenv("DB_NAME") or os.getenv("PGDATABASE"),
        "DB_HOST": os.getenv("DB_HOST") or os.getenv("PGHOST"),
        "DB_PORT": os.getenv("DB_PORT") or os.getenv("PGPORT"),
    }
    if any(v is None for v in cfg.values()):
        json_fallback = _from_db_json()
        for k in cfg:
            if cfg[k] is None and k in json_fallback:
                cfg[k] = json_fallback[k]

    user = cfg["DB_USER"] or "gvm"
    pwd = cfg["DB_PASSWORD"] or ""
    name = cfg["DB_NAME"] or "gvmd"
    host = cfg["DB_HOST"] or "127.0.0.1"
    port = str(cfg["DB_PORT"] or "5432")

    credentials = f"{user}:{quote_plus(pwd)}" if pwd else user
    # SQLAlchemy 2.x with the psycopg (v3) driver
    return f"postgresql+psycopg://{credentials}@{host}:{port}/{name}"


def get_engine() -> Engine:
    """Process-wide pooled Engine, created on first use (thread-safe)."""
    global _ENGINE, _SESSION_FACTORY, _SESSION_LOCAL
    if _ENGINE is not None:
        return _ENGINE

    with _INIT_LOCK:
        if _ENGINE is not None:
            return _ENGINE

        db_url = _build_db_url()
        echo = bool(int(os.getenv("SQLALCHEMY_ECHO", "0")))
        pool_size = int(os.getenv("SQLALCHEMY_POOL_SIZE", "5"))
        max_overflow = int(os.getenv("SQLALCHEMY_MAX_OVERFLOW", "10"))
        pool_pre_ping = bool(int(os.getenv("SQLALCHEMY_POOL_PRE_PING", "1")))

        # never log the password
        log.info(
            "Creating DB engine host=%s echo=%s pool_size=%s max_overflow=%s pre_ping=%s",
            db_url.rsplit("@", 1)[-1],
            echo,
            pool_size,
            max_overflow,
            pool_pre_ping,
        )
        _ENGINE = create_engine(
            db_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
        )
        _SESSION_FACTORY = sessionmaker(bind=_ENGINE)
        _SESSION_LOCAL = scoped_session(_SESSION_FACTORY)
        return _ENGINE


def get_db_conn() -> Connection:
    """Connection from the global Engine; close it (or use ``with``)."""
    return get_engine().connect()


def get_or_create_session() -> Session:
    """The current request's Session, created from the scoped_session on first use."""
    if _SESSION_LOCAL is None:
        get_engine()
    s = getattr(g, "db", None)
    if s is None:
        s = _SESSION_LOCAL()
        g.db = s
    return s


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Yield a session.  Inside a Flask app context this is the request session;
    elsewhere (CLI tools, tests) a temporary one that is closed afterwards.
    """
    global _SESSION_FACTORY
    created_here = False

    if has_app_context():
        session = get_or_create_session()
    else:
        if _SESSION_FACTORY is None:
            get_engine()
        session = _SESSION_FACTORY()
        created_here = True

    try:
        yield session
    except Exception:
        if session.in_transaction():
            session.rollback()
        raise
    finally:
        if created_here:
            session.close()


def ping_db() -> bool:
    """Quick health check."""
    try:
        with get_db_conn() as conn:
            conn.execute(text("select 1"))
        return True
    except Exception:
        log.exception("DB ping failed")
        return False


def dispose_engine() -> None:
    """Close all pooled connections (tests, graceful shutdown)."""
    global _ENGINE, _SESSION_FACTORY, _SESSION_LOCAL

    if _SESSION_LOCAL is not None:
        _SESSION_LOCAL.remove()
        _SESSION_LOCAL = None
    if _ENGINE is not None:
        _ENGINE.dispose()
        _ENGINE = None
    _SESSION_FACTORY = None


def db_cleanup(_exc) -> None:
    try:
        g.pop("db", None)
    except RuntimeError:
        # no app context, so no g
        pass
    if _SESSION_LOCAL is not None:
        _SESSION_LOCAL.remove()
