# backend/vulnmanage/main.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS

from . import db
from .api import bp as bp_resources
from .config_loader import FilterSettings, initialize_app_config
from .errors import register_error_handlers
from .logging_setup import start_log

# backend/.env, if present
DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(DOTENV_PATH, override=False)

log = logging.getLogger(__name__)


def create_app(settings: Optional[FilterSettings] = None, *, start_logging: bool = True) -> Flask:
    """Instantiate and configure the Flask application."""
    development = os.getenv("FLASK_ENV") == "development"
    if start_logging:
        start_log(app_name="vulnmanage", level=logging.DEBUG if development else None)

    app = Flask(__name__)
    CORS(app)

    if development:
        app.logger.setLevel(logging.DEBUG)
        log.debug("Start of logger debug level")

    initialize_app_config(app)
    if settings is not None:
        app.config["FILTER_SETTINGS"] = settings

    app.register_blueprint(bp_resources)
    register_error_handlers(app)

    @app.get("/api/health")
    def health():
        return jsonify(ok=db.ping_db())

    @app.teardown_appcontext
    def db_cleanup(_exc):
        db.db_cleanup(_exc)

    return app


if __name__ == "__main__":
    create_app().run(host=os.getenv("FLASK_RUN_HOST", "127.0.0.1"), port=int(os.getenv("FLASK_RUN_PORT", "5000")))
