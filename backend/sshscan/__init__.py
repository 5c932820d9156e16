# sshscan/__init__.py
"""
App factory.

    - Scanner settings come from SSHSCAN_* environment variables (ScanConfig)
    - SSHSCAN_FINGERPRINT_DB selects a persistent fingerprint database;
      without it the app runs on an in-memory SQLite database and every
      batch correlates host keys in its own in-memory store
    - The scan orchestrator is built once per app and shared by requests
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Mapping, Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .config import ScanConfig
from .extensions import db, init_extensions
from . import models
from .scanner import ScanOrchestrator
from .scanner.fingerprints import SQLFingerprintStore
from .scans import scans_bp
from .scans.routes import ORCHESTRATOR_KEY

error_logger = logging.getLogger("sshscan.errors")


def create_app(
    config: Optional[Mapping[str, Any]] = None,
    scan_config: Optional[ScanConfig] = None,
) -> Flask:
    app = Flask(__name__)
    scan_config = scan_config or ScanConfig.from_env()

    # ── Logging ──────────────────────────────────────────────────────
    level = logging.getLevelName(scan_config.log_level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    app.logger.setLevel(level)

    # Werkzeug logs every request
    logging.getLogger("werkzeug").setLevel(logging.INFO)
    # Quieten noisy libraries
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    # ─────────────────────────────────────────────────────────────────

    # ── Database ─────────────────────────────────────────────────────
    app.config["SQLALCHEMY_DATABASE_URI"] = scan_config.fingerprint_db or "sqlite:///:memory:"
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SCAN_CONFIG"] = scan_config
    if config:
        app.config.update(config)

    # ── Extensions ───────────────────────────────────────────────────
    init_extensions(app)

    store = SQLFingerprintStore(db.session) if scan_config.fingerprint_db else None
    app.extensions[ORCHESTRATOR_KEY] = ScanOrchestrator(config=scan_config, store=store)

    # ── Blueprints ───────────────────────────────────────────────────
    app.register_blueprint(scans_bp)


    # ── Error Handlers ───────────────────────────────────────────────
    # Every error is JSON; tracebacks stay in the server log.

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.name, "message": e.description}), e.code

    @app.errorhandler(500)
    def internal_error(e):
        error_logger.error("Unhandled error:\n%s", traceback.format_exc())
        return jsonify({
            "error": "Internal Server Error",
            "message": "The scan service hit an unexpected error.",
        }), 500

    return app
