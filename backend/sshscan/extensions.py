# sshscan/extensions.py
from __future__ import annotations
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()

SQLITE_BUSY_TIMEOUT_MS = 5000


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, _connection_record):
    # Fingerprint rows for a whole batch are rewritten at once; other
    # processes sharing the database file wait instead of failing. SQLite-only.
    module_name = type(dbapi_connection).__module__
    if "sqlite" not in module_name.lower():
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def init_extensions(app):
    """Bind ``db`` to the app and create the fingerprint table if missing."""
    db.init_app(app)
    with app.app_context():
        db.create_all()
