"""
Database engine, session factory and declarative base.

The main database holds the locally cached short URLs, users, system
settings and background jobs. Visit data is never stored here, it is
always read from the Shlink API.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from shlink_ui.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # needed for SQLite + FastAPI (sessions cross the threadpool)
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 1800,
    }


engine = create_engine(settings.database_url, **_engine_options(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Session timeout (seconds) applied to every new DB connection.
# Updated at runtime by services.runtime_config.reconfigure().
_session_timeout = {"seconds": None}


def session_timeout_statements(dialect_name: str, seconds: int) -> list:
    """SQL statements that set the per-connection timeout for a dialect."""
    if dialect_name == "sqlite":
        return [f"PRAGMA busy_timeout = {int(seconds) * 1000}"]
    if dialect_name in ("mysql", "mariadb"):
        return [
            f"SET SESSION wait_timeout = {int(seconds)}",
            f"SET SESSION interactive_timeout = {int(seconds)}",
        ]
    if dialect_name == "postgresql":
        return [f"SET idle_in_transaction_session_timeout = {int(seconds) * 1000}"]
    return []


def set_session_timeout(seconds: int, bind=None) -> list:
    """
    Remember the timeout for future connections and apply it to one
    pooled connection right away.

    Returns the statements that were executed.
    """
    bind = bind or engine
    _session_timeout["seconds"] = int(seconds)
    statements = session_timeout_statements(bind.dialect.name, seconds)
    if statements:
        with bind.connect() as conn:
            for statement in statements:
                conn.exec_driver_sql(statement)
            conn.commit()
    return statements


@event.listens_for(engine, "connect")
def _apply_session_timeout(dbapi_connection, connection_record):
    seconds = _session_timeout["seconds"]
    if seconds is None:
        return
    cursor = dbapi_connection.cursor()
    try:
        for statement in session_timeout_statements(engine.dialect.name, seconds):
            cursor.execute(statement)
    finally:
        cursor.close()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
