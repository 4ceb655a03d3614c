"""Database connection and session management for the on-device store."""
import importlib
from pathlib import Path
from urllib.parse import quote, urlencode

from sqlalchemy import create_engine, event
from sqlalchemy.dialects.sqlite import pysqlite as sqlite_pysqlite
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def _build_sqlcipher_url(raw_url: str, database_key: str) -> str:
    parsed_url = make_url(raw_url)
    if parsed_url.password:
        return raw_url

    encoded_key = quote(database_key, safe="")
    database_path = parsed_url.database or ""
    query = f"?{urlencode(parsed_url.query)}" if parsed_url.query else ""
    return f"{parsed_url.drivername}://:{encoded_key}@/{database_path}{query}"


def _ensure_parent_dir(database_url: str) -> None:
    """Create the directory holding a file-backed SQLite database."""
    database_path = make_url(database_url).database
    if not database_path or database_path == ":memory:" or database_path.startswith("file:"):
        return
    Path(database_path).parent.mkdir(parents=True, exist_ok=True)


def create_local_engine(database_url: str, database_key: str = "", echo: bool = False) -> Engine:
    """Create the engine backing the local store.

    ``sqlite+pysqlcipher`` URLs encrypt the database file; they fail closed
    when the key is missing or the driver cannot be imported.
    """
    uses_sqlcipher = "pysqlcipher" in database_url

    if uses_sqlcipher:
        if not database_key:
            raise ValueError("DATABASE_KEY must be set when using SQLCipher.")
        try:
            importlib.import_module("pysqlcipher3")
        except ImportError as exc:
            raise RuntimeError("pysqlcipher3 is required but failed to import.") from exc

    is_sqlite = database_url.startswith("sqlite")

    # The scheduler thread and the caller's thread share connections
    connect_args = {"check_same_thread": False} if is_sqlite else {}

    if is_sqlite:
        _ensure_parent_dir(database_url)

    engine_kwargs = {}
    if is_sqlite and make_url(database_url).database in (None, "", ":memory:"):
        # One shared connection, otherwise every thread sees its own empty database
        engine_kwargs["poolclass"] = StaticPool

    url = _build_sqlcipher_url(database_url, database_key) if uses_sqlcipher else database_url

    if uses_sqlcipher:
        # pysqlcipher3 does not support sqlite3's deterministic create_function kwarg.
        # SQLAlchemy checks this through sqlite_pysqlite.util.py38 when creating dialect
        # on-connect handlers, so we disable it only while creating this engine.
        original_py38 = sqlite_pysqlite.util.py38
        sqlite_pysqlite.util.py38 = False
        try:
            engine = create_engine(url, connect_args=connect_args, echo=echo, **engine_kwargs)
        finally:
            sqlite_pysqlite.util.py38 = original_py38
    else:
        engine = create_engine(url, connect_args=connect_args, echo=echo, **engine_kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
            cursor = dbapi_connection.cursor()
            if uses_sqlcipher:
                cursor.execute("PRAGMA cipher_memory_security = ON;")
            cursor.execute("PRAGMA foreign_keys = ON;")
            cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Sessions whose objects stay readable after commit.

    The local store hands rows back to callers after the session closes.
    """
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    """Create all local store tables that do not exist yet."""
    # Import all models so they're registered with Base
    from sprout_sync import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
