"""
Database connectivity for the knowledge store.

- make_engine / make_session_factory: SQLAlchemy engine and session construction
- apply_schema: run the bundled schema.sql (Postgres only; idempotent)
- create_tables: create the portable ORM tables (any dialect; used with SQLite in tests)
"""
from __future__ import annotations

from contextlib import contextmanager
from importlib import resources
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings
from .errors import StoreError
from .tables import Base


def make_engine(database_url: Optional[str] = None, *, echo: bool = False) -> Engine:
    url = database_url or Settings.from_env_or_file(export=False).require_database()
    # Supabase hands out postgres:// URLs; SQLAlchemy wants an explicit driver
    if url.startswith("postgres://"):
        url = "postgresql+psycopg://" + url[len("postgres://"):]
    elif url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://"):]
    if url.startswith("sqlite"):
        engine = create_engine(url, echo=echo)

        @event.listens_for(engine, "connect")
        def _enable_sqlite_fks(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(url, echo=echo, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Commit on success, roll back and re-raise on error, always close."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def read_schema_sql() -> str:
    return resources.files("api_knowledge").joinpath("schema.sql").read_text(encoding="utf-8")


def apply_schema(engine: Engine) -> None:
    """Execute schema.sql against a Postgres database. Safe to run repeatedly."""
    if engine.dialect.name != "postgresql":
        raise StoreError(f"schema.sql targets Postgres; use create_tables() for {engine.dialect.name}")
    sql = read_schema_sql()
    # no_parameters: hand the multi-statement script to the driver untouched
    with engine.begin() as conn:
        conn.execution_options(no_parameters=True).exec_driver_sql(sql)
    print(f"[store] Applied schema.sql to {engine.url.render_as_string(hide_password=True)}")


def create_tables(engine: Engine) -> None:
    Base.metadata.create_all(engine)
