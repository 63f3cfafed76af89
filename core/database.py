# core/database.py
# Central SQLAlchemy setup: engine factory, session factory, Base
# All models across the app must import THIS Base.

from typing import Iterator, Tuple

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all models
Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    # For SQLite + multithreaded FastAPI, set check_same_thread=False
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    kwargs = {}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every session sees an empty database
        kwargs["poolclass"] = StaticPool

    engine = create_engine(
        database_url,
        echo=False,
        future=True,
        connect_args=connect_args,
        **kwargs,
    )

    if database_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            # cascades on conversations -> messages need FK enforcement in SQLite
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return engine


def init_database(database_url: str) -> Tuple[Engine, sessionmaker]:
    """Create the engine, the tables (dev; use migrations in prod) and a session factory."""
    # models must be imported so SQLAlchemy registers them on Base
    import models  # noqa: F401

    engine = build_engine(database_url)
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        future=True,
        expire_on_commit=False,
    )
    return engine, session_factory


# Dependency for FastAPI routes
def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
