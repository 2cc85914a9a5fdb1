"""SQLAlchemy engine and session helpers."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from dental_agent.config import DATABASE_ECHO, DATABASE_URL
from dental_agent.models import Base, Doctor

logger = logging.getLogger(__name__)


def build_engine(url: str | None = None) -> Engine:
    """Create an engine; SQLite connections are shared across worker threads."""
    url = url or DATABASE_URL
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    engine = create_engine(
        url,
        echo=DATABASE_ECHO,
        pool_pre_ping=True,
        connect_args=connect_args,
    )
    if is_sqlite:
        _enable_sqlite_savepoints(engine)
    return engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works under pysqlite."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
    )


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    """Create tables if missing; a migration tool should own production schemas."""
    Base.metadata.create_all(engine)
    logger.info("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))


DEMO_DOCTORS = [
    {"name": "Sarah de Vries", "specialty": "General Dentistry"},
    {"name": "Mark Jansen", "specialty": "Orthodontics"},
    {"name": "Emma Bakker", "specialty": "Endodontics", "open_time": "10:00", "close_time": "18:00"},
]


def seed_demo_data(factory: sessionmaker[Session]) -> int:
    """Insert demo doctors into an empty database.  Returns how many were added."""
    with session_scope(factory) as session:
        if session.scalars(select(Doctor).limit(1)).first() is not None:
            return 0
        session.add_all(Doctor(**fields) for fields in DEMO_DOCTORS)
    logger.info("Seeded %d demo doctors", len(DEMO_DOCTORS))
    return len(DEMO_DOCTORS)
