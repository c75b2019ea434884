"""Engine and session factory."""

from contextlib import contextmanager
from typing import Iterator, Optional
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from reclaim_arr.config import DatabaseConfig
from reclaim_arr.db.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(config: Optional[DatabaseConfig] = None) -> Engine:
    """Create an engine; SQLite URLs get WAL mode, foreign keys and working SAVEPOINTs."""
    config = config or DatabaseConfig()
    is_sqlite = config.url.startswith("sqlite")
    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}

    engine = create_engine(config.url, echo=config.echo, connect_args=connect_args, pool_pre_ping=True)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            # pysqlite's own transaction handling breaks SAVEPOINT; BEGIN is emitted below
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            if ":memory:" not in config.url:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def do_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=True)


def init_db(engine: Engine) -> None:
    """Create all tables."""
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database schema ready at {engine.url}")


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """Transactional scope: commit on success, roll back on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
