import logging
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from beergame.core.config import settings
from beergame.models.base import Base

logger = logging.getLogger(__name__)


def configure_sqlite_engine(engine: Engine) -> Engine:
    """Make every SQLite transaction take the write lock up front.

    pysqlite opens transactions lazily and upgrades read locks to write locks
    mid-transaction, which deadlocks concurrent settlement checks. Issuing
    ``BEGIN IMMEDIATE`` ourselves serialises writers on the busy timeout instead.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(database_uri: str, **kwargs) -> Engine:
    """Create an engine for ``database_uri`` with backend-specific settings."""
    db_url = make_url(database_uri)
    is_sqlite = db_url.get_backend_name().startswith("sqlite")

    if is_sqlite:
        if db_url.database and db_url.database != ":memory:":
            Path(db_url.database).parent.mkdir(parents=True, exist_ok=True)
        connect_args = {"check_same_thread": False, "timeout": settings.SQLITE_BUSY_TIMEOUT}
        connect_args.update(kwargs.pop("connect_args", {}))
        engine = create_engine(database_uri, connect_args=connect_args, echo=settings.SQL_ECHO, **kwargs)
        return configure_sqlite_engine(engine)

    engine_kwargs = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": 5,
        "max_overflow": 10,
    }
    engine_kwargs.update(kwargs)
    return create_engine(
        database_uri,
        connect_args={"connect_timeout": 10},
        echo=settings.SQL_ECHO,
        **engine_kwargs,
    )


engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)

# expire_on_commit stays off so projections remain readable after commit
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


def init_db(bind: Engine = None) -> None:
    """Create missing tables. Production schemas are managed by Alembic."""
    import beergame.models  # noqa: F401  (registers every table)

    target = bind or engine
    logger.info("Ensuring database schema on %s", target.url.render_as_string(hide_password=True))
    Base.metadata.create_all(bind=target)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function that yields database sessions.

    Handles session lifecycle including proper cleanup.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
