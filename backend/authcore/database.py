"""Database connection and session management."""
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from authcore.config import get_settings

settings = get_settings()

Base = declarative_base()


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections are shared across request threads."""
    uses_sqlite = database_url.startswith("sqlite")
    # SQLite requires check_same_thread=False for FastAPI
    connect_args = {"check_same_thread": False} if uses_sqlite else {}
    engine = create_engine(database_url, connect_args=connect_args, echo=echo)

    if uses_sqlite:
        # Take the write lock at BEGIN so concurrent conditional updates wait
        # on the busy timeout instead of failing with "database is locked".
        @event.listens_for(engine, "connect")
        def disable_pysqlite_begin(dbapi_connection, connection_record) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def begin_immediate(conn) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(settings.database_url, echo=settings.debug)

SessionLocal = build_session_factory(engine)


@contextmanager
def get_db_context(session_factory: sessionmaker | None = None) -> Generator[Session, None, None]:
    """Transactional session scope: commit on success, roll back on error."""
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
