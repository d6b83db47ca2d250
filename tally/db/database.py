"""SQLAlchemy database configuration and session management."""

from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from tally.config import get_settings

settings = get_settings()


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine, enabling foreign keys on SQLite connections.

    Args:
        database_url: SQLAlchemy database URL
        **kwargs: Extra arguments passed to create_engine

    Returns:
        Configured Engine
    """
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})

    db_engine = create_engine(database_url, echo=False, **kwargs)

    if db_engine.dialect.name == "sqlite":
        @event.listens_for(db_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return db_engine


engine = create_db_engine(settings.database_url)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Allow accessing attributes after commit/close
)


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Usage:
        with get_db() as db:
            db.query(Account).all()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine = None) -> None:
    """Initialize database tables."""
    from .models import Base

    Base.metadata.create_all(bind=bind or engine)


def insert_ignore(db: Session, model, values: Dict[str, Any], conflict_columns: list) -> bool:
    """Insert a row, doing nothing if it collides with a unique constraint.

    Args:
        db: Database session
        model: ORM model class to insert into
        values: Column values for the new row
        conflict_columns: Column names of the unique constraint to ignore

    Returns:
        True if a row was written, False if it already existed
    """
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite_insert(model)
    elif dialect == "postgresql":
        stmt = pg_insert(model)
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {dialect}")

    stmt = stmt.values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
    result = db.execute(stmt)
    return result.rowcount == 1
