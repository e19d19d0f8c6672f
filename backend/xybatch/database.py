"""SQLAlchemy database engine, session factory, and connection management.

Provides the shared engine, session factory, and declarative base for all
ORM models. SQLite connections enable WAL mode and foreign keys via event
listeners; foreign keys matter here because a generation's workflow
reference is ``ON DELETE SET NULL``.
"""
from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from xybatch.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def _enable_sqlite_pragmas(engine: Engine, wal: bool = True) -> None:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()


def make_engine(url: str, echo: bool = False, **kwargs) -> Engine:
    """Create an engine, applying the SQLite connection tweaks when relevant."""
    connect_args = kwargs.pop("connect_args", {})
    if url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    engine = create_engine(url, connect_args=connect_args, echo=echo, **kwargs)
    if url.startswith("sqlite"):
        _enable_sqlite_pragmas(engine, wal=":memory:" not in url)
    return engine


def _get_engine() -> Engine:
    settings = get_settings()
    return make_engine(settings.DATABASE_URL, echo=settings.DEBUG)


engine = _get_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db(request: Request):
    """FastAPI dependency that yields a session from the app's session factory."""
    db: Session = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind: Engine | None = None) -> None:
    """Create all tables from ORM metadata (dev convenience)."""
    import xybatch.models  # noqa: F401  (registers mappers)
    Base.metadata.create_all(bind=bind or engine)
