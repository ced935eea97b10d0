# microauth/core/db.py
from __future__ import annotations
from contextlib import contextmanager
from typing import Generator, Iterator
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from .config import settings
from .errors import ConflictError


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def build_engine(url: str, echo: bool = False) -> Engine:
    """SQLite gets thread-shared connections (in-memory needs a single one); others use the default pool."""
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    if _is_memory_sqlite(url):
        kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    engine = create_engine(url, echo=echo, **kwargs)

    # File databases are shared between threads: take the write lock at BEGIN so
    # read-then-write units of work serialize the way SELECT ... FOR UPDATE does on PostgreSQL.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_sessionmaker(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.database_url, echo=settings.DB_ECHO)
SessionLocal = build_sessionmaker(engine)


def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session. Services commit their own unit of work; anything
    left uncommitted when the request fails is rolled back here.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def atomic(db: Session, conflict_message: str = "Resource already exists") -> Iterator[Session]:
    """
    One unit of work: commit on success, roll back on any error.

    Uniqueness violations raised at flush or commit time surface as ConflictError.

    Example:
        with atomic(db, "Tenant name already exists"):
            tenant_repository.create_tenant(db, ...)
    """
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(conflict_message) from exc
    except Exception:
        db.rollback()
        raise
