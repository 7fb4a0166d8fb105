from contextlib import contextmanager
from typing import Iterator

import structlog
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy import create_engine, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError

from .config import settings
from .errors import ConflictingAssignment, FieldOpsError, StoreTimeout, StoreUnavailable


logger = structlog.get_logger(__name__)

# PostgreSQL: query_canceled (statement_timeout), lock_not_available (lock_timeout)
_PG_TIMEOUT_CODES = {"57014", "55P03"}


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # sqlite3 busy timeout is expressed in seconds
        return {"check_same_thread": False, "timeout": settings.store_timeout_ms / 1000}
    return {}


def build_engine(url: str, **kwargs):
    options = dict(future=True, pool_pre_ping=True, connect_args=_connect_args(url))
    if not url.startswith("sqlite"):
        options.update(pool_size=5, max_overflow=10, pool_recycle=3600, pool_timeout=settings.store_timeout_ms / 1000)
    options.update(kwargs)
    return create_engine(url, **options)


engine = build_engine(settings.database_url)

# IMPORTANT: do not use scoped_session with async frameworks; create a fresh Session per request
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _apply_timeouts(db: Session) -> None:
    bind = db.get_bind()
    if bind.dialect.name == "postgresql":
        ms = int(settings.store_timeout_ms)
        db.execute(text(f"SET LOCAL statement_timeout = {ms}"))
        db.execute(text(f"SET LOCAL lock_timeout = {ms}"))


def _is_timeout(exc: DBAPIError) -> bool:
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _PG_TIMEOUT_CODES:
        return True
    message = str(exc.orig).lower()
    return "timeout" in message or "database is locked" in message


def translate_store_error(exc: SQLAlchemyError) -> FieldOpsError:
    """Map a driver/ORM failure onto the retryable store error classes."""
    if isinstance(exc, IntegrityError):
        return ConflictingAssignment("Write conflicts with an existing record", reason=str(exc.orig))
    if isinstance(exc, OperationalError) and _is_timeout(exc):
        return StoreTimeout("Store operation timed out", reason=str(exc.orig))
    if isinstance(exc, DBAPIError) and _is_timeout(exc):
        return StoreTimeout("Store operation timed out", reason=str(exc.orig))
    return StoreUnavailable("Store is unavailable", reason=str(getattr(exc, "orig", exc)))


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Run a block as one atomic transaction.

    Commits when the block returns, rolls back on any error. Domain errors
    propagate unchanged; SQLAlchemy errors are translated to StoreTimeout,
    StoreUnavailable or ConflictingAssignment.
    """
    try:
        _apply_timeouts(db)
        yield db
        db.commit()
    except FieldOpsError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        error = translate_store_error(e)
        logger.warning("unit_of_work_failed", error=error.code, reason=str(e))
        raise error from e
    except Exception:
        db.rollback()
        raise
