import logging
from contextlib import contextmanager
from typing import Iterator, Sequence

from sqlalchemy import event
from sqlalchemy.engine import Engine, Result
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.sql import Executable

from config import get_settings
from errors import InternalError

logger = logging.getLogger(__name__)


def _create_engine() -> Engine:
    settings = get_settings()
    connect_args: dict[str, object] = {}
    if settings.database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    from sqlalchemy import create_engine

    eng = create_engine(settings.database_url, connect_args=connect_args)
    if settings.database_url.startswith("sqlite"):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def init_db(bind: Engine | None = None) -> None:
    import models  # noqa: F401  registers the mapped tables

    Base.metadata.create_all(bind or engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run a block of writes as one all-or-nothing unit on ``session``.

    Any failure rolls the whole unit back. Store failures surface as
    ``InternalError`` so callers never see a raw driver error.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("atomic_rollback: store failure")
        raise InternalError("A storage error occurred") from exc
    except Exception:
        session.rollback()
        raise


def apply_atomically(
    session: Session, operations: Sequence[Executable]
) -> list[Result]:
    results: list[Result] = []
    with atomic(session):
        for operation in operations:
            results.append(session.execute(operation))
    return results
