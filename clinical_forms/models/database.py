import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from clinical_forms.config import settings
from clinical_forms.exceptions import ConcurrentModificationError

logger = logging.getLogger(__name__)

_engine_options = {"pool_pre_ping": True}
if not settings.DATABASE_URL.startswith("sqlite"):
    _engine_options["pool_size"] = 5

engine = create_engine(settings.DATABASE_URL, **_engine_options)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    pass


def get_db():
    """FastAPI dependency that yields a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """
    Commit everything done inside the block as one transaction.

    Any exception rolls the whole block back; a version mismatch detected at
    flush time surfaces as ConcurrentModificationError.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        logger.warning("Lost update detected: %s", exc)
        raise ConcurrentModificationError(
            "The record was modified by another request; reload and resubmit"
        ) from exc
    except Exception:
        db.rollback()
        raise
