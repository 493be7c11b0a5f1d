import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError, SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from . import config
from .errors import InternalError, SalesError, TransientError

logger = logging.getLogger(__name__)


def build_engine(url: str, timeout: float = config.DB_TIMEOUT_SECONDS):
    """
    Creates an engine whose round trips are bounded by ``timeout`` seconds.
    - SQLite: lock wait timeout, connection shared across request threads.
    - PostgreSQL: connect timeout plus a server-side statement timeout.
    """
    backend = make_url(url).get_backend_name()
    kwargs = {}
    if backend == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout}
    else:
        kwargs.update(pool_timeout=timeout, pool_pre_ping=True)
        if backend == "postgresql":
            millis = int(timeout * 1000)
            kwargs["connect_args"] = {
                "connect_timeout": max(1, int(timeout)),
                "options": f"-c statement_timeout={millis} -c lock_timeout={millis}",
            }
    return create_engine(url, **kwargs)


# Create the SQLAlchemy engine.
engine = build_engine(config.DATABASE_URL)

# Create a configured "Session" class for database interactions.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for declarative ORM models.
Base = declarative_base()


def get_db():
    """FastAPI dependency to get a DB session for a single request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        # Ensure the session is always closed after the request is finished.
        db.close()


@contextmanager
def unit_of_work(db: Session, action: str):
    """
    Runs the enclosed block as one transaction: commit on success, full
    rollback on any failure.

    Database failures are translated for the caller:
    - lock wait / statement timeout / lost connection -> TransientError
    - any other SQLAlchemy error -> InternalError (logged)
    """
    try:
        yield db
        db.commit()
    except SalesError:
        db.rollback()
        raise
    except (OperationalError, PoolTimeoutError) as exc:
        db.rollback()
        logger.warning("%s: transient database failure: %s", action, exc)
        raise TransientError(f"{action} failed, database unavailable; retry") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("%s: database error", action)
        raise InternalError(f"{action} failed") from exc
    except Exception:
        db.rollback()
        raise
