import functools
import logging
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, create_engine, Session
from app.config import DATABASE_URL
from app.exceptions import InternalError


logger = logging.getLogger(__name__)


def build_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Sessions are opened from FastAPI's worker threads
        connect_args = {"check_same_thread": False}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = build_engine(DATABASE_URL)


def init_db(bind=None):
    # Import so every table is registered on the metadata
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session():
    return Session(engine)


def session_factory(bind):
    """Return a get_session-style callable bound to another engine."""
    def factory():
        return Session(bind)
    return factory


def guard_persistence(func):
    """Log storage failures and surface them as InternalError."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Persistence failure in {func.__qualname__}: {e}")
            raise InternalError() from e
    return wrapper
