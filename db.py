from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Annotated
import logging

from fastapi import Depends
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlmodel import SQLModel, Session, create_engine

from config import Settings, get_settings
from errors import UnavailableError

logger = logging.getLogger(__name__)


def build_engine(settings: Settings) -> Engine:
    """Create the SQL engine with bounded connect and pool-checkout timeouts."""
    url = settings.database_url
    timeout = settings.store_timeout_seconds
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=settings.sql_echo,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
    return create_engine(
        url,
        echo=settings.sql_echo,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args={"connect_timeout": timeout},
    )


engine = build_engine(get_settings())


def create_db_and_tables(bind: Engine = engine) -> None:
    """Create all tables in the database if they don't exist."""
    SQLModel.metadata.create_all(bind)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]


@contextmanager
def store_errors(session: Session) -> Iterator[None]:
    """
    Roll back on any failure so callers never see a half-applied write.
    Store timeouts and dropped connections surface as UnavailableError.
    """
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        session.rollback()
        logger.warning("store call failed: %s", exc)
        raise UnavailableError("store temporarily unavailable, retry") from exc
    except Exception:
        session.rollback()
        raise
