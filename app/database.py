"""Engine, sessions and schema bootstrap."""

import logging
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from app.config import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    # Row locks and NOWAIT need Postgres; sqlite is only used by the test suite
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


engine = create_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_options(settings.database_url),
)


def init_db() -> None:
    """Create any missing tables. Indexes beyond the model ones live in alembic."""
    # Registers the table models and the marriage flush hook
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Schema ready on %s", engine.url.render_as_string(hide_password=True))


def database_reachable() -> bool:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database ping failed")
        return False
    return True


def get_session() -> Iterator[Session]:
    """Request-scoped session; services commit or roll back themselves."""
    with Session(engine) as session:
        yield session
