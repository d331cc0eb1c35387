"""Database session management with organization isolation."""

from contextlib import contextmanager
from typing import Generator, Optional
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from omnidesk.infra.config import config
from omnidesk.infra.logging import get_logger

logger = get_logger(__name__)


# Create engine with connection pooling
engine = create_engine(
    config.DATABASE_URL,
    poolclass=QueuePool,
    pool_size=10,
    max_overflow=20,
    pool_timeout=30,
    pool_recycle=3600,
    pool_pre_ping=True,
    echo=config.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session(organization_id: Optional[str] = None) -> Generator[Session, None, None]:
    """
    Get a database session, optionally scoped to one organization.

    When organization_id is given, app.current_organization_id is set so that
    row-level security policies apply. Webhook processing runs unscoped because
    the organization is only known after the inbox lookup.
    """
    session = SessionLocal()
    try:
        if organization_id:
            _set_organization(session, organization_id)

        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        if organization_id:
            _clear_organization(session)
        session.close()


def _set_organization(session: Session, organization_id: str) -> None:
    session.execute(
        text("SELECT set_config('app.current_organization_id', :organization_id, false)"),
        {"organization_id": organization_id},
    )
    session.commit()


def _clear_organization(session: Session) -> None:
    # The setting lives on the pooled connection, not the session
    try:
        session.rollback()
        _set_organization(session, "")
    except Exception as e:
        logger.warning("Failed to clear organization scope, discarding connection", extra={"error": str(e)})
        session.invalidate()


def get_db() -> Generator[Session, None, None]:
    """Dependency for FastAPI routes."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
