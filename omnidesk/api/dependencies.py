"""FastAPI dependencies wiring request-scoped components."""

from contextlib import contextmanager
from typing import Callable, ContextManager, Iterator, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from omnidesk.adapters.meta_graph_client import MetaGraphClient
from omnidesk.infra.database import get_db, get_db_session
from omnidesk.store.base import HelpdeskStore
from omnidesk.store.sql_store import SqlHelpdeskStore

StoreScope = Callable[[Optional[str]], ContextManager[HelpdeskStore]]


def get_store(db: Session = Depends(get_db)) -> SqlHelpdeskStore:
    return SqlHelpdeskStore(db)


@contextmanager
def organization_store(organization_id: Optional[str] = None) -> Iterator[SqlHelpdeskStore]:
    """Store on a session limited to one organization's rows by row-level security."""
    with get_db_session(organization_id) as session:
        yield SqlHelpdeskStore(session)


def get_store_scope() -> StoreScope:
    """Routes that know the caller's organization open their store through this."""
    return organization_store


def get_graph_client() -> MetaGraphClient:
    return MetaGraphClient()
