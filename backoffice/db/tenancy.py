"""Tenant-scoped units of work.

Every engine operation runs inside ``TenantScope.query`` (read-only) or
``TenantScope.transaction`` (commit on success, rollback on error). The scope
only promises that the session it yields belongs to one organization; how
rows are isolated is up to the storage layer. On PostgreSQL the scope sets
``app.current_tenant`` for the duration of the transaction so row level
security policies can key off it.

Work that must only happen once a transaction is durable (notifications)
is registered with ``run_after_commit`` and runs from a session event after
the commit succeeds. A rollback discards it.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List

from sqlalchemy import event, text
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

AFTER_COMMIT_KEY = "after_commit_callbacks"


class TenantScope:
    """Opens sessions bound to a single organization."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def query(self, org_id: int) -> Iterator[Session]:
        """Read-only unit of work. Nothing is committed.

        Objects loaded here stay readable after the block; closing the
        session discards the transaction without expiring them.
        """
        session = self.session_factory()
        try:
            _bind_tenant(session, org_id)
            yield session
        finally:
            session.close()

    @contextmanager
    def transaction(self, org_id: int) -> Iterator[Session]:
        """Unit of work that commits when the block exits cleanly."""
        session = self.session_factory()
        try:
            _bind_tenant(session, org_id)
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def _bind_tenant(session: Session, org_id: int) -> None:
    session.info["org_id"] = org_id
    if session.get_bind().dialect.name == "postgresql":
        session.execute(
            text("SELECT set_config('app.current_tenant', :org_id, true)"),
            {"org_id": str(org_id)},
        )


def run_after_commit(session: Session, callback: Callable[[], None]) -> None:
    """Defer ``callback`` until ``session`` commits its current transaction."""
    session.info.setdefault(AFTER_COMMIT_KEY, []).append(callback)


@event.listens_for(Session, "after_commit")
def _run_after_commit_callbacks(session: Session) -> None:
    callbacks: List[Callable[[], None]] = session.info.pop(AFTER_COMMIT_KEY, [])
    for callback in callbacks:
        try:
            callback()
        except Exception as e:
            # The transaction is already durable; nothing to undo.
            logger.error(f"After-commit callback failed: {e}")


@event.listens_for(Session, "after_rollback")
def _discard_after_commit_callbacks(session: Session) -> None:
    session.info.pop(AFTER_COMMIT_KEY, None)
