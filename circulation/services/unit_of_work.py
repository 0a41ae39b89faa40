"""Transaction script helper for lending operations.

``unit_of_work()`` opens one independent session, commits it on success and
rolls it back on any exception. Notifications and audit records queued on
the unit are delivered only after the commit succeeds, so a failed
side effect can never undo a lending transition and a rolled back
transition never notifies anyone.

Optimistic version conflicts surface as ``StaleDataError`` at flush; they
are translated to ``CopyUnavailableError`` for copy transitions and to
``ConcurrentModificationError`` everywhere else.
"""
from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from circulation.db.engine import new_session
from circulation.services import audit_service, notifications_service
from circulation.services.errors import ConcurrentModificationError, CopyUnavailableError
from circulation.utils.clock import utcnow
from circulation.utils.logging import get_logger

LOG = get_logger("circulation.uow")

_TITLE_LOCKS: Dict[int, threading.RLock] = {}
_TITLE_LOCKS_GUARD = threading.Lock()


@contextmanager
def title_lock(title_id: int) -> Iterator[None]:
    """Serialize queue work (fulfillment, hold expiry) for one title in-process."""
    with _TITLE_LOCKS_GUARD:
        lock = _TITLE_LOCKS.setdefault(int(title_id), threading.RLock())
    with lock:
        yield


@dataclass
class UnitOfWork:
    session: Session
    now: datetime
    _stack: ExitStack = field(default_factory=ExitStack)
    _locked_titles: set = field(default_factory=set)
    notifications: List[Tuple[int, str, Dict[str, Any]]] = field(default_factory=list)
    audit: List[audit_service.AuditRecord] = field(default_factory=list)

    def lock_title(self, title_id: int) -> None:
        """Hold the title lock until the unit commits or rolls back.

        Take it before the first write of the unit so a waiting thread never
        holds the SQLite write lock.
        """
        if title_id in self._locked_titles:
            return
        self._stack.enter_context(title_lock(title_id))
        self._locked_titles.add(title_id)

    def flush(self, *, copy_id: Optional[int] = None) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            if copy_id is not None:
                raise CopyUnavailableError(
                    f"Copy {copy_id} was modified by a concurrent request.",
                    code="copy_conflict",
                ) from exc
            raise ConcurrentModificationError(
                "Record was modified by a concurrent request; retry.",
            ) from exc

    def notify(self, member_id: int, kind: str, **payload: Any) -> None:
        self.notifications.append((member_id, kind, payload))

    def record(self, action: str, entity: str, entity_id: Optional[int], *, member_id: Optional[int] = None, **details: Any) -> None:
        self.audit.append(
            audit_service.AuditRecord(
                action=action,
                entity=entity,
                entity_id=entity_id,
                member_id=member_id,
                details=details,
                at=self.now,
            )
        )

    def dispatch(self) -> None:
        for member_id, kind, payload in self.notifications:
            notifications_service.notify(member_id, kind, payload)
        for entry in self.audit:
            audit_service.record(entry)
        self.notifications.clear()
        self.audit.clear()


@contextmanager
def unit_of_work(now: Optional[datetime] = None) -> Iterator[UnitOfWork]:
    session = new_session()
    uow = UnitOfWork(session=session, now=now or utcnow())
    try:
        with uow._stack:
            try:
                yield uow
                session.commit()
            except StaleDataError as exc:
                session.rollback()
                raise ConcurrentModificationError(
                    "Record was modified by a concurrent request; retry.",
                ) from exc
            except Exception:
                session.rollback()
                raise
    finally:
        session.close()
    uow.dispatch()


@contextmanager
def read_only() -> Iterator[Session]:
    """Session for queries; never commits."""
    session = new_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


__all__ = ["UnitOfWork", "unit_of_work", "read_only", "title_lock"]
