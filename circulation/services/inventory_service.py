"""Copy status ledger.

The only place that flips a copy's status. Each flip is flushed right away
so a concurrent writer holding a stale version fails with
``CopyUnavailableError`` before anything else in the unit is written.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from circulation.db.models import Copy, CopyStatus
from circulation.db.repositories import copies_repo
from circulation.services.errors import CopyUnavailableError, not_found
from circulation.services.unit_of_work import UnitOfWork, title_lock
from circulation.utils.logging import get_logger

LOG = get_logger("circulation.inventory")


def load_copy(uow: UnitOfWork, copy_id: int) -> Copy:
    copy = copies_repo.get_copy(uow.session, copy_id, for_update=True)
    if copy is None:
        raise not_found("copy", copy_id)
    return copy


def try_reserve_copy(uow: UnitOfWork, copy: Copy, *, expected: CopyStatus = CopyStatus.AVAILABLE) -> Copy:
    """Move ``copy`` from ``expected`` to Borrowed.

    Raises CopyUnavailableError when the copy is in another status or a
    concurrent writer changed it first.
    """
    if copy.status != expected:
        raise CopyUnavailableError(
            f"Copy {copy.id} is {copy.status.value}, not {expected.value}.",
        )
    copy.status = CopyStatus.BORROWED
    uow.flush(copy_id=copy.id)
    return copy


def release_copy(uow: UnitOfWork, copy: Copy, new_status: CopyStatus) -> Copy:
    previous = copy.status
    copy.status = new_status
    uow.flush(copy_id=copy.id)
    uow.record("copy_status", "copy", copy.id, previous=previous.value, status=new_status.value)
    LOG.debug("copy_id=%s %s -> %s", copy.id, previous.value, new_status.value)
    return copy


def find_available_copy(session: Session, title_id: int) -> Optional[int]:
    copy = copies_repo.find_available_copy(session, title_id)
    return copy.id if copy is not None else None


__all__ = [
    "load_copy",
    "try_reserve_copy",
    "release_copy",
    "find_available_copy",
    "title_lock",
]
