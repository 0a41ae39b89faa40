"""Repository helpers for titles and their physical copies."""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from circulation.db.models import Copy, CopyStatus, Title


def create_title(
    session: Session,
    name: str,
    *,
    author: Optional[str] = None,
    isbn: Optional[str] = None,
) -> Title:
    title = Title(name=name, author=author, isbn=isbn)
    session.add(title)
    session.flush()
    return title


def get_title(session: Session, title_id: int) -> Optional[Title]:
    return session.query(Title).filter(Title.id == title_id).one_or_none()


def create_copy(
    session: Session,
    title_id: int,
    *,
    barcode: Optional[str] = None,
    status: CopyStatus = CopyStatus.AVAILABLE,
) -> Copy:
    copy = Copy(title_id=title_id, barcode=barcode, status=status)
    session.add(copy)
    session.flush()
    return copy


def get_copy(session: Session, copy_id: int, *, for_update: bool = False) -> Optional[Copy]:
    q = session.query(Copy).filter(Copy.id == copy_id)
    if for_update:
        q = q.with_for_update()
    return q.one_or_none()


def find_available_copy(session: Session, title_id: int) -> Optional[Copy]:
    return (
        session.query(Copy)
        .filter(Copy.title_id == title_id, Copy.status == CopyStatus.AVAILABLE)
        .order_by(Copy.id.asc())
        .first()
    )


def count_available(session: Session, title_id: int) -> int:
    return (
        session.query(func.count(Copy.id))
        .filter(Copy.title_id == title_id, Copy.status == CopyStatus.AVAILABLE)
        .scalar()
        or 0
    )


def list_copies(session: Session, title_id: int) -> List[Copy]:
    return session.query(Copy).filter(Copy.title_id == title_id).order_by(Copy.id.asc()).all()


__all__ = [
    "create_title",
    "get_title",
    "create_copy",
    "get_copy",
    "find_available_copy",
    "count_available",
    "list_copies",
]
