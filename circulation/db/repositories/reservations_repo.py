"""Repository helpers for reservations and the per-title wait queue.

Queue order is always ``(reservation_date, id)`` among Active rows of a
title; nothing positional is stored.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from circulation.db.models import Reservation, ReservationStatus


def _queue_query(session: Session, title_id: int):
    return (
        session.query(Reservation)
        .filter(
            Reservation.title_id == title_id,
            Reservation.status == ReservationStatus.ACTIVE,
        )
        .order_by(Reservation.reservation_date.asc(), Reservation.id.asc())
    )


def create_reservation(
    session: Session,
    *,
    member_id: int,
    title_id: int,
    reservation_date: datetime,
) -> Reservation:
    reservation = Reservation(
        member_id=member_id,
        title_id=title_id,
        reservation_date=reservation_date,
        status=ReservationStatus.ACTIVE,
    )
    session.add(reservation)
    session.flush()
    return reservation


def get_reservation(session: Session, reservation_id: int, *, for_update: bool = False) -> Optional[Reservation]:
    q = session.query(Reservation).filter(Reservation.id == reservation_id)
    if for_update:
        q = q.with_for_update()
    return q.one_or_none()


def active_queue(session: Session, title_id: int) -> List[Reservation]:
    return _queue_query(session, title_id).all()


def oldest_active(session: Session, title_id: int) -> Optional[Reservation]:
    return _queue_query(session, title_id).with_for_update().first()


def has_active_for_title(session: Session, title_id: int) -> bool:
    return _queue_query(session, title_id).first() is not None


def find_active_for_member(session: Session, member_id: int, title_id: int) -> Optional[Reservation]:
    return (
        _queue_query(session, title_id)
        .filter(Reservation.member_id == member_id)
        .first()
    )


def holding_reservation_for_copy(session: Session, copy_id: int) -> Optional[Reservation]:
    """Fulfilled, not-yet-claimed reservation currently holding ``copy_id``."""
    return (
        session.query(Reservation)
        .filter(
            Reservation.copy_id == copy_id,
            Reservation.status == ReservationStatus.FULFILLED,
            Reservation.claimed_at.is_(None),
        )
        .with_for_update()
        .first()
    )


def titles_with_lapsed_holds(session: Session, now: datetime) -> List[int]:
    rows = (
        session.query(Reservation.title_id)
        .filter(
            Reservation.status == ReservationStatus.FULFILLED,
            Reservation.claimed_at.is_(None),
            Reservation.hold_expires_at < now,
        )
        .distinct()
        .order_by(Reservation.title_id.asc())
        .all()
    )
    return [r[0] for r in rows]


def lapsed_holds_for_title(session: Session, title_id: int, now: datetime) -> List[Reservation]:
    return (
        session.query(Reservation)
        .filter(
            Reservation.title_id == title_id,
            Reservation.status == ReservationStatus.FULFILLED,
            Reservation.claimed_at.is_(None),
            Reservation.hold_expires_at < now,
        )
        .order_by(Reservation.hold_expires_at.asc(), Reservation.id.asc())
        .with_for_update()
        .all()
    )


def list_member_reservations(session: Session, member_id: int) -> List[Reservation]:
    return (
        session.query(Reservation)
        .filter(Reservation.member_id == member_id)
        .order_by(Reservation.reservation_date.desc(), Reservation.id.desc())
        .all()
    )


__all__ = [
    "create_reservation",
    "get_reservation",
    "active_queue",
    "oldest_active",
    "has_active_for_title",
    "find_active_for_member",
    "holding_reservation_for_copy",
    "titles_with_lapsed_holds",
    "lapsed_holds_for_title",
    "list_member_reservations",
]
