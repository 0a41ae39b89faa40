"""Repository helpers for members and their derived aggregates."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from circulation.db.models import (
    Fine,
    FineStatus,
    Loan,
    Member,
    MembershipStatus,
    OPEN_LOAN_STATUSES,
    Reservation,
    ReservationStatus,
)


def create_member(
    session: Session,
    name: str,
    *,
    email: Optional[str] = None,
    membership_status: MembershipStatus = MembershipStatus.ACTIVE,
) -> Member:
    member = Member(
        name=name,
        email=email,
        membership_status=membership_status,
        outstanding_balance=Decimal("0.00"),
    )
    session.add(member)
    session.flush()
    return member


def get_member(session: Session, member_id: int, *, for_update: bool = False) -> Optional[Member]:
    q = session.query(Member).filter(Member.id == member_id)
    if for_update:
        q = q.with_for_update()
    return q.one_or_none()


def count_open_loans(session: Session, member_id: int) -> int:
    return (
        session.query(func.count(Loan.id))
        .filter(Loan.member_id == member_id, Loan.status.in_(OPEN_LOAN_STATUSES))
        .scalar()
        or 0
    )


def count_overdue_loans(session: Session, member_id: int, now: datetime) -> int:
    return (
        session.query(func.count(Loan.id))
        .filter(
            Loan.member_id == member_id,
            Loan.status.in_(OPEN_LOAN_STATUSES),
            Loan.due_date < now,
        )
        .scalar()
        or 0
    )


def count_active_reservations(session: Session, member_id: int) -> int:
    return (
        session.query(func.count(Reservation.id))
        .filter(
            Reservation.member_id == member_id,
            Reservation.status == ReservationStatus.ACTIVE,
        )
        .scalar()
        or 0
    )


def sum_pending_fines(session: Session, member_id: int) -> Decimal:
    total = (
        session.query(func.coalesce(func.sum(Fine.amount), 0))
        .filter(Fine.member_id == member_id, Fine.status == FineStatus.PENDING)
        .scalar()
    )
    return Decimal(str(total or 0)).quantize(Decimal("0.01"))


def adjust_balance(member: Member, delta: Decimal) -> Decimal:
    """Apply ``delta`` to the stored balance; never lets it drop below zero."""
    current = Decimal(str(member.outstanding_balance or 0))
    new_balance = (current + delta).quantize(Decimal("0.01"))
    if new_balance < 0:
        raise ValueError(f"balance_negative member_id={member.id}")
    member.outstanding_balance = new_balance
    return new_balance


def touch(member: Member) -> None:
    """Mark the row dirty so the next flush bumps its version.

    Writers that decided on an older version of the member (loan or
    reservation caps) then fail with ``StaleDataError``.
    """
    flag_modified(member, "membership_status")


__all__ = [
    "create_member",
    "get_member",
    "count_open_loans",
    "count_overdue_loans",
    "count_active_reservations",
    "sum_pending_fines",
    "adjust_balance",
    "touch",
]
