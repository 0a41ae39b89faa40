"""Repository helpers for loans. Loans are never deleted."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from circulation.db.models import Loan, LoanStatus, OPEN_LOAN_STATUSES


def create_loan(
    session: Session,
    *,
    member_id: int,
    copy_id: int,
    loan_date: datetime,
    due_date: datetime,
) -> Loan:
    loan = Loan(
        member_id=member_id,
        copy_id=copy_id,
        loan_date=loan_date,
        due_date=due_date,
        status=LoanStatus.ACTIVE,
        renewal_count=0,
    )
    session.add(loan)
    session.flush()
    return loan


def get_loan(session: Session, loan_id: int, *, for_update: bool = False) -> Optional[Loan]:
    q = session.query(Loan).filter(Loan.id == loan_id)
    if for_update:
        q = q.with_for_update()
    return q.one_or_none()


def open_loan_for_copy(session: Session, copy_id: int) -> Optional[Loan]:
    return (
        session.query(Loan)
        .filter(Loan.copy_id == copy_id, Loan.status.in_(OPEN_LOAN_STATUSES))
        .one_or_none()
    )


def list_member_loans(session: Session, member_id: int, *, open_only: bool = False) -> List[Loan]:
    q = session.query(Loan).filter(Loan.member_id == member_id)
    if open_only:
        q = q.filter(Loan.status.in_(OPEN_LOAN_STATUSES))
    return q.order_by(Loan.loan_date.desc(), Loan.id.desc()).all()


def list_overdue_loan_ids(session: Session, now: datetime) -> List[int]:
    rows = (
        session.query(Loan.id)
        .filter(Loan.status.in_(OPEN_LOAN_STATUSES), Loan.due_date < now)
        .order_by(Loan.due_date.asc(), Loan.id.asc())
        .all()
    )
    return [r[0] for r in rows]


def list_loans_due_between(session: Session, start: datetime, end: datetime) -> List[Loan]:
    return (
        session.query(Loan)
        .filter(
            Loan.status.in_(OPEN_LOAN_STATUSES),
            Loan.due_date >= start,
            Loan.due_date <= end,
        )
        .order_by(Loan.due_date.asc(), Loan.id.asc())
        .all()
    )


def list_overdue_loans(session: Session, now: datetime) -> List[Loan]:
    return (
        session.query(Loan)
        .filter(Loan.status.in_(OPEN_LOAN_STATUSES), Loan.due_date < now)
        .order_by(Loan.due_date.asc(), Loan.id.asc())
        .all()
    )


__all__ = [
    "create_loan",
    "get_loan",
    "open_loan_for_copy",
    "list_member_loans",
    "list_overdue_loan_ids",
    "list_loans_due_between",
    "list_overdue_loans",
]
