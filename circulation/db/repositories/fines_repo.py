"""Repository helpers for the fine ledger."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from circulation.db.models import Fine, FineStatus, FineType


def create_fine(
    session: Session,
    *,
    member_id: int,
    fine_type: FineType,
    amount: Decimal,
    created_at: datetime,
    loan_id: Optional[int] = None,
    description: Optional[str] = None,
) -> Fine:
    fine = Fine(
        member_id=member_id,
        loan_id=loan_id,
        fine_type=fine_type,
        amount=amount,
        status=FineStatus.PENDING,
        description=description,
        created_at=created_at,
    )
    session.add(fine)
    session.flush()
    return fine


def get_fine(session: Session, fine_id: int, *, for_update: bool = False) -> Optional[Fine]:
    q = session.query(Fine).filter(Fine.id == fine_id)
    if for_update:
        q = q.with_for_update()
    return q.one_or_none()


def list_fines(session: Session, member_id: int, *, status: Optional[FineStatus] = None) -> List[Fine]:
    q = session.query(Fine).filter(Fine.member_id == member_id)
    if status is not None:
        q = q.filter(Fine.status == status)
    return q.order_by(Fine.created_at.asc(), Fine.id.asc()).all()


def pending_overdue_fine(session: Session, loan_id: int) -> Optional[Fine]:
    return (
        session.query(Fine)
        .filter(
            Fine.loan_id == loan_id,
            Fine.fine_type == FineType.OVERDUE,
            Fine.status == FineStatus.PENDING,
        )
        .first()
    )


def settled_overdue_total(session: Session, loan_id: int) -> Decimal:
    """Sum of Paid/Waived overdue fines already charged for ``loan_id``."""
    total = (
        session.query(func.coalesce(func.sum(Fine.amount), 0))
        .filter(
            Fine.loan_id == loan_id,
            Fine.fine_type == FineType.OVERDUE,
            Fine.status.in_((FineStatus.PAID, FineStatus.WAIVED)),
        )
        .scalar()
    )
    return Decimal(str(total or 0)).quantize(Decimal("0.01"))


def delete_fine(session: Session, fine: Fine) -> None:
    session.delete(fine)
    session.flush()


__all__ = [
    "create_fine",
    "get_fine",
    "list_fines",
    "pending_overdue_fine",
    "settled_overdue_total",
    "delete_fine",
]
