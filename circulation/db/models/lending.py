"""ORM models for the lending engine (members, titles, copies, loans,
reservations, fines).

Mutable aggregates carry a ``version`` column wired as the mapper's
``version_id_col`` so concurrent writers fail at flush instead of silently
overwriting each other.
"""
from __future__ import annotations

import datetime
import enum
import math
from decimal import Decimal

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _enum_column(enum_cls, **kw) -> Column:
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            validate_strings=True,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        **kw,
    )


def _iso(value):
    return value.isoformat() if value else None


class MembershipStatus(str, enum.Enum):
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    EXPIRED = "Expired"


class CopyStatus(str, enum.Enum):
    AVAILABLE = "Available"
    BORROWED = "Borrowed"
    RESERVED = "Reserved"
    DAMAGED = "Damaged"
    LOST = "Lost"


class LoanStatus(str, enum.Enum):
    ACTIVE = "Active"
    RENEWED = "Renewed"
    # Never stored: only produced by Loan.effective_status().
    OVERDUE = "Overdue"
    RETURNED = "Returned"
    LOST = "Lost"


OPEN_LOAN_STATUSES = (LoanStatus.ACTIVE, LoanStatus.RENEWED)


class ReservationStatus(str, enum.Enum):
    ACTIVE = "Active"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class FineType(str, enum.Enum):
    OVERDUE = "Overdue"
    LOST = "Lost"
    DAMAGED = "Damaged"
    OTHER = "Other"


class FineStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    WAIVED = "Waived"


class Member(Base):
    """Borrower. Only standing and balance live here; loan and reservation
    counts are derived from their own tables."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    membership_status = _enum_column(MembershipStatus, default=MembershipStatus.ACTIVE)
    outstanding_balance = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "membership_status": self.membership_status.value,
            "outstanding_balance": str(self.outstanding_balance),
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Member id={self.id} status={self.membership_status} balance={self.outstanding_balance}>"


class Title(Base):
    __tablename__ = "titles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(512), nullable=False)
    author = Column(String(255), nullable=True)
    isbn = Column(String(32), nullable=True, unique=True)

    copies = relationship("Copy", back_populates="title", order_by="Copy.id")

    def as_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "author": self.author, "isbn": self.isbn}


class Copy(Base):
    __tablename__ = "copies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title_id = Column(Integer, ForeignKey("titles.id"), nullable=False, index=True)
    barcode = Column(String(64), nullable=True, unique=True)
    status = _enum_column(CopyStatus, default=CopyStatus.AVAILABLE)
    version = Column(Integer, nullable=False)

    title = relationship("Title", back_populates="copies")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (Index("ix_copies_title_status", "title_id", "status"),)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "title_id": self.title_id,
            "barcode": self.barcode,
            "status": self.status.value,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Copy id={self.id} title_id={self.title_id} status={self.status}>"


class Loan(Base):
    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    copy_id = Column(Integer, ForeignKey("copies.id"), nullable=False, index=True)
    loan_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = _enum_column(LoanStatus, default=LoanStatus.ACTIVE)
    renewal_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)

    copy = relationship("Copy")
    member = relationship("Member")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (Index("ix_loans_member_status", "member_id", "status"),)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_LOAN_STATUSES

    def is_overdue(self, now: datetime.datetime) -> bool:
        return self.is_open and self.due_date < now

    def days_overdue(self, at: datetime.datetime) -> int:
        """Started days past due at ``at`` (0 when not late)."""
        if at <= self.due_date:
            return 0
        return math.ceil((at - self.due_date) / datetime.timedelta(days=1))

    def effective_status(self, now: datetime.datetime) -> LoanStatus:
        if self.is_overdue(now):
            return LoanStatus.OVERDUE
        return self.status

    def as_dict(self, now: datetime.datetime | None = None) -> dict:
        now = now or _utcnow()
        return {
            "id": self.id,
            "member_id": self.member_id,
            "copy_id": self.copy_id,
            "loan_date": _iso(self.loan_date),
            "due_date": _iso(self.due_date),
            "return_date": _iso(self.return_date),
            "status": self.effective_status(now).value,
            "renewal_count": self.renewal_count,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Loan id={self.id} member_id={self.member_id} copy_id={self.copy_id} status={self.status}>"


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    title_id = Column(Integer, ForeignKey("titles.id"), nullable=False)
    reservation_date = Column(DateTime, nullable=False)
    status = _enum_column(ReservationStatus, default=ReservationStatus.ACTIVE)
    copy_id = Column(Integer, ForeignKey("copies.id"), nullable=True)
    fulfilled_at = Column(DateTime, nullable=True)
    hold_expires_at = Column(DateTime, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=True)
    closed_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("ix_reservations_queue", "title_id", "status", "reservation_date", "id"),
    )

    def is_claimable_by(self, member_id: int, now: datetime.datetime) -> bool:
        return (
            self.status == ReservationStatus.FULFILLED
            and self.member_id == member_id
            and self.claimed_at is None
            and self.hold_expires_at is not None
            and now <= self.hold_expires_at
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "title_id": self.title_id,
            "reservation_date": _iso(self.reservation_date),
            "status": self.status.value,
            "copy_id": self.copy_id,
            "fulfilled_at": _iso(self.fulfilled_at),
            "hold_expires_at": _iso(self.hold_expires_at),
            "claimed_at": _iso(self.claimed_at),
            "loan_id": self.loan_id,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Reservation id={self.id} title_id={self.title_id} member_id={self.member_id} status={self.status}>"


class Fine(Base):
    __tablename__ = "fines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    loan_id = Column(Integer, ForeignKey("loans.id"), nullable=True, index=True)
    fine_type = _enum_column(FineType)
    amount = Column(Numeric(12, 2), nullable=False)
    status = _enum_column(FineStatus, default=FineStatus.PENDING)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    settled_at = Column(DateTime, nullable=True)
    waiver_reason = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "loan_id": self.loan_id,
            "type": self.fine_type.value,
            "amount": str(self.amount),
            "status": self.status.value,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "settled_at": _iso(self.settled_at),
            "waiver_reason": self.waiver_reason,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Fine id={self.id} member_id={self.member_id} type={self.fine_type} amount={self.amount} status={self.status}>"


__all__ = [
    "Base",
    "MembershipStatus",
    "CopyStatus",
    "LoanStatus",
    "OPEN_LOAN_STATUSES",
    "ReservationStatus",
    "FineType",
    "FineStatus",
    "Member",
    "Title",
    "Copy",
    "Loan",
    "Reservation",
    "Fine",
]
