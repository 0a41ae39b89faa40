"""Shared data builders for lending tests.

Each test module still declares its own autouse database fixture; this file
only provides helpers for seeding and inspecting rows.
"""
from __future__ import annotations

from decimal import Decimal
from typing import List, Tuple

import pytest

from circulation.db.engine import app_session
from circulation.db.models import Copy, Fine, Loan, Member, MembershipStatus, Reservation
from circulation.db.repositories import copies_repo, members_repo


class LibraryFactory:
    def member(self, name: str = "Reader", status: MembershipStatus = MembershipStatus.ACTIVE) -> int:
        with app_session() as session:
            return members_repo.create_member(session, name, membership_status=status).id

    def title(self, name: str = "Dune", copies: int = 1) -> Tuple[int, List[int]]:
        with app_session() as session:
            title = copies_repo.create_title(session, name)
            copy_ids = [copies_repo.create_copy(session, title.id).id for _ in range(copies)]
            return title.id, copy_ids

    def set_member_status(self, member_id: int, status: MembershipStatus) -> None:
        with app_session() as session:
            session.get(Member, member_id).membership_status = status

    def set_balance(self, member_id: int, amount: str) -> None:
        with app_session() as session:
            session.get(Member, member_id).outstanding_balance = Decimal(amount)

    def copy(self, copy_id: int) -> Copy:
        with app_session() as session:
            return session.get(Copy, copy_id)

    def loan(self, loan_id: int) -> Loan:
        with app_session() as session:
            return session.get(Loan, loan_id)

    def reservation(self, reservation_id: int) -> Reservation:
        with app_session() as session:
            return session.get(Reservation, reservation_id)

    def balance(self, member_id: int) -> Decimal:
        with app_session() as session:
            return Decimal(str(session.get(Member, member_id).outstanding_balance))

    def fines(self, member_id: int) -> List[Fine]:
        with app_session() as session:
            return session.query(Fine).filter(Fine.member_id == member_id).order_by(Fine.id).all()

    def loan_count(self) -> int:
        with app_session() as session:
            return session.query(Loan).count()


@pytest.fixture
def lib() -> LibraryFactory:
    return LibraryFactory()
