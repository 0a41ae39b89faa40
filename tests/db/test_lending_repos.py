"""Repository queries: queue ordering and derived member aggregates."""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from circulation.db import app_session
from circulation.db.engine import init_engine_once, reset_for_tests
from circulation.db.models import CopyStatus, FineStatus, FineType, LoanStatus, ReservationStatus
from circulation.db.repositories import (
    copies_repo,
    fines_repo,
    loans_repo,
    members_repo,
    reservations_repo,
)

NOW = datetime(2024, 1, 15, 10, 0, 0)


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LENDING_DB_PATH", ":memory:")
    init_engine_once()
    yield
    reset_for_tests(drop=True)


def test_queue_orders_by_date_then_id():
    with app_session() as s:
        title = copies_repo.create_title(s, "Queue")
        members = [members_repo.create_member(s, f"M{i}") for i in range(3)]
        late = reservations_repo.create_reservation(s, member_id=members[0].id, title_id=title.id, reservation_date=NOW + timedelta(hours=1))
        tie_a = reservations_repo.create_reservation(s, member_id=members[1].id, title_id=title.id, reservation_date=NOW)
        tie_b = reservations_repo.create_reservation(s, member_id=members[2].id, title_id=title.id, reservation_date=NOW)
        tie_a.status = ReservationStatus.CANCELLED
        s.flush()

        queue = reservations_repo.active_queue(s, title.id)
        assert [r.id for r in queue] == [tie_b.id, late.id]
        assert reservations_repo.oldest_active(s, title.id).id == tie_b.id
        assert reservations_repo.has_active_for_title(s, title.id)
        assert reservations_repo.find_active_for_member(s, members[1].id, title.id) is None


def test_open_and_overdue_loan_counts_are_derived():
    with app_session() as s:
        member = members_repo.create_member(s, "Counter")
        title = copies_repo.create_title(s, "Counted")
        copies = [copies_repo.create_copy(s, title.id) for _ in range(3)]
        on_time = loans_repo.create_loan(s, member_id=member.id, copy_id=copies[0].id, loan_date=NOW, due_date=NOW + timedelta(days=14))
        late = loans_repo.create_loan(s, member_id=member.id, copy_id=copies[1].id, loan_date=NOW - timedelta(days=20), due_date=NOW - timedelta(days=6))
        done = loans_repo.create_loan(s, member_id=member.id, copy_id=copies[2].id, loan_date=NOW, due_date=NOW)
        done.status = LoanStatus.RETURNED
        late.status = LoanStatus.RENEWED
        s.flush()

        assert members_repo.count_open_loans(s, member.id) == 2
        assert members_repo.count_overdue_loans(s, member.id, NOW) == 1
        assert loans_repo.list_overdue_loan_ids(s, NOW) == [late.id]
        assert [l.id for l in loans_repo.list_loans_due_between(s, NOW, NOW + timedelta(days=14))] == [on_time.id]
        assert loans_repo.open_loan_for_copy(s, copies[2].id) is None


def test_available_copy_lookup_skips_other_statuses():
    with app_session() as s:
        title = copies_repo.create_title(s, "Shelf")
        copies_repo.create_copy(s, title.id, status=CopyStatus.DAMAGED)
        wanted = copies_repo.create_copy(s, title.id)
        copies_repo.create_copy(s, title.id, status=CopyStatus.BORROWED)

        assert copies_repo.find_available_copy(s, title.id).id == wanted.id
        assert copies_repo.count_available(s, title.id) == 1
        assert len(copies_repo.list_copies(s, title.id)) == 3


def test_pending_fine_sum_and_settled_overdue_total():
    with app_session() as s:
        member = members_repo.create_member(s, "Payer")
        title = copies_repo.create_title(s, "Fined")
        copy = copies_repo.create_copy(s, title.id)
        loan = loans_repo.create_loan(s, member_id=member.id, copy_id=copy.id, loan_date=NOW, due_date=NOW)
        paid = fines_repo.create_fine(s, member_id=member.id, loan_id=loan.id, fine_type=FineType.OVERDUE, amount=Decimal("1.00"), created_at=NOW)
        paid.status = FineStatus.PAID
        fines_repo.create_fine(s, member_id=member.id, loan_id=loan.id, fine_type=FineType.OVERDUE, amount=Decimal("0.50"), created_at=NOW)
        fines_repo.create_fine(s, member_id=member.id, fine_type=FineType.OTHER, amount=Decimal("2.25"), created_at=NOW)
        s.flush()

        assert members_repo.sum_pending_fines(s, member.id) == Decimal("2.75")
        assert fines_repo.settled_overdue_total(s, loan.id) == Decimal("1.00")
        assert fines_repo.pending_overdue_fine(s, loan.id).amount == Decimal("0.50")


def test_adjust_balance_refuses_to_go_negative():
    with app_session() as s:
        member = members_repo.create_member(s, "Careful")
        assert members_repo.adjust_balance(member, Decimal("1.20")) == Decimal("1.20")
        with pytest.raises(ValueError):
            members_repo.adjust_balance(member, Decimal("-2.00"))
        assert member.outstanding_balance == Decimal("1.20")
