"""Notification rendering and best-effort delivery after commit."""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List

import pytest

from circulation.db.engine import init_engine_once, reset_for_tests
from circulation.db.models import CopyStatus
from circulation.services import audit_service, loans_service, notifications_service, reservations_service
from circulation.services.errors import ValidationError
from circulation.services.unit_of_work import unit_of_work

NOW = datetime(2024, 5, 1, 9, 0, 0)


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LENDING_DB_PATH", ":memory:")
    init_engine_once()
    yield
    reset_for_tests(drop=True)


@pytest.fixture
def audit_log() -> List[audit_service.AuditRecord]:
    captured: List[audit_service.AuditRecord] = []
    previous = audit_service.set_sink(captured.append)
    yield captured
    audit_service.set_sink(previous)


def test_build_notification_renders_templates():
    note = notifications_service.build_notification(
        7,
        notifications_service.FINE_ASSESSED,
        {"fine_type": "Overdue", "amount": Decimal("1.5"), "description": "Overdue by 3 day(s)"},
    )
    assert note.subject == "New overdue fine"
    assert note.body == "A fine of $1.50 was added to your account. Overdue by 3 day(s)"


def test_build_notification_rejects_unknown_kind():
    with pytest.raises(ValueError):
        notifications_service.build_notification(1, "carrier_pigeon")


def test_failing_dispatcher_does_not_undo_the_transition(lib):
    def boom(_notification):
        raise RuntimeError("smtp down")

    previous = notifications_service.set_dispatcher(boom)
    try:
        borrower = lib.member("Borrower")
        waiter = lib.member("Waiter")
        title_id, (copy_id,) = lib.title()
        loan = loans_service.checkout(borrower, copy_id, now=NOW)
        reservations_service.reserve(waiter, title_id, now=NOW)
        result = loans_service.return_loan(loan["id"], now=NOW + timedelta(days=1))
    finally:
        notifications_service.set_dispatcher(previous)

    assert result["copy"]["status"] == "Reserved"
    assert lib.copy(copy_id).status == CopyStatus.RESERVED


def test_failing_audit_sink_is_ignored(lib):
    def broken(_record):
        raise RuntimeError("audit store offline")

    previous = audit_service.set_sink(broken)
    try:
        member_id = lib.member()
        _, (copy_id,) = lib.title()
        loan = loans_service.checkout(member_id, copy_id, now=NOW)
    finally:
        audit_service.set_sink(previous)
    assert lib.loan(loan["id"]) is not None


def test_audit_records_each_committed_transition(lib, audit_log):
    member_id = lib.member()
    _, (copy_id,) = lib.title()
    loan = loans_service.checkout(member_id, copy_id, now=NOW)
    loans_service.return_loan(loan["id"], now=NOW)

    actions = [r.action for r in audit_log]
    assert actions[0] == "checkout"
    assert "return" in actions
    assert all(r.at == NOW for r in audit_log)


def test_rolled_back_unit_dispatches_nothing(audit_log):
    sent = []
    previous = notifications_service.set_dispatcher(sent.append)
    try:
        with pytest.raises(ValidationError):
            with unit_of_work(NOW) as uow:
                uow.notify(1, notifications_service.LOAN_DUE_SOON, loan_id=1, due_date="soon")
                uow.record("noop", "loan", 1)
                raise ValidationError("nope")
    finally:
        notifications_service.set_dispatcher(previous)
    assert sent == []
    assert audit_log == []
