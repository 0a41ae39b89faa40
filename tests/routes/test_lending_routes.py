"""Tests for /api/lending endpoints: status mapping and payload parsing."""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from flask import Flask

from circulation.db.engine import init_engine_once, reset_for_tests
from circulation.db.models import CopyStatus, FineStatus, MembershipStatus
from circulation.routes.lending import _parse_datetime, register_lending
from circulation.services.errors import ValidationError
from circulation.utils.clock import utcnow


@pytest.fixture(autouse=True)
def in_memory_db(monkeypatch):
    reset_for_tests(drop=True)
    monkeypatch.setenv("LENDING_DB_PATH", ":memory:")
    init_engine_once()
    yield
    reset_for_tests(drop=True)


@pytest.fixture
def client():
    app = Flask(__name__)
    register_lending(app)
    register_lending(app)
    with app.test_client() as client:
        yield client


def test_checkout_by_copy_returns_201(client, lib):
    member_id = lib.member()
    _, (copy_id,) = lib.title()

    resp = client.post("/api/lending/loans", json={"member_id": member_id, "copy_id": copy_id})

    assert resp.status_code == 201
    data = resp.get_json()
    assert data["copy_id"] == copy_id
    assert data["status"] == "Active"
    assert lib.copy(copy_id).status == CopyStatus.BORROWED

    fetched = client.get(f"/api/lending/loans/{data['id']}")
    assert fetched.status_code == 200
    assert fetched.get_json()["member_id"] == member_id


def test_checkout_by_title_picks_a_copy(client, lib):
    member_id = lib.member()
    title_id, copy_ids = lib.title(copies=2)

    resp = client.post("/api/lending/loans", json={"member_id": member_id, "title_id": title_id})

    assert resp.status_code == 201
    assert resp.get_json()["copy_id"] in copy_ids


def test_unknown_member_is_404(client, lib):
    _, (copy_id,) = lib.title()

    resp = client.post("/api/lending/loans", json={"member_id": 999, "copy_id": copy_id})

    assert resp.status_code == 404
    body = resp.get_json()
    assert body["error"] == "member_not_found"
    assert set(body) == {"error", "message", "reasons"}


def test_ineligible_member_is_422_with_reasons(client, lib):
    member_id = lib.member(status=MembershipStatus.SUSPENDED)
    _, (copy_id,) = lib.title()

    resp = client.post("/api/lending/loans", json={"member_id": member_id, "copy_id": copy_id})

    assert resp.status_code == 422
    body = resp.get_json()
    assert body["reasons"] == ["Membership status is Suspended, must be Active."]


def test_borrowed_copy_is_409(client, lib):
    first = lib.member("First")
    second = lib.member("Second")
    _, (copy_id,) = lib.title()
    assert client.post("/api/lending/loans", json={"member_id": first, "copy_id": copy_id}).status_code == 201

    resp = client.post("/api/lending/loans", json={"member_id": second, "copy_id": copy_id})

    assert resp.status_code == 409


def test_missing_copy_and_title_is_400(client, lib):
    member_id = lib.member()

    resp = client.post("/api/lending/loans", json={"member_id": member_id})

    assert resp.status_code == 400
    assert resp.get_json()["error"] == "copy_id_required"


def test_bad_due_date_is_400(client, lib):
    member_id = lib.member()
    _, (copy_id,) = lib.title()

    resp = client.post(
        "/api/lending/loans",
        json={"member_id": member_id, "copy_id": copy_id, "due_date": "next tuesday"},
    )

    assert resp.status_code == 400
    assert resp.get_json()["error"] == "due_date_invalid"


def test_return_twice_is_409(client, lib):
    member_id = lib.member()
    _, (copy_id,) = lib.title()
    loan_id = client.post("/api/lending/loans", json={"member_id": member_id, "copy_id": copy_id}).get_json()["id"]

    first = client.post(f"/api/lending/loans/{loan_id}/return", json={})
    assert first.status_code == 200
    assert first.get_json()["loan"]["status"] == "Returned"

    again = client.post(f"/api/lending/loans/{loan_id}/return", json={})
    assert again.status_code == 409
    assert again.get_json()["error"] == "loan_closed"


def test_reservation_flow_over_http(client, lib):
    borrower = lib.member("Borrower")
    waiter = lib.member("Waiter")
    title_id, (copy_id,) = lib.title()
    client.post("/api/lending/loans", json={"member_id": borrower, "copy_id": copy_id})

    resp = client.post("/api/lending/reservations", json={"member_id": waiter, "title_id": title_id})
    assert resp.status_code == 201
    reservation_id = resp.get_json()["id"]

    position = client.get(f"/api/lending/reservations/{reservation_id}/position").get_json()
    assert position["queue_position"] == 1
    queue = client.get(f"/api/lending/titles/{title_id}/queue").get_json()["queue"]
    assert [r["id"] for r in queue] == [reservation_id]

    cancelled = client.post(f"/api/lending/reservations/{reservation_id}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.get_json()["status"] == "Cancelled"


def test_manual_fine_then_pay(client, lib):
    member_id = lib.member()

    created = client.post(
        "/api/lending/fines",
        json={"member_id": member_id, "type": "other", "amount": "3.5", "description": "Lost card"},
    )
    assert created.status_code == 201
    fine = created.get_json()
    assert fine["amount"] == "3.50"
    assert client.get(f"/api/lending/members/{member_id}/balance").get_json()["outstanding_balance"] == "3.50"

    eligibility = client.get(f"/api/lending/members/{member_id}/eligibility").get_json()
    assert eligibility["eligible"] is False

    paid = client.post(f"/api/lending/fines/{fine['id']}/pay")
    assert paid.status_code == 200
    assert lib.fines(member_id)[0].status == FineStatus.PAID
    assert lib.balance(member_id) == 0

    listed = client.get(f"/api/lending/members/{member_id}/fines?status=Paid").get_json()
    assert [f["id"] for f in listed["fines"]] == [fine["id"]]


def test_unknown_fine_type_is_400(client, lib):
    member_id = lib.member()

    resp = client.post("/api/lending/fines", json={"member_id": member_id, "type": "parking", "amount": "1"})

    assert resp.status_code == 400
    assert resp.get_json()["error"] == "fine_type_invalid"


def test_negative_damage_fee_is_rejected(client, lib):
    member_id = lib.member()
    _, (copy_id,) = lib.title()
    loan_id = client.post("/api/lending/loans", json={"member_id": member_id, "copy_id": copy_id}).get_json()["id"]

    resp = client.post(f"/api/lending/loans/{loan_id}/return", json={"damaged": True, "damage_fee": "-1"})

    assert resp.status_code == 400
    assert lib.copy(copy_id).status == CopyStatus.BORROWED


def test_parse_datetime_normalizes_to_naive_utc():
    assert _parse_datetime("2024-05-01T12:00:00Z", "due_date") == datetime(2024, 5, 1, 12, 0, 0)
    assert _parse_datetime("2024-05-01T14:00:00+02:00", "due_date") == datetime(2024, 5, 1, 12, 0, 0)
    assert _parse_datetime("2024-05-01T12:00:00", "due_date") == datetime(2024, 5, 1, 12, 0, 0)
    assert _parse_datetime(None, "due_date") is None
    with pytest.raises(ValidationError):
        _parse_datetime(20240501, "due_date")


def test_explicit_due_date_is_honoured(client, lib):
    member_id = lib.member()
    _, (copy_id,) = lib.title()
    due = (utcnow() + timedelta(days=7)).replace(microsecond=0)

    resp = client.post(
        "/api/lending/loans",
        json={"member_id": member_id, "copy_id": copy_id, "due_date": due.isoformat() + "Z"},
    )

    assert resp.status_code == 201
    assert lib.loan(resp.get_json()["id"]).due_date == due


@pytest.mark.parametrize(
    "body, code",
    [
        ({"type": 5, "amount": "1"}, "fine_type_invalid"),
        ({"type": "other", "amount": "1", "description": 7}, "description_invalid"),
    ],
)
def test_non_text_fine_fields_are_400(client, lib, body, code):
    member_id = lib.member()

    resp = client.post("/api/lending/fines", json={"member_id": member_id, **body})

    assert resp.status_code == 400
    assert resp.get_json()["error"] == code
    assert lib.fines(member_id) == []


def test_non_text_waive_reason_is_400(client, lib):
    member_id = lib.member()
    fine_id = client.post(
        "/api/lending/fines", json={"member_id": member_id, "type": "other", "amount": "2"}
    ).get_json()["id"]

    resp = client.post(f"/api/lending/fines/{fine_id}/waive", json={"reason": 1})

    assert resp.status_code == 400
    assert resp.get_json()["error"] == "reason_invalid"
    assert lib.fines(member_id)[0].status == FineStatus.PENDING


def test_damaged_flag_must_be_a_boolean(client, lib):
    member_id = lib.member()
    _, (copy_id,) = lib.title()
    loan_id = client.post("/api/lending/loans", json={"member_id": member_id, "copy_id": copy_id}).get_json()["id"]

    resp = client.post(f"/api/lending/loans/{loan_id}/return", json={"damaged": "false"})

    assert resp.status_code == 400
    assert resp.get_json()["error"] == "damaged_invalid"
    assert lib.copy(copy_id).status == CopyStatus.BORROWED

    resp = client.post(f"/api/lending/loans/{loan_id}/return", json={"damaged": False})
    assert resp.status_code == 200
    assert lib.copy(copy_id).status == CopyStatus.AVAILABLE


def test_bulk_checkout_and_bulk_return(client, lib):
    member_id = lib.member()
    _, copy_ids = lib.title(copies=2)

    created = client.post("/api/lending/loans/bulk", json={"member_id": member_id, "copy_ids": copy_ids})

    assert created.status_code == 201
    loan_ids = [loan["id"] for loan in created.get_json()["loans"]]
    assert len(loan_ids) == 2

    returned = client.post("/api/lending/loans/bulk-return", json={"loan_ids": loan_ids + [999]})

    assert returned.status_code == 200
    data = returned.get_json()
    assert sorted(r["loan"]["id"] for r in data["returned"]) == sorted(loan_ids)
    assert [f["loan_id"] for f in data["failed"]] == [999]
    assert all(lib.copy(c).status == CopyStatus.AVAILABLE for c in copy_ids)


def test_bulk_checkout_with_a_borrowed_copy_is_409(client, lib):
    member_id = lib.member()
    other = lib.member("Other")
    _, copy_ids = lib.title(copies=2)
    client.post("/api/lending/loans", json={"member_id": other, "copy_id": copy_ids[0]})

    resp = client.post("/api/lending/loans/bulk", json={"member_id": member_id, "copy_ids": copy_ids})

    assert resp.status_code == 409
    assert resp.get_json()["error"] == "copies_unavailable"
    assert lib.copy(copy_ids[1]).status == CopyStatus.AVAILABLE


def test_bulk_checkout_needs_a_list_of_ids(client, lib):
    member_id = lib.member()

    resp = client.post("/api/lending/loans/bulk", json={"member_id": member_id, "copy_ids": "1,2"})

    assert resp.status_code == 400
