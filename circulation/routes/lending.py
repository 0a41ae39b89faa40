"""JSON API over the lending services.

Routes (all under /api/lending):
    GET    /members/<id>/eligibility
    GET    /members/<id>/fines[?status=Pending]
    GET    /members/<id>/balance
    POST   /members/<id>/balance/reconcile
    POST   /loans                       {member_id, copy_id | title_id, due_date?}
    POST   /loans/bulk                  {member_id, copy_ids, due_date?}
    POST   /loans/bulk-return           {loan_ids, return_date?}
    GET    /loans/<id>
    POST   /loans/<id>/renew            {new_due_date?}
    POST   /loans/<id>/return           {return_date?, damaged?, damage_fee?}
    POST   /loans/<id>/lost             {replacement_fee?}
    POST   /reservations                {member_id, title_id}
    POST   /reservations/<id>/cancel
    GET    /reservations/<id>/position
    GET    /titles/<id>/queue
    POST   /copies/<id>/restore
    POST   /fines                       {member_id, type, amount, description?, loan_id?}
    POST   /fines/<id>/pay
    POST   /fines/<id>/waive            {reason?}
    DELETE /fines/<id>

Service errors map to HTTP statuses in ``_STATUS_BY_ERROR``; the body is
always ``{"error", "message", "reasons"}``.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from flask import Blueprint, jsonify, request

from circulation.services import (
    eligibility_service,
    fines_service,
    loans_service,
    reservations_service,
)
from circulation.services.errors import (
    ConcurrentModificationError,
    CopyUnavailableError,
    IneligibleMemberError,
    InvalidStateTransitionError,
    LendingError,
    LimitExceededError,
    NotFoundError,
    ValidationError,
)
from circulation.utils.logging import get_logger
from circulation.utils.money import to_money

LOG = get_logger("circulation.routes")

bp = Blueprint("lending", __name__, url_prefix="/api/lending")

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (IneligibleMemberError, 422),
    (CopyUnavailableError, 409),
    (InvalidStateTransitionError, 409),
    (LimitExceededError, 409),
    (ConcurrentModificationError, 409),
)


def status_for(exc: LendingError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return 400


@bp.errorhandler(LendingError)
def _lending_error(exc: LendingError):
    status = status_for(exc)
    LOG.info("request rejected path=%s status=%s code=%s", request.path, status, exc.code)
    return jsonify(exc.as_dict()), status


def _payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _parse_datetime(value: Any, field: str) -> Optional[datetime]:
    """ISO-8601 string to naive UTC; aware values are converted first."""
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 string.", code=f"{field}_invalid")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(f"{field} must be an ISO-8601 string.", code=f"{field}_invalid") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_int(value: Any, field: str, *, required: bool = True) -> Optional[int]:
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} is required.", code=f"{field}_required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer.", code=f"{field}_invalid")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer.", code=f"{field}_invalid") from exc


def _parse_bool(value: Any, field: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false.", code=f"{field}_invalid")
    return value


def _parse_id_list(value: Any, field: str) -> List[int]:
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{field} must be a non-empty list of ids.", code=f"{field}_invalid")
    return [_parse_int(item, field) for item in value]


def _parse_money(value: Any, field: str):
    if value in (None, ""):
        return None
    try:
        amount = to_money(value)
    except ValueError as exc:
        raise ValidationError(f"{field} must be a number.", code=f"{field}_invalid") from exc
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative.", code=f"{field}_invalid")
    return amount


# ------------------- Members --------------------
@bp.route("/members/<int:member_id>/eligibility", methods=["GET"])
def api_member_eligibility(member_id: int):
    return jsonify(eligibility_service.check_eligibility(member_id).as_dict())


@bp.route("/members/<int:member_id>/fines", methods=["GET"])
def api_member_fines(member_id: int):
    fines = fines_service.list_fines(member_id, request.args.get("status"))
    return jsonify({"member_id": member_id, "fines": fines})


@bp.route("/members/<int:member_id>/balance", methods=["GET"])
def api_member_balance(member_id: int):
    balance = fines_service.outstanding_balance(member_id)
    return jsonify({"member_id": member_id, "outstanding_balance": str(balance)})


@bp.route("/members/<int:member_id>/balance/reconcile", methods=["POST"])
def api_member_reconcile(member_id: int):
    return jsonify(fines_service.reconcile_balance(member_id))


# ------------------- Loans --------------------
@bp.route("/loans", methods=["POST"])
def api_checkout():
    payload = _payload()
    member_id = _parse_int(payload.get("member_id"), "member_id")
    due_date = _parse_datetime(payload.get("due_date"), "due_date")
    copy_id = _parse_int(payload.get("copy_id"), "copy_id", required=False)
    if copy_id is not None:
        loan = loans_service.checkout(member_id, copy_id, due_date)
    else:
        title_id = _parse_int(payload.get("title_id"), "title_id", required=False)
        if title_id is None:
            raise ValidationError("copy_id or title_id is required.", code="copy_id_required")
        loan = loans_service.checkout_title(member_id, title_id, due_date)
    return jsonify(loan), 201


@bp.route("/loans/bulk", methods=["POST"])
def api_checkout_many():
    payload = _payload()
    loans = loans_service.checkout_many(
        _parse_int(payload.get("member_id"), "member_id"),
        _parse_id_list(payload.get("copy_ids"), "copy_ids"),
        _parse_datetime(payload.get("due_date"), "due_date"),
    )
    return jsonify({"loans": loans}), 201


@bp.route("/loans/bulk-return", methods=["POST"])
def api_return_many():
    payload = _payload()
    result = loans_service.return_many(
        _parse_id_list(payload.get("loan_ids"), "loan_ids"),
        _parse_datetime(payload.get("return_date"), "return_date"),
    )
    return jsonify(result)


@bp.route("/loans/<int:loan_id>", methods=["GET"])
def api_loan_get(loan_id: int):
    return jsonify(loans_service.get_loan(loan_id))


@bp.route("/loans/<int:loan_id>/renew", methods=["POST"])
def api_loan_renew(loan_id: int):
    payload = _payload()
    new_due = _parse_datetime(payload.get("new_due_date"), "new_due_date")
    return jsonify(loans_service.renew(loan_id, new_due))


@bp.route("/loans/<int:loan_id>/return", methods=["POST"])
def api_loan_return(loan_id: int):
    payload = _payload()
    result = loans_service.return_loan(
        loan_id,
        _parse_datetime(payload.get("return_date"), "return_date"),
        damaged=_parse_bool(payload.get("damaged"), "damaged"),
        damage_fee=_parse_money(payload.get("damage_fee"), "damage_fee"),
    )
    return jsonify(result)


@bp.route("/loans/<int:loan_id>/lost", methods=["POST"])
def api_loan_lost(loan_id: int):
    payload = _payload()
    fee = _parse_money(payload.get("replacement_fee"), "replacement_fee")
    return jsonify(loans_service.report_lost(loan_id, fee))


# ------------------- Reservations --------------------
@bp.route("/reservations", methods=["POST"])
def api_reserve():
    payload = _payload()
    reservation = reservations_service.reserve(
        _parse_int(payload.get("member_id"), "member_id"),
        _parse_int(payload.get("title_id"), "title_id"),
    )
    return jsonify(reservation), 201


@bp.route("/reservations/<int:reservation_id>/cancel", methods=["POST"])
def api_reservation_cancel(reservation_id: int):
    return jsonify(reservations_service.cancel(reservation_id))


@bp.route("/reservations/<int:reservation_id>/position", methods=["GET"])
def api_reservation_position(reservation_id: int):
    position = reservations_service.queue_position(reservation_id)
    return jsonify({"reservation_id": reservation_id, "queue_position": position})


@bp.route("/titles/<int:title_id>/queue", methods=["GET"])
def api_title_queue(title_id: int):
    return jsonify({"title_id": title_id, "queue": reservations_service.list_queue(title_id)})


@bp.route("/copies/<int:copy_id>/restore", methods=["POST"])
def api_copy_restore(copy_id: int):
    return jsonify(reservations_service.restore_copy(copy_id))


# ------------------- Fines --------------------
@bp.route("/fines", methods=["POST"])
def api_fine_create():
    payload = _payload()
    fine = fines_service.create_manual_fine(
        _parse_int(payload.get("member_id"), "member_id"),
        payload.get("type") or "",
        payload.get("amount"),
        payload.get("description"),
        _parse_int(payload.get("loan_id"), "loan_id", required=False),
    )
    return jsonify(fine), 201


@bp.route("/fines/<int:fine_id>/pay", methods=["POST"])
def api_fine_pay(fine_id: int):
    return jsonify(fines_service.pay_fine(fine_id))


@bp.route("/fines/<int:fine_id>/waive", methods=["POST"])
def api_fine_waive(fine_id: int):
    payload = _payload()
    return jsonify(fines_service.waive_fine(fine_id, payload.get("reason")))


@bp.route("/fines/<int:fine_id>", methods=["DELETE"])
def api_fine_delete(fine_id: int):
    return jsonify(fines_service.delete_fine(fine_id))


def register_lending(app: Any) -> None:
    if getattr(app, "_lending_bp", None):  # idempotent
        return
    app.register_blueprint(bp)
    setattr(app, "_lending_bp", bp)
    LOG.debug("lending blueprint registered")


__all__ = ["bp", "register_lending", "status_for"]
