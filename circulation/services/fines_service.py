"""Fine ledger: overdue assessment, manual fines and settlement.

Every fine change adjusts ``Member.outstanding_balance`` in the same unit of
work, so the stored balance always equals the sum of the member's Pending
fines. Only Pending fines can be paid, waived or deleted.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from circulation.config import LendingPolicy, lending_policy
from circulation.db.models import Fine, FineStatus, FineType, Loan, Member
from circulation.db.repositories import fines_repo, loans_repo, members_repo
from circulation.services import notifications_service
from circulation.services.errors import (
    InvalidStateTransitionError,
    LendingError,
    ValidationError,
    not_found,
)
from circulation.services.unit_of_work import UnitOfWork, read_only, unit_of_work
from circulation.utils.clock import utcnow
from circulation.utils.logging import get_logger
from circulation.utils.money import ZERO, to_money

LOG = get_logger("circulation.fines")


def _optional_text(value: Any, field: str) -> Optional[str]:
    """Stripped text, or None when blank; anything but a string is rejected."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string.", code=f"{field}_invalid")
    return value.strip() or None


def _coerce_fine_type(value: Union[FineType, str]) -> FineType:
    if isinstance(value, FineType):
        return value
    if not isinstance(value, (str, type(None))):
        raise ValidationError(f"Unknown fine type {value!r}.", code="fine_type_invalid")
    text = (value or "").strip().lower()
    for member in FineType:
        if member.value.lower() == text or member.name.lower() == text:
            return member
    raise ValidationError(f"Unknown fine type {value!r}.", code="fine_type_invalid")


def _coerce_fine_status(value: Union[FineStatus, str, None]) -> Optional[FineStatus]:
    if value is None or isinstance(value, FineStatus):
        return value
    text = _optional_text(value, "status")
    if text is None:
        return None
    text = text.lower()
    for member in FineStatus:
        if member.value.lower() == text:
            return member
    raise ValidationError(f"Unknown fine status {value!r}.", code="fine_status_invalid")


def _load_member(uow: UnitOfWork, member_id: int) -> Member:
    member = members_repo.get_member(uow.session, member_id, for_update=True)
    if member is None:
        raise not_found("member", member_id)
    return member


def charge(
    uow: UnitOfWork,
    member: Member,
    fine_type: FineType,
    amount: Decimal,
    *,
    loan_id: Optional[int] = None,
    description: Optional[str] = None,
) -> Fine:
    """Create a Pending fine and raise the member's balance by its amount."""
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("Fine amount must be greater than zero.", code="amount_invalid")
    fine = fines_repo.create_fine(
        uow.session,
        member_id=member.id,
        fine_type=fine_type,
        amount=amount,
        created_at=uow.now,
        loan_id=loan_id,
        description=description,
    )
    members_repo.adjust_balance(member, amount)
    uow.flush()
    uow.record("fine_created", "fine", fine.id, member_id=member.id, type=fine_type.value, amount=str(amount), loan_id=loan_id)
    uow.notify(
        member.id,
        notifications_service.FINE_ASSESSED,
        fine_id=fine.id,
        fine_type=fine_type.value,
        amount=amount,
        description=description,
    )
    LOG.info("fine_created fine_id=%s member_id=%s type=%s amount=%s", fine.id, member.id, fine_type.value, amount)
    return fine


def assess_overdue(
    uow: UnitOfWork,
    loan: Loan,
    *,
    at: datetime,
    policy: LendingPolicy,
) -> Optional[Fine]:
    """Charge started days past due at ``at``, less anything already settled.

    Returns None (noop) when the loan is not late, a Pending overdue fine
    already exists for it, or earlier Paid/Waived overdue fines cover the
    full amount.
    """
    days = loan.days_overdue(at)
    if days <= 0:
        return None
    if fines_repo.pending_overdue_fine(uow.session, loan.id) is not None:
        LOG.debug("overdue fine already pending loan_id=%s", loan.id)
        return None
    gross = to_money(policy.daily_fine_rate * days)
    amount = gross - fines_repo.settled_overdue_total(uow.session, loan.id)
    if amount <= ZERO:
        return None
    member = _load_member(uow, loan.member_id)
    return charge(
        uow,
        member,
        FineType.OVERDUE,
        amount,
        loan_id=loan.id,
        description=f"Overdue by {days} day(s)",
    )


def assess_overdue_fine(
    loan_id: int,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Optional[Dict[str, Any]]:
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        loan = loans_repo.get_loan(uow.session, loan_id, for_update=True)
        if loan is None:
            raise not_found("loan", loan_id)
        if not loan.is_open:
            return None
        fine = assess_overdue(uow, loan, at=uow.now, policy=policy)
    return fine.as_dict() if fine is not None else None


def assess_overdue_fines(
    now: Optional[datetime] = None,
    *,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    """Batch sweep over every overdue loan, one transaction per loan."""
    policy = policy or lending_policy()
    at = now or utcnow()
    with read_only() as session:
        loan_ids = loans_repo.list_overdue_loan_ids(session, at)
    summary = {"checked": len(loan_ids), "assessed": 0, "skipped": 0, "failed": 0, "fine_ids": []}
    for loan_id in loan_ids:
        try:
            result = assess_overdue_fine(loan_id, now=at, policy=policy)
        except LendingError as exc:
            summary["failed"] += 1
            LOG.warning("overdue assessment failed loan_id=%s code=%s", loan_id, exc.code)
            continue
        if result is None:
            summary["skipped"] += 1
        else:
            summary["assessed"] += 1
            summary["fine_ids"].append(result["id"])
    LOG.info(
        "overdue sweep checked=%s assessed=%s skipped=%s failed=%s",
        summary["checked"],
        summary["assessed"],
        summary["skipped"],
        summary["failed"],
    )
    return summary


def create_manual_fine(
    member_id: int,
    fine_type: Union[FineType, str],
    amount: Any,
    description: Optional[str] = None,
    loan_id: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    kind = _coerce_fine_type(fine_type)
    note = _optional_text(description, "description")
    try:
        value = to_money(amount)
    except ValueError as exc:
        raise ValidationError("Fine amount must be a number.", code="amount_invalid") from exc
    if value <= ZERO:
        raise ValidationError("Fine amount must be greater than zero.", code="amount_invalid")
    with unit_of_work(now) as uow:
        member = _load_member(uow, member_id)
        if loan_id is not None:
            loan = loans_repo.get_loan(uow.session, loan_id)
            if loan is None:
                raise not_found("loan", loan_id)
            if loan.member_id != member.id:
                raise ValidationError(
                    f"Loan {loan_id} does not belong to member {member_id}.",
                    code="loan_member_mismatch",
                )
        fine = charge(uow, member, kind, value, loan_id=loan_id, description=note)
    return fine.as_dict()


def _settle(
    fine_id: int,
    action: str,
    *,
    now: Optional[datetime],
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    note = _optional_text(reason, "reason")
    with unit_of_work(now) as uow:
        fine = fines_repo.get_fine(uow.session, fine_id, for_update=True)
        if fine is None:
            raise not_found("fine", fine_id)
        if fine.status != FineStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Fine {fine_id} is {fine.status.value}; only Pending fines can be {action}.",
                code="fine_not_pending",
            )
        member = _load_member(uow, fine.member_id)
        members_repo.adjust_balance(member, -Decimal(str(fine.amount)))
        snapshot = fine.as_dict()
        if action == "deleted":
            fines_repo.delete_fine(uow.session, fine)
            snapshot["status"] = "Deleted"
        else:
            fine.status = FineStatus.PAID if action == "paid" else FineStatus.WAIVED
            fine.settled_at = uow.now
            if note:
                fine.waiver_reason = note
        uow.flush()
        if action != "deleted":
            snapshot = fine.as_dict()
        uow.record(f"fine_{action}", "fine", fine_id, member_id=member.id, amount=str(fine.amount))
        LOG.info("fine_%s fine_id=%s member_id=%s amount=%s", action, fine_id, member.id, fine.amount)
    snapshot["outstanding_balance"] = str(member.outstanding_balance)
    return snapshot


def pay_fine(fine_id: int, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    return _settle(fine_id, "paid", now=now)


def waive_fine(fine_id: int, reason: Optional[str] = None, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    return _settle(fine_id, "waived", now=now, reason=reason)


def delete_fine(fine_id: int, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    return _settle(fine_id, "deleted", now=now)


def outstanding_balance(member_id: int) -> Decimal:
    with read_only() as session:
        member = members_repo.get_member(session, member_id)
        if member is None:
            raise not_found("member", member_id)
        return to_money(member.outstanding_balance or 0)


def list_fines(member_id: int, status: Union[FineStatus, str, None] = None) -> List[Dict[str, Any]]:
    wanted = _coerce_fine_status(status)
    with read_only() as session:
        if members_repo.get_member(session, member_id) is None:
            raise not_found("member", member_id)
        return [f.as_dict() for f in fines_repo.list_fines(session, member_id, status=wanted)]


def reconcile_balance(member_id: int, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Recompute the stored balance from Pending fines and repair drift."""
    with unit_of_work(now) as uow:
        member = _load_member(uow, member_id)
        stored = to_money(member.outstanding_balance or 0)
        computed = members_repo.sum_pending_fines(uow.session, member_id)
        corrected = stored != computed
        if corrected:
            member.outstanding_balance = computed
            uow.flush()
            uow.record("balance_reconciled", "member", member_id, member_id=member_id, stored=str(stored), computed=str(computed))
            LOG.warning("balance drift repaired member_id=%s stored=%s computed=%s", member_id, stored, computed)
    return {
        "member_id": member_id,
        "stored": str(stored),
        "computed": str(computed),
        "corrected": corrected,
    }


__all__ = [
    "charge",
    "assess_overdue",
    "assess_overdue_fine",
    "assess_overdue_fines",
    "create_manual_fine",
    "pay_fine",
    "waive_fine",
    "delete_fine",
    "outstanding_balance",
    "list_fines",
    "reconcile_balance",
]
