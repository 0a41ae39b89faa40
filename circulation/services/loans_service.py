"""Loan lifecycle: checkout, renewal, return and loss.

Each operation is one transaction script. The copy flip and the loan row
change are written in the same unit of work, so a copy is never Borrowed
without an open loan and a loan is never open on a copy that is not
Borrowed. Overdue is never stored; it is read from ``Loan.is_overdue``.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from circulation.config import LendingPolicy, lending_policy
from circulation.db.models import (
    Copy,
    CopyStatus,
    FineType,
    Loan,
    LoanStatus,
    Member,
    MembershipStatus,
    Reservation,
)
from circulation.db.repositories import copies_repo, loans_repo, members_repo, reservations_repo
from circulation.services import eligibility_service, fines_service, inventory_service, notifications_service
from circulation.services.errors import (
    CopyUnavailableError,
    IneligibleMemberError,
    InvalidStateTransitionError,
    LendingError,
    LimitExceededError,
    ValidationError,
    not_found,
)
from circulation.services.reservations_service import hand_over_freed_copy
from circulation.services.unit_of_work import UnitOfWork, read_only, unit_of_work
from circulation.utils.clock import utcnow
from circulation.utils.logging import get_logger
from circulation.utils.money import ZERO, to_money

LOG = get_logger("circulation.loans")


def _latest_due(now: datetime, policy: LendingPolicy) -> datetime:
    return now + timedelta(days=policy.max_loan_days)


def _resolve_due_date(now: datetime, due_date: Optional[datetime], policy: LendingPolicy) -> datetime:
    latest = _latest_due(now, policy)
    if due_date is None:
        return min(now + timedelta(days=policy.loan_period_days), latest)
    if due_date <= now:
        raise ValidationError("Due date must be in the future.", code="due_date_past")
    if due_date > latest:
        raise ValidationError(
            f"Due date cannot be more than {policy.max_loan_days} days from now.",
            code="due_date_too_far",
        )
    return due_date


def _load_open_loan(uow: UnitOfWork, loan_id: int, action: str) -> Loan:
    loan = loans_repo.get_loan(uow.session, loan_id, for_update=True)
    if loan is None:
        raise not_found("loan", loan_id)
    if not loan.is_open:
        raise InvalidStateTransitionError(
            f"Loan {loan_id} is {loan.status.value}; it cannot be {action}.",
            code="loan_closed",
        )
    return loan


def _eligible_member(uow: UnitOfWork, member_id: int, policy: LendingPolicy, *, wanted: int = 1) -> Member:
    member = members_repo.get_member(uow.session, member_id, for_update=True)
    if member is None:
        raise not_found("member", member_id)
    verdict = eligibility_service.evaluate(uow.session, member, uow.now, policy)
    if not verdict.eligible:
        raise IneligibleMemberError("Member is not eligible to borrow.", reasons=verdict.reasons)
    if wanted > verdict.available_slots:
        raise LimitExceededError(
            f"Cannot check out {wanted} copies; member has {verdict.available_slots} free loan slots.",
            code="loan_limit",
        )
    return member


def _claimable_hold(uow: UnitOfWork, member: Member, copy: Copy) -> Optional[Reservation]:
    """The member's own hold on a Reserved copy; None for any other status."""
    if copy.status != CopyStatus.RESERVED:
        return None
    uow.lock_title(copy.title_id)
    hold = reservations_repo.holding_reservation_for_copy(uow.session, copy.id)
    if hold is None or not hold.is_claimable_by(member.id, uow.now):
        raise CopyUnavailableError(f"Copy {copy.id} is held for another member.", code="copy_held")
    return hold


def _lend_copy(uow: UnitOfWork, member: Member, copy: Copy, hold: Optional[Reservation], due: datetime) -> Loan:
    expected = CopyStatus.RESERVED if hold is not None else CopyStatus.AVAILABLE
    inventory_service.try_reserve_copy(uow, copy, expected=expected)
    loan = loans_repo.create_loan(
        uow.session,
        member_id=member.id,
        copy_id=copy.id,
        loan_date=uow.now,
        due_date=due,
    )
    if hold is not None:
        hold.claimed_at = uow.now
        hold.loan_id = loan.id
        uow.flush()
    uow.record(
        "checkout",
        "loan",
        loan.id,
        member_id=member.id,
        copy_id=copy.id,
        due_date=due.isoformat(),
        reservation_id=hold.id if hold is not None else None,
    )
    LOG.info("checkout loan_id=%s copy_id=%s member_id=%s due=%s", loan.id, copy.id, member.id, due.isoformat())
    return loan


def _checkout_copy(
    uow: UnitOfWork,
    member_id: int,
    copy: Copy,
    due_date: Optional[datetime],
    policy: LendingPolicy,
) -> Loan:
    member = _eligible_member(uow, member_id, policy)
    due = _resolve_due_date(uow.now, due_date, policy)
    hold = _claimable_hold(uow, member, copy)
    loan = _lend_copy(uow, member, copy, hold, due)
    # the loan cap was decided on this member version
    members_repo.touch(member)
    uow.flush()
    return loan


def checkout(
    member_id: int,
    copy_id: int,
    due_date: Optional[datetime] = None,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        copy = inventory_service.load_copy(uow, copy_id)
        loan = _checkout_copy(uow, member_id, copy, due_date, policy)
    return loan.as_dict(uow.now)


def checkout_title(
    member_id: int,
    title_id: int,
    due_date: Optional[datetime] = None,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    """Check out the first Available copy of a title."""
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        if copies_repo.get_title(uow.session, title_id) is None:
            raise not_found("title", title_id)
        copy_id = inventory_service.find_available_copy(uow.session, title_id)
        if copy_id is None:
            raise CopyUnavailableError(f"No copies of title {title_id} are available.", code="no_copy_available")
        copy = inventory_service.load_copy(uow, copy_id)
        loan = _checkout_copy(uow, member_id, copy, due_date, policy)
    return loan.as_dict(uow.now)


def _distinct_ids(values: Sequence[int], field: str) -> List[int]:
    ids = list(values or [])
    if not ids:
        raise ValidationError(f"At least one {field} is required.", code=f"{field}s_required")
    if len(set(ids)) != len(ids):
        raise ValidationError(f"{field}s must not repeat.", code=f"{field}s_duplicate")
    return ids


def checkout_many(
    member_id: int,
    copy_ids: Sequence[int],
    due_date: Optional[datetime] = None,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> List[Dict[str, Any]]:
    """Check out several copies for one member, all or nothing.

    The member needs a free loan slot for every copy before any copy is
    touched. If any copy cannot be lent, nothing is written and the error
    lists every unavailable copy.
    """
    policy = policy or lending_policy()
    ids = _distinct_ids(copy_ids, "copy_id")
    with unit_of_work(now) as uow:
        member = _eligible_member(uow, member_id, policy, wanted=len(ids))
        due = _resolve_due_date(uow.now, due_date, policy)
        copies = [inventory_service.load_copy(uow, copy_id) for copy_id in ids]
        for title_id in sorted({c.title_id for c in copies if c.status == CopyStatus.RESERVED}):
            uow.lock_title(title_id)

        holds: List[Optional[Reservation]] = []
        problems: List[str] = []
        for copy in copies:
            if copy.status not in (CopyStatus.AVAILABLE, CopyStatus.RESERVED):
                problems.append(f"Copy {copy.id} is {copy.status.value}.")
                continue
            try:
                holds.append(_claimable_hold(uow, member, copy))
            except CopyUnavailableError as exc:
                problems.append(exc.message)
        if problems:
            raise CopyUnavailableError("Could not complete checkout.", reasons=problems, code="copies_unavailable")

        loans = [_lend_copy(uow, member, copy, hold, due) for copy, hold in zip(copies, holds)]
        members_repo.touch(member)
        uow.flush()
    return [loan.as_dict(uow.now) for loan in loans]


def renew(
    loan_id: int,
    new_due_date: Optional[datetime] = None,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        session = uow.session
        loan = _load_open_loan(uow, loan_id, "renewed")
        if loan.renewal_count >= policy.max_renewals:
            raise LimitExceededError(
                f"Loan has already been renewed {loan.renewal_count} times (maximum is {policy.max_renewals}).",
                code="renewal_limit",
            )
        member = members_repo.get_member(session, loan.member_id)
        if member is None:
            raise not_found("member", loan.member_id)
        if member.membership_status != MembershipStatus.ACTIVE:
            raise IneligibleMemberError(
                f"Membership status is {member.membership_status.value}, must be Active.",
            )
        copy = copies_repo.get_copy(session, loan.copy_id)
        uow.lock_title(copy.title_id)
        if reservations_repo.has_active_for_title(session, copy.title_id):
            raise InvalidStateTransitionError(
                "Loan cannot be renewed while other members are waiting for this title.",
                code="renewal_blocked_by_reservation",
            )

        latest = _latest_due(uow.now, policy)
        if new_due_date is None:
            new_due_date = min(max(loan.due_date, uow.now) + timedelta(days=policy.loan_period_days), latest)
        if new_due_date <= loan.due_date:
            raise ValidationError("New due date must be after the current due date.", code="due_date_not_later")
        if new_due_date > latest:
            raise ValidationError(
                f"Due date cannot be more than {policy.max_loan_days} days from now.",
                code="due_date_too_far",
            )

        previous_due = loan.due_date
        loan.due_date = new_due_date
        loan.renewal_count += 1
        loan.status = LoanStatus.RENEWED
        uow.flush()
        uow.record(
            "renew",
            "loan",
            loan.id,
            member_id=loan.member_id,
            previous_due=previous_due.isoformat(),
            due_date=new_due_date.isoformat(),
            renewal_count=loan.renewal_count,
        )
        LOG.info("renew loan_id=%s due=%s renewals=%s", loan.id, new_due_date.isoformat(), loan.renewal_count)
    return loan.as_dict(uow.now)


def _close_loan(
    uow: UnitOfWork,
    loan: Loan,
    copy: Copy,
    returned_at: datetime,
    policy: LendingPolicy,
    *,
    damaged: bool = False,
    damage_fee: Optional[Decimal] = None,
) -> Dict[str, Any]:
    """Close ``loan`` and route its copy. Title lock must already be held."""
    fines = []
    overdue_fine = fines_service.assess_overdue(uow, loan, at=returned_at, policy=policy)
    if overdue_fine is not None:
        fines.append(overdue_fine)

    loan.status = LoanStatus.RETURNED
    loan.return_date = returned_at
    uow.flush()

    reservation = None
    if damaged:
        inventory_service.release_copy(uow, copy, CopyStatus.DAMAGED)
        fee = to_money(damage_fee if damage_fee is not None else policy.damaged_item_fee)
        if fee > ZERO:
            member = members_repo.get_member(uow.session, loan.member_id, for_update=True)
            fines.append(
                fines_service.charge(
                    uow,
                    member,
                    FineType.DAMAGED,
                    fee,
                    loan_id=loan.id,
                    description=f"Copy {copy.id} returned damaged",
                )
            )
    else:
        reservation = hand_over_freed_copy(uow, copy, policy)

    uow.record("return", "loan", loan.id, member_id=loan.member_id, copy_id=copy.id, damaged=damaged)
    LOG.info(
        "return loan_id=%s copy_id=%s copy_status=%s fines=%s",
        loan.id,
        copy.id,
        copy.status.value,
        len(fines),
    )
    return {
        "loan": loan.as_dict(uow.now),
        "copy": copy.as_dict(),
        "fines": [f.as_dict() for f in fines],
        "reservation": reservation.as_dict() if reservation is not None else None,
    }


def _check_return_date(loan: Loan, returned_at: datetime) -> None:
    if returned_at < loan.loan_date:
        raise ValidationError("Return date cannot precede the loan date.", code="return_date_invalid")


def return_loan(
    loan_id: int,
    return_date: Optional[datetime] = None,
    *,
    damaged: bool = False,
    damage_fee: Optional[Decimal] = None,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    """Close a loan, charge any overdue days and pass the copy on.

    A damaged copy is parked as Damaged instead of going to the queue.
    """
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        loan = _load_open_loan(uow, loan_id, "returned")
        copy = inventory_service.load_copy(uow, loan.copy_id)
        uow.lock_title(copy.title_id)
        returned_at = return_date or uow.now
        _check_return_date(loan, returned_at)
        result = _close_loan(uow, loan, copy, returned_at, policy, damaged=damaged, damage_fee=damage_fee)
    return result


def return_many(
    loan_ids: Sequence[int],
    return_date: Optional[datetime] = None,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    """Return several loans in one transaction.

    Loans that are unknown, already closed or dated before the return are
    reported under ``failed`` and skipped; the rest are closed together.
    Raises InvalidStateTransitionError when none of them can be returned.
    """
    policy = policy or lending_policy()
    ids = _distinct_ids(loan_ids, "loan_id")
    with unit_of_work(now) as uow:
        returned_at = return_date or uow.now
        ready = []
        failed = []
        for loan_id in ids:
            try:
                loan = _load_open_loan(uow, loan_id, "returned")
                _check_return_date(loan, returned_at)
            except LendingError as exc:
                failed.append({"loan_id": loan_id, "error": exc.code, "message": exc.message})
                continue
            ready.append((loan, inventory_service.load_copy(uow, loan.copy_id)))
        if not ready:
            raise InvalidStateTransitionError(
                "None of the loans could be returned.",
                reasons=[f["message"] for f in failed],
                code="nothing_returned",
            )
        for title_id in sorted({copy.title_id for _, copy in ready}):
            uow.lock_title(title_id)
        returned = [_close_loan(uow, loan, copy, returned_at, policy) for loan, copy in ready]
    LOG.info("bulk return returned=%s failed=%s", len(returned), len(failed))
    return {"returned": returned, "failed": failed}


def report_lost(
    loan_id: int,
    replacement_fee: Optional[Decimal] = None,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        loan = _load_open_loan(uow, loan_id, "reported lost")
        copy = inventory_service.load_copy(uow, loan.copy_id)
        inventory_service.release_copy(uow, copy, CopyStatus.LOST)
        loan.status = LoanStatus.LOST
        uow.flush()

        fine = None
        fee = to_money(replacement_fee if replacement_fee is not None else policy.lost_item_fee)
        if fee > ZERO:
            member = members_repo.get_member(uow.session, loan.member_id, for_update=True)
            fine = fines_service.charge(
                uow,
                member,
                FineType.LOST,
                fee,
                loan_id=loan.id,
                description=f"Copy {copy.id} reported lost",
            )
        uow.record("report_lost", "loan", loan.id, member_id=loan.member_id, copy_id=copy.id)
        LOG.info("report_lost loan_id=%s copy_id=%s member_id=%s", loan.id, copy.id, loan.member_id)
    return {
        "loan": loan.as_dict(uow.now),
        "copy": copy.as_dict(),
        "fine": fine.as_dict() if fine is not None else None,
    }


def get_loan(loan_id: int, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    with read_only() as session:
        loan = loans_repo.get_loan(session, loan_id)
        if loan is None:
            raise not_found("loan", loan_id)
        return loan.as_dict(now or utcnow())


def notify_due_soon(
    now: Optional[datetime] = None,
    *,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    """Remind borrowers whose loans fall due within the look-ahead window."""
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        horizon = uow.now + timedelta(days=policy.due_soon_days)
        loans = loans_repo.list_loans_due_between(uow.session, uow.now, horizon)
        for loan in loans:
            uow.notify(
                loan.member_id,
                notifications_service.LOAN_DUE_SOON,
                loan_id=loan.id,
                title=loan.copy.title.name if loan.copy and loan.copy.title else None,
                due_date=loan.due_date.isoformat(),
            )
        loan_ids = [loan.id for loan in loans]
    LOG.info("due-soon sweep notified=%s", len(loan_ids))
    return {"notified": len(loan_ids), "loan_ids": loan_ids}


def notify_overdue(
    now: Optional[datetime] = None,
    *,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        loans = loans_repo.list_overdue_loans(uow.session, uow.now)
        for loan in loans:
            days = loan.days_overdue(uow.now)
            uow.notify(
                loan.member_id,
                notifications_service.LOAN_OVERDUE,
                loan_id=loan.id,
                title=loan.copy.title.name if loan.copy and loan.copy.title else None,
                due_date=loan.due_date.isoformat(),
                days_overdue=days,
                accrued=to_money(policy.daily_fine_rate * days),
            )
        loan_ids = [loan.id for loan in loans]
    LOG.info("overdue sweep notified=%s", len(loan_ids))
    return {"notified": len(loan_ids), "loan_ids": loan_ids}


__all__ = [
    "checkout",
    "checkout_title",
    "checkout_many",
    "renew",
    "return_loan",
    "return_many",
    "report_lost",
    "get_loan",
    "notify_due_soon",
    "notify_overdue",
]
