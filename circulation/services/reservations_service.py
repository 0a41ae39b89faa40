"""Reservation queue: FIFO wait-list per title, fulfillment and hold expiry.

Queue order is ``(reservation_date, id)`` among Active reservations and is
recomputed on every read. Anything that hands a copy to the queue holds the
title lock for the whole unit of work, so one freed copy can never reach two
waiters.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from circulation.config import LendingPolicy, lending_policy
from circulation.db.models import Copy, CopyStatus, MembershipStatus, Reservation, ReservationStatus
from circulation.db.repositories import copies_repo, loans_repo, members_repo, reservations_repo
from circulation.services import inventory_service, notifications_service
from circulation.services.errors import (
    IneligibleMemberError,
    InvalidStateTransitionError,
    LendingError,
    LimitExceededError,
    ValidationError,
    not_found,
)
from circulation.services.unit_of_work import UnitOfWork, read_only, unit_of_work
from circulation.utils.clock import utcnow
from circulation.utils.logging import get_logger

LOG = get_logger("circulation.reservations")


def _queue_position(session, reservation: Reservation) -> Optional[int]:
    if reservation.status != ReservationStatus.ACTIVE:
        return None
    queue = reservations_repo.active_queue(session, reservation.title_id)
    for index, row in enumerate(queue, start=1):
        if row.id == reservation.id:
            return index
    return None


def hand_over_freed_copy(uow: UnitOfWork, copy: Copy, policy: LendingPolicy) -> Optional[Reservation]:
    """Give ``copy`` to the oldest Active waiter of its title, or release it.

    Caller must already hold the title lock.
    """
    waiter = reservations_repo.oldest_active(uow.session, copy.title_id)
    if waiter is None:
        inventory_service.release_copy(uow, copy, CopyStatus.AVAILABLE)
        return None
    inventory_service.release_copy(uow, copy, CopyStatus.RESERVED)
    waiter.status = ReservationStatus.FULFILLED
    waiter.copy_id = copy.id
    waiter.fulfilled_at = uow.now
    waiter.hold_expires_at = uow.now + timedelta(hours=policy.hold_hours)
    uow.flush()
    title = copies_repo.get_title(uow.session, copy.title_id)
    uow.record("reservation_fulfilled", "reservation", waiter.id, member_id=waiter.member_id, copy_id=copy.id)
    uow.notify(
        waiter.member_id,
        notifications_service.RESERVATION_READY,
        reservation_id=waiter.id,
        title=title.name if title else None,
        copy_id=copy.id,
        hold_expires_at=waiter.hold_expires_at.isoformat(),
    )
    LOG.info(
        "reservation_fulfilled reservation_id=%s member_id=%s copy_id=%s",
        waiter.id,
        waiter.member_id,
        copy.id,
    )
    return waiter


def notify_copy_freed(
    title_id: int,
    copy_id: int,
    *,
    uow: Optional[UnitOfWork] = None,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Optional[Dict[str, Any]]:
    """Route a freed copy through the queue.

    Runs inside ``uow`` when given, otherwise in its own unit of work.
    Returns the fulfilled reservation, or None when the copy went back to
    Available.
    """
    policy = policy or lending_policy()
    if uow is None:
        with unit_of_work(now) as own:
            reservation = notify_copy_freed(title_id, copy_id, uow=own, policy=policy)
        return reservation
    uow.lock_title(title_id)
    copy = inventory_service.load_copy(uow, copy_id)
    if copy.title_id != title_id:
        raise ValidationError(f"Copy {copy_id} does not belong to title {title_id}.", code="copy_title_mismatch")
    reservation = hand_over_freed_copy(uow, copy, policy)
    return reservation.as_dict() if reservation is not None else None


def reserve(
    member_id: int,
    title_id: int,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        session = uow.session
        member = members_repo.get_member(session, member_id)
        if member is None:
            raise not_found("member", member_id)
        if member.membership_status != MembershipStatus.ACTIVE:
            raise IneligibleMemberError(
                f"Membership status is {member.membership_status.value}, must be Active.",
            )
        if copies_repo.get_title(session, title_id) is None:
            raise not_found("title", title_id)
        uow.lock_title(title_id)
        if copies_repo.count_available(session, title_id) > 0:
            raise ValidationError(
                "Title has available copies; check one out instead of reserving.",
                code="copies_available",
            )
        if reservations_repo.find_active_for_member(session, member_id, title_id) is not None:
            raise ValidationError(
                "Member already has an active reservation for this title.",
                code="duplicate_reservation",
            )
        active = members_repo.count_active_reservations(session, member_id)
        if active >= policy.max_active_reservations:
            raise LimitExceededError(
                f"Member already has {active} active reservations (maximum is {policy.max_active_reservations}).",
                code="reservation_limit",
            )
        # the reservation cap was decided on this member version
        members_repo.touch(member)
        uow.flush()
        reservation = reservations_repo.create_reservation(
            session,
            member_id=member_id,
            title_id=title_id,
            reservation_date=uow.now,
        )
        position = _queue_position(session, reservation)
        uow.record("reservation_created", "reservation", reservation.id, member_id=member_id, title_id=title_id)
        LOG.info("reserve reservation_id=%s member_id=%s title_id=%s position=%s", reservation.id, member_id, title_id, position)
    data = reservation.as_dict()
    data["queue_position"] = position
    return data


def cancel(reservation_id: int, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    with unit_of_work(now) as uow:
        reservation = reservations_repo.get_reservation(uow.session, reservation_id, for_update=True)
        if reservation is None:
            raise not_found("reservation", reservation_id)
        if reservation.status != ReservationStatus.ACTIVE:
            raise InvalidStateTransitionError(
                f"Reservation {reservation_id} is {reservation.status.value}; only Active reservations can be cancelled.",
            )
        reservation.status = ReservationStatus.CANCELLED
        reservation.closed_at = uow.now
        uow.flush()
        uow.record("reservation_cancelled", "reservation", reservation_id, member_id=reservation.member_id)
        LOG.info("cancel reservation_id=%s member_id=%s", reservation_id, reservation.member_id)
    return reservation.as_dict()


def queue_position(reservation_id: int) -> Optional[int]:
    """1-based position among Active waiters; None once no longer Active."""
    with read_only() as session:
        reservation = reservations_repo.get_reservation(session, reservation_id)
        if reservation is None:
            raise not_found("reservation", reservation_id)
        return _queue_position(session, reservation)


def list_queue(title_id: int) -> List[Dict[str, Any]]:
    with read_only() as session:
        if copies_repo.get_title(session, title_id) is None:
            raise not_found("title", title_id)
        rows = []
        for position, reservation in enumerate(reservations_repo.active_queue(session, title_id), start=1):
            data = reservation.as_dict()
            data["queue_position"] = position
            rows.append(data)
        return rows


def restore_copy(
    copy_id: int,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    """Return a Damaged or Lost copy to circulation through the queue."""
    policy = policy or lending_policy()
    with unit_of_work(now) as uow:
        copy = copies_repo.get_copy(uow.session, copy_id)
        if copy is None:
            raise not_found("copy", copy_id)
        if copy.status not in (CopyStatus.DAMAGED, CopyStatus.LOST):
            raise InvalidStateTransitionError(
                f"Copy {copy_id} is {copy.status.value}; only Damaged or Lost copies can be restored.",
            )
        if loans_repo.open_loan_for_copy(uow.session, copy_id) is not None:
            raise InvalidStateTransitionError(f"Copy {copy_id} still has an open loan.", code="copy_on_loan")
        uow.lock_title(copy.title_id)
        reservation = hand_over_freed_copy(uow, copy, policy)
    return {
        "copy": copy.as_dict(),
        "reservation": reservation.as_dict() if reservation is not None else None,
    }


def _expire_title(title_id: int, now: datetime, policy: LendingPolicy) -> Dict[str, int]:
    counts = {"expired": 0, "reoffered": 0, "released": 0}
    with unit_of_work(now) as uow:
        uow.lock_title(title_id)
        title = copies_repo.get_title(uow.session, title_id)
        for hold in reservations_repo.lapsed_holds_for_title(uow.session, title_id, uow.now):
            hold.status = ReservationStatus.EXPIRED
            hold.closed_at = uow.now
            uow.flush()
            counts["expired"] += 1
            uow.record("reservation_expired", "reservation", hold.id, member_id=hold.member_id, copy_id=hold.copy_id)
            uow.notify(
                hold.member_id,
                notifications_service.RESERVATION_EXPIRED,
                reservation_id=hold.id,
                title=title.name if title else None,
                hold_expires_at=hold.hold_expires_at.isoformat() if hold.hold_expires_at else None,
            )
            copy = copies_repo.get_copy(uow.session, hold.copy_id, for_update=True) if hold.copy_id else None
            if copy is None or copy.status != CopyStatus.RESERVED:
                continue
            if hand_over_freed_copy(uow, copy, policy) is None:
                counts["released"] += 1
            else:
                counts["reoffered"] += 1
    return counts


def expire_stale(
    now: Optional[datetime] = None,
    *,
    policy: Optional[LendingPolicy] = None,
) -> Dict[str, Any]:
    """Expire lapsed holds one title at a time and pass their copies on."""
    policy = policy or lending_policy()
    at = now or utcnow()
    with read_only() as session:
        title_ids = reservations_repo.titles_with_lapsed_holds(session, at)
    summary = {"titles": len(title_ids), "expired": 0, "reoffered": 0, "released": 0, "failed": 0}
    for title_id in title_ids:
        try:
            counts = _expire_title(title_id, at, policy)
        except LendingError as exc:
            summary["failed"] += 1
            LOG.warning("hold expiry failed title_id=%s code=%s", title_id, exc.code)
            continue
        for key, value in counts.items():
            summary[key] += value
    LOG.info(
        "hold sweep titles=%s expired=%s reoffered=%s released=%s failed=%s",
        summary["titles"],
        summary["expired"],
        summary["reoffered"],
        summary["released"],
        summary["failed"],
    )
    return summary


__all__ = [
    "hand_over_freed_copy",
    "notify_copy_freed",
    "reserve",
    "cancel",
    "queue_position",
    "list_queue",
    "restore_copy",
    "expire_stale",
]
