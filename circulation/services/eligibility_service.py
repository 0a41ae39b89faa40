"""Borrowing eligibility.

All rules are evaluated every time so a refusal lists every violated rule,
not just the first one. Overdue loans only produce advisory warnings.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from circulation.config import LendingPolicy, lending_policy
from circulation.db.models import Member, MembershipStatus
from circulation.db.repositories import members_repo
from circulation.services.errors import not_found
from circulation.services.unit_of_work import read_only
from circulation.utils.clock import utcnow
from circulation.utils.money import format_money


@dataclass(frozen=True)
class EligibilityResult:
    member_id: int
    eligible: bool
    available_slots: int
    active_loans: int
    reasons: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "member_id": self.member_id,
            "eligible": self.eligible,
            "available_slots": self.available_slots,
            "active_loans": self.active_loans,
            "reasons": list(self.reasons),
            "warnings": list(self.warnings),
        }


def evaluate(session: Session, member: Member, now: datetime, policy: LendingPolicy) -> EligibilityResult:
    reasons: List[str] = []
    warnings: List[str] = []

    status = member.membership_status
    if status != MembershipStatus.ACTIVE:
        reasons.append(f"Membership status is {status.value}, must be Active.")

    balance = Decimal(str(member.outstanding_balance or 0))
    if balance > 0:
        reasons.append(f"Member has outstanding fines of {format_money(balance)}.")

    active_loans = members_repo.count_open_loans(session, member.id)
    if active_loans >= policy.max_active_loans:
        reasons.append(
            f"Member already has {active_loans} active loans (maximum is {policy.max_active_loans})."
        )

    overdue = members_repo.count_overdue_loans(session, member.id, now)
    if overdue:
        warnings.append(f"Warning: Member has {overdue} overdue loan(s).")

    return EligibilityResult(
        member_id=member.id,
        eligible=not reasons,
        available_slots=max(0, policy.max_active_loans - active_loans),
        active_loans=active_loans,
        reasons=reasons,
        warnings=warnings,
    )


def check_eligibility(
    member_id: int,
    *,
    now: Optional[datetime] = None,
    policy: Optional[LendingPolicy] = None,
) -> EligibilityResult:
    """Read-only eligibility check; raises NotFoundError for unknown members."""
    with read_only() as session:
        member = members_repo.get_member(session, member_id)
        if member is None:
            raise not_found("member", member_id)
        return evaluate(session, member, now or utcnow(), policy or lending_policy())


__all__ = ["EligibilityResult", "evaluate", "check_eligibility"]
