"""Service exports."""

from .errors import (
    LendingError,
    NotFoundError,
    IneligibleMemberError,
    CopyUnavailableError,
    InvalidStateTransitionError,
    LimitExceededError,
    ValidationError,
    ConcurrentModificationError,
)
from .eligibility_service import check_eligibility, EligibilityResult
from .loans_service import (
    checkout,
    checkout_many,
    checkout_title,
    renew,
    return_loan,
    return_many,
    report_lost,
)
from .reservations_service import (
    reserve,
    cancel as cancel_reservation,
    queue_position,
    list_queue,
    notify_copy_freed,
    restore_copy,
    expire_stale,
)
from .fines_service import (
    assess_overdue_fine,
    assess_overdue_fines,
    create_manual_fine,
    pay_fine,
    waive_fine,
    delete_fine,
    outstanding_balance,
    list_fines,
    reconcile_balance,
)
from . import notifications_service, audit_service

__all__ = [
    "LendingError",
    "NotFoundError",
    "IneligibleMemberError",
    "CopyUnavailableError",
    "InvalidStateTransitionError",
    "LimitExceededError",
    "ValidationError",
    "ConcurrentModificationError",
    "check_eligibility",
    "EligibilityResult",
    "checkout",
    "checkout_many",
    "checkout_title",
    "renew",
    "return_loan",
    "return_many",
    "report_lost",
    "reserve",
    "cancel_reservation",
    "queue_position",
    "list_queue",
    "notify_copy_freed",
    "restore_copy",
    "expire_stale",
    "assess_overdue_fine",
    "assess_overdue_fines",
    "create_manual_fine",
    "pay_fine",
    "waive_fine",
    "delete_fine",
    "outstanding_balance",
    "list_fines",
    "reconcile_balance",
    "notifications_service",
    "audit_service",
]
