"""Typed lending failures.

Every business-rule violation raised by the services derives from
``LendingError`` and carries a machine-readable ``code``, a human-readable
``message`` and, where several rules failed at once, the full ``reasons``
list.
"""
from __future__ import annotations

from typing import Iterable, List, Optional


class LendingError(RuntimeError):
    """Base error for lending rule violations."""

    code = "lending_error"

    def __init__(self, message: str, *, reasons: Optional[Iterable[str]] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reasons: List[str] = list(reasons) if reasons else [message]
        if code:
            self.code = code

    def as_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "reasons": list(self.reasons)}


class NotFoundError(LendingError):
    """Member, title, copy, loan, reservation or fine does not exist."""

    code = "not_found"


class IneligibleMemberError(LendingError):
    """Member fails one or more eligibility rules; ``reasons`` lists them all."""

    code = "ineligible_member"


class CopyUnavailableError(LendingError):
    """Copy is not in the expected status or another writer claimed it first."""

    code = "copy_unavailable"


class InvalidStateTransitionError(LendingError):
    code = "invalid_state_transition"


class LimitExceededError(LendingError):
    code = "limit_exceeded"


class ValidationError(LendingError, ValueError):
    code = "validation_error"


class ConcurrentModificationError(LendingError):
    """A member, loan, reservation or fine row changed under a concurrent writer."""

    code = "concurrent_modification"


def not_found(kind: str, ident) -> NotFoundError:
    return NotFoundError(f"{kind.capitalize()} {ident} not found.", code=f"{kind}_not_found")


__all__ = [
    "LendingError",
    "NotFoundError",
    "IneligibleMemberError",
    "CopyUnavailableError",
    "InvalidStateTransitionError",
    "LimitExceededError",
    "ValidationError",
    "ConcurrentModificationError",
    "not_found",
]
