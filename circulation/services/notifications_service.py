"""Member notifications produced by lending transitions.

The engine only decides *what* to say; delivery belongs to whatever
dispatcher is installed with ``set_dispatcher`` (the default one logs).
Messages are rendered from inline Jinja2 templates. Dispatch is
fire-and-forget: failures are logged and never reach the caller.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from jinja2 import BaseLoader, Environment, TemplateError

from circulation.utils.logging import get_logger
from circulation.utils.money import register_money_filters

LOG = get_logger("circulation.notifications")

LOAN_DUE_SOON = "loan_due_soon"
LOAN_OVERDUE = "loan_overdue"
RESERVATION_READY = "reservation_ready"
RESERVATION_EXPIRED = "reservation_expired"
FINE_ASSESSED = "fine_assessed"

_JINJA_ENV = Environment(loader=BaseLoader(), autoescape=False, trim_blocks=True, lstrip_blocks=True)
register_money_filters(_JINJA_ENV)

_TEMPLATES: Dict[str, Dict[str, str]] = {
    LOAN_DUE_SOON: {
        "subject": "Loan due soon: {{ title or 'your item' }}",
        "body": "Your loan #{{ loan_id }} is due on {{ due_date }}. Renew or return it to avoid fines.",
    },
    LOAN_OVERDUE: {
        "subject": "Overdue: {{ title or 'your item' }}",
        "body": (
            "Your loan #{{ loan_id }} was due on {{ due_date }} and is {{ days_overdue }} day(s) overdue."
            "{% if accrued %} Fines accrued so far: {{ accrued | format_money }}.{% endif %}"
        ),
    },
    RESERVATION_READY: {
        "subject": "Reservation ready: {{ title or 'your item' }}",
        "body": "A copy is being held for you until {{ hold_expires_at }}. Reservation #{{ reservation_id }}.",
    },
    RESERVATION_EXPIRED: {
        "subject": "Reservation expired: {{ title or 'your item' }}",
        "body": "Your hold for reservation #{{ reservation_id }} lapsed on {{ hold_expires_at }} and was released.",
    },
    FINE_ASSESSED: {
        "subject": "New {{ fine_type | lower }} fine",
        "body": "A fine of {{ amount | format_money }} was added to your account.{% if description %} {{ description }}{% endif %}",
    },
}

EVENT_KINDS = tuple(_TEMPLATES)


@dataclass(frozen=True)
class Notification:
    member_id: int
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)
    subject: str = ""
    body: str = ""


Dispatcher = Callable[[Notification], None]


def _log_dispatcher(notification: Notification) -> None:
    LOG.info(
        "notify member_id=%s kind=%s subject=%s",
        notification.member_id,
        notification.kind,
        notification.subject,
    )


_LOCK = threading.Lock()
_DISPATCHER: Dispatcher = _log_dispatcher


def set_dispatcher(dispatcher: Optional[Dispatcher]) -> Dispatcher:
    """Install a dispatcher (``None`` restores the logging default); returns the previous one."""
    global _DISPATCHER
    with _LOCK:
        previous = _DISPATCHER
        _DISPATCHER = dispatcher or _log_dispatcher
    return previous


def build_notification(member_id: int, kind: str, payload: Optional[Dict[str, Any]] = None) -> Notification:
    if kind not in _TEMPLATES:
        raise ValueError(f"unknown_notification_kind:{kind}")
    data = dict(payload or {})
    template = _TEMPLATES[kind]
    try:
        subject = _JINJA_ENV.from_string(template["subject"]).render(**data).strip()
        body = _JINJA_ENV.from_string(template["body"]).render(**data).strip()
    except TemplateError:
        LOG.warning("Failed rendering notification kind=%s", kind, exc_info=True)
        subject, body = kind, ""
    return Notification(member_id=member_id, kind=kind, payload=data, subject=subject, body=body)


def notify(member_id: int, kind: str, payload: Optional[Dict[str, Any]] = None) -> bool:
    """Render and hand a notification to the dispatcher. Never raises."""
    try:
        notification = build_notification(member_id, kind, payload)
        with _LOCK:
            dispatcher = _DISPATCHER
        dispatcher(notification)
    except Exception:
        LOG.warning("Notification dispatch failed member_id=%s kind=%s", member_id, kind, exc_info=True)
        return False
    return True


__all__ = [
    "LOAN_DUE_SOON",
    "LOAN_OVERDUE",
    "RESERVATION_READY",
    "RESERVATION_EXPIRED",
    "FINE_ASSESSED",
    "EVENT_KINDS",
    "Notification",
    "set_dispatcher",
    "build_notification",
    "notify",
]
