"""Best-effort audit trail of lending state transitions.

Storage is external: records go to a pluggable sink (the default writes one
INFO log line). A failing sink is logged and ignored.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from circulation.utils.clock import utcnow
from circulation.utils.logging import get_logger

LOG = get_logger("circulation.audit")


@dataclass(frozen=True)
class AuditRecord:
    action: str
    entity: str
    entity_id: Optional[int]
    member_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "entity": self.entity,
            "entity_id": self.entity_id,
            "member_id": self.member_id,
            "details": dict(self.details),
            "at": self.at.isoformat(),
        }


Sink = Callable[[AuditRecord], None]


def _log_sink(record: AuditRecord) -> None:
    LOG.info(
        "audit %s %s=%s member_id=%s %s",
        record.action,
        record.entity,
        record.entity_id,
        record.member_id,
        record.details,
    )


_LOCK = threading.Lock()
_SINK: Sink = _log_sink


def set_sink(sink: Optional[Sink]) -> Sink:
    global _SINK
    with _LOCK:
        previous = _SINK
        _SINK = sink or _log_sink
    return previous


def record(entry: AuditRecord) -> bool:
    try:
        with _LOCK:
            sink = _SINK
        sink(entry)
    except Exception:
        LOG.warning("Audit sink failed action=%s %s=%s", entry.action, entry.entity, entry.entity_id, exc_info=True)
        return False
    return True


__all__ = ["AuditRecord", "set_sink", "record"]
