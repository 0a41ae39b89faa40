"""Scheduler-facing maintenance commands.

Each command runs one sweep and prints its summary as JSON:

    expire-holds     expire lapsed reservation holds, pass copies on
    assess-overdue   charge overdue fines for every late open loan
    notify-due-soon  remind borrowers of loans due within the look-ahead
    notify-overdue   tell borrowers about late loans
    all              every sweep above, in that order

Exit codes: 0 success, 1 one or more items failed, 2 bad usage/interrupt,
99 unexpected error.
"""
from __future__ import annotations

import argparse
import json
import sys
import traceback
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from circulation.db import init_engine_once
from circulation.services import fines_service, loans_service, reservations_service
from circulation.utils.logging import get_logger

LOG = get_logger("circulation.maintenance")

COMMANDS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "expire-holds": reservations_service.expire_stale,
    "assess-overdue": fines_service.assess_overdue_fines,
    "notify-due-soon": loans_service.notify_due_soon,
    "notify-overdue": loans_service.notify_overdue,
}


def _parse_now(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid --now value: {value}") from exc


def parse_args(argv: List[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Run lending maintenance sweeps.")
    ap.add_argument("command", choices=sorted(COMMANDS) + ["all"])
    ap.add_argument("--now", type=_parse_now, help="Override the current time (ISO-8601, naive UTC)")
    return ap.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    init_engine_once()
    names = list(COMMANDS) if args.command == "all" else [args.command]
    results: Dict[str, Any] = {}
    for name in names:
        results[name] = COMMANDS[name](args.now)
        LOG.info("maintenance %s done %s", name, results[name])
    print(json.dumps(results, indent=2, sort_keys=True, default=str))
    failed = sum(int(r.get("failed", 0)) for r in results.values())
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_args(sys.argv[1:] if argv is None else argv)
    except SystemExit as se:
        return int(se.code or 0) if isinstance(se.code, int) else 2
    try:
        return run(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 2
    except Exception as exc:
        print(f"FATAL: Unhandled exception: {exc}", file=sys.stderr)
        traceback.print_exc()
        return 99


__all__ = ["COMMANDS", "parse_args", "run", "main"]
