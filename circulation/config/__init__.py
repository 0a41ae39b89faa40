"""Application configuration accessors.

Centralizes environment variable parsing & defaults so service code never
reads os.environ directly. Lending rules are exposed as an immutable
LendingPolicy built from the environment on each call.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache

APP_NAME = "circulation"
APP_VERSION = "0.1.0"
APP_DESCRIPTION = "Lending lifecycle engine"

DEFAULT_DB_PATH = "lending.db"
DEFAULT_LOG_LEVEL = "INFO"
_TRUE = {"1", "true", "yes", "on"}

# The logging helper depends on this module, so warnings here go through the
# stdlib logger directly.
_LOG = logging.getLogger("circulation.config")


def _raw_env(name: str, default: str | None = None) -> str | None:
    val = os.getenv(name)
    return val if val is not None else default


def env_bool(name: str, default: bool = False) -> bool:
    raw = _raw_env(name, str(default).lower())
    if raw is None:
        return default
    return raw.lower() in _TRUE


def env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _raw_env(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        _LOG.warning("Ignoring non-integer %s=%r (using %s)", name, raw, default)
        return default
    if value < minimum:
        _LOG.warning("Ignoring %s=%s below minimum %s (using %s)", name, value, minimum, default)
        return default
    return value


def env_decimal(name: str, default: str) -> Decimal:
    raw = _raw_env(name)
    if raw is None or not raw.strip():
        return Decimal(default)
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        _LOG.warning("Ignoring non-decimal %s=%r (using %s)", name, raw, default)
        return Decimal(default)
    if value < 0 or not value.is_finite():
        _LOG.warning("Ignoring negative %s=%s (using %s)", name, value, default)
        return Decimal(default)
    return value


def get_db_path() -> str:
    raw = _raw_env("LENDING_DB_PATH", DEFAULT_DB_PATH)
    if raw and raw != ":memory:" and not os.path.isabs(raw):
        data_dir = os.getenv("LENDING_DATA_DIR")
        if data_dir:
            return os.path.join(data_dir, raw)
    return raw  # type: ignore[return-value]


def log_level_name() -> str:
    return _raw_env("LENDING_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()  # type: ignore[union-attr]


@dataclass(frozen=True)
class LendingPolicy:
    """Tunable lending rules. Defaults mirror the circulation desk's rules."""

    loan_period_days: int = 14
    max_loan_days: int = 30
    daily_fine_rate: Decimal = Decimal("0.50")
    max_active_loans: int = 5
    max_active_reservations: int = 3
    max_renewals: int = 2
    hold_hours: int = 72
    due_soon_days: int = 2
    lost_item_fee: Decimal = Decimal("0.00")
    damaged_item_fee: Decimal = Decimal("0.00")


def lending_policy() -> LendingPolicy:
    return LendingPolicy(
        loan_period_days=env_int("LENDING_LOAN_PERIOD_DAYS", 14, minimum=1),
        max_loan_days=env_int("LENDING_MAX_LOAN_DAYS", 30, minimum=1),
        daily_fine_rate=env_decimal("LENDING_DAILY_FINE_RATE", "0.50"),
        max_active_loans=env_int("LENDING_MAX_ACTIVE_LOANS", 5, minimum=1),
        max_active_reservations=env_int("LENDING_MAX_ACTIVE_RESERVATIONS", 3, minimum=1),
        max_renewals=env_int("LENDING_MAX_RENEWALS", 2),
        hold_hours=env_int("LENDING_HOLD_HOURS", 72, minimum=1),
        due_soon_days=env_int("LENDING_DUE_SOON_DAYS", 2),
        lost_item_fee=env_decimal("LENDING_LOST_ITEM_FEE", "0.00"),
        damaged_item_fee=env_decimal("LENDING_DAMAGED_ITEM_FEE", "0.00"),
    )


@lru_cache(maxsize=1)
def metadata() -> dict:
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "description": APP_DESCRIPTION,
    }


def summarize_runtime_config() -> dict:
    policy = lending_policy()
    return {
        "db_path": get_db_path(),
        "log_level": log_level_name(),
        "loan_period_days": policy.loan_period_days,
        "daily_fine_rate": str(policy.daily_fine_rate),
        "hold_hours": policy.hold_hours,
    }


__all__ = [
    "APP_NAME",
    "APP_VERSION",
    "APP_DESCRIPTION",
    "LendingPolicy",
    "lending_policy",
    "get_db_path",
    "log_level_name",
    "metadata",
    "summarize_runtime_config",
    "env_bool",
    "env_int",
    "env_decimal",
]
