"""Utility helpers."""
from .clock import utcnow
from .money import to_money, format_money, register_money_filters

__all__ = [
    "utcnow",
    "to_money",
    "format_money",
    "register_money_filters",
]
