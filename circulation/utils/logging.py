"""Package-wide logging.

All engine loggers live under the ``circulation`` namespace. The namespace
root gets the stream handler and the level from ``LENDING_LOG_LEVEL``; module
loggers carry no handlers of their own and propagate to it, so each record
is written once.
"""
from __future__ import annotations

import logging
import threading

from circulation import config as app_config

ROOT_NAME = "circulation"
FORMAT = "[circulation] %(asctime)s %(levelname)s %(name)s %(message)s"

_LOCK = threading.Lock()
_configured = False


def _configure_root() -> logging.Logger:
    global _configured
    root = logging.getLogger(ROOT_NAME)
    if _configured:
        return root
    with _LOCK:
        if _configured:
            return root
        root.setLevel(getattr(logging, app_config.log_level_name(), logging.INFO))
        if not any(getattr(h, "_circulation", False) for h in root.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(FORMAT))
            handler._circulation = True  # type: ignore[attr-defined]
            root.addHandler(handler)
        # keep engine records out of the host application's root handlers
        root.propagate = False
        _configured = True
    return root


def get_logger(name: str = ROOT_NAME) -> logging.Logger:
    """Logger ``name`` inside the ``circulation`` namespace."""
    root = _configure_root()
    if name == ROOT_NAME:
        return root
    if not name.startswith(ROOT_NAME + "."):
        name = f"{ROOT_NAME}.{name}"
    return logging.getLogger(name)


__all__ = ["get_logger", "ROOT_NAME"]
