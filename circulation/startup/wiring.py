"""Application initialization / wiring.

Orchestrates: DB init, blueprint registration, Jinja filter registration.
"""
from __future__ import annotations

from typing import Any, Optional

from flask import Flask

from circulation.config import summarize_runtime_config
from circulation.db import init_engine_once
from circulation.routes import register_health, register_lending
from circulation.utils.logging import get_logger
from circulation.utils.money import register_money_filters

LOG = get_logger("circulation.startup")


def init_app(app: Any) -> None:
    LOG.debug("init_app starting")
    init_engine_once()
    LOG.debug("DB engine initialized")
    register_health(app)
    register_lending(app)
    register_money_filters(app)
    LOG.info("App startup wiring complete %s", summarize_runtime_config())


def create_app(config: Optional[dict] = None) -> Flask:
    app = Flask("circulation")
    if config:
        app.config.update(config)
    init_app(app)
    return app


__all__ = ["init_app", "create_app"]
