"""Lightweight health probe endpoint.

Exposes /healthz returning a fast 200 when the lending database answers.
"""
from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from circulation import config as app_config
from circulation.db.engine import app_session
from circulation.utils.logging import get_logger

LOG = get_logger("circulation.health")

bp = Blueprint("health", __name__)


@bp.route("/healthz", methods=["GET"])
def healthz():
    db_ok = True
    try:
        with app_session() as s:
            s.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db_ok = False
        LOG.debug("Health DB probe failed: %s", exc)
    status_code = 200 if db_ok else 500
    payload = {"status": "ok" if db_ok else "degraded", "db": db_ok}
    payload.update(app_config.metadata())
    return jsonify(payload), status_code


def register_health(app: Any) -> None:
    if getattr(app, "_health_bp", None):  # idempotent
        return
    app.register_blueprint(bp)
    setattr(app, "_health_bp", bp)
    LOG.debug("health blueprint registered")


__all__ = ["bp", "register_health"]
