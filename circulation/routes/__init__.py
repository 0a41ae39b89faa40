"""Flask blueprints."""
from .health import register_health
from .lending import register_lending

__all__ = ["register_health", "register_lending"]
