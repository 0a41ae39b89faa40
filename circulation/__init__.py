"""Lending lifecycle engine package root.

Layers:
- config: environment accessors and the lending policy
- db: engine/session management, ORM models, repository helpers
- services: eligibility, inventory, loans, reservations, fines
- routes: Flask blueprints exposing the services as JSON
"""

__all__ = [
]
