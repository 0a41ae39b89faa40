"""Repository helpers. Every function takes the caller's session so several
repositories can take part in one transaction."""
from . import members_repo, copies_repo, loans_repo, reservations_repo, fines_repo

__all__ = [
    "members_repo",
    "copies_repo",
    "loans_repo",
    "reservations_repo",
    "fines_repo",
]
