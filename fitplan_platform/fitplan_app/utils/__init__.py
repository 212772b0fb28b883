"""Utility helpers (JWT identity, session retry)."""

from .db_retry import commit_with_retry
from .security import generate_access_token

__all__ = ["commit_with_retry", "generate_access_token"]
