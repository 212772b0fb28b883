"""JWT helpers for identifying plan owners."""

from __future__ import annotations

from typing import Any, Dict

from flask_jwt_extended import create_access_token


def generate_access_token(user) -> str:
    """Create a JWT access token embedding the user's ID and plan tier."""

    claims: Dict[str, Any] = {"tier": user.tier}
    return create_access_token(identity=str(user.id), additional_claims=claims)
