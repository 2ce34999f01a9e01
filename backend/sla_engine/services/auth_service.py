from datetime import datetime, timedelta, timezone

import jwt

from sla_engine.config import settings


def create_access_token(subject: str, role: str) -> str:
    """Create a JWT access token with exp, sub and role claims.

    Production tokens come from the helpdesk's login flow; this mints the same
    claims for local tooling (see seed.py) and tests.
    """
    payload = {
        "sub": subject,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes),
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.InvalidTokenError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
