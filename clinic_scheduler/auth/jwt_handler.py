"""Bearer tokens identifying clinic users by email."""

from datetime import datetime, timedelta, timezone

import jwt

from clinic_scheduler.core import config

REQUIRED_CLAIMS = ["exp", "sub"]


def create_access_token(subject: str, role: str | None = None, expires_minutes: int | None = None) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = {
        "sub": subject.strip().lower(),
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=expires_minutes or config.JWT_EXPIRES_MINUTES),
    }
    if role:
        # Informational only; authorization always uses the stored user role.
        payload["role"] = role
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )
