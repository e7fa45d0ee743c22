"""Bearer token handling.

Identity is issued by the external auth service. We share its signing key and
only decode tokens here; create_access_token exists for tooling and tests.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from courtslot.core.config import settings


def create_access_token(subject: str, role: str, extra: dict | None = None) -> str:
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": subject, "role": role, "exp": expire, "type": "access"}
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Raises JWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload
