"""JWT token creation and decoding.

Access tokens are minted by the hosted auth provider; this service only
needs to verify them. `create_access_token` exists for the CLI and tests.

Token claims:
  - sub:   user ID (or guest session ID)
  - type:  "access" | "guest"
  - exp:   expiry timestamp
"""

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from portal.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    user_id: str,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": user_id,
        "type": "access",
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def create_guest_token(expires_delta: timedelta | None = None) -> tuple[str, str]:
    """Mint a guest token. Returns (token, guest_id)."""
    guest_id = f"guest-{uuid.uuid4()}"
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.guest_token_expire_minutes)
    )
    payload = {
        "sub": guest_id,
        "type": "guest",
        "exp": expire,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM), guest_id


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
