"""FastAPI dependencies for caller identity.

Dependencies:
  get_caller_context    → CallerContext for the request (never raises)
  require_authenticated → 401 unless signed in or continuing as guest

Mutation routes take the plain `get_caller_context` so that an
unauthenticated or non-admin request still reaches the Validation Gate
and leaves a trace entry; the gate is the authorization boundary.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.elevation import CallerContext
from portal.auth.jwt import decode_token
from portal.config import settings
from portal.database import get_db
from portal.services.permissions_store import SqlRoleResolver

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


async def get_caller_context(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CallerContext:
    """Resolve the bearer token into a CallerContext.

    Missing, expired or malformed tokens yield an anonymous context. The
    admin flag comes from a server-side role lookup, never from a claim.
    """
    if not token:
        return CallerContext.anonymous()

    payload = decode_token(token)
    subject: str | None = payload.get("sub")
    token_type = payload.get("type")
    if not subject:
        return CallerContext.anonymous()

    if token_type == "guest":
        if not settings.allow_guest_admin:
            return CallerContext.anonymous()
        return CallerContext.for_guest(subject)

    if token_type != "access":
        return CallerContext.anonymous()

    is_admin = await SqlRoleResolver(db).is_admin(subject)
    return CallerContext.for_user(subject, is_admin=is_admin)


async def require_authenticated(
    caller: CallerContext = Depends(get_caller_context),
) -> CallerContext:
    if not caller.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Please sign in.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return caller
