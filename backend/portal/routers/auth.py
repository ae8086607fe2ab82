"""Auth routes owned by this service.

Sign-in itself is handled by the hosted auth provider. The only route
here is the "continue as guest" affordance, which mints a guest token
carrying an explicit guest_override elevation.
"""

from fastapi import APIRouter, HTTPException, status

from portal.auth.jwt import create_guest_token
from portal.config import settings
from portal.schemas.permissions import GuestTokenResponse

router = APIRouter()


@router.post("/guest", response_model=GuestTokenResponse, status_code=status.HTTP_201_CREATED)
async def continue_as_guest():
    if not settings.allow_guest_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Guest access is disabled",
        )
    token, guest_id = create_guest_token()
    return GuestTokenResponse(access_token=token, guest_id=guest_id)
