"""
Profile API Routes.

WHAT: Display identity of the connected account.
"""

from fastapi import APIRouter, Depends

from mailbridge.core.deps import get_provider_client
from mailbridge.mail.providers import ProviderClient
from mailbridge.schemas.mail import ProfileResponse


router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("", response_model=ProfileResponse)
async def get_profile(
    client: ProviderClient = Depends(get_provider_client),
):
    """
    Get the account's email address and display name.

    WHY: For Postmark there is no account; the sender address derived from
    the company name is returned instead.
    """
    profile = await client.get_profile()
    return ProfileResponse(email=profile.email, name=profile.name, avatar=profile.avatar)
