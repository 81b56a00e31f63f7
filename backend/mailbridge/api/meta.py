"""
Widget configuration route.

WHAT: Public settings the widget needs before it can connect a mailbox:
the supported backends and the OAuth client ids it uses to obtain tokens.

WHY: The proxy never runs OAuth itself; the widget does, with these ids.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from mailbridge.core.auth import ProviderCredential
from mailbridge.core.config import Settings, get_settings
from mailbridge.core.deps import get_credential
from mailbridge.mail.models import Provider


router = APIRouter(prefix="/config", tags=["config"])


class WidgetConfigResponse(BaseModel):
    providers: List[Provider]
    google_client_id: Optional[str] = None
    microsoft_client_id: Optional[str] = None
    can_send: bool


@router.get("", response_model=WidgetConfigResponse)
async def get_widget_config(
    credential: ProviderCredential = Depends(get_credential),
    settings: Settings = Depends(get_settings),
):
    """Return the public widget configuration for any valid key."""
    return WidgetConfigResponse(
        providers=list(Provider),
        google_client_id=settings.GOOGLE_OAUTH_CLIENT_ID,
        microsoft_client_id=settings.MICROSOFT_OAUTH_CLIENT_ID,
        can_send=credential.is_admin,
    )
