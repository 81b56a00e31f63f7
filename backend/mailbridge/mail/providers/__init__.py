"""
Provider selection.

One client per request, picked from the validated provider value. There is
no default entry: the registry must cover every Provider member, checked at
import, so a new backend cannot fall through to some other client.
"""

from typing import Dict, Optional, Type

import httpx

from mailbridge.core.auth import ProviderCredential
from mailbridge.core.config import Settings
from mailbridge.mail.models import Provider
from mailbridge.mail.providers.base import MailboxProvider, ProviderClient
from mailbridge.mail.providers.gmail import GmailProvider
from mailbridge.mail.providers.outlook import OutlookProvider
from mailbridge.mail.providers.postmark import PostmarkProvider


PROVIDER_CLIENTS: Dict[Provider, Type[ProviderClient]] = {
    Provider.GMAIL: GmailProvider,
    Provider.OUTLOOK: OutlookProvider,
    Provider.POSTMARK: PostmarkProvider,
}

_missing = set(Provider) - set(PROVIDER_CLIENTS)
if _missing:
    raise RuntimeError(f"No client registered for: {sorted(p.value for p in _missing)}")


def create_provider(
    provider: Provider,
    credential: ProviderCredential,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    company: Optional[str] = None,
) -> ProviderClient:
    """
    Build the client for one request.

    Raises:
        AuthenticationError: If the backend needs a token and none was given
    """
    client_class = PROVIDER_CLIENTS[provider]
    return client_class(credential, settings, transport, company=company)


__all__ = [
    "GmailProvider",
    "MailboxProvider",
    "OutlookProvider",
    "PROVIDER_CLIENTS",
    "PostmarkProvider",
    "ProviderClient",
    "create_provider",
]
