"""
FastAPI dependencies for authentication and backend access.

WHY: Dependencies provide reusable authentication and authorization logic
that can be injected into route handlers, so every endpoint passes the same
gate in the same order:
1. proxy API key -> capability (401 if neither secret matches)
2. Origin against the allow-list (403)
3. Admin capability for mutating endpoints (403)
4. bearer token for endpoints that call a backend (401, inside the
   provider client)
"""

from typing import Optional

import httpx
from fastapi import Depends, Header, Query

from mailbridge.core.auth import (
    ProviderCredential,
    extract_bearer_token,
    is_origin_allowed,
    require_admin,
    resolve_capability,
)
from mailbridge.core.config import Settings, get_settings
from mailbridge.core.exceptions import AuthorizationError
from mailbridge.mail.models import Provider
from mailbridge.mail.providers import ProviderClient, create_provider
from mailbridge.services.pdf_source import PdfSource
from mailbridge.services.quote_orchestrator import QuoteOrchestrator
from mailbridge.services.workflow_client import WorkflowClient


async def get_credential(
    x_api_key: Optional[str] = Header(None, alias="x-api-key"),
    authorization: Optional[str] = Header(None),
    x_google_token: Optional[str] = Header(None, alias="x-google-token"),
    origin: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> ProviderCredential:
    """
    Authenticate the request at proxy level.

    Usage:
        @router.get("/labels")
        async def list_labels(credential: ProviderCredential = Depends(get_credential)):
            ...

    Returns:
        ProviderCredential with capability and (optional) bearer token

    Raises:
        AuthenticationError: If the API key is missing or matches neither secret
        AuthorizationError: If the Origin is not allowed
    """
    capability = resolve_capability(x_api_key, settings)

    if not is_origin_allowed(origin, settings):
        raise AuthorizationError(message="Origin not allowed", origin=origin)

    return ProviderCredential(
        capability=capability,
        bearer_token=extract_bearer_token(authorization, fallback=x_google_token),
    )


async def require_admin_credential(
    credential: ProviderCredential = Depends(get_credential),
) -> ProviderCredential:
    """
    Require the Admin capability (sends, label changes).

    Raises:
        AuthorizationError: If the key is the read-only widget key
    """
    return require_admin(credential)


def get_http_transport() -> Optional[httpx.AsyncBaseTransport]:
    """
    Transport for outbound calls.

    None means httpx's default network transport. Tests override this
    dependency with an httpx.MockTransport.
    """
    return None


def build_provider(
    provider: Provider,
    credential: ProviderCredential,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport],
    company: Optional[str] = None,
) -> ProviderClient:
    return create_provider(provider, credential, settings, transport, company=company)


async def get_provider_client(
    provider: Provider = Query(..., description="Mail backend"),
    company: Optional[str] = Query(None, description="Company name (Postmark sender)"),
    credential: ProviderCredential = Depends(get_credential),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
) -> ProviderClient:
    """
    Provider client for endpoints that take the backend as a query parameter.

    Raises:
        AuthenticationError: If the backend needs a bearer token and none was sent
    """
    return build_provider(provider, credential, settings, transport, company)


def get_workflow_client(
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
) -> WorkflowClient:
    return WorkflowClient(settings, transport)


def get_pdf_source(
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
) -> PdfSource:
    return PdfSource(timeout=settings.UPSTREAM_TIMEOUT_SECONDS, transport=transport)


def build_orchestrator(
    provider: ProviderClient,
    workflow: WorkflowClient,
    pdf_source: PdfSource,
    settings: Settings,
) -> QuoteOrchestrator:
    return QuoteOrchestrator(
        provider=provider,
        workflow=workflow,
        pdf_source=pdf_source,
        placeholder=settings.QUOTE_COMMENT_PLACEHOLDER,
    )
