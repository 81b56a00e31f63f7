"""
Labels API Routes.

WHAT: Label/folder listing and bulk label changes.

HOW: Gmail labels and Outlook folders are both returned as labels with
stable ids; batch-modify applies one add/remove set to many messages and
is retried once on a transient backend failure.
"""

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends

from mailbridge.core.auth import ProviderCredential
from mailbridge.core.config import Settings, get_settings
from mailbridge.core.deps import (
    build_provider,
    get_http_transport,
    get_provider_client,
    require_admin_credential,
)
from mailbridge.mail.labels import dedupe_ids
from mailbridge.mail.providers import ProviderClient
from mailbridge.schemas.mail import (
    BatchModifyRequest,
    BatchModifyResponse,
    LabelListResponse,
    LabelResponse,
)

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/labels", tags=["labels"])


@router.get("", response_model=LabelListResponse)
async def list_labels(
    client: ProviderClient = Depends(get_provider_client),
):
    """
    List labels (Gmail) or folders (Outlook).
    """
    labels = await client.list_labels()
    return LabelListResponse(
        items=[LabelResponse(id=label.id, name=label.name, type=label.type) for label in labels]
    )


@router.post("/batch-modify", response_model=BatchModifyResponse)
async def batch_modify(
    request: BatchModifyRequest,
    credential: ProviderCredential = Depends(require_admin_credential),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
):
    """
    Add and remove labels across a set of messages.

    WHAT: Admin only. Duplicate ids are collapsed before the call.
    """
    client = build_provider(request.provider, credential, settings, transport)
    message_ids = dedupe_ids(request.ids)

    await client.modify_labels(
        message_ids,
        add_ids=dedupe_ids(request.add_label_ids),
        remove_ids=dedupe_ids(request.remove_label_ids),
    )
    logger.info(f"Modified labels of {len(message_ids)} message(s) via {request.provider.value}")

    return BatchModifyResponse(modified=len(message_ids))
