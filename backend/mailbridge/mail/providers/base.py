"""
Provider client interface.

WHAT: The operations every mail backend exposes to the API layer and to
the quote workflow.

WHY: Handlers and the orchestrator work against this interface only, so
they never branch on the backend. Each request builds its own client, with
its own credential, and drops it with the response.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import httpx

from mailbridge.core.auth import ProviderCredential
from mailbridge.core.config import Settings
from mailbridge.core.exceptions import CapabilityMismatchError
from mailbridge.mail.composer import MimeComposer
from mailbridge.mail.labels import LabelMapper, LabelPlan
from mailbridge.mail.models import (
    AttachmentContent,
    ComposedMessage,
    Label,
    Message,
    MessagePage,
    Profile,
    Provider,
    Thread,
)
from mailbridge.mail.parser import MimeParser


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class ProviderClient(ABC):
    """
    Abstract base class for mail backends.

    Every method is abstract; a backend that lacks an operation implements
    it by raising CapabilityMismatchError, never by returning empty data.
    """

    provider: Provider

    def __init__(
        self,
        credential: ProviderCredential,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        company: Optional[str] = None,
    ):
        self.credential = credential
        self.company = (company or "").strip()
        self.settings = settings
        self.transport = transport
        self.composer = MimeComposer()
        self.parser = MimeParser()

    # =========================================================================
    # Reading
    # =========================================================================

    @abstractmethod
    async def list_messages(
        self,
        label_id: Optional[str] = None,
        query: Optional[str] = None,
        max_results: int = DEFAULT_PAGE_SIZE,
        page_token: Optional[str] = None,
    ) -> MessagePage:
        """
        List messages, newest first.

        Args:
            label_id: Only messages carrying this label / in this folder
            query: Free-text search, translated to the backend on a
                best-effort basis
            max_results: Page size
            page_token: Opaque token from a previous page

        Returns:
            MessagePage; body fields are not populated
        """
        pass

    @abstractmethod
    async def get_message(self, message_id: str) -> Message:
        """Fetch one message with its parsed body and attachment metadata."""
        pass

    @abstractmethod
    async def get_thread(self, thread_id: str) -> Thread:
        """Fetch every message of a conversation, oldest first."""
        pass

    @abstractmethod
    async def get_attachment(self, message_id: str, attachment_id: str) -> AttachmentContent:
        pass

    @abstractmethod
    async def list_labels(self) -> List[Label]:
        """Labels or folders of the account, without duplicate ids."""
        pass

    @abstractmethod
    async def get_profile(self) -> Profile:
        pass

    # =========================================================================
    # Writing
    # =========================================================================

    @abstractmethod
    async def modify_labels(
        self,
        message_ids: List[str],
        add_ids: List[str],
        remove_ids: List[str],
    ) -> None:
        """
        Apply one label change to a set of messages.

        Retried once on a transient failure, then surfaced.
        """
        pass

    @abstractmethod
    async def send_message(self, composed: ComposedMessage) -> str:
        """
        Send a composed message. Issued exactly once; never retried.

        Returns:
            The backend's id for the sent message
        """
        pass

    @abstractmethod
    async def archive(self, message_id: str) -> LabelPlan:
        pass

    @abstractmethod
    async def trash(self, message_id: str) -> LabelPlan:
        pass

    @abstractmethod
    async def move(
        self,
        message_id: str,
        target_id: str,
        current_label: Optional[str] = None,
    ) -> LabelPlan:
        pass


class MailboxProvider(ProviderClient):
    """
    Shared behaviour of backends that hold a mailbox (Gmail, Outlook).

    Archive, trash and move are planned by LabelMapper from the current
    label list and then applied with apply_plan(). Planning failures raise
    before any backend state changes.
    """

    def __init__(
        self,
        credential: ProviderCredential,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        company: Optional[str] = None,
    ):
        super().__init__(credential, settings, transport, company)
        self.labels = LabelMapper(self.provider)

    @abstractmethod
    async def apply_plan(self, message_id: str, plan: LabelPlan) -> None:
        pass

    async def archive(self, message_id: str) -> LabelPlan:
        plan = self.labels.archive_plan(await self.list_labels())
        await self.apply_plan(message_id, plan)
        return plan

    async def trash(self, message_id: str) -> LabelPlan:
        plan = self.labels.trash_plan(await self.list_labels())
        await self.apply_plan(message_id, plan)
        return plan

    async def move(
        self,
        message_id: str,
        target_id: str,
        current_label: Optional[str] = None,
    ) -> LabelPlan:
        plan = self.labels.move_plan(await self.list_labels(), target_id, current_label)
        await self.apply_plan(message_id, plan)
        return plan


def unsupported(provider: Provider, operation: str) -> CapabilityMismatchError:
    return CapabilityMismatchError(
        message=f"{provider.value} does not support {operation}",
        provider=provider.value,
        operation=operation,
    )


def clamp_page_size(max_results: Optional[int]) -> int:
    if not max_results or max_results < 1:
        return DEFAULT_PAGE_SIZE
    return min(max_results, MAX_PAGE_SIZE)
