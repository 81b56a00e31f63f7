"""
Label and folder normalization.

WHAT: Maps Gmail labels and Outlook folders into the shared Label model and
turns archive / trash / move requests into a concrete LabelPlan.

WHY: Gmail treats a message as carrying any number of labels; Outlook keeps
each message in exactly one folder. The widget only knows "labels", so the
difference is encoded once, here, as pure functions over the label list.

HOW: LabelMapper never calls a backend. The provider fetches the label list,
asks for a plan, then applies it. A plan that cannot be built (no Archive
folder, unknown target) raises before anything is changed.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from mailbridge.core.exceptions import ResourceNotFoundError, ValidationError
from mailbridge.mail.models import Label, LabelType, Provider


# Gmail system label ids
INBOX = "INBOX"
TRASH = "TRASH"
SPAM = "SPAM"
UNREAD = "UNREAD"

GMAIL_TERMINAL_LABELS = frozenset({TRASH, SPAM})

# Outlook well-known folder display names (lower case)
OUTLOOK_SYSTEM_FOLDERS = frozenset(
    {
        "inbox",
        "drafts",
        "sent items",
        "deleted items",
        "junk email",
        "archive",
        "outbox",
        "conversation history",
    }
)

ARCHIVE_PATTERN = re.compile(r"^archive$", re.IGNORECASE)
TRASH_PATTERN = re.compile(r"deleted|trash", re.IGNORECASE)
OUTLOOK_TERMINAL_PATTERN = re.compile(r"deleted|trash|junk|spam", re.IGNORECASE)


@dataclass(frozen=True)
class LabelPlan:
    """
    Label changes for one message.

    Gmail applies add_ids / remove_ids directly. Outlook reads the single
    entry of add_ids as the destination folder; remove_ids is implied by
    the move and left empty.
    """

    add_ids: Tuple[str, ...] = ()
    remove_ids: Tuple[str, ...] = ()

    @property
    def destination_id(self) -> Optional[str]:
        return self.add_ids[0] if len(self.add_ids) == 1 else None


class LabelMapper:
    """
    Per-backend label semantics.

    Only Gmail and Outlook have labels; Postmark never reaches this class.
    """

    def __init__(self, provider: Provider):
        if provider not in (Provider.GMAIL, Provider.OUTLOOK):
            raise ValueError(f"{provider.value} has no labels")
        self.provider = provider

    # =========================================================================
    # Normalization
    # =========================================================================

    def from_gmail(self, data: Dict[str, Any]) -> Label:
        label_type = LabelType.SYSTEM if data.get("type") == "system" else LabelType.USER
        return Label(id=data["id"], name=data.get("name") or data["id"], type=label_type)

    def from_graph_folder(self, data: Dict[str, Any]) -> Label:
        name = data.get("displayName") or data["id"]
        label_type = LabelType.SYSTEM if name.lower() in OUTLOOK_SYSTEM_FOLDERS else LabelType.USER
        return Label(id=data["id"], name=name, type=label_type)

    def normalize(self, raw_labels: Iterable[Dict[str, Any]]) -> List[Label]:
        """
        Convert backend labels, dropping repeated ids (first occurrence wins).
        """
        convert = self.from_gmail if self.provider == Provider.GMAIL else self.from_graph_folder
        labels: List[Label] = []
        seen = set()
        for data in raw_labels:
            if not data.get("id") or data["id"] in seen:
                continue
            seen.add(data["id"])
            labels.append(convert(data))
        return labels

    # =========================================================================
    # Plans
    # =========================================================================

    def archive_plan(self, labels: List[Label]) -> LabelPlan:
        """
        Archive one message.

        Gmail: drop INBOX. Outlook: move into the folder named "archive"
        (any case).

        Raises:
            ResourceNotFoundError: If Outlook has no archive folder
        """
        if self.provider == Provider.GMAIL:
            return LabelPlan(remove_ids=(INBOX,))

        folder = _find_folder(labels, ARCHIVE_PATTERN)
        if folder is None:
            raise ResourceNotFoundError(
                message="No Archive folder found for this account",
                operation="archive",
            )
        return LabelPlan(add_ids=(folder.id,))

    def trash_plan(self, labels: List[Label]) -> LabelPlan:
        """
        Delete one message.

        Gmail: add TRASH. Outlook: move into the first folder whose name
        contains "deleted" or "trash".

        Raises:
            ResourceNotFoundError: If Outlook has no deleted-items folder
        """
        if self.provider == Provider.GMAIL:
            return LabelPlan(add_ids=(TRASH,))

        folder = _find_folder(labels, TRASH_PATTERN)
        if folder is None:
            raise ResourceNotFoundError(
                message="No Deleted Items folder found for this account",
                operation="trash",
            )
        return LabelPlan(add_ids=(folder.id,))

    def move_plan(
        self,
        labels: List[Label],
        target_id: str,
        current_label: Optional[str] = None,
    ) -> LabelPlan:
        """
        Move one message to `target_id`.

        The message leaves `current_label` (the label it was being viewed
        under) unless that label is a terminal state such as trash or spam,
        or is the target itself.

        Raises:
            ValidationError: If no target is given
            ResourceNotFoundError: If the target is not one of the account's labels
        """
        if not target_id:
            raise ValidationError(
                message="A target label is required",
                field="label_id",
                reason="empty target",
            )
        if not any(label.id == target_id for label in labels):
            raise ResourceNotFoundError(
                message="Target label not found",
                label_id=target_id,
            )

        if self.provider == Provider.OUTLOOK:
            return LabelPlan(add_ids=(target_id,))

        remove: Tuple[str, ...] = ()
        if current_label and current_label != target_id and not self.is_terminal(current_label, labels):
            remove = (current_label,)
        return LabelPlan(add_ids=(target_id,), remove_ids=remove)

    def is_terminal(self, label_id: str, labels: List[Label]) -> bool:
        """Whether a label is a trash/spam end state."""
        if self.provider == Provider.GMAIL:
            return label_id in GMAIL_TERMINAL_LABELS
        label = next((l for l in labels if l.id == label_id), None)
        return bool(label and OUTLOOK_TERMINAL_PATTERN.search(label.name))


def _find_folder(labels: List[Label], pattern: "re.Pattern[str]") -> Optional[Label]:
    for label in labels:
        if pattern.search(label.name):
            return label
    return None


def dedupe_ids(ids: Iterable[str]) -> List[str]:
    """Drop empty and repeated ids, keeping order."""
    seen = set()
    result = []
    for value in ids:
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result
