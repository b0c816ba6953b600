"""
Idempotent Gmail label primitives.

Gmail exposes labels over IMAP through the X-GM-LABELS extension, which only
supports adding and removing labels. A "move" is emulated by adding the
destination label and then removing the source (inbox) label, in that order,
so a failure between the two steps leaves the message visible in both places
rather than in neither.

The store assumes exclusive ownership of the mailbox for the duration of a
pass: set_label checks then writes, which is not safe against another client
editing the same message concurrently.
"""

import logging
from typing import TYPE_CHECKING, Dict, Optional, Set

from core.models import LABEL_FIELDS

if TYPE_CHECKING:
    from providers.base import MailSession

logger = logging.getLogger(__name__)

# Gmail system labels
INBOX = "\\Inbox"
STARRED = "\\Starred"
IMPORTANT = "\\Important"

# Labels written by the Star and Flag actions. A message carrying either is
# exempt from every retention state.
PROTECTIVE_LABELS = frozenset({STARRED, IMPORTANT})

DELETED_FLAG = "\\Deleted"


def quote_label(label: str) -> str:
    """Escape backslashes and quotes, then wrap the label in double quotes."""
    return '"' + label.replace("\\", "\\\\").replace('"', '\\"') + '"'


def label_command(label: str) -> str:
    """Parenthesized label list as used by STORE X-GM-LABELS."""
    return f"({quote_label(label)})"


class LabelStore:
    """
    Label add/remove operations over a mail session.

    Args:
        session: Connected mail session
        cache: Cache label sets per UID for the pass. Cached entries are
               updated after every set_label/del_label on that UID.

    Example:
        store = LabelStore(session)
        store.move("42", "Receipts")   # ensure label, add it, drop \\Inbox
    """

    def __init__(self, session: "MailSession", cache: bool = False):
        self.session = session
        self.cache = cache
        self._labels: Dict[str, Set[str]] = {}
        self._existing: Set[str] = set()

    def ensure_exists(self, label: str) -> None:
        """
        Create the label on the server unless it already exists.

        At most one create is issued per missing label per pass.
        """
        if label in self._existing:
            return

        mailboxes = set(self.session.list_mailboxes())
        self._existing.update(mailboxes)
        if label in mailboxes:
            return

        logger.info(f"Creating missing label '{label}'")
        self.session.create_mailbox(label)
        self._existing.add(label)
        logger.info(f"Label '{label}' created")

    def get_labels(self, uid: str) -> Set[str]:
        """Return the labels currently on the message."""
        if self.cache and uid in self._labels:
            return set(self._labels[uid])

        labels: Set[str] = set()
        for record in self.session.fetch([uid], LABEL_FIELDS):
            if record.uid == uid:
                labels |= record.labels
        logger.debug(f"UID {uid} labels: {sorted(labels)}")

        if self.cache:
            self._labels[uid] = set(labels)
        return labels

    def set_label(self, uid: str, label: str, subject: str = "") -> bool:
        """
        Add a label to the message.

        Returns:
            True if a request was issued, False if the label was already present
        """
        if label in self.get_labels(uid):
            logger.debug(f"Label '{label}' already present on UID {uid}, skipping. Subject: {subject}")
            return False

        self.session.mutate(uid, "+X-GM-LABELS", label_command(label))
        if self.cache:
            self._labels.setdefault(uid, set()).add(label)
        return True

    def del_label(self, uid: str, label: str, subject: str = "") -> None:
        """Remove a label from the message. Removing an absent label is a no-op on the server."""
        self.session.mutate(uid, "-X-GM-LABELS", label_command(label))
        if self.cache and uid in self._labels:
            self._labels[uid].discard(label)
        logger.debug(f"Removed label '{label}' from UID {uid}. Subject: {subject}")

    def move(self, uid: str, label: str, source: str = INBOX, subject: str = "") -> None:
        """Move a message: ensure the label exists, add it, then remove the source label."""
        self.ensure_exists(label)
        self.set_label(uid, label, subject)
        self.del_label(uid, source, subject)

    def mark_deleted(self, uid: str) -> None:
        """Flag the message for deletion."""
        self.session.mutate(uid, "+FLAGS", f"({DELETED_FLAG})")
        if self.cache:
            self._labels.pop(uid, None)

    def forget(self) -> None:
        """Drop cached label sets. Called when the session selects another mailbox."""
        self._labels.clear()

    def is_protected(self, uid: str, labels: Optional[Set[str]] = None) -> bool:
        """True if the message carries a protective label."""
        if labels is None:
            labels = self.get_labels(uid)
        return bool(labels & PROTECTIVE_LABELS)
