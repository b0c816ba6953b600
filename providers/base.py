"""
Abstract base class for mail sessions.

Defines the narrow protocol surface the policy engines depend on, so the
engines can run against a live IMAP server or an in-memory fake.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

from core.models import HEADER_FIELDS, LABEL_FIELDS, STATUS_FIELDS, FetchRecord


class MailSession(ABC):
    """
    One logged-in session against a single mailbox.

    All identifiers are UIDs as strings. The session is used sequentially by
    both engines and is never shared between threads. Supports the context
    manager protocol for connection management.

    Example:
        with IMAPSession(host, user, password) as session:
            uids = session.search("UNSEEN")
            records = session.fetch(uids, HEADER_FIELDS)
    """

    name: str = "abstract"

    def __enter__(self) -> "MailSession":
        """Context manager entry - establish connection."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - close connection."""
        self.disconnect()

    @abstractmethod
    def connect(self) -> None:
        """
        Connect, authenticate and select the working mailbox.

        Raises:
            SessionConnectionError: If the server cannot be reached
            AuthenticationError: If credentials are rejected
        """

    @abstractmethod
    def disconnect(self) -> None:
        """Close the session. Safe to call more than once."""

    @abstractmethod
    def select(self, mailbox: str) -> None:
        """
        Switch the working mailbox. UIDs from the previous mailbox are not
        valid afterwards.

        Raises:
            SessionConnectionError: If the mailbox cannot be selected
        """

    @abstractmethod
    def search(self, query: str) -> List[str]:
        """
        Run a server-side search.

        Args:
            query: Search criteria in the server's grammar (e.g. "UNSEEN")

        Returns:
            Matching UIDs in ascending order
        """

    @abstractmethod
    def fetch(self, uids: Sequence[str], field_spec: str) -> List[FetchRecord]:
        """
        Fetch data items for the given UIDs.

        Args:
            uids: UIDs to fetch
            field_spec: One of HEADER_FIELDS, LABEL_FIELDS, STATUS_FIELDS

        Returns:
            One FetchRecord per message the server returned
        """

    @abstractmethod
    def mutate(self, uid: str, item: str, value: str) -> None:
        """
        Issue one STORE against a message.

        Args:
            uid: Target UID
            item: Store item with sign (e.g. "+X-GM-LABELS", "+FLAGS")
            value: Parenthesized value list (e.g. '("Receipts")')

        Raises:
            ActionError: If the server rejects the request
        """

    @abstractmethod
    def list_mailboxes(self) -> List[str]:
        """Return the names of every mailbox/label on the server."""

    @abstractmethod
    def create_mailbox(self, name: str) -> None:
        """
        Create a mailbox/label.

        Raises:
            ActionError: If the server refuses to create it
        """

    def uid_validity(self) -> str:
        """UIDVALIDITY of the selected mailbox, empty if unknown."""
        return ""

    def health_check(self) -> Tuple[bool, str]:
        """
        Verify the session is usable.

        Returns:
            Tuple of (is_healthy, status_message)
        """
        try:
            self.search("ALL")
            return True, "OK"
        except Exception as e:
            return False, str(e)
