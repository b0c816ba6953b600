from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from core.errors import ActionError
from core.labels import INBOX
from core.models import HEADER_FIELDS, LABEL_FIELDS, STATUS_FIELDS, FetchRecord, Message
from providers.base import MailSession

NOW = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)


def make_header(
    *,
    to: str | None = "Alice <alice@example.org>",
    cc: str | None = None,
    sender: str | None = "Sender <sender@example.test>",
    subject: str | None = "Test message",
) -> bytes:
    lines = []
    if sender is not None:
        lines.append(f"From: {sender}")
    if to is not None:
        lines.append(f"To: {to}")
    if cc is not None:
        lines.append(f"Cc: {cc}")
    if subject is not None:
        lines.append(f"Subject: {subject}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")


def make_message(
    uid: str = "1",
    *,
    to: tuple[str, ...] = ("alice@example.org",),
    cc: tuple[str, ...] = (),
    sender: tuple[str, ...] = ("sender@example.test",),
    subject: str = "Test message",
) -> Message:
    return Message(
        uid=uid,
        to=tuple(("", addr) for addr in to),
        cc=tuple(("", addr) for addr in cc),
        sender=tuple(("", addr) for addr in sender),
        subject=subject,
    )


@dataclass
class FakeMessage:
    uid: str
    header: bytes = field(default_factory=make_header)
    labels: set[str] = field(default_factory=lambda: {INBOX})
    flags: set[str] = field(default_factory=set)
    internal_date: datetime | None = None


def aged(uid: str, days: float, *, read: bool = False, labels: set[str] | None = None, **header) -> FakeMessage:
    """A message received ``days`` before NOW."""
    return FakeMessage(
        uid=uid,
        header=make_header(**header),
        labels={INBOX} if labels is None else labels,
        flags={"\\Seen"} if read else set(),
        internal_date=NOW - timedelta(days=days),
    )


def _label_from_value(value: str) -> str:
    quoted = value.strip()[1:-1]
    return re.sub(r"\\(.)", r"\1", quoted[1:-1])


class FakeSession(MailSession):
    """
    In-memory MailSession over a Gmail-like store.

    Every message lives in the store; selecting "INBOX" narrows searches to
    messages carrying the \\Inbox label, any other mailbox sees them all.
    Search results for arbitrary queries are configured through
    ``search_results``; "ALL", "UID n:*" and 'X-GM-LABELS "name"' are answered
    from the stored messages. Every mutating call is recorded.
    """

    name = "fake"

    def __init__(
        self,
        messages: list[FakeMessage] | tuple[FakeMessage, ...] = (),
        *,
        mailboxes: tuple[str, ...] = ("INBOX",),
        search_results: dict[str, list[str]] | None = None,
        uid_validity: str = "1",
    ) -> None:
        self.messages = {m.uid: m for m in messages}
        self.mailboxes = list(mailboxes)
        self.search_results = dict(search_results or {})
        self._uid_validity = uid_validity
        self.mutations: list[tuple[str, str, str]] = []
        self.created: list[str] = []
        self.searches: list[str] = []
        self.fetches: list[tuple[tuple[str, ...], str]] = []
        self.fail_on: set[tuple[str, str]] = set()
        self.connected = False
        self.selected = "INBOX"
        self.selects: list[str] = []

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def uid_validity(self) -> str:
        return self._uid_validity

    def select(self, mailbox: str) -> None:
        self.selects.append(mailbox)
        self.selected = mailbox

    def search(self, query: str) -> list[str]:
        self.searches.append(query)
        if query in self.search_results:
            return list(self.search_results[query])
        uids = [
            uid for uid in sorted(self.messages, key=int)
            if self.selected != "INBOX" or INBOX in self.messages[uid].labels
        ]
        if query == "ALL":
            return uids
        label = re.fullmatch(r'X-GM-LABELS "?([^"]+)"?', query)
        if label:
            return [uid for uid in uids if label.group(1) in self.messages[uid].labels]
        match = re.fullmatch(r"UID (\d+):\*", query)
        if match:
            start = int(match.group(1))
            newer = [uid for uid in uids if int(uid) >= start]
            # "n:*" always includes the highest UID
            if not newer and uids:
                newer = [uids[-1]]
            return newer
        return []

    def fetch(self, uids, field_spec: str) -> list[FetchRecord]:
        self.fetches.append((tuple(uids), field_spec))
        records = []
        for uid in uids:
            message = self.messages.get(uid)
            if message is None:
                continue
            record = FetchRecord(uid=uid)
            if field_spec == HEADER_FIELDS:
                record.header = message.header
            elif field_spec == LABEL_FIELDS:
                record.labels = set(message.labels)
            elif field_spec == STATUS_FIELDS:
                record.flags = set(message.flags)
                record.internal_date = message.internal_date
            records.append(record)
        return records

    def mutate(self, uid: str, item: str, value: str) -> None:
        if (uid, item) in self.fail_on:
            raise ActionError(uid, f"STORE {item} {value}", "NO [CANNOT] rejected")
        self.mutations.append((uid, item, value))
        message = self.messages.get(uid)
        if message is None:
            return
        if item == "+X-GM-LABELS":
            message.labels.add(_label_from_value(value))
        elif item == "-X-GM-LABELS":
            message.labels.discard(_label_from_value(value))
        elif item == "+FLAGS":
            message.flags.update(value.strip("()").split())

    def list_mailboxes(self) -> list[str]:
        return list(self.mailboxes)

    def create_mailbox(self, name: str) -> None:
        self.created.append(name)
        self.mailboxes.append(name)
