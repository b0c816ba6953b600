"""
Data models for the mailbox policy engine.

Provides the transport-level fetch record, the normalized Message view that
filters evaluate, and the ProcessingResult report both engines return.
"""

import email
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from email.header import decode_header
from email.utils import getaddresses
from typing import Dict, List, Optional, Set, Tuple

from core.errors import HeaderParseError

logger = logging.getLogger(__name__)

Address = Tuple[str, str]

# Fetch specs understood by every session implementation.
HEADER_FIELDS = "(BODY.PEEK[HEADER.FIELDS (FROM TO CC SUBJECT)])"
LABEL_FIELDS = "(X-GM-LABELS)"
STATUS_FIELDS = "(INTERNALDATE FLAGS)"

FOLD_PATTERN = re.compile(r"\r?\n[ \t]+")


def unfold_header(value: str) -> str:
    """Join a header value folded across lines into a single line."""
    return FOLD_PATTERN.sub(" ", value)


def decode_header_value(s: Optional[str]) -> str:
    """Unfold and decode an RFC 2047 encoded header value into text."""
    if not s:
        return ""
    parts = []
    for text, enc in decode_header(unfold_header(str(s))):
        if isinstance(text, bytes):
            try:
                parts.append(text.decode(enc or "utf-8", errors="replace"))
            except LookupError:
                parts.append(text.decode("utf-8", errors="replace"))
        else:
            parts.append(text)
    return "".join(parts)


def parse_address_list(raw: Optional[str]) -> List[Address]:
    """
    Parse an address header (To, Cc, From) into (display_name, address) pairs.

    Group syntax is flattened into its member addresses. Display names are
    decoded; addresses are returned as written.

    Args:
        raw: The raw header value

    Returns:
        List of (display_name, address) tuples, empty for a missing header

    Raises:
        HeaderParseError: If the value is non-empty but yields no address
    """
    if raw is None or not str(raw).strip():
        return []
    raw = unfold_header(str(raw))
    # Group syntax with no members ("undisclosed-recipients:;") is legitimately empty
    if raw.strip().endswith(":;"):
        return []

    parsed = getaddresses([raw])
    addresses = [(decode_header_value(name), addr) for name, addr in parsed if addr]
    if not addresses:
        raise HeaderParseError(f"No addresses found in header value: {raw!r}")
    return addresses


@dataclass
class FetchRecord:
    """
    One message as returned by a session fetch.

    Only the fields requested by the fetch spec are populated; the rest keep
    their defaults.

    Attributes:
        uid: Server UID of the message
        seq: Session-local sequence number, when reported
        header: Raw header block bytes
        flags: IMAP flags (e.g. \\Seen, \\Flagged)
        labels: Gmail labels from X-GM-LABELS
        internal_date: Server receipt timestamp (timezone-aware)
    """
    uid: str
    seq: Optional[int] = None
    header: bytes = b""
    flags: Set[str] = field(default_factory=set)
    labels: Set[str] = field(default_factory=set)
    internal_date: Optional[datetime] = None

    @property
    def is_read(self) -> bool:
        return "\\Seen" in self.flags


@dataclass(frozen=True)
class Message:
    """
    Normalized, immutable view of one mailbox item.

    Attributes:
        uid: Server UID, stable within a session
        seq: Optional session-local sequence number
        to: (display_name, address) pairs from the To header
        cc: (display_name, address) pairs from the Cc header
        sender: (display_name, address) pairs from the From header
        subject: Decoded Subject header
    """
    uid: str
    seq: Optional[int] = None
    to: Tuple[Address, ...] = ()
    cc: Tuple[Address, ...] = ()
    sender: Tuple[Address, ...] = ()
    subject: str = ""

    @property
    def to_addresses(self) -> List[str]:
        return [addr for _, addr in self.to]

    @property
    def cc_addresses(self) -> List[str]:
        return [addr for _, addr in self.cc]

    @property
    def from_addresses(self) -> List[str]:
        return [addr for _, addr in self.sender]

    @classmethod
    def from_record(cls, record: FetchRecord) -> "Message":
        """
        Build a Message from a fetched header block.

        A header that cannot be parsed leaves the corresponding field empty;
        the message itself is always returned.
        """
        try:
            msg = email.message_from_bytes(record.header or b"")
        except Exception as e:
            logger.warning(f"UID {record.uid}: unreadable header block ({e})")
            return cls(uid=record.uid, seq=record.seq)

        def addresses(name: str) -> Tuple[Address, ...]:
            try:
                return tuple(parse_address_list(msg.get(name)))
            except HeaderParseError as e:
                logger.warning(f"UID {record.uid}: {name} header ignored: {e}")
                return ()

        return cls(
            uid=record.uid,
            seq=record.seq,
            to=addresses("To"),
            cc=addresses("Cc"),
            sender=addresses("From"),
            subject=decode_header_value(msg.get("Subject", "")).strip(),
        )


@dataclass
class ProcessingResult:
    """
    Summary of one engine pass.

    Returned by FilterEngine.apply and RetentionEngine.evaluate.
    """
    processed_count: int = 0
    matched_count: int = 0
    skipped_count: int = 0
    success_count: int = 0
    error_count: int = 0
    dry_run_count: int = 0
    rule_counts: Dict[str, int] = field(default_factory=dict)
    matches: Dict[str, List[str]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def add_match(self, rule: str, uid: str) -> None:
        """Record that a message was selected by a rule."""
        self.matched_count += 1
        self.rule_counts[rule] = self.rule_counts.get(rule, 0) + 1
        self.matches.setdefault(rule, []).append(uid)

    def add_error(self, message: str) -> None:
        self.error_count += 1
        self.errors.append(message)

    def merge(self, other: "ProcessingResult") -> "ProcessingResult":
        """Combine two reports (used to total the filter and retention passes)."""
        combined = ProcessingResult(
            processed_count=self.processed_count + other.processed_count,
            matched_count=self.matched_count + other.matched_count,
            skipped_count=self.skipped_count + other.skipped_count,
            success_count=self.success_count + other.success_count,
            error_count=self.error_count + other.error_count,
            dry_run_count=self.dry_run_count + other.dry_run_count,
            rule_counts=dict(self.rule_counts),
            matches={k: list(v) for k, v in self.matches.items()},
            errors=self.errors + other.errors,
        )
        for rule, count in other.rule_counts.items():
            combined.rule_counts[rule] = combined.rule_counts.get(rule, 0) + count
        for rule, uids in other.matches.items():
            combined.matches.setdefault(rule, []).extend(uids)
        return combined
