"""
IMAP session implementation.

Talks to Gmail (or any server implementing the X-GM-LABELS extension) over
IMAP4 with SSL. Every operation is UID based.
"""

import imaplib
import logging
import re
import socket
import ssl
from datetime import datetime
from typing import List, Optional, Sequence

from core.errors import ActionError, AuthenticationError, SessionConnectionError
from core.labels import quote_label
from core.models import FetchRecord
from providers.base import MailSession

logger = logging.getLogger(__name__)

DEFAULT_PORT = 993
FETCH_START = re.compile(rb"^\s*(\d+)\s+\(")
UID_PATTERN = re.compile(rb"\bUID\s+(\d+)")
FLAGS_PATTERN = re.compile(rb"\bFLAGS\s+\(([^)]*)\)")
INTERNALDATE_PATTERN = re.compile(rb'\bINTERNALDATE\s+"([^"]+)"')
LIST_PATTERN = re.compile(r'^\((?P<flags>[^)]*)\)\s+(?:"(?P<delim>[^"]*)"|NIL)\s+(?P<name>.+)$')


def decode_imap_response(data: object) -> str:
    """Flatten an imaplib response payload into text for error messages."""
    if not isinstance(data, list):
        return ""
    parts = []
    for item in data:
        if item is None:
            continue
        if isinstance(item, bytes):
            parts.append(item.decode("utf-8", errors="replace"))
        else:
            parts.append(str(item))
    return " | ".join(parts).strip()


def unquote(value: str) -> str:
    """Undo IMAP quoted-string escaping."""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return re.sub(r'\\(.)', r"\1", value[1:-1])
    return value


def parse_label_list(meta: bytes) -> set:
    """
    Extract the X-GM-LABELS list from a FETCH response line.

    Handles quoted label names containing spaces, parentheses and escapes.
    """
    marker = b"X-GM-LABELS ("
    start = meta.find(marker)
    if start == -1:
        return set()
    text = meta[start + len(marker):].decode("utf-8", errors="replace")

    labels = set()
    token = []
    in_quotes = False
    i = 0
    while i < len(text):
        c = text[i]
        if in_quotes:
            if c == "\\" and i + 1 < len(text):
                token.append(text[i + 1])
                i += 2
                continue
            if c == '"':
                in_quotes = False
                labels.add("".join(token))
                token = []
            else:
                token.append(c)
        elif c == '"':
            in_quotes = True
        elif c == ")":
            break
        elif c.isspace():
            if token:
                labels.add("".join(token))
                token = []
        else:
            token.append(c)
        i += 1
    if token:
        labels.add("".join(token))
    return labels


def parse_internaldate(value: bytes) -> Optional[datetime]:
    """Parse an INTERNALDATE value (e.g. '17-Jul-2025 02:44:25 -0700')."""
    try:
        return datetime.strptime(value.decode("ascii").strip(), "%d-%b-%Y %H:%M:%S %z")
    except ValueError:
        return None


def parse_fetch_response(data: Sequence[object]) -> List[FetchRecord]:
    """
    Group an imaplib FETCH payload into one FetchRecord per message.

    imaplib returns literals as (meta, literal) tuples followed by a bytes
    element with the rest of the response line; plain responses are bytes.
    """
    entries = []
    for item in data or []:
        if item is None:
            continue
        if isinstance(item, tuple):
            entries.append([item[0], item[1] or b""])
        elif isinstance(item, bytes):
            if entries and not FETCH_START.match(item):
                entries[-1][0] += item
            else:
                entries.append([item, b""])

    records = []
    for meta, literal in entries:
        uid_match = UID_PATTERN.search(meta)
        if not uid_match:
            logger.debug(f"FETCH response without UID ignored: {meta!r}")
            continue
        seq_match = FETCH_START.match(meta)
        record = FetchRecord(
            uid=uid_match.group(1).decode("ascii"),
            seq=int(seq_match.group(1)) if seq_match else None,
            header=literal,
        )
        flags_match = FLAGS_PATTERN.search(meta)
        if flags_match:
            record.flags = set(flags_match.group(1).decode("utf-8", errors="replace").split())
        record.labels = parse_label_list(meta)
        date_match = INTERNALDATE_PATTERN.search(meta)
        if date_match:
            record.internal_date = parse_internaldate(date_match.group(1))
        records.append(record)
    return records


class IMAPSession(MailSession):
    """
    IMAP session with Gmail label extensions.

    Example:
        session = IMAPSession(
            host="imap.gmail.com",
            user="me@example.org",
            password="app-password",  # allow-secret
        )
        with session:
            uids = session.search("SEEN")
    """

    name = "imap"

    def __init__(
        self,
        host: str,
        user: str,
        password: str,  # allow-secret
        port: int = DEFAULT_PORT,
        mailbox: str = "INBOX",
        timeout: Optional[float] = 60.0,
    ):
        self.host = host
        self.user = user
        self._password = password
        self.port = port
        self.mailbox = mailbox
        self.timeout = timeout
        self._connection: Optional[imaplib.IMAP4_SSL] = None
        self._uid_validity = ""
        self.selected: Optional[str] = None

    def connect(self) -> None:
        """Open the SSL connection, log in and select the mailbox."""
        if self._connection:
            return

        logger.debug(f"Initializing IMAP connection to {self.host}:{self.port}")
        try:
            ctx = ssl.create_default_context()
            self._connection = imaplib.IMAP4_SSL(
                self.host, port=self.port, ssl_context=ctx, timeout=self.timeout
            )
        except (OSError, socket.timeout, ssl.SSLError, imaplib.IMAP4.error) as e:
            raise SessionConnectionError(f"IMAP connection to {self.host} failed: {e}") from e

        try:
            self._connection.login(self.user, self._password)
        except imaplib.IMAP4.error as e:
            try:
                self._connection.shutdown()
            except OSError as close_error:
                logger.debug(f"Error closing IMAP socket: {close_error}")
            self._connection = None
            raise AuthenticationError(f"IMAP authentication failed for {self.user}: {e}") from e

        try:
            self.select(self.mailbox)
        except SessionConnectionError:
            self.disconnect()
            raise

        logger.info(f"IMAP connected to {self.host} as {self.user}")

    def select(self, mailbox: str) -> None:
        """Select a mailbox and record its UIDVALIDITY."""
        res, data = self.connection.select(quote_label(mailbox))
        if res != "OK":
            raise SessionConnectionError(
                f"Failed to select mailbox {mailbox}: {decode_imap_response(data)}"
            )
        self.selected = mailbox
        self._uid_validity = ""
        _, validity = self.connection.response("UIDVALIDITY")
        if validity and validity[0]:
            raw = validity[0]
            self._uid_validity = raw.decode("ascii", errors="ignore") if isinstance(raw, bytes) else str(raw)
        logger.debug(f"Selected mailbox {mailbox} (UIDVALIDITY {self._uid_validity or 'unknown'})")

    def disconnect(self) -> None:
        """Close IMAP connection."""
        if self._connection:
            try:
                self._connection.logout()
            except Exception as e:
                logger.debug(f"Error during IMAP logout: {e}")
            finally:
                self._connection = None
        logger.debug("IMAP disconnected")

    @property
    def connection(self) -> imaplib.IMAP4_SSL:
        if self._connection is None:
            raise SessionConnectionError("IMAP session is not connected")
        return self._connection

    def uid_validity(self) -> str:
        return self._uid_validity

    def _uid(self, command: str, *args: Optional[str]):
        try:
            return self.connection.uid(command, *args)
        except (imaplib.IMAP4.abort, OSError) as e:
            raise SessionConnectionError(f"IMAP connection lost during {command}: {e}") from e

    def search(self, query: str) -> List[str]:
        res, data = self._uid("SEARCH", None, query)
        if res != "OK":
            raise RuntimeError(f"IMAP search failed for {query!r}: {decode_imap_response(data)}")
        if not data or not data[0]:
            return []
        raw = data[0]
        if isinstance(raw, bytes):
            raw = raw.decode("ascii", errors="ignore")
        return [uid for uid in str(raw).split() if uid]

    def fetch(self, uids: Sequence[str], field_spec: str) -> List[FetchRecord]:
        if not uids:
            return []
        res, data = self._uid("FETCH", ",".join(uids), field_spec)
        if res != "OK":
            raise RuntimeError(f"IMAP fetch {field_spec} failed: {decode_imap_response(data)}")
        return parse_fetch_response(data)

    def mutate(self, uid: str, item: str, value: str) -> None:
        operation = f"{item} {value}"
        try:
            res, data = self._uid("STORE", uid, item, value)
        except imaplib.IMAP4.error as e:
            raise ActionError(uid, operation, str(e)) from e
        if res != "OK":
            raise ActionError(uid, operation, decode_imap_response(data) or res)

    def list_mailboxes(self) -> List[str]:
        res, data = self.connection.list()
        if res != "OK" or data is None:
            raise RuntimeError(f"IMAP LIST failed: {decode_imap_response(data)}")

        names = []
        for line in data:
            if not line:
                continue
            if isinstance(line, tuple):
                # Mailbox name sent as a literal
                names.append(line[1].decode("utf-8", errors="replace"))
                continue
            match = LIST_PATTERN.match(line.decode("utf-8", errors="replace"))
            if match:
                names.append(unquote(match.group("name").strip()))
        return names

    def create_mailbox(self, name: str) -> None:
        try:
            res, data = self.connection.create(quote_label(name))
        except imaplib.IMAP4.error as e:
            raise ActionError("-", f"CREATE {name}", str(e)) from e
        if res != "OK":
            raise ActionError("-", f"CREATE {name}", decode_imap_response(data) or res)
