"""
Retention states and the retention engine.

A RetentionState selects candidate messages with a server-side query and
expires them once they are older than the state's TTL:

    Keep                  never expires
    Fixed(d)              expires at age d
    ReadConditioned(r, u) expires at age r when read, u when unread

An expired message is moved to a label (default "ToBeDeleted") or flagged
for deletion. Messages carrying a protective label (starred or marked
important) are never expired by any state. A state in dry-run mode only
logs what it would do.

States run in configured order and independently: a message selected by two
states is evaluated by both.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from core.errors import ConfigError, QueryValidationError, SessionConnectionError
from core.labels import INBOX, LabelStore
from core.models import HEADER_FIELDS, STATUS_FIELDS, Message, ProcessingResult
from core.query import validate_query

if TYPE_CHECKING:
    from providers.base import MailSession

logger = logging.getLogger(__name__)

DEFAULT_STATE_LABEL = "ToBeDeleted"

DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([hdw])\s*$", re.IGNORECASE)
DURATION_UNITS = {"h": "hours", "d": "days", "w": "weeks"}


def parse_duration(value: Any) -> timedelta:
    """
    Parse a duration such as "7d", "12h" or "2w".

    Raises:
        ConfigError: If the format is unsupported
    """
    match = DURATION_PATTERN.match(str(value)) if isinstance(value, str) else None
    if not match:
        raise ConfigError(f"Unsupported TTL duration {value!r}; expected '<n>d', '<n>h' or '<n>w'")
    amount, unit = match.groups()
    return timedelta(**{DURATION_UNITS[unit.lower()]: int(amount)})


def format_duration(value: timedelta) -> str:
    if value.seconds == 0 and value.microseconds == 0:
        return f"{value.days}d"
    return str(value)


class TTLKind(Enum):
    KEEP = "keep"
    FIXED = "fixed"
    READ_CONDITIONED = "read_conditioned"


@dataclass(frozen=True)
class TTL:
    """
    Time-to-live policy of a retention state.

    ``duration`` is set for FIXED; ``read`` and ``unread`` for READ_CONDITIONED.
    """
    kind: TTLKind
    duration: Optional[timedelta] = None
    read: Optional[timedelta] = None
    unread: Optional[timedelta] = None

    @classmethod
    def keep(cls) -> "TTL":
        return cls(TTLKind.KEEP)

    @classmethod
    def fixed(cls, duration: timedelta) -> "TTL":
        return cls(TTLKind.FIXED, duration=duration)

    @classmethod
    def read_conditioned(cls, read: timedelta, unread: timedelta) -> "TTL":
        return cls(TTLKind.READ_CONDITIONED, read=read, unread=unread)

    @classmethod
    def parse(cls, raw: Any) -> "TTL":
        """
        Parse a configured TTL: a duration string, the literal "keep" (any
        case), or a mapping with exactly ``read`` and ``unread`` durations.

        Raises:
            ConfigError: For any other form
        """
        if isinstance(raw, str):
            if raw.strip().lower() == "keep":
                return cls.keep()
            return cls.fixed(parse_duration(raw))
        if isinstance(raw, dict):
            if set(raw) != {"read", "unread"}:
                raise ConfigError(f"TTL mapping must have exactly 'read' and 'unread', got {sorted(raw)}")
            return cls.read_conditioned(parse_duration(raw["read"]), parse_duration(raw["unread"]))
        raise ConfigError(f"Invalid TTL {raw!r}; expected '<n>d', 'keep' or {{read, unread}}")

    def resolve(self, is_read: bool) -> Optional[timedelta]:
        """
        Required age before a message expires, or None when it never does.
        """
        if self.kind is TTLKind.KEEP:
            return None
        if self.kind is TTLKind.FIXED:
            return self.duration
        if self.kind is TTLKind.READ_CONDITIONED:
            return self.read if is_read else self.unread
        raise ValueError(f"Unhandled TTL kind: {self.kind}")

    def __str__(self) -> str:
        if self.kind is TTLKind.KEEP:
            return "keep"
        if self.kind is TTLKind.FIXED:
            return format_duration(self.duration)
        return f"read={format_duration(self.read)} unread={format_duration(self.unread)}"


class StateActionKind(Enum):
    MOVE = "Move"
    DELETE = "Delete"


@dataclass(frozen=True)
class StateAction:
    """Terminal action of a retention state. ``label`` is set only for MOVE."""
    kind: StateActionKind
    label: Optional[str] = None

    @classmethod
    def move(cls, label: str) -> "StateAction":
        return cls(StateActionKind.MOVE, label)

    @classmethod
    def delete(cls) -> "StateAction":
        return cls(StateActionKind.DELETE)

    @classmethod
    def parse(cls, raw: Any) -> "StateAction":
        """
        Parse a configured state action: a bare label name, the literal
        "delete" (any case), or ``{Move: label}``.

        Raises:
            ConfigError: For any other form
        """
        if isinstance(raw, str) and raw.strip():
            if raw.strip().lower() == "delete":
                return cls.delete()
            return cls.move(raw.strip())
        if isinstance(raw, dict) and len(raw) == 1:
            key, value = next(iter(raw.items()))
            if str(key).lower() == "move" and isinstance(value, str) and value.strip():
                return cls.move(value.strip())
            raise ConfigError(f"Unknown state action {key!r}; expected 'Move'")
        raise ConfigError(f"Invalid state action {raw!r}; expected a label, 'delete' or {{Move: label}}")

    def __str__(self) -> str:
        if self.kind is StateActionKind.MOVE:
            return f"Move:{self.label}"
        return "Delete"


STATE_KEYS = {"query", "ttl", "action", "nerf", "dry_run"}


@dataclass(frozen=True)
class RetentionState:
    """
    A named retention policy.

    Attributes:
        name: Configuration key the state was defined under
        query: Server search query selecting candidates
        ttl: Age policy
        action: What to do with expired messages
        dry_run: Log expirations without mutating anything
    """
    name: str
    query: str
    ttl: TTL
    action: StateAction = StateAction.move(DEFAULT_STATE_LABEL)
    dry_run: bool = False

    @classmethod
    def from_config(cls, name: str, data: Dict[str, Any]) -> "RetentionState":
        """
        Build a state from its configuration mapping.

        Raises:
            ConfigError: On missing/unknown keys or invalid TTL/action
        """
        if not isinstance(data, dict):
            raise ConfigError(f"State '{name}' must be a mapping, got {data!r}")
        unknown = set(data) - STATE_KEYS
        if unknown:
            raise ConfigError(f"State '{name}' has unknown keys: {sorted(unknown)}")
        for key in ("query", "ttl"):
            if key not in data:
                raise ConfigError(f"State '{name}' is missing '{key}'")
        if not isinstance(data["query"], str):
            raise ConfigError(f"State '{name}': query must be a string")

        dry_run = data.get("nerf", data.get("dry_run", False))
        if not isinstance(dry_run, bool):
            raise ConfigError(f"State '{name}': nerf/dry_run must be true or false")

        try:
            return cls(
                name=name,
                query=data["query"],
                ttl=TTL.parse(data["ttl"]),
                action=StateAction.parse(data["action"]) if "action" in data else StateAction.move(DEFAULT_STATE_LABEL),
                dry_run=dry_run,
            )
        except ConfigError as e:
            raise ConfigError(f"State '{name}': {e}") from e

    def describe(self) -> str:
        lines = [
            self.name,
            f"    query: {self.query}",
            f"    ttl: {self.ttl}",
            f"    action: {self.action}",
        ]
        if self.dry_run:
            lines.append("    dry run: yes")
        return "\n".join(lines)


class RetentionEngine:
    """
    Evaluates retention states against the mailbox.

    Args:
        session: Connected mail session
        labels: Label store bound to the same session
        inbox_label: Label removed from a message when it is moved
        dry_run: Treat every state as dry-run
    """

    def __init__(
        self,
        session: "MailSession",
        labels: LabelStore,
        inbox_label: str = INBOX,
        dry_run: bool = False,
    ):
        self.session = session
        self.labels = labels
        self.inbox_label = inbox_label
        self.dry_run = dry_run

    def evaluate(self, states: Iterable[RetentionState], now: Optional[datetime] = None) -> ProcessingResult:
        """
        Run every state, in order.

        Args:
            states: Retention states in configured order
            now: Reference time for age computation (default: current UTC time)

        Returns:
            ProcessingResult with per-state expiry counts and any errors
        """
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        result = ProcessingResult()
        for state in states:
            try:
                self._evaluate_state(state, now, result)
            except QueryValidationError as e:
                error = f"State '{state.name}' skipped: {e}"
                logger.error(error)
                result.add_error(error)
            except SessionConnectionError:
                raise
            except Exception as e:
                error = f"State '{state.name}' search failed: {e}"
                logger.error(error)
                result.add_error(error)
        logger.info(
            f"Finished retention states: {result.matched_count} expired, "
            f"{result.skipped_count} kept, {result.error_count} errors"
        )
        return result

    def _evaluate_state(self, state: RetentionState, now: datetime, result: ProcessingResult) -> None:
        query = validate_query(state.query)
        uids = self.session.search(query)
        logger.info(f"State '{state.name}': {len(uids)} candidates for query {query}")

        for uid in uids:
            result.processed_count += 1
            try:
                self._evaluate_message(state, uid, now, result)
            except SessionConnectionError:
                raise
            except Exception as e:
                error = f"State '{state.name}' failed on UID {uid}: {e}"
                logger.error(error)
                result.add_error(error)

    def _evaluate_message(self, state: RetentionState, uid: str, now: datetime, result: ProcessingResult) -> None:
        if self.labels.is_protected(uid):
            logger.debug(f"State '{state.name}': UID {uid} is protected, skipping")
            result.skipped_count += 1
            return

        if state.ttl.kind is TTLKind.KEEP:
            result.skipped_count += 1
            return

        record = next((r for r in self.session.fetch([uid], STATUS_FIELDS) if r.uid == uid), None)
        if record is None or record.internal_date is None:
            logger.warning(f"State '{state.name}': no receipt date for UID {uid}, skipping")
            result.skipped_count += 1
            return

        required = state.ttl.resolve(record.is_read)
        age = now - record.internal_date
        if age < required:
            logger.debug(
                f"State '{state.name}': UID {uid} age {age} below {format_duration(required)} "
                f"({'read' if record.is_read else 'unread'}), keeping"
            )
            result.skipped_count += 1
            return

        subject = self._subject(uid)
        result.add_match(state.name, uid)
        if state.dry_run or self.dry_run:
            logger.info(
                f"[DRY RUN] State '{state.name}' would apply {state.action} to UID {uid} "
                f"(age {age.days}d, ttl {format_duration(required)}) | Subject: {subject}"
            )
            result.dry_run_count += 1
            return

        logger.info(
            f"State '{state.name}': applying {state.action} to UID {uid} "
            f"(age {age.days}d, ttl {format_duration(required)}) | Subject: {subject}"
        )
        self.execute(state.action, uid, subject)
        result.success_count += 1

    def _subject(self, uid: str) -> str:
        for record in self.session.fetch([uid], HEADER_FIELDS):
            if record.uid == uid:
                return Message.from_record(record).subject
        return ""

    def execute(self, action: StateAction, uid: str, subject: str = "") -> None:
        """Issue the mutations for a state action."""
        if action.kind is StateActionKind.DELETE:
            self.labels.mark_deleted(uid)
        elif action.kind is StateActionKind.MOVE:
            self.labels.move(uid, action.label, self.inbox_label, subject)
        else:
            raise ValueError(f"Unhandled state action: {action}")
