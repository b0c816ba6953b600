"""
Message filters and the filter engine.

A MessageFilter matches on From, To, Cc and Subject. Each address field has
three distinct configurations:

    absent            any value matches, including no addresses
    present, empty    matches only when the message has no such addresses
                      (e.g. ``cc: []`` means "no Cc allowed")
    present, patterns matches when any pattern matches any address

The subject matches when its pattern list is empty or any pattern matches.
A message matches the filter when all four fields match.

The FilterEngine evaluates filters in configured order. A message that
matches a filter receives all of that filter's actions, in order, and is
then removed from consideration, so each message matches at most one filter.
Messages that match no filter are left untouched.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from core.errors import ConfigError, SessionConnectionError
from core.labels import IMPORTANT, INBOX, STARRED, LabelStore
from core.models import Message, ProcessingResult
from core.patterns import AddressFilter, SubjectFilter

logger = logging.getLogger(__name__)


class ActionKind(Enum):
    """Actions a matched filter can apply."""
    STAR = "Star"
    FLAG = "Flag"
    MOVE = "Move"


@dataclass(frozen=True)
class FilterAction:
    """One filter action. ``label`` is set only for MOVE."""
    kind: ActionKind
    label: Optional[str] = None

    def __post_init__(self):
        if (self.kind is ActionKind.MOVE) != bool(self.label):
            raise ConfigError(f"Move requires a label and only Move takes one: {self.kind.value} {self.label!r}")

    def __str__(self) -> str:
        if self.kind is ActionKind.MOVE:
            return f"Move:{self.label}"
        return self.kind.value

    @classmethod
    def star(cls) -> "FilterAction":
        return cls(ActionKind.STAR)

    @classmethod
    def flag(cls) -> "FilterAction":
        return cls(ActionKind.FLAG)

    @classmethod
    def move(cls, label: str) -> "FilterAction":
        return cls(ActionKind.MOVE, label)

    @classmethod
    def parse(cls, raw: Any) -> "FilterAction":
        """
        Parse one configured action.

        Accepts ``"Star"``, ``"Flag"``, ``"Move:Label"`` or ``{"Move": "Label"}``.

        Raises:
            ConfigError: For any other form
        """
        if isinstance(raw, str):
            name = raw.strip()
            if name.lower() == "star":
                return cls.star()
            if name.lower() == "flag":
                return cls.flag()
            if name.lower().startswith("move:"):
                label = name[len("move:"):].strip()
                if label:
                    return cls.move(label)
            raise ConfigError(f"Invalid action: {raw!r}")

        if isinstance(raw, dict) and len(raw) == 1:
            key, value = next(iter(raw.items()))
            if str(key).lower() == "move" and isinstance(value, str) and value.strip():
                return cls.move(value.strip())
            raise ConfigError(f"Invalid action mapping: {raw!r} (expected {{Move: label}})")

        raise ConfigError(f"Invalid action: {raw!r}")


def parse_actions(raw: Any) -> Tuple[FilterAction, ...]:
    """Parse a single action or a list of actions."""
    if raw is None:
        return ()
    if isinstance(raw, (str, dict)):
        return (FilterAction.parse(raw),)
    if isinstance(raw, list):
        return tuple(FilterAction.parse(item) for item in raw)
    raise ConfigError(f"Actions must be a single action or a list, got {raw!r}")


def parse_patterns(raw: Any, field_name: str) -> List[str]:
    """Normalize a scalar-or-list pattern field into a list of strings."""
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and all(isinstance(p, str) for p in raw):
        return list(raw)
    raise ConfigError(
        f"'{field_name}' must be a pattern string or a list of pattern strings, got {raw!r}"
    )


@dataclass(frozen=True)
class FilterMatch:
    """Per-field outcome of comparing one message against one filter."""
    sender: bool
    to: bool
    cc: bool
    subject: bool

    @property
    def matched(self) -> bool:
        return self.sender and self.to and self.cc and self.subject


def _field_matches(address_filter: Optional[AddressFilter], addresses: Sequence[str]) -> bool:
    if address_filter is None:
        return True
    if not address_filter.patterns:
        return not addresses
    return address_filter.matches(addresses)


FILTER_KEYS = {"to", "cc", "from", "subject", "action", "actions"}


@dataclass(frozen=True)
class MessageFilter:
    """
    A named filter over From/To/Cc/Subject with an ordered action list.

    Attributes:
        name: Configuration key the filter was defined under
        to: To-field matcher, None when not configured
        cc: Cc-field matcher, None when not configured
        sender: From-field matcher, None when not configured
        subject: Subject matcher (empty matches every subject)
        actions: Actions applied, in order, to each matched message
    """
    name: str
    to: Optional[AddressFilter] = None
    cc: Optional[AddressFilter] = None
    sender: Optional[AddressFilter] = None
    subject: SubjectFilter = SubjectFilter()
    actions: Tuple[FilterAction, ...] = ()

    @classmethod
    def from_config(cls, name: str, data: Optional[Dict[str, Any]]) -> "MessageFilter":
        """
        Build a filter from its configuration mapping.

        Raises:
            ConfigError: On unknown keys, malformed patterns or actions
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Filter '{name}' must be a mapping, got {data!r}")

        unknown = set(data) - FILTER_KEYS
        if unknown:
            raise ConfigError(f"Filter '{name}' has unknown keys: {sorted(unknown)}")
        if "action" in data and "actions" in data:
            raise ConfigError(f"Filter '{name}' sets both 'action' and 'actions'")

        def address_filter(key: str) -> Optional[AddressFilter]:
            if key not in data:
                return None
            if data[key] is None:
                raise ConfigError(f"'{key}' is empty; use [] to require no addresses")
            return AddressFilter(parse_patterns(data[key], key))

        try:
            subject = data.get("subject")
            return cls(
                name=name,
                to=address_filter("to"),
                cc=address_filter("cc"),
                sender=address_filter("from"),
                subject=SubjectFilter(parse_patterns(subject, "subject") if subject is not None else []),
                actions=parse_actions(data.get("actions", data.get("action"))),
            )
        except ConfigError as e:
            raise ConfigError(f"Filter '{name}': {e}") from e

    def compare(self, message: Message) -> FilterMatch:
        """Evaluate each field of the filter against the message."""
        result = FilterMatch(
            sender=_field_matches(self.sender, message.from_addresses),
            to=_field_matches(self.to, message.to_addresses),
            cc=_field_matches(self.cc, message.cc_addresses),
            subject=self.subject.matches(message.subject),
        )

        def mark(value: bool) -> str:
            return "T" if value else "F"

        logger.debug(
            f"\n    subject: {message.subject}"
            f"\n[{mark(result.sender)}] from: {message.from_addresses}"
            f"\n[{mark(result.to)}] to: {message.to_addresses}"
            f"\n[{mark(result.cc)}] cc: {message.cc_addresses}"
            f"\n[{mark(result.subject)}] subject"
            f"\n[{mark(result.matched)}]"
        )
        return result

    def matches(self, message: Message) -> bool:
        return self.compare(message).matched

    def describe(self) -> str:
        """Multi-line summary for display."""
        lines = [self.name]
        if self.to is not None:
            lines.append(f"    to: {list(self.to.patterns)}")
        if self.cc is not None:
            lines.append(f"    cc: {list(self.cc.patterns)}")
        if self.sender is not None:
            lines.append(f"    from: {list(self.sender.patterns)}")
        if self.subject:
            lines.append(f"    subject: {list(self.subject.patterns)}")
        lines.append(f"    actions: {[str(a) for a in self.actions]}")
        return "\n".join(lines)


class FilterEngine:
    """
    Applies an ordered list of filters to the working message set.

    Args:
        labels: Label store bound to the session
        inbox_label: Label removed from a message when it is moved
        dry_run: Log actions instead of issuing them
    """

    def __init__(self, labels: LabelStore, inbox_label: str = INBOX, dry_run: bool = False):
        self.labels = labels
        self.inbox_label = inbox_label
        self.dry_run = dry_run

    def apply(self, filters: Iterable[MessageFilter], messages: Iterable[Message]) -> ProcessingResult:
        """
        Run every filter, in order, over the messages not yet matched.

        Returns:
            ProcessingResult with per-filter match counts and any action errors
        """
        remaining = list(messages)
        result = ProcessingResult(processed_count=len(remaining))
        logger.info(f"Applying filters to {len(remaining)} messages")

        for message_filter in filters:
            logger.info(f"Applying filter: {message_filter.name}")

            matched: List[Message] = []
            unmatched: List[Message] = []
            for message in remaining:
                (matched if message_filter.matches(message) else unmatched).append(message)
            remaining = unmatched

            if not matched:
                logger.info(f"No messages matched filter: {message_filter.name}")
                continue

            for message in matched:
                result.add_match(message_filter.name, message.uid)
                logger.info(
                    f"Matched filter '{message_filter.name}': SUBJECT '{message.subject}' "
                    f"FROM {message.from_addresses} TO {message.to_addresses} CC {message.cc_addresses}"
                )
                for action in message_filter.actions:
                    self._apply_action(message_filter, action, message, result)

        result.skipped_count = len(remaining)
        logger.info(
            f"Finished applying filters: {result.matched_count} matched, "
            f"{result.skipped_count} untouched, {result.error_count} errors"
        )
        return result

    def _apply_action(
        self,
        message_filter: MessageFilter,
        action: FilterAction,
        message: Message,
        result: ProcessingResult,
    ) -> None:
        if self.dry_run:
            logger.info(f"[DRY RUN] Would apply {action} to UID {message.uid} | Subject: {message.subject}")
            result.dry_run_count += 1
            return

        try:
            self.execute(action, message)
        except SessionConnectionError:
            raise
        except Exception as e:
            error = f"Filter '{message_filter.name}' action {action} failed on UID {message.uid}: {e} | Subject: {message.subject}"
            logger.error(error)
            result.add_error(error)
            return

        logger.info(f"Applied {action} to UID {message.uid} | Subject: {message.subject}")
        result.success_count += 1

    def execute(self, action: FilterAction, message: Message) -> None:
        """Issue the label operations for one action."""
        if action.kind is ActionKind.STAR:
            self.labels.set_label(message.uid, STARRED, message.subject)
        elif action.kind is ActionKind.FLAG:
            self.labels.set_label(message.uid, IMPORTANT, message.subject)
        elif action.kind is ActionKind.MOVE:
            self.labels.move(message.uid, action.label, self.inbox_label, message.subject)
        else:
            raise ValueError(f"Unhandled filter action: {action}")
