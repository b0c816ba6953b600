"""
One sequential policy pass over a mailbox.

Fetches inbox headers and runs the filters, advancing the incremental
checkpoint, then runs the retention states. Filters move messages out of the
inbox, so the retention pass can select a wider mailbox (on Gmail,
"[Gmail]/All Mail") to reach them. Meant to be invoked periodically by an
external scheduler.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Sequence

from core.filters import FilterEngine, MessageFilter
from core.labels import INBOX, LabelStore
from core.models import HEADER_FIELDS, Message, ProcessingResult
from core.retention import RetentionEngine, RetentionState
from core.state import CheckpointStore

if TYPE_CHECKING:
    from providers.base import MailSession

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Results of one pass."""
    filters: ProcessingResult = field(default_factory=ProcessingResult)
    states: ProcessingResult = field(default_factory=ProcessingResult)
    checkpoint: Optional[int] = None

    @property
    def total(self) -> ProcessingResult:
        return self.filters.merge(self.states)


class PolicyRunner:
    """
    Runs filters and retention states against one session.

    Args:
        session: Connected mail session
        filters: Filters in configured order
        states: Retention states in configured order
        dry_run: Log every mutation instead of issuing it
        inbox_label: Source label removed by moves
        label_cache: Cache label reads for the pass
        checkpoint: Checkpoint store for incremental fetch, or None to fetch
                    the whole inbox
        states_mailbox: Mailbox selected before the retention pass, or None
                        to search the mailbox the session already has open
        mailbox: Mailbox the filters run against, reselected after a
                 retention pass over states_mailbox

    Example:
        with IMAPSession(host, user, password) as session:
            report = PolicyRunner(session, config.filters, config.states).run()
    """

    def __init__(
        self,
        session: "MailSession",
        filters: Sequence[MessageFilter] = (),
        states: Sequence[RetentionState] = (),
        dry_run: bool = False,
        inbox_label: str = INBOX,
        label_cache: bool = False,
        checkpoint: Optional[CheckpointStore] = None,
        states_mailbox: Optional[str] = None,
        mailbox: str = "INBOX",
    ):
        self.session = session
        self.filters = list(filters)
        self.states = list(states)
        self.dry_run = dry_run
        self.checkpoint = checkpoint
        self.states_mailbox = states_mailbox
        self.mailbox = mailbox
        self._on_states_mailbox = False
        self.last_checkpoint: Optional[int] = None
        self.labels = LabelStore(session, cache=label_cache)
        self.filter_engine = FilterEngine(self.labels, inbox_label=inbox_label, dry_run=dry_run)
        self.retention_engine = RetentionEngine(session, self.labels, inbox_label=inbox_label, dry_run=dry_run)

    def fetch_messages(self) -> List[Message]:
        """
        Fetch inbox headers, bounded by the checkpoint when one is set.
        """
        last_uid = None
        if self.checkpoint is not None:
            last_uid = self.checkpoint.load_checkpoint(self.session.uid_validity())

        query = "ALL" if last_uid is None else f"UID {last_uid + 1}:*"
        logger.debug(f"Fetching messages with query {query}")
        uids = self.session.search(query)
        if last_uid is not None:
            # "n:*" always includes the highest UID, even when it is below n
            uids = [uid for uid in uids if int(uid) > last_uid]
        logger.debug(f"Found {len(uids)} messages in inbox")

        messages = [Message.from_record(record) for record in self.session.fetch(uids, HEADER_FIELDS)]
        logger.debug(f"Successfully fetched {len(messages)} messages")
        return messages

    def run_filters(self) -> ProcessingResult:
        """
        Run the filter pass over the inbox.

        The checkpoint advances to the highest fetched UID, except in dry-run
        mode, where the next real run must see the same messages.
        """
        if self._on_states_mailbox:
            self._select(self.mailbox)
            self._on_states_mailbox = False
        messages = self.fetch_messages()
        result = self.filter_engine.apply(self.filters, messages)
        if messages and self.checkpoint is not None and not self.dry_run:
            self.last_checkpoint = max(int(m.uid) for m in messages)
            self.checkpoint.save_checkpoint(self.last_checkpoint, self.session.uid_validity())
        return result

    def _select(self, mailbox: str) -> None:
        # UIDs, and so cached labels, are per mailbox
        self.session.select(mailbox)
        self.labels.forget()

    def run_states(self, now: Optional[datetime] = None) -> ProcessingResult:
        """
        Run the retention pass, selecting the states mailbox first when one is set.
        """
        if self.states_mailbox:
            logger.info(f"Selecting {self.states_mailbox} for retention states")
            self._select(self.states_mailbox)
            self._on_states_mailbox = True
        return self.retention_engine.evaluate(self.states, now=now)

    def run(self, now: Optional[datetime] = None, filters: bool = True, states: bool = True) -> RunReport:
        """
        Execute the pass.

        Args:
            now: Reference time for retention ages (default: now, UTC)
            filters: Run the filter pass
            states: Run the retention pass

        Returns:
            RunReport with both engine results
        """
        report = RunReport()
        if filters:
            report.filters = self.run_filters()
            report.checkpoint = self.last_checkpoint
        if states:
            report.states = self.run_states(now)
        return report
