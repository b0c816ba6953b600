"""
Core mailbox policy engine.

Provides the message model, wildcard matchers, filters, retention states,
label primitives and configuration shared by the CLI and the sessions.
"""

from core.errors import (
    MailPolicyError,
    ConfigError,
    SessionConnectionError,
    AuthenticationError,
    QueryValidationError,
    HeaderParseError,
    ActionError,
)
from core.models import FetchRecord, Message, ProcessingResult, parse_address_list
from core.patterns import AddressFilter, SubjectFilter, compile_pattern
from core.labels import LabelStore, PROTECTIVE_LABELS, INBOX, STARRED, IMPORTANT
from core.query import validate_query
from core.filters import ActionKind, FilterAction, FilterMatch, MessageFilter, FilterEngine
from core.retention import (
    TTL,
    TTLKind,
    StateAction,
    StateActionKind,
    RetentionState,
    RetentionEngine,
    parse_duration,
)
from core.state import CheckpointStore
from core.config import Config, load_config, create_sample_config
from core.runner import PolicyRunner, RunReport

__all__ = [
    "MailPolicyError",
    "ConfigError",
    "SessionConnectionError",
    "AuthenticationError",
    "QueryValidationError",
    "HeaderParseError",
    "ActionError",
    "FetchRecord",
    "Message",
    "ProcessingResult",
    "parse_address_list",
    "AddressFilter",
    "SubjectFilter",
    "compile_pattern",
    "LabelStore",
    "PROTECTIVE_LABELS",
    "INBOX",
    "STARRED",
    "IMPORTANT",
    "validate_query",
    "ActionKind",
    "FilterAction",
    "FilterMatch",
    "MessageFilter",
    "FilterEngine",
    "TTL",
    "TTLKind",
    "StateAction",
    "StateActionKind",
    "RetentionState",
    "RetentionEngine",
    "parse_duration",
    "CheckpointStore",
    "Config",
    "load_config",
    "create_sample_config",
    "PolicyRunner",
    "RunReport",
]
