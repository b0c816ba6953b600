"""
Selection query validation.

Retention states select candidates with a query in the server's search
grammar. Queries are checked against a restricted vocabulary before any
network call so a typo fails its own state instead of reaching the server.

Usage:
    from core.query import validate_query

    validate_query('SEEN NOT X-GM-LABELS "\\Starred"')  # ok
    validate_query("SEEN SINCE 01-Jan-2024")            # QueryValidationError
"""

from core.errors import QueryValidationError

STATUS_KEYWORDS = frozenset({
    "ALL", "ANSWERED", "DELETED", "DRAFT", "FLAGGED", "NEW", "OLD",
    "RECENT", "SEEN", "UNANSWERED", "UNDELETED", "UNDRAFT", "UNFLAGGED", "UNSEEN",
})

COMBINATORS = frozenset({"AND", "OR", "NOT"})

# Gmail label addressing, plus INBOX which Gmail accepts as a label name
LABEL_KEYWORDS = frozenset({"X-GM-LABELS", "INBOX"})

KEYWORDS = STATUS_KEYWORDS | COMBINATORS | LABEL_KEYWORDS

# Backslash names accepted inside a query: IMAP system flags and Gmail system labels
KNOWN_FLAGS = frozenset({
    "\\SEEN", "\\ANSWERED", "\\FLAGGED", "\\DELETED", "\\DRAFT", "\\RECENT",
    "\\STARRED", "\\IMPORTANT", "\\INBOX", "\\SENT", "\\TRASH", "\\SPAM",
    "\\JUNK", "\\DRAFTS", "\\ALL",
})


def validate_query(query: str) -> str:
    """
    Check a selection query against the supported vocabulary.

    Each whitespace-separated token, once parentheses and double quotes are
    stripped, must be a keyword, a known backslash flag, or alphanumeric.

    Args:
        query: Search criteria string

    Returns:
        The query, stripped of surrounding whitespace

    Raises:
        QueryValidationError: If the query is empty or contains an
            unsupported token
    """
    if query is None or not str(query).strip():
        raise QueryValidationError("IMAP query must not be empty")

    for token in query.split():
        t = token.strip('()"')
        if not t:
            continue
        upper = t.upper()
        if upper in KEYWORDS:
            continue
        if t.startswith("\\"):
            if upper not in KNOWN_FLAGS:
                raise QueryValidationError(f"Unknown or improperly escaped IMAP flag '{t}' in query: {query}")
            continue
        if t.isalnum():
            continue
        raise QueryValidationError(f"Unsupported or malformed token in IMAP query: '{token}'")

    return query.strip()
