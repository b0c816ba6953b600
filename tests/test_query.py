from __future__ import annotations

import pytest

from core.errors import QueryValidationError
from core.query import validate_query


@pytest.mark.parametrize(
    "query",
    [
        "SEEN",
        "unseen",
        "ALL",
        "NOT FLAGGED",
        "OR SEEN ANSWERED",
        'X-GM-LABELS "\\Starred"',
        "X-GM-LABELS ToBeDeleted",
        '(SEEN NOT X-GM-LABELS "\\Important")',
        "INBOX UNDELETED",
    ],
)
def test_supported_queries_pass(query: str) -> None:
    assert validate_query(query) == query.strip()


def test_surrounding_whitespace_is_stripped() -> None:
    assert validate_query("  SEEN  ") == "SEEN"


@pytest.mark.parametrize("query", ["", "   "])
def test_empty_query_is_rejected(query: str) -> None:
    with pytest.raises(QueryValidationError):
        validate_query(query)


@pytest.mark.parametrize(
    "query",
    [
        "SEEN SINCE 01-Jan-2024",
        'X-GM-LABELS "\\Bogus"',
        "FROM someone@example.org",
        "SEEN;",
    ],
)
def test_unsupported_tokens_are_rejected(query: str) -> None:
    with pytest.raises(QueryValidationError):
        validate_query(query)
