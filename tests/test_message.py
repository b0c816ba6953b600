from __future__ import annotations

import logging

import pytest

from core.errors import HeaderParseError
from core.models import FetchRecord, Message, ProcessingResult, parse_address_list
from tests.helpers import make_header


def test_parse_address_list_returns_name_and_address_pairs() -> None:
    parsed = parse_address_list('"Doe, Jane" <jane@example.org>, bob@example.org')

    assert parsed == [("Doe, Jane", "jane@example.org"), ("", "bob@example.org")]


def test_parse_address_list_flattens_groups() -> None:
    parsed = parse_address_list("Team: a@example.org, b@example.org;")

    assert [addr for _, addr in parsed] == ["a@example.org", "b@example.org"]


@pytest.mark.parametrize("raw", [None, "", "   ", "undisclosed-recipients:;"])
def test_parse_address_list_empty_values(raw) -> None:
    assert parse_address_list(raw) == []


def test_parse_address_list_decodes_encoded_display_names() -> None:
    parsed = parse_address_list("=?utf-8?q?J=C3=BCrgen?= <juergen@example.org>")

    assert parsed == [("Jürgen", "juergen@example.org")]


def test_parse_address_list_rejects_garbage() -> None:
    with pytest.raises(HeaderParseError):
        parse_address_list("<>")


def test_message_from_record_reads_all_fields() -> None:
    record = FetchRecord(
        uid="7",
        seq=3,
        header=make_header(
            to="Alice <alice@example.org>",
            cc="bob@example.org, carol@example.org",
            sender="Shop <noreply@shop.test>",
            subject="=?utf-8?q?Re=C3=A7u?=",
        ),
    )

    message = Message.from_record(record)

    assert message.uid == "7"
    assert message.seq == 3
    assert message.to_addresses == ["alice@example.org"]
    assert message.cc_addresses == ["bob@example.org", "carol@example.org"]
    assert message.from_addresses == ["noreply@shop.test"]
    assert message.subject == "Reçu"


def test_message_from_record_unfolds_folded_headers() -> None:
    record = FetchRecord(
        uid="8",
        header=make_header(
            to="Jane\r\n Doe <jane@example.org>,\r\n\tbob@example.org",
            subject="Your receipt\r\n for order 123",
        ),
    )

    message = Message.from_record(record)

    assert message.subject == "Your receipt for order 123"
    assert message.to == (("Jane Doe", "jane@example.org"), ("", "bob@example.org"))


def test_parse_address_list_unfolds_display_names() -> None:
    parsed = parse_address_list('"Doe,\r\n Jane" <jane@example.org>')

    assert parsed == [("Doe, Jane", "jane@example.org")]


def test_message_from_record_keeps_message_when_header_is_unparsable(caplog: pytest.LogCaptureFixture) -> None:
    record = FetchRecord(uid="9", header=make_header(to="<>", subject="Still here"))

    with caplog.at_level(logging.WARNING):
        message = Message.from_record(record)

    assert message.uid == "9"
    assert message.to == ()
    assert message.subject == "Still here"
    assert "To header ignored" in caplog.text


def test_message_from_record_with_missing_headers() -> None:
    message = Message.from_record(FetchRecord(uid="1", header=make_header(to=None, sender=None, subject=None)))

    assert message.to == ()
    assert message.sender == ()
    assert message.subject == ""


def test_fetch_record_read_state() -> None:
    assert FetchRecord(uid="1", flags={"\\Seen"}).is_read
    assert not FetchRecord(uid="1", flags={"\\Flagged"}).is_read


def test_processing_result_merge_sums_counts() -> None:
    first = ProcessingResult(processed_count=2, success_count=1)
    first.add_match("a", "1")
    second = ProcessingResult(processed_count=3)
    second.add_match("a", "2")
    second.add_match("b", "3")
    second.add_error("boom")

    total = first.merge(second)

    assert total.processed_count == 5
    assert total.matched_count == 3
    assert total.success_count == 1
    assert total.error_count == 1
    assert total.rule_counts == {"a": 2, "b": 1}
    assert total.matches == {"a": ["1", "2"], "b": ["3"]}
    assert first.rule_counts == {"a": 1}
