from __future__ import annotations

import imaplib
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import ActionError, AuthenticationError, SessionConnectionError
from core.models import HEADER_FIELDS
from providers import imap
from providers.imap import IMAPSession, parse_fetch_response, parse_label_list


def test_parse_fetch_response_with_header_literal() -> None:
    data = [
        (b"1 (UID 42 BODY[HEADER.FIELDS (FROM TO CC SUBJECT)] {32}", b"From: a@example.org\r\nSubject: Hi\r\n\r\n"),
        b")",
        (b"2 (UID 43 BODY[HEADER.FIELDS (FROM TO CC SUBJECT)] {4}", b"\r\n\r\n"),
        b")",
    ]

    records = parse_fetch_response(data)

    assert [(r.uid, r.seq) for r in records] == [("42", 1), ("43", 2)]
    assert records[0].header.startswith(b"From: a@example.org")


def test_parse_fetch_response_with_labels_and_status() -> None:
    data = [
        b'1 (X-GM-LABELS (\\Inbox \\Important "My Label" "Say \\"hi\\"") UID 42)',
        b'2 (UID 43 INTERNALDATE "17-Jul-2025 02:44:25 -0700" FLAGS (\\Seen \\Flagged))',
    ]

    labels, status = parse_fetch_response(data)

    assert labels.labels == {"\\Inbox", "\\Important", "My Label", 'Say "hi"'}
    assert status.flags == {"\\Seen", "\\Flagged"}
    assert status.is_read
    assert status.internal_date == datetime(2025, 7, 17, 2, 44, 25, tzinfo=timezone(timedelta(hours=-7)))


def test_parse_fetch_response_skips_entries_without_uid() -> None:
    assert parse_fetch_response([b"1 (FLAGS (\\Seen))", None]) == []


def test_parse_label_list_without_labels() -> None:
    assert parse_label_list(b"1 (UID 4 FLAGS ())") == set()
    assert parse_label_list(b"1 (X-GM-LABELS () UID 4)") == set()


class FakeIMAP:
    """Stands in for imaplib.IMAP4_SSL."""

    fail_login = False
    instances: list[FakeIMAP] = []

    def __init__(self, host, port=None, ssl_context=None, timeout=None):
        self.host = host
        self.commands = []
        self.selected = []
        self.closed = False
        self.store_result = ("OK", [b"done"])
        self.instances.append(self)

    def login(self, user, password):
        if self.fail_login:
            raise imaplib.IMAP4.error("[AUTHENTICATIONFAILED] Invalid credentials")
        return "OK", [b"logged in"]

    def select(self, mailbox):
        self.selected.append(mailbox)
        return "OK", [b"3"]

    def response(self, code):
        return code, [b"777"]

    def logout(self):
        return "BYE", []

    def shutdown(self):
        self.closed = True

    def uid(self, command, *args):
        self.commands.append((command,) + args)
        if command == "SEARCH":
            return "OK", [b"4 5 6"]
        if command == "FETCH":
            return "OK", [(b"1 (UID 4 BODY[HEADER.FIELDS (FROM TO CC SUBJECT)] {4}", b"\r\n\r\n"), b")"]
        if command == "STORE":
            return self.store_result
        raise AssertionError(command)

    def list(self):
        return "OK", [
            b'(\\HasNoChildren) "/" "INBOX"',
            b'(\\HasNoChildren) "/" "Receipts"',
            b'(\\HasChildren \\Noselect) "/" "[Gmail]"',
            (b'(\\HasNoChildren) "/" {9}', b"Odd Label"),
        ]

    def create(self, name):
        self.commands.append(("CREATE", name))
        return "OK", [b"created"]


@pytest.fixture
def fake_imap(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(imap.imaplib, "IMAP4_SSL", FakeIMAP)
    monkeypatch.setattr(FakeIMAP, "fail_login", False)
    monkeypatch.setattr(FakeIMAP, "instances", [])
    return FakeIMAP


def connected_session() -> IMAPSession:
    session = IMAPSession("imap.example.org", "me", "pw")
    session.connect()
    return session


def test_connect_reads_uid_validity(fake_imap) -> None:
    session = connected_session()

    assert session.uid_validity() == "777"


def test_rejected_login_is_an_authentication_error(fake_imap) -> None:
    fake_imap.fail_login = True

    with pytest.raises(AuthenticationError):
        IMAPSession("imap.example.org", "me", "wrong").connect()


def test_rejected_login_closes_the_socket(fake_imap) -> None:
    fake_imap.fail_login = True
    session = IMAPSession("imap.example.org", "me", "wrong")

    with pytest.raises(AuthenticationError):
        session.connect()

    assert [conn.closed for conn in fake_imap.instances] == [True]
    assert session._connection is None


def test_select_quotes_mailbox_and_rereads_uid_validity(fake_imap) -> None:
    session = connected_session()

    session.select("[Gmail]/All Mail")

    assert session.connection.selected == ['"INBOX"', '"[Gmail]/All Mail"']
    assert session.selected == "[Gmail]/All Mail"
    assert session.uid_validity() == "777"


def test_unreachable_server_is_a_connection_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(imap.imaplib, "IMAP4_SSL", refuse)

    with pytest.raises(SessionConnectionError):
        IMAPSession("imap.example.org", "me", "pw").connect()


def test_search_fetch_and_store_use_uid_commands(fake_imap) -> None:
    session = connected_session()

    assert session.search("UNSEEN") == ["4", "5", "6"]
    assert [r.uid for r in session.fetch(["4"], HEADER_FIELDS)] == ["4"]
    session.mutate("4", "+X-GM-LABELS", '("Receipts")')

    assert session.connection.commands == [
        ("SEARCH", None, "UNSEEN"),
        ("FETCH", "4", HEADER_FIELDS),
        ("STORE", "4", "+X-GM-LABELS", '("Receipts")'),
    ]


def test_rejected_store_is_an_action_error(fake_imap) -> None:
    session = connected_session()
    session.connection.store_result = ("NO", [b"[CANNOT] nope"])

    with pytest.raises(ActionError, match="UID 4"):
        session.mutate("4", "+FLAGS", "(\\Deleted)")


def test_list_and_create_mailboxes(fake_imap) -> None:
    session = connected_session()

    assert session.list_mailboxes() == ["INBOX", "Receipts", "[Gmail]", "Odd Label"]
    session.create_mailbox('Say "hi"')
    assert session.connection.commands[-1] == ("CREATE", '"Say \\"hi\\""')


def test_commands_require_a_connection() -> None:
    with pytest.raises(SessionConnectionError):
        IMAPSession("imap.example.org", "me", "pw").search("ALL")
