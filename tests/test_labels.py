from __future__ import annotations

from core.labels import INBOX, STARRED, LabelStore, label_command, quote_label
from core.models import LABEL_FIELDS
from tests.helpers import FakeMessage, FakeSession


def test_quote_label_escapes_quotes_and_backslashes() -> None:
    assert quote_label("Receipts") == '"Receipts"'
    assert quote_label('Say "hi"') == '"Say \\"hi\\""'
    assert quote_label("\\Starred") == '"\\\\Starred"'
    assert label_command("a b") == '("a b")'


def test_set_label_is_idempotent() -> None:
    session = FakeSession([FakeMessage(uid="1")])
    store = LabelStore(session)

    assert store.set_label("1", "Receipts") is True
    assert store.set_label("1", "Receipts") is False

    assert session.mutations == [("1", "+X-GM-LABELS", '("Receipts")')]


def test_set_label_skips_when_label_already_present() -> None:
    session = FakeSession([FakeMessage(uid="1", labels={INBOX, STARRED})])

    assert LabelStore(session).set_label("1", STARRED) is False
    assert session.mutations == []


def test_del_label_may_be_repeated() -> None:
    session = FakeSession([FakeMessage(uid="1")])
    store = LabelStore(session)

    store.del_label("1", INBOX)
    store.del_label("1", INBOX)

    assert session.mutations == [
        ("1", "-X-GM-LABELS", label_command(INBOX)),
        ("1", "-X-GM-LABELS", label_command(INBOX)),
    ]
    assert INBOX not in session.messages["1"].labels


def test_move_adds_destination_before_removing_source() -> None:
    session = FakeSession([FakeMessage(uid="1")], mailboxes=("INBOX", "Receipts"))

    LabelStore(session).move("1", "Receipts")

    assert session.mutations == [
        ("1", "+X-GM-LABELS", '("Receipts")'),
        ("1", "-X-GM-LABELS", label_command(INBOX)),
    ]
    assert session.messages["1"].labels == {"Receipts"}
    assert session.created == []


def test_ensure_exists_creates_missing_label_once() -> None:
    session = FakeSession([FakeMessage(uid="1"), FakeMessage(uid="2")])
    store = LabelStore(session)

    store.move("1", "Archive/2026")
    store.move("2", "Archive/2026")

    assert session.created == ["Archive/2026"]


def test_mark_deleted_sets_deleted_flag() -> None:
    session = FakeSession([FakeMessage(uid="5")])

    LabelStore(session).mark_deleted("5")

    assert session.mutations == [("5", "+FLAGS", "(\\Deleted)")]
    assert "\\Deleted" in session.messages["5"].flags


def test_is_protected() -> None:
    session = FakeSession([FakeMessage(uid="1", labels={"\\Important"}), FakeMessage(uid="2")])
    store = LabelStore(session)

    assert store.is_protected("1")
    assert not store.is_protected("2")
    assert store.is_protected("2", labels={STARRED})


def test_uncached_store_rereads_labels_every_time() -> None:
    session = FakeSession([FakeMessage(uid="1")])
    store = LabelStore(session)

    store.get_labels("1")
    store.get_labels("1")

    assert [spec for _, spec in session.fetches] == [LABEL_FIELDS, LABEL_FIELDS]


def test_cache_is_updated_after_mutations() -> None:
    session = FakeSession([FakeMessage(uid="1")], mailboxes=("INBOX", "Receipts"))
    store = LabelStore(session, cache=True)

    assert store.get_labels("1") == {INBOX}
    store.move("1", "Receipts")

    assert store.get_labels("1") == {"Receipts"}
    assert store.set_label("1", "Receipts") is False
    assert len(session.fetches) == 1
