from __future__ import annotations

from pathlib import Path

import pytest

import core.config
from core.labels import LabelStore
from tests.helpers import FakeSession


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def labels(session: FakeSession) -> LabelStore:
    return LabelStore(session)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in (
        "IMAP_DOMAIN",
        "IMAP_USERNAME",
        "IMAP_PASSWORD",
        "IMAP_PASSWORD_OP_REF",
        "IMAP_FILTER_CONFIG",
        "IMAP_FILTER_DRY_RUN",
        "IMAP_FILTER_LOG_LEVEL",
        "IMAP_FILTER_CHECKPOINT_FILE",
        "OP_ITEM",
        "OP_FIELD",
        "OP_VAULT",
        "OP_ACCOUNT",
    ):
        monkeypatch.delenv(name, raising=False)
    # Keep the user's own config file out of the search path
    monkeypatch.setattr(core.config, "DEFAULT_CONFIG_PATHS", [Path("imap-filter.yml")])
    monkeypatch.chdir(tmp_path)
