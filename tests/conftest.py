"""
Shared fixtures: a fresh SQLite database per test, cheap bcrypt, and
in-memory notification senders.
"""

import threading

import pytest

from release_gate.core import config, dao, release_service
from release_gate.core.codes import hash_access_code
from release_gate.core.db import init_db
from release_gate.core.mailer import NotificationSender
from release_gate.core.schema import Letter, PermissionRecord, TrustedContact


class RecordingSender(NotificationSender):
    """Records every send. Recipients listed in fail_for report failure."""

    def __init__(self, fail_for=(), delay: float = 0.0):
        self.fail_for = set(fail_for)
        self.delay = delay
        self.sent = []
        self.attempts = []
        self._lock = threading.Lock()

    def send(self, message) -> bool:
        if self.delay:
            threading.Event().wait(self.delay)
        with self._lock:
            self.attempts.append(message)
            if message.recipient in self.fail_for:
                return False
            self.sent.append(message)
        return True

    def recipients(self):
        return sorted(message.recipient for message in self.sent)


class HangingSender(NotificationSender):
    """Blocks until released. Used to prove nothing waits on a send."""

    def __init__(self):
        self.release = threading.Event()
        self.entered = threading.Event()

    def send(self, message) -> bool:
        self.entered.set()
        self.release.wait(10)
        return True


@pytest.fixture(autouse=True)
def test_db(tmp_path, monkeypatch):
    """Point the store at a temporary database for each test."""
    db_path = tmp_path / "release_gate_test.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    init_db()
    yield str(db_path)


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(config, "BCRYPT_ROUNDS", 4)


@pytest.fixture(autouse=True)
def reset_dispatcher():
    release_service.set_dispatcher(None)
    yield
    release_service.set_dispatcher(None)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def owner():
    """
    Owner O locked with code 482913; executor@example.org is the accepted,
    designated executor (contact exec-1) with letters and documents access.
    """
    dao.save_trusted_contact(TrustedContact(
        contact_ref="exec-1",
        owner_id="owner-1",
        name="Ada Executor",
        email="executor@example.org",
        permissions=PermissionRecord(can_view_letters=True, can_view_documents=True)
    ))
    dao.save_relationship("executor@example.org", "owner-1", "exec-1", "accepted")
    dao.upsert_release_record("owner-1", True, hash_access_code("482913"), "exec-1", "Olive Owner")
    return "owner-1"


def add_letter(letter_id: str, owner_id: str = "owner-1", release_type: str = "after_death", **kwargs) -> Letter:
    kwargs.setdefault("body", f"Letter {letter_id}")
    letter = Letter(letter_id=letter_id, owner_id=owner_id, release_type=release_type, **kwargs)
    dao.save_letter(letter)
    return letter
