"""Shared fixtures: app with a temporary SQLite database, account/content factories."""

from __future__ import annotations

import itertools
import os
import sys
import threading
import time
from datetime import datetime

import pytest
from sqlalchemy import event

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from account_merge.app import create_app
from account_merge.database import db
from account_merge.models import Account, MediaFile, TravelEntry


@pytest.fixture
def app(monkeypatch, tmp_path):
    """Create test Flask app with a temporary SQLite database file."""
    monkeypatch.setenv("SECRET_KEY", "test_secret_key_for_testing_only")
    monkeypatch.setenv("FLASK_ENV", "local_test")
    monkeypatch.setenv("ACCOUNT_MERGE_DB_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("PUBLIC_APP_URL", "https://journal.example")
    monkeypatch.setenv("FRONTEND_URL", "https://app.journal.example")
    monkeypatch.setenv("SITE_NAME", "Journal")
    monkeypatch.delenv("ACCOUNT_MERGE_DATABASE_URL", raising=False)
    monkeypatch.delenv("SEED_DEMO_ACCOUNTS", raising=False)
    monkeypatch.delenv("MERGE_INVITATION_EXPIRY_DAYS", raising=False)
    monkeypatch.delenv("MERGE_UNMERGE_COOLING_PERIOD_DAYS", raising=False)

    app = create_app()
    app.config["TESTING"] = True

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def make_account(app):
    """Factory for accounts; keyword arguments override column values."""
    counter = itertools.count(1)

    def _make(username: str | None = None, **fields) -> Account:
        username = username or f"user{next(counter)}"
        account = Account(
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            password_hash="dummy_hash",
            first_name=fields.pop("first_name", username.capitalize()),
            profile_public=fields.pop("profile_public", 1),
            is_active=fields.pop("is_active", 1),
            **fields,
        )
        db.session.add(account)
        db.session.commit()
        return account

    return _make


@pytest.fixture
def make_entry(app):
    """Factory for travel entries with optional media types."""

    def _make(account: Account, title: str = "Trip", public: bool = True,
              media: tuple[str, ...] = (), created_at: datetime | None = None) -> TravelEntry:
        entry = TravelEntry(
            account_id=account.id,
            title=title,
            is_public=1 if public else 0,
            created_at=created_at or datetime.utcnow(),
        )
        db.session.add(entry)
        db.session.flush()
        for index, file_type in enumerate(media):
            db.session.add(MediaFile(entry_id=entry.id, file_name=f"{entry.id}-{index}", file_type=file_type))
        db.session.commit()
        return entry

    return _make


@pytest.fixture
def login(client):
    """Put an account id into the client's session."""

    def _login(account: Account):
        with client.session_transaction() as sess:
            sess["account_id"] = account.id

    return _login


@pytest.fixture
def run_overlapping(app):
    """
    Run two service calls on separate threads, each with its own session.

    The first call pauses just before executing a statement that starts with
    `pause_before`; the second call starts once the first has paused. Each
    call receives the thread's session and should return plain values.
    Returns (first_outcome, second_outcome); an outcome is the return value
    or the raised exception.
    """

    def _run(first, second, pause_before: str, pause: float = 0.5):
        first_paused = threading.Event()
        outcomes = {}

        def pause_first(conn, cursor, statement, parameters, context, executemany):
            if (threading.current_thread().name == "first"
                    and statement.startswith(pause_before)
                    and not first_paused.is_set()):
                first_paused.set()
                time.sleep(pause)

        def worker(name, call):
            if name == "second":
                first_paused.wait(5)
            with app.app_context():
                try:
                    outcomes[name] = call(db.session)
                except Exception as e:
                    outcomes[name] = e

        # release the test thread's connection so neither worker waits on it
        db.session.remove()
        event.listen(db.engine, "before_cursor_execute", pause_first)
        try:
            threads = [
                threading.Thread(target=worker, name=name, args=(name, call))
                for name, call in (("first", first), ("second", second))
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(30)
        finally:
            event.remove(db.engine, "before_cursor_execute", pause_first)

        assert first_paused.is_set(), f"first call never reached {pause_before!r}"
        return outcomes["first"], outcomes["second"]

    return _run
