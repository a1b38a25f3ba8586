"""
Pytest configuration and fixtures for Conference Backend tests.
"""

import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="conference_test_")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DATA_DIR}/conference.db"
os.environ["CONFERENCE_MASTER_KEY"] = "test-master-key-12345"
os.environ["REVIEW_REMINDER_DISABLED"] = "true"
os.environ["SMTP_HOST"] = ""
os.environ["S3_BUCKET_NAME"] = ""
os.environ["ADMIN_EMAIL"] = "admin@conference.test"

from conference_backend.database import ConferenceStore
from conference_backend.errors import MailDeliveryError, ProviderRateLimited
from conference_backend.mailer import GuardedMailer, Mailer, MailerGuard
from conference_backend.main import app
from conference_backend.models import CommitteeMemberCreate
from conference_backend.notifications import Notifier

ABSTRACT = " ".join(["word"] * 60)


@pytest.fixture(scope="session", autouse=True)
def test_data_dir():
    """Remove the app database directory after the session."""
    yield _TEST_DATA_DIR
    shutil.rmtree(_TEST_DATA_DIR, ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def master_key():
    """Return the master API key (super admin)."""
    return "test-master-key-12345"


@pytest.fixture
def admin_key(client, master_key):
    """Create a plain ADMIN key through the API."""
    response = client.post(
        "/admin/keys",
        json={"owner": "test-admin", "role": "ADMIN"},
        headers={"X-API-Key": master_key},
    )
    assert response.status_code == 201
    return response.json()["api_key"]


class FakeClock:
    """Settable clock for time-dependent components."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingMailer(Mailer):
    """Transport double that records messages and fails on demand."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self.rate_limit_for = set()

    async def send(self, message):
        if message.to in self.rate_limit_for:
            raise ProviderRateLimited("550 5.4.5 Daily user sending quota exceeded")
        if message.to in self.fail_for:
            raise MailDeliveryError(f"rejected {message.to}")
        self.sent.append(message)

    def recipients(self):
        return [message.to for message in self.sent]


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path):
    """A fresh store backed by its own SQLite file."""
    conference_store = ConferenceStore(f"sqlite:///{tmp_path}/store.db")
    yield conference_store
    conference_store.dispose()


@pytest.fixture
def transport():
    return RecordingMailer()


@pytest.fixture
def guard(clock):
    return MailerGuard(clock=clock)


@pytest.fixture
def notifier(transport, guard):
    return Notifier(GuardedMailer(transport, guard), admin_email="admin@conference.test")


@pytest.fixture
def submission_data():
    """Factory for valid intake payloads (dicts)."""

    def _make(**overrides):
        data = {
            "conference_title": "International Conference on Testing",
            "place_date": "Lisbon, 12-14 March 2025",
            "paper_title": "On the Reliability of Things",
            "paper_abstract": ABSTRACT,
            "keywords": "testing, reliability",
            "name": "Ada Author",
            "email": f"author-{uuid4().hex[:8]}@example.org",
            "phone": "+44 20 7946 0958",
            "institution_name": "University of Examples",
            "country": "Portugal",
            "primary_subject": "Computer Science",
            "ethics_compliance": True,
            "agree_terms": True,
            "agree_presentation": True,
            "agree_publication": True,
            "agree_review": True,
            "agree_data_sharing": True,
        }
        data.update(overrides)
        return data

    return _make


@pytest.fixture
def make_submission(store, submission_data, clock):
    """Insert a submission directly through the store."""
    counter = {"serial": 0}

    def _make(**overrides):
        counter["serial"] += 1
        values = submission_data()
        values.update(
            paper_id=f"2501{counter['serial']:03d}",
            created_at=clock(),
            updated_at=clock(),
        )
        values.update(overrides)
        return store.create_submission(values)

    return _make


@pytest.fixture
def make_member(store):
    """Insert a committee member directly through the store."""

    def _make(name="Reviewer", email=None, active=True, **extra):
        member = store.create_committee_member(
            CommitteeMemberCreate(name=name, email=email or f"{uuid4().hex[:8]}@review.test", **extra),
            created_by="tests",
        )
        if not active:
            member = store.update_committee_member(member.id, {"is_active": False})
        return member

    return _make
