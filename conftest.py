import base64
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone

_DB_DIR = tempfile.mkdtemp(prefix="advising-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'advising.db')}"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["RESEND_API_KEY"] = ""
os.environ["APP_URL"] = "https://scheduler.test"
os.environ["RESEND_WEBHOOK_SECRET"] = "whsec_" + base64.b64encode(b"resend-webhook-test-key").decode()

import pytest

from advising import engine
from advising.models import Base, Meeting, Semester, TimeSlot
from advising.schema import AdvisorIdentity
from db.session import SessionLocal, init_db
from db.session import engine as db_engine

DAY = 24 * 60 * 60


@dataclass
class RecordingNotifier:
    sent: list = field(default_factory=list)

    def send_notification(self, kind, meeting_id, context):
        self.sent.append((kind, meeting_id, dict(context)))


def now_epoch() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def make_advisor(email: str, api_key: str = "advisor-api-key-0001") -> AdvisorIdentity:
    result = engine.upsert_advisor(
        {"email": email, "full_name": "Dr. Carson", "timezone": "America/New_York", "api_key": api_key}
    )
    assert result["success"], result
    return AdvisorIdentity(id=result["id"], email=email)


def insert_semester(advisor: AdvisorIdentity, start: int, end: int, name: str = "Fall") -> str:
    with SessionLocal() as db:
        with db.begin():
            semester = Semester(advisor_id=advisor.id, display_name=name, start_date=start, end_date=end)
            db.add(semester)
            db.flush()
            return semester.id


def insert_slot(semester_id: str, start: int) -> str:
    with SessionLocal() as db:
        with db.begin():
            slot = TimeSlot(semester_id=semester_id, start_date_time=start, end_date_time=start + 15 * 60)
            db.add(slot)
            db.flush()
            return slot.id


def load(model, object_id):
    with SessionLocal() as db:
        return db.get(model, object_id)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=db_engine)
    init_db()
    yield


@pytest.fixture
def advisor():
    return make_advisor("advisor@fredonia.edu")


@pytest.fixture
def other_advisor():
    return make_advisor("someone.else@fredonia.edu", api_key="advisor-api-key-0002")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def semester_id(advisor):
    """A semester that is active right now."""
    now = now_epoch()
    return insert_semester(advisor, now - 10 * DAY, now + 60 * DAY, name="Spring")


@pytest.fixture
def student_id(advisor):
    result = engine.create_student(advisor, {"name": "Ada Student", "email": "ada@fredonia.edu"})
    assert result["success"], result
    return result["id"]


@pytest.fixture
def slot_start(semester_id):
    # Aligned to the quarter hour, a day into the active semester.
    start = now_epoch() + DAY
    return start - start % (15 * 60)


@pytest.fixture
def meeting(advisor, semester_id, student_id):
    result = engine.create_meeting(advisor, {"student_id": student_id, "semester_id": semester_id})
    assert result["success"], result
    return load(Meeting, result["id"])
