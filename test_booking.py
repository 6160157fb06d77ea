import pytest

from advising import engine
from advising.models import Meeting, Student
from advising.notifications import EmailServiceError
from advising.schema import NotificationKind
from conftest import DAY, insert_semester, insert_slot, load, now_epoch

QUARTER = 15 * 60


class FailingNotifier:
    def send_notification(self, kind, meeting_id, context):
        raise EmailServiceError("provider is down")


def book(meeting, slot_id, notifier, secret_code=None, **contact):
    payload = {
        "meeting_id": meeting.id,
        "time_slot_id": slot_id,
        "secret_code": meeting.secret_code if secret_code is None else secret_code,
        **contact,
    }
    return engine.book_meeting(payload, notifier=notifier)


def new_meeting(advisor, student_id, semester_id=None):
    result = engine.create_meeting(advisor, {"student_id": student_id, "semester_id": semester_id})
    assert result["success"], result
    return load(Meeting, result["id"])


@pytest.fixture
def slot_id(semester_id, slot_start):
    return insert_slot(semester_id, slot_start)


# Creating meetings


def test_meeting_gets_a_unique_secret_code(advisor, semester_id, student_id):
    first = new_meeting(advisor, student_id)
    second = new_meeting(advisor, student_id)

    assert first.semester_id == semester_id
    assert first.time_slot_id is None
    assert first.secret_code and second.secret_code
    assert first.secret_code != second.secret_code


def test_secret_code_collisions_are_retried(advisor, student_id, meeting, monkeypatch):
    codes = iter([meeting.secret_code, meeting.secret_code, "fresh-code"])
    monkeypatch.setattr(engine, "_new_secret_code", lambda: next(codes))

    assert new_meeting(advisor, student_id).secret_code == "fresh-code"


def test_secret_code_generation_gives_up(advisor, student_id, meeting, monkeypatch):
    monkeypatch.setattr(engine, "_new_secret_code", lambda: meeting.secret_code)

    result = engine.create_meeting(advisor, {"student_id": student_id})

    assert result["error"] == "INTERNAL"
    assert result["reason"] == "Could not generate a unique secret code"


def test_meeting_for_someone_elses_student(advisor, other_advisor, semester_id):
    theirs = engine.create_student(other_advisor, {"name": "Not Mine"})["id"]

    result = engine.create_meeting(advisor, {"student_id": theirs})

    assert result["error"] == "FORBIDDEN"
    assert result["reason"] == "You can only create meetings for your own students"


def test_meeting_in_someone_elses_semester(other_advisor, semester_id):
    student = engine.create_student(other_advisor, {"name": "Theirs"})["id"]

    result = engine.create_meeting(other_advisor, {"student_id": student, "semester_id": semester_id})

    assert result["error"] == "FORBIDDEN"
    assert result["reason"] == "You can only create meetings for your own semesters"


def test_meeting_requires_an_advisor(student_id):
    result = engine.create_meeting(None, {"student_id": student_id})
    assert result["error"] == "UNAUTHORIZED"


# Booking


def test_book_meeting(advisor, meeting, slot_id, slot_start, notifier):
    result = book(meeting, slot_id, notifier)

    assert result["success"], result
    assert load(Meeting, meeting.id).time_slot_id == slot_id

    [(kind, meeting_id, context)] = notifier.sent
    assert kind == NotificationKind.MEETING_BOOKED
    assert meeting_id == meeting.id
    assert context["to"] == "advisor@fredonia.edu"
    assert context["owner_id"] == advisor.id
    assert context["student_name"] == "Ada Student"
    assert context["reply_to"] == "ada@fredonia.edu"
    assert context["meeting_time"]


def test_booking_twice(meeting, slot_id, semester_id, slot_start, notifier):
    assert book(meeting, slot_id, notifier)["success"]

    again = book(meeting, slot_id, notifier)
    assert again["error"] == "CONFLICT"
    assert again["reason"] == "Time slot is already assigned to this meeting"

    other_slot = insert_slot(semester_id, slot_start + QUARTER)
    switch = book(meeting, other_slot, notifier)
    assert switch["error"] == "CONFLICT"
    assert switch["reason"] == "Another time slot is already assigned to this meeting"

    assert load(Meeting, meeting.id).time_slot_id == slot_id
    assert len(notifier.sent) == 1


def test_slot_held_by_another_meeting(advisor, meeting, slot_id, notifier):
    classmate = engine.create_student(advisor, {"name": "Grace Student"})["id"]
    rival = new_meeting(advisor, classmate)
    assert book(rival, slot_id, notifier)["success"]

    result = book(meeting, slot_id, notifier)

    assert result["error"] == "CONFLICT"
    assert result["reason"] == "Time slot is already booked"
    assert load(Meeting, meeting.id).time_slot_id is None


def test_wrong_secret_code(meeting, slot_id, notifier):
    result = book(meeting, slot_id, notifier, secret_code="not-the-code")

    assert result["error"] == "UNAUTHORIZED"
    assert result["reason"] == "Incorrect secret code"
    assert load(Meeting, meeting.id).time_slot_id is None
    assert notifier.sent == []


def test_unknown_meeting_or_slot(meeting, slot_id, notifier):
    missing_meeting = engine.book_meeting(
        {"meeting_id": "nope", "time_slot_id": slot_id, "secret_code": meeting.secret_code},
        notifier=notifier,
    )
    assert missing_meeting["reason"] == "Meeting not found"

    assert book(meeting, "nope", notifier)["reason"] == "Time slot not found"


def test_slot_from_another_semester(advisor, meeting, notifier):
    later = insert_semester(advisor, now_epoch() + 90 * DAY, now_epoch() + 150 * DAY, name="Fall")
    stray = insert_slot(later, now_epoch() + 100 * DAY)

    result = book(meeting, stray, notifier)

    assert result["error"] == "CONFLICT"
    assert result["reason"] == "Semesters are mismatched"


def test_booking_fills_in_missing_contact_details(advisor, semester_id, slot_id, notifier):
    student = engine.create_student(advisor, {"name": "Ann", "email": "a@fredonia.edu"})["id"]
    meeting = new_meeting(advisor, student)

    result = book(meeting, slot_id, notifier, booker_email="b@fredonia.edu", booker_phone="555-123-4567")

    assert result["success"], result
    stored = load(Student, student)
    assert stored.email == "a@fredonia.edu"
    assert stored.phone == "5551234567"


def test_invalid_contact_details_abort_the_booking(meeting, slot_id, notifier):
    result = book(meeting, slot_id, notifier, booker_phone="12345")

    assert result["error"] == "VALIDATION"
    assert result["reason"] == "Invalid phone number"
    assert load(Meeting, meeting.id).time_slot_id is None


def test_notifier_failure_keeps_the_booking(meeting, slot_id):
    result = book(meeting, slot_id, FailingNotifier())

    assert result["success"]
    assert load(Meeting, meeting.id).time_slot_id == slot_id


# Slots offered to the student


def test_student_sees_slots_nobody_else_has_taken(advisor, meeting, semester_id, slot_start, notifier):
    first = insert_slot(semester_id, slot_start)
    second = insert_slot(semester_id, slot_start + QUARTER)
    third = insert_slot(semester_id, slot_start + 2 * QUARTER)
    classmate = engine.create_student(advisor, {"name": "Grace Student"})["id"]
    assert book(new_meeting(advisor, classmate), second, notifier)["success"]

    result = engine.list_slots_for_meeting(meeting.id, meeting.secret_code)
    assert [slot["id"] for slot in result["time_slots"]] == [first, third]

    assert book(meeting, third, notifier)["success"]
    result = engine.list_slots_for_meeting(meeting.id, meeting.secret_code)
    assert [slot["id"] for slot in result["time_slots"]] == [third]


def test_slot_listing_needs_the_secret_code(meeting):
    result = engine.list_slots_for_meeting(meeting.id, "guess")
    assert result["error"] == "UNAUTHORIZED"
    assert result["reason"] == "Invalid secret code"

    assert engine.list_slots_for_meeting("nope", meeting.secret_code)["reason"] == "Could not find meeting"


def test_meeting_by_code(advisor, meeting, slot_id, notifier):
    book(meeting, slot_id, notifier)

    result = engine.get_meeting_by_code(meeting.secret_code)

    assert result["success"], result
    assert result["meeting"]["student"]["name"] == "Ada Student"
    assert result["meeting"]["time_slot"]["id"] == slot_id
    assert result["semester"]["display_name"] == "Spring"
    assert result["advisor"] == {"id": advisor.id, "email": "advisor@fredonia.edu", "full_name": "Dr. Carson"}
    assert [slot["id"] for slot in result["available_slots"]] == [slot_id]


def test_meeting_by_unknown_code():
    result = engine.get_meeting_by_code("missing")
    assert result["error"] == "NOT_FOUND"
    assert result["reason"] == "Meeting not found"


# Cancelling


def test_student_cancels_with_secret_code(meeting, slot_id, notifier):
    book(meeting, slot_id, notifier)

    result = engine.cancel_booking({"meeting_id": meeting.id, "secret_code": meeting.secret_code}, notifier=notifier)

    assert result["success"], result
    assert load(Meeting, meeting.id).time_slot_id is None
    kind, _, context = notifier.sent[-1]
    assert kind == NotificationKind.MEETING_CANCELLED
    assert context["old_meeting_time"] == notifier.sent[0][2]["meeting_time"]

    assert book(meeting, slot_id, notifier)["success"]


def test_cancel_without_booking(meeting, notifier):
    result = engine.cancel_booking({"meeting_id": meeting.id, "secret_code": meeting.secret_code}, notifier=notifier)

    assert result["error"] == "CONFLICT"
    assert result["reason"] == "Meeting does not have a booked time slot"
    assert notifier.sent == []


def test_cancel_with_wrong_code(meeting, slot_id, notifier):
    book(meeting, slot_id, notifier)

    result = engine.cancel_booking({"meeting_id": meeting.id, "secret_code": "guess"}, notifier=notifier)

    assert result["error"] == "UNAUTHORIZED"
    assert load(Meeting, meeting.id).time_slot_id == slot_id


def test_advisor_cancels_their_own_meeting(advisor, other_advisor, meeting, slot_id, notifier):
    book(meeting, slot_id, notifier)

    denied = engine.cancel_booking({"meeting_id": meeting.id}, other_advisor, notifier=notifier)
    assert denied["error"] == "FORBIDDEN"
    assert denied["reason"] == "You can only cancel meetings for your own semesters"

    assert engine.cancel_booking({"meeting_id": meeting.id}, advisor, notifier=notifier)["success"]
    assert load(Meeting, meeting.id).time_slot_id is None


# Advisor views


def test_list_meetings_for_semester(advisor, other_advisor, semester_id, meeting, slot_id, notifier):
    book(meeting, slot_id, notifier)

    meetings = engine.list_meetings_for_semester(advisor, semester_id)["meetings"]

    assert [m["id"] for m in meetings] == [meeting.id]
    assert meetings[0]["student"]["email"] == "ada@fredonia.edu"
    assert meetings[0]["time_slot"]["id"] == slot_id

    assert engine.list_meetings_for_semester(other_advisor, semester_id)["error"] == "FORBIDDEN"


def test_delete_meeting(advisor, other_advisor, meeting):
    assert engine.delete_meeting(other_advisor, meeting.id)["error"] == "FORBIDDEN"
    assert engine.delete_meeting(advisor, meeting.id)["success"]
    assert load(Meeting, meeting.id) is None


# Invites


def test_send_invite(advisor, meeting, notifier):
    result = engine.send_meeting_invite(advisor, meeting.id, notifier=notifier)

    assert result["success"], result
    [(kind, meeting_id, context)] = notifier.sent
    assert kind == NotificationKind.MEETING_INVITE
    assert context["to"] == "ada@fredonia.edu"
    assert context["advisor_name"] == "Dr. Carson"
    assert context["meeting_link"] == f"https://scheduler.test/meeting/{meeting.secret_code}"


def test_invite_needs_student_email(advisor, semester_id, notifier):
    silent = engine.create_student(advisor, {"name": "No Email"})["id"]
    meeting = new_meeting(advisor, silent)

    result = engine.send_meeting_invite(advisor, meeting.id, notifier=notifier)

    assert result["error"] == "VALIDATION"
    assert result["reason"] == "Student does not have an email address on file"
    assert notifier.sent == []


def test_invite_send_failure_is_reported(advisor, meeting):
    result = engine.send_meeting_invite(advisor, meeting.id, notifier=FailingNotifier())

    assert result["error"] == "INTERNAL"
    assert result["reason"] == "Could not send the invite email."


def test_only_one_meeting_can_hold_a_slot(advisor, slot_id, semester_id, notifier):
    students = [engine.create_student(advisor, {"name": f"Student {i}"})["id"] for i in range(3)]
    meetings = [new_meeting(advisor, student) for student in students]

    results = [book(m, slot_id, notifier) for m in meetings]

    assert [r["success"] for r in results] == [True, False, False]
    assert {r["reason"] for r in results[1:]} == {"Time slot is already booked"}
    assert [load(Meeting, m.id).time_slot_id for m in meetings] == [slot_id, None, None]
