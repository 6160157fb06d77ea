"""Core scheduling operations: semesters, time slots, meetings, students and advisors."""

from __future__ import annotations

import functools
import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from advising.availability import (
    active_semester_query,
    meeting_for_slot_query,
    open_slots_for_meeting,
    overlapping_semester_query,
    overlapping_slot_query,
    semester_slots_query,
)
from advising.errors import SchedulingError, conflict, forbidden, invalid, not_found, unauthorized
from advising.models import Advisor, Meeting, Semester, Student, TimeSlot
from advising.notifications import Notifier, get_notifier
from advising.rules import (
    RuleCheckResult,
    RuleEngine,
    epoch_to_datetime,
    format_epoch,
    format_for_humans,
    overlaps,
    overlaps_other_candidate,
    slot_end,
)
from advising.schema import (
    ActionResult,
    AdvisorIdentity,
    AdvisorPublicItem,
    AdvisorUpsertRequest,
    BookMeetingRequest,
    ByAdvisor,
    BySemesterId,
    CancelBookingRequest,
    ErrorKind,
    MeetingCreateRequest,
    MeetingDetailResult,
    MeetingItem,
    MeetingListResult,
    NotificationKind,
    OperationResult,
    SemesterCreateRequest,
    SemesterItem,
    SemesterListResult,
    SemesterRef,
    SemesterResult,
    StudentItem,
    StudentListResult,
    StudentUpsertRequest,
    TimeSlotBulkCreateRequest,
    TimeSlotCreateRequest,
    TimeSlotItem,
    TimeSlotListResult,
    failure,
    semester_ref,
)
from config import get_settings
from db.session import SessionLocal

logger = logging.getLogger(__name__)

SECRET_CODE_ATTEMPTS = 10

ModelT = TypeVar("ModelT", bound=BaseModel)


def operation(result_cls: type[OperationResult], action: str):
    """Turn domain and database failures raised by an operation into a failed result."""

    def decorator(fn: Callable[..., dict]) -> Callable[..., dict]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> dict:
            try:
                return fn(*args, **kwargs)
            except SchedulingError as exc:
                if exc.kind == ErrorKind.INTERNAL:
                    logger.error("Internal error while %s: %s", action, exc.reason)
                return failure(result_cls, exc.kind, exc.reason)
            except SQLAlchemyError:
                logger.error("Database error while %s", action, exc_info=True)
                return failure(result_cls, ErrorKind.INTERNAL, f"Database error while {action}.")

        return wrapper

    return decorator


def _parse(model_cls: type[ModelT], payload: dict, label: str) -> ModelT:
    try:
        return model_cls.model_validate(payload)
    except ValidationError as exc:
        raise invalid(f"Invalid {label} payload: {exc}") from exc


def _ensure(check: RuleCheckResult) -> None:
    if not check.allowed:
        raise SchedulingError(check.error, check.reason or "Request is not allowed.")


def _require_advisor(advisor: AdvisorIdentity | None, action: str) -> AdvisorIdentity:
    if advisor is None:
        raise unauthorized(f"You must be an advisor to {action}")
    return advisor


def _now() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def _codes_match(stored: str, supplied: Optional[str]) -> bool:
    return supplied is not None and hmac.compare_digest(stored.encode(), supplied.encode())


def _hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode()).hexdigest()


def _new_secret_code() -> str:
    return str(uuid.uuid4())


def _notify(notifier: Notifier | None, kind: NotificationKind, meeting_id: str, context: dict | None) -> None:
    if context is None:
        return
    try:
        (notifier or get_notifier()).send_notification(kind, meeting_id, context)
    except Exception:
        logger.warning("Failed to dispatch %s notification for meeting %s", kind.value, meeting_id, exc_info=True)


# Semester resolution


def _semester_by_id(db: Session, semester_id: str, *, lock: bool = False) -> Semester:
    stmt = select(Semester).where(Semester.id == semester_id)
    if lock:
        stmt = stmt.with_for_update()
    semester = db.scalar(stmt)
    if not semester:
        raise not_found("Could not find semester")
    return semester


def _active_semester(db: Session, advisor_id: str, *, lock: bool = False) -> Semester:
    stmt = active_semester_query(advisor_id=advisor_id, now=_now()).limit(2)
    if lock:
        stmt = stmt.with_for_update()
    matches = list(db.scalars(stmt))
    if not matches:
        raise not_found("Could not find active semester")
    if len(matches) > 1:
        logger.error("Advisor %s has more than one active semester: %s", advisor_id, [s.id for s in matches])
        raise SchedulingError(ErrorKind.INTERNAL, "Advisor has overlapping active semesters")
    return matches[0]


def require_semester(db: Session, ref: SemesterRef, *, lock: bool = False) -> Semester:
    if isinstance(ref, BySemesterId):
        return _semester_by_id(db, ref.semester_id, lock=lock)
    if isinstance(ref, ByAdvisor):
        return _active_semester(db, ref.advisor_id, lock=lock)
    raise TypeError(f"Unsupported semester reference: {ref!r}")


def _owned_semester(
    db: Session,
    advisor: AdvisorIdentity,
    semester_id: Optional[str],
    *,
    denied: str,
    lock: bool = False,
) -> Semester:
    semester = require_semester(db, semester_ref(advisor, semester_id), lock=lock)
    if semester.advisor_id != advisor.id:
        raise forbidden(denied)
    return semester


# Advisors


def resolve_advisor(advisor_id: Optional[str], api_key: Optional[str]) -> AdvisorIdentity | None:
    """Return the advisor identified by id + API key, or None when they do not match."""
    if not advisor_id or not api_key:
        return None
    with SessionLocal() as db:
        advisor = db.get(Advisor, advisor_id)
        if not advisor or not hmac.compare_digest(advisor.api_key, _hash_api_key(api_key)):
            return None
        return AdvisorIdentity(id=advisor.id, email=advisor.email)


@operation(ActionResult, "upserting advisor")
def upsert_advisor(payload: dict) -> dict:
    model = _parse(AdvisorUpsertRequest, payload, "advisor")
    with SessionLocal() as db:
        with db.begin():
            same_email = db.scalar(select(Advisor).where(Advisor.email == str(model.email)))
            advisor = db.get(Advisor, model.advisor_id) if model.advisor_id else None
            if model.advisor_id and not advisor:
                raise not_found("Advisor not found")
            if same_email and (advisor is None or same_email.id != advisor.id):
                raise conflict("Another advisor already uses this email")

            if advisor:
                advisor.email = str(model.email)
                advisor.full_name = model.full_name
                advisor.timezone = model.timezone
                advisor.api_key = _hash_api_key(model.api_key)
            else:
                advisor = Advisor(
                    email=str(model.email),
                    full_name=model.full_name,
                    timezone=model.timezone,
                    api_key=_hash_api_key(model.api_key),
                )
                db.add(advisor)

            db.flush()
            logger.info("Upserted advisor %s", advisor.id)
            return ActionResult(success=True, id=advisor.id).model_dump(mode="json")


# Semesters


@operation(ActionResult, "creating semester")
def create_semester(advisor: AdvisorIdentity | None, payload: dict) -> dict:
    advisor = _require_advisor(advisor, "create a new semester")
    model = _parse(SemesterCreateRequest, payload, "semester")

    _ensure(RuleEngine.check_display_name(model.display_name))
    start = epoch_to_datetime(model.start_date)
    if start is None:
        raise invalid("Start date is invalid")
    end = epoch_to_datetime(model.end_date)
    if end is None:
        raise invalid("End date is invalid")
    _ensure(RuleEngine.check_semester_duration(start, end))

    with SessionLocal() as db:
        with db.begin():
            # Serializes semester creation per advisor.
            owner = db.scalar(select(Advisor).where(Advisor.id == advisor.id).with_for_update())
            if not owner:
                raise unauthorized("You must be an advisor to create a new semester")

            overlapping = db.scalar(
                overlapping_semester_query(
                    advisor_id=advisor.id,
                    start_date=model.start_date,
                    end_date=model.end_date,
                )
            )
            if overlapping:
                raise conflict(f"New semester overlaps with existing semester: {overlapping.display_name}")

            semester = Semester(
                advisor_id=advisor.id,
                display_name=model.display_name,
                start_date=model.start_date,
                end_date=model.end_date,
            )
            db.add(semester)
            db.flush()
            logger.info("Advisor %s created semester %s", advisor.id, semester.id)
            return ActionResult(success=True, id=semester.id).model_dump(mode="json")


@operation(SemesterResult, "loading active semester")
def get_active_semester(advisor: AdvisorIdentity | None) -> dict:
    advisor = _require_advisor(advisor, "view the active semester")
    with SessionLocal() as db:
        semester = require_semester(db, ByAdvisor(advisor.id))
        return SemesterResult(success=True, semester=SemesterItem.model_validate(semester)).model_dump(mode="json")


@operation(SemesterListResult, "listing semesters")
def list_semesters(advisor: AdvisorIdentity | None) -> dict:
    advisor = _require_advisor(advisor, "view the semester list")
    with SessionLocal() as db:
        stmt = (
            select(Semester)
            .where(Semester.advisor_id == advisor.id)
            .order_by(Semester.start_date.desc())
        )
        semesters = [SemesterItem.model_validate(semester) for semester in db.scalars(stmt)]
        return SemesterListResult(success=True, semesters=semesters).model_dump(mode="json")


@operation(SemesterResult, "loading semester")
def get_semester(advisor: AdvisorIdentity | None, semester_id: str) -> dict:
    advisor = _require_advisor(advisor, "view a semester")
    with SessionLocal() as db:
        semester = require_semester(db, BySemesterId(semester_id))
        if semester.advisor_id != advisor.id:
            raise forbidden("You can only view your own semesters")
        return SemesterResult(success=True, semester=SemesterItem.model_validate(semester)).model_dump(mode="json")


@operation(ActionResult, "deleting semester")
def delete_semester(advisor: AdvisorIdentity | None, semester_id: str) -> dict:
    advisor = _require_advisor(advisor, "delete a semester")
    with SessionLocal() as db:
        with db.begin():
            semester = db.scalar(select(Semester).where(Semester.id == semester_id).with_for_update())
            if not semester:
                raise not_found("Semester not found")
            if semester.advisor_id != advisor.id:
                raise forbidden("You can only delete your own semesters")

            db.execute(delete(Meeting).where(Meeting.semester_id == semester.id))
            db.execute(delete(TimeSlot).where(TimeSlot.semester_id == semester.id))
            db.delete(semester)
            logger.info("Advisor %s deleted semester %s", advisor.id, semester_id)
            return ActionResult(success=True, id=semester_id).model_dump(mode="json")


# Time slots


@operation(ActionResult, "creating time slot")
def create_time_slot(advisor: AdvisorIdentity | None, payload: dict) -> dict:
    advisor = _require_advisor(advisor, "create a time slot")
    model = _parse(TimeSlotCreateRequest, payload, "time slot")

    with SessionLocal() as db:
        with db.begin():
            semester = _owned_semester(
                db,
                advisor,
                model.semester_id,
                denied="You can only add time slots to your own semesters",
                lock=True,
            )
            if epoch_to_datetime(model.start) is None:
                raise invalid("Start date is invalid")
            end = slot_end(model.start)
            _ensure(RuleEngine.check_slot_within_semester(model.start, end, semester))

            if db.scalar(overlapping_slot_query(semester_id=semester.id, start=model.start, end=end)):
                raise conflict("New slot overlaps with existing slot")

            slot = TimeSlot(semester_id=semester.id, start_date_time=model.start, end_date_time=end)
            db.add(slot)
            db.flush()
            logger.info("Created time slot %s in semester %s", slot.id, semester.id)
            return ActionResult(success=True, id=slot.id).model_dump(mode="json")


@operation(ActionResult, "creating time slots")
def create_time_slots(advisor: AdvisorIdentity | None, payload: dict) -> dict:
    """Create a batch of slots; either every slot is written or none is."""
    advisor = _require_advisor(advisor, "create time slots")
    model = _parse(TimeSlotBulkCreateRequest, payload, "time slot batch")
    if not model.starts:
        raise invalid("At least one start time is required")

    with SessionLocal() as db:
        with db.begin():
            semester = _owned_semester(
                db,
                advisor,
                model.semester_id,
                denied="You can only add time slots to your own semesters",
                lock=True,
            )

            candidates: list[tuple[int, int]] = []
            for start in model.starts:
                if epoch_to_datetime(start) is None:
                    raise invalid("One or more start times are invalid")
                end = slot_end(start)
                _ensure(
                    RuleEngine.check_slot_within_semester(
                        start,
                        end,
                        semester,
                        tz_name=model.timezone,
                        labelled=True,
                    )
                )
                candidates.append((start, end))

            existing_slots = list(db.scalars(semester_slots_query(semester.id)))
            for index, (start, end) in enumerate(candidates):
                clash = next(
                    (
                        existing
                        for existing in existing_slots
                        if overlaps(existing.start_date_time, existing.end_date_time, start, end)
                    ),
                    None,
                )
                if clash:
                    raise conflict(
                        f"New slot overlaps with existing slot at {format_epoch(clash.start_date_time, model.timezone)}"
                    )
                if overlaps_other_candidate(index, candidates):
                    raise conflict("Some of the selected times overlap with each other")

            slots = [
                TimeSlot(semester_id=semester.id, start_date_time=start, end_date_time=end)
                for start, end in candidates
            ]
            db.add_all(slots)
            db.flush()
            logger.info("Created %d time slots in semester %s", len(slots), semester.id)
            return ActionResult(success=True, ids=[slot.id for slot in slots]).model_dump(mode="json")


@operation(TimeSlotListResult, "listing time slots")
def list_time_slots_for_advisor(advisor: AdvisorIdentity | None, semester_id: Optional[str] = None) -> dict:
    advisor = _require_advisor(advisor, "view time slots")
    with SessionLocal() as db:
        semester = _owned_semester(db, advisor, semester_id, denied="You can only view time slots for your own semesters")
        meetings = db.scalars(
            select(Meeting).where(Meeting.semester_id == semester.id, Meeting.time_slot_id.is_not(None))
        )
        student_by_slot = {meeting.time_slot_id: meeting.student_id for meeting in meetings}
        students = {
            student.id: student
            for student in db.scalars(select(Student).where(Student.id.in_(list(student_by_slot.values()))))
        }

        items: list[TimeSlotItem] = []
        for slot in db.scalars(semester_slots_query(semester.id)):
            item = TimeSlotItem.model_validate(slot)
            student = students.get(student_by_slot.get(slot.id))
            if student:
                item.student = StudentItem.model_validate(student)
            items.append(item)
        return TimeSlotListResult(success=True, time_slots=items).model_dump(mode="json")


@operation(TimeSlotListResult, "listing time slots")
def list_slots_for_meeting(meeting_id: str, secret_code: str) -> dict:
    """Slots a student may pick from, or just their booked slot once they have one."""
    with SessionLocal() as db:
        meeting = db.get(Meeting, meeting_id)
        if not meeting:
            raise not_found("Could not find meeting")
        if not _codes_match(meeting.secret_code, secret_code):
            raise unauthorized("Invalid secret code")

        if meeting.time_slot_id:
            slot = db.get(TimeSlot, meeting.time_slot_id)
            if not slot:
                raise not_found("Could not find selected time slot for meeting")
            slots = [slot]
        else:
            slots = open_slots_for_meeting(db, meeting)

        items = [TimeSlotItem.model_validate(slot) for slot in slots]
        return TimeSlotListResult(success=True, time_slots=items).model_dump(mode="json")


@operation(ActionResult, "deleting time slot")
def delete_time_slot(advisor: AdvisorIdentity | None, time_slot_id: str) -> dict:
    advisor = _require_advisor(advisor, "delete a time slot")
    with SessionLocal() as db:
        with db.begin():
            slot = db.scalar(select(TimeSlot).where(TimeSlot.id == time_slot_id).with_for_update())
            if not slot:
                raise not_found("Time slot not found")
            semester = db.get(Semester, slot.semester_id)
            if not semester:
                raise not_found("Time slot does not have an associated semester")
            if semester.advisor_id != advisor.id:
                raise forbidden("You cannot delete time slots you did not create")
            if db.scalar(meeting_for_slot_query(slot.id)):
                raise conflict("Cannot delete a time slot with an associated meeting")

            db.delete(slot)
            logger.info("Deleted time slot %s", time_slot_id)
            return ActionResult(success=True, id=time_slot_id).model_dump(mode="json")


# Meetings


def _generate_secret_code(db: Session) -> str:
    for _ in range(SECRET_CODE_ATTEMPTS):
        code = _new_secret_code()
        if db.scalar(select(Meeting.id).where(Meeting.secret_code == code)) is None:
            return code
    raise SchedulingError(ErrorKind.INTERNAL, "Could not generate a unique secret code")


@operation(ActionResult, "creating meeting")
def create_meeting(advisor: AdvisorIdentity | None, payload: dict) -> dict:
    advisor = _require_advisor(advisor, "create a meeting")
    model = _parse(MeetingCreateRequest, payload, "meeting")

    with SessionLocal() as db:
        with db.begin():
            semester = _owned_semester(
                db,
                advisor,
                model.semester_id,
                denied="You can only create meetings for your own semesters",
            )
            student = db.get(Student, model.student_id)
            if not student:
                raise not_found("Student not found")
            if student.advisor_id != advisor.id:
                raise forbidden("You can only create meetings for your own students")

            meeting = Meeting(
                student_id=student.id,
                semester_id=semester.id,
                secret_code=_generate_secret_code(db),
            )
            db.add(meeting)
            db.flush()
            logger.info("Created meeting %s for student %s", meeting.id, student.id)
            return ActionResult(success=True, id=meeting.id).model_dump(mode="json")


def _meeting_item(db: Session, meeting: Meeting) -> MeetingItem:
    item = MeetingItem.model_validate(meeting)
    student = db.get(Student, meeting.student_id)
    if student:
        item.student = StudentItem.model_validate(student)
    if meeting.time_slot_id:
        slot = db.get(TimeSlot, meeting.time_slot_id)
        if slot:
            item.time_slot = TimeSlotItem.model_validate(slot)
    return item


@operation(MeetingDetailResult, "loading meeting")
def get_meeting_by_code(secret_code: str) -> dict:
    """Everything the student booking page needs, looked up by the invite's secret code."""
    with SessionLocal() as db:
        meeting = db.scalar(select(Meeting).where(Meeting.secret_code == secret_code))
        if not meeting:
            raise not_found("Meeting not found")
        if not db.get(Student, meeting.student_id):
            raise not_found("Student not found")
        semester = db.get(Semester, meeting.semester_id)
        if not semester:
            raise not_found("Semester not found")
        advisor = db.get(Advisor, semester.advisor_id)
        if not advisor:
            raise not_found("Advisor not found")

        return MeetingDetailResult(
            success=True,
            meeting=_meeting_item(db, meeting),
            semester=SemesterItem.model_validate(semester),
            advisor=AdvisorPublicItem.model_validate(advisor),
            available_slots=[TimeSlotItem.model_validate(slot) for slot in open_slots_for_meeting(db, meeting)],
        ).model_dump(mode="json")


def _advisor_context(db: Session, semester_id: str, student: Student | None) -> tuple[dict, str | None]:
    semester = db.get(Semester, semester_id)
    advisor = db.get(Advisor, semester.advisor_id) if semester else None
    if not advisor:
        return {}, None
    context = {
        "owner_id": advisor.id,
        "to": advisor.email,
        "reply_to": student.email if student else None,
        "student_name": student.name if student else "Student",
        "student_email": student.email if student else None,
    }
    return context, advisor.timezone


@operation(ActionResult, "booking meeting")
def book_meeting(payload: dict, *, notifier: Notifier | None = None) -> dict:
    request = _parse(BookMeetingRequest, payload, "booking")

    with SessionLocal() as db:
        with db.begin():
            meeting = db.get(Meeting, request.meeting_id)
            # Row lock on the slot serializes concurrent bookers of the same slot.
            slot = db.scalar(select(TimeSlot).where(TimeSlot.id == request.time_slot_id).with_for_update())
            if not meeting:
                raise not_found("Meeting not found")
            if not slot:
                raise not_found("Time slot not found")
            if not _codes_match(meeting.secret_code, request.secret_code):
                raise unauthorized("Incorrect secret code")
            if meeting.semester_id != slot.semester_id:
                raise conflict("Semesters are mismatched")
            if meeting.time_slot_id is not None:
                if meeting.time_slot_id == slot.id:
                    raise conflict("Time slot is already assigned to this meeting")
                raise conflict("Another time slot is already assigned to this meeting")
            if db.scalar(meeting_for_slot_query(slot.id).where(Meeting.id != meeting.id)):
                raise conflict("Time slot is already booked")

            student = db.get(Student, meeting.student_id)
            contact_updates: dict[str, str] = {}
            if request.booker_email or request.booker_phone:
                if not student:
                    raise not_found("Student not found")
                contact, check = RuleEngine.validate_contact(request.booker_email, request.booker_phone)
                _ensure(check)
                contact_updates = RuleEngine.merge_contact(student, contact)

            claimed = db.execute(
                update(Meeting)
                .where(Meeting.id == meeting.id, Meeting.time_slot_id.is_(None))
                .values(time_slot_id=slot.id)
            )
            if claimed.rowcount != 1:
                raise conflict("Another time slot is already assigned to this meeting")
            for field, value in contact_updates.items():
                setattr(student, field, value)

            context, tz_name = _advisor_context(db, meeting.semester_id, student)
            if context:
                context["meeting_time"] = format_for_humans(slot.start_date_time, tz_name)
            logger.info("Meeting %s booked into slot %s", meeting.id, slot.id)

    _notify(notifier, NotificationKind.MEETING_BOOKED, request.meeting_id, context or None)
    return ActionResult(success=True, id=request.meeting_id).model_dump(mode="json")


@operation(ActionResult, "cancelling booking")
def cancel_booking(
    payload: dict,
    advisor: AdvisorIdentity | None = None,
    *,
    notifier: Notifier | None = None,
) -> dict:
    """Clear a meeting's slot; students prove access with the secret code, advisors by ownership."""
    request = _parse(CancelBookingRequest, payload, "cancellation")

    with SessionLocal() as db:
        with db.begin():
            meeting = db.scalar(select(Meeting).where(Meeting.id == request.meeting_id).with_for_update())
            if not meeting:
                raise not_found("Meeting not found")
            if advisor is not None:
                semester = db.get(Semester, meeting.semester_id)
                if not semester or semester.advisor_id != advisor.id:
                    raise forbidden("You can only cancel meetings for your own semesters")
            elif not _codes_match(meeting.secret_code, request.secret_code):
                raise unauthorized("Incorrect secret code")
            if meeting.time_slot_id is None:
                raise conflict("Meeting does not have a booked time slot")

            old_slot = db.get(TimeSlot, meeting.time_slot_id)
            meeting.time_slot_id = None
            db.flush()

            student = db.get(Student, meeting.student_id)
            context, tz_name = _advisor_context(db, meeting.semester_id, student)
            if context and old_slot:
                context["old_meeting_time"] = format_for_humans(old_slot.start_date_time, tz_name)
            logger.info("Booking cancelled for meeting %s", meeting.id)

    _notify(notifier, NotificationKind.MEETING_CANCELLED, request.meeting_id, context or None)
    return ActionResult(success=True, id=request.meeting_id).model_dump(mode="json")


@operation(MeetingListResult, "listing meetings")
def list_meetings_for_semester(advisor: AdvisorIdentity | None, semester_id: str) -> dict:
    advisor = _require_advisor(advisor, "view meetings")
    with SessionLocal() as db:
        semester = db.get(Semester, semester_id)
        if not semester:
            raise not_found("Semester not found")
        if semester.advisor_id != advisor.id:
            raise forbidden("You can only view meetings for your own semesters")

        meetings = db.scalars(
            select(Meeting).where(Meeting.semester_id == semester.id).order_by(Meeting.created_at.asc())
        )
        items = [_meeting_item(db, meeting) for meeting in meetings]
        return MeetingListResult(success=True, meetings=items).model_dump(mode="json")


@operation(ActionResult, "deleting meeting")
def delete_meeting(advisor: AdvisorIdentity | None, meeting_id: str) -> dict:
    advisor = _require_advisor(advisor, "delete meetings")
    with SessionLocal() as db:
        with db.begin():
            meeting = db.get(Meeting, meeting_id)
            if not meeting:
                raise not_found("Meeting not found")
            semester = db.get(Semester, meeting.semester_id)
            if not semester or semester.advisor_id != advisor.id:
                raise forbidden("You can only delete meetings for your own semesters")

            db.delete(meeting)
            logger.info("Deleted meeting %s", meeting_id)
            return ActionResult(success=True, id=meeting_id).model_dump(mode="json")


@operation(ActionResult, "sending meeting invite")
def send_meeting_invite(
    advisor: AdvisorIdentity | None,
    meeting_id: str,
    *,
    notifier: Notifier | None = None,
) -> dict:
    advisor = _require_advisor(advisor, "send meeting invites")
    with SessionLocal() as db:
        meeting = db.get(Meeting, meeting_id)
        if not meeting:
            raise not_found("Meeting not found")
        semester = db.get(Semester, meeting.semester_id)
        if not semester or semester.advisor_id != advisor.id:
            raise forbidden("You can only send invites for your own meetings")
        student = db.get(Student, meeting.student_id)
        if not student:
            raise not_found("Student not found")
        if not student.email:
            raise invalid("Student does not have an email address on file")
        owner = db.get(Advisor, advisor.id)
        if not owner:
            raise not_found("Advisor not found")

        context = {
            "owner_id": owner.id,
            "to": student.email,
            "reply_to": owner.email,
            "student_name": student.name,
            "advisor_name": owner.full_name or owner.email,
            "advisor_email": owner.email,
            "meeting_link": f"{get_settings().app_url}/meeting/{meeting.secret_code}",
        }

    try:
        (notifier or get_notifier()).send_notification(NotificationKind.MEETING_INVITE, meeting_id, context)
    except Exception:
        logger.warning("Failed to send invite for meeting %s", meeting_id, exc_info=True)
        return failure(ActionResult, ErrorKind.INTERNAL, "Could not send the invite email.")
    return ActionResult(success=True, id=meeting_id).model_dump(mode="json")


# Students


def _validated_contact(model: StudentUpsertRequest) -> tuple[Optional[str], Optional[str]]:
    contact, check = RuleEngine.validate_contact(model.email, model.phone)
    _ensure(check)
    return (str(contact.email) if contact.email else None), contact.phone


def _owned_student(db: Session, advisor: AdvisorIdentity, student_id: str, *, denied: str) -> Student:
    student = db.get(Student, student_id)
    if not student:
        raise not_found("Student not found")
    if student.advisor_id != advisor.id:
        raise forbidden(denied)
    return student


@operation(StudentListResult, "listing students")
def list_students(advisor: AdvisorIdentity | None) -> dict:
    advisor = _require_advisor(advisor, "view students")
    with SessionLocal() as db:
        items: list[StudentItem] = []
        for student in db.scalars(select(Student).where(Student.advisor_id == advisor.id).order_by(Student.name)):
            item = StudentItem.model_validate(student)
            item.last_meeting_semester = db.scalar(
                select(Semester.display_name)
                .join(Meeting, Meeting.semester_id == Semester.id)
                .where(Meeting.student_id == student.id)
                .order_by(Semester.start_date.desc())
                .limit(1)
            )
            items.append(item)
        return StudentListResult(success=True, students=items).model_dump(mode="json")


@operation(ActionResult, "creating student")
def create_student(advisor: AdvisorIdentity | None, payload: dict) -> dict:
    advisor = _require_advisor(advisor, "create a student")
    model = _parse(StudentUpsertRequest, payload, "student")
    email, phone = _validated_contact(model)

    with SessionLocal() as db:
        with db.begin():
            student = Student(advisor_id=advisor.id, name=model.name, email=email, phone=phone)
            db.add(student)
            db.flush()
            return ActionResult(success=True, id=student.id).model_dump(mode="json")


@operation(ActionResult, "updating student")
def update_student(advisor: AdvisorIdentity | None, student_id: str, payload: dict) -> dict:
    advisor = _require_advisor(advisor, "update a student")
    model = _parse(StudentUpsertRequest, payload, "student")
    email, phone = _validated_contact(model)

    with SessionLocal() as db:
        with db.begin():
            student = _owned_student(db, advisor, student_id, denied="You can only update your own students")
            student.name = model.name
            student.email = email
            student.phone = phone
            db.flush()
            return ActionResult(success=True, id=student.id).model_dump(mode="json")


@operation(ActionResult, "deleting student")
def delete_student(advisor: AdvisorIdentity | None, student_id: str) -> dict:
    advisor = _require_advisor(advisor, "delete a student")
    with SessionLocal() as db:
        with db.begin():
            student = _owned_student(db, advisor, student_id, denied="You can only delete your own students")
            db.execute(delete(Meeting).where(Meeting.student_id == student.id))
            db.delete(student)
            logger.info("Deleted student %s", student_id)
            return ActionResult(success=True, id=student_id).model_dump(mode="json")
