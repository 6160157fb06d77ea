"""Overlap and availability queries for semesters and time slots."""

from __future__ import annotations

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from advising.models import Meeting, Semester, TimeSlot


def overlapping_semester_query(*, advisor_id: str, start_date: int, end_date: int) -> Select:
    return select(Semester).where(
        Semester.advisor_id == advisor_id,
        Semester.end_date > start_date,
        Semester.start_date < end_date,
    )


def active_semester_query(*, advisor_id: str, now: int) -> Select:
    return select(Semester).where(
        Semester.advisor_id == advisor_id,
        Semester.start_date <= now,
        Semester.end_date >= now,
    )


def overlapping_slot_query(*, semester_id: str, start: int, end: int) -> Select:
    return select(TimeSlot).where(
        TimeSlot.semester_id == semester_id,
        TimeSlot.end_date_time > start,
        TimeSlot.start_date_time < end,
    )


def semester_slots_query(semester_id: str) -> Select:
    return (
        select(TimeSlot)
        .where(TimeSlot.semester_id == semester_id)
        .order_by(TimeSlot.start_date_time.asc())
    )


def meeting_for_slot_query(time_slot_id: str) -> Select:
    return select(Meeting).where(Meeting.time_slot_id == time_slot_id)


def reserved_slot_ids(db: Session, *, semester_id: str, exclude_meeting_id: str | None = None) -> set[str]:
    stmt = select(Meeting.time_slot_id).where(
        Meeting.semester_id == semester_id,
        Meeting.time_slot_id.is_not(None),
    )
    if exclude_meeting_id:
        stmt = stmt.where(Meeting.id != exclude_meeting_id)
    return set(db.scalars(stmt))


def open_slots_for_meeting(db: Session, meeting: Meeting) -> list[TimeSlot]:
    """Slots in the meeting's semester that no other meeting has taken."""
    reserved = reserved_slot_ids(db, semester_id=meeting.semester_id, exclude_meeting_id=meeting.id)
    return [slot for slot in db.scalars(semester_slots_query(meeting.semester_id)) if slot.id not in reserved]
