"""Rule evaluation logic for semesters, time slots and booker contact info."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from advising.models import Semester, Student
from advising.schema import ContactDetails, ErrorKind

SLOT_LENGTH_MINUTES = 15
MAX_DISPLAY_NAME_LENGTH = 50
MIN_SEMESTER_DAYS = 1
MAX_SEMESTER_DAYS = 366

PHONE_PATTERN = re.compile(r"^\+?\d{0,3}\s?[(]?\d{3}[)]?[-\s.]?\d{3}[-\s.]?\d{4}$")


@dataclass
class RuleCheckResult:
    allowed: bool
    reason: str | None = None
    error: ErrorKind = ErrorKind.VALIDATION


def overlaps(a_start: float, a_end: float, b_start: float, b_end: float) -> bool:
    """Half-open interval intersection; intervals that only touch do not overlap."""
    return a_end > b_start and a_start < b_end


def epoch_to_datetime(seconds: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _zone(tz_name: str | None) -> ZoneInfo:
    if not tz_name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def format_epoch(seconds: float, tz_name: str | None = None) -> str:
    return datetime.fromtimestamp(seconds, tz=_zone(tz_name)).isoformat()


def format_for_humans(seconds: float, tz_name: str | None = None) -> str:
    return datetime.fromtimestamp(seconds, tz=_zone(tz_name)).strftime("%A, %B %d, %Y at %I:%M %p %Z")


def slot_end(start: int) -> int:
    return start + SLOT_LENGTH_MINUTES * 60


def overlaps_other_candidate(index: int, candidates: Sequence[tuple[int, int]]) -> bool:
    start, end = candidates[index]
    return any(
        other_index != index and overlaps(start, end, other_start, other_end)
        for other_index, (other_start, other_end) in enumerate(candidates)
    )


class RuleEngine:
    @staticmethod
    def check_display_name(display_name: str) -> RuleCheckResult:
        if len(display_name) > MAX_DISPLAY_NAME_LENGTH:
            return RuleCheckResult(
                allowed=False,
                reason=f"Display name cannot be more than {MAX_DISPLAY_NAME_LENGTH} characters",
            )
        return RuleCheckResult(allowed=True)

    @staticmethod
    def check_semester_duration(start: datetime, end: datetime) -> RuleCheckResult:
        days = (end - start) / timedelta(days=1)
        if days < MIN_SEMESTER_DAYS:
            return RuleCheckResult(allowed=False, reason="Semesters must last at least 1 day")
        if days > MAX_SEMESTER_DAYS:
            return RuleCheckResult(allowed=False, reason="Semester must last less than a year")
        return RuleCheckResult(allowed=True)

    @staticmethod
    def check_slot_within_semester(
        start: int,
        end: int,
        semester: Semester,
        *,
        tz_name: str | None = None,
        labelled: bool = False,
    ) -> RuleCheckResult:
        prefix = f"Slot at {format_epoch(start, tz_name)}" if labelled else "Slot"
        if start < semester.start_date:
            return RuleCheckResult(allowed=False, reason=f"{prefix} cannot start before semester starts")
        if end > semester.end_date:
            return RuleCheckResult(allowed=False, reason=f"{prefix} cannot end after semester ends")
        return RuleCheckResult(allowed=True)

    @staticmethod
    def validate_contact(email: Optional[str], phone: Optional[str]) -> tuple[ContactDetails | None, RuleCheckResult]:
        """Validate email/phone; phones are normalized to their digits."""
        try:
            contact = ContactDetails.model_validate({"email": email or None, "phone": phone or None})
        except ValidationError:
            return None, RuleCheckResult(allowed=False, reason="Invalid email address")

        if contact.phone is not None:
            if not PHONE_PATTERN.match(contact.phone):
                return None, RuleCheckResult(allowed=False, reason="Invalid phone number")
            contact = contact.model_copy(update={"phone": re.sub(r"\D", "", contact.phone)})

        return contact, RuleCheckResult(allowed=True)

    @staticmethod
    def merge_contact(student: Student, contact: ContactDetails) -> dict[str, str]:
        """Fields to fill on the student record; values already on file are never replaced."""
        updates: dict[str, str] = {}
        if not student.email and contact.email:
            updates["email"] = str(contact.email)
        if not student.phone and contact.phone:
            updates["phone"] = contact.phone
        return updates
