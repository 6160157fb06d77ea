"""Pydantic schemas for advisor and student scheduling flows."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL = "INTERNAL"


class EmailStatus(str, Enum):
    QUEUED = "email.queued"
    SENT = "email.sent"
    DELIVERED = "email.delivered"
    DELIVERY_DELAYED = "email.delivery_delayed"
    COMPLAINED = "email.complained"
    BOUNCED = "email.bounced"
    OPENED = "email.opened"
    CLICKED = "email.clicked"
    FAILED = "email.failed"


class NotificationKind(str, Enum):
    MEETING_INVITE = "meeting_invite"
    MEETING_BOOKED = "meeting_booked"
    MEETING_CANCELLED = "meeting_cancelled"


class AdvisorIdentity(BaseModel):
    """The authenticated advisor acting on a request."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class BySemesterId:
    semester_id: str


@dataclass(frozen=True)
class ByAdvisor:
    advisor_id: str


SemesterRef = Union[BySemesterId, ByAdvisor]


def semester_ref(advisor: AdvisorIdentity, semester_id: Optional[str]) -> SemesterRef:
    return BySemesterId(semester_id) if semester_id else ByAdvisor(advisor.id)


# Requests


class SemesterCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    display_name: str = Field(min_length=1)
    start_date: int
    end_date: int


class TimeSlotCreateRequest(BaseModel):
    start: int
    semester_id: Optional[str] = None


class TimeSlotBulkCreateRequest(BaseModel):
    starts: list[int]
    semester_id: Optional[str] = None
    timezone: Optional[str] = None


class MeetingCreateRequest(BaseModel):
    student_id: str = Field(min_length=1)
    semester_id: Optional[str] = None


class BookMeetingRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    meeting_id: str = Field(min_length=1)
    time_slot_id: str = Field(min_length=1)
    secret_code: str
    booker_email: Optional[str] = None
    booker_phone: Optional[str] = None


class CancelBookingRequest(BaseModel):
    meeting_id: str = Field(min_length=1)
    secret_code: Optional[str] = None


class StudentUpsertRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: Optional[str] = None
    phone: Optional[str] = None


class AdvisorUpsertRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    advisor_id: Optional[str] = None
    email: EmailStr
    full_name: Optional[str] = None
    timezone: Optional[str] = None
    api_key: str = Field(min_length=16)


class ContactDetails(BaseModel):
    """Booker-supplied contact info, validated before it reaches a student record."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class EmailEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email_id: str


class EmailEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    data: EmailEventData


# Items


class SemesterItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    advisor_id: str
    display_name: str
    start_date: int
    end_date: int


class StudentItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    advisor_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    last_meeting_semester: Optional[str] = None


class TimeSlotItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    semester_id: str
    start_date_time: int
    end_date_time: int
    student: Optional[StudentItem] = None


class MeetingItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    student_id: str
    semester_id: str
    time_slot_id: Optional[str] = None
    secret_code: str
    student: Optional[StudentItem] = None
    time_slot: Optional[TimeSlotItem] = None


class AdvisorPublicItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: Optional[str] = None


class EmailItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    external_message_id: Optional[str] = None
    status: str
    to: str
    subject: str
    reply_to: Optional[str] = None


# Results


class OperationResult(BaseModel):
    success: bool
    error: Optional[ErrorKind] = None
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class ActionResult(OperationResult):
    id: Optional[str] = None
    ids: Optional[list[str]] = None


class SemesterResult(OperationResult):
    semester: Optional[SemesterItem] = None


class SemesterListResult(OperationResult):
    semesters: list[SemesterItem] = Field(default_factory=list)


class TimeSlotListResult(OperationResult):
    time_slots: list[TimeSlotItem] = Field(default_factory=list)


class MeetingListResult(OperationResult):
    meetings: list[MeetingItem] = Field(default_factory=list)


class MeetingDetailResult(OperationResult):
    meeting: Optional[MeetingItem] = None
    semester: Optional[SemesterItem] = None
    advisor: Optional[AdvisorPublicItem] = None
    available_slots: list[TimeSlotItem] = Field(default_factory=list)


class StudentListResult(OperationResult):
    students: list[StudentItem] = Field(default_factory=list)


class EmailListResult(OperationResult):
    emails: list[EmailItem] = Field(default_factory=list)


def failure(result_cls: type[OperationResult], error: ErrorKind, reason: str) -> dict:
    return result_cls(success=False, error=error, reason=reason).model_dump(mode="json")
