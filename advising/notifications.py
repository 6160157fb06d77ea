"""Outbound meeting notifications and email delivery bookkeeping.

Notifications are fire-and-forget from the engine's point of view: a failed
send is logged and never undoes the booking or cancellation that triggered it.
Every dispatched message is recorded as an ``Email`` row whose status is later
advanced by Resend delivery-event webhooks.
"""

from __future__ import annotations

import html
import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Mapping, Optional, Protocol

import httpx
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from advising.models import Email
from advising.schema import (
    ActionResult,
    AdvisorIdentity,
    EmailEvent,
    EmailItem,
    EmailListResult,
    EmailStatus,
    ErrorKind,
    NotificationKind,
    failure,
)
from config import Settings, get_settings
from db.session import SessionLocal

logger = logging.getLogger(__name__)

BRAND_NAME = "Advisement Scheduler"


class EmailServiceError(RuntimeError):
    """Raised when an email could not be handed to the provider."""


class Notifier(Protocol):
    def send_notification(self, kind: NotificationKind, meeting_id: str, context: Mapping[str, Any]) -> None:
        ...


def _paragraphs(*parts: str) -> str:
    return "".join(f"<p>{part}</p>" for part in parts if part)


def _wrap(heading: str, body: str) -> str:
    return (
        f"<html><body>"
        f"<p><strong>{BRAND_NAME}</strong></p>"
        f"<h2>{html.escape(heading)}</h2>"
        f"{body}"
        f"<hr><p>This notification was sent automatically by {BRAND_NAME}.</p>"
        f"</body></html>"
    )


def render_notification(kind: NotificationKind, context: Mapping[str, Any]) -> tuple[str, str]:
    """Build the subject line and HTML body for a notification."""
    esc = {key: html.escape(str(value)) for key, value in context.items() if value is not None}
    student_name = esc.get("student_name", "Student")
    student_email = esc.get("student_email")
    student = f"<strong>{student_name}</strong>" + (f" ({student_email})" if student_email else "")

    if kind == NotificationKind.MEETING_INVITE:
        advisor_name = esc.get("advisor_name", "your advisor")
        advisor_email = esc.get("advisor_email")
        link = esc.get("meeting_link", "")
        subject = f"Schedule your advisement meeting with {context.get('advisor_name') or 'your advisor'}"
        body = _paragraphs(
            f"Hi {student_name},",
            f"{advisor_name[:1].upper()}{advisor_name[1:]} has invited you to schedule a 15 minute advisement "
            "meeting. Use the link below to view available time slots and book a time that works for you.",
            f'<a href="{link}">View Available Time Slots</a>',
            f"Questions? Contact your advisor at {advisor_email}." if advisor_email else "",
        )
        return subject, _wrap(f"Advisement meeting with {context.get('advisor_name') or 'your advisor'}", body)

    if kind == NotificationKind.MEETING_BOOKED:
        meeting_time = esc.get("meeting_time", "")
        subject = f"{context.get('student_name', 'Student')} scheduled an advisement meeting"
        body = _paragraphs(
            f"{student} has scheduled an advisement meeting for <strong>{meeting_time}</strong>.",
            "You can view and manage all upcoming meetings from your dashboard.",
        )
        return subject, _wrap("Meeting Scheduled", body)

    if kind == NotificationKind.MEETING_CANCELLED:
        old_time = esc.get("old_meeting_time")
        subject = f"{context.get('student_name', 'Student')} cancelled an advisement meeting"
        scheduled_for = f" that was scheduled for {old_time}" if old_time else ""
        body = _paragraphs(
            f"{student} has cancelled their advisement meeting{scheduled_for}.",
            f"No action is required on your end, but you may want to follow up with {student_name} to reschedule.",
        )
        return subject, _wrap("Meeting Cancelled", body)

    raise ValueError(f"Unsupported notification kind: {kind}")


class EmailNotifier(ABC):
    """Renders notifications, hands them to a transport and records them."""

    def send_notification(self, kind: NotificationKind, meeting_id: str, context: Mapping[str, Any]) -> None:
        subject, html_body = render_notification(kind, context)
        to = context["to"]
        reply_to = context.get("reply_to")
        try:
            message_id = self._deliver(to=to, subject=subject, html_body=html_body, reply_to=reply_to)
        except httpx.HTTPError as exc:
            raise EmailServiceError(f"Could not reach email provider: {exc}") from exc
        self._record(
            owner_id=context["owner_id"],
            external_message_id=message_id,
            to=to,
            subject=subject,
            html_body=html_body,
            reply_to=reply_to,
        )
        logger.info("Dispatched %s notification for meeting %s", kind.value, meeting_id)

    @abstractmethod
    def _deliver(self, *, to: str, subject: str, html_body: str, reply_to: Optional[str]) -> Optional[str]:
        """Hand the message to the provider and return its message id, if any."""

    @staticmethod
    def _record(
        *,
        owner_id: str,
        external_message_id: Optional[str],
        to: str,
        subject: str,
        html_body: str,
        reply_to: Optional[str],
    ) -> None:
        with SessionLocal() as db:
            with db.begin():
                db.add(
                    Email(
                        owner_id=owner_id,
                        external_message_id=external_message_id,
                        status=EmailStatus.QUEUED.value,
                        to=to,
                        subject=subject,
                        html=html_body,
                        reply_to=reply_to,
                    )
                )


class ResendNotifier(EmailNotifier):
    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    def _deliver(self, *, to: str, subject: str, html_body: str, reply_to: Optional[str]) -> Optional[str]:
        headers = {
            "Authorization": f"Bearer {self._settings.resend_api_key}",
            "Content-Type": "application/json",
        }
        json_payload: dict[str, object] = {
            "from": self._settings.resend_from_email,
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        if reply_to:
            json_payload["reply_to"] = [reply_to]

        with httpx.Client(
            base_url=self._settings.resend_api_base_url,
            timeout=self._settings.resend_timeout_seconds,
            transport=self._transport,
        ) as client:
            response = client.post("/emails", json=json_payload, headers=headers)

        if response.status_code >= 400:
            raise EmailServiceError(f"Resend returned {response.status_code}: {response.text}")
        return response.json().get("id")


class LogNotifier(EmailNotifier):
    """Used when no email provider is configured; messages are recorded but not sent."""

    def _deliver(self, *, to: str, subject: str, html_body: str, reply_to: Optional[str]) -> Optional[str]:
        logger.info("Email delivery disabled; would send %r to %s", subject, to)
        return None


@lru_cache
def get_notifier() -> Notifier:
    settings = get_settings()
    if settings.resend_api_key:
        return ResendNotifier(settings)
    logger.info("RESEND_API_KEY not set; notifications will only be logged")
    return LogNotifier()


def handle_email_event(payload: dict) -> dict:
    """Apply a provider delivery event to the matching Email record."""
    try:
        event = EmailEvent.model_validate(payload)
    except ValidationError as exc:
        return failure(ActionResult, ErrorKind.VALIDATION, f"Invalid email event payload: {exc}")

    try:
        status = EmailStatus(event.type)
    except ValueError:
        return failure(ActionResult, ErrorKind.VALIDATION, f"Unsupported email event type: {event.type}")

    with SessionLocal() as db:
        try:
            with db.begin():
                email = db.scalar(select(Email).where(Email.external_message_id == event.data.email_id))
                if not email:
                    return failure(ActionResult, ErrorKind.NOT_FOUND, "Email not found")
                email.status = status.value
                db.flush()
                return ActionResult(success=True, id=email.id).model_dump(mode="json")
        except SQLAlchemyError:
            db.rollback()
            logger.error("Database error while recording email event %s", event.type, exc_info=True)
            return failure(ActionResult, ErrorKind.INTERNAL, "Database error while recording email event.")


def list_emails(advisor: AdvisorIdentity | None) -> dict:
    if advisor is None:
        return failure(EmailListResult, ErrorKind.UNAUTHORIZED, "You must be an advisor to view emails")

    with SessionLocal() as db:
        stmt = (
            select(Email)
            .where(Email.owner_id == advisor.id)
            .order_by(Email.created_at.desc())
        )
        emails = [EmailItem.model_validate(email) for email in db.scalars(stmt)]
        return EmailListResult(success=True, emails=emails).model_dump(mode="json")
