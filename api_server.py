from __future__ import annotations

import hmac
import json
import logging
from contextlib import asynccontextmanager
from typing import Literal, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from advising import engine
from advising.notifications import handle_email_event, list_emails
from advising.schema import ActionResult, AdvisorIdentity, ErrorKind, failure
from advising.webhook_security import verify_svix_signature
from config import get_settings
from db.session import validate_db_compatibility

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = settings.app_name
APP_VERSION = settings.app_version
ADVISOR_ID_HEADER = "X-Advisor-Id"
API_KEY_HEADER = "X-API-Key"
ADMIN_API_KEY_HEADER = "X-Admin-API-Key"

ERROR_STATUS_CODES = {
    ErrorKind.VALIDATION.value: 400,
    ErrorKind.UNAUTHORIZED.value: 401,
    ErrorKind.FORBIDDEN.value: 403,
    ErrorKind.NOT_FOUND.value: 404,
    ErrorKind.CONFLICT.value: 409,
    ErrorKind.INTERNAL.value: 500,
}


def current_advisor(
    x_advisor_id: Optional[str] = Header(default=None, alias=ADVISOR_ID_HEADER),
    x_api_key: Optional[str] = Header(default=None, alias=API_KEY_HEADER),
) -> AdvisorIdentity | None:
    return engine.resolve_advisor(x_advisor_id, x_api_key)


def verify_admin_api_key(x_admin_api_key: Optional[str] = Header(default=None, alias=ADMIN_API_KEY_HEADER)):
    if not x_admin_api_key or not hmac.compare_digest(x_admin_api_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing admin API key.")


async def verified_resend_body(request: Request) -> bytes:
    body = await request.body()
    verified = verify_svix_signature(
        settings.resend_webhook_secret,
        msg_id=request.headers.get("svix-id"),
        timestamp=request.headers.get("svix-timestamp"),
        signature_header=request.headers.get("svix-signature"),
        body=body,
    )
    if not verified:
        raise HTTPException(status_code=401, detail="Invalid or missing webhook signature.")
    return body


def respond(result: dict) -> JSONResponse:
    if result.get("success"):
        return JSONResponse(content=result)
    return JSONResponse(status_code=ERROR_STATUS_CODES.get(result.get("error"), 400), content=result)


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    service: str
    version: str


class StudentBookingRequest(BaseModel):
    time_slot_id: str = Field(..., min_length=1)
    secret_code: str
    booker_email: Optional[str] = None
    booker_phone: Optional[str] = None


class StudentCancelRequest(BaseModel):
    secret_code: str


@asynccontextmanager
async def lifespan(_app: FastAPI):
    validate_db_compatibility()
    logger.info("%s %s ready", APP_NAME, APP_VERSION)
    yield


app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)


@app.get("/health/live", response_model=HealthResponse)
def health_live():
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


@app.get("/health/ready", response_model=HealthResponse)
def health_ready():
    try:
        validate_db_compatibility()
    except Exception as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return HealthResponse(status="ok", service=APP_NAME, version=APP_VERSION)


# Admin


@app.post("/v1/admin/advisors", dependencies=[Depends(verify_admin_api_key)])
def admin_upsert_advisor(payload: dict):
    return respond(engine.upsert_advisor(payload))


# Semesters


@app.get("/v1/semesters")
def list_semesters(advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.list_semesters(advisor))


@app.post("/v1/semesters")
def create_semester(payload: dict, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.create_semester(advisor, payload))


@app.get("/v1/semesters/active")
def active_semester(advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.get_active_semester(advisor))


@app.get("/v1/semesters/{semester_id}")
def get_semester(semester_id: str, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.get_semester(advisor, semester_id))


@app.delete("/v1/semesters/{semester_id}")
def delete_semester(semester_id: str, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.delete_semester(advisor, semester_id))


@app.get("/v1/semesters/{semester_id}/meetings")
def list_semester_meetings(semester_id: str, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.list_meetings_for_semester(advisor, semester_id))


# Time slots


@app.get("/v1/time-slots")
def list_time_slots(semester_id: Optional[str] = None, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.list_time_slots_for_advisor(advisor, semester_id))


@app.post("/v1/time-slots")
def create_time_slot(payload: dict, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.create_time_slot(advisor, payload))


@app.post("/v1/time-slots/bulk")
def create_time_slots(payload: dict, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.create_time_slots(advisor, payload))


@app.delete("/v1/time-slots/{time_slot_id}")
def delete_time_slot(time_slot_id: str, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.delete_time_slot(advisor, time_slot_id))


# Meetings


@app.post("/v1/meetings")
def create_meeting(payload: dict, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.create_meeting(advisor, payload))


@app.delete("/v1/meetings/{meeting_id}")
def delete_meeting(meeting_id: str, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.delete_meeting(advisor, meeting_id))


@app.post("/v1/meetings/{meeting_id}/invite")
def send_invite(meeting_id: str, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.send_meeting_invite(advisor, meeting_id))


@app.post("/v1/meetings/{meeting_id}/cancel")
def advisor_cancel_booking(meeting_id: str, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    if advisor is None:
        return respond(failure(ActionResult, ErrorKind.UNAUTHORIZED, "You must be an advisor to cancel meetings"))
    return respond(engine.cancel_booking({"meeting_id": meeting_id}, advisor))


# Students


@app.get("/v1/students")
def list_students(advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.list_students(advisor))


@app.post("/v1/students")
def create_student(payload: dict, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.create_student(advisor, payload))


@app.put("/v1/students/{student_id}")
def update_student(student_id: str, payload: dict, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.update_student(advisor, student_id, payload))


@app.delete("/v1/students/{student_id}")
def delete_student(student_id: str, advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(engine.delete_student(advisor, student_id))


@app.get("/v1/emails")
def emails(advisor: AdvisorIdentity | None = Depends(current_advisor)):
    return respond(list_emails(advisor))


# Student-facing; the secret code stands in for authentication.


@app.get("/v1/public/meetings/by-code/{secret_code}")
def meeting_by_code(secret_code: str):
    return respond(engine.get_meeting_by_code(secret_code))


@app.get("/v1/public/meetings/{meeting_id}/slots")
def meeting_slots(meeting_id: str, secret_code: str):
    return respond(engine.list_slots_for_meeting(meeting_id, secret_code))


@app.post("/v1/public/meetings/{meeting_id}/book")
def book_meeting(meeting_id: str, request: StudentBookingRequest):
    return respond(engine.book_meeting({"meeting_id": meeting_id, **request.model_dump()}))


@app.post("/v1/public/meetings/{meeting_id}/cancel")
def student_cancel_booking(meeting_id: str, request: StudentCancelRequest):
    return respond(engine.cancel_booking({"meeting_id": meeting_id, "secret_code": request.secret_code}))


@app.post("/v1/webhooks/resend")
def resend_webhook(body: bytes = Depends(verified_resend_body)):
    try:
        payload = json.loads(body)
    except ValueError:
        return respond(failure(ActionResult, ErrorKind.VALIDATION, "Webhook body is not valid JSON"))
    return respond(handle_email_event(payload))


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
