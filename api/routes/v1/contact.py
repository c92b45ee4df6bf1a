"""
api/routes/v1/contact.py -- Public contact form.

POST /api/v1/contact relays the message to CONTACT_EMAIL (copying the
sender) through the mailer. Without RESEND_API_KEY the submission is logged
instead and still reported as sent.

Rate class `contact`: 5 submissions per client per 15 minutes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.limiter import RateLimitClass, rate_limit
from api.models import ContactRequest, MessageResponse
from auth.errors import InternalError
from core.mailer import Mailer

# Auth policy: public, CSRF-protected like every POST.
router = APIRouter()


@router.post(
    "/contact",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit(RateLimitClass.contact))],
)
def send_contact(request: Request, body: ContactRequest) -> MessageResponse:
    mailer: Mailer = request.app.state.mailer
    if not mailer.send_contact_email(body.name, body.email, body.subject, body.message):
        raise InternalError("Failed to send message. Please try again later.")
    return MessageResponse(message="Message sent successfully")
