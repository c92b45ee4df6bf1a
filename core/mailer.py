"""
mailer.py -- Outbound email via the Resend REST API.

Every send_* method returns a bool and never raises. Callers decide what a
failed send means (registration reports email_sent=false, forgot-password
stays silent). Failures are logged with the recipient domain only.

When RESEND_API_KEY is empty, outbound email is disabled:
  - verification and reset emails return False (the user cannot receive them)
  - contact-form submissions are logged and return True, so the form still
    works in local development

User-supplied text in the contact email is HTML-escaped before it is
interpolated into the template.
"""

import html
import logging
from typing import Optional

import requests

from core.config import Settings, get_settings

logger = logging.getLogger("whiskeycanon.mailer")

RESEND_TIMEOUT = 10

_HEADER = (
    '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
    '<div style="text-align: center; margin-bottom: 30px;">'
    '<h1 style="color: #5B9BD5; margin: 0;">Whiskey Canon</h1>'
    '<p style="color: #666; margin-top: 5px;">Your Whiskey Collection Manager</p>'
    "</div>"
)
_FOOTER = '<div style="text-align: center; margin-top: 30px; color: #999; font-size: 12px;"><p>{}</p></div></div>'

# Module-level session shared across sends for connection pooling.
_session = requests.Session()
_session.max_redirects = 3


def _domain(address: str) -> str:
    return address.rpartition("@")[2] or "unknown"


class Mailer:
    """Thin Resend client. One instance lives on app.state.mailer."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    @property
    def enabled(self) -> bool:
        return bool(self.settings.resend_api_key)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def send_verification_email(self, to: str, code: str) -> bool:
        body = (
            _HEADER + '<div style="background-color: #f8f9fa; border-radius: 8px; padding: 30px; text-align: center;">'
            '<h2 style="color: #333; margin-top: 0;">Verify Your Email</h2>'
            "<p>Enter the following code to verify your email address and complete your registration:</p>"
            f'<div style="font-size: 32px; font-weight: bold; letter-spacing: 4px;">{html.escape(code)}</div>'
            '<p style="color: #999; font-size: 14px;">This code will expire in 15 minutes.</p></div>'
            + _FOOTER.format("If you didn't create an account with Whiskey Canon, you can safely ignore this email.")
        )
        return self._send(to=[to], subject="Verify your Whiskey Canon account", html_body=body)

    def send_password_reset_email(self, to: str, token: str) -> bool:
        reset_url = html.escape(f"{self.settings.frontend_url}/reset-password?token={token}")
        body = (
            _HEADER + '<div style="background-color: #f8f9fa; border-radius: 8px; padding: 30px; text-align: center;">'
            '<h2 style="color: #333; margin-top: 0;">Reset Your Password</h2>'
            "<p>We received a request to reset your password. Click the button below to create a new password:</p>"
            f'<a href="{reset_url}" style="display: inline-block; background-color: #5B9BD5; color: #fff; '
            'padding: 14px 28px; border-radius: 6px;">Reset Password</a>'
            '<p style="color: #999; font-size: 14px;">This link will expire in 1 hour.</p>'
            f'<p style="color: #999; font-size: 12px;">Or paste this link into your browser:<br>{reset_url}</p></div>'
            + _FOOTER.format(
                "If you didn't request a password reset, you can safely ignore this email. "
                "Your password will remain unchanged."
            )
        )
        return self._send(to=[to], subject="Reset your Whiskey Canon password", html_body=body)

    def send_contact_email(self, name: str, email: str, subject: str, message: str) -> bool:
        if not self.enabled:
            logger.info(
                "Email not configured; contact form submission from %s <%s>: %s",
                name,
                email,
                subject,
            )
            return True

        body = (
            _HEADER + '<div style="background-color: #f8f9fa; border-radius: 8px; padding: 30px;">'
            '<h2 style="color: #333; margin-top: 0;">New Contact Form Submission</h2>'
            f"<p><strong>From:</strong> {html.escape(name)} &lt;{html.escape(email)}&gt;</p>"
            f"<p><strong>Subject:</strong> {html.escape(subject)}</p>"
            f'<div style="background-color: #fff; padding: 15px;">{html.escape(message).replace(chr(10), "<br>")}</div>'
            "</div>" + _FOOTER.format("A copy of this message was sent to the address above.")
        )
        return self._send(
            to=[self.settings.contact_recipient, email],
            subject=f"[Whiskey Canon Contact] {subject}",
            html_body=body,
            reply_to=email,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(self, to: list[str], subject: str, html_body: str, reply_to: Optional[str] = None) -> bool:
        if not self.enabled:
            logger.warning("RESEND_API_KEY not set; cannot send %r", subject)
            return False

        payload: dict = {
            "from": self.settings.resend_from_email,
            "to": to,
            "subject": subject,
            "html": html_body,
        }
        if reply_to:
            payload["reply_to"] = reply_to

        try:
            resp = _session.post(
                self.settings.resend_api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.settings.resend_api_key}"},
                timeout=RESEND_TIMEOUT,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Email send failed (%r to %s): %s", subject, _domain(to[0]), e)
            return False
        return True
