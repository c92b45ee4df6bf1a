"""Integration tests for POST /api/v1/contact."""

from __future__ import annotations

from conftest import AppContext, csrf_headers

_MESSAGE = {
    "name": "Ada",
    "email": "ada@example.com",
    "subject": "Tasting notes",
    "message": "Your rye list is missing Sazerac 18.",
}


def test_message_relayed(app_ctx: AppContext):
    resp = app_ctx.client.post("/api/v1/contact", json=_MESSAGE, headers=csrf_headers(app_ctx.client))
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"message": "Message sent successfully"}
    assert app_ctx.mailer.contact_messages == [
        ("Ada", "ada@example.com", "Tasting notes", "Your rye list is missing Sazerac 18.")
    ]


def test_send_failure_is_500(app_ctx: AppContext):
    app_ctx.mailer.succeed = False
    resp = app_ctx.client.post("/api/v1/contact", json=_MESSAGE, headers=csrf_headers(app_ctx.client))
    assert resp.status_code == 500
    assert resp.json()["error"]["message"] == "Failed to send message. Please try again later."


def test_overlong_message_rejected(app_ctx: AppContext):
    body = {**_MESSAGE, "message": "x" * 5001}
    resp = app_ctx.client.post("/api/v1/contact", json=body, headers=csrf_headers(app_ctx.client))
    assert resp.status_code == 400
    assert app_ctx.mailer.contact_messages == []


def test_sixth_submission_throttled(app_ctx: AppContext):
    client = app_ctx.client
    headers = csrf_headers(client)
    statuses = [client.post("/api/v1/contact", json=_MESSAGE, headers=headers).status_code for _ in range(6)]
    assert statuses == [200] * 5 + [429]


def test_requires_csrf(app_ctx: AppContext):
    assert app_ctx.client.post("/api/v1/contact", json=_MESSAGE).status_code == 403
