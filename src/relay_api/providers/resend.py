"""
Email adapter: transactional mail through Resend, plus the four templates.

Templates (emailType -> required data fields):
    student_invitation  studentName, teacherName, invitationLink, language
    teacher_invitation  teacherName, studentName, invitationLink, language
    contact             name, email, message (subject optional)
    welcome             userName, language, dashboardLink

Caller data is HTML-escaped before it is placed in the HTML body.
"""
from __future__ import annotations

import html
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from relay_api.core.config import ProvidersConfig
from relay_api.core.errors import RelayError
from relay_api.core.logging import get_logger, info

_LOG = get_logger("relay.providers.resend")

PROVIDER = "resend"


class EmailType(str, Enum):
    STUDENT_INVITATION = "student_invitation"
    TEACHER_INVITATION = "teacher_invitation"
    CONTACT = "contact"
    WELCOME = "welcome"


REQUIRED_FIELDS: Dict[EmailType, List[str]] = {
    EmailType.STUDENT_INVITATION: ["studentName", "teacherName", "invitationLink", "language"],
    EmailType.TEACHER_INVITATION: ["teacherName", "studentName", "invitationLink", "language"],
    EmailType.CONTACT: ["name", "email", "message"],
    EmailType.WELCOME: ["userName", "language", "dashboardLink"],
}


OPTIONAL_FIELDS: Dict[EmailType, List[str]] = {
    EmailType.CONTACT: ["subject"],
}


def missing_fields(email_type: EmailType, data: Mapping[str, Any]) -> List[str]:
    """Required template fields that are absent or empty."""
    return [f for f in REQUIRED_FIELDS[email_type] if data.get(f) in (None, "")]


def non_string_fields(email_type: EmailType, data: Mapping[str, Any]) -> List[str]:
    """Template fields, required or optional, holding something other than a string."""
    names = REQUIRED_FIELDS[email_type] + OPTIONAL_FIELDS.get(email_type, [])
    return [f for f in names if data.get(f) not in (None, "") and not isinstance(data[f], str)]


@dataclass
class RenderedEmail:
    subject: str
    text: str
    html: str
    tags: List[Dict[str, str]] = field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# Templates
# ─────────────────────────────────────────────────────────────────────────────

_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{title}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
{content}
  </div>
</body>
</html>"""

_BUTTON = """    <div style="text-align: center; margin: 30px 0;">
      <a href="{href}" style="background-color: #2563eb; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">{label}</a>
    </div>"""

_SIGNATURE = "Best regards,\nThe iAlla Team"


def _page(subject: str, content: str) -> str:
    return _PAGE.format(title=html.escape(subject), content=content)


def _button(href: str, label: str) -> str:
    return _BUTTON.format(href=html.escape(href, quote=True), label=label)


def _tags(email_type: EmailType, language: Optional[str] = None) -> List[Dict[str, str]]:
    tags = [{"name": "email_type", "value": email_type.value}]
    if language:
        tags.append({"name": "language", "value": language})
    return tags


def _student_invitation(d: Mapping[str, Any]) -> RenderedEmail:
    e = {k: html.escape(str(v)) for k, v in d.items()}
    subject = f"You've been invited to learn {d['language']} with {d['teacherName']}"
    text = (
        f"Hello {d['studentName']},\n\n"
        f"{d['teacherName']} has invited you to join their {d['language']} learning session on iAlla.\n\n"
        f"Click here to accept the invitation: {d['invitationLink']}\n\n{_SIGNATURE}"
    )
    body = "\n".join([
        f'    <h2 style="color: #2563eb;">You\'ve been invited to learn {e["language"]}!</h2>',
        f"    <p>Hello {e['studentName']},</p>",
        f"    <p><strong>{e['teacherName']}</strong> has invited you to join their "
        f"{e['language']} learning session on iAlla.</p>",
        _button(d["invitationLink"], "Accept Invitation"),
        "    <p>Best regards,<br>The iAlla Team</p>",
    ])
    return RenderedEmail(subject, text, _page(subject, body), _tags(EmailType.STUDENT_INVITATION, d["language"]))


def _teacher_invitation(d: Mapping[str, Any]) -> RenderedEmail:
    e = {k: html.escape(str(v)) for k, v in d.items()}
    subject = f"You've been invited to teach {d['language']} to {d['studentName']}"
    text = (
        f"Hello {d['teacherName']},\n\n"
        f"{d['studentName']} has invited you to be their {d['language']} teacher on iAlla.\n\n"
        f"Click here to accept the invitation: {d['invitationLink']}\n\n{_SIGNATURE}"
    )
    body = "\n".join([
        f'    <h2 style="color: #2563eb;">You\'ve been invited to teach {e["language"]}!</h2>',
        f"    <p>Hello {e['teacherName']},</p>",
        f"    <p><strong>{e['studentName']}</strong> has invited you to be their "
        f"{e['language']} teacher on iAlla.</p>",
        _button(d["invitationLink"], "Accept Invitation"),
        "    <p>Best regards,<br>The iAlla Team</p>",
    ])
    return RenderedEmail(subject, text, _page(subject, body), _tags(EmailType.TEACHER_INVITATION, d["language"]))


def _contact(d: Mapping[str, Any]) -> RenderedEmail:
    e = {k: html.escape(str(v)) for k, v in d.items()}
    subject = d.get("subject") or f"Contact from {d['name']}"
    text = f"Name: {d['name']}\nEmail: {d['email']}\n\nMessage:\n{d['message']}"
    message_html = e["message"].replace("\n", "<br>")
    body = "\n".join([
        '    <h2 style="color: #2563eb;">New Contact Form Submission</h2>',
        f"    <p><strong>Name:</strong> {e['name']}</p>",
        f"    <p><strong>Email:</strong> {e['email']}</p>",
        "    <h3>Message:</h3>",
        '    <div style="background-color: #f8f9fa; padding: 15px; border-radius: 6px; '
        f'border-left: 4px solid #2563eb;">{message_html}</div>',
    ])
    return RenderedEmail(subject, text, _page(subject, body), _tags(EmailType.CONTACT))


def _welcome(d: Mapping[str, Any]) -> RenderedEmail:
    e = {k: html.escape(str(v)) for k, v in d.items()}
    subject = f"Welcome to iAlla, {d['userName']}!"
    text = (
        f"Welcome to iAlla, {d['userName']}!\n\n"
        f"We're excited to help you learn {d['language']}. Get started by visiting your dashboard:\n\n"
        f"{d['dashboardLink']}\n\n{_SIGNATURE}"
    )
    body = "\n".join([
        f'    <h2 style="color: #2563eb;">Welcome to iAlla, {e["userName"]}!</h2>',
        f"    <p>We're excited to help you learn <strong>{e['language']}</strong>.</p>",
        "    <p>Get started by visiting your dashboard:</p>",
        _button(d["dashboardLink"], "Go to Dashboard"),
        "    <p>Best regards,<br>The iAlla Team</p>",
    ])
    return RenderedEmail(subject, text, _page(subject, body), _tags(EmailType.WELCOME, d["language"]))


RENDERERS: Dict[EmailType, Callable[[Mapping[str, Any]], RenderedEmail]] = {
    EmailType.STUDENT_INVITATION: _student_invitation,
    EmailType.TEACHER_INVITATION: _teacher_invitation,
    EmailType.CONTACT: _contact,
    EmailType.WELCOME: _welcome,
}


def render(email_type: EmailType, data: Mapping[str, Any]) -> RenderedEmail:
    """
    Render a template. Required fields must be present and every template
    field a string.

    Raises:
        RelayError: VALIDATION when required fields are missing or a
            template field is not a string.
    """
    missing = missing_fields(email_type, data)
    if missing:
        raise RelayError.validation(
            f"Missing required fields for {email_type.value}: {', '.join(missing)}",
            [{"field": f"data.{f}", "message": "Field required"} for f in missing],
        )
    wrong = non_string_fields(email_type, data)
    if wrong:
        raise RelayError.validation(
            f"Fields must be strings for {email_type.value}: {', '.join(wrong)}",
            [{"field": f"data.{f}", "message": "Must be a string"} for f in wrong],
        )
    return RENDERERS[email_type](data)


# ─────────────────────────────────────────────────────────────────────────────
# Adapter
# ─────────────────────────────────────────────────────────────────────────────

class EmailAdapter:
    """
    Args:
        api_key: Resend key; None means not configured.
        config: Base URL, sender and timeout.
        transport: Optional httpx transport (tests pass MockTransport).
    """

    def __init__(
        self,
        api_key: Optional[str],
        config: Optional[ProvidersConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config or ProvidersConfig()
        self._api_key = api_key
        self._http = httpx.Client(
            base_url=self.config.resend_base_url,
            timeout=self.config.timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def send(self, email_type: EmailType, to: str, data: Mapping[str, Any]) -> Dict[str, str]:
        """
        Render and send one email. No de-duplication.

        Returns:
            {"id": resend message id, "status": "sent"}
        """
        rendered = render(email_type, data)

        if not self._api_key:
            raise RelayError.provider_failure(PROVIDER, "Provider not configured", cause="RESEND_API_KEY is not set")

        body = {
            "from": self.config.email_from,
            "to": [to],
            "subject": rendered.subject,
            "text": rendered.text,
            "html": rendered.html,
            "tags": rendered.tags,
        }
        try:
            resp = self._http.post("/emails", json=body, headers={"Authorization": f"Bearer {self._api_key}"})
        except httpx.HTTPError as e:
            raise RelayError.provider_failure(PROVIDER, "Failed to send email", cause=str(e)) from e
        if not resp.is_success:
            raise RelayError.provider_failure(
                PROVIDER, "Failed to send email", cause=f"HTTP {resp.status_code}: {resp.text[:500]}"
            )

        try:
            message_id = resp.json().get("id") or "unknown"
        except (ValueError, AttributeError):
            message_id = "unknown"

        info(_LOG, "email_sent", email_type=email_type.value, id=message_id)
        return {"id": message_id, "status": "sent"}
