"""Customer notifications sent while provisioning panel accounts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from jinja2 import Environment, select_autoescape

from .models import HostUser

logger = logging.getLogger("virtfusion.notifications")

CREDENTIALS_SUBJECT = "Panel Account Created"
PANEL_BUTTON_LABEL = "VPS Panel"

_environment = Environment(autoescape=select_autoescape(default=True, default_for_string=True))

_CREDENTIALS_TEMPLATE = _environment.from_string(
    "Your account has been created on the vps panel. "
    "You can login using the following details: <br><br> "
    "Email: {{ email }} <br> Password: {{ password }}"
)


@dataclass(frozen=True)
class CallToAction:
    name: str
    url: str


@dataclass(frozen=True)
class EmailMessage:
    """An HTML email handed to the host platform's mailer."""

    subject: str
    content: str
    button: Optional[CallToAction] = None


class Notifier(Protocol):
    """Delivers emails to host users; delivery failures are its own concern."""

    def send(self, user: HostUser, message: EmailMessage) -> None:
        ...


def render_credentials_email(panel_url: str, email: str, password: str) -> EmailMessage:
    """Build the email telling a customer how to sign in to the panel."""

    content = _CREDENTIALS_TEMPLATE.render(email=email, password=password)
    return EmailMessage(
        subject=CREDENTIALS_SUBJECT,
        content=content,
        button=CallToAction(name=PANEL_BUTTON_LABEL, url=panel_url),
    )


class LoggingNotifier:
    """Notifier that only records that an email would have been sent."""

    def send(self, user: HostUser, message: EmailMessage) -> None:
        logger.info("Email %r queued for user %s", message.subject, user.id)


__all__ = [
    "CREDENTIALS_SUBJECT",
    "CallToAction",
    "EmailMessage",
    "LoggingNotifier",
    "Notifier",
    "render_credentials_email",
]
