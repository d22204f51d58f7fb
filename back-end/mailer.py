"""
Invitation email delivery.

Two providers are supported, picked with EMAIL_PROVIDER:
  - sendgrid: SendGrid Web API (SENDGRID_API_KEY)
  - mailgun:  Mailgun HTTP API (MAILGUN_API_KEY, MAILGUN_DOMAIN)
  - none:     delivery disabled, messages are only logged (default)
"""
import os
from html import escape
from typing import Optional

import requests
from firebase_functions import logger
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

DEFAULT_EMAIL_PROVIDER = "none"
EMAIL_PROVIDER = os.environ.get("EMAIL_PROVIDER", DEFAULT_EMAIL_PROVIDER).lower()
EMAIL_FROM = os.environ.get("EMAIL_FROM", "TaskFlow <no-reply@taskflow.app>")
APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:9002")
MAILGUN_API_URL = "https://api.mailgun.net/v3/{domain}/messages"
MAILGUN_TIMEOUT_SECONDS = 10

PROVIDERS = {"sendgrid", "mailgun", "none"}


class EmailDeliveryError(Exception):
    pass


def invitation_subject(board_name: str) -> str:
    return f"You've been invited to join \"{board_name}\" on TaskFlow"


def invitation_html(board_name: str, sender_email: str, role: str) -> str:
    board = escape(board_name)
    sender = escape(sender_email)
    return (
        f"<p><strong>{sender}</strong> invited you to collaborate on "
        f"<strong>{board}</strong> as {escape(role)}.</p>"
        f"<p><a href=\"{APP_BASE_URL}\">Open TaskFlow</a> to accept or decline the invitation.</p>"
    )


class Mailer:
    def __init__(
        self,
        provider: str = DEFAULT_EMAIL_PROVIDER,
        from_email: str = EMAIL_FROM,
        sendgrid_api_key: Optional[str] = None,
        mailgun_api_key: Optional[str] = None,
        mailgun_domain: Optional[str] = None,
    ):
        provider = (provider or DEFAULT_EMAIL_PROVIDER).lower()
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown EMAIL_PROVIDER '{provider}'. Must be one of: {', '.join(sorted(PROVIDERS))}")
        self.provider = provider
        self.from_email = from_email
        self.sendgrid_api_key = sendgrid_api_key
        self.mailgun_api_key = mailgun_api_key
        self.mailgun_domain = mailgun_domain

    @classmethod
    def from_env(cls) -> "Mailer":
        return cls(
            provider=EMAIL_PROVIDER,
            from_email=EMAIL_FROM,
            sendgrid_api_key=os.environ.get("SENDGRID_API_KEY"),
            mailgun_api_key=os.environ.get("MAILGUN_API_KEY"),
            mailgun_domain=os.environ.get("MAILGUN_DOMAIN"),
        )

    def send_invitation(self, recipient_email: str, board_name: str, sender_email: str, role: str) -> bool:
        """Send the invitation email.

        Returns False when delivery is disabled. Raises EmailDeliveryError on any provider failure.
        """
        subject = invitation_subject(board_name)
        html = invitation_html(board_name, sender_email, role)

        if self.provider == "sendgrid":
            self._send_sendgrid(recipient_email, subject, html)
        elif self.provider == "mailgun":
            self._send_mailgun(recipient_email, subject, html)
        else:
            logger.info(f"[mailer.send_invitation] delivery disabled, skipping email to {recipient_email}")
            return False
        return True

    def _send_sendgrid(self, to_email: str, subject: str, html: str) -> None:
        if not self.sendgrid_api_key:
            raise EmailDeliveryError("SENDGRID_API_KEY is not configured")
        message = Mail(
            from_email=self.from_email,
            to_emails=to_email,
            subject=subject,
            html_content=html,
        )
        response = SendGridAPIClient(self.sendgrid_api_key).send(message)
        if response.status_code >= 300:
            raise EmailDeliveryError(f"SendGrid responded with status {response.status_code}")
        logger.info(f"[mailer.sendgrid] sent to {to_email} status={response.status_code}")

    def _send_mailgun(self, to_email: str, subject: str, html: str) -> None:
        if not self.mailgun_api_key or not self.mailgun_domain:
            raise EmailDeliveryError("MAILGUN_API_KEY and MAILGUN_DOMAIN must be configured")
        response = requests.post(
            MAILGUN_API_URL.format(domain=self.mailgun_domain),
            auth=("api", self.mailgun_api_key),
            data={
                "from": self.from_email,
                "to": to_email,
                "subject": subject,
                "html": html,
            },
            timeout=MAILGUN_TIMEOUT_SECONDS,
        )
        if response.status_code >= 300:
            raise EmailDeliveryError(f"Mailgun responded with status {response.status_code}")
        logger.info(f"[mailer.mailgun] sent to {to_email} status={response.status_code}")


def notify_invitation(mailer: Optional[Mailer], recipient_email: str, board_name: str, sender_email: str, role: str) -> bool:
    """Best-effort invitation email. Never raises; returns True when the message went out."""
    if mailer is None:
        logger.info(f"[mailer.notify_invitation] no mailer configured, skipping {recipient_email}")
        return False
    try:
        return mailer.send_invitation(recipient_email, board_name, sender_email, role)
    except Exception as e:
        # email is a side channel; the invitation is already stored
        logger.error(f"[mailer.notify_invitation] failed to email {recipient_email}: {e}")
        return False
