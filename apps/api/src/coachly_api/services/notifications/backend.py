"""Delivery backends for influencer notification emails."""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Optional, Protocol

from coachly_api.core.settings import Settings


class EmailBackend(Protocol):
    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        ...


@dataclass(frozen=True)
class SMTPEmailBackend:
    """Sends through an SMTP relay on a worker thread so the event loop never blocks."""

    host: str
    sender_email: str
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "SMTPEmailBackend | None":
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None
        return cls(
            host=settings.smtp_host,
            sender_email=settings.smtp_sender_email,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        message = build_message(recipient, subject, body_text, body_html, sender=self.sender_email)
        await asyncio.to_thread(self._deliver, message)

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)


@dataclass
class InMemoryEmailBackend:
    """Keeps outbound messages in a list; used by tests and local runs without SMTP."""

    sent_messages: list[EmailMessage] = field(default_factory=list)

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        self.sent_messages.append(build_message(recipient, subject, body_text, body_html))


def build_message(
    recipient: str,
    subject: str,
    body_text: str,
    body_html: str | None = None,
    *,
    sender: str | None = None,
) -> EmailMessage:
    message = EmailMessage()
    message["To"] = recipient
    message["Subject"] = subject
    if sender:
        message["From"] = sender
    message.set_content(body_text)
    if body_html:
        message.add_alternative(body_html, subtype="html")
    return message
