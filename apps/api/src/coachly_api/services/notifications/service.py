"""Fire-and-forget email notifications for influencer events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from loguru import logger

from coachly_api.core.settings import get_settings

from .backend import EmailBackend, SMTPEmailBackend
from .templates import render_template


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    recipient: str
    subject: str
    template_type: str
    metadata: dict[str, Any]


class EmailNotifier:
    """Renders a template and hands it to the configured backend.

    ``send`` never raises: delivery problems are logged and reported as
    ``False`` so money-moving callers are never interrupted by email.
    """

    def __init__(self, backend: Optional[EmailBackend] = None) -> None:
        self._backend = backend if backend is not None else self._build_default_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    async def send(self, template_type: str, variables: Mapping[str, Any]) -> bool:
        recipient = variables.get("recipient")
        if self._backend is None or not recipient:
            return False

        try:
            template = render_template(template_type, variables)
            await self._backend.send_email(
                str(recipient),
                template.subject,
                template.text_body,
                body_html=template.html_body,
            )
        except Exception as exc:  # noqa: BLE001 - email is never fatal here
            logger.warning(
                "Notification delivery failed",
                template_type=template_type,
                recipient=recipient,
                error=str(exc),
            )
            return False

        self._events.append(
            NotificationEvent(
                recipient=str(recipient),
                subject=template.subject,
                template_type=template_type,
                metadata={key: value for key, value in variables.items() if key != "recipient"},
            )
        )
        return True

    @staticmethod
    def _build_default_backend() -> Optional[EmailBackend]:
        return SMTPEmailBackend.from_settings(get_settings())
