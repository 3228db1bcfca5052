from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend, build_message
from .service import EmailNotifier, NotificationEvent
from .templates import RenderedTemplate, UnknownTemplateError, render_template

__all__ = [
    "EmailBackend",
    "EmailNotifier",
    "InMemoryEmailBackend",
    "NotificationEvent",
    "RenderedTemplate",
    "SMTPEmailBackend",
    "UnknownTemplateError",
    "build_message",
    "render_template",
]
