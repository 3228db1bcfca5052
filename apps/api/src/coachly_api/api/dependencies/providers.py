"""Provider and collaborator dependencies, overridable in tests."""

from __future__ import annotations

from coachly_api.core.settings import settings
from coachly_api.services.billing.providers import StripeCommerceProvider
from coachly_api.services.notifications import EmailNotifier


def get_stripe_provider() -> StripeCommerceProvider | None:
    """Return a Stripe provider, or ``None`` when no secret key is configured."""

    if not settings.stripe_secret_key:
        return None
    return StripeCommerceProvider.from_settings()


def get_email_notifier() -> EmailNotifier:
    return EmailNotifier()
