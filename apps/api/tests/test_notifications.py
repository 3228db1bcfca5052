from decimal import Decimal

import pytest

from coachly_api.core.settings import Settings
from coachly_api.services.notifications import (
    EmailNotifier,
    InMemoryEmailBackend,
    SMTPEmailBackend,
    UnknownTemplateError,
    render_template,
)


def test_withdrawal_paid_template_masks_account():
    rendered = render_template(
        "withdrawal_paid",
        {
            "display_name": "Jordan",
            "amount": Decimal("42.5"),
            "currency": "usd",
            "account_last4": "6789",
            "payout_id": "tr_1",
        },
    )

    assert rendered.subject == "Payout sent: $42.50"
    assert rendered.text_body.startswith("Hi Jordan,")
    assert "account ending in 6789" in rendered.text_body
    assert "Payout reference: tr_1" in rendered.text_body
    assert "<p>Hi Jordan,</p>" in rendered.html_body


def test_rejected_template_escapes_html():
    rendered = render_template(
        "withdrawal_rejected",
        {"amount": "15", "currency": "cad", "reason": "<b>duplicate</b>"},
    )

    assert rendered.subject == "Withdrawal request declined: 15.00 CAD"
    assert rendered.text_body.startswith("Hi there,")
    assert "&lt;b&gt;duplicate&lt;/b&gt;" in rendered.html_body


def test_unknown_template_raises():
    with pytest.raises(UnknownTemplateError):
        render_template("welcome_series", {})


@pytest.mark.asyncio
async def test_notifier_records_sent_messages():
    backend = InMemoryEmailBackend()
    notifier = EmailNotifier(backend=backend)

    sent = await notifier.send(
        "withdrawal_requested",
        {"recipient": "coach@example.com", "display_name": "Jordan", "amount": Decimal("20"), "currency": "usd"},
    )

    assert sent is True
    assert backend.sent_messages[0]["To"] == "coach@example.com"
    assert backend.sent_messages[0]["Subject"] == "Withdrawal request received: $20.00"
    assert notifier.sent_events[0].template_type == "withdrawal_requested"
    assert "recipient" not in notifier.sent_events[0].metadata


@pytest.mark.asyncio
async def test_notifier_skips_missing_recipient_and_swallows_failures():
    class BrokenBackend:
        async def send_email(self, recipient, subject, body_text, *, body_html=None):
            raise ConnectionError("smtp down")

    quiet = EmailNotifier(backend=InMemoryEmailBackend())
    broken = EmailNotifier(backend=BrokenBackend())

    assert await quiet.send("withdrawal_approved", {"amount": "10"}) is False
    assert await broken.send("withdrawal_approved", {"recipient": "coach@example.com", "amount": "10"}) is False
    assert broken.sent_events == []


def test_smtp_backend_requires_host_and_sender():
    assert SMTPEmailBackend.from_settings(Settings(smtp_host=None, smtp_sender_email="payouts@coachly.app")) is None

    backend = SMTPEmailBackend.from_settings(
        Settings(smtp_host="smtp.coachly.app", smtp_port=2525, smtp_sender_email="payouts@coachly.app")
    )

    assert backend.host == "smtp.coachly.app"
    assert backend.port == 2525
    assert backend.sender_email == "payouts@coachly.app"
