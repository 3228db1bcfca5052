"""Notification templates for influencer payout events."""

from __future__ import annotations

import html
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


class UnknownTemplateError(KeyError):
    pass


def _format_currency(amount: Any, currency: str | None) -> str:
    code = (currency or "usd").upper()
    symbols = {"EUR": "€", "USD": "$", "GBP": "£"}
    try:
        numeric = f"{Decimal(str(amount)):.2f}"
    except (InvalidOperation, ValueError):
        numeric = str(amount)
    symbol = symbols.get(code, "")
    return f"{symbol}{numeric}" if symbol else f"{numeric} {code}"


def _greeting(variables: Mapping[str, Any]) -> str:
    name = variables.get("display_name")
    return f"Hi {name}," if name else "Hi there,"


def _render(subject: str, variables: Mapping[str, Any], lines: list[str]) -> RenderedTemplate:
    body_lines = [_greeting(variables), "", *lines, "", "The Coachly team"]
    text_body = "\n".join(body_lines)
    html_body = "".join(f"<p>{html.escape(line)}</p>" for line in body_lines if line)
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=html_body)


def render_withdrawal_requested(variables: Mapping[str, Any]) -> RenderedTemplate:
    amount = _format_currency(variables.get("amount"), variables.get("currency"))
    return _render(
        f"Withdrawal request received: {amount}",
        variables,
        [
            f"We received your request to withdraw {amount}.",
            "Our team reviews requests within a few business days.",
        ],
    )


def render_withdrawal_approved(variables: Mapping[str, Any]) -> RenderedTemplate:
    amount = _format_currency(variables.get("amount"), variables.get("currency"))
    return _render(
        f"Withdrawal approved: {amount}",
        variables,
        [f"Your withdrawal of {amount} was approved and is queued for payout."],
    )


def render_withdrawal_rejected(variables: Mapping[str, Any]) -> RenderedTemplate:
    amount = _format_currency(variables.get("amount"), variables.get("currency"))
    reason = variables.get("reason") or "No reason provided"
    return _render(
        f"Withdrawal request declined: {amount}",
        variables,
        [f"Your withdrawal of {amount} was declined.", f"Reason: {reason}"],
    )


def render_withdrawal_paid(variables: Mapping[str, Any]) -> RenderedTemplate:
    amount = _format_currency(variables.get("amount"), variables.get("currency"))
    return _render(
        f"Payout sent: {amount}",
        variables,
        [
            f"We sent {amount} to your account ending in {variables.get('account_last4', '****')}.",
            f"Payout reference: {variables.get('payout_id', 'n/a')}",
        ],
    )


TEMPLATES: dict[str, Callable[[Mapping[str, Any]], RenderedTemplate]] = {
    "withdrawal_requested": render_withdrawal_requested,
    "withdrawal_approved": render_withdrawal_approved,
    "withdrawal_rejected": render_withdrawal_rejected,
    "withdrawal_paid": render_withdrawal_paid,
}


def render_template(template_type: str, variables: Mapping[str, Any]) -> RenderedTemplate:
    try:
        renderer = TEMPLATES[template_type]
    except KeyError as exc:
        raise UnknownTemplateError(template_type) from exc
    return renderer(variables)
