from .reconciler import WebhookOutcome, WebhookReconciler

__all__ = ["WebhookOutcome", "WebhookReconciler"]
