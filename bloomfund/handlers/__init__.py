"""
Payout Engine Handlers

- payout_handler: Creator payout requests (eligibility, fees, Stripe transfer)
- webhook_handler: Applies Stripe webhook events to stored records
"""

from bloomfund.handlers.payout_handler import PayoutOrchestrator, PayoutResult
from bloomfund.handlers.webhook_handler import WebhookReconciler, ReconcileOutcome

__all__ = [
    "PayoutOrchestrator",
    "PayoutResult",
    "WebhookReconciler",
    "ReconcileOutcome",
]
