"""
Webhook Reconciler

Applies verified Stripe events to stored payments, payout requests and
creator profiles.

Stripe delivers at least once, so every handler is safe to run repeatedly
for the same event:
- Donations are deduplicated by transaction ID (unique column)
- Payout transitions are conditional on the current status and report a
  duplicate when it no longer matches; only a failure or reversal may move
  a paid transfer to failed
- Account updates are plain overwrites
"""

import logging
from dataclasses import dataclass

from bloomfund.errors import NotFound
from database.models import (
    AccountStatus,
    CampaignPayoutStatus,
    PaymentStatus,
    PayoutRequestStatus,
    NON_TERMINAL_PAYOUT_STATUSES,
)
from database.store import CampaignStore
from services.stripe_events import (
    AccountObject,
    AccountUpdated,
    ChargeRefunded,
    CheckoutSessionCompleted,
    PaymentFailed,
    PaymentSucceeded,
    TransferCreated,
    TransferFailed,
    TransferPaid,
)

logger = logging.getLogger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileOutcome:
    event_type: str
    result: str
    detail: str = ""


def account_status_from(account: AccountObject) -> str:
    """Collapse Stripe's account flags into our AccountStatus."""
    disabled_reason = account.requirements.disabled_reason if account.requirements else None

    if account.charges_enabled and account.payouts_enabled:
        return AccountStatus.ACTIVE.value
    if disabled_reason and disabled_reason.startswith("rejected"):
        return AccountStatus.DISABLED.value
    if account.details_submitted:
        return AccountStatus.RESTRICTED.value
    return AccountStatus.PENDING.value


class WebhookReconciler:
    """Dispatches typed Stripe events to state transitions."""

    def __init__(self, store: CampaignStore):
        self.store = store

    def apply(self, event) -> ReconcileOutcome:
        if isinstance(event, PaymentSucceeded):
            return self._record_donation(event, event.object.amount, event.object.currency)
        if isinstance(event, CheckoutSessionCompleted):
            return self._record_donation(event, event.object.amount_total, event.object.currency)
        if isinstance(event, PaymentFailed):
            return self._record_failed_payment(event)
        if isinstance(event, ChargeRefunded):
            return self._record_refund(event)
        if isinstance(event, TransferCreated):
            return self._transfer_created(event)
        if isinstance(event, TransferPaid):
            return self._transfer_paid(event)
        if isinstance(event, TransferFailed):
            return self._transfer_failed(event)
        if isinstance(event, AccountUpdated):
            return self._account_updated(event)

        logger.info(f"Unhandled event type: {event.type}")
        return ReconcileOutcome(event.type, IGNORED)

    # ============================================
    # Donations
    # ============================================

    def _record_donation(self, event, charged_amount: int, currency: str) -> ReconcileOutcome:
        obj = event.object
        donation = obj.donation
        if donation is None:
            logger.warning(f"Stripe: {obj.id} carries no campaign_id, not a BloomFund donation")
            return ReconcileOutcome(event.type, IGNORED, obj.id)

        # Checkout sessions carry their PaymentIntent; prefer it so the same
        # donation reported by both events is recorded once.
        transaction_id = getattr(obj, "payment_intent", None) or obj.id

        # Donor was charged amount + platform fee; credit the campaign the donation itself
        amount = donation.original_amount if donation.original_amount is not None else charged_amount

        payment, created = self.store.create_payment(
            increment_funding=True,
            campaign_id=donation.campaign_id,
            user_id=donation.user_id,
            amount=amount,
            currency=currency.upper(),
            status=PaymentStatus.SUCCEEDED.value,
            donor_name=donation.donor_name,
            is_anonymous=donation.is_anonymous,
            message=donation.message,
            reward_tier_id=donation.reward_tier_id,
            payment_method="stripe",
            transaction_id=transaction_id,
        )

        if not created:
            logger.info(f"Stripe: Duplicate delivery for {transaction_id}, funding unchanged")
            return ReconcileOutcome(event.type, DUPLICATE, transaction_id)

        logger.info(f"Stripe: Payment {payment.id} recorded - campaign {donation.campaign_id} +{amount}")
        return ReconcileOutcome(event.type, APPLIED, transaction_id)

    def _record_failed_payment(self, event: PaymentFailed) -> ReconcileOutcome:
        obj = event.object
        if obj.donation is None:
            logger.warning(f"Stripe: Failed payment {obj.id} carries no campaign_id")
            return ReconcileOutcome(event.type, IGNORED, obj.id)

        _, created = self.store.create_payment(
            campaign_id=obj.donation.campaign_id,
            amount=0,
            currency=obj.currency.upper(),
            status=PaymentStatus.FAILED.value,
            donor_name="Anonymous",
            is_anonymous=True,
            payment_method="stripe",
            transaction_id=obj.id,
        )

        logger.warning(f"Stripe: Payment failed - {obj.id}")
        return ReconcileOutcome(event.type, APPLIED if created else DUPLICATE, obj.id)

    def _record_refund(self, event: ChargeRefunded) -> ReconcileOutcome:
        obj = event.object
        transaction_id = obj.payment_intent or obj.id

        # amount_refunded is cumulative; the store applies only the new part
        payment = self.store.refund_payment(transaction_id, obj.amount_refunded)
        if payment is None:
            return ReconcileOutcome(event.type, DUPLICATE, transaction_id)

        logger.info(f"Stripe: Payment {payment.id} refunded up to {obj.amount_refunded}")
        return ReconcileOutcome(event.type, APPLIED, transaction_id)

    # ============================================
    # Payout transfers
    # ============================================

    def _find_payout(self, event):
        payout = self.store.get_payout_by_transfer(event.object.id)

        # The webhook can beat the orchestrator storing the transfer ID
        payout_id = event.object.metadata.get("payout_id")
        if payout is None and payout_id and payout_id.isdigit():
            try:
                candidate = self.store.get_payout_request(int(payout_id))
            except NotFound:
                candidate = None
            if candidate is not None and candidate.stripe_transfer_id in (None, event.object.id):
                payout = candidate

        if payout is None:
            logger.warning(
                f"Stripe: No payout request for transfer {event.object.id} "
                f"(campaign {event.object.metadata.get('campaign_id')})"
            )
        return payout

    def _transfer_created(self, event: TransferCreated) -> ReconcileOutcome:
        payout = self._find_payout(event)
        if payout is None:
            return ReconcileOutcome(event.type, IGNORED, event.object.id)

        # The orchestrator usually got here first; never reopen a terminal payout
        updated = self.store.update_payout_status(
            payout.id,
            PayoutRequestStatus.PROCESSING.value,
            transfer_ref=event.object.id,
            campaign_fields={"payout_status": CampaignPayoutStatus.PROCESSING.value},
            expected_status=PayoutRequestStatus.PENDING.value,
        )
        if updated is None:
            return ReconcileOutcome(event.type, DUPLICATE, event.object.id)
        return ReconcileOutcome(event.type, APPLIED, event.object.id)

    def _transfer_paid(self, event: TransferPaid) -> ReconcileOutcome:
        payout = self._find_payout(event)
        if payout is None:
            return ReconcileOutcome(event.type, IGNORED, event.object.id)

        updated = self.store.update_payout_status(
            payout.id,
            PayoutRequestStatus.PAID.value,
            transfer_ref=event.object.id,
            campaign_fields={"payout_status": CampaignPayoutStatus.PAID.value},
            expected_status=NON_TERMINAL_PAYOUT_STATUSES,
        )
        if updated is None:
            return ReconcileOutcome(event.type, DUPLICATE, event.object.id)

        logger.info(f"Stripe: Payout {payout.id} paid via {event.object.id}")
        return ReconcileOutcome(event.type, APPLIED, event.object.id)

    def _transfer_failed(self, event: TransferFailed) -> ReconcileOutcome:
        payout = self._find_payout(event)
        if payout is None:
            return ReconcileOutcome(event.type, IGNORED, event.object.id)

        # Outgoing transfer failures never touch current_funding
        updated = self.store.update_payout_status(
            payout.id,
            PayoutRequestStatus.FAILED.value,
            transfer_ref=event.object.id,
            failure_reason=event.type,
            campaign_fields={"payout_status": CampaignPayoutStatus.FAILED.value},
            expected_status=NON_TERMINAL_PAYOUT_STATUSES + (PayoutRequestStatus.PAID.value,),
        )
        if updated is None:
            return ReconcileOutcome(event.type, DUPLICATE, event.object.id)

        logger.warning(f"Stripe: Payout {payout.id} failed ({event.type})")
        return ReconcileOutcome(event.type, APPLIED, event.object.id)

    # ============================================
    # Connect accounts
    # ============================================

    def _account_updated(self, event: AccountUpdated) -> ReconcileOutcome:
        account = event.object
        user = self.store.get_user_by_stripe_account(account.id)
        if user is None:
            logger.warning(f"Stripe: Account {account.id} is not linked to any user")
            return ReconcileOutcome(event.type, IGNORED, account.id)

        status = account_status_from(account)
        self.store.update_user(user.id, stripe_account_status=status)
        logger.info(f"Stripe: Account {account.id} status -> {status}")
        return ReconcileOutcome(event.type, APPLIED, account.id)
