"""
Payout Handler

Lets campaign creators withdraw raised funds to their Stripe Connect account.

Payout Rules:
- Only the campaign owner can request a payout
- Campaign must pass the eligibility policy (ended, cooldown, window, goal)
- Creator must have an onboarded Connect account
- At most one payout may be in flight per campaign, and a campaign is paid
  out once: after a paid transfer only a failure or reversal reopens it
- Creator receives current funding minus the platform fee

Ordering matters: the PayoutRequest row is committed *before* the Stripe
transfer is submitted, so a database outage can never leave a transfer
without a local record. If submission fails the row is compensated to
failed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import requests
import stripe

from bloomfund.errors import (
    Forbidden,
    Ineligible,
    PayoutAccountRequired,
    PayoutAlreadyInProgress,
    StoreConflict,
    TransferSubmissionFailed,
)
from database.models import (
    AccountStatus,
    CampaignPayoutStatus,
    PayoutRequest,
    PayoutRequestStatus,
)
from database.store import CampaignStore
from services.eligibility_service import (
    DEFAULT_POLICY,
    EligibilityResult,
    PayoutPolicy,
    days_remaining_in_payout_window,
    evaluate,
    payout_status_for,
)
from services.fee_service import compute_net_amount, fee_breakdown, format_amount

logger = logging.getLogger(__name__)

ALREADY_PAID_REASON = "Campaign has already been paid out"

# Connect accounts in these states cannot receive transfers at all
UNUSABLE_ACCOUNT_STATUSES = (
    AccountStatus.NOT_SETUP.value,
    AccountStatus.DISABLED.value,
)


@dataclass
class PayoutResult:
    payout_id: int
    transfer_id: str
    amount: int
    currency: str

    @property
    def amount_display(self) -> str:
        return format_amount(self.amount, self.currency)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "payout_id": self.payout_id,
            "transfer_id": self.transfer_id,
            "amount": self.amount,
            "amount_display": self.amount_display,
            "message": "Payout request submitted successfully",
        }


@dataclass
class EligibilityReport:
    campaign_id: int
    eligible: bool
    reason: Optional[str]
    payout_status: str
    days_remaining: int
    fees: dict = field(default_factory=dict)
    has_payout_account: bool = False

    def to_dict(self) -> dict:
        return {
            "campaign_id": self.campaign_id,
            "eligible": self.eligible,
            "reason": self.reason,
            "payout_status": self.payout_status,
            "days_remaining": self.days_remaining,
            "fees": self.fees,
            "has_payout_account": self.has_payout_account,
        }


class PayoutOrchestrator:
    """
    Runs the payout request workflow.

    Usage:
        orchestrator = PayoutOrchestrator(CampaignStore(db), stripe_service)
        result = orchestrator.request_payout(campaign_id, user_id, now)
    """

    def __init__(self, store: CampaignStore, transfers, policy: PayoutPolicy = DEFAULT_POLICY):
        self.store = store
        self.transfers = transfers
        self.policy = policy

    def _load_owned_campaign(self, campaign_id: int, requesting_user_id: int):
        campaign = self.store.get_campaign(campaign_id)
        if campaign.owner_id != requesting_user_id:
            raise Forbidden()
        return campaign

    def request_payout(self, campaign_id: int, requesting_user_id: int, now: datetime) -> PayoutResult:
        """
        Request a payout of a campaign's net funds.

        Args:
            campaign_id: Campaign to pay out
            requesting_user_id: Authenticated user; must own the campaign
            now: Evaluation time for the eligibility policy

        Returns:
            PayoutResult with payout ID, Stripe transfer ID and net amount

        Raises:
            NotFound, Forbidden, Ineligible, PayoutAccountRequired,
            PayoutAlreadyInProgress, TransferSubmissionFailed, StoreUnavailable
        """
        campaign = self._load_owned_campaign(campaign_id, requesting_user_id)

        eligibility = evaluate(campaign, now, self.policy)
        if not eligibility.eligible:
            logger.info(f"Campaign {campaign_id} not eligible for payout: {eligibility.reason}")
            raise Ineligible(eligibility.reason, terminal=eligibility.terminal)

        if self.store.has_paid_payout(campaign_id):
            logger.info(f"Campaign {campaign_id} already paid out")
            raise Ineligible(ALREADY_PAID_REASON, terminal=True)

        creator = self.store.get_user_profile(campaign.owner_id)
        if not creator.stripe_account_id or creator.stripe_account_status in UNUSABLE_ACCOUNT_STATUSES:
            logger.info(f"Campaign {campaign_id}: creator {creator.id} has no usable Connect account")
            raise PayoutAccountRequired()

        if self.store.has_in_flight_payout(campaign_id):
            raise PayoutAlreadyInProgress()

        net_amount = compute_net_amount(campaign.current_funding or 0)
        if net_amount <= 0:
            raise Ineligible("Nothing to pay out after fees")

        try:
            payout = self.store.create_payout_request(
                campaign_id=campaign.id,
                user_id=creator.id,
                amount=net_amount,
                currency=campaign.currency,
                destination_account=creator.stripe_account_id,
                status=PayoutRequestStatus.PENDING.value,
            )
        except StoreConflict as e:
            # Another request slipped past the in-flight check
            logger.info(f"Campaign {campaign_id}: concurrent payout request rejected by store")
            raise PayoutAlreadyInProgress() from e

        try:
            transfer_id = self.transfers.create_transfer(
                amount=net_amount,
                currency=campaign.currency,
                destination=creator.stripe_account_id,
                metadata={
                    "campaign_id": campaign.id,
                    "payout_id": payout.id,
                    "description": f"Payout for campaign: {campaign.title}",
                },
                idempotency_key=f"payout-{payout.id}",
            )
        except (TransferSubmissionFailed, stripe.StripeError, requests.RequestException) as e:
            logger.error(f"Payout {payout.id}: transfer submission failed: {e}")
            self.store.update_payout_status(
                payout.id,
                PayoutRequestStatus.FAILED.value,
                failure_reason=str(e),
                campaign_fields={"payout_status": CampaignPayoutStatus.FAILED.value},
                expected_status=PayoutRequestStatus.PENDING.value,
            )
            if isinstance(e, TransferSubmissionFailed):
                e.payout_id = payout.id
                raise
            raise TransferSubmissionFailed(payout_id=payout.id) from e

        updated = self.store.update_payout_status(
            payout.id,
            PayoutRequestStatus.PROCESSING.value,
            transfer_ref=transfer_id,
            campaign_fields={
                "payout_status": CampaignPayoutStatus.PROCESSING.value,
                "stripe_transfer_id": transfer_id,
                "payout_requested_at": now,
                "payout_amount": net_amount,
            },
            expected_status=PayoutRequestStatus.PENDING.value,
        )
        if updated is None:
            # A transfer webhook already settled this payout; its status stands
            logger.warning(f"Payout {payout.id} settled by webhook before {transfer_id} was recorded")
        else:
            logger.info(f"Payout {payout.id} processing: {net_amount} {campaign.currency} via {transfer_id}")

        return PayoutResult(
            payout_id=payout.id,
            transfer_id=transfer_id,
            amount=net_amount,
            currency=campaign.currency,
        )

    def check_eligibility(self, campaign_id: int, requesting_user_id: int, now: datetime) -> EligibilityReport:
        """Eligibility, fee breakdown and claim-window countdown for the dashboard."""
        campaign = self._load_owned_campaign(campaign_id, requesting_user_id)
        creator = self.store.get_user_profile(campaign.owner_id)

        result = evaluate(campaign, now, self.policy)
        if result.eligible and self.store.has_paid_payout(campaign.id):
            result = EligibilityResult(False, ALREADY_PAID_REASON, terminal=True)

        if campaign.payout_status in (
            CampaignPayoutStatus.PROCESSING.value,
            CampaignPayoutStatus.PAID.value,
        ):
            payout_status = campaign.payout_status
        else:
            payout_status = payout_status_for(campaign, now, self.policy)

        return EligibilityReport(
            campaign_id=campaign.id,
            eligible=result.eligible,
            reason=result.reason,
            payout_status=payout_status,
            days_remaining=days_remaining_in_payout_window(campaign.end_date, now, self.policy),
            fees=fee_breakdown(campaign.current_funding or 0),
            has_payout_account=bool(
                creator.stripe_account_id
                and creator.stripe_account_status not in UNUSABLE_ACCOUNT_STATUSES
            ),
        )

    def payout_history(self, campaign_id: int, requesting_user_id: int) -> List[PayoutRequest]:
        self._load_owned_campaign(campaign_id, requesting_user_id)
        return self.store.list_payout_requests(campaign_id)
