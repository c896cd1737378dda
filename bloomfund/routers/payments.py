"""
Donation Checkout Router

Endpoints:
- POST /payments/create-intent - Start a card donation (stripe.js)
- POST /payments/create-checkout - Start a donation on Stripe's hosted page

The donor pays the donation plus the platform fee; the campaign is credited
once Stripe confirms the payment via webhook.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
import logging

import stripe

from bloomfund.routers.deps import get_store, get_stripe_service
from database.models import CampaignStatus
from database.store import CampaignStore
from services.stripe_service import StripeService

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = logging.getLogger(__name__)

MINIMUM_DONATION = 1000  # $10.00


class PaymentIntentCreate(BaseModel):
    """Donation checkout request. Amount is in cents."""
    amount: int = Field(..., ge=MINIMUM_DONATION)
    currency: str = Field(default='usd', pattern=r'^[a-zA-Z]{3}$')
    campaign_id: int
    donor_name: str = Field(..., min_length=1, max_length=255)
    donor_email: EmailStr
    is_anonymous: bool = False
    message: Optional[str] = Field(None, max_length=1000)
    reward_tier_id: Optional[int] = None


class PaymentIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    total_amount: int
    platform_fee: int


class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str
    total_amount: int
    platform_fee: int


def _open_campaign_and_tier(store: CampaignStore, body: PaymentIntentCreate):
    """Campaign accepting donations, and the chosen reward tier if any."""
    campaign = store.get_campaign(body.campaign_id)
    if campaign.status != CampaignStatus.ACTIVE.value:
        raise HTTPException(status_code=400, detail="Campaign is not accepting donations")

    tier = None
    if body.reward_tier_id is not None:
        tier = next((t for t in campaign.reward_tiers if t.id == body.reward_tier_id), None)
        if tier is None:
            raise HTTPException(status_code=400, detail="Reward tier not found for this campaign")
        if body.amount < tier.amount:
            raise HTTPException(status_code=400, detail="Amount is below the reward tier minimum")

    return campaign, tier


@router.post("/create-intent", response_model=PaymentIntentResponse)
def create_payment_intent(
    body: PaymentIntentCreate,
    store: CampaignStore = Depends(get_store),
    stripe_service: StripeService = Depends(get_stripe_service)
):
    """
    Create a Stripe PaymentIntent for a donation.

    Example:
    ```json
    {
      "amount": 2500,
      "campaign_id": 1,
      "donor_name": "Sarah Johnson",
      "donor_email": "sarah@example.com",
      "reward_tier_id": 3
    }
    ```
    """
    campaign, _ = _open_campaign_and_tier(store, body)

    try:
        intent = stripe_service.create_payment_intent(
            amount=body.amount,
            currency=body.currency,
            campaign_id=campaign.id,
            donor_name=body.donor_name,
            donor_email=body.donor_email,
            is_anonymous=body.is_anonymous,
            message=body.message,
            reward_tier_id=body.reward_tier_id
        )
    except stripe.StripeError as e:
        logger.error(f"PaymentIntent creation failed for campaign {campaign.id}: {str(e)}")
        raise HTTPException(status_code=502, detail="Failed to create payment intent")

    return {
        "client_secret": intent['client_secret'],
        "payment_intent_id": intent['id'],
        "total_amount": intent['amount'],
        "platform_fee": intent['platform_fee'],
    }


@router.post("/create-checkout", response_model=CheckoutSessionResponse)
def create_checkout_session(
    body: PaymentIntentCreate,
    store: CampaignStore = Depends(get_store),
    stripe_service: StripeService = Depends(get_stripe_service)
):
    """
    Create a hosted Stripe Checkout Session for a donation.

    Takes the same body as /payments/create-intent. Redirect the donor to
    the returned ``url``.
    """
    campaign, tier = _open_campaign_and_tier(store, body)

    try:
        session = stripe_service.create_checkout_session(
            amount=body.amount,
            currency=body.currency,
            campaign_id=campaign.id,
            campaign_title=campaign.title,
            donor_name=body.donor_name,
            donor_email=body.donor_email,
            is_anonymous=body.is_anonymous,
            message=body.message,
            reward_tier_id=body.reward_tier_id,
            reward_tier_title=tier.title if tier else None
        )
    except stripe.StripeError as e:
        logger.error(f"Checkout Session creation failed for campaign {campaign.id}: {str(e)}")
        raise HTTPException(status_code=502, detail="Failed to create checkout session")

    return {
        "session_id": session['id'],
        "url": session['url'],
        "total_amount": session['amount'],
        "platform_fee": session['platform_fee'],
    }
