"""
Stripe Connect Onboarding Router

Endpoints:
- POST /stripe/connect/create - Create the caller's Express account and
  return the onboarding link

The account starts as ``pending``; account.updated webhooks move it to
active/restricted/disabled as Stripe reviews it.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from typing import Optional
import logging

import stripe

from bloomfund.routers.deps import get_current_user, get_store, get_stripe_service
from database.models import AccountStatus, User
from database.store import CampaignStore
from services.stripe_service import StripeService

router = APIRouter(prefix="/stripe/connect", tags=["Stripe Connect"])
logger = logging.getLogger(__name__)


class ConnectAccountCreate(BaseModel):
    email: EmailStr
    business_name: str
    first_name: str
    last_name: str
    phone: Optional[str] = None


class ConnectAccountResponse(BaseModel):
    success: bool = True
    account_id: str
    onboarding_url: str


@router.post("/create", response_model=ConnectAccountResponse)
def create_connect_account(
    body: ConnectAccountCreate,
    current_user: User = Depends(get_current_user),
    store: CampaignStore = Depends(get_store),
    stripe_service: StripeService = Depends(get_stripe_service)
):
    """Create a Stripe Connect account so the caller can receive payouts."""
    if current_user.stripe_account_id:
        raise HTTPException(status_code=400, detail="Stripe Connect account already exists")

    try:
        account = stripe_service.create_connect_account(
            email=body.email,
            business_name=body.business_name,
            first_name=body.first_name,
            last_name=body.last_name,
            phone=body.phone
        )
    except stripe.StripeError as e:
        logger.error(f"Connect account creation failed for user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=502, detail="Failed to create Stripe Connect account")

    store.update_user(
        current_user.id,
        stripe_account_id=account['account_id'],
        stripe_account_status=AccountStatus.PENDING.value
    )
    logger.info(f"User {current_user.id} linked Connect account {account['account_id']}")

    return {
        "account_id": account['account_id'],
        "onboarding_url": account['onboarding_url'],
    }
