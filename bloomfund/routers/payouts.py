"""
Payout Router - Creator Withdrawals via Stripe Connect

Endpoints:
- POST /payouts/request - Request payout of a campaign's net funds
- GET /payouts/eligibility/{campaign_id} - Eligibility, fees and claim window
- GET /payouts/campaign/{campaign_id} - Payout history for a campaign

All endpoints require a Bearer token and campaign ownership.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
import logging

from bloomfund.handlers.payout_handler import PayoutOrchestrator
from bloomfund.routers.deps import get_clock, get_current_user, get_orchestrator
from database.models import User

router = APIRouter(prefix="/payouts", tags=["Payouts"])
logger = logging.getLogger(__name__)


class PayoutRequestCreate(BaseModel):
    """Request payout for a campaign."""
    campaign_id: int = Field(..., gt=0)


class PayoutRequestResponse(BaseModel):
    success: bool = True
    payout_id: int
    transfer_id: str
    amount: int
    amount_display: str
    message: str


class FeeBreakdown(BaseModel):
    gross_amount: int
    platform_fee: int
    net_amount: int


class EligibilityResponse(BaseModel):
    campaign_id: int
    eligible: bool
    reason: Optional[str]
    payout_status: str
    days_remaining: int
    fees: FeeBreakdown
    has_payout_account: bool


class PayoutHistoryItem(BaseModel):
    id: int
    campaign_id: int
    amount: int
    currency: str
    destination_account: str
    status: str
    stripe_transfer_id: Optional[str]
    failure_reason: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


@router.post("/request", response_model=PayoutRequestResponse)
def request_payout(
    body: PayoutRequestCreate,
    current_user: User = Depends(get_current_user),
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator),
    clock=Depends(get_clock)
):
    """
    Request a payout of a campaign's raised funds.

    The creator receives current funding minus the platform fee
    (5% + $0.30). Errors come back as ``{"error": ...}``:

    - 400: Campaign not eligible, or Connect account missing
      (``action: "setup_connect_account"``)
    - 403: Caller does not own the campaign
    - 404: Campaign not found
    - 409: A payout is already in progress
    - 502: Stripe rejected the transfer (safe to retry)
    """
    logger.info(f"Payout requested for campaign {body.campaign_id} by user {current_user.id}")
    result = orchestrator.request_payout(body.campaign_id, current_user.id, clock())
    return result.to_dict()


@router.get("/eligibility/{campaign_id}", response_model=EligibilityResponse)
def get_eligibility(
    campaign_id: int,
    current_user: User = Depends(get_current_user),
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator),
    clock=Depends(get_clock)
):
    """Eligibility, fee breakdown and days left to claim, for the dashboard."""
    report = orchestrator.check_eligibility(campaign_id, current_user.id, clock())
    return report.to_dict()


@router.get("/campaign/{campaign_id}", response_model=List[PayoutHistoryItem])
def list_campaign_payouts(
    campaign_id: int,
    current_user: User = Depends(get_current_user),
    orchestrator: PayoutOrchestrator = Depends(get_orchestrator)
):
    """List all payout requests for a campaign, newest first."""
    return orchestrator.payout_history(campaign_id, current_user.id)
