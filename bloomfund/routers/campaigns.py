"""
Campaign Page Router

Endpoints:
- GET /campaigns/{campaign_id} - Public campaign page with funding stats

No authentication: this is what donors see before checking out.
"""

from decimal import Decimal, ROUND_HALF_UP
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from bloomfund.routers.deps import get_clock, get_store
from database.store import CampaignStore
from services.eligibility_service import days_until_end

router = APIRouter(prefix="/campaigns", tags=["Campaigns"])


class RewardTierItem(BaseModel):
    id: int
    title: str
    description: Optional[str]
    amount: int

    class Config:
        from_attributes = True


class CampaignPage(BaseModel):
    id: int
    title: str
    description: Optional[str]
    funding_goal: int
    current_funding: int
    currency: str
    status: str
    start_date: Optional[datetime]
    end_date: datetime
    reward_tiers: List[RewardTierItem]
    total_backers: int
    days_remaining: int
    funding_percentage: int


def funding_percentage(current_funding: int, funding_goal: int) -> int:
    """Whole percent of the goal raised (half-up), capped at 100."""
    percent = (Decimal(current_funding) * 100 / Decimal(funding_goal)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return min(int(percent), 100)


@router.get("/{campaign_id}", response_model=CampaignPage)
def get_campaign_page(
    campaign_id: int,
    store: CampaignStore = Depends(get_store),
    clock=Depends(get_clock)
):
    """
    Campaign details, reward tiers and live funding stats.

    ``current_funding`` is net of refunds; ``total_backers`` counts
    donations that went through.
    """
    campaign = store.get_campaign(campaign_id)
    current_funding = campaign.current_funding or 0

    return {
        "id": campaign.id,
        "title": campaign.title,
        "description": campaign.description,
        "funding_goal": campaign.funding_goal,
        "current_funding": current_funding,
        "currency": campaign.currency,
        "status": campaign.status,
        "start_date": campaign.start_date,
        "end_date": campaign.end_date,
        "reward_tiers": sorted(campaign.reward_tiers, key=lambda tier: tier.amount),
        "total_backers": store.count_backers(campaign.id),
        "days_remaining": days_until_end(campaign.end_date, clock()),
        "funding_percentage": funding_percentage(current_funding, campaign.funding_goal),
    }
