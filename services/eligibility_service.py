"""
Payout Eligibility Policy

Decides whether a campaign may be paid out at a given moment. Pure functions
only: callers always pass ``now`` so the policy can be evaluated for any
point in time.

Rules (evaluated in order, first failure wins):
1. Campaign has ended (status completed, or end date reached)
2. Cooldown: 7 full days since the end date
3. Claim window: no later than 7 + 30 days after the end date (terminal)
4. Funding goal reached (configurable)
"""

import math
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class PayoutPolicy:
    days_after_end: int = 7
    claim_window_days: int = 30
    minimum_goal_required: bool = True

    @property
    def last_claimable_day(self) -> int:
        return self.days_after_end + self.claim_window_days

    @classmethod
    def from_env(cls) -> "PayoutPolicy":
        """Build a policy from PAYOUT_* environment variables."""
        require_goal = os.getenv("PAYOUT_MINIMUM_GOAL_REQUIRED", "true")
        return cls(
            days_after_end=int(os.getenv("PAYOUT_DAYS_AFTER_END", cls.days_after_end)),
            claim_window_days=int(os.getenv("PAYOUT_CLAIM_WINDOW_DAYS", cls.claim_window_days)),
            minimum_goal_required=require_goal.lower() not in ("0", "false", "no"),
        )


DEFAULT_POLICY = PayoutPolicy()


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reason: Optional[str] = None
    terminal: bool = False

    def to_dict(self) -> dict:
        data = {"eligible": self.eligible}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass(frozen=True)
class CampaignSnapshot:
    """Plain view of the campaign fields the policy reads."""
    status: str
    end_date: datetime
    funding_goal: int
    current_funding: Optional[int] = None


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from the database are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_since_end(end_date: datetime, now: datetime) -> int:
    """Whole days elapsed since ``end_date`` (floored, negative before it)."""
    delta = _as_utc(now) - _as_utc(end_date)
    return int(delta.total_seconds() // SECONDS_PER_DAY)


def days_until_end(end_date: datetime, now: datetime) -> int:
    """Days left before ``end_date``, a started day counting as one; 0 once ended."""
    delta = _as_utc(end_date) - _as_utc(now)
    return max(0, math.ceil(delta.total_seconds() / SECONDS_PER_DAY))


def days_remaining_in_payout_window(
    end_date: datetime,
    now: datetime,
    policy: PayoutPolicy = DEFAULT_POLICY
) -> int:
    return max(0, policy.last_claimable_day - days_since_end(end_date, now))


def evaluate(campaign, now: datetime, policy: PayoutPolicy = DEFAULT_POLICY) -> EligibilityResult:
    """
    Evaluate the payout policy for a campaign.

    Args:
        campaign: Anything with status, end_date, funding_goal and
            current_funding attributes (ORM row or CampaignSnapshot)
        now: The moment to evaluate at
        policy: Cooldown/window/goal settings

    Returns:
        EligibilityResult; ``terminal`` is set when no later retry can succeed
    """
    now = _as_utc(now)
    end_date = _as_utc(campaign.end_date)

    if campaign.status != "completed" and now < end_date:
        return EligibilityResult(False, "Campaign has not ended")

    elapsed = days_since_end(end_date, now)

    if elapsed < policy.days_after_end:
        wait = policy.days_after_end - elapsed
        return EligibilityResult(False, f"Payout available in {wait} days")

    if elapsed > policy.last_claimable_day:
        return EligibilityResult(False, "Payout window has expired", terminal=True)

    if policy.minimum_goal_required and (campaign.current_funding or 0) < campaign.funding_goal:
        return EligibilityResult(False, "Campaign did not reach funding goal")

    return EligibilityResult(True)


def payout_status_for(campaign, now: datetime, policy: PayoutPolicy = DEFAULT_POLICY) -> str:
    """Campaign payout_status to display when no payout has been requested."""
    result = evaluate(campaign, now, policy)
    if result.eligible:
        return "eligible"
    if result.terminal:
        return "expired"
    return "not_eligible"
