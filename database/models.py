"""
BloomFund Database Models

This module defines all SQLAlchemy models for the BloomFund platform.

Architecture:
- Users: Campaign creators (and logged-in donors) with their Stripe Connect account
- Campaigns: Fundraising projects with a goal and an end date
- Reward Tiers: Optional perks a donor can pick when pledging
- Payments: Individual donations confirmed by Stripe webhooks
- Payout Requests: Attempts to transfer raised funds to a creator

All money columns hold integer minor units (cents). No floats.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, ForeignKey,
    CheckConstraint, Index, text
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime
import enum

Base = declarative_base()


class CampaignStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELED = "canceled"


class CampaignPayoutStatus(str, enum.Enum):
    """Denormalized payout state shown on the campaign dashboard."""
    NOT_ELIGIBLE = "not_eligible"
    ELIGIBLE = "eligible"
    REQUESTED = "requested"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"


class PayoutRequestStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


NON_TERMINAL_PAYOUT_STATUSES = (
    PayoutRequestStatus.PENDING.value,
    PayoutRequestStatus.PROCESSING.value,
)


class PaymentStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class AccountStatus(str, enum.Enum):
    """Stripe Connect account state of a creator."""
    NOT_SETUP = "not_setup"
    PENDING = "pending"
    ACTIVE = "active"
    RESTRICTED = "restricted"
    DISABLED = "disabled"


class User(Base):
    """
    Creator profile.

    A creator cannot be paid out until stripe_account_id is set and the
    account has gone through Connect onboarding.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255))

    # Stripe Connect
    stripe_account_id = Column(String(100), unique=True)  # acct_...
    stripe_account_status = Column(String(20), default=AccountStatus.NOT_SETUP.value, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaigns = relationship("Campaign", back_populates="owner")


class Campaign(Base):
    """
    Individual fundraising project.

    Example:
    - Title: "Cozy Corner Coffee House"
    - Goal: 200000 ($2,000.00)
    - End date: 2024-03-15

    payout_status, payout_requested_at, stripe_transfer_id and payout_amount
    mirror the latest PayoutRequest so the dashboard can read one row.
    """
    __tablename__ = "campaigns"
    __table_args__ = (
        CheckConstraint("funding_goal > 0", name="ck_campaigns_funding_goal_positive"),
    )

    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Basic Info
    title = Column(String(255), nullable=False)
    description = Column(Text)

    # Funding (minor units)
    funding_goal = Column(Integer, nullable=False)
    current_funding = Column(Integer, default=0)  # NULL reads as zero
    currency = Column(String(3), default="usd", nullable=False)

    # Status
    status = Column(String(20), default=CampaignStatus.ACTIVE.value, nullable=False)

    # Dates
    start_date = Column(DateTime)
    end_date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Payout (denormalized)
    payout_status = Column(String(20), default=CampaignPayoutStatus.NOT_ELIGIBLE.value, nullable=False)
    payout_requested_at = Column(DateTime)
    stripe_transfer_id = Column(String(100))
    payout_amount = Column(Integer)

    # Relationships
    owner = relationship("User", back_populates="campaigns")
    payments = relationship("Payment", back_populates="campaign")
    reward_tiers = relationship("RewardTier", back_populates="campaign")
    payout_requests = relationship("PayoutRequest", back_populates="campaign")


class RewardTier(Base):
    """Perk offered to donors who pledge at least ``amount``."""
    __tablename__ = "reward_tiers"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    amount = Column(Integer, nullable=False)

    campaign = relationship("Campaign", back_populates="reward_tiers")


class Payment(Base):
    """
    Individual donation, recorded from a Stripe webhook.

    Lifecycle:
    1. succeeded: Stripe confirmed the charge
    2. failed: Charge declined (amount recorded as 0)
    3. refunded: Charge refunded in full (partial refunds only grow
       refunded_amount and keep the payment succeeded)

    A failed row is promoted to succeeded when the donor retries the same
    PaymentIntent with another card.

    transaction_id is the Stripe PaymentIntent (or Checkout Session) ID and
    is unique, so a redelivered webhook can never record the same donation
    twice.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"))  # Set when the donor was logged in

    amount = Column(Integer, nullable=False)  # Credited to the campaign
    currency = Column(String(3), nullable=False, default="USD")
    refunded_amount = Column(Integer, default=0, nullable=False)  # Cumulative, never above amount

    payment_method = Column(String(20), default="stripe")
    transaction_id = Column(String(255), unique=True, nullable=False)

    status = Column(String(20), nullable=False)

    # Donor
    donor_name = Column(String(255), default="")
    is_anonymous = Column(Boolean, default=False)
    message = Column(Text)
    reward_tier_id = Column(Integer, ForeignKey("reward_tiers.id"))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaign = relationship("Campaign", back_populates="payments")
    reward_tier = relationship("RewardTier")


class PayoutRequest(Base):
    """
    One attempt to transfer a campaign's net funds to its creator.

    Status flow:
    - pending: Record persisted, Stripe transfer not yet submitted
    - processing: Stripe accepted the transfer
    - paid: Stripe reported the transfer as paid
    - failed: Submission or transfer failed (creator may retry)

    Rows are never deleted. The partial unique index allows at most one
    pending/processing request per campaign.
    """
    __tablename__ = "payout_requests"
    __table_args__ = (
        Index(
            "uq_payout_requests_one_in_flight",
            "campaign_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
            sqlite_where=text("status IN ('pending', 'processing')"),
        ),
    )

    id = Column(Integer, primary_key=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    amount = Column(Integer, nullable=False)  # Net of platform fee
    currency = Column(String(3), default="usd", nullable=False)
    destination_account = Column(String(100), nullable=False)  # acct_...

    status = Column(String(20), default=PayoutRequestStatus.PENDING.value, nullable=False)
    stripe_transfer_id = Column(String(100), unique=True)
    failure_reason = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaign = relationship("Campaign", back_populates="payout_requests")
    user = relationship("User")

    @property
    def is_terminal(self) -> bool:
        return self.status not in NON_TERMINAL_PAYOUT_STATUSES

    def __repr__(self):
        return f"<PayoutRequest(id={self.id}, amount={self.amount} {self.currency}, status={self.status})>"
