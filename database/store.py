"""
Campaign / Payout Store

Thin persistence layer the payout engine talks to. Every method either
returns a row or raises one of the store errors:

- NotFound: row does not exist
- StoreConflict: a uniqueness constraint rejected the write
  (duplicate transaction_id, second in-flight payout for a campaign)
- StoreUnavailable: connection/pool failure, safe to retry

Writes are committed immediately so that callers can order external side
effects (Stripe transfers) strictly after the local record exists. Status
changes that race with other instances are conditional UPDATEs checked by
rowcount, never read-then-write.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from bloomfund.errors import NotFound, StoreConflict, StoreUnavailable
from database.models import (
    Campaign,
    Payment,
    PaymentStatus,
    PayoutRequest,
    PayoutRequestStatus,
    User,
    NON_TERMINAL_PAYOUT_STATUSES,
)

logger = logging.getLogger(__name__)

# Conditional refund updates retried this often before asking Stripe to redeliver
REFUND_ATTEMPTS = 3


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """Columns store naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _db_values(fields: dict) -> dict:
    return {
        name: to_db_time(value) if isinstance(value, datetime) else value
        for name, value in fields.items()
    }


class CampaignStore:
    """Store collaborator bound to one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _translate_errors(self):
        try:
            yield
        except IntegrityError as e:
            self.db.rollback()
            raise StoreConflict(f"Conflicting write: {e.orig}") from e
        except (OperationalError, PoolTimeoutError) as e:
            self.db.rollback()
            logger.error(f"Store unavailable: {e}")
            raise StoreUnavailable() from e

    # ============================================
    # Campaigns
    # ============================================

    def get_campaign(self, campaign_id: int) -> Campaign:
        with self._translate_errors():
            campaign = self.db.query(Campaign).filter(Campaign.id == campaign_id).first()
        if not campaign:
            raise NotFound("Campaign not found")
        return campaign

    def adjust_funding(self, campaign_id: int, delta: int):
        """
        Add ``delta`` to current_funding in a single UPDATE.

        Computed in SQL so concurrent webhook deliveries cannot lose each
        other's increments. Does not commit.
        """
        result = self.db.execute(
            update(Campaign)
            .where(Campaign.id == campaign_id)
            .values(current_funding=func.coalesce(Campaign.current_funding, 0) + delta)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise NotFound("Campaign not found")

    def count_backers(self, campaign_id: int) -> int:
        """Donations that went through (partially refunded ones included)."""
        with self._translate_errors():
            return self.db.query(func.count(Payment.id)).filter(
                Payment.campaign_id == campaign_id,
                Payment.status == PaymentStatus.SUCCEEDED.value
            ).scalar() or 0

    # ============================================
    # Users
    # ============================================

    def get_user_profile(self, user_id: int) -> User:
        with self._translate_errors():
            user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFound("User not found")
        return user

    def get_user_by_stripe_account(self, stripe_account_id: str) -> Optional[User]:
        with self._translate_errors():
            return self.db.query(User).filter(User.stripe_account_id == stripe_account_id).first()

    def update_user(self, user_id: int, **fields) -> User:
        user = self.get_user_profile(user_id)
        with self._translate_errors():
            for name, value in fields.items():
                setattr(user, name, value)
            self.db.commit()
        return user

    # ============================================
    # Payout requests
    # ============================================

    def has_in_flight_payout(self, campaign_id: int) -> bool:
        with self._translate_errors():
            return self.db.query(PayoutRequest.id).filter(
                PayoutRequest.campaign_id == campaign_id,
                PayoutRequest.status.in_(NON_TERMINAL_PAYOUT_STATUSES)
            ).first() is not None

    def has_paid_payout(self, campaign_id: int) -> bool:
        with self._translate_errors():
            return self.db.query(PayoutRequest.id).filter(
                PayoutRequest.campaign_id == campaign_id,
                PayoutRequest.status == PayoutRequestStatus.PAID.value
            ).first() is not None

    def create_payout_request(self, **fields) -> PayoutRequest:
        payout = PayoutRequest(**fields)
        with self._translate_errors():
            self.db.add(payout)
            self.db.commit()
        logger.info(f"Payout request {payout.id} persisted for campaign {payout.campaign_id}")
        return payout

    def get_payout_request(self, payout_id: int) -> PayoutRequest:
        with self._translate_errors():
            payout = self.db.query(PayoutRequest).populate_existing().filter(
                PayoutRequest.id == payout_id
            ).first()
        if not payout:
            raise NotFound("Payout request not found")
        return payout

    def get_payout_by_transfer(self, transfer_id: str) -> Optional[PayoutRequest]:
        with self._translate_errors():
            return self.db.query(PayoutRequest).populate_existing().filter(
                PayoutRequest.stripe_transfer_id == transfer_id
            ).first()

    def list_payout_requests(self, campaign_id: int) -> List[PayoutRequest]:
        with self._translate_errors():
            return self.db.query(PayoutRequest).filter(
                PayoutRequest.campaign_id == campaign_id
            ).order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc()).all()

    def update_payout_status(
        self,
        payout_id: int,
        status: str,
        transfer_ref: Optional[str] = None,
        failure_reason: Optional[str] = None,
        campaign_fields: Optional[dict] = None,
        expected_status=None
    ) -> Optional[PayoutRequest]:
        """
        Move a payout request to ``status``.

        ``campaign_fields`` are applied to the owning campaign in the same
        commit, keeping its denormalized payout columns in step with the
        request.

        ``expected_status`` (a status or a tuple of them) makes the write a
        compare-and-swap: the UPDATE only matches while the request is still
        in one of those statuses. Returns None when it did not match, the
        updated request otherwise.
        """
        payout = self.get_payout_request(payout_id)

        values = {"status": status}
        if transfer_ref is not None:
            values["stripe_transfer_id"] = transfer_ref
        if failure_reason is not None:
            values["failure_reason"] = failure_reason

        stmt = update(PayoutRequest).where(PayoutRequest.id == payout_id)
        if expected_status is not None:
            if isinstance(expected_status, str):
                expected_status = (expected_status,)
            stmt = stmt.where(PayoutRequest.status.in_(expected_status))

        with self._translate_errors():
            result = self.db.execute(
                stmt.values(**values).execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 0:
                self.db.rollback()
                logger.info(f"Payout {payout_id} no longer in {expected_status}; left as is")
                return None
            if campaign_fields:
                self.db.execute(
                    update(Campaign)
                    .where(Campaign.id == payout.campaign_id)
                    .values(**_db_values(campaign_fields))
                    .execution_options(synchronize_session="fetch")
                )
            self.db.commit()
        return self.get_payout_request(payout_id)

    # ============================================
    # Payments
    # ============================================

    def get_payment_by_transaction(self, transaction_id: str) -> Optional[Payment]:
        with self._translate_errors():
            return self.db.query(Payment).populate_existing().filter(
                Payment.transaction_id == transaction_id
            ).first()

    def create_payment(self, increment_funding: bool = False, **fields) -> Tuple[Payment, bool]:
        """
        Record a payment, deduplicated by transaction_id.

        A previously failed payment with the same transaction_id is settled
        in place when the new record is a success (donor retried the same
        PaymentIntent).

        Returns:
            (payment, created). ``created`` is False when the transaction was
            already recorded, in which case funding is left untouched.
        """
        transaction_id = fields["transaction_id"]
        existing = self.get_payment_by_transaction(transaction_id)

        if existing is None:
            payment = Payment(**fields)
            try:
                with self._translate_errors():
                    self.db.add(payment)
                    self.db.flush()
                    if increment_funding and payment.amount:
                        self.adjust_funding(payment.campaign_id, payment.amount)
                    self.db.commit()
                return payment, True
            except StoreConflict:
                # Lost the race against a concurrent delivery of the same event
                existing = self.get_payment_by_transaction(transaction_id)
                if existing is None:
                    raise

        if (
            existing.status == PaymentStatus.FAILED.value
            and fields.get("status") == PaymentStatus.SUCCEEDED.value
        ):
            return self._settle_failed_payment(transaction_id, increment_funding, fields)

        return existing, False

    def _settle_failed_payment(self, transaction_id: str, increment_funding: bool, fields: dict):
        with self._translate_errors():
            result = self.db.execute(
                update(Payment)
                .where(
                    Payment.transaction_id == transaction_id,
                    Payment.status == PaymentStatus.FAILED.value
                )
                .values(**fields)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 0:
                self.db.rollback()
                return self.get_payment_by_transaction(transaction_id), False
            if increment_funding and fields.get("amount"):
                self.adjust_funding(fields["campaign_id"], fields["amount"])
            self.db.commit()

        logger.info(f"Payment {transaction_id} settled after an earlier failure")
        return self.get_payment_by_transaction(transaction_id), True

    def refund_payment(self, transaction_id: str, amount_refunded: int) -> Optional[Payment]:
        """
        Apply Stripe's cumulative ``amount_refunded`` to a succeeded payment.

        Only the part not applied by an earlier event comes off the campaign,
        capped at what the payment credited. The payment becomes ``refunded``
        once the whole amount is back with the donor.

        Returns:
            The payment, or None when there is nothing new to refund
        """
        for _ in range(REFUND_ATTEMPTS):
            payment = self.get_payment_by_transaction(transaction_id)
            if payment is None or payment.status != PaymentStatus.SUCCEEDED.value:
                return None

            already = payment.refunded_amount or 0
            target = min(amount_refunded, payment.amount)
            if target <= already:
                return None

            status = PaymentStatus.REFUNDED.value if target >= payment.amount else PaymentStatus.SUCCEEDED.value

            with self._translate_errors():
                result = self.db.execute(
                    update(Payment)
                    .where(
                        Payment.id == payment.id,
                        Payment.status == PaymentStatus.SUCCEEDED.value,
                        func.coalesce(Payment.refunded_amount, 0) == already
                    )
                    .values(refunded_amount=target, status=status)
                    .execution_options(synchronize_session="fetch")
                )
                if result.rowcount == 1:
                    self.adjust_funding(payment.campaign_id, -(target - already))
                    self.db.commit()
                    return payment
                self.db.rollback()

        logger.warning(f"Refund for {transaction_id} kept racing other updates")
        raise StoreUnavailable("Payment is being updated concurrently, retry later")
