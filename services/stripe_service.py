"""
Stripe Payment Integration Service

Handles donor payments and creator payouts via Stripe and Stripe Connect.

Stripe Flow:
1. Create PaymentIntent for the donation plus platform fee
2. Client confirms payment on frontend (stripe.js), or pays on a hosted
   Checkout Session page
3. Stripe sends webhook with payment status
4. Creator onboards a Connect account and requests a payout
5. Platform creates a Transfer to the Connect account

All amounts are integer minor units (cents). Nothing here converts from
dollars.
"""

import os
import json
import uuid
import stripe
from typing import Dict, Optional
import logging

from bloomfund.errors import InvalidSignature, TransferSubmissionFailed
from services.fee_service import compute_platform_fee, compute_total_charge
from services.stripe_events import parse_event

logger = logging.getLogger(__name__)


class StripeService:
    """
    Stripe payment service.

    Built once per application (see main.py) and injected where needed.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        max_network_retries: Optional[int] = None
    ):
        """Initialize Stripe service; unset arguments come from the environment."""
        self.api_key = api_key or os.getenv('STRIPE_SECRET_KEY', 'sk_test_mock_key')
        self.webhook_secret = webhook_secret or os.getenv('STRIPE_WEBHOOK_SECRET', 'whsec_mock_secret')
        self.timeout = float(timeout or os.getenv('STRIPE_TIMEOUT_SECONDS', 10))
        self.max_network_retries = int(
            max_network_retries if max_network_retries is not None
            else os.getenv('STRIPE_MAX_NETWORK_RETRIES', 2)
        )
        self.base_url = os.getenv('APP_BASE_URL', 'http://localhost:3000')

        # Mock mode flag
        self.is_mock = self.api_key.startswith('sk_test_mock')

        if self.is_mock:
            logger.info("Stripe: Running in mock mode (no real API key)")
        else:
            # Bounded waits on every API call; Stripe retries idempotent requests itself
            stripe.api_key = self.api_key
            stripe.max_network_retries = self.max_network_retries
            stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
            logger.info("Stripe: Initialized with real API key")

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        campaign_id: int,
        donor_name: str,
        donor_email: str,
        is_anonymous: bool = False,
        message: Optional[str] = None,
        reward_tier_id: Optional[int] = None,
        user_id: Optional[int] = None
    ) -> Dict:
        """
        Create a Stripe PaymentIntent for a donation.

        The donor is charged the donation plus the platform fee, so the
        campaign is credited with the full ``amount``.

        Args:
            amount: Donation in minor units (what the campaign should receive)
            currency: Three-letter currency code
            campaign_id: Campaign being funded
            donor_name: Name shown on the campaign page
            donor_email: Receipt email
            is_anonymous: Hide donor name publicly
            message: Optional note to the creator
            reward_tier_id: Optional reward tier chosen
            user_id: Donor's user ID when logged in

        Returns:
            Dict with PaymentIntent data including client_secret
        """
        total_amount = compute_total_charge(amount)
        platform_fee = compute_platform_fee(amount)
        metadata = {
            'campaign_id': str(campaign_id),
            'donor_name': donor_name,
            'donor_email': donor_email,
            'is_anonymous': 'true' if is_anonymous else 'false',
            'message': message or '',
            'reward_tier_id': str(reward_tier_id) if reward_tier_id else '',
            'user_id': str(user_id) if user_id else '',
            'original_amount': str(amount),
            'platform_fee': str(platform_fee),
        }

        # Mock mode
        if self.is_mock:
            logger.info(f"Stripe Mock: Creating PaymentIntent for {total_amount} {currency}")
            return {
                'id': f'pi_mock_{uuid.uuid4().hex[:16]}',
                'amount': total_amount,
                'currency': currency.lower(),
                'status': 'requires_payment_method',
                'client_secret': f'pi_mock_secret_{uuid.uuid4().hex[:16]}',
                'platform_fee': platform_fee,
                'metadata': metadata
            }

        # Real API call
        try:
            payment_intent = stripe.PaymentIntent.create(
                amount=total_amount,
                currency=currency.lower(),
                receipt_email=donor_email,
                description=f"Donation to campaign {campaign_id}",
                metadata=metadata,
                automatic_payment_methods={'enabled': True}
            )

            logger.info(f"Stripe: PaymentIntent created - {payment_intent.id}")

            return {
                'id': payment_intent.id,
                'amount': payment_intent.amount,
                'currency': payment_intent.currency,
                'status': payment_intent.status,
                'client_secret': payment_intent.client_secret,
                'platform_fee': platform_fee,
                'metadata': metadata
            }

        except stripe.StripeError as e:
            logger.error(f"Stripe: PaymentIntent creation failed: {str(e)}")
            raise

    def create_checkout_session(
        self,
        amount: int,
        currency: str,
        campaign_id: int,
        campaign_title: str,
        donor_name: str,
        donor_email: str,
        is_anonymous: bool = False,
        message: Optional[str] = None,
        reward_tier_id: Optional[int] = None,
        reward_tier_title: Optional[str] = None,
        user_id: Optional[int] = None
    ) -> Dict:
        """
        Create a hosted Stripe Checkout Session for a donation.

        Same charge as create_payment_intent. The donation metadata is
        copied onto the session's PaymentIntent too, so whichever webhook
        arrives first can record the donation.

        Returns:
            Dict with session id, hosted checkout url, charged amount and fee
        """
        total_amount = compute_total_charge(amount)
        platform_fee = compute_platform_fee(amount)
        metadata = {
            'campaign_id': str(campaign_id),
            'campaign_title': campaign_title,
            'donor_name': donor_name,
            'donor_email': donor_email,
            'is_anonymous': 'true' if is_anonymous else 'false',
            'message': message or '',
            'reward_tier_id': str(reward_tier_id) if reward_tier_id else '',
            'reward_tier_title': reward_tier_title or '',
            'user_id': str(user_id) if user_id else '',
            'original_amount': str(amount),
            'platform_fee': str(platform_fee),
            'amount_after_fee': str(amount),
        }
        campaign_url = f'{self.base_url}/campaigns/{campaign_id}'

        # Mock mode
        if self.is_mock:
            session_id = f'cs_mock_{uuid.uuid4().hex[:16]}'
            logger.info(f"Stripe Mock: Creating Checkout Session {session_id} for {total_amount} {currency}")
            return {
                'id': session_id,
                'url': f'{campaign_url}?success=true&session_id={session_id}',
                'amount': total_amount,
                'platform_fee': platform_fee,
                'metadata': metadata
            }

        # Real API call
        try:
            session = stripe.checkout.Session.create(
                payment_method_types=['card'],
                line_items=[{
                    'price_data': {
                        'currency': currency.lower(),
                        'product_data': {
                            'name': f'Donation to {campaign_title}',
                            'description': reward_tier_title or 'General Support',
                        },
                        'unit_amount': total_amount,
                    },
                    'quantity': 1,
                }],
                mode='payment',
                success_url=f'{campaign_url}?success=true&session_id={{CHECKOUT_SESSION_ID}}',
                cancel_url=f'{campaign_url}?canceled=true',
                customer_email=donor_email,
                metadata=metadata,
                payment_intent_data={'metadata': metadata}
            )

            logger.info(f"Stripe: Checkout Session created - {session.id}")

            return {
                'id': session.id,
                'url': session.url,
                'amount': total_amount,
                'platform_fee': platform_fee,
                'metadata': metadata
            }

        except stripe.StripeError as e:
            logger.error(f"Stripe: Checkout Session creation failed: {str(e)}")
            raise

    def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        metadata: Optional[Dict] = None,
        idempotency_key: Optional[str] = None
    ) -> str:
        """
        Create a Stripe Transfer to a Connect account.

        Args:
            amount: Amount in minor units
            currency: Three-letter currency code
            destination: Connected Stripe account ID (starts with 'acct_')
            metadata: Tags for reconciliation (campaign_id, payout_id)
            idempotency_key: Lets Stripe collapse retried submissions

        Returns:
            Transfer ID (tr_...)

        Raises:
            TransferSubmissionFailed: Stripe rejected the transfer or was unreachable
        """
        metadata = {key: str(value) for key, value in (metadata or {}).items()}

        # Mock mode
        if self.is_mock:
            transfer_id = f'tr_mock_{uuid.uuid4().hex[:16]}'
            logger.info(f"Stripe Mock: Created transfer {transfer_id} for {amount} {currency} to {destination}")
            return transfer_id

        # Real API call
        try:
            transfer = stripe.Transfer.create(
                amount=amount,
                currency=currency.lower(),
                destination=destination,
                metadata=metadata,
                idempotency_key=idempotency_key
            )

            logger.info(f"Stripe: Transfer created - {transfer.id}")
            return transfer.id

        except stripe.StripeError as e:
            logger.error(f"Stripe: Transfer creation failed: {str(e)}")
            raise TransferSubmissionFailed(f"Failed to create Stripe transfer: {e.user_message or str(e)}") from e

    def create_connect_account(
        self,
        email: str,
        business_name: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None
    ) -> Dict:
        """
        Create an Express Connect account and its onboarding link.

        Returns:
            Dict with account_id and onboarding_url
        """
        # Mock mode
        if self.is_mock:
            account_id = f'acct_mock_{uuid.uuid4().hex[:16]}'
            logger.info(f"Stripe Mock: Creating Connect account {account_id} for {email}")
            return {
                'account_id': account_id,
                'onboarding_url': f'{self.base_url}/dashboard/connect-stripe?mock_account={account_id}'
            }

        # Real API call
        try:
            account = stripe.Account.create(
                type='express',
                country='US',
                email=email,
                business_type='individual',
                capabilities={
                    'transfers': {'requested': True},
                    'card_payments': {'requested': True},
                },
                business_profile={'name': business_name},
                individual={
                    'first_name': first_name,
                    'last_name': last_name,
                    'email': email,
                    'phone': phone,
                },
            )

            account_link = stripe.AccountLink.create(
                account=account.id,
                refresh_url=f'{self.base_url}/dashboard/connect-stripe?refresh=true',
                return_url=f'{self.base_url}/dashboard/connect-stripe?success=true',
                type='account_onboarding',
            )

            logger.info(f"Stripe: Connect account created - {account.id}")

            return {
                'account_id': account.id,
                'onboarding_url': account_link.url
            }

        except stripe.StripeError as e:
            logger.error(f"Stripe: Connect account creation failed: {str(e)}")
            raise

    def verify_and_parse_event(self, payload: bytes, signature: str):
        """
        Verify a webhook delivery and parse it into a typed event.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            One of the models in services.stripe_events

        Raises:
            InvalidSignature: If signature verification fails
            InvalidEventPayload: If the verified body is not a valid event
        """
        # Mock mode - skip verification
        if self.is_mock:
            logger.warning("Stripe Mock: Skipping webhook signature verification")
        else:
            try:
                stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
            except ValueError as e:
                logger.error(f"Stripe: Invalid webhook payload: {str(e)}")
                raise InvalidSignature("Invalid payload") from e
            except stripe.SignatureVerificationError as e:
                logger.error(f"Stripe: Invalid webhook signature: {str(e)}")
                raise InvalidSignature() from e

        try:
            raw = json.loads(payload)
        except ValueError as e:
            raise InvalidSignature("Invalid payload") from e

        event = parse_event(raw)
        logger.info(f"Stripe: Webhook event verified - {event.type}")
        return event
