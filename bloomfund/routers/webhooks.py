"""
Webhook Handlers for Stripe

Stripe posts payment, transfer and Connect account events here. The body is
verified against the Stripe-Signature header before anything is touched.

Responses:
- 200 {"received": true}: applied, duplicate delivery, or ignored type
- 400 {"error": ...}: missing/invalid signature or malformed event (no retry)
- 500 {"error": ...}: unexpected failure; Stripe will redeliver
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
import logging

from bloomfund.errors import BloomFundError, InvalidSignature, StoreConflict
from bloomfund.handlers.webhook_handler import WebhookReconciler
from bloomfund.routers.deps import get_reconciler, get_stripe_service
from services.stripe_service import StripeService

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)


@router.post("/stripe")
@router.post("/transfer-events")
async def stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
    reconciler: WebhookReconciler = Depends(get_reconciler)
):
    """
    Handle Stripe webhook events.

    Important events:
    - payment_intent.succeeded / checkout.session.completed: Record donation
    - payment_intent.payment_failed: Record failed payment
    - charge.refunded: Take refunded amount (partial or full) off the campaign
    - transfer.created / transfer.paid / transfer.failed: Payout progress
    - account.updated: Creator's Connect account status
    """
    payload = await request.body()
    signature = request.headers.get('stripe-signature')

    if not signature:
        raise InvalidSignature("Missing stripe-signature header")

    # Raises InvalidSignature / InvalidEventPayload -> 400
    event = stripe_service.verify_and_parse_event(payload, signature)

    logger.info(f"Stripe webhook received: {event.type} ({event.id})")

    try:
        outcome = reconciler.apply(event)
    except StoreConflict as e:
        # A concurrent delivery of the same event already won
        logger.info(f"Stripe webhook {event.id}: duplicate write rejected ({e})")
        return {"received": True}
    except BloomFundError as e:
        logger.error(f"Stripe webhook {event.id} ({event.type}) failed: {e.message}")
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})
    except Exception as e:
        logger.exception(f"Stripe webhook {event.id} ({event.type}) failed: {str(e)}")
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})

    logger.info(f"Stripe webhook {event.id}: {outcome.result}")
    return {"received": True}
