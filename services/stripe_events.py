"""
Typed Stripe Webhook Events

Stripe posts loosely shaped JSON. We validate it once at the boundary into a
closed set of event models keyed by ``type``; the reconciler only ever sees
these models.

Handled events:
- payment_intent.succeeded / payment_intent.payment_failed
- checkout.session.completed
- charge.refunded
- transfer.created / transfer.paid / transfer.failed / transfer.reversed
- account.updated

Anything else parses to UnhandledEvent. Donation metadata is validated here
too, so a bad campaign_id is rejected before any handler runs.
"""

from typing import Annotated, Dict, Literal, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from bloomfund.errors import InvalidEventPayload


class _StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    metadata: Dict[str, str] = Field(default_factory=dict)


class DonationMetadata(BaseModel):
    """Metadata we attach to PaymentIntents and Checkout Sessions."""
    model_config = ConfigDict(extra="ignore")

    campaign_id: int
    donor_name: str = ""
    is_anonymous: bool = False
    message: Optional[str] = None
    reward_tier_id: Optional[int] = None
    user_id: Optional[int] = None
    original_amount: Optional[int] = None

    @field_validator("message", "reward_tier_id", "user_id", "original_amount", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        # Stripe metadata values are strings; we send "" for "not set"
        if value == "":
            return None
        return value


class _DonationCarrier(_StripeObject):
    """
    Object whose metadata may describe a BloomFund donation.

    ``donation`` stays None for charges that did not come from our checkout
    (no campaign_id). Present but unusable metadata fails the whole event.
    """
    donation: Optional[DonationMetadata] = None

    @model_validator(mode="after")
    def _read_donation(self):
        if "campaign_id" in self.metadata:
            try:
                self.donation = DonationMetadata.model_validate(self.metadata)
            except ValidationError as e:
                raise ValueError(f"invalid donation metadata ({e.error_count()} fields)") from e
        return self


class PaymentIntentObject(_DonationCarrier):
    amount: int
    currency: str
    receipt_email: Optional[str] = None


class CheckoutSessionObject(_DonationCarrier):
    payment_intent: Optional[str] = None
    amount_total: int
    currency: str


class ChargeObject(_StripeObject):
    payment_intent: Optional[str] = None
    amount_refunded: int = 0


class TransferObject(_StripeObject):
    amount: int
    currency: str
    destination: Optional[str] = None


class AccountRequirements(BaseModel):
    model_config = ConfigDict(extra="ignore")

    disabled_reason: Optional[str] = None


class AccountObject(_StripeObject):
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    requirements: Optional[AccountRequirements] = None


class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str


class PaymentSucceeded(_Event):
    type: Literal["payment_intent.succeeded"]
    object: PaymentIntentObject


class PaymentFailed(_Event):
    type: Literal["payment_intent.payment_failed"]
    object: PaymentIntentObject


class CheckoutSessionCompleted(_Event):
    type: Literal["checkout.session.completed"]
    object: CheckoutSessionObject


class ChargeRefunded(_Event):
    type: Literal["charge.refunded"]
    object: ChargeObject


class TransferCreated(_Event):
    type: Literal["transfer.created"]
    object: TransferObject


class TransferPaid(_Event):
    type: Literal["transfer.paid"]
    object: TransferObject


class TransferFailed(_Event):
    type: Literal["transfer.failed", "transfer.reversed"]
    object: TransferObject


class AccountUpdated(_Event):
    type: Literal["account.updated"]
    object: AccountObject


class UnhandledEvent(_Event):
    type: str


StripeEvent = Annotated[
    Union[
        PaymentSucceeded,
        PaymentFailed,
        CheckoutSessionCompleted,
        ChargeRefunded,
        TransferCreated,
        TransferPaid,
        TransferFailed,
        AccountUpdated,
    ],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(StripeEvent)

HANDLED_EVENT_TYPES = frozenset({
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "checkout.session.completed",
    "charge.refunded",
    "transfer.created",
    "transfer.paid",
    "transfer.failed",
    "transfer.reversed",
    "account.updated",
})


def parse_event(raw: Mapping):
    """
    Validate a decoded Stripe event body.

    Args:
        raw: Event JSON as a dict ({"id", "type", "data": {"object": {...}}})

    Returns:
        One of the StripeEvent models, or UnhandledEvent for other types

    Raises:
        InvalidEventPayload: Body is not a well-formed event of its type
    """
    try:
        event_type = raw["type"]
        event_id = raw.get("id", "")
        if event_type not in HANDLED_EVENT_TYPES:
            return UnhandledEvent(id=event_id, type=event_type)
        return _event_adapter.validate_python({
            "id": event_id,
            "type": event_type,
            "object": raw["data"]["object"],
        })
    except (KeyError, TypeError, AttributeError) as e:
        raise InvalidEventPayload(f"Malformed Stripe event: missing {e}") from e
    except ValidationError as e:
        raise InvalidEventPayload(f"Malformed {raw.get('type')} event: {e.error_count()} invalid fields") from e
