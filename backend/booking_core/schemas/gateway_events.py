# backend/booking_core/schemas/gateway_events.py
"""
Verified gateway webhook events as a closed set of tagged variants.

``parse_gateway_event`` is the only place that knows Stripe's payload shape.
Everything downstream dispatches on the variant type, so a new or reshaped
Stripe event can at worst become an UnknownEvent (acknowledged, not applied).
"""

import logging
from typing import Any, Dict, Literal, Optional, Union

from pydantic import Field, ValidationError

from ._strict_base import EventVariant

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
CHARGE_REFUNDED = "charge.refunded"


class CheckoutCompleted(EventVariant):
    """Payment for a checkout session has been captured."""

    kind: Literal["checkout_completed"] = "checkout_completed"
    event_id: str
    event_type: str
    booking_id: str = Field(..., min_length=1)
    buyer_id: str = Field(..., min_length=1)
    slot_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)


class ChargeRefunded(EventVariant):
    """A captured payment has been refunded (by us or from the dashboard)."""

    kind: Literal["charge_refunded"] = "charge_refunded"
    event_id: str
    event_type: str
    payment_id: str = Field(..., min_length=1)


class UnknownEvent(EventVariant):
    """Anything this core does not act on. Always acknowledged."""

    kind: Literal["unknown"] = "unknown"
    event_id: str
    event_type: str
    reason: Optional[str] = None


GatewayEvent = Union[CheckoutCompleted, ChargeRefunded, UnknownEvent]


def _checkout_completed(event_id: str, event_type: str, obj: Dict[str, Any]) -> CheckoutCompleted:
    metadata = obj.get("metadata") or {}
    return CheckoutCompleted(
        event_id=event_id,
        event_type=event_type,
        booking_id=metadata.get("booking_id"),
        buyer_id=metadata.get("buyer_id"),
        slot_id=metadata.get("slot_id"),
        payment_id=obj.get("payment_intent"),
        amount=obj.get("amount_total"),
        currency=(obj.get("currency") or "").lower(),
    )


def parse_gateway_event(event: Dict[str, Any]) -> GatewayEvent:
    """
    Map a verified webhook payload to its variant.

    A ``checkout.session.completed`` that is not yet paid (delayed payment
    methods) is Unknown; its ``async_payment_succeeded`` follow-up settles it.
    A known event type with a malformed body is also Unknown and is logged at
    ERROR, since redelivery would not fix it.
    """
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    obj = (event.get("data") or {}).get("object") or {}

    try:
        if event_type == CHECKOUT_COMPLETED:
            if obj.get("payment_status") != "paid":
                return UnknownEvent(event_id=event_id, event_type=event_type, reason="not_paid")
            return _checkout_completed(event_id, event_type, obj)

        if event_type == CHECKOUT_ASYNC_SUCCEEDED:
            return _checkout_completed(event_id, event_type, obj)

        if event_type == CHARGE_REFUNDED:
            return ChargeRefunded(
                event_id=event_id,
                event_type=event_type,
                payment_id=obj.get("payment_intent"),
            )
    except ValidationError as exc:
        logger.error(
            "Malformed %s event %s: %s",
            event_type,
            event_id,
            exc.errors(include_url=False),
        )
        return UnknownEvent(event_id=event_id, event_type=event_type, reason="malformed")

    return UnknownEvent(event_id=event_id, event_type=event_type, reason="unhandled")
