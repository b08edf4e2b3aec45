# backend/booking_core/services/stripe_gateway.py
"""
Narrow adapter over the Stripe API.

The rest of the core talks to the payment gateway only through this class:
open a hosted checkout session, request a refund, verify a webhook. Stripe
errors are translated into GatewayException / InvalidSignatureException so
callers never import ``stripe`` themselves.
"""

from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import GatewayException, InvalidSignatureException, ServiceException
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    """Hosted checkout page the buyer is redirected to."""

    url: str
    session_id: str


class StripeGateway:
    """Stripe-backed payment gateway."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.secret_key = (
            secret_key
            if secret_key is not None
            else settings.stripe_secret_key.get_secret_value()
        )
        self.webhook_secret = (
            webhook_secret
            if webhook_secret is not None
            else settings.stripe_webhook_secret.get_secret_value()
        )

        self.stripe_configured = bool(self.secret_key)
        if self.stripe_configured:
            stripe.api_key = self.secret_key
            # Bounded timeout, one network retry
            stripe.max_network_retries = settings.stripe_max_network_retries
            stripe.default_http_client = stripe.RequestsClient(
                timeout=settings.stripe_timeout_seconds
            )
        else:
            self.logger.warning("Stripe secret key not configured")

    def _check_stripe_configured(self) -> None:
        if not self.stripe_configured:
            raise ServiceException("Stripe service not configured")

    @BaseService.measure_operation("stripe_create_checkout_session")
    def create_checkout_session(
        self,
        *,
        booking_id: str,
        buyer_id: str,
        slot_id: str,
        price_id: str,
        customer_email: Optional[str],
        idempotency_key: str,
    ) -> CheckoutSession:
        """
        Open a hosted checkout session for a single lesson.

        The metadata carries everything settlement needs to find the booking
        again when ``checkout.session.completed`` arrives.
        """
        self._check_stripe_configured()
        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": [{"price": price_id, "quantity": 1}],
            "metadata": {
                "booking_id": booking_id,
                "buyer_id": buyer_id,
                "slot_id": slot_id,
            },
            "payment_intent_data": {"metadata": {"booking_id": booking_id}},
            "success_url": f"{settings.site_url}/booking-success?bookingId={booking_id}",
            "cancel_url": f"{settings.site_url}/booking?canceled=1&bookingId={booking_id}",
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(idempotency_key=idempotency_key, **params)
        except stripe.StripeError as e:
            self.logger.error(
                "Stripe checkout session creation failed",
                extra={"booking_id": booking_id, "error": str(e)},
            )
            raise GatewayException(
                f"Failed to create checkout session: {str(e)}",
                details={"booking_id": booking_id},
            )

        self.logger.info(
            "Created checkout session",
            extra={"booking_id": booking_id, "session_id": session.id},
        )
        return CheckoutSession(url=session.url, session_id=session.id)

    @BaseService.measure_operation("stripe_create_refund")
    def create_refund(self, *, payment_id: str, idempotency_key: str) -> str:
        """
        Refund a captured payment in full.

        Returns:
            The gateway refund id
        """
        self._check_stripe_configured()
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_id,
                reason="requested_by_customer",
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            self.logger.error(
                "Stripe refund failed",
                extra={"payment_id": payment_id, "error": str(e)},
            )
            raise GatewayException(
                f"Failed to refund payment: {str(e)}",
                details={"payment_id": payment_id},
            )
        return refund.id

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook payload against the endpoint secret and decode it.

        Raises:
            InvalidSignatureException: missing or bad signature, or undecodable payload
            ServiceException: webhook secret not configured
        """
        if not self.webhook_secret:
            raise ServiceException("Webhook secret not configured")
        if not signature:
            raise InvalidSignatureException("Missing Stripe-Signature header")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"Invalid webhook signature: {str(e)}")
            raise InvalidSignatureException()
        except ValueError as e:
            self.logger.warning(f"Invalid webhook payload: {str(e)}")
            raise InvalidSignatureException("Invalid webhook payload")

        return json.loads(payload)
