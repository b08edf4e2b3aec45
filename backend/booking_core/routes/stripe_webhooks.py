"""
Stripe Webhook Endpoint

Receives payment settlement events from Stripe. The signature is verified
against the endpoint secret before anything else happens; the verified body
is parsed into a gateway event variant and handed to the settlement service.

Status codes drive Stripe's redelivery:
- 400: bad or missing signature (never retried, nothing processed)
- 200: applied, duplicate, or deliberately ignored
- 500: processing failed, or a refund arrived before its payment (Stripe redelivers)
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..api.dependencies.services import get_settlement_service, get_stripe_gateway
from ..core.exceptions import DomainException, InvalidSignatureException
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..schemas.gateway_events import parse_gateway_event
from ..schemas.payment_schemas import WebhookResponse
from ..services.settlement_service import SettlementOutcome, SettlementService
from ..services.stripe_gateway import StripeGateway
from ..tasks.payment_tasks import refund_conflicting_payment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["stripe-webhooks"])

_RESPONSE_STATUS = {
    SettlementOutcome.CONFIRMED: "success",
    SettlementOutcome.REFUND_RECORDED: "success",
    SettlementOutcome.DUPLICATE: "duplicate",
    SettlementOutcome.CONFLICT: "conflict",
    SettlementOutcome.IGNORED: "ignored",
}


def _enqueue_conflict_refund(payment_id: str) -> None:
    try:
        refund_conflicting_payment.delay(payment_id)
    except Exception as e:
        # Payment stays refund_status=pending; reconciliation re-enqueues it
        logger.error(f"Failed to enqueue conflict refund for {payment_id}: {str(e)}")


@router.post("/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_stripe_gateway),
    settlement_service: SettlementService = Depends(get_settlement_service),
) -> WebhookResponse:
    """
    Handle Stripe settlement webhook events.

    Processes:
    - checkout.session.completed (paid sessions only)
    - checkout.session.async_payment_succeeded
    - charge.refunded

    Any other event type is acknowledged and ignored.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = gateway.construct_event(payload, signature)
    except InvalidSignatureException as e:
        prometheus_metrics.record_webhook_event("unverified", "rejected")
        raise e.to_http_exception()
    except DomainException as e:
        logger.error(f"Stripe webhook verification unavailable: {e.message}")
        raise e.to_http_exception()

    parsed = parse_gateway_event(event)
    logger.info(
        f"Processing Stripe webhook event: {parsed.event_type}",
        extra={"event_id": parsed.event_id},
    )

    try:
        result = await asyncio.to_thread(settlement_service.handle_event, parsed)
    except Exception as e:
        prometheus_metrics.record_webhook_event(parsed.event_type, "error")
        logger.error(
            f"Error processing Stripe webhook {parsed.event_id}: {str(e)}",
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process webhook"
        )

    if result.refund_required and result.payment_id:
        _enqueue_conflict_refund(result.payment_id)

    return WebhookResponse(
        status=_RESPONSE_STATUS.get(result.outcome, "success"),
        event_type=result.event_type,
        message=result.outcome,
    )
