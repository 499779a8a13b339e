import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from membership_api.core.auth_dependency import get_db
from membership_api.core.environment import Environment, resolve_webhook_environment
from membership_api.schemas.billing import BillingErrorResponse, WebhookResponse
from membership_api.services.stripe_gateway import StripeGateway, get_gateway_provider
from membership_api.services.webhook_service import (
    WebhookProcessingError,
    WebhookReconciler,
    get_webhook_reconciler,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing Webhook"])


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={400: {"model": BillingErrorResponse}, 500: {"model": BillingErrorResponse}},
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    environment: Optional[str] = Query(None, description="Stripe account the endpoint is registered on"),
    gateway_for: Callable[[Environment], StripeGateway] = Depends(get_gateway_provider),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
    db: Session = Depends(get_db),
):
    """
    Stripe webhook receiver.

    400 when the signature does not verify, 200 once the event is processed,
    ignored or recognised as a duplicate, 500 when processing fails so Stripe
    retries the delivery.
    """
    payload = await request.body()
    env = resolve_webhook_environment(request.headers.get("origin"), environment)
    gateway = gateway_for(env)

    event = reconciler.verify(gateway, payload, stripe_signature)

    try:
        result = await run_in_threadpool(reconciler.handle, db, event, gateway)
    except WebhookProcessingError as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed", "error_type": "processing_error", "event_id": e.event_id},
        )

    logger.info(f"Webhook handled: environment={env.value}, result={result}")
    return WebhookResponse(
        processed=result.get("processed", True),
        event_id=result.get("event_id"),
        event_type=result.get("event_type"),
    )
