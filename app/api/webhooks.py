"""Webhook receiver endpoints.

Provides:
- POST /webhooks/payments - receive payment provider events
- HMAC signature verification
- Deduplication by event_id
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError

from app.api.dependencies import SessionDep, schedule_outbox_drain
from app.api.schemas import ErrorResponse, WebhookPayload, WebhookResponse
from app.application.webhook_service import (
    WebhookEvent,
    WebhookEventType,
    WebhookService,
    get_webhook_service,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_service(session: SessionDep) -> WebhookService:
    """Get webhook service."""
    return get_webhook_service(session)


@router.post(
    "/payments",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
    },
    summary="Receive payment webhook",
    description="Receive payment provider events with HMAC verification.",
)
async def receive_payment_webhook(
    request: Request,
    service: Annotated[WebhookService, Depends(get_service)],
    background_tasks: BackgroundTasks,
    x_webhook_signature: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """Receive and process a payment event.

    The body must be signed with ``X-Webhook-Signature: sha256=<hex>``.
    Events are deduplicated by event_id; duplicates return success with
    status="duplicate".

    Raises:
        HTTPException: If the signature or payload is invalid.
    """
    correlation_id = getattr(request.state, "request_id", None)
    body = await request.body()

    if not service.verify_signature(body, x_webhook_signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error_code": "INVALID_SIGNATURE",
                "message": "Webhook signature verification failed",
            },
        )

    try:
        payload = WebhookPayload.model_validate_json(body)
    except PydanticValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error_code": "INVALID_PAYLOAD",
                "message": "Webhook payload is malformed",
                "details": {"errors": e.errors(include_url=False, include_input=False)},
            },
        ) from e

    logger.info(
        "Received payment webhook",
        event_id=payload.event_id,
        event_type=payload.event_type,
        correlation_id=correlation_id,
    )

    try:
        event_type = WebhookEventType(payload.event_type)
    except ValueError:
        logger.warning(
            "Unknown webhook event type",
            event_type=payload.event_type,
            event_id=payload.event_id,
        )
        # Accept unknown event types for forward compatibility
        return WebhookResponse(
            success=True,
            event_id=payload.event_id,
            status="ignored",
            message=f"Unknown event type: {payload.event_type}",
        )

    event = WebhookEvent(event_id=payload.event_id, event_type=event_type, data=payload.data)
    result = await service.process_event(event, correlation_id=correlation_id)
    schedule_outbox_drain(background_tasks)

    return WebhookResponse(
        success=result.success,
        event_id=result.event_id,
        status=result.status.value,
        message=result.message,
    )
