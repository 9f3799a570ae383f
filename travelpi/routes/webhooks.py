"""
Pi Network webhook receiver
"""
import uuid

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from travelpi.core.config import settings
from travelpi.core.exceptions import AuthenticationError, BadRequestError
from travelpi.core.logging_config import logger
from travelpi.core.middleware import get_client_ip
from travelpi.db.session import get_db
from travelpi.routes.dependencies import get_payment_service
from travelpi.schemas.payment import WebhookEvent
from travelpi.services.audit_service import audit_service
from travelpi.services.payment_service import PaymentService
from travelpi.services.webhook_verifier import is_timestamp_fresh, verify_signature

router = APIRouter(
    prefix="/api/webhooks",
    tags=["webhooks"]
)


@router.post("/pi")
async def pi_webhook(
    request: Request,
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service)
):
    """
    Receive a signed payment event from Pi Network

    Headers x-pi-signature and x-pi-timestamp authenticate the raw body;
    nothing in the body is trusted before both checks pass.
    """
    request_id = str(uuid.uuid4())

    signature = request.headers.get("x-pi-signature")
    timestamp = request.headers.get("x-pi-timestamp")
    if not signature or not timestamp:
        logger.warning(f"[{request_id}] Missing signature headers")
        raise BadRequestError("Missing signature headers")

    body = (await request.body()).decode("utf-8", errors="replace")
    if not body:
        raise BadRequestError("Empty body")

    if not is_timestamp_fresh(timestamp, tolerance_seconds=settings.PI_WEBHOOK_TOLERANCE_SECONDS):
        logger.warning(f"[{request_id}] Webhook expired (timestamp {timestamp})")
        raise BadRequestError("Webhook expired")

    if not verify_signature(body, signature, timestamp, settings.PI_SECRET_KEY):
        logger.warning(f"[{request_id}] Invalid webhook signature")
        audit_service.log_security_event(
            db,
            "pi_webhook_invalid_signature",
            success=False,
            failure_reason="Invalid signature",
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
            metadata={"requestId": request_id},
        )
        db.commit()
        raise AuthenticationError("Invalid signature")

    try:
        webhook = WebhookEvent.model_validate_json(body)
    except ValidationError:
        logger.warning(f"[{request_id}] Malformed webhook payload")
        raise BadRequestError("Invalid webhook payload")

    logger.info(f"[{request_id}] Received {webhook.event} for {webhook.payment.identifier}")

    outcome = service.handle_webhook(webhook.event, webhook.payment.model_dump(), request_id)
    if outcome["duplicate"]:
        return {"success": True, "message": "Already processed", "requestId": request_id}

    return {
        "success": True,
        "requestId": request_id,
        "processingTime": outcome["processingTime"],
        "result": outcome["result"],
    }
