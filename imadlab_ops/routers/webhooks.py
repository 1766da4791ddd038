"""Webhooks — Resend delivery events (delivered, opened, clicked, bounced, complained)."""

import json
import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from imadlab_ops.config import RESEND_WEBHOOK_SECRET
from imadlab_ops.services.delivery_events import apply_event, is_handled, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


@router.post("/resend")
async def resend_webhook(
    request: Request,
    svix_signature: str = Header("", alias="svix-signature"),
    svix_timestamp: str = Header("", alias="svix-timestamp"),
    svix_id: str = Header("", alias="svix-id"),
):
    """Reconcile a Resend delivery event with the analytics row it belongs to."""
    if not RESEND_WEBHOOK_SECRET:
        logger.error("RESEND_WEBHOOK_SECRET is not configured")
        return JSONResponse({"error": "Webhook secret not configured"}, status_code=500)

    if not svix_signature or not svix_timestamp:
        return JSONResponse({"error": "Missing required webhook headers"}, status_code=400)

    payload = await request.body()

    if not verify_signature(payload, svix_signature, svix_timestamp, RESEND_WEBHOOK_SECRET):
        logger.warning("Invalid webhook signature (svix-id=%s)", svix_id or "-")
        return JSONResponse({"error": "Invalid signature"}, status_code=401)

    try:
        event = json.loads(payload)
    except ValueError:
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)
    if not isinstance(event, dict):
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)

    event_type = event.get("type", "")
    if not is_handled(event_type):
        logger.info("Unhandled event type: %s", event_type)
        return {"message": "Event type not handled", "eventType": event_type}

    recipients = (event.get("data") or {}).get("to") or []
    if isinstance(recipients, str):
        recipients = [recipients]
    if not recipients:
        return JSONResponse({"error": "Event has no recipient"}, status_code=400)
    recipient = recipients[0]

    try:
        result = apply_event(event, recipient)
    except Exception as e:
        logger.exception("Webhook processing error for %s", event_type)
        return JSONResponse({"error": "Internal server error", "message": str(e)}, status_code=500)

    if result is None:
        return JSONResponse({
            "message": "Analytics record not found",
            "eventType": event_type,
            "recipientEmail": recipient,
        }, status_code=404)

    return result
