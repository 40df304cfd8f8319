"""
Webhooks for the payment provider (Wave).
Register https://your-backend.com/webhooks/wave in the Wave business portal.
"""
import os
import json
import hmac
import hashlib
import logging
from fastapi import APIRouter, Request, HTTPException, status, Depends
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.services.payments import confirm_wave_payment, record_wave_payment_failure

logger = logging.getLogger(__name__)

router = APIRouter()

PAYMENT_SUCCEEDED_EVENTS = ("checkout.session.completed", "payment.completed", "payment.success")


def _verify_wave_signature(payload: bytes, signature_header: str | None, secret: str) -> bool:
    """
    Wave signs the raw body with HMAC-SHA256 and sends the hex digest in
    `X-Wave-Signature`, prefixed with "sha256=".
    """
    if not secret or not signature_header:
        return False
    raw = signature_header.strip()
    if raw.startswith("sha256="):
        raw = raw.split("=", 1)[1].strip()
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(raw, expected)


@router.post("/wave")
async def wave_webhook(request: Request, db: Session = Depends(get_db)):
    secret = os.getenv("WAVE_WEBHOOK_SECRET", "")
    if not secret:
        logger.error("[Wave webhook] WAVE_WEBHOOK_SECRET is not set, refusing webhook")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook non configuré")

    payload = await request.body()
    if not _verify_wave_signature(payload, request.headers.get("x-wave-signature"), secret):
        logger.warning("[Wave webhook] Invalid signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Signature invalide")

    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON invalide")
    if not isinstance(data, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON invalide")

    event_type = data.get("type")
    # Wave payload shape: {"id": "...", "type": "...", "data": {...}}
    obj = data.get("data") or {}
    if not isinstance(obj, dict):
        obj = {}

    logger.info("[Wave webhook] type=%s checkout=%s reference=%s", event_type, obj.get("id"), obj.get("client_reference"))

    if event_type in PAYMENT_SUCCEEDED_EVENTS:
        result = confirm_wave_payment(db, obj)
    elif event_type == "payment.failed":
        result = record_wave_payment_failure(db, obj, cancelled=False)
    elif event_type == "payment.cancelled":
        result = record_wave_payment_failure(db, obj, cancelled=True)
    else:
        logger.info("[Wave webhook] Ignoring unhandled event type %s", event_type)
        result = {"handled": False, "reason": "unhandled_event"}

    return {"received": True, **result}
