"""Inbound Shopify webhook receiver."""
from fastapi import APIRouter, HTTPException, Request

from shopsync.shopify import verify_webhook_signature
from web.schemas import WebhookAck
from ._deps import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/webhooks/shopify", response_model=WebhookAck)
async def shopify_webhook(request: Request):
    """
    Verify a webhook delivery against X-Shopify-Hmac-Sha256.

    Deliveries are acknowledged and logged only; data arrives through the
    scheduled sync.
    """
    body = await request.body()
    signature = request.headers.get("X-Shopify-Hmac-Sha256")
    topic = request.headers.get("X-Shopify-Topic")
    shop = request.headers.get("X-Shopify-Shop-Domain")

    # app.state.webhook_secret overrides the configured client secret
    secret = getattr(request.app.state, "webhook_secret", None)
    if not verify_webhook_signature(body, signature, secret):
        logger.warning(
            "Rejected Shopify webhook with invalid signature",
            extra={"topic": topic, "shop": shop}
        )
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    logger.info(
        f"Shopify webhook received: {topic}",
        extra={
            "topic": topic,
            "shop": shop,
            "webhook_id": request.headers.get("X-Shopify-Webhook-Id"),
            "bytes": len(body),
        }
    )
    return {"ok": True, "topic": topic}
