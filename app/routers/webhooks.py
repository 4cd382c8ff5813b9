"""
Shopify webhook ingress.

    POST /webhooks/orders/fulfilled
    POST /webhooks/fulfillments/create
    POST /webhooks/fulfillments/update
    POST /webhooks/orders/updated

Each request is HMAC-verified (X-Shopify-Hmac-Sha256, base64 HMAC-SHA256
of the raw body) when CHARTSYNC_SHOPIFY_WEBHOOK_SECRET is set. The order is
processed in a background task and Shopify gets {"status": "received"}
immediately; background failures are logged only.
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from app.config import settings
from app.services.sync_service import SyncService, get_sync_service

logger = logging.getLogger(__name__)

router = APIRouter()

FULFILLMENT_TOPICS = ("fulfillments/create", "fulfillments/update")
PROCESSABLE_FULFILLMENT_STATUSES = ("fulfilled", "partial")


def compute_signature(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    return hmac.compare_digest(compute_signature(secret, body), signature or "")


async def _verified_payload(request: Request) -> Dict[str, Any]:
    body = await request.body()
    secret = settings.shopify_webhook_secret
    if secret:
        if not verify_signature(body, request.headers.get("X-Shopify-Hmac-Sha256"), secret):
            logger.warning(
                "Invalid Shopify webhook signature",
                extra={"shop": request.headers.get("X-Shopify-Shop-Domain")},
            )
            raise HTTPException(status_code=401, detail="Unauthorized")
    else:
        logger.warning("CHARTSYNC_SHOPIFY_WEBHOOK_SECRET not set - skipping verification")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    return payload


def order_id_for(topic: str, payload: Dict[str, Any]) -> Optional[int]:
    """Fulfillment payloads carry ``order_id``; order payloads are the order itself."""
    value = payload.get("order_id") if topic in FULFILLMENT_TOPICS else payload.get("id")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


async def process_order_in_background(service: SyncService, order_id: int, topic: str) -> None:
    try:
        result = await service.process_order_by_id(order_id)
        logger.info(
            "Webhook order processed",
            extra={"topic": topic, "order_id": order_id, "result": result.to_dict()},
        )
    except Exception as e:
        logger.error("Failed to process %s webhook for order %s: %s", topic, order_id, e)


async def _receive(
    topic: str,
    request: Request,
    background_tasks: BackgroundTasks,
    service: SyncService,
) -> Dict[str, str]:
    payload = await _verified_payload(request)
    logger.info("Received webhook %s", topic, extra={"shop": request.headers.get("X-Shopify-Shop-Domain")})

    if topic == "orders/updated" and payload.get("fulfillment_status") not in PROCESSABLE_FULFILLMENT_STATUSES:
        logger.debug("Ignoring orders/updated with fulfillment_status=%s", payload.get("fulfillment_status"))
        return {"status": "received"}

    order_id = order_id_for(topic, payload)
    if order_id is None:
        raise HTTPException(status_code=400, detail="Missing order id")

    background_tasks.add_task(process_order_in_background, service, order_id, topic)
    return {"status": "received"}


@router.post("/orders/fulfilled", summary="Order fulfilled webhook")
async def orders_fulfilled(
    request: Request,
    background_tasks: BackgroundTasks,
    service: SyncService = Depends(get_sync_service),
):
    return await _receive("orders/fulfilled", request, background_tasks, service)


@router.post("/fulfillments/create", summary="Fulfillment created webhook")
async def fulfillments_create(
    request: Request,
    background_tasks: BackgroundTasks,
    service: SyncService = Depends(get_sync_service),
):
    return await _receive("fulfillments/create", request, background_tasks, service)


@router.post("/fulfillments/update", summary="Fulfillment updated webhook")
async def fulfillments_update(
    request: Request,
    background_tasks: BackgroundTasks,
    service: SyncService = Depends(get_sync_service),
):
    return await _receive("fulfillments/update", request, background_tasks, service)


@router.post("/orders/updated", summary="Order updated webhook")
async def orders_updated(
    request: Request,
    background_tasks: BackgroundTasks,
    service: SyncService = Depends(get_sync_service),
):
    return await _receive("orders/updated", request, background_tasks, service)
