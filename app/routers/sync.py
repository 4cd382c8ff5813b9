"""
Manual sync triggers.

- POST /sync/orders    - sweep recently fulfilled orders ({hoursAgo, limit})
- POST /sync/products  - force a catalog refresh

Both require a bearer key in production (see app.auth.api_key_auth).
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.auth.api_key_auth import require_sync_api_key
from app.services.sync_service import SyncService, get_sync_service

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_sync_api_key)])


class SyncOrdersRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hours_ago: int = Field(default=24, ge=1, le=24 * 60, alias="hoursAgo")
    limit: int = Field(default=250, ge=1, le=250)


@router.post("/orders")
async def sync_orders(
    body: SyncOrdersRequest = SyncOrdersRequest(),
    service: SyncService = Depends(get_sync_service),
):
    logger.info("Manual order sync requested (hours_ago=%d, limit=%d)", body.hours_ago, body.limit)
    result = await service.process_recent_fulfilled_orders(hours_ago=body.hours_ago, limit=body.limit)
    return {"success": True, "result": result.to_dict()}


@router.post("/products")
async def sync_products(service: SyncService = Depends(get_sync_service)):
    logger.info("Manual product sync requested")
    count = await service.sync_album_products()
    return {"success": True, "cachedProducts": count}
