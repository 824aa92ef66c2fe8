import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from shlink_ui.dependencies import (
    get_current_user,
    get_short_url_service,
    get_sync_service,
)
from shlink_ui.models.user import User
from shlink_ui.schemas.short_url import ShortUrlResponse
from shlink_ui.services.short_url_service import ShortUrlService
from shlink_ui.services.sync_service import ShlinkSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mypage", tags=["mypage"])


@router.get("")
async def index(
    page: int = 1,
    search: Optional[str] = None,
    user: User = Depends(get_current_user),
    service: ShortUrlService = Depends(get_short_url_service),
):
    listing = await service.list_for_user(user, page=page, search=search)
    listing["short_urls"] = [
        ShortUrlResponse.model_validate(url).model_dump(mode="json") for url in listing["short_urls"]
    ]
    return listing


@router.post("/sync")
async def sync(
    user: User = Depends(get_current_user),
    sync_service: ShlinkSyncService = Depends(get_sync_service),
    service: ShortUrlService = Depends(get_short_url_service),
):
    # ShlinkError from the listing pass becomes a 502 in the app handler
    synced_count = sync_service.sync(user)
    await service.invalidate_statistics(user)
    return {
        "success": True,
        "message": f"Synced {synced_count} short URLs",
        "synced_count": synced_count,
    }


@router.delete("/short_urls/{short_code}")
async def destroy(
    short_code: str,
    user: User = Depends(get_current_user),
    service: ShortUrlService = Depends(get_short_url_service),
):
    short_url = await service.delete(user, short_code)
    if short_url is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Short URL not found"
        )
    return {
        "success": True,
        "message": f"Deleted short URL \"{short_url.title or short_code}\"",
    }
