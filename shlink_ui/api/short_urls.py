from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status

from shlink_ui.dependencies import get_current_user, get_short_url_service, rate_limit
from shlink_ui.models.user import User
from shlink_ui.schemas.short_url import (
    EditShortUrlRequest,
    RedirectRulesRequest,
    ShortenRequest,
    ShortUrlResponse,
)
from shlink_ui.services.short_url_service import ShortUrlError, ShortUrlService

router = APIRouter(prefix="/short_urls", tags=["short-urls"])


def _owned(service: ShortUrlService, user: User, short_code: str):
    short_url = service.find(user, short_code)
    if short_url is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Short URL not found"
        )
    return short_url


@router.post("", status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(rate_limit("url_creation"))])
async def create_short_url(
    data: ShortenRequest,
    user: User = Depends(get_current_user),
    service: ShortUrlService = Depends(get_short_url_service),
):
    """Create the short URL on Shlink and keep a local copy for the user."""
    try:
        short_url = await service.create(user, data)
    except ShortUrlError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)

    result = {
        "success": True,
        "short_url": short_url.short_url,
        "data": ShortUrlResponse.model_validate(short_url).model_dump(mode="json"),
    }
    if data.include_qr_code:
        result["qr_code_url"] = f"/short_urls/{short_url.short_code}/qr_code"
    return result


@router.patch("/{short_code}", response_model=ShortUrlResponse)
async def update_short_url(
    short_code: str,
    data: EditShortUrlRequest,
    user: User = Depends(get_current_user),
    service: ShortUrlService = Depends(get_short_url_service),
):
    short_url = await service.update(user, short_code, data)
    if short_url is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Short URL not found"
        )
    return short_url


@router.get("/{short_code}/qr_code")
async def qr_code(
    short_code: str,
    size: Optional[int] = 300,
    format: str = "png",
    user: User = Depends(get_current_user),
    service: ShortUrlService = Depends(get_short_url_service),
):
    _owned(service, user, short_code)
    qr = service.qr_code(short_code, size=size or 300, format=format)
    return Response(
        content=qr["data"],
        media_type=qr["content_type"],
        headers={"Content-Disposition": f'inline; filename="qr-{short_code}.{qr["format"]}"'},
    )


@router.get("/{short_code}/redirect_rules")
async def get_redirect_rules(
    short_code: str,
    user: User = Depends(get_current_user),
    service: ShortUrlService = Depends(get_short_url_service),
):
    _owned(service, user, short_code)
    return service.redirect_rules(short_code)


@router.put("/{short_code}/redirect_rules")
async def update_redirect_rules(
    short_code: str,
    data: RedirectRulesRequest,
    user: User = Depends(get_current_user),
    service: ShortUrlService = Depends(get_short_url_service),
):
    _owned(service, user, short_code)
    return service.set_redirect_rules(short_code, data.redirect_rules)
