from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from shlink_ui.clock import utcnow
from shlink_ui.database.connection import get_db
from shlink_ui.dependencies import (
    get_current_user,
    get_individual_statistics_service,
    get_overall_statistics_service,
)
from shlink_ui.models.short_url import ShortUrl
from shlink_ui.models.user import User
from shlink_ui.services import visit_buckets
from shlink_ui.services.statistics_service import (
    IndividualUrlStatisticsService,
    OverallStatisticsService,
)
from shlink_ui.services.user_management_service import truncate_url

router = APIRouter(prefix="/statistics", tags=["statistics"])

URL_LIST_LIMIT = 100


@router.get("/overall")
async def overall(
    period: str = visit_buckets.DEFAULT_PERIOD,
    user: User = Depends(get_current_user),
    service: OverallStatisticsService = Depends(get_overall_statistics_service),
):
    data = await service.get(user, period)
    return {
        "success": True,
        "data": data,
        "period": data["period"],
        "generated_at": utcnow().isoformat(),
    }


@router.get("/individual/{short_code}")
async def individual(
    short_code: str,
    period: str = visit_buckets.DEFAULT_PERIOD,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    service: IndividualUrlStatisticsService = Depends(get_individual_statistics_service),
):
    owned = db.query(ShortUrl.id).filter(
        ShortUrl.user_id == user.id, ShortUrl.short_code == short_code
    ).first()
    if owned is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Short URL not found"
        )
    data = await service.get(user, short_code, period)
    return {
        "success": True,
        "data": data,
        "period": data["period"],
        "short_code": short_code,
        "generated_at": utcnow().isoformat(),
    }


@router.get("/url_list")
async def url_list(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """The user's newest URLs, for the picker of the individual view."""
    urls = (
        ShortUrl.live(db.query(ShortUrl).filter(ShortUrl.user_id == user.id))
        .order_by(ShortUrl.date_created.desc())
        .limit(URL_LIST_LIMIT)
        .all()
    )
    return {
        "success": True,
        "urls": [
            {
                "short_code": url.short_code,
                "short_url": url.short_url,
                "title": url.title or truncate_url(url.long_url),
                "long_url": url.long_url,
                "visit_count": url.visit_count or 0,
                "date_created": url.date_created.strftime("%Y/%m/%d"),
            }
            for url in urls
        ],
    }
