from fastapi import APIRouter, Depends, Query, status
from typing import Any, Dict, List, Optional

from novelly.container import ServiceContainer
from novelly.core.auth import get_current_user
from novelly.dependencies import get_container
from novelly.schemas.feed import FeedSection

router = APIRouter(prefix="/feed", tags=["feed"])


@router.get("", response_model=List[FeedSection])
async def get_feed(
    genres: Optional[List[str]] = Query(None),
    force_refresh: bool = Query(False),
    user: Dict[str, Any] = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    """Homepage feed for the user's genres. Cached for FEED_CACHE_HOURS."""
    return await container.feed.generate_homepage_feed(user["id"], genres or [], force_refresh)


@router.delete("/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_feed_cache(
    user: Dict[str, Any] = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    await container.feed.clear_cache(user["id"])
