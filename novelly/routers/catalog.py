from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import List, Optional
import logging

from novelly.container import ServiceContainer
from novelly.core.config import settings
from novelly.dependencies import get_container
from novelly.schemas.book import EnsureCatalogRequest
from novelly.schemas.catalog import CatalogEntry, CatalogSearchFilters, CatalogStats, make_catalog_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/search", response_model=List[CatalogEntry])
async def search_catalog(
    themes: Optional[List[str]] = Query(None, description="Match any of these themes"),
    tropes: Optional[List[str]] = Query(None, description="Match any of these tropes"),
    mood: Optional[List[str]] = Query(None, description="Match any of these moods"),
    pacing: Optional[str] = Query(None),
    genre: Optional[str] = Query(None, description="Exact primary genre"),
    min_confidence: float = Query(settings.CATALOG_MIN_SEARCH_CONFIDENCE, ge=0.0, le=1.0),
    limit: int = Query(settings.CATALOG_SEARCH_DEFAULT_LIMIT, ge=1, le=100),
    container: ServiceContainer = Depends(get_container),
):
    """Search the shared catalog by tags, genre and pacing."""
    filters = CatalogSearchFilters(
        themes=themes,
        tropes=tropes,
        mood=mood,
        pacing=pacing,
        genre=genre,
        min_confidence=min_confidence,
        limit=limit,
    )
    return await container.catalog.search_catalog(filters)


@router.get("/stats", response_model=CatalogStats)
async def catalog_stats(container: ServiceContainer = Depends(get_container)):
    return await container.catalog.get_catalog_stats()


@router.post("/ensure", response_model=CatalogEntry)
async def ensure_in_catalog(
    request: EnsureCatalogRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Return the catalog entry for a book, extracting it first if it is new."""
    return await container.catalog.ensure_in_catalog(
        request.title,
        request.author,
        request.partial_data,
        skip_enrichment=request.skip_enrichment,
    )


@router.get("/entry", response_model=CatalogEntry)
async def get_catalog_entry(
    title: str = Query(..., min_length=1),
    author: str = Query(..., min_length=1),
    container: ServiceContainer = Depends(get_container),
):
    entry = await container.catalog.get_from_catalog(make_catalog_key(title, author))
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Book not in catalog",
        )
    return entry
