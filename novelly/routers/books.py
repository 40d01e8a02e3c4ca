from fastapi import APIRouter, Depends, Query
from typing import List, Optional
import logging

from novelly.container import ServiceContainer
from novelly.dependencies import get_container
from novelly.schemas.book import Book, HydrateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/books", tags=["books"])


@router.post("/hydrate", response_model=List[Book])
async def hydrate_books(
    request: HydrateRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Hydrate raw recommendations with covers, ratings and catalog metadata.

    Every book is registered in the catalog along the way.
    """
    return await container.hydration.hydrate_books_list(request.books)


@router.get("/find", response_model=Book)
async def find_book(
    title: str = Query(..., min_length=1),
    author: Optional[str] = Query(None),
    container: ServiceContainer = Depends(get_container),
):
    """Look one title up externally (no model call) and register it in the catalog."""
    return await container.hydration.find_book(title, author)
