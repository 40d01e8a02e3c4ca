"""
Personal library endpoints. Rows are keyed by catalog key per user.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from typing import Any, Dict
import logging

from novelly.container import ServiceContainer
from novelly.core.auth import get_current_user
from novelly.dependencies import get_container
from novelly.schemas.book import Book, LibraryProgressUpdate, LibraryStatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/library", tags=["library"])


class LibraryWriteResponse(BaseModel):
    success: bool


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Book not in library",
    )


@router.get("", response_model=Dict[str, Book])
async def get_library(
    user: Dict[str, Any] = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    return await container.library.load_library(user["id"])


@router.post("", response_model=LibraryWriteResponse, status_code=status.HTTP_201_CREATED)
async def add_to_library(
    book: Book,
    user: Dict[str, Any] = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    """Save a book to the shelf. The catalog is updated in the background."""
    if not await container.library.add_book(user["id"], book):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not save book",
        )
    return LibraryWriteResponse(success=True)


@router.delete("", response_model=LibraryWriteResponse)
async def remove_from_library(
    catalog_key: str = Query(..., min_length=1),
    user: Dict[str, Any] = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    if not await container.library.delete_book(user["id"], catalog_key):
        raise _not_found()
    return LibraryWriteResponse(success=True)


@router.patch("/status", response_model=LibraryWriteResponse)
async def update_status(
    request: LibraryStatusUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    if not await container.library.update_status(user["id"], request.catalog_key, request.status):
        raise _not_found()
    return LibraryWriteResponse(success=True)


@router.patch("/progress", response_model=LibraryWriteResponse)
async def update_progress(
    request: LibraryProgressUpdate,
    user: Dict[str, Any] = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    if not await container.library.update_progress(user["id"], request.catalog_key, request.progress):
        raise _not_found()
    return LibraryWriteResponse(success=True)
