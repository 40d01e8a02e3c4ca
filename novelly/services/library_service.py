"""
Library service: a user's personal shelf over the `books` table.

When a user adds a book we:
1. Save it to the user's shelf (upsert on user + catalog key)
2. Ensure it exists in the shared catalog
3. Increment the catalog's times_saved counter
4. Queue it for Tier 3 enrichment if it is not there yet

Steps 2-4 run in a background task so the user-facing write returns at once.
Methods never raise; failures are logged and reported as False / empty results.
"""
import asyncio
import logging
from typing import Dict, Set

from sqlalchemy.orm import sessionmaker

from novelly.database import SessionLocal
from novelly.models import LibraryBook
from novelly.schemas.book import Book, BookStatus
from novelly.schemas.catalog import make_catalog_key
from novelly.services.catalog_service import CatalogService
from novelly.utils.timing import utcnow

logger = logging.getLogger(__name__)

_SHELF_FIELDS = (
    "title",
    "author",
    "description",
    "cover_image",
    "tropes",
    "themes",
    "microthemes",
    "mood",
    "character_archetypes",
    "content_warnings",
    "perfect_for",
    "quote",
    "relationship_dynamics",
    "pacing",
    "reader_need",
    "rating",
    "ratings_count",
    "rating_source",
    "total_pages",
    "match_reasoning",
    "confidence_score",
)


def _row_to_book(row: LibraryBook) -> Book:
    return Book(
        id=str(row.id),
        status=row.status,
        progress=row.progress,
        added_date=row.added_date,
        **{name: getattr(row, name) for name in _SHELF_FIELDS},
    )


class LibraryService:
    def __init__(self, catalog: CatalogService, session_factory: sessionmaker = SessionLocal):
        self.catalog = catalog
        self._session_factory = session_factory
        self._tasks: Set[asyncio.Task] = set()

    async def load_library(self, user_id: str) -> Dict[str, Book]:
        """All books on the user's shelf, keyed by catalog key."""
        db = self._session_factory()
        try:
            rows = (
                db.query(LibraryBook)
                .filter(LibraryBook.user_id == user_id)
                .order_by(LibraryBook.added_date.desc())
                .all()
            )
            return {row.catalog_key: _row_to_book(row) for row in rows}
        except Exception as e:
            logger.warning(f"Failed to load library: user_id={user_id}, error={e}", exc_info=True)
            return {}
        finally:
            db.close()

    async def add_book(self, user_id: str, book: Book) -> bool:
        """
        Save (or refresh) a book on the user's shelf, then sync it into the catalog in the background.

        Returns True if the shelf write succeeded.
        """
        catalog_key = make_catalog_key(book.title, book.author)
        values = book.model_dump(mode="json", include=set(_SHELF_FIELDS))
        status = book.status if book.status != BookStatus.RECOMMENDED else BookStatus.UNREAD

        db = self._session_factory()
        try:
            row = db.query(LibraryBook).filter(
                LibraryBook.user_id == user_id,
                LibraryBook.catalog_key == catalog_key,
            ).first()
            if row is None:
                row = LibraryBook(user_id=user_id, catalog_key=catalog_key, added_date=utcnow())
                db.add(row)
            for name, value in values.items():
                setattr(row, name, value)
            row.status = status.value
            row.progress = book.progress or 0
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to add book: user_id={user_id}, key={catalog_key}, error={e}", exc_info=True)
            return False
        finally:
            db.close()

        task = asyncio.create_task(self._sync_catalog(book))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _sync_catalog(self, book: Book) -> None:
        try:
            entry = await self.catalog.ensure_in_catalog(
                book.title,
                book.author,
                {
                    "cover_image": book.cover_image,
                    "description": book.description or "",
                    "themes": book.themes,
                    "tropes": book.tropes,
                    "rating": book.rating,
                    "ratings_count": book.ratings_count,
                    "rating_source": book.rating_source,
                    "page_count": book.total_pages,
                },
            )
            await self.catalog.increment_saved(entry.catalog_key)
            if entry.enrichment_tier < 3:
                self.catalog.queue_for_enrichment(entry.catalog_key)
        except Exception as e:
            logger.error("[Library] Catalog sync failed (non-critical): %s", e)

    async def drain(self) -> None:
        """Wait for outstanding catalog syncs. Used at shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def update_status(self, user_id: str, catalog_key: str, status: BookStatus) -> bool:
        return await self._update(user_id, catalog_key, {"status": BookStatus(status).value})

    async def update_progress(self, user_id: str, catalog_key: str, progress: int) -> bool:
        return await self._update(user_id, catalog_key, {"progress": max(int(progress), 0)})

    async def _update(self, user_id: str, catalog_key: str, values: Dict[str, object]) -> bool:
        db = self._session_factory()
        try:
            updated = db.query(LibraryBook).filter(
                LibraryBook.user_id == user_id,
                LibraryBook.catalog_key == catalog_key,
            ).update({**values, "updated_at": utcnow()}, synchronize_session=False)
            db.commit()
            return updated > 0
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to update library book: user_id={user_id}, key={catalog_key}, error={e}", exc_info=True)
            return False
        finally:
            db.close()

    async def delete_book(self, user_id: str, catalog_key: str) -> bool:
        db = self._session_factory()
        try:
            deleted = db.query(LibraryBook).filter(
                LibraryBook.user_id == user_id,
                LibraryBook.catalog_key == catalog_key,
            ).delete(synchronize_session=False)
            db.commit()
            return deleted > 0
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to delete library book: user_id={user_id}, key={catalog_key}, error={e}", exc_info=True)
            return False
        finally:
            db.close()
