"""
Book hydration: turn raw recommendation output into display-ready Books.

Every book that passes through here is registered in the catalog. Flow:
1. One batch extraction registers every new book (one model call for the whole list)
2. Books are processed in fixed-size batches; within a batch concurrently:
   external lookup only when cover or rating is missing, gap-merge of what
   was found back into the catalog, catalog overlay, recommended counter
3. A short pause between batches keeps external APIs happy
4. Background enrichment is triggered once everything is done
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from novelly.core.config import settings
from novelly.schemas.book import Book, PartialBookRecord
from novelly.schemas.catalog import BookRef, CatalogEntry, make_catalog_key
from novelly.services.book_lookup import BookLookupChain
from novelly.services.catalog_service import CatalogService
from novelly.services.enrichment_worker import EnrichmentWorker
from novelly.utils.timing import time_operation

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

# External lookups run only to fill these; the chain stops once they are known
HYDRATION_LOOKUP_FIELDS = ("cover_image", "rating")

# Catalog fields exposed to the UI under Book.metadata
CATALOG_PROJECTION_FIELDS = (
    "catalog_key",
    "primary_genre",
    "fiction_nonfiction",
    "tone",
    "mood_emotions",
    "subgenres",
    "characterization",
    "writing_style",
    "protagonist_types",
    "content_warnings",
    "emotional_impact",
    "setting",
    "target_age_group",
    "enrichment_tier",
    "storyline_structure",
    "ending_type",
    "best_read_when",
    "reading_difficulty",
    "relationship_focus",
    "positive_content_notes",
    "comparable_books",
)


def merge_with_catalog(book: Book, entry: CatalogEntry) -> Book:
    """
    Overlay catalog metadata onto a display book.

    Catalog tags win over the raw recommendation's tags; the book's own display
    data (cover, rating, page count) wins over the catalog's. mood_emotions is
    shown as microthemes.
    """
    warnings = [warning.category for warning in entry.content_warnings or []]
    return book.model_copy(update={
        "title": book.title or entry.title,
        "author": book.author or entry.author,
        "description": book.description or entry.description or "",
        "cover_image": book.cover_image or entry.cover_image,
        "tropes": entry.tropes or book.tropes,
        "themes": entry.themes or book.themes,
        "microthemes": entry.mood_emotions or book.microthemes,
        "character_archetypes": book.character_archetypes or entry.protagonist_types or [],
        "content_warnings": book.content_warnings or warnings,
        "relationship_dynamics": (
            entry.relationship_dynamics.model_dump() if entry.relationship_dynamics else book.relationship_dynamics
        ),
        "pacing": entry.pacing.value if entry.pacing else book.pacing,
        "reader_need": entry.reader_need or book.reader_need,
        "rating": book.rating or entry.rating or 0.0,
        "ratings_count": book.ratings_count or entry.ratings_count or 0,
        "rating_source": book.rating_source or entry.rating_source,
        "total_pages": book.total_pages or entry.page_count,
        "metadata": entry.model_dump(mode="json", include=set(CATALOG_PROJECTION_FIELDS)),
    })


def _notify(on_progress: Optional[ProgressCallback], message: str) -> None:
    if on_progress is None:
        return
    try:
        on_progress(message)
    except Exception as e:
        logger.debug("[Hydration] Progress callback raised: %s", e)


class HydrationService:
    def __init__(
        self,
        catalog: CatalogService,
        lookup: BookLookupChain,
        enrichment: Optional[EnrichmentWorker] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
    ):
        self.catalog = catalog
        self.lookup = lookup
        self.enrichment = enrichment
        self.batch_size = batch_size or settings.HYDRATION_BATCH_SIZE
        # seconds
        self.batch_delay = settings.HYDRATION_BATCH_DELAY_MS / 1000 if batch_delay is None else batch_delay
        self._found: Dict[str, Book] = {}

    async def hydrate_books_list(
        self,
        raw_books: Sequence[Union[Book, Dict[str, Any]]],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Book]:
        """
        Hydrate raw recommendations with covers, ratings and catalog metadata.

        Output order matches input order. A book that fails anywhere comes back
        in its raw shape (empty tag lists, status "recommended").
        """
        books = self._coerce_books(raw_books)
        total = len(books)
        logger.info("[Hydration] Hydrating %d books...", total)
        _notify(on_progress, f"Analyzing {total} books...")

        catalog_map: Dict[str, CatalogEntry] = {}
        try:
            entries = await self.catalog.batch_extract_and_store(
                [BookRef(title=book.title, author=book.author, cover_image=book.cover_image) for book in books]
            )
            catalog_map = {entry.catalog_key: entry for entry in entries}
        except Exception as e:
            logger.error("[Hydration] Batch catalog registration failed: %s", e)

        hydrated: List[Book] = []
        for start in range(0, total, self.batch_size):
            chunk = books[start:start + self.batch_size]
            _notify(on_progress, f"Fetching covers for {min(start + self.batch_size, total)}/{total} books...")

            with time_operation(f"[Hydration] batch {start // self.batch_size + 1}", logger):
                results = await asyncio.gather(*(self._hydrate_one(book, catalog_map) for book in chunk))
            hydrated.extend(results)

            if start + self.batch_size < total:
                await asyncio.sleep(self.batch_delay)

        _notify(on_progress, "Finalizing recommendations...")

        if self.enrichment is not None:
            self.enrichment.trigger(settings.ENRICHMENT_MAX_ITEMS)

        return hydrated

    async def _hydrate_one(self, book: Book, catalog_map: Dict[str, CatalogEntry]) -> Book:
        try:
            entry = catalog_map.get(make_catalog_key(book.title, book.author))
            cover = book.cover_image or (entry.cover_image if entry else None)
            rating = book.rating or (entry.rating if entry else None) or 0.0

            known = PartialBookRecord(cover_image=cover, rating=rating or None)
            wanted = known.missing(HYDRATION_LOOKUP_FIELDS)

            record: Optional[PartialBookRecord] = None
            if wanted:
                record = await self.lookup.search(book.title, book.author, wanted=wanted)

            display = book.model_copy(update={"cover_image": cover})
            if record is not None:
                display = display.model_copy(update={
                    "cover_image": cover or record.cover_image,
                    "description": book.description or record.description,
                    "total_pages": book.total_pages or record.total_pages,
                })
                if not rating and record.rating:
                    display = display.model_copy(update={
                        "rating": record.rating,
                        "ratings_count": record.ratings_count or 0,
                        "rating_source": record.rating_source,
                    })

            if entry is None:
                return display

            entry = await self.catalog.merge_catalog_data(entry, {
                "cover_image": display.cover_image,
                "description": display.description,
                "rating": display.rating,
                "ratings_count": display.ratings_count,
                "page_count": display.total_pages,
            })
            merged = merge_with_catalog(display, entry)
            await self.catalog.increment_recommended(entry.catalog_key)
            return merged
        except Exception as e:
            logger.error("[Hydration] Failed to hydrate: %s: %s", book.title, e)
            return book

    @staticmethod
    def _coerce_books(raw_books: Sequence[Union[Book, Dict[str, Any]]]) -> List[Book]:
        books: List[Book] = []
        for raw in raw_books:
            if isinstance(raw, Book):
                books.append(raw)
                continue
            try:
                books.append(Book.model_validate(raw))
            except ValidationError as e:
                logger.warning("[Hydration] Skipping unusable recommendation %r: %s", raw, e)
        return books

    async def find_book(self, title: str, author: Optional[str] = None) -> Book:
        """
        Look a single title up externally and register it in the catalog without extraction.

        Results are memoized for the life of this service.
        """
        cache_key = make_catalog_key(title, author or "")
        if cache_key in self._found:
            logger.debug("[Hydration] Cache hit for: %s", title)
            return self._found[cache_key]

        record = await self.lookup.search(title, author) or PartialBookRecord()
        external = Book(
            title=record.title or title,
            author=record.author or author or "Unknown",
            description=record.description or "",
            cover_image=record.cover_image,
            rating=record.rating or 0.0,
            ratings_count=record.ratings_count or 0,
            rating_source=record.rating_source,
            total_pages=record.total_pages,
        )

        entry = await self.catalog.ensure_in_catalog(
            external.title,
            external.author,
            {
                "cover_image": external.cover_image,
                "description": external.description,
                "rating": external.rating,
                "ratings_count": external.ratings_count,
                "rating_source": external.rating_source,
                "page_count": external.total_pages,
                "first_published_year": record.first_published_year,
            },
            skip_enrichment=True,
        )

        book = merge_with_catalog(external, entry)
        self._found[cache_key] = book
        return book

    async def verify_books(self, titles: Sequence[str]) -> List[Book]:
        """Resolve a list of bare titles into Books, concurrently."""
        return list(await asyncio.gather(*(self.find_book(title) for title in titles)))
