"""
External book lookups (covers, ratings, descriptions, page counts).

Each adapter wraps one public API and returns a PartialBookRecord or None;
none of them raise. BookLookupChain queries them in a fixed priority order
and fills each field from the first provider that has it.

| provider      | priority | best at                          |
|---------------|----------|----------------------------------|
| Google Books  | 10       | covers, ratings, descriptions    |
| Open Library  | 20       | covers, first publication year   |
"""
import asyncio
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Protocol

import requests

from novelly.core.config import settings
from novelly.schemas.book import PartialBookRecord

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_BASE_URL = "https://www.googleapis.com/books/v1/volumes"
OPEN_LIBRARY_SEARCH_URL = "https://openlibrary.org/search.json"
OPEN_LIBRARY_COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-M.jpg"

LOOKUP_FIELDS = (
    "description",
    "cover_image",
    "rating",
    "ratings_count",
    "rating_source",
    "total_pages",
    "first_published_year",
)


class BookLookupProvider(Protocol):
    name: str
    priority: int

    async def search(self, title: str, author: Optional[str] = None) -> Optional[PartialBookRecord]:
        ...


def clean_description(text: str) -> str:
    """Turn the HTML Google Books sometimes returns into plain text."""
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<p[^>]*>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]*>", "", text)
    return text.strip()


def _year(value: Any) -> Optional[int]:
    try:
        year = int(str(value)[:4])
    except (TypeError, ValueError):
        return None
    return year if year > 0 else None


def _pick_best_match(title: str, author: str, items: List[dict]) -> Optional[dict]:
    """
    Heuristic: try to find a volume where the title and author are reasonably close.
    """
    title_lower = title.lower()
    author_lower = author.lower()
    best_item = None
    best_score = 0

    for item in items:
        info = item.get("volumeInfo", {})
        v_title = (info.get("title") or "").lower()
        v_authors = [a.lower() for a in (info.get("authors") or [])]

        title_score = 0
        if v_title == title_lower:
            title_score = 3
        elif title_lower in v_title or v_title in title_lower:
            title_score = 2

        author_score = 0
        if author_lower and any(author_lower == a for a in v_authors):
            author_score = 3
        elif author_lower and any(author_lower in a or a in author_lower for a in v_authors):
            author_score = 2

        score = title_score + author_score
        if score > best_score:
            best_score = score
            best_item = item

    # Require at least some minimal match
    if best_score == 0:
        return None

    return best_item


class GoogleBooksAdapter:
    name = "google_books"
    priority = 10

    def __init__(self, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key if api_key is not None else settings.GOOGLE_BOOKS_API_KEY
        self.timeout = timeout or settings.LOOKUP_TIMEOUT_SECONDS

    async def search(self, title: str, author: Optional[str] = None) -> Optional[PartialBookRecord]:
        try:
            return await asyncio.to_thread(self._search, title, author)
        except Exception as e:
            logger.warning("Google Books lookup failed for '%s' by '%s': %s", title, author, e)
            return None

    def _search(self, title: str, author: Optional[str]) -> Optional[PartialBookRecord]:
        clean_author = author if author and author != "Unknown" else ""

        # Example: q=intitle:Dune inauthor:Frank Herbert
        query = f"intitle:{title} inauthor:{clean_author}" if clean_author else f"intitle:{title}"
        items = self._fetch(query, max_results=5)
        best = _pick_best_match(title, clean_author, items) if items else None

        if best is None:
            logger.info("Strict Google Books search failed for '%s'; trying a loose query", title)
            items = self._fetch(f"{title} {clean_author}".strip(), max_results=1)
            best = items[0] if items else None

        if best is None:
            logger.info("No Google Books results for '%s' by '%s'", title, author)
            return None
        return self._to_record(best)

    def _fetch(self, query: str, max_results: int) -> List[dict]:
        params: Dict[str, Any] = {"q": query, "maxResults": max_results}
        if self.api_key:
            params["key"] = self.api_key
        resp = requests.get(
            GOOGLE_BOOKS_BASE_URL,
            params=params,
            headers={"User-Agent": settings.LOOKUP_USER_AGENT},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json().get("items") or []

    @staticmethod
    def _to_record(volume: dict) -> PartialBookRecord:
        info = volume.get("volumeInfo", {})
        description = info.get("description") or (volume.get("searchInfo") or {}).get("textSnippet") or ""
        images = info.get("imageLinks") or {}
        thumbnail = images.get("thumbnail") or images.get("smallThumbnail")
        average_rating = info.get("averageRating")
        authors = info.get("authors") or []

        return PartialBookRecord(
            title=info.get("title"),
            author=authors[0] if authors else None,
            description=clean_description(description) or None,
            cover_image=thumbnail.replace("http:", "https:", 1) if thumbnail else None,
            rating=float(average_rating) if average_rating else None,
            ratings_count=info.get("ratingsCount"),
            rating_source="Google Books" if average_rating else None,
            total_pages=info.get("pageCount"),
            first_published_year=_year(info.get("publishedDate")),
        )


class OpenLibraryAdapter:
    name = "open_library"
    priority = 20

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.LOOKUP_TIMEOUT_SECONDS

    async def search(self, title: str, author: Optional[str] = None) -> Optional[PartialBookRecord]:
        try:
            return await asyncio.to_thread(self._search, title, author)
        except Exception as e:
            logger.warning("Open Library lookup failed for '%s' by '%s': %s", title, author, e)
            return None

    def _search(self, title: str, author: Optional[str]) -> Optional[PartialBookRecord]:
        clean_author = author if author and author != "Unknown" else ""
        resp = requests.get(
            OPEN_LIBRARY_SEARCH_URL,
            params={"q": f"{title} {clean_author}".strip(), "limit": 1},
            headers={"User-Agent": settings.LOOKUP_USER_AGENT, "Accept": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        docs = resp.json().get("docs") or []
        if not docs:
            logger.info("No Open Library results for '%s'", title)
            return None

        doc = docs[0]
        cover_id = doc.get("cover_i")
        average_rating = doc.get("ratings_average")
        authors = doc.get("author_name") or []
        return PartialBookRecord(
            title=doc.get("title"),
            author=authors[0] if authors else None,
            cover_image=OPEN_LIBRARY_COVER_URL.format(cover_id=cover_id) if cover_id else None,
            rating=float(average_rating) if average_rating else None,
            ratings_count=doc.get("ratings_count"),
            rating_source="Open Library" if average_rating else None,
            total_pages=doc.get("number_of_pages_median"),
            first_published_year=doc.get("first_publish_year"),
        )


class BookLookupChain:
    """
    Prioritized external sources with one merge rule: a field is taken from the
    first provider (lowest priority number) that returns it.

    Providers are tried in order and the chain stops once every wanted field is filled.
    """

    def __init__(self, providers: Iterable[BookLookupProvider]):
        # Stable sort: (priority, name) so ties never reorder between runs
        self.providers = sorted(providers, key=lambda p: (p.priority, p.name))

    async def search(
        self,
        title: str,
        author: Optional[str] = None,
        wanted: Iterable[str] = LOOKUP_FIELDS,
    ) -> Optional[PartialBookRecord]:
        wanted = tuple(wanted)
        merged: Dict[str, Any] = {}

        for provider in self.providers:
            try:
                record = await provider.search(title, author)
            except Exception as e:
                logger.warning("Lookup provider %s raised for '%s': %s", provider.name, title, e)
                continue
            if record is None:
                continue

            for name, value in record.model_dump().items():
                if value and not merged.get(name):
                    merged[name] = value
            if all(merged.get(name) for name in wanted):
                break

        if not merged:
            return None
        return PartialBookRecord(**merged)


def default_lookup_chain() -> BookLookupChain:
    return BookLookupChain([GoogleBooksAdapter(), OpenLibraryAdapter()])
