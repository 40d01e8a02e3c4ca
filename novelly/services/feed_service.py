"""
Homepage feed: genre-based book sections plus a literary news section.

Feeds are cached per user in the feed_cache table. A cached feed is reused while
it is younger than FEED_CACHE_HOURS and was built for the same genre set.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence, Set

from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from novelly.core.config import settings
from novelly.database import SessionLocal
from novelly.models import FeedCache
from novelly.schemas.feed import FeedSection, FeedSectionType, NewsArticle
from novelly.services.hydration import HydrationService
from novelly.services.llm import LLMResponse, PerplexityClient
from novelly.services.prompts import HOMEPAGE_FEED_PROMPT, HOMEPAGE_NEWS_PROMPT
from novelly.utils.json_parsing import ParseError, parse_json
from novelly.utils.timing import utcnow

logger = logging.getLogger(__name__)

# (response key, section title), in display order
BOOK_SECTIONS = (
    ("new_releases", "New Releases"),
    ("popular", "Most Popular"),
    ("award_winning", "Award Winning"),
    ("hidden_gems", "Hidden Gems"),
)
NEWS_SECTION_ID = "news"
NEWS_SECTION_TITLE = "Literary News"


def _parsed_object(result: LLMResponse, label: str) -> Dict[str, Any]:
    if not result.success or not result.content:
        logger.warning("[Feed] %s request failed: %s", label, result.error)
        return {}
    try:
        data = parse_json(result.content)
    except ParseError as e:
        logger.warning("[Feed] Could not parse %s response: %s", label, e)
        return {}
    return data if isinstance(data, dict) else {}


class FeedService:
    def __init__(
        self,
        hydration: HydrationService,
        llm: PerplexityClient,
        session_factory: sessionmaker = SessionLocal,
        model: Optional[str] = None,
    ):
        self.hydration = hydration
        self.llm = llm
        self.model = model
        self._session_factory = session_factory
        # Users whose feed is being generated right now
        self._loading: Set[str] = set()

    async def generate_homepage_feed(
        self,
        user_id: str,
        genres: Optional[Sequence[str]] = None,
        force_refresh: bool = False,
    ) -> List[FeedSection]:
        """
        Build (or reuse) the homepage feed for a user.

        A fresh cached feed is returned even while a regeneration for the same
        user is running. Returns [] when this user's feed is already being
        generated or generation fails.
        """
        wanted_genres = sorted(genres or [])
        if not force_refresh:
            try:
                cached = self._read_cache(user_id, wanted_genres)
            except Exception as e:
                logger.warning(f"Failed to read feed cache: user_id={user_id}, error={e}", exc_info=True)
                cached = None
            if cached is not None:
                logger.info("[Feed] Returning cached homepage feed for user_id=%s", user_id)
                return cached

        if user_id in self._loading:
            logger.info("[Feed] Already loading, skipping request for user_id=%s", user_id)
            return []

        self._loading.add(user_id)
        try:
            logger.info("[Feed] Generating new homepage feed for user_id=%s genres=%s", user_id, wanted_genres)
            genres_text = ", ".join(wanted_genres) if wanted_genres else "General"

            books_result, news_result = await asyncio.gather(
                self.llm.send(HOMEPAGE_FEED_PROMPT.replace("{genres}", genres_text), model=self.model),
                self.llm.send(HOMEPAGE_NEWS_PROMPT, model=self.model),
            )

            sections: List[FeedSection] = []

            books_data = _parsed_object(books_result, "books")
            for section_id, title in BOOK_SECTIONS:
                raw_books = books_data.get(section_id)
                if not isinstance(raw_books, list):
                    continue
                hydrated = await self.hydration.hydrate_books_list(raw_books)
                sections.append(FeedSection(
                    id=section_id,
                    title=title,
                    type=FeedSectionType.BOOKS,
                    data=[book.model_dump(mode="json") for book in hydrated],
                ))

            news = self._news_articles(_parsed_object(news_result, "news").get("news"))
            if news is not None:
                sections.append(FeedSection(
                    id=NEWS_SECTION_ID,
                    title=NEWS_SECTION_TITLE,
                    type=FeedSectionType.NEWS,
                    data=[article.model_dump(mode="json") for article in news],
                ))

            # An empty feed means both requests failed; don't pin that for a day
            if sections:
                self._write_cache(user_id, wanted_genres, sections)
            return sections
        except Exception as e:
            logger.error("[Feed] Error generating feed: %s", e, exc_info=True)
            return []
        finally:
            self._loading.discard(user_id)

    @staticmethod
    def _news_articles(raw: Any) -> Optional[List[NewsArticle]]:
        if not isinstance(raw, list):
            return None
        articles: List[NewsArticle] = []
        for item in raw:
            try:
                articles.append(NewsArticle.model_validate(item))
            except ValidationError as e:
                logger.debug("[Feed] Skipping malformed news item %r: %s", item, e)
        return articles

    def _read_cache(self, user_id: str, genres: List[str]) -> Optional[List[FeedSection]]:
        db = self._session_factory()
        try:
            row = db.query(FeedCache).filter(FeedCache.user_id == user_id).first()
            if row is None:
                return None
            is_fresh = utcnow() - row.generated_at < timedelta(hours=settings.FEED_CACHE_HOURS)
            is_same_genres = sorted(row.genres or []) == genres
            if not (is_fresh and is_same_genres):
                return None
            return [FeedSection.model_validate(section) for section in row.sections or []]
        finally:
            db.close()

    def _write_cache(self, user_id: str, genres: List[str], sections: List[FeedSection]) -> None:
        db = self._session_factory()
        try:
            row = db.query(FeedCache).filter(FeedCache.user_id == user_id).first()
            if row is None:
                row = FeedCache(user_id=user_id)
                db.add(row)
            row.genres = genres
            row.sections = [section.model_dump(mode="json") for section in sections]
            row.generated_at = utcnow()
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to cache homepage feed: user_id={user_id}, error={e}", exc_info=True)
        finally:
            db.close()

    async def clear_cache(self, user_id: str) -> None:
        db = self._session_factory()
        try:
            db.query(FeedCache).filter(FeedCache.user_id == user_id).delete(synchronize_session=False)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to clear feed cache: user_id={user_id}, error={e}", exc_info=True)
        finally:
            db.close()
