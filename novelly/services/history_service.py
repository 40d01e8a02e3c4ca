"""
Recommendation history: an append-only log of recommendation sessions per user.
"""
import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import sessionmaker

from novelly.database import SessionLocal
from novelly.models import RecommendationHistory
from novelly.schemas.book import Book
from novelly.schemas.history import RecHistoryItem, SourceType

logger = logging.getLogger(__name__)


class HistoryService:
    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    async def save_history(
        self,
        user_id: str,
        source_type: SourceType,
        prompt_context: str,
        recommendations: Sequence[Book],
        intro_text: Optional[str] = None,
        cost: Optional[float] = None,
    ) -> Optional[RecHistoryItem]:
        """
        Append one session. Sessions with no recommendations are not recorded.

        Returns the stored item, or None if nothing was written.
        """
        if not recommendations:
            logger.debug("Skipping empty recommendation history for user_id=%s", user_id)
            return None

        db = self._session_factory()
        try:
            row = RecommendationHistory(
                user_id=user_id,
                source_type=SourceType(source_type).value,
                prompt_context=prompt_context or "",
                recommendations=[book.model_dump(mode="json") for book in recommendations],
                intro_text=intro_text,
                cost=cost,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return self._to_item(row)
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to save recommendation history: user_id={user_id}, error={e}", exc_info=True)
            return None
        finally:
            db.close()

    async def get_history(self, user_id: str) -> List[RecHistoryItem]:
        """All sessions for a user, newest first."""
        db = self._session_factory()
        try:
            rows = (
                db.query(RecommendationHistory)
                .filter(RecommendationHistory.user_id == user_id)
                .order_by(RecommendationHistory.created_at.desc())
                .all()
            )
            return [self._to_item(row) for row in rows]
        except Exception as e:
            logger.warning(f"Failed to load recommendation history: user_id={user_id}, error={e}", exc_info=True)
            return []
        finally:
            db.close()

    @staticmethod
    def _to_item(row: RecommendationHistory) -> RecHistoryItem:
        return RecHistoryItem(
            id=str(row.id),
            created_at=row.created_at,
            source_type=row.source_type,
            prompt_context=row.prompt_context or "",
            recommendations=[Book.model_validate(book) for book in row.recommendations or []],
            intro_text=row.intro_text,
            cost=row.cost,
        )
