"""Tests for HistoryService."""
import asyncio
from datetime import timedelta

import pytest

from novelly.models import RecommendationHistory
from novelly.schemas.book import Book
from novelly.schemas.history import SourceType
from novelly.services.history_service import HistoryService
from novelly.utils.timing import utcnow


@pytest.fixture
def history(session_factory):
    return HistoryService(session_factory)


def test_empty_session_is_not_recorded(history):
    async def run():
        item = await history.save_history("user-1", SourceType.QUICK, "Dune", [])
        return item, await history.get_history("user-1")

    assert asyncio.run(run()) == (None, [])


def test_save_and_read_back(history):
    books = [Book(title="Hyperion", author="Dan Simmons", tropes=["pilgrimage"], rating=4.2)]

    async def run():
        saved = await history.save_history(
            "user-1", SourceType.CONTEXT, "Dune, Circe", books, intro_text="You like big ideas.", cost=0.0105,
        )
        return saved, await history.get_history("user-1")

    saved, items = asyncio.run(run())

    assert saved is not None
    assert [item.id for item in items] == [saved.id]
    item = items[0]
    assert item.source_type == SourceType.CONTEXT
    assert item.prompt_context == "Dune, Circe"
    assert item.intro_text == "You like big ideas."
    assert item.cost == pytest.approx(0.0105)
    assert item.recommendations[0].title == "Hyperion"
    assert item.recommendations[0].tropes == ["pilgrimage"]


def test_history_is_per_user_and_newest_first(history, session_factory):
    book = [Book(title="Emma", author="Jane Austen")]

    async def run():
        first = await history.save_history("user-1", SourceType.QUICK, "a", book)
        second = await history.save_history("user-1", SourceType.INTERVIEW, "b", book)
        await history.save_history("user-2", SourceType.QUICK, "c", book)
        return first, second

    first, second = asyncio.run(run())

    db = session_factory()
    try:
        row = db.query(RecommendationHistory).filter(RecommendationHistory.prompt_context == "a").one()
        row.created_at = utcnow() - timedelta(days=1)
        db.commit()
    finally:
        db.close()

    items = asyncio.run(history.get_history("user-1"))

    assert [item.id for item in items] == [second.id, first.id]
