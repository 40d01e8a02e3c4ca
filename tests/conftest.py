"""Pytest configuration for backend tests."""
import json
import os
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Set

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from novelly.database import Base, init_db
from novelly.schemas.book import PartialBookRecord
from novelly.services.catalog_service import CatalogService
from novelly.services.catalog_store import CatalogStoreError, SqlCatalogStore
from novelly.services.llm import LLMResponse

# Defaults to a private in-memory SQLite database per test.
# Point TEST_DATABASE_URL at a Postgres test database to exercise the JSONB / ON CONFLICT path there.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite://")

# Substrings that identify each catalog prompt
BATCH_MARKER = "BOOKS TO PROCESS:"
TIER3_MARKER = "ADDITIONAL deep metadata"
SINGLE_MARKER = "extract structured metadata about the book"


@pytest.fixture(scope="function")
def engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        test_engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        test_engine = create_engine(TEST_DATABASE_URL, pool_pre_ping=True)

    init_db(bind=test_engine)
    if not Base.metadata.tables:
        raise RuntimeError("No tables registered in Base.metadata. Did you import novelly.models?")

    yield test_engine

    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


class FakeLLM:
    """
    Stand-in for PerplexityClient.

    `handler(prompt)` decides the reply: None means the call failed, a str is
    returned as content, anything else is JSON-encoded.
    """
    model = "sonar-pro"

    def __init__(self):
        self.prompts: List[str] = []
        self.handler: Callable[[str], Any] = lambda prompt: None

    async def send(self, prompt: str, model: Optional[str] = None, api_key: Optional[str] = None) -> LLMResponse:
        self.prompts.append(prompt)
        reply = self.handler(prompt)
        if reply is None:
            return LLMResponse(success=False, error="Perplexity API key not configured")
        if isinstance(reply, LLMResponse):
            return reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return LLMResponse(
            success=True,
            content=content,
            usage={"prompt_tokens": 1000, "completion_tokens": 500},
        )

    def calls_with(self, marker: str) -> List[str]:
        return [prompt for prompt in self.prompts if marker in prompt]


class FakeProvider:
    """A lookup provider that answers from a dict of title -> PartialBookRecord."""

    def __init__(self, name: str, priority: int, records: Optional[Dict[str, PartialBookRecord]] = None,
                 error: Optional[Exception] = None, fail_titles: Optional[Set[str]] = None):
        self.name = name
        self.priority = priority
        self.records = records or {}
        self.error = error
        # When set, `error` is raised only for these titles
        self.fail_titles = fail_titles
        self.calls: List[str] = []

    async def search(self, title: str, author: Optional[str] = None) -> Optional[PartialBookRecord]:
        self.calls.append(title)
        if self.error is not None and (self.fail_titles is None or title in self.fail_titles):
            raise self.error
        return self.records.get(title)


class CountingStore(SqlCatalogStore):
    """SqlCatalogStore that counts calls per method and can be told to fail atomic increments."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.calls: Counter = Counter()
        self.fail_increments = False

    async def get_by_key(self, catalog_key):
        self.calls["get_by_key"] += 1
        return await super().get_by_key(catalog_key)

    async def upsert_by_key(self, entry):
        self.calls["upsert_by_key"] += 1
        return await super().upsert_by_key(entry)

    async def update_fields(self, catalog_key, values):
        self.calls["update_fields"] += 1
        return await super().update_fields(catalog_key, values)

    async def increment_counter(self, catalog_key, field):
        self.calls["increment_counter"] += 1
        if self.fail_increments:
            raise CatalogStoreError("increment not supported")
        return await super().increment_counter(catalog_key, field)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def store(session_factory):
    return CountingStore(session_factory)


@pytest.fixture
def catalog(store, llm):
    return CatalogService(store, llm)


@pytest.fixture
def make_provider():
    return FakeProvider


def book_metadata(title: str, author: str, **overrides: Any) -> Dict[str, Any]:
    """A plausible Tier 1+2 extraction item for one book."""
    data = {
        "title": title,
        "author": author,
        "primary_genre": "Fantasy",
        "fiction_nonfiction": "fiction",
        "description": f"A story called {title}.",
        "themes": ["identity", "power"],
        "pacing": "fast",
        "tone": ["dark"],
        "mood_emotions": ["tense"],
        "subgenres": ["Epic Fantasy"],
        "tropes": ["chosen one"],
        "characterization": "plot-driven",
        "content_warnings": [{"category": "violence", "intensity": "moderate"}],
        "setting": {"time_period": "far future", "real_or_fictional": "fictional", "importance": "central-character"},
        "target_age_group": "adult",
        "confidence": 0.9,
    }
    data.update(overrides)
    return data


@pytest.fixture
def metadata():
    return book_metadata


@pytest.fixture
def batch_llm(llm):
    """
    LLM whose batch reply echoes every requested book with full metadata,
    in request order. Other prompts fail.
    """
    def handler(prompt: str):
        if BATCH_MARKER not in prompt:
            return None
        books = []
        for line in prompt.split(BATCH_MARKER, 1)[1].split("\n\nFor EACH book", 1)[0].strip().splitlines():
            # 1. "Title" by Author
            title = line.split('"', 2)[1]
            author = line.rsplit(" by ", 1)[1]
            books.append(book_metadata(title, author))
        return {"books": books}

    llm.handler = handler
    return llm
