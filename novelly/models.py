from sqlalchemy import Column, String, Integer, Text, Boolean, DateTime, Float, JSON, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
import uuid
import sqlalchemy as sa
from novelly.database import Base
from novelly.utils.timing import utcnow

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class BookCatalog(Base):
    """
    Shared, user-independent book metadata. One row per catalog key.

    Columns mirror CatalogEntry field for field; the catalog store relies on that.
    """
    __tablename__ = "book_catalog"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    catalog_key = Column(String, unique=True, index=True, nullable=False)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)

    # Tier 1
    primary_genre = Column(String, nullable=False, default="Unknown", index=True)
    fiction_nonfiction = Column(String, nullable=False, default="fiction")
    description = Column(Text, nullable=False, default="")
    themes = Column(JSONType, nullable=False, default=list)
    pacing = Column(String, nullable=False, default="moderate", index=True)
    tone = Column(JSONType, nullable=False, default=list)
    mood_emotions = Column(JSONType, nullable=False, default=list)

    # Tier 2
    subgenres = Column(JSONType, nullable=True)
    tropes = Column(JSONType, nullable=True)
    characterization = Column(String, nullable=True)
    writing_style = Column(JSONType, nullable=True)
    protagonist_types = Column(JSONType, nullable=True)
    content_warnings = Column(JSONType, nullable=True)
    emotional_impact = Column(String, nullable=True)
    setting = Column(JSONType, nullable=True)
    target_age_group = Column(String, nullable=True)
    relationship_dynamics = Column(JSONType, nullable=True)
    reader_need = Column(Text, nullable=True)

    # Tier 3
    storyline_structure = Column(JSONType, nullable=True)
    character_development = Column(String, nullable=True)
    relationship_focus = Column(JSONType, nullable=True)
    representation = Column(JSONType, nullable=True)
    ending_type = Column(String, nullable=True)
    best_read_when = Column(JSONType, nullable=True)
    reading_difficulty = Column(String, nullable=True)
    positive_content_notes = Column(JSONType, nullable=True)

    # Tier 4
    awards = Column(JSONType, nullable=True)
    comparable_books = Column(JSONType, nullable=True)
    isbn = Column(String, nullable=True)
    page_count = Column(Integer, nullable=True)
    first_published_year = Column(Integer, nullable=True)
    series_name = Column(String, nullable=True)
    series_position = Column(Float, nullable=True)

    # External display data
    cover_image = Column(String, nullable=True)
    rating = Column(Float, nullable=True)
    ratings_count = Column(Integer, nullable=True)
    rating_source = Column(String, nullable=True)

    # Data quality
    enrichment_tier = Column(Integer, nullable=False, default=1, index=True)
    extraction_source = Column(String, nullable=False, default="perplexity-recommendation")
    confidence_score = Column(Float, nullable=False, default=0.5)
    needs_review = Column(Boolean, nullable=False, default=False)
    embedding_text = Column(Text, nullable=True)

    # Counters
    times_recommended = Column(Integer, nullable=False, default=0)
    times_saved = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_enriched_at = Column(DateTime, nullable=True)


class LibraryBook(Base):
    """A book on one user's personal shelf."""
    __tablename__ = "books"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)  # Supabase user id (JWT sub)
    catalog_key = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    author = Column(String, nullable=False)
    status = Column(String, nullable=False, default="unread")  # see BookStatus
    progress = Column(Integer, nullable=False, default=0)
    cover_image = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    tropes = Column(JSONType, nullable=True)
    themes = Column(JSONType, nullable=True)
    microthemes = Column(JSONType, nullable=True)
    mood = Column(JSONType, nullable=True)
    character_archetypes = Column(JSONType, nullable=True)
    content_warnings = Column(JSONType, nullable=True)
    perfect_for = Column(Text, nullable=True)
    quote = Column(Text, nullable=True)
    relationship_dynamics = Column(JSONType, nullable=True)
    pacing = Column(String, nullable=True)
    reader_need = Column(Text, nullable=True)
    rating = Column(Float, nullable=True)
    ratings_count = Column(Integer, nullable=True)
    rating_source = Column(String, nullable=True)
    total_pages = Column(Integer, nullable=True)
    match_reasoning = Column(Text, nullable=True)
    confidence_score = Column(Float, nullable=True)
    added_date = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'catalog_key', name='uq_books_user_catalog_key'),
    )


class RecommendationHistory(Base):
    """
    Append-only log of recommendation sessions. Rows are never updated.
    """
    __tablename__ = "recommendation_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    source_type = Column(String, nullable=False)  # quick | context | interview
    prompt_context = Column(Text, nullable=True)
    recommendations = Column(JSONType, nullable=False, default=list)
    intro_text = Column(Text, nullable=True)
    cost = Column(Float, nullable=True)

    __table_args__ = (
        sa.Index('idx_recommendation_history_user_created', 'user_id', 'created_at'),
    )


class FeedCache(Base):
    __tablename__ = "feed_cache"

    user_id = Column(String, primary_key=True)
    genres = Column(JSONType, nullable=False, default=list)  # sorted genre list the feed was built for
    sections = Column(JSONType, nullable=False, default=list)
    generated_at = Column(DateTime, default=utcnow, nullable=False)
