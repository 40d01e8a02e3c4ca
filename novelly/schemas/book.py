import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from novelly.schemas.coercion import as_float, as_int, as_optional_str, as_str_list, normalize_choice


class BookStatus(str, enum.Enum):
    RECOMMENDED = "recommended"
    UNREAD = "unread"
    TBR = "tbr"  # to be read
    READING = "reading"
    READ = "read"
    DNF = "dnf"  # did not finish


_BOOK_LIST_FIELDS = ("tropes", "themes", "microthemes", "mood", "character_archetypes")


class Book(BaseModel):
    """
    Display record for one book: catalog metadata overlaid with one user's
    reading state and the current recommendation run's reasoning.

    Accepts raw recommendation output as-is; odd values are coerced or dropped.
    """
    id: Optional[str] = None
    title: str
    author: str = "Unknown"
    description: Optional[str] = None
    cover_image: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("cover_image", "coverImage"),
    )
    status: BookStatus = BookStatus.RECOMMENDED
    tropes: List[str] = Field(default_factory=list)
    themes: List[str] = Field(default_factory=list)
    microthemes: List[str] = Field(default_factory=list)
    mood: List[str] = Field(default_factory=list)
    character_archetypes: List[str] = Field(default_factory=list)
    content_warnings: List[str] = Field(default_factory=list)
    perfect_for: Optional[str] = None
    quote: Optional[str] = None
    relationship_dynamics: Optional[Any] = None
    pacing: Optional[str] = None
    reader_need: Optional[str] = None
    rating: float = 0.0
    ratings_count: int = 0
    rating_source: Optional[str] = None
    total_pages: Optional[int] = None
    match_reasoning: Optional[str] = None
    confidence_score: Optional[float] = None
    progress: Optional[int] = None
    added_date: Optional[datetime] = None
    # Catalog projection for the UI (genre, tone, tier 3 fields, ...)
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: Any) -> Any:
        text = as_optional_str(value)
        return text.strip() if text is not None else value

    @field_validator("author", mode="before")
    @classmethod
    def _coerce_author(cls, value: Any) -> str:
        text = as_optional_str(value)
        return text.strip() if text and text.strip() else "Unknown"

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> BookStatus:
        return normalize_choice(value, BookStatus) or BookStatus.RECOMMENDED

    @field_validator(*_BOOK_LIST_FIELDS, mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> List[str]:
        return as_str_list(value) or []

    @field_validator("content_warnings", mode="before")
    @classmethod
    def _coerce_warnings(cls, value: Any) -> List[str]:
        if isinstance(value, (list, tuple)):
            value = [item.get("category") if isinstance(item, dict) else item for item in value]
        return as_str_list(value) or []

    @field_validator(
        "description", "perfect_for", "quote", "pacing", "reader_need",
        "rating_source", "match_reasoning", "cover_image",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        if isinstance(value, (list, tuple)):
            return ", ".join(str(item) for item in value if item)
        return as_optional_str(value)

    @field_validator("rating", mode="before")
    @classmethod
    def _coerce_rating(cls, value: Any) -> float:
        return as_float(value) or 0.0

    @field_validator("ratings_count", mode="before")
    @classmethod
    def _coerce_ratings_count(cls, value: Any) -> int:
        return as_int(value) or 0

    @field_validator("total_pages", "progress", mode="before")
    @classmethod
    def _coerce_int(cls, value: Any) -> Optional[int]:
        return as_int(value)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> Optional[float]:
        return as_float(value)


class PartialBookRecord(BaseModel):
    """Best-effort result from one external lookup. Any field may be missing."""
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    cover_image: Optional[str] = None
    rating: Optional[float] = None
    ratings_count: Optional[int] = None
    rating_source: Optional[str] = None
    total_pages: Optional[int] = None
    first_published_year: Optional[int] = None

    def missing(self, fields: tuple[str, ...]) -> List[str]:
        return [name for name in fields if not getattr(self, name)]


class HydrateRequest(BaseModel):
    books: List[Book]


class EnsureCatalogRequest(BaseModel):
    title: str
    author: str
    partial_data: Optional[Dict[str, Any]] = None
    skip_enrichment: bool = False


class LibraryStatusUpdate(BaseModel):
    catalog_key: str
    status: BookStatus


class LibraryProgressUpdate(BaseModel):
    catalog_key: str
    progress: int = Field(ge=0)
