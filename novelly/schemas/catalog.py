"""
Catalog schema for the self-growing library.

Metadata comes in four tiers of richness:
- Tier 1: essential fields, present on every catalog entry
- Tier 2: extracted together with Tier 1 when a book first enters the catalog
- Tier 3: deep metadata added by background enrichment
- Tier 4: reference data (awards, ISBN, series), mostly from external sources

All tiers live on one flat model. `enrichment_tier` records the highest tier
that is fully populated; fields above it are simply None.

Validation is deliberately lenient: the data comes from a language model and
from third-party book APIs, so unknown enum values are dropped instead of
failing the whole record.
"""
import enum
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from novelly.schemas.coercion import as_float, as_int, as_optional_str, as_str_list, normalize_choice

REVIEW_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_CONFIDENCE = 0.5
KEY_SEPARATOR = "|"


def make_catalog_key(title: str, author: str) -> str:
    """
    Canonical catalog key for a (title, author) pair: "title|author", lower-cased and trimmed.

    Every code path that needs a catalog key must call this function.
    """
    return f"{(title or '').lower().strip()}{KEY_SEPARATOR}{(author or '').lower().strip()}"


class FictionType(str, enum.Enum):
    FICTION = "fiction"
    NONFICTION = "nonfiction"


class Pacing(str, enum.Enum):
    BREAKNECK = "breakneck"
    FAST = "fast"
    MODERATE = "moderate"
    SLOW_BURN = "slow-burn"
    MEDITATIVE = "meditative"
    VARIABLE = "variable"


class Characterization(str, enum.Enum):
    CHARACTER_DRIVEN = "character-driven"
    PLOT_DRIVEN = "plot-driven"
    IDEA_DRIVEN = "idea-driven"
    BALANCED = "balanced"


class EmotionalImpact(str, enum.Enum):
    LIGHTHEARTED = "lighthearted"
    FEEL_GOOD = "feel-good"
    BITTERSWEET = "bittersweet"
    EMOTIONALLY_INTENSE = "emotionally-intense"
    DEVASTATING = "devastating"
    THOUGHT_PROVOKING = "thought-provoking"


class AgeGroup(str, enum.Enum):
    CHILDREN = "children"
    MIDDLE_GRADE = "middle-grade"
    YOUNG_ADULT = "young-adult"
    NEW_ADULT = "new-adult"
    ADULT = "adult"


class CharacterDevelopment(str, enum.Enum):
    SIGNIFICANT_TRANSFORMATION = "significant-transformation"
    GRADUAL_GROWTH = "gradual-growth"
    STATIC_BY_DESIGN = "static-by-design"
    ENSEMBLE_VARIED = "ensemble-varied"


class EndingType(str, enum.Enum):
    HAPPILY_EVER_AFTER = "happily-ever-after"
    HAPPY_FOR_NOW = "happy-for-now"
    BITTERSWEET = "bittersweet"
    AMBIGUOUS = "ambiguous"
    TRAGIC = "tragic"
    CLIFFHANGER = "cliffhanger"
    OPEN_ENDED = "open-ended"


class ReadingDifficulty(str, enum.Enum):
    EASY_BEACH_READ = "easy-beach-read"
    ACCESSIBLE = "accessible"
    MODERATE = "moderate"
    CHALLENGING = "challenging"
    VERY_DEMANDING = "very-demanding"


class WarningIntensity(str, enum.Enum):
    MILD = "mild"
    MODERATE = "moderate"
    GRAPHIC = "graphic"


class RealOrFictional(str, enum.Enum):
    REAL = "real"
    FICTIONAL = "fictional"
    MIXED = "mixed"


class SettingImportance(str, enum.Enum):
    BACKDROP = "backdrop"
    IMPORTANT = "important"
    CENTRAL_CHARACTER = "central-character"


def _normalize_choice(value: Any, enum_cls: type[enum.Enum]) -> Optional[enum.Enum]:
    # "non-fiction" and "non fiction" both mean nonfiction
    return normalize_choice(value, enum_cls, squash_hyphens=enum_cls is FictionType)


class ContentWarning(BaseModel):
    category: str
    intensity: Optional[WarningIntensity] = None
    notes: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> str:
        return str(value).strip()

    @field_validator("notes", mode="before")
    @classmethod
    def _coerce_notes(cls, value: Any) -> Optional[str]:
        return as_optional_str(value)

    @field_validator("intensity", mode="before")
    @classmethod
    def _coerce_intensity(cls, value: Any) -> Optional[WarningIntensity]:
        return _normalize_choice(value, WarningIntensity)


class CatalogSetting(BaseModel):
    time_period: Optional[str] = None
    location_type: Optional[str] = None
    real_or_fictional: Optional[RealOrFictional] = None
    importance: Optional[SettingImportance] = None

    @field_validator("time_period", "location_type", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        return as_optional_str(value)

    @field_validator("real_or_fictional", mode="before")
    @classmethod
    def _coerce_real(cls, value: Any) -> Optional[RealOrFictional]:
        return _normalize_choice(value, RealOrFictional)

    @field_validator("importance", mode="before")
    @classmethod
    def _coerce_importance(cls, value: Any) -> Optional[SettingImportance]:
        return _normalize_choice(value, SettingImportance)


class CatalogRepresentation(BaseModel):
    protagonist_identities: List[str] = Field(default_factory=list)
    diversity_notes: List[str] = Field(default_factory=list)

    @field_validator("protagonist_identities", "diversity_notes", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> List[str]:
        return as_str_list(value) or []


class RelationshipDynamics(BaseModel):
    romantic: Optional[str] = None
    platonic: Optional[str] = None
    familial: Optional[str] = None
    rivalries: Optional[str] = None

    @field_validator("romantic", "platonic", "familial", "rivalries", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        return as_optional_str(value)


# Choice fields and the enum each one is drawn from
_CHOICE_FIELDS: Dict[str, type[enum.Enum]] = {
    "fiction_nonfiction": FictionType,
    "pacing": Pacing,
    "characterization": Characterization,
    "emotional_impact": EmotionalImpact,
    "target_age_group": AgeGroup,
    "character_development": CharacterDevelopment,
    "ending_type": EndingType,
    "reading_difficulty": ReadingDifficulty,
}

# Tier 1 choices always carry a value
_CHOICE_DEFAULTS: Dict[str, enum.Enum] = {
    "fiction_nonfiction": FictionType.FICTION,
    "pacing": Pacing.MODERATE,
}

_TIER1_LIST_FIELDS = ("themes", "tone", "mood_emotions")

_OPTIONAL_LIST_FIELDS = (
    "subgenres",
    "tropes",
    "writing_style",
    "protagonist_types",
    "storyline_structure",
    "relationship_focus",
    "best_read_when",
    "positive_content_notes",
    "awards",
    "comparable_books",
)

TIER3_FIELDS = (
    "storyline_structure",
    "character_development",
    "relationship_focus",
    "representation",
    "ending_type",
    "best_read_when",
    "reading_difficulty",
    "positive_content_notes",
)

# What a Tier 3 enrichment response is allowed to overwrite
TIER3_RESULT_FIELDS = TIER3_FIELDS + ("comparable_books", "series_name", "series_position")

# Fields cheap external lookups may fill in when the catalog has nothing
GAP_MERGE_FIELDS = ("cover_image", "description", "rating", "ratings_count", "page_count")

COUNTER_FIELDS = ("times_recommended", "times_saved")

TIMESTAMP_FIELDS = ("created_at", "updated_at", "last_enriched_at")


class CatalogEntry(BaseModel):
    """The canonical shared record for one (title, author) pair."""

    # Identity
    catalog_key: str = ""
    title: str
    author: str

    # Tier 1
    primary_genre: str = "Unknown"
    fiction_nonfiction: FictionType = FictionType.FICTION
    description: str = ""
    themes: List[str] = Field(default_factory=list)
    pacing: Pacing = Pacing.MODERATE
    tone: List[str] = Field(default_factory=list)
    mood_emotions: List[str] = Field(default_factory=list)

    # Tier 2
    subgenres: Optional[List[str]] = None
    tropes: Optional[List[str]] = None
    characterization: Optional[Characterization] = None
    writing_style: Optional[List[str]] = None
    protagonist_types: Optional[List[str]] = None
    content_warnings: Optional[List[ContentWarning]] = None
    emotional_impact: Optional[EmotionalImpact] = None
    setting: Optional[CatalogSetting] = None
    target_age_group: Optional[AgeGroup] = None
    relationship_dynamics: Optional[RelationshipDynamics] = None
    reader_need: Optional[str] = None

    # Tier 3
    storyline_structure: Optional[List[str]] = None
    character_development: Optional[CharacterDevelopment] = None
    relationship_focus: Optional[List[str]] = None
    representation: Optional[CatalogRepresentation] = None
    ending_type: Optional[EndingType] = None
    best_read_when: Optional[List[str]] = None
    reading_difficulty: Optional[ReadingDifficulty] = None
    positive_content_notes: Optional[List[str]] = None

    # Tier 4
    awards: Optional[List[str]] = None
    comparable_books: Optional[List[str]] = None
    isbn: Optional[str] = None
    page_count: Optional[int] = None
    first_published_year: Optional[int] = None
    series_name: Optional[str] = None
    series_position: Optional[float] = None

    # External display data (covers, ratings)
    cover_image: Optional[str] = None
    rating: Optional[float] = None
    ratings_count: Optional[int] = None
    rating_source: Optional[str] = None

    # Data quality tracking
    enrichment_tier: int = 1
    extraction_source: str = "perplexity-recommendation"
    confidence_score: float = DEFAULT_CONFIDENCE
    needs_review: bool = False

    # Embedding support
    embedding_text: Optional[str] = None

    # Counters
    times_recommended: int = 0
    times_saved: int = 0

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_enriched_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator(*_CHOICE_FIELDS, mode="before")
    @classmethod
    def _coerce_choice(cls, value: Any, info: ValidationInfo) -> Any:
        choice = _normalize_choice(value, _CHOICE_FIELDS[info.field_name])
        if choice is None:
            return _CHOICE_DEFAULTS.get(info.field_name)
        return choice

    @field_validator(*_TIER1_LIST_FIELDS, mode="before")
    @classmethod
    def _coerce_required_list(cls, value: Any) -> List[str]:
        return as_str_list(value) or []

    @field_validator(*_OPTIONAL_LIST_FIELDS, mode="before")
    @classmethod
    def _coerce_optional_list(cls, value: Any) -> Optional[List[str]]:
        return as_str_list(value)

    @field_validator("content_warnings", mode="before")
    @classmethod
    def _coerce_warnings(cls, value: Any) -> Optional[List[Any]]:
        if value is None:
            return None
        if isinstance(value, (str, dict)):
            value = [value]
        if not isinstance(value, (list, tuple)):
            return None
        warnings: List[Any] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                warnings.append({"category": item.strip()})
            elif isinstance(item, dict) and item.get("category"):
                warnings.append(item)
            elif isinstance(item, ContentWarning):
                warnings.append(item)
        return warnings

    @field_validator("setting", "representation", "relationship_dynamics", mode="before")
    @classmethod
    def _drop_non_objects(cls, value: Any) -> Any:
        if isinstance(value, (dict, BaseModel)):
            return value
        return None

    @field_validator("primary_genre", mode="before")
    @classmethod
    def _default_genre(cls, value: Any) -> str:
        if not value or not isinstance(value, str):
            return "Unknown"
        return value

    @field_validator("description", mode="before")
    @classmethod
    def _default_description(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @field_validator("reader_need", "isbn", "series_name", "cover_image", "rating_source", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        return as_optional_str(value)

    @field_validator("page_count", "first_published_year", "ratings_count", mode="before")
    @classmethod
    def _coerce_int(cls, value: Any) -> Optional[int]:
        return as_int(value)

    @field_validator("rating", "series_position", mode="before")
    @classmethod
    def _coerce_float(cls, value: Any) -> Optional[float]:
        return as_float(value)

    @field_validator("times_recommended", "times_saved", mode="before")
    @classmethod
    def _coerce_counter(cls, value: Any) -> int:
        return as_int(value) or 0

    @field_validator("enrichment_tier", mode="before")
    @classmethod
    def _clamp_tier(cls, value: Any) -> int:
        tier = as_int(value) or 1
        return min(max(tier, 1), 4)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        score = as_float(value)
        if score is None:
            return DEFAULT_CONFIDENCE
        return min(max(score, 0.0), 1.0)

    @model_validator(mode="after")
    def _apply_invariants(self) -> "CatalogEntry":
        self.catalog_key = make_catalog_key(self.title, self.author)
        if self.confidence_score < REVIEW_CONFIDENCE_THRESHOLD:
            self.needs_review = True
        return self


def create_minimal_catalog_entry(**data: Any) -> CatalogEntry:
    """
    Build a catalog entry from whatever is known; every Tier 1 field gets a default.

    `title` and `author` are required.
    """
    return CatalogEntry.model_validate(data)


def build_embedding_text(entry: CatalogEntry) -> str:
    """Concatenate the richest descriptive fields into one string for future vector embedding."""
    parts: List[Optional[str]] = [
        entry.title,
        f"by {entry.author}",
        entry.description,
        entry.primary_genre,
        *entry.themes,
        *entry.tone,
        *entry.mood_emotions,
        *(entry.tropes or []),
        *(entry.subgenres or []),
        entry.pacing.value if entry.pacing else None,
        *(entry.protagonist_types or []),
        *(entry.writing_style or []),
        *(entry.relationship_focus or []),
        *(entry.best_read_when or []),
    ]
    return ". ".join(part for part in parts if part)


def persistable_values(entry: CatalogEntry, fields: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """
    Project a catalog entry onto plain column values.

    Nested models and enums become JSON-compatible values; timestamps stay datetimes.
    Asking for a name that is not a CatalogEntry field raises ValueError rather than
    silently dropping it.
    """
    include = set(fields) if fields is not None else set(CatalogEntry.model_fields)
    unknown = include - set(CatalogEntry.model_fields)
    if unknown:
        raise ValueError(f"Not catalog fields: {sorted(unknown)}")

    values = entry.model_dump(mode="json", include=include)
    for name in TIMESTAMP_FIELDS:
        if name in include:
            values[name] = getattr(entry, name)
    return values


class BookRef(BaseModel):
    """A (title, author) pair headed for the catalog, with any cover already known."""
    title: str
    author: str = "Unknown"
    cover_image: Optional[str] = None

    @property
    def catalog_key(self) -> str:
        return make_catalog_key(self.title, self.author)


class CatalogSearchFilters(BaseModel):
    themes: Optional[List[str]] = None
    tropes: Optional[List[str]] = None
    mood: Optional[List[str]] = None
    pacing: Optional[str] = None
    genre: Optional[str] = None
    min_confidence: Optional[float] = None
    limit: Optional[int] = None


class CatalogStats(BaseModel):
    total: int = 0
    tier1: int = 0
    tier2: int = 0
    tier3: int = 0
    tier4: int = 0
    needs_review: int = 0
