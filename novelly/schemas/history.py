from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime
import enum

from novelly.schemas.book import Book


class SourceType(str, enum.Enum):
    QUICK = "quick"
    CONTEXT = "context"
    INTERVIEW = "interview"


class RecHistoryItem(BaseModel):
    """One recommendation session. Immutable once written."""
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime
    source_type: SourceType
    prompt_context: str = ""
    recommendations: List[Book] = Field(default_factory=list)
    intro_text: Optional[str] = None
    cost: Optional[float] = None
