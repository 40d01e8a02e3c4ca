from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from novelly.schemas.book import Book


class RecommendationRequest(BaseModel):
    mode: str = Field(default="Quick Recs", description="Quick Recs | Books + Context | Full Interview")
    books: List[str] = Field(default_factory=list, description="Titles the user enjoyed")
    context_input: Optional[str] = None
    interview_context: Optional[str] = None


class RecommendationsResponse(BaseModel):
    recommendations: List[Book]
    analysis: Optional[Dict[str, Any]] = None
    intro_text: Optional[str] = None
    cost: float = 0.0
