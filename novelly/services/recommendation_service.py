"""
Recommendation runs: build the prompt for a mode, ask the model, hydrate the
books it names, and record the session in the user's history.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from novelly.schemas.book import Book
from novelly.schemas.history import SourceType
from novelly.services.history_service import HistoryService
from novelly.services.hydration import HydrationService, ProgressCallback
from novelly.services.llm import PerplexityClient, calculate_cost
from novelly.services.prompts import (
    BASE_PROMPT,
    CONTEXT_SECTION,
    INTERVIEW_ONLY_PROMPT,
    INTERVIEW_SECTION,
    OUTPUT_FORMAT_MARKER,
)
from novelly.utils.json_parsing import ParseError, parse_json

logger = logging.getLogger(__name__)


class RecommendationMode(str, enum.Enum):
    QUICK = "Quick Recs"
    CONTEXT = "Books + Context"
    INTERVIEW = "Full Interview"


SOURCE_TYPE_BY_MODE = {
    RecommendationMode.QUICK: SourceType.QUICK,
    RecommendationMode.CONTEXT: SourceType.CONTEXT,
    RecommendationMode.INTERVIEW: SourceType.INTERVIEW,
}


@dataclass
class RecommendationResult:
    recommendations: List[Book] = field(default_factory=list)
    analysis: Optional[Dict[str, Any]] = None
    intro_text: Optional[str] = None
    cost: float = 0.0
    error: Optional[str] = None


def build_recommendation_prompt(
    books: Sequence[str],
    mode: RecommendationMode,
    context_input: Optional[str] = None,
    interview_context: Optional[str] = None,
) -> str:
    """
    Prompt for one recommendation run.

    Context and interview text are inserted just before the output-format block.
    An interview with no books uses a dedicated interview-only prompt.
    """
    mode = RecommendationMode(mode)
    if mode == RecommendationMode.INTERVIEW and interview_context and not books:
        return INTERVIEW_ONLY_PROMPT.replace("{interview_context}", interview_context)

    prompt = BASE_PROMPT.replace("{user_book_list}", ", ".join(books))

    section = ""
    if mode == RecommendationMode.CONTEXT and context_input and context_input.strip():
        section = CONTEXT_SECTION.replace("{context_input}", context_input)
    elif mode == RecommendationMode.INTERVIEW and interview_context:
        section = INTERVIEW_SECTION.replace("{interview_context}", interview_context)

    if section:
        prompt = prompt.replace(OUTPUT_FORMAT_MARKER, section + "\n\n" + OUTPUT_FORMAT_MARKER, 1)
    return prompt


def _intro_text(data: Dict[str, Any]) -> Optional[str]:
    intro = data.get("intro_text")
    if isinstance(intro, str) and intro.strip():
        return intro
    analysis = data.get("analysis")
    if isinstance(analysis, dict) and isinstance(analysis.get("reader_profile"), str):
        return analysis["reader_profile"]
    return None


class RecommendationService:
    def __init__(
        self,
        llm: PerplexityClient,
        hydration: HydrationService,
        history: HistoryService,
        model: Optional[str] = None,
    ):
        self.llm = llm
        self.hydration = hydration
        self.history = history
        self.model = model

    async def generate(
        self,
        user_id: str,
        mode: RecommendationMode,
        books: Sequence[str],
        context_input: Optional[str] = None,
        interview_context: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecommendationResult:
        mode = RecommendationMode(mode)
        model = self.model or self.llm.model
        prompt = build_recommendation_prompt(books, mode, context_input, interview_context)

        result = await self.llm.send(prompt, model=model)
        if not result.success or not result.content:
            logger.warning("Recommendation request failed: user_id=%s, error=%s", user_id, result.error)
            return RecommendationResult(error=result.error or "Failed to fetch recommendations.")

        cost = calculate_cost(model, result.usage)
        try:
            data = parse_json(result.content)
        except ParseError as e:
            logger.warning("Could not parse recommendations: user_id=%s, error=%s", user_id, e)
            return RecommendationResult(cost=cost, error="Could not parse recommendations.")

        raw_recommendations = data.get("recommendations") if isinstance(data, dict) else None
        if not isinstance(raw_recommendations, list) or not raw_recommendations:
            return RecommendationResult(cost=cost, error="No recommendations found.")

        hydrated = await self.hydration.hydrate_books_list(raw_recommendations, on_progress)
        analysis = data.get("analysis") if isinstance(data.get("analysis"), dict) else None
        intro_text = _intro_text(data)

        if mode == RecommendationMode.INTERVIEW:
            prompt_context = interview_context or ""
        else:
            prompt_context = ", ".join(books)
        await self.history.save_history(
            user_id,
            SOURCE_TYPE_BY_MODE[mode],
            prompt_context,
            hydrated,
            intro_text=intro_text,
            cost=cost,
        )

        logger.info(
            "Recommendations generated: user_id=%s, mode=%s, count=%d, cost=$%.4f",
            user_id, mode.value, len(hydrated), cost,
        )
        return RecommendationResult(
            recommendations=hydrated,
            analysis=analysis,
            intro_text=intro_text,
            cost=cost,
        )
