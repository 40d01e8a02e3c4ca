"""Tests for recommendation prompts and RecommendationService."""
import asyncio

import pytest

from novelly.schemas.history import SourceType
from novelly.services.book_lookup import BookLookupChain
from novelly.services.history_service import HistoryService
from novelly.services.hydration import HydrationService
from novelly.services.prompts import OUTPUT_FORMAT_MARKER
from novelly.services.recommendation_service import (
    RecommendationMode,
    RecommendationService,
    build_recommendation_prompt,
)

USER = "user-1"
REC_MARKER = "Analyze the reading patterns"
INTERVIEW_ONLY_MARKER = "Based solely on the user's interview responses"

REC_REPLY = {
    "analysis": {"shared_tropes": ["found family"], "reader_profile": "Loves quiet epics."},
    "recommendations": [
        {"title": "Hyperion", "author": "Dan Simmons", "match_reasoning": "Layered pilgrim tales."},
        {"title": "The Left Hand of Darkness", "author": "Ursula K. Le Guin"},
    ],
    "intro_text": "You like big ideas.",
}


def test_quick_prompt_lists_books_without_extra_sections():
    prompt = build_recommendation_prompt(["Dune", "Circe"], RecommendationMode.QUICK)

    assert "these books the user loved: Dune, Circe" in prompt
    assert "ADDITIONAL USER CONTEXT" not in prompt
    assert "DETAILED USER PREFERENCES" not in prompt


def test_context_prompt_inserts_section_before_output_format():
    prompt = build_recommendation_prompt(["Dune"], "Books + Context", context_input="Something cozy")

    assert prompt.index("Something cozy") < prompt.index(OUTPUT_FORMAT_MARKER)
    assert prompt.count(OUTPUT_FORMAT_MARKER) == 1


def test_blank_context_adds_nothing():
    assert build_recommendation_prompt(["Dune"], RecommendationMode.CONTEXT, context_input="   ") == \
        build_recommendation_prompt(["Dune"], RecommendationMode.QUICK)


def test_interview_prompt_with_books_uses_interview_section():
    prompt = build_recommendation_prompt(["Dune"], RecommendationMode.INTERVIEW, interview_context="No gore")

    assert "DETAILED USER PREFERENCES" in prompt
    assert prompt.index("No gore") < prompt.index(OUTPUT_FORMAT_MARKER)


def test_interview_without_books_uses_interview_only_prompt():
    prompt = build_recommendation_prompt([], RecommendationMode.INTERVIEW, interview_context="No gore")

    assert INTERVIEW_ONLY_MARKER in prompt
    assert "No gore" in prompt


def test_unknown_mode_raises():
    with pytest.raises(ValueError):
        build_recommendation_prompt(["Dune"], "Deep Dive")


@pytest.fixture
def history(session_factory):
    return HistoryService(session_factory)


@pytest.fixture
def service(catalog, batch_llm, make_provider, history):
    hydration = HydrationService(catalog, BookLookupChain([make_provider("empty", 10)]), batch_delay=0)
    return RecommendationService(batch_llm, hydration, history)


def _reply_with(llm, reply):
    extract = llm.handler

    def handler(prompt):
        if REC_MARKER in prompt or INTERVIEW_ONLY_MARKER in prompt:
            return reply
        return extract(prompt)

    llm.handler = handler


def test_generate_hydrates_and_records_history(service, batch_llm, history):
    _reply_with(batch_llm, REC_REPLY)
    messages = []

    async def run():
        result = await service.generate(USER, RecommendationMode.QUICK, ["Dune", "Circe"], on_progress=messages.append)
        return result, await history.get_history(USER)

    result, items = asyncio.run(run())

    assert result.error is None
    assert [b.title for b in result.recommendations] == ["Hyperion", "The Left Hand of Darkness"]
    assert result.recommendations[0].match_reasoning == "Layered pilgrim tales."
    assert result.recommendations[0].metadata["primary_genre"] == "Fantasy"
    assert result.intro_text == "You like big ideas."
    assert result.analysis["shared_tropes"] == ["found family"]
    # sonar-pro: 1000 prompt tokens at $3/M + 500 completion tokens at $15/M
    assert result.cost == pytest.approx(0.0105)
    assert messages[0] == "Analyzing 2 books..."

    assert len(items) == 1
    assert items[0].source_type == SourceType.QUICK
    assert items[0].prompt_context == "Dune, Circe"
    assert items[0].intro_text == "You like big ideas."
    assert [b.title for b in items[0].recommendations] == ["Hyperion", "The Left Hand of Darkness"]


def test_interview_run_records_interview_context(service, batch_llm, history):
    reply = {key: value for key, value in REC_REPLY.items() if key != "intro_text"}
    _reply_with(batch_llm, reply)

    async def run():
        result = await service.generate(USER, "Full Interview", [], interview_context="Wants hope, no gore")
        return result, await history.get_history(USER)

    result, items = asyncio.run(run())

    assert result.intro_text == "Loves quiet epics."
    assert items[0].source_type == SourceType.INTERVIEW
    assert items[0].prompt_context == "Wants hope, no gore"
    assert len(batch_llm.calls_with(INTERVIEW_ONLY_MARKER)) == 1


def test_failed_request_returns_error_without_history(service, llm, history):
    llm.handler = lambda prompt: None

    async def run():
        result = await service.generate(USER, RecommendationMode.QUICK, ["Dune"])
        return result, await history.get_history(USER)

    result, items = asyncio.run(run())

    assert result.error == "Perplexity API key not configured"
    assert result.recommendations == []
    assert items == []


def test_unparseable_reply(service, llm):
    llm.handler = lambda prompt: "I cannot help with that."

    result = asyncio.run(service.generate(USER, RecommendationMode.QUICK, ["Dune"]))

    assert result.error == "Could not parse recommendations."
    assert result.cost > 0


def test_reply_without_recommendations(service, batch_llm):
    _reply_with(batch_llm, {"analysis": {"reader_profile": "?"}, "recommendations": []})

    result = asyncio.run(service.generate(USER, RecommendationMode.QUICK, ["Dune"]))

    assert result.error == "No recommendations found."
