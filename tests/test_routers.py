"""HTTP tests for the API routers, wired to in-memory services."""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from novelly.container import build_container
from novelly.core.auth import get_current_user
from novelly.routers import books, catalog, feed, history, library, recommendations
from novelly.schemas.book import PartialBookRecord
from novelly.services.book_lookup import BookLookupChain

USER = "user-1"
SINGLE_MARKER = "extract structured metadata about the book"
REC_MARKER = "Analyze the reading patterns"
FEED_MARKER = "homepage feed based on the following genres"


@pytest.fixture
def container(session_factory, batch_llm, make_provider, metadata):
    extract = batch_llm.handler

    def handler(prompt):
        if SINGLE_MARKER in prompt:
            return metadata("Dune", "Frank Herbert")
        if REC_MARKER in prompt:
            return {
                "analysis": {"reader_profile": "Loves quiet epics."},
                "recommendations": [{"title": "Hyperion", "author": "Dan Simmons"}],
                "intro_text": "You like big ideas.",
            }
        if FEED_MARKER in prompt:
            return {"popular": [{"title": "Circe", "author": "Madeline Miller"}]}
        return extract(prompt)

    batch_llm.handler = handler
    provider = make_provider("fake_books", 10, {
        "Dune": PartialBookRecord(title="Dune", author="Frank Herbert", cover_image="https://covers/dune.jpg", rating=4.3),
        "Hyperion": PartialBookRecord(cover_image="https://covers/hyperion.jpg", rating=4.2),
    })
    return build_container(session_factory, llm=batch_llm, lookup=BookLookupChain([provider]))


@pytest.fixture
def client(container):
    app = FastAPI()
    for module in (catalog, books, recommendations, library, history, feed):
        app.include_router(module.router, prefix="/api")
    app.state.container = container
    app.dependency_overrides[get_current_user] = lambda: {"id": USER, "email": "reader@example.com"}
    with TestClient(app) as test_client:
        yield test_client


def test_catalog_ensure_entry_stats_and_search(client):
    response = client.post("/api/catalog/ensure", json={"title": "Dune", "author": "Frank Herbert"})
    assert response.status_code == 200
    assert response.json()["catalog_key"] == "dune|frank herbert"
    assert response.json()["enrichment_tier"] == 2

    response = client.get("/api/catalog/entry", params={"title": "Dune", "author": "Frank Herbert"})
    assert response.status_code == 200
    assert response.json()["primary_genre"] == "Fantasy"

    assert client.get("/api/catalog/stats").json()["total"] == 1

    results = client.get("/api/catalog/search", params={"genre": "Fantasy", "tropes": ["chosen one"]}).json()
    assert [entry["title"] for entry in results] == ["Dune"]
    assert client.get("/api/catalog/search", params={"genre": "Romance"}).json() == []


def test_catalog_entry_not_found(client):
    response = client.get("/api/catalog/entry", params={"title": "Nope", "author": "Nobody"})
    assert response.status_code == 404


def test_hydrate_and_find(client):
    response = client.post("/api/books/hydrate", json={"books": [{"title": "Hyperion", "author": "Dan Simmons"}]})
    assert response.status_code == 200
    hydrated = response.json()
    assert hydrated[0]["cover_image"] == "https://covers/hyperion.jpg"
    assert hydrated[0]["metadata"]["primary_genre"] == "Fantasy"

    found = client.get("/api/books/find", params={"title": "Dune"}).json()
    assert found["author"] == "Frank Herbert"
    assert found["cover_image"] == "https://covers/dune.jpg"


def test_recommendations_and_history(client):
    response = client.post("/api/recommendations", json={"mode": "Quick Recs", "books": ["Dune"]})
    assert response.status_code == 200
    body = response.json()
    assert [b["title"] for b in body["recommendations"]] == ["Hyperion"]
    assert body["intro_text"] == "You like big ideas."
    assert body["cost"] > 0

    items = client.get("/api/history").json()
    assert len(items) == 1
    assert items[0]["source_type"] == "quick"
    assert items[0]["prompt_context"] == "Dune"


@pytest.mark.parametrize("payload", [
    {"mode": "Deep Dive", "books": ["Dune"]},
    {"mode": "Quick Recs", "books": []},
    {"mode": "Books + Context", "books": ["Dune"], "context_input": "  "},
])
def test_recommendations_reject_bad_requests(client, payload):
    assert client.post("/api/recommendations", json=payload).status_code == 422


def test_recommendations_upstream_failure_is_502(client, batch_llm):
    batch_llm.handler = lambda prompt: None

    response = client.post("/api/recommendations", json={"books": ["Dune"]})

    assert response.status_code == 502
    assert response.json()["detail"] == "Perplexity API key not configured"


def test_library_lifecycle(client):
    response = client.post("/api/library", json={"title": "Dune", "author": "Frank Herbert", "coverImage": "https://x.jpg"})
    assert response.status_code == 201
    assert response.json() == {"success": True}

    shelf = client.get("/api/library").json()
    assert list(shelf) == ["dune|frank herbert"]
    assert shelf["dune|frank herbert"]["status"] == "unread"
    assert shelf["dune|frank herbert"]["cover_image"] == "https://x.jpg"

    response = client.patch("/api/library/status", json={"catalog_key": "dune|frank herbert", "status": "reading"})
    assert response.status_code == 200
    response = client.patch("/api/library/progress", json={"catalog_key": "dune|frank herbert", "progress": 120})
    assert response.status_code == 200

    book = client.get("/api/library").json()["dune|frank herbert"]
    assert book["status"] == "reading"
    assert book["progress"] == 120

    assert client.delete("/api/library", params={"catalog_key": "dune|frank herbert"}).status_code == 200
    assert client.get("/api/library").json() == {}


def test_library_missing_book_is_404(client):
    key = {"catalog_key": "nope|nobody"}
    assert client.patch("/api/library/status", json={**key, "status": "read"}).status_code == 404
    assert client.patch("/api/library/progress", json={**key, "progress": 3}).status_code == 404
    assert client.delete("/api/library", params=key).status_code == 404


def test_library_rejects_negative_progress(client):
    response = client.patch("/api/library/progress", json={"catalog_key": "dune|frank herbert", "progress": -1})
    assert response.status_code == 422


def test_feed_and_cache_clear(client, batch_llm):
    sections = client.get("/api/feed", params={"genres": ["Fantasy"]}).json()
    assert [s["id"] for s in sections] == ["popular"]
    assert sections[0]["data"][0]["title"] == "Circe"

    client.get("/api/feed", params={"genres": ["Fantasy"]})
    assert len(batch_llm.calls_with(FEED_MARKER)) == 1

    assert client.delete("/api/feed/cache").status_code == 204
    client.get("/api/feed", params={"genres": ["Fantasy"]})
    assert len(batch_llm.calls_with(FEED_MARKER)) == 2


def test_protected_routes_require_bearer_token(container):
    app = FastAPI()
    app.include_router(library.router, prefix="/api")
    app.state.container = container
    client = TestClient(app)

    response = client.get("/api/library")

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
