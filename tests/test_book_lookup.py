"""Tests for external book lookups and the prioritized lookup chain."""
import asyncio

from novelly.schemas.book import PartialBookRecord
from novelly.services import book_lookup
from novelly.services.book_lookup import (
    BookLookupChain,
    GoogleBooksAdapter,
    OpenLibraryAdapter,
    _pick_best_match,
    clean_description,
)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise book_lookup.requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


def _volume(title, authors, **info):
    return {"volumeInfo": {"title": title, "authors": authors, **info}}


def test_pick_best_match_prefers_exact_title_and_author():
    items = [
        _volume("Dune Messiah", ["Frank Herbert"]),
        _volume("Dune", ["Brian Herbert"]),
        _volume("Dune", ["Frank Herbert"]),
    ]
    assert _pick_best_match("Dune", "Frank Herbert", items) is items[2]


def test_pick_best_match_requires_some_match():
    assert _pick_best_match("Dune", "Frank Herbert", [_volume("Emma", ["Jane Austen"])]) is None


def test_clean_description_strips_html():
    assert clean_description("<p>First</p><br>Second") == "First\nSecond"
    assert clean_description("A <b>bold</b> claim<BR/>next") == "A bold claim\nnext"


def test_google_books_adapter_maps_volume(monkeypatch):
    calls = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append(params["q"])
        return FakeResponse({"items": [_volume(
            "Dune",
            ["Frank Herbert"],
            description="<p>Spice.</p>",
            imageLinks={"thumbnail": "http://books.google.com/dune.jpg"},
            averageRating=4.5,
            ratingsCount=1200,
            pageCount=412,
            publishedDate="1965-08-01",
        )]})

    monkeypatch.setattr(book_lookup.requests, "get", fake_get)

    record = asyncio.run(GoogleBooksAdapter(api_key="").search("Dune", "Frank Herbert"))

    assert calls == ["intitle:Dune inauthor:Frank Herbert"]
    assert record.cover_image == "https://books.google.com/dune.jpg"
    assert record.rating == 4.5
    assert record.ratings_count == 1200
    assert record.rating_source == "Google Books"
    assert record.total_pages == 412
    assert record.first_published_year == 1965
    assert record.description == "Spice."


def test_google_books_adapter_falls_back_to_loose_query(monkeypatch):
    calls = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append(params)
        if params["q"].startswith("intitle:"):
            return FakeResponse({"items": [_volume("Something Else", ["Nobody"])]})
        return FakeResponse({"items": [_volume("Dune (Deluxe Edition)", ["Frank Herbert"])]})

    monkeypatch.setattr(book_lookup.requests, "get", fake_get)

    record = asyncio.run(GoogleBooksAdapter(api_key="").search("Dune", "Unknown"))

    assert [c["q"] for c in calls] == ["intitle:Dune", "Dune"]
    assert calls[1]["maxResults"] == 1
    assert record.title == "Dune (Deluxe Edition)"


def test_google_books_adapter_swallows_errors(monkeypatch):
    def fake_get(url, params=None, headers=None, timeout=None):
        return FakeResponse({}, status_code=429)

    monkeypatch.setattr(book_lookup.requests, "get", fake_get)

    assert asyncio.run(GoogleBooksAdapter(api_key="").search("Dune", "Frank Herbert")) is None


def test_open_library_adapter_maps_doc(monkeypatch):
    def fake_get(url, params=None, headers=None, timeout=None):
        assert params == {"q": "Dune Frank Herbert", "limit": 1}
        return FakeResponse({"docs": [{
            "title": "Dune",
            "author_name": ["Frank Herbert"],
            "cover_i": 12345,
            "first_publish_year": 1965,
            "number_of_pages_median": 604,
        }]})

    monkeypatch.setattr(book_lookup.requests, "get", fake_get)

    record = asyncio.run(OpenLibraryAdapter().search("Dune", "Frank Herbert"))

    assert record.cover_image == "https://covers.openlibrary.org/b/id/12345-M.jpg"
    assert record.first_published_year == 1965
    assert record.total_pages == 604
    assert record.rating is None


def test_chain_orders_providers_by_priority_then_name(make_provider):
    chain = BookLookupChain([
        make_provider("zeta", 20),
        make_provider("beta", 10),
        make_provider("alpha", 10),
    ])
    assert [p.name for p in chain.providers] == ["alpha", "beta", "zeta"]


def test_chain_fills_each_field_from_first_provider_that_has_it(make_provider):
    first = make_provider("first", 10, {"Dune": PartialBookRecord(cover_image="https://first.jpg")})
    second = make_provider("second", 20, {"Dune": PartialBookRecord(
        cover_image="https://second.jpg", rating=4.1, first_published_year=1965,
    )})

    record = asyncio.run(BookLookupChain([second, first]).search("Dune", "Frank Herbert"))

    assert record.cover_image == "https://first.jpg"
    assert record.rating == 4.1
    assert record.first_published_year == 1965


def test_chain_stops_once_wanted_fields_are_filled(make_provider):
    first = make_provider("first", 10, {"Dune": PartialBookRecord(cover_image="https://first.jpg", rating=4.0)})
    second = make_provider("second", 20, {"Dune": PartialBookRecord(rating=3.0)})

    record = asyncio.run(BookLookupChain([first, second]).search("Dune", wanted=("cover_image", "rating")))

    assert record.rating == 4.0
    assert second.calls == []


def test_chain_skips_failing_provider(make_provider):
    broken = make_provider("broken", 10, error=RuntimeError("down"))
    working = make_provider("working", 20, {"Dune": PartialBookRecord(cover_image="https://ok.jpg")})

    record = asyncio.run(BookLookupChain([broken, working]).search("Dune"))

    assert record.cover_image == "https://ok.jpg"


def test_chain_returns_none_when_nothing_found(make_provider):
    assert asyncio.run(BookLookupChain([make_provider("empty", 10)]).search("Dune")) is None
