"""Tests for LibraryService."""
import asyncio
from datetime import timedelta

import pytest

from novelly.models import LibraryBook
from novelly.schemas.book import Book, BookStatus
from novelly.services.library_service import LibraryService
from novelly.utils.timing import utcnow

USER = "user-1"


@pytest.fixture
def library(catalog, session_factory):
    return LibraryService(catalog, session_factory)


def _dune(**overrides):
    data = {
        "title": "Dune",
        "author": "Frank Herbert",
        "cover_image": "https://covers/dune.jpg",
        "tropes": ["chosen one"],
        "rating": 4.3,
        "total_pages": 412,
    }
    data.update(overrides)
    return Book(**data)


def test_add_book_saves_shelf_row_and_syncs_catalog(library, catalog, llm, metadata):
    llm.handler = lambda prompt: metadata("Dune", "Frank Herbert")

    async def run():
        saved = await library.add_book(USER, _dune())
        await library.drain()
        shelf = await library.load_library(USER)
        catalog.clear_session_cache()
        return saved, shelf, await catalog.get_from_catalog("dune|frank herbert")

    saved, shelf, entry = asyncio.run(run())

    assert saved is True
    book = shelf["dune|frank herbert"]
    assert book.title == "Dune"
    assert book.status == BookStatus.UNREAD
    assert book.progress == 0
    assert book.tropes == ["chosen one"]
    assert book.added_date is not None

    assert entry.times_saved == 1
    assert entry.cover_image == "https://covers/dune.jpg"
    assert entry.page_count == 412
    assert catalog.pending_enrichment == ("dune|frank herbert",)


def test_add_book_keeps_explicit_status(library):
    async def run():
        await library.add_book(USER, _dune(status="reading", progress=40))
        await library.drain()
        return await library.load_library(USER)

    book = asyncio.run(run())["dune|frank herbert"]

    assert book.status == BookStatus.READING
    assert book.progress == 40


def test_adding_same_book_twice_updates_one_row(library, session_factory):
    async def run():
        await library.add_book(USER, _dune())
        await library.add_book(USER, _dune(rating=4.9))
        await library.drain()
        return await library.load_library(USER)

    shelf = asyncio.run(run())

    assert list(shelf) == ["dune|frank herbert"]
    assert shelf["dune|frank herbert"].rating == 4.9
    db = session_factory()
    try:
        assert db.query(LibraryBook).count() == 1
    finally:
        db.close()


def test_catalog_sync_failure_does_not_fail_the_write(library, catalog, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("catalog down")

    monkeypatch.setattr(catalog, "ensure_in_catalog", broken)

    async def run():
        saved = await library.add_book(USER, _dune())
        await library.drain()
        return saved, await library.load_library(USER)

    saved, shelf = asyncio.run(run())

    assert saved is True
    assert "dune|frank herbert" in shelf


def test_load_library_is_per_user_and_newest_first(library, session_factory):
    async def run():
        await library.add_book(USER, _dune())
        await library.add_book(USER, Book(title="Circe", author="Madeline Miller"))
        await library.add_book("someone-else", Book(title="Emma", author="Jane Austen"))
        await library.drain()

    asyncio.run(run())

    db = session_factory()
    try:
        dune = db.query(LibraryBook).filter(LibraryBook.catalog_key == "dune|frank herbert").one()
        dune.added_date = utcnow() + timedelta(minutes=5)
        db.commit()
    finally:
        db.close()

    shelf = asyncio.run(library.load_library(USER))

    assert list(shelf) == ["dune|frank herbert", "circe|madeline miller"]


def test_update_status_progress_and_delete(library):
    async def run():
        await library.add_book(USER, _dune())
        await library.drain()
        results = [
            await library.update_status(USER, "dune|frank herbert", BookStatus.READ),
            await library.update_progress(USER, "dune|frank herbert", -5),
        ]
        shelf = await library.load_library(USER)
        results.append(await library.delete_book(USER, "dune|frank herbert"))
        return results, shelf, await library.load_library(USER)

    results, shelf, after = asyncio.run(run())

    assert results == [True, True, True]
    assert shelf["dune|frank herbert"].status == BookStatus.READ
    assert shelf["dune|frank herbert"].progress == 0
    assert after == {}


def test_updates_on_missing_book_return_false(library):
    async def run():
        return [
            await library.update_status(USER, "nope|nobody", BookStatus.READ),
            await library.update_progress(USER, "nope|nobody", 10),
            await library.delete_book(USER, "nope|nobody"),
        ]

    assert asyncio.run(run()) == [False, False, False]
