"""
Catalog service: the self-growing library.

Every book that touches the app flows through here:
1. A book appears (recommendation, search, user add)
2. ensure_in_catalog(title, author) checks the session cache, then the store
3. Missing books get a Tier 1+2 extraction and are stored
4. Books stored below Tier 2 are queued for background enrichment
5. The catalog entry is returned

Public methods never raise for extraction, parse or persistence failures.
They log and return the best entry they have; a book that fails every path
still gets a low-confidence fallback entry flagged for review.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from novelly.core.config import settings
from novelly.schemas.catalog import (
    CatalogEntry,
    CatalogSearchFilters,
    CatalogStats,
    BookRef,
    GAP_MERGE_FIELDS,
    TIER3_RESULT_FIELDS,
    build_embedding_text,
    create_minimal_catalog_entry,
    make_catalog_key,
    persistable_values,
)
from novelly.services.catalog_prompts import (
    render_batch_prompt,
    render_tier1_2_prompt,
    render_tier3_prompt,
)
from novelly.services.catalog_store import CatalogStoreError, SqlCatalogStore
from novelly.services.llm import LLMResponse, PerplexityClient, calculate_cost
from novelly.utils.json_parsing import ParseError, parse_json
from novelly.utils.timing import utcnow

logger = logging.getLogger(__name__)

DEFAULT_EXTRACTION_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.3

SOURCE_SINGLE = "perplexity-enrichment"
SOURCE_BATCH = "perplexity-batch"
SOURCE_HYDRATION_ONLY = "hydration-only"
SOURCE_EXTRACTION_FAILED = "extraction-failed"
SOURCE_BATCH_FAILED = "batch-extraction-failed"
SOURCE_BATCH_UNMATCHED = "batch-extraction-unmatched"

# Set by this service, never taken from model output or caller data
_SYSTEM_FIELDS = frozenset({
    "catalog_key",
    "enrichment_tier",
    "extraction_source",
    "confidence_score",
    "needs_review",
    "embedding_text",
    "times_recommended",
    "times_saved",
    "created_at",
    "updated_at",
    "last_enriched_at",
})

TIER3_WRITE_FIELDS = TIER3_RESULT_FIELDS + ("enrichment_tier", "last_enriched_at", "embedding_text")


def _content_fields(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Keep the catalog content fields that carry a value.

    Identity, system fields and unknown keys are dropped; callers supply those.
    """
    if not data:
        return {}
    return {
        name: value
        for name, value in data.items()
        if name in CatalogEntry.model_fields
        and name not in _SYSTEM_FIELDS
        and name not in ("title", "author")
        and value not in (None, "", [], {})
    }


def _reported_confidence(extracted: Dict[str, Any]) -> float:
    raw = extracted.get("confidence", extracted.get("confidence_score"))
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_EXTRACTION_CONFIDENCE
    return value or DEFAULT_EXTRACTION_CONFIDENCE


def _batch_items(parsed: Any) -> List[Dict[str, Any]]:
    items = parsed.get("books") if isinstance(parsed, dict) else parsed
    if not isinstance(items, list):
        raise ParseError("Batch response has no books array")
    return [item for item in items if isinstance(item, dict)]


def _as_ref(book: Union[BookRef, Dict[str, Any]]) -> BookRef:
    if isinstance(book, BookRef):
        return book
    return BookRef(
        title=book.get("title") or "",
        author=book.get("author") or "Unknown",
        cover_image=book.get("cover_image") or book.get("coverImage"),
    )


class CatalogService:
    """
    Owns the session cache and the background enrichment queue.

    Construct one per process and inject it; tests build a fresh instance each.
    """

    def __init__(
        self,
        store: SqlCatalogStore,
        llm: PerplexityClient,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
    ):
        self.store = store
        self.llm = llm
        self.model = model or settings.PERPLEXITY_MODEL
        self.api_key = api_key
        self._session_cache: Dict[str, CatalogEntry] = {}
        # Insertion-ordered set of catalog keys awaiting Tier 3
        self._enrichment_queue: Dict[str, None] = {}

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def ensure_in_catalog(
        self,
        title: str,
        author: str,
        partial_data: Optional[Dict[str, Any]] = None,
        skip_enrichment: bool = False,
    ) -> CatalogEntry:
        """
        Return the catalog entry for (title, author), creating it if needed.

        partial_data carries anything already known (cover, rating, description);
        it only ever fills gaps on an existing entry. With skip_enrichment the
        model is not called and a minimal Tier 1 entry is stored instead.
        """
        key = make_catalog_key(title, author)

        cached = self._session_cache.get(key)
        if cached is not None:
            return cached

        existing = await self.get_from_catalog(key)
        if existing is not None:
            if existing.enrichment_tier < 2:
                self.queue_for_enrichment(key)
            if partial_data:
                existing = await self.merge_catalog_data(existing, partial_data)
            self._session_cache[key] = existing
            return existing

        if skip_enrichment:
            entry = create_minimal_catalog_entry(
                **_content_fields(partial_data),
                title=title,
                author=author,
                extraction_source=SOURCE_HYDRATION_ONLY,
                enrichment_tier=1,
            )
            entry.embedding_text = build_embedding_text(entry)
            await self.save_to_catalog(entry)
        else:
            entry = await self.extract_and_store(title, author, partial_data)

        # Concurrent calls for the same uncached key can both get here; the
        # store's upsert on catalog_key keeps that to a single row.
        self._session_cache[key] = entry
        return entry

    # ------------------------------------------------------------------
    # Tier 1+2 extraction
    # ------------------------------------------------------------------

    async def extract_and_store(
        self,
        title: str,
        author: str,
        partial_data: Optional[Dict[str, Any]] = None,
    ) -> CatalogEntry:
        result = await self.llm.send(render_tier1_2_prompt(title, author), self.model, self.api_key)

        if result.success and result.content:
            try:
                extracted = parse_json(result.content)
                if not isinstance(extracted, dict):
                    raise ParseError("Expected a JSON object")
                entry = self._entry_from_extraction(extracted, title, author, partial_data, SOURCE_SINGLE)
            except (ParseError, ValidationError) as e:
                logger.error('[Catalog] Failed to parse extraction for "%s": %s', title, e)
            else:
                self._log_cost(result, f'"{title}"')
                await self.save_to_catalog(entry)
                return entry
        else:
            logger.warning('[Catalog] Extraction call failed for "%s": %s', title, result.error)

        fallback = self._fallback_entry(title, author, partial_data, SOURCE_EXTRACTION_FAILED)
        await self.save_to_catalog(fallback)
        return fallback

    async def batch_extract_and_store(self, books: Sequence[Union[BookRef, Dict[str, Any]]]) -> List[CatalogEntry]:
        """
        Tier 1+2 for many books in one model call.

        Books already cached or stored are not sent. Response items are matched
        back to the request by their echoed title and author; an item without an
        echo falls back to its position. Requested books with no usable item get
        a fallback entry. Returns one entry per distinct input book, in input order.
        """
        unique: Dict[str, BookRef] = {}
        for book in books:
            ref = _as_ref(book)
            unique.setdefault(ref.catalog_key, ref)

        resolved: Dict[str, CatalogEntry] = {}
        to_process: List[BookRef] = []
        for key, ref in unique.items():
            entry = self._session_cache.get(key) or await self.get_from_catalog(key)
            if entry is not None:
                self._session_cache[key] = entry
                resolved[key] = entry
            else:
                to_process.append(ref)

        if not to_process:
            logger.info("[Catalog] All books already in catalog")
            return [resolved[key] for key in unique]

        logger.info("[Catalog] Batch extracting %d new books...", len(to_process))
        result = await self.llm.send(render_batch_prompt(to_process), self.model, self.api_key)

        items: Optional[List[Dict[str, Any]]] = None
        if result.success and result.content:
            try:
                items = _batch_items(parse_json(result.content))
            except ParseError as e:
                logger.error("[Catalog] Batch extraction parse error: %s", e)
        else:
            logger.warning("[Catalog] Batch extraction call failed: %s", result.error)

        if items is None:
            created = [
                self._fallback_entry(ref.title, ref.author, {"cover_image": ref.cover_image}, SOURCE_BATCH_FAILED)
                for ref in to_process
            ]
        else:
            created = self._entries_from_batch(to_process, items)
            self._log_cost(result, f"batch of {len(to_process)} books")

        for entry in created:
            await self.save_to_catalog(entry)
            self._session_cache[entry.catalog_key] = entry
            resolved[entry.catalog_key] = entry

        return [resolved[key] for key in unique if key in resolved]

    def _entries_from_batch(self, requests: List[BookRef], items: List[Dict[str, Any]]) -> List[CatalogEntry]:
        pending: Dict[str, BookRef] = {ref.catalog_key: ref for ref in requests}
        matched: Dict[str, Dict[str, Any]] = {}
        unechoed: List[Tuple[int, Dict[str, Any]]] = []

        for index, item in enumerate(items):
            title = item.get("title")
            if not isinstance(title, str) or not title.strip():
                unechoed.append((index, item))
                continue
            author = item.get("author")
            key = self._match_echo(title, author if isinstance(author, str) else "", pending)
            if key is None:
                logger.warning('[Catalog] Batch item "%s" by %s matches no requested book; discarded', title, author)
                continue
            matched[key] = item
            del pending[key]

        for index, item in unechoed:
            if index < len(requests) and requests[index].catalog_key in pending:
                key = requests[index].catalog_key
                matched[key] = item
                del pending[key]

        if len(items) != len(requests) or pending:
            logger.warning(
                "[Catalog] Batch extraction partial failure: %d requested, %d returned, %d unmatched",
                len(requests), len(items), len(pending),
            )

        entries: List[CatalogEntry] = []
        for ref in requests:
            known = {"cover_image": ref.cover_image}
            item = matched.get(ref.catalog_key)
            if item is None:
                entries.append(self._fallback_entry(ref.title, ref.author, known, SOURCE_BATCH_UNMATCHED))
                continue
            try:
                entries.append(self._entry_from_extraction(item, ref.title, ref.author, known, SOURCE_BATCH))
            except ValidationError as e:
                logger.error('[Catalog] Invalid batch item for "%s": %s', ref.title, e)
                entries.append(self._fallback_entry(ref.title, ref.author, known, SOURCE_BATCH_FAILED))
        return entries

    @staticmethod
    def _match_echo(title: str, author: str, pending: Dict[str, BookRef]) -> Optional[str]:
        key = make_catalog_key(title, author)
        if key in pending:
            return key
        # Author echoed differently ("Herbert" vs "Frank Herbert"): accept an unambiguous title
        wanted = title.lower().strip()
        candidates = [k for k, ref in pending.items() if ref.title.lower().strip() == wanted]
        return candidates[0] if len(candidates) == 1 else None

    def _entry_from_extraction(
        self,
        extracted: Dict[str, Any],
        title: str,
        author: str,
        partial_data: Optional[Dict[str, Any]],
        source: str,
    ) -> CatalogEntry:
        """Extracted metadata wins; partial data fills what the model left empty. Cover prefers partial data."""
        known = _content_fields(partial_data)
        data = {**known, **_content_fields(extracted)}
        data.update(
            title=title,
            author=author,
            cover_image=known.get("cover_image") or extracted.get("cover_image"),
            enrichment_tier=2,
            extraction_source=source,
            confidence_score=_reported_confidence(extracted),
        )
        entry = create_minimal_catalog_entry(**data)
        entry.embedding_text = build_embedding_text(entry)
        return entry

    @staticmethod
    def _fallback_entry(
        title: str,
        author: str,
        partial_data: Optional[Dict[str, Any]],
        source: str,
    ) -> CatalogEntry:
        return create_minimal_catalog_entry(
            **_content_fields(partial_data),
            title=title,
            author=author,
            extraction_source=source,
            enrichment_tier=1,
            confidence_score=FALLBACK_CONFIDENCE,
            needs_review=True,
        )

    def _log_cost(self, result: LLMResponse, label: str) -> None:
        if result.usage:
            cost = calculate_cost(self.model, result.usage)
            logger.info(f"[Catalog] Extraction cost for {label}: ${cost:.4f}")

    # ------------------------------------------------------------------
    # Background enrichment (Tier 3)
    # ------------------------------------------------------------------

    def queue_for_enrichment(self, catalog_key: str) -> None:
        self._enrichment_queue.setdefault(catalog_key, None)

    @property
    def pending_enrichment(self) -> Tuple[str, ...]:
        return tuple(self._enrichment_queue)

    async def process_enrichment_queue(self, max_items: int = 3) -> int:
        """
        Upgrade up to max_items queued entries to Tier 3, one at a time.

        Each key leaves the queue whether enrichment succeeded or not; there is
        no retry. Returns how many entries were upgraded.
        """
        keys = list(self._enrichment_queue)[:max_items]
        enriched = 0
        for key in keys:
            try:
                if await self._enrich_to_tier3(key):
                    enriched += 1
            except Exception as e:
                logger.error("[Catalog] Enrichment failed for %s: %s", key, e)
            finally:
                self._enrichment_queue.pop(key, None)
        return enriched

    async def _enrich_to_tier3(self, catalog_key: str) -> bool:
        # Re-read: the entry may have been upgraded since it was queued
        entry = await self.get_from_catalog(catalog_key)
        if entry is None or entry.enrichment_tier >= 3:
            return False

        logger.info('[Catalog] Enriching to Tier 3: "%s"', entry.title)
        result = await self.llm.send(render_tier3_prompt(entry), self.model, self.api_key)
        if not result.success or not result.content:
            logger.warning('[Catalog] Tier 3 call failed for "%s": %s', entry.title, result.error)
            return False

        tier3 = parse_json(result.content)
        if not isinstance(tier3, dict):
            raise ParseError("Expected a JSON object")

        upgraded = CatalogEntry.model_validate({
            **entry.model_dump(),
            **{name: tier3.get(name) for name in TIER3_RESULT_FIELDS},
            "enrichment_tier": max(entry.enrichment_tier, 3),
            "last_enriched_at": utcnow(),
        })
        upgraded.embedding_text = build_embedding_text(upgraded)
        self._log_cost(result, f'Tier 3 "{entry.title}"')

        saved = await self.update_catalog_entry(catalog_key, persistable_values(upgraded, TIER3_WRITE_FIELDS))

        cached = self._session_cache.get(catalog_key)
        if cached is not None:
            refreshed = cached.model_copy(update={name: getattr(upgraded, name) for name in TIER3_WRITE_FIELDS})
            refreshed.embedding_text = build_embedding_text(refreshed)
            self._session_cache[catalog_key] = refreshed
        return saved

    # ------------------------------------------------------------------
    # Gap merge and counters
    # ------------------------------------------------------------------

    async def merge_catalog_data(self, existing: CatalogEntry, new_data: Dict[str, Any]) -> CatalogEntry:
        """
        Fill empty cover, description, rating, ratings count and page count from new_data.

        Populated fields are never overwritten. The store is written only when
        something actually changed; the merged entry is returned either way.
        """
        updates = {
            name: new_data.get(name)
            for name in GAP_MERGE_FIELDS
            if not getattr(existing, name) and new_data.get(name)
        }
        if not updates:
            return existing

        merged = CatalogEntry.model_validate({**existing.model_dump(), **updates})
        changed = [name for name in updates if getattr(merged, name) != getattr(existing, name)]
        if not changed:
            return existing

        await self.update_catalog_entry(existing.catalog_key, persistable_values(merged, changed))
        if existing.catalog_key in self._session_cache:
            self._session_cache[existing.catalog_key] = merged
        return merged

    async def increment_recommended(self, catalog_key: str) -> None:
        await self._increment(catalog_key, "times_recommended")

    async def increment_saved(self, catalog_key: str) -> None:
        await self._increment(catalog_key, "times_saved")

    async def _increment(self, catalog_key: str, field: str) -> None:
        try:
            await self.store.increment_counter(catalog_key, field)
            return
        except CatalogStoreError as e:
            logger.warning("[Catalog] Atomic %s increment failed for %s, falling back: %s", field, catalog_key, e)

        # Read-modify-write: can lose a concurrent increment
        entry = await self.get_from_catalog(catalog_key)
        if entry is not None:
            await self.update_catalog_entry(catalog_key, {field: getattr(entry, field) + 1})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def search_catalog(self, filters: Optional[CatalogSearchFilters] = None) -> List[CatalogEntry]:
        """Catalog-first lookup of reasonably confident entries matching the filters."""
        try:
            return await self.store.query_by_filters(filters or CatalogSearchFilters())
        except CatalogStoreError as e:
            logger.error("[Catalog] Search failed: %s", e)
            return []

    async def get_catalog_stats(self) -> CatalogStats:
        try:
            return await self.store.tier_counts()
        except CatalogStoreError as e:
            logger.error("[Catalog] Stats query failed: %s", e)
            return CatalogStats()

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    async def get_from_catalog(self, catalog_key: str) -> Optional[CatalogEntry]:
        try:
            return await self.store.get_by_key(catalog_key)
        except CatalogStoreError as e:
            logger.warning("[Catalog] Failed to read %s: %s", catalog_key, e)
            return None

    async def save_to_catalog(self, entry: CatalogEntry) -> bool:
        try:
            await self.store.upsert_by_key(entry)
        except CatalogStoreError as e:
            logger.warning('[Catalog] Failed to save "%s": %s', entry.title, e)
            return False
        logger.info('[Catalog] Saved: "%s" (Tier %s)', entry.title, entry.enrichment_tier)
        return True

    async def update_catalog_entry(self, catalog_key: str, values: Dict[str, Any]) -> bool:
        try:
            return await self.store.update_fields(catalog_key, values)
        except CatalogStoreError as e:
            logger.warning("[Catalog] Failed to update %s: %s", catalog_key, e)
            return False

    def clear_session_cache(self) -> None:
        self._session_cache.clear()
