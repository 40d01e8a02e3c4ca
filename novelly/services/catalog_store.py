"""
Persistent catalog store backed by the book_catalog table.

Every row is addressed by its catalog key. Writes are upserts on that key,
so two writers racing to create the same book end up with one row (last
writer wins) rather than a duplicate.
"""
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from novelly.core.config import settings
from novelly.database import SessionLocal
from novelly.models import BookCatalog
from novelly.schemas.catalog import (
    COUNTER_FIELDS,
    CatalogEntry,
    CatalogSearchFilters,
    CatalogStats,
    persistable_values,
)
from novelly.utils.timing import utcnow

logger = logging.getLogger(__name__)

CATALOG_COLUMNS = frozenset(column.name for column in BookCatalog.__table__.columns)

# Never overwritten when an upsert hits an existing row
PRESERVED_ON_CONFLICT = frozenset({"id", "catalog_key", "created_at", *COUNTER_FIELDS})

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class CatalogStoreError(Exception):
    """A catalog read or write failed at the database layer."""


def _to_entry(row: BookCatalog) -> CatalogEntry:
    return CatalogEntry.model_validate(row)


def _overlaps(values: Optional[List[str]], wanted: Optional[List[str]]) -> bool:
    if not wanted:
        return True
    return bool(set(values or []) & set(wanted))


class SqlCatalogStore:
    """
    Async interface over synchronous SQLAlchemy sessions.

    The methods never suspend: each query runs to completion on the event loop,
    so store calls made "concurrently" from one hydration batch execute one
    after another. Only the external HTTP lookups in a batch overlap.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise CatalogStoreError(str(e)) from e
        finally:
            db.close()

    async def get_by_key(self, catalog_key: str) -> Optional[CatalogEntry]:
        with self._transaction() as db:
            row = db.query(BookCatalog).filter(BookCatalog.catalog_key == catalog_key).first()
            return _to_entry(row) if row else None

    async def upsert_by_key(self, entry: CatalogEntry) -> None:
        """
        Insert the entry, or overwrite the row that already has its catalog key.

        Counters and created_at of an existing row are left alone.
        """
        values = persistable_values(entry)
        now = utcnow()
        values["updated_at"] = now
        if values.get("created_at") is None:
            values["created_at"] = now

        with self._transaction() as db:
            dialect = db.get_bind().dialect.name
            insert_fn = _UPSERT_DIALECTS.get(dialect)
            if insert_fn is not None:
                stmt = insert_fn(BookCatalog).values(id=uuid.uuid4(), **values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["catalog_key"],
                    set_={name: stmt.excluded[name] for name in values if name not in PRESERVED_ON_CONFLICT},
                )
                db.execute(stmt)
                return

            row = db.query(BookCatalog).filter(BookCatalog.catalog_key == entry.catalog_key).first()
            if row is None:
                db.add(BookCatalog(**values))
            else:
                for name, value in values.items():
                    if name not in PRESERVED_ON_CONFLICT:
                        setattr(row, name, value)

    async def update_fields(self, catalog_key: str, values: Dict[str, Any]) -> bool:
        """
        Write a subset of columns for one row. Returns False when no row has that key.

        Raises ValueError for names that are not writable catalog columns.
        """
        unknown = set(values) - (CATALOG_COLUMNS - {"id", "catalog_key"})
        if unknown:
            raise ValueError(f"Not writable catalog columns: {sorted(unknown)}")
        if not values:
            return False

        with self._transaction() as db:
            result = db.execute(
                update(BookCatalog)
                .where(BookCatalog.catalog_key == catalog_key)
                .values({**values, "updated_at": utcnow()})
            )
            return result.rowcount > 0

    async def increment_counter(self, catalog_key: str, field: str) -> bool:
        """Atomically add one to a counter column: a single UPDATE ... SET x = x + 1."""
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter field: {field}")
        column = getattr(BookCatalog, field)

        with self._transaction() as db:
            result = db.execute(
                update(BookCatalog)
                .where(BookCatalog.catalog_key == catalog_key)
                .values({field: func.coalesce(column, 0) + 1})
            )
            return result.rowcount > 0

    async def query_by_filters(self, filters: CatalogSearchFilters) -> List[CatalogEntry]:
        """
        Exact matches (genre, pacing) and the confidence floor run in SQL.
        Array overlap on themes, tropes and moods is checked on the loaded rows,
        since JSON columns have no portable overlap operator.
        """
        min_confidence = filters.min_confidence
        if min_confidence is None:
            min_confidence = settings.CATALOG_MIN_SEARCH_CONFIDENCE
        limit = filters.limit or settings.CATALOG_SEARCH_DEFAULT_LIMIT
        needs_overlap = bool(filters.themes or filters.tropes or filters.mood)

        with self._transaction() as db:
            query = db.query(BookCatalog).filter(BookCatalog.confidence_score >= min_confidence)
            if filters.genre:
                query = query.filter(BookCatalog.primary_genre == filters.genre)
            if filters.pacing:
                query = query.filter(BookCatalog.pacing == filters.pacing)
            query = query.order_by(BookCatalog.created_at.asc(), BookCatalog.catalog_key.asc())
            if not needs_overlap:
                query = query.limit(limit)

            matches: List[CatalogEntry] = []
            for row in query:
                if not (
                    _overlaps(row.themes, filters.themes)
                    and _overlaps(row.tropes, filters.tropes)
                    and _overlaps(row.mood_emotions, filters.mood)
                ):
                    continue
                matches.append(_to_entry(row))
                if len(matches) >= limit:
                    break
            return matches

    async def tier_counts(self) -> CatalogStats:
        with self._transaction() as db:
            rows = (
                db.query(BookCatalog.enrichment_tier, func.count(BookCatalog.id))
                .group_by(BookCatalog.enrichment_tier)
                .all()
            )
            needs_review = (
                db.query(func.count(BookCatalog.id))
                .filter(BookCatalog.needs_review.is_(True))
                .scalar()
            )

        per_tier = {tier: count for tier, count in rows}
        return CatalogStats(
            total=sum(per_tier.values()),
            tier1=per_tier.get(1, 0),
            tier2=per_tier.get(2, 0),
            tier3=per_tier.get(3, 0),
            tier4=per_tier.get(4, 0),
            needs_review=needs_review or 0,
        )
