"""
Process-wide service wiring. main.py builds one container at startup and routers
reach it through novelly.dependencies.get_container.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from novelly.database import SessionLocal
from novelly.services.book_lookup import BookLookupChain, default_lookup_chain
from novelly.services.catalog_service import CatalogService
from novelly.services.catalog_store import SqlCatalogStore
from novelly.services.enrichment_worker import EnrichmentWorker
from novelly.services.feed_service import FeedService
from novelly.services.history_service import HistoryService
from novelly.services.hydration import HydrationService
from novelly.services.library_service import LibraryService
from novelly.services.llm import PerplexityClient
from novelly.services.recommendation_service import RecommendationService


@dataclass
class ServiceContainer:
    catalog: CatalogService
    enrichment: EnrichmentWorker
    hydration: HydrationService
    library: LibraryService
    history: HistoryService
    feed: FeedService
    recommendations: RecommendationService


def build_container(
    session_factory: Optional[sessionmaker] = None,
    llm: Optional[PerplexityClient] = None,
    lookup: Optional[BookLookupChain] = None,
) -> ServiceContainer:
    session_factory = session_factory or SessionLocal
    llm = llm or PerplexityClient()
    lookup = lookup or default_lookup_chain()

    catalog = CatalogService(SqlCatalogStore(session_factory), llm)
    enrichment = EnrichmentWorker(catalog)
    hydration = HydrationService(catalog, lookup, enrichment)
    history = HistoryService(session_factory)

    return ServiceContainer(
        catalog=catalog,
        enrichment=enrichment,
        hydration=hydration,
        library=LibraryService(catalog, session_factory),
        history=history,
        feed=FeedService(hydration, llm, session_factory),
        recommendations=RecommendationService(llm, hydration, history),
    )
