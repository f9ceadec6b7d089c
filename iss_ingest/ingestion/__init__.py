"""
Ingestion package.
Taxonomy walk, fact pagination, calendar windows and batched sink writes.
"""
from iss_ingest.ingestion.batch import BatchIngestor, chunked
from iss_ingest.ingestion.calendar import CalendarWindowWalker, WalkResult, calendar_windows
from iss_ingest.ingestion.orchestrator import IngestionOrchestrator, IngestionResult, RunKind
from iss_ingest.ingestion.pagination import FactPage, PaginatedFactStream
from iss_ingest.ingestion.reference import ReferenceSynchronizer, SyncResult
from iss_ingest.ingestion.taxonomy import TaxonomyFilter, TaxonomyResult, TaxonomyWalker

__all__ = [
    "BatchIngestor",
    "chunked",
    "CalendarWindowWalker",
    "WalkResult",
    "calendar_windows",
    "IngestionOrchestrator",
    "IngestionResult",
    "RunKind",
    "FactPage",
    "PaginatedFactStream",
    "ReferenceSynchronizer",
    "SyncResult",
    "TaxonomyFilter",
    "TaxonomyResult",
    "TaxonomyWalker",
]
