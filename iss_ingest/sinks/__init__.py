"""
Sink package initialization.
Exports sink backends and the run-wide factory.
"""
from typing import Optional

from iss_ingest.config import Settings, get_settings
from iss_ingest.models import SinkKind
from iss_ingest.sinks.base import Sink
from iss_ingest.sinks.database import DatabaseSink
from iss_ingest.sinks.files import FileSink

__all__ = [
    "Sink",
    "DatabaseSink",
    "FileSink",
    "get_sink",
    "SINK_REGISTRY",
]

SINK_REGISTRY: dict[SinkKind, type[Sink]] = {
    SinkKind.DATABASE: DatabaseSink,
    SinkKind.FILES: FileSink,
}


def get_sink(settings: Optional[Settings] = None) -> Sink:
    """
    Build the sink selected for this run.

    Raises:
        ValueError: If no sink is registered for the configured kind
    """
    settings = settings or get_settings()
    sink_class = SINK_REGISTRY.get(SinkKind(settings.sink))
    if not sink_class:
        raise ValueError(f"No sink registered for kind: {settings.sink}")
    return sink_class(settings=settings)
