"""
ISS Ingest package.
MOEX ISS market data ingestion: reference taxonomy, board trades and candles.
"""
from iss_ingest.config import Settings, get_settings
from iss_ingest.models import EmptyDayPolicy, SinkKind, SyncMode, Table

__version__ = "1.0.0"
__all__ = ["get_settings", "Settings", "Table", "SyncMode", "SinkKind", "EmptyDayPolicy"]
