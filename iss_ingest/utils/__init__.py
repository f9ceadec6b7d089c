"""
Utility functions and helpers.
"""
from iss_ingest.utils.logging import LogContext, setup_logging

__all__ = [
    "setup_logging",
    "LogContext",
]
