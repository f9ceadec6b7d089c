"""
Client package initialization.
"""
from iss_ingest.clients.base import BaseAPIClient
from iss_ingest.clients.iss import ISSClient

__all__ = [
    "BaseAPIClient",
    "ISSClient",
]
