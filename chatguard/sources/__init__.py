"""
Chat sources feeding the ingestion pipeline.
"""

from .base import DiscoveredConversation, SourceCollector
from .http_collector import HttpCollectorClient

__all__ = ["DiscoveredConversation", "SourceCollector", "HttpCollectorClient"]
