"""
ChatGuard - Version and metadata
"""

__version__ = "0.4.2"
__author__ = "ChatGuard Contributors"
__license__ = "MIT"
__description__ = (
    "Chat threat monitoring: encrypted ingestion and multi-provider classification"
)
