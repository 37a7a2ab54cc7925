"""
Persistence for conversations, encrypted records, classifications and incidents.
"""

from .base import (
    ConversationRepository,
    DatasetRepository,
    IncidentRepository,
    RecordRepository,
    Store,
    TenantKeyRepository,
)
from .memory import InMemoryStore
from .models import (
    Conversation,
    DatasetRecord,
    EncryptedRecord,
    Incident,
    IncidentStatus,
    ItemKind,
    RawItem,
    SourceType,
    TenantKeyMaterial,
)
from .sqlite_store import SQLiteStore

__all__ = [
    "ConversationRepository",
    "DatasetRepository",
    "IncidentRepository",
    "RecordRepository",
    "Store",
    "TenantKeyRepository",
    "InMemoryStore",
    "SQLiteStore",
    "Conversation",
    "DatasetRecord",
    "EncryptedRecord",
    "Incident",
    "IncidentStatus",
    "ItemKind",
    "RawItem",
    "SourceType",
    "TenantKeyMaterial",
]
