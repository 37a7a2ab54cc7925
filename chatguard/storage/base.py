"""
Repository interfaces used by the ingestion pipeline.

Implementations raise RepositoryError (CursorUpdateError for cursor writes)
and must never lower a stored conversation cursor.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import (
    Conversation,
    DatasetRecord,
    EncryptedRecord,
    Incident,
    IncidentStatus,
    SourceType,
    TenantKeyMaterial,
)


class ConversationRepository(ABC):
    @abstractmethod
    def upsert_conversation(self, conversation: Conversation) -> Conversation:
        """
        Insert the conversation if (source, external_id) is unknown.

        Existing conversations are returned untouched, so rediscovery never
        resets a cursor or a monitoring flag.
        """

    @abstractmethod
    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        pass

    @abstractmethod
    def find_conversation(
        self, source: SourceType, external_id: int
    ) -> Optional[Conversation]:
        pass

    @abstractmethod
    def list_conversations(self, active_only: bool = False) -> List[Conversation]:
        pass

    @abstractmethod
    def advance_cursor(self, conversation_id: int, cursor: int) -> int:
        """
        Raise the stored cursor to `cursor` if it is higher.

        Returns:
            The stored cursor after the update

        Raises:
            CursorUpdateError: if the conversation is unknown or the write fails
        """

    @abstractmethod
    def set_monitoring(self, conversation_id: int, active: bool) -> None:
        pass


class TenantKeyRepository(ABC):
    @abstractmethod
    def get_tenant_key(self, owner_id: int) -> Optional[TenantKeyMaterial]:
        pass

    @abstractmethod
    def put_tenant_key(self, material: TenantKeyMaterial) -> None:
        """Store key material. Existing material for the owner is kept."""


class RecordRepository(ABC):
    @abstractmethod
    def add_record(self, record: EncryptedRecord) -> EncryptedRecord:
        """Persist an encrypted record and return it with its id set."""

    @abstractmethod
    def get_record(self, record_id: int) -> Optional[EncryptedRecord]:
        pass

    @abstractmethod
    def list_records(self, conversation_id: int) -> List[EncryptedRecord]:
        pass


class DatasetRepository(ABC):
    @abstractmethod
    def add_dataset_record(self, record: DatasetRecord) -> DatasetRecord:
        pass

    @abstractmethod
    def list_dataset_records(
        self, category_id: Optional[int] = None, validated: Optional[bool] = None
    ) -> List[DatasetRecord]:
        pass

    @abstractmethod
    def validate_dataset_record(self, dataset_id: int) -> None:
        """Mark a classification as confirmed by a reviewer."""

    def dataset_stats(self) -> Dict[str, Any]:
        """Totals, validated count and per-category counts."""
        records = self.list_dataset_records()
        by_category: Dict[int, int] = {}
        for record in records:
            by_category[record.category_id] = by_category.get(record.category_id, 0) + 1
        return {
            "total_entries": len(records),
            "validated_entries": sum(1 for r in records if r.is_validated),
            "by_category": by_category,
        }


class IncidentRepository(ABC):
    @abstractmethod
    def add_incident(self, incident: Incident) -> Incident:
        pass

    @abstractmethod
    def get_incident(self, incident_id: int) -> Optional[Incident]:
        pass

    @abstractmethod
    def list_incidents(self, status: Optional[IncidentStatus] = None) -> List[Incident]:
        pass

    @abstractmethod
    def update_incident_status(
        self, incident_id: int, status: IncidentStatus
    ) -> Incident:
        """
        Move an incident along its lifecycle.

        Raises:
            RepositoryError: unknown incident or transition not allowed
        """

    @abstractmethod
    def set_incident_access(self, incident_id: int, granted: bool) -> None:
        pass


class Store(
    ConversationRepository,
    TenantKeyRepository,
    RecordRepository,
    DatasetRepository,
    IncidentRepository,
):
    """All repositories behind one backend."""

    def close(self) -> None:
        """Release backend resources."""
