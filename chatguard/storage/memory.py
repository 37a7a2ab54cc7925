"""
In-process store for tests and demos. Thread-safe, not durable.
"""

import copy
import itertools
import threading
from typing import Dict, List, Optional, Tuple

from .base import Store
from .models import (
    Conversation,
    DatasetRecord,
    EncryptedRecord,
    Incident,
    IncidentStatus,
    SourceType,
    TenantKeyMaterial,
)
from ..core.exceptions import CursorUpdateError, RepositoryError


class InMemoryStore(Store):
    """
    Dict-backed implementation of every repository.

    Returned objects are copies, so callers cannot mutate stored state.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.conversations: Dict[int, Conversation] = {}
        self._by_external: Dict[Tuple[str, int], int] = {}
        self.tenant_keys: Dict[int, TenantKeyMaterial] = {}
        self.records: Dict[int, EncryptedRecord] = {}
        self.dataset: Dict[int, DatasetRecord] = {}
        self.incidents: Dict[int, Incident] = {}

    # Conversations

    def upsert_conversation(self, conversation: Conversation) -> Conversation:
        key = (SourceType(conversation.source).value, conversation.external_id)
        with self._lock:
            existing_id = self._by_external.get(key)
            if existing_id is not None:
                return copy.copy(self.conversations[existing_id])
            stored = copy.copy(conversation)
            stored.id = next(self._ids)
            self.conversations[stored.id] = stored
            self._by_external[key] = stored.id
            return copy.copy(stored)

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        with self._lock:
            conversation = self.conversations.get(conversation_id)
            return copy.copy(conversation) if conversation else None

    def find_conversation(
        self, source: SourceType, external_id: int
    ) -> Optional[Conversation]:
        with self._lock:
            conversation_id = self._by_external.get((SourceType(source).value, external_id))
            if conversation_id is None:
                return None
            return copy.copy(self.conversations[conversation_id])

    def list_conversations(self, active_only: bool = False) -> List[Conversation]:
        with self._lock:
            return [
                copy.copy(c)
                for c in self.conversations.values()
                if c.monitoring_active or not active_only
            ]

    def advance_cursor(self, conversation_id: int, cursor: int) -> int:
        with self._lock:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                raise CursorUpdateError(f"unknown conversation {conversation_id}")
            conversation.cursor = max(conversation.cursor, cursor)
            return conversation.cursor

    def set_monitoring(self, conversation_id: int, active: bool) -> None:
        with self._lock:
            conversation = self.conversations.get(conversation_id)
            if conversation is None:
                raise RepositoryError(f"unknown conversation {conversation_id}")
            conversation.monitoring_active = active

    # Tenant keys

    def get_tenant_key(self, owner_id: int) -> Optional[TenantKeyMaterial]:
        with self._lock:
            return self.tenant_keys.get(owner_id)

    def put_tenant_key(self, material: TenantKeyMaterial) -> None:
        with self._lock:
            self.tenant_keys.setdefault(material.owner_id, material)

    # Encrypted records

    def add_record(self, record: EncryptedRecord) -> EncryptedRecord:
        with self._lock:
            stored = copy.copy(record)
            stored.id = next(self._ids)
            self.records[stored.id] = stored
            return copy.copy(stored)

    def get_record(self, record_id: int) -> Optional[EncryptedRecord]:
        with self._lock:
            record = self.records.get(record_id)
            return copy.copy(record) if record else None

    def list_records(self, conversation_id: int) -> List[EncryptedRecord]:
        with self._lock:
            return [
                copy.copy(r)
                for r in self.records.values()
                if r.conversation_id == conversation_id
            ]

    # Dataset

    def add_dataset_record(self, record: DatasetRecord) -> DatasetRecord:
        with self._lock:
            if record.record_id not in self.records:
                raise RepositoryError(f"unknown encrypted record {record.record_id}")
            stored = copy.copy(record)
            stored.id = next(self._ids)
            self.dataset[stored.id] = stored
            return copy.copy(stored)

    def list_dataset_records(
        self, category_id: Optional[int] = None, validated: Optional[bool] = None
    ) -> List[DatasetRecord]:
        with self._lock:
            return [
                copy.copy(r)
                for r in self.dataset.values()
                if (category_id is None or r.category_id == category_id)
                and (validated is None or r.is_validated == validated)
            ]

    def validate_dataset_record(self, dataset_id: int) -> None:
        with self._lock:
            record = self.dataset.get(dataset_id)
            if record is None:
                raise RepositoryError(f"unknown dataset record {dataset_id}")
            record.is_validated = True

    # Incidents

    def add_incident(self, incident: Incident) -> Incident:
        with self._lock:
            if incident.record_id not in self.records:
                raise RepositoryError(f"unknown encrypted record {incident.record_id}")
            stored = copy.copy(incident)
            stored.id = next(self._ids)
            self.incidents[stored.id] = stored
            return copy.copy(stored)

    def get_incident(self, incident_id: int) -> Optional[Incident]:
        with self._lock:
            incident = self.incidents.get(incident_id)
            return copy.copy(incident) if incident else None

    def list_incidents(self, status: Optional[IncidentStatus] = None) -> List[Incident]:
        with self._lock:
            return [
                copy.copy(i)
                for i in self.incidents.values()
                if status is None or i.status == status
            ]

    def update_incident_status(
        self, incident_id: int, status: IncidentStatus
    ) -> Incident:
        status = IncidentStatus(status)
        with self._lock:
            incident = self.incidents.get(incident_id)
            if incident is None:
                raise RepositoryError(f"unknown incident {incident_id}")
            if not incident.status.can_transition_to(status):
                raise RepositoryError(
                    f"invalid incident transition {incident.status.value} -> {status.value}"
                )
            incident.status = status
            return copy.copy(incident)

    def set_incident_access(self, incident_id: int, granted: bool) -> None:
        with self._lock:
            incident = self.incidents.get(incident_id)
            if incident is None:
                raise RepositoryError(f"unknown incident {incident_id}")
            incident.access_granted = granted
