"""
Persistent records of the ingestion pipeline.

Plaintext message bodies only ever live in RawItem, which is never stored.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional


class SourceType(str, Enum):
    """Closed set of chat origins."""

    TELEGRAM = "telegram"
    VK = "vk"


class ItemKind(str, Enum):
    MESSAGE = "message"
    POST = "post"
    COMMENT = "comment"


class IncidentStatus(str, Enum):
    """Incident lifecycle: new -> reviewed -> resolved | false_positive."""

    NEW = "new"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"

    def can_transition_to(self, target: "IncidentStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: Dict[IncidentStatus, FrozenSet[IncidentStatus]] = {
    IncidentStatus.NEW: frozenset({IncidentStatus.REVIEWED}),
    IncidentStatus.REVIEWED: frozenset(
        {IncidentStatus.RESOLVED, IncidentStatus.FALSE_POSITIVE}
    ),
    IncidentStatus.RESOLVED: frozenset(),
    IncidentStatus.FALSE_POSITIVE: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Conversation:
    """
    A monitored chat.

    `id` is assigned by the store. `cursor` is the highest source item id
    already durably processed (0 = nothing collected yet) and never decreases.
    """

    external_id: int
    source: SourceType
    name: str = ""
    is_group: bool = False
    owner_id: int = 1
    monitoring_active: bool = True
    cursor: int = 0
    id: Optional[int] = None


@dataclass
class RawItem:
    """One item fetched from a source. Consumed once, never persisted."""

    id: int
    conversation_external_id: int
    sender: str
    timestamp: datetime
    text: str
    kind: ItemKind = ItemKind.MESSAGE
    source: SourceType = SourceType.TELEGRAM

    def __repr__(self) -> str:
        # Keep message bodies out of logs and tracebacks
        return (
            f"RawItem(id={self.id}, conversation={self.conversation_external_id}, "
            f"kind={self.kind.value}, chars={len(self.text)})"
        )


@dataclass
class EncryptedRecord:
    conversation_id: int
    source_item_id: int
    owner_id: int
    ciphertext: str
    sender: str = ""
    timestamp: Optional[datetime] = None
    kind: ItemKind = ItemKind.MESSAGE
    source: SourceType = SourceType.TELEGRAM
    id: Optional[int] = None


@dataclass
class TenantKeyMaterial:
    owner_id: int
    wrapped_data_key: str
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class DatasetRecord:
    """
    Classification of one encrypted record, kept for model evaluation.

    Only the reference to the record is stored, never the message text.
    """

    record_id: int
    category_id: int
    category_name: str
    justification: str
    confidence: float
    provider: str
    model: str
    annotated_at: datetime
    source: SourceType = SourceType.TELEGRAM
    is_validated: bool = False
    id: Optional[int] = None


@dataclass
class Incident:
    record_id: int
    category_id: int
    category_name: str
    confidence: float
    summary_encrypted: str
    conversation_name: str = ""
    source: SourceType = SourceType.TELEGRAM
    status: IncidentStatus = IncidentStatus.NEW
    access_granted: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None
