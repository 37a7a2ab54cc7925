"""
Source collector interface.

A collector exposes chats discovered on a platform and the items posted in
them after a given item id. Calls must be idempotent and accept since=0.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..core.context import RequestContext
from ..storage.models import RawItem, SourceType


@dataclass
class DiscoveredConversation:
    """A chat as reported by the collector."""

    id: int
    source: SourceType
    name: str = ""
    kind: str = "chat"
    is_group: bool = False


class SourceCollector(ABC):
    """Fetches conversations and new items from chat platforms."""

    @abstractmethod
    def fetch_conversations(
        self, ctx: Optional[RequestContext] = None
    ) -> List[DiscoveredConversation]:
        """
        List every conversation visible to the collector.

        Raises:
            SourceFetchError: collector unreachable or response unusable
        """

    @abstractmethod
    def fetch_items(
        self,
        source: SourceType,
        conversation_id: int,
        since_item_id: int,
        limit: int = 100,
        ctx: Optional[RequestContext] = None,
    ) -> List[RawItem]:
        """
        Items of one conversation with id greater than `since_item_id`.

        Order is unspecified.

        Raises:
            SourceFetchError: collector unreachable or response unusable
        """

    def close(self) -> None:
        pass
