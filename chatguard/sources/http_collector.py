"""
HTTP client for the collector service.

The collector fronts the platform scrapers and exposes, per source:
- telegram: GET /telegram/chats, GET /telegram/collect
- vk: GET /vk/conversations, GET /vk/messages/collect
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import RequestException, Timeout

from .base import DiscoveredConversation, SourceCollector
from ..core.context import RequestContext
from ..core.exceptions import CancelledError, SourceFetchError
from ..storage.models import ItemKind, RawItem, SourceType

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15

# Per-source endpoints: (chats path, chats key, collect path, chat param, cursor param)
_ENDPOINTS = {
    SourceType.TELEGRAM: (
        "/telegram/chats",
        "chats",
        "/telegram/collect",
        "chat_id",
        "last_collected_message_id",
    ),
    SourceType.VK: (
        "/vk/conversations",
        "conversations",
        "/vk/messages/collect",
        "peer_id",
        "last_message_id",
    ),
}

# Fractional seconds beyond microseconds (e.g. Go's RFC3339Nano)
_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp, falling back to now (UTC)."""
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        text = _EXTRA_FRACTION.sub(r"\1", value.strip().replace("Z", "+00:00"))
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable timestamp {value!r}")
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def _list_field(data: Dict[str, Any], key: str) -> List[Any]:
    """A list-valued response field; missing or null means empty."""
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise SourceFetchError(
            f"unexpected collector response: '{key}' is {type(value).__name__}, not a list"
        )
    return value


def _item_kind(value: Any) -> ItemKind:
    try:
        return ItemKind(value)
    except ValueError:
        return ItemKind.MESSAGE


class HttpCollectorClient(SourceCollector):
    """
    Collector client over HTTP (requests).

    Args:
        base_url: Collector service root (e.g. http://localhost:8001)
        sources: Enabled source types, queried in order during discovery
        timeout: Per-request timeout in seconds (default: 15)
    """

    def __init__(
        self,
        base_url: str,
        sources: Optional[List[str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.sources = [SourceType(s) for s in (sources or [SourceType.TELEGRAM.value])]
        self.timeout = timeout
        self.session = requests.Session()

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "HttpCollectorClient":
        collector = cfg.get("collector", {})
        return cls(
            collector.get("base_url", "http://localhost:8001"),
            sources=collector.get("sources"),
            timeout=float(collector.get("timeout", DEFAULT_TIMEOUT)),
        )

    def _get(
        self, ctx: Optional[RequestContext], path: str, params: Optional[Dict] = None
    ) -> Dict[str, Any]:
        ctx = ctx or RequestContext.background()
        ctx.check()
        timeout = self.timeout
        remaining = ctx.remaining()
        if remaining is not None:
            if remaining <= 0:
                raise CancelledError("collector request deadline exceeded")
            timeout = min(timeout, remaining)

        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=timeout)
        except Timeout as e:
            raise SourceFetchError(f"collector request timed out: {path}") from e
        except RequestException as e:
            raise SourceFetchError(f"failed to reach collector: {e}") from e

        if response.status_code != 200:
            raise SourceFetchError(
                f"collector returned status {response.status_code} for {path}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise SourceFetchError(f"failed to decode collector response: {e}") from e
        if not isinstance(data, dict):
            raise SourceFetchError(f"unexpected collector response for {path}")
        return data

    def fetch_conversations(
        self, ctx: Optional[RequestContext] = None
    ) -> List[DiscoveredConversation]:
        conversations: List[DiscoveredConversation] = []
        for source in self.sources:
            chats_path, chats_key = _ENDPOINTS[source][:2]
            data = self._get(ctx, chats_path)
            chats = _list_field(data, chats_key)
            for chat in chats:
                try:
                    conversations.append(
                        DiscoveredConversation(
                            id=int(chat["id"]),
                            source=source,
                            name=str(chat.get("name") or ""),
                            kind=str(chat.get("type") or "chat"),
                            is_group=bool(chat.get("is_group", False)),
                        )
                    )
                except (AttributeError, KeyError, TypeError, ValueError) as e:
                    raise SourceFetchError(
                        f"malformed {source.value} chat from collector: {e!r}"
                    ) from e
            logger.info(f"Fetched {len(chats)} {source.value} chats")
        return conversations

    def fetch_items(
        self,
        source: SourceType,
        conversation_id: int,
        since_item_id: int,
        limit: int = 100,
        ctx: Optional[RequestContext] = None,
    ) -> List[RawItem]:
        source = SourceType(source)
        _, _, collect_path, chat_param, cursor_param = _ENDPOINTS[source]
        data = self._get(
            ctx,
            collect_path,
            params={chat_param: conversation_id, cursor_param: since_item_id, "limit": limit},
        )

        items = []
        for message in _list_field(data, "messages"):
            try:
                items.append(
                    RawItem(
                        id=int(message["id"]),
                        conversation_external_id=int(message.get("chat_id", conversation_id)),
                        sender=message.get("sender_username", ""),
                        timestamp=parse_timestamp(message.get("timestamp")),
                        text=message.get("text") or "",
                        kind=_item_kind(message.get("type", "message")),
                        source=source,
                    )
                )
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise SourceFetchError(f"malformed item from collector: {e!r}") from e

        logger.debug(
            f"Fetched {len(items)} items for {source.value} chat {conversation_id} "
            f"since {since_item_id}"
        )
        return items

    def close(self) -> None:
        self.session.close()
