"""
Incident notifications.

Delivery channels are pluggable; the default one only writes a log line.
Payloads never contain message text.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    def notify(self, owner_id: int, payload: Dict[str, Any]) -> None:
        """Tell the owner of a conversation about a new incident."""


class LoggingNotifier(Notifier):
    """Log-only notifier, used when no delivery channel is configured."""

    def notify(self, owner_id: int, payload: Dict[str, Any]) -> None:
        logger.info(
            f"Incident {payload.get('incident_id')} for owner {owner_id}: "
            f"{payload.get('category_name')} in '{payload.get('conversation_name', '')}' "
            f"(confidence {payload.get('confidence', 0):.2f})"
        )


class RecordingNotifier(Notifier):
    """Keeps every notification in memory. Handy for tests and dry runs."""

    def __init__(self):
        self.sent: List[Tuple[int, Dict[str, Any]]] = []

    def notify(self, owner_id: int, payload: Dict[str, Any]) -> None:
        self.sent.append((owner_id, dict(payload)))
