"""
Ingestion pipeline: discover, fetch, encrypt, persist, classify, record.

Per conversation and cycle:
    fetch items newer than the cursor
    -> for each item: encrypt + persist, classify, persist the dataset record,
       raise an incident when the category is not neutral
    -> advance the cursor once to the highest persisted item id

Processing is at-least-once: a crash before the cursor write reprocesses the
batch on the next cycle.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from .context import RequestContext
from .crypto import KeyManager
from .exceptions import CancelledError, ChatGuardError, KeyUnwrapError
from .notifier import LoggingNotifier, Notifier
from ..providers.base import ClassificationResult
from ..sources.base import SourceCollector
from ..storage.base import Store
from ..storage.models import (
    Conversation,
    DatasetRecord,
    EncryptedRecord,
    Incident,
    RawItem,
    TenantKeyMaterial,
)

logger = logging.getLogger(__name__)

# Characters of the original message kept in an incident summary
SUMMARY_SNIPPET_CHARS = 200


@dataclass
class CycleReport:
    """Counters for one polling cycle (or one conversation)."""

    conversations: int = 0
    discovered: int = 0
    items: int = 0
    records: int = 0
    classified: int = 0
    incidents: int = 0
    errors: int = 0

    def merge(self, other: "CycleReport") -> None:
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def provision_tenant_key(
    store: Store, key_manager: KeyManager, owner_id: int
) -> TenantKeyMaterial:
    """Return the owner's key material, generating it on first use."""
    material = store.get_tenant_key(owner_id)
    if material is None:
        store.put_tenant_key(
            TenantKeyMaterial(owner_id, key_manager.generate_and_wrap_key())
        )
        # Re-read so a concurrent provisioner's key wins
        material = store.get_tenant_key(owner_id)
        logger.info(f"Provisioned data key for owner {owner_id}")
    return material


def build_summary(result: ClassificationResult, text: str) -> str:
    """Short human-readable incident summary (encrypted before storage)."""
    snippet = text[:SUMMARY_SNIPPET_CHARS]
    if len(text) > SUMMARY_SNIPPET_CHARS:
        snippet += "..."
    summary = f"[{result.category_name}] {result.justification}".strip()
    return f"{summary}\n{snippet}" if snippet else summary


class IngestionPipeline:
    """
    Ties the collector, key manager, classifier and store together.

    Args:
        store: Repositories for every persisted record
        collector: Source of conversations and items
        classifier: Anything with `classify(ctx, text) -> ClassificationResult`
            (usually a FailoverClient)
        key_manager: Envelope encryption service
        notifier: Incident notification channel (log-only by default)
        page_size: Max items fetched per conversation and cycle
        conversation_delay: Seconds to pause between conversations
        classification_timeout: Deadline for one classification, in seconds
        fetch_timeout: Deadline for one collector call, in seconds
        default_owner_id: Owner assigned to newly discovered conversations
    """

    def __init__(
        self,
        store: Store,
        collector: SourceCollector,
        classifier: Any,
        key_manager: KeyManager,
        notifier: Optional[Notifier] = None,
        page_size: int = 100,
        conversation_delay: float = 2.0,
        classification_timeout: float = 30.0,
        fetch_timeout: float = 15.0,
        default_owner_id: int = 1,
    ):
        self.store = store
        self.collector = collector
        self.classifier = classifier
        self.key_manager = key_manager
        self.notifier = notifier or LoggingNotifier()
        self.page_size = page_size
        self.conversation_delay = conversation_delay
        self.classification_timeout = classification_timeout
        self.fetch_timeout = fetch_timeout
        self.default_owner_id = default_owner_id

    @classmethod
    def from_config(
        cls,
        cfg: Dict[str, Any],
        store: Store,
        collector: SourceCollector,
        classifier: Any,
        key_manager: KeyManager,
        notifier: Optional[Notifier] = None,
    ) -> "IngestionPipeline":
        return cls(
            store,
            collector,
            classifier,
            key_manager,
            notifier=notifier,
            page_size=int(cfg.get("page_size", 100)),
            conversation_delay=float(cfg.get("conversation_delay", 2)),
            classification_timeout=float(cfg.get("classification_timeout", 30)),
            fetch_timeout=float(cfg.get("collector", {}).get("timeout", 15)),
            default_owner_id=int(cfg.get("default_owner_id", 1)),
        )

    def ensure_tenant_key(self, owner_id: int) -> TenantKeyMaterial:
        return provision_tenant_key(self.store, self.key_manager, owner_id)

    def discover(self, ctx: Optional[RequestContext] = None) -> int:
        """
        Register conversations the collector knows about.

        New conversations start active with cursor 0; known ones are untouched.

        Returns:
            Number of newly registered conversations
        """
        ctx = ctx or RequestContext.background()
        discovered = self.collector.fetch_conversations(ctx.child(self.fetch_timeout))

        new_count = 0
        for found in discovered:
            if self.store.find_conversation(found.source, found.id) is not None:
                continue
            conversation = self.store.upsert_conversation(
                Conversation(
                    external_id=found.id,
                    source=found.source,
                    name=found.name,
                    is_group=found.is_group,
                    owner_id=self.default_owner_id,
                )
            )
            new_count += 1
            logger.info(
                f"New {found.source.value} conversation discovered: "
                f"{conversation.name!r} (id {conversation.id})"
            )
        return new_count

    def process_conversation(
        self, conversation: Conversation, ctx: Optional[RequestContext] = None
    ) -> CycleReport:
        """
        Fetch and process new items of one conversation, then advance its cursor.

        Per-item failures are logged and counted. Collector, key and cursor
        failures propagate to the caller.
        """
        ctx = ctx or RequestContext.background()
        report = CycleReport(conversations=1)

        material = self.store.get_tenant_key(conversation.owner_id)
        if material is None:
            raise KeyUnwrapError(
                f"no data key provisioned for owner {conversation.owner_id}"
            )

        items = self.collector.fetch_items(
            conversation.source,
            conversation.external_id,
            conversation.cursor,
            limit=self.page_size,
            ctx=ctx.child(self.fetch_timeout),
        )
        report.items = len(items)
        if not items:
            logger.debug(f"No new items for conversation {conversation.id}")
            return report

        logger.info(f"Processing {len(items)} items for conversation {conversation.id}")

        max_item_id = conversation.cursor
        for item in items:
            ctx.check()
            if self._process_item(conversation, material, item, ctx, report):
                max_item_id = max(max_item_id, item.id)

        if max_item_id > conversation.cursor:
            conversation.cursor = self.store.advance_cursor(conversation.id, max_item_id)
            logger.debug(
                f"Cursor of conversation {conversation.id} advanced to {conversation.cursor}"
            )
        return report

    def _process_item(
        self,
        conversation: Conversation,
        material: TenantKeyMaterial,
        item: RawItem,
        ctx: RequestContext,
        report: CycleReport,
    ) -> bool:
        """
        Run one item through the pipeline.

        Returns:
            True once the encrypted record is durably stored
        """
        try:
            ciphertext = self.key_manager.encrypt(
                item.text, conversation.owner_id, material.wrapped_data_key
            )
            record = self.store.add_record(
                EncryptedRecord(
                    conversation_id=conversation.id,
                    source_item_id=item.id,
                    owner_id=conversation.owner_id,
                    ciphertext=ciphertext,
                    sender=item.sender,
                    timestamp=item.timestamp,
                    kind=item.kind,
                    source=conversation.source,
                )
            )
        except ChatGuardError as e:
            report.errors += 1
            logger.error(f"Failed to store item {item.id} of conversation {conversation.id}: {e}")
            return False
        report.records += 1

        try:
            result = self.classifier.classify(
                ctx.child(self.classification_timeout), item.text
            )
        except CancelledError:
            if ctx.cancelled():
                raise
            report.errors += 1
            logger.error(f"Classification of item {item.id} timed out")
            return True
        except ChatGuardError as e:
            report.errors += 1
            logger.error(f"Failed to classify item {item.id}: {e}")
            return True

        report.classified += 1
        logger.info(
            f"Item {item.id} classified as {result.category_id} "
            f"({result.category_name}) by {result.provider}"
        )
        self._save_dataset_record(record, result, report)

        if result.is_threat:
            self._raise_incident(conversation, material, record, item, result, report)
        return True

    def _save_dataset_record(
        self, record: EncryptedRecord, result: ClassificationResult, report: CycleReport
    ) -> None:
        try:
            self.store.add_dataset_record(
                DatasetRecord(
                    record_id=record.id,
                    category_id=result.category_id,
                    category_name=result.category_name,
                    justification=result.justification,
                    confidence=result.confidence,
                    provider=result.provider,
                    model=result.model,
                    annotated_at=result.annotated_at,
                    source=record.source,
                )
            )
        except ChatGuardError as e:
            report.errors += 1
            logger.error(f"Failed to save dataset record for record {record.id}: {e}")

    def _raise_incident(
        self,
        conversation: Conversation,
        material: TenantKeyMaterial,
        record: EncryptedRecord,
        item: RawItem,
        result: ClassificationResult,
        report: CycleReport,
    ) -> None:
        try:
            summary = self.key_manager.encrypt(
                build_summary(result, item.text),
                conversation.owner_id,
                material.wrapped_data_key,
            )
            incident = self.store.add_incident(
                Incident(
                    record_id=record.id,
                    category_id=result.category_id,
                    category_name=result.category_name,
                    confidence=result.confidence,
                    summary_encrypted=summary,
                    conversation_name=conversation.name,
                    source=conversation.source,
                )
            )
        except ChatGuardError as e:
            report.errors += 1
            logger.error(f"Failed to record incident for record {record.id}: {e}")
            return

        report.incidents += 1
        logger.warning(
            f"Incident {incident.id} raised: {result.category_name} "
            f"in conversation {conversation.id}"
        )
        try:
            self.notifier.notify(
                conversation.owner_id,
                {
                    "incident_id": incident.id,
                    "category_id": incident.category_id,
                    "category_name": incident.category_name,
                    "confidence": incident.confidence,
                    "conversation_id": conversation.id,
                    "conversation_name": conversation.name,
                    "source": conversation.source.value,
                },
            )
        except Exception as e:
            logger.error(f"Failed to notify owner {conversation.owner_id}: {e}")

    def run_cycle(self, ctx: Optional[RequestContext] = None) -> CycleReport:
        """
        One polling cycle over every active conversation.

        Per-conversation failures are logged and never abort the cycle.

        Raises:
            CancelledError: the context was cancelled
        """
        ctx = ctx or RequestContext.background()
        report = CycleReport()

        try:
            report.discovered = self.discover(ctx)
        except CancelledError:
            if ctx.cancelled():
                raise
            report.errors += 1
            logger.error("Conversation discovery timed out")
        except ChatGuardError as e:
            report.errors += 1
            logger.error(f"Conversation discovery failed: {e}")

        try:
            conversations = self.store.list_conversations(active_only=True)
        except ChatGuardError as e:
            report.errors += 1
            logger.error(f"Failed to list conversations: {e}")
            return report

        if not conversations:
            logger.info("No conversations configured for monitoring")
            return report

        for index, conversation in enumerate(conversations):
            ctx.check()
            try:
                report.merge(self.process_conversation(conversation, ctx))
            except CancelledError:
                if ctx.cancelled():
                    raise
                report.conversations += 1
                report.errors += 1
                logger.error(f"Conversation {conversation.id} timed out")
            except ChatGuardError as e:
                report.conversations += 1
                report.errors += 1
                logger.error(f"Failed to process conversation {conversation.id}: {e}")

            if index < len(conversations) - 1 and self.conversation_delay > 0:
                if ctx.wait(self.conversation_delay):
                    raise CancelledError("polling cycle cancelled")

        logger.info(f"Cycle finished: {report.to_dict()}")
        return report
