"""
Unit tests for the repositories, run against both store implementations.
"""

from datetime import datetime, timezone

import pytest

from chatguard.core.exceptions import CursorUpdateError, RepositoryError
from chatguard.storage.memory import InMemoryStore
from chatguard.storage.models import (
    Conversation,
    DatasetRecord,
    EncryptedRecord,
    Incident,
    IncidentStatus,
    ItemKind,
    SourceType,
    TenantKeyMaterial,
)
from chatguard.storage.sqlite_store import SQLiteStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStore()
    else:
        backend = SQLiteStore(str(tmp_path / "store.db"))
    yield backend
    backend.close()


def _conversation(store, external_id=100, source=SourceType.TELEGRAM, **kwargs):
    return store.upsert_conversation(
        Conversation(external_id=external_id, source=source, name="Class 7B", **kwargs)
    )


def _record(store, conversation, item_id=1):
    return store.add_record(
        EncryptedRecord(
            conversation_id=conversation.id,
            source_item_id=item_id,
            owner_id=conversation.owner_id,
            ciphertext="c2VhbGVk",
            sender="alice",
            timestamp=datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
            kind=ItemKind.MESSAGE,
        )
    )


def _dataset(record, category_id=9):
    return DatasetRecord(
        record_id=record.id,
        category_id=category_id,
        category_name="label",
        justification="because",
        confidence=0.9,
        provider="groq",
        model="llama",
        annotated_at=datetime.now(timezone.utc),
    )


def _incident(record):
    return Incident(
        record_id=record.id,
        category_id=7,
        category_name="Financial fraud",
        confidence=0.8,
        summary_encrypted="ZW5j",
    )


class TestConversations:
    def test_new_conversation_defaults(self, store):
        conversation = _conversation(store)

        assert conversation.id is not None
        assert conversation.cursor == 0
        assert conversation.monitoring_active is True

    def test_upsert_leaves_existing_untouched(self, store):
        original = _conversation(store)
        store.advance_cursor(original.id, 50)
        store.set_monitoring(original.id, False)

        again = store.upsert_conversation(
            Conversation(external_id=100, source=SourceType.TELEGRAM, cursor=0)
        )

        assert again.id == original.id
        assert again.cursor == 50
        assert again.monitoring_active is False
        assert len(store.list_conversations()) == 1

    def test_same_external_id_on_other_source(self, store):
        telegram = _conversation(store, 100, SourceType.TELEGRAM)
        vk = _conversation(store, 100, SourceType.VK)

        assert telegram.id != vk.id
        assert store.find_conversation(SourceType.VK, 100).id == vk.id

    def test_find_unknown(self, store):
        assert store.find_conversation(SourceType.TELEGRAM, 999) is None
        assert store.get_conversation(999) is None

    def test_cursor_never_decreases(self, store):
        conversation = _conversation(store)

        assert store.advance_cursor(conversation.id, 10) == 10
        assert store.advance_cursor(conversation.id, 5) == 10
        assert store.advance_cursor(conversation.id, 12) == 12
        assert store.get_conversation(conversation.id).cursor == 12

    def test_cursor_of_unknown_conversation(self, store):
        with pytest.raises(CursorUpdateError):
            store.advance_cursor(12345, 1)

    def test_active_only_listing(self, store):
        first = _conversation(store, 1)
        _conversation(store, 2)
        store.set_monitoring(first.id, False)

        active = store.list_conversations(active_only=True)

        assert [c.external_id for c in active] == [2]
        assert len(store.list_conversations()) == 2

    def test_set_monitoring_unknown(self, store):
        with pytest.raises(RepositoryError):
            store.set_monitoring(12345, True)

    def test_returned_objects_are_detached(self, store):
        conversation = _conversation(store)
        conversation.cursor = 999

        assert store.get_conversation(conversation.id).cursor == 0


class TestTenantKeys:
    def test_put_and_get(self, store):
        store.put_tenant_key(TenantKeyMaterial(1, "wrapped-1"))

        assert store.get_tenant_key(1).wrapped_data_key == "wrapped-1"
        assert store.get_tenant_key(2) is None

    def test_existing_key_is_kept(self, store):
        store.put_tenant_key(TenantKeyMaterial(1, "first"))
        store.put_tenant_key(TenantKeyMaterial(1, "second"))

        assert store.get_tenant_key(1).wrapped_data_key == "first"


class TestRecords:
    def test_add_and_list(self, store):
        conversation = _conversation(store)
        first = _record(store, conversation, 1)
        second = _record(store, conversation, 2)

        records = store.list_records(conversation.id)

        assert [r.id for r in records] == [first.id, second.id]
        assert store.get_record(first.id).ciphertext == "c2VhbGVk"
        assert store.get_record(first.id).timestamp.year == 2024

    def test_dataset_requires_existing_record(self, store):
        conversation = _conversation(store)
        record = _record(store, conversation)
        record.id = 98765

        with pytest.raises(RepositoryError):
            store.add_dataset_record(_dataset(record))

    def test_dataset_filters_and_stats(self, store):
        conversation = _conversation(store)
        neutral = store.add_dataset_record(_dataset(_record(store, conversation, 1), 9))
        store.add_dataset_record(_dataset(_record(store, conversation, 2), 7))
        store.add_dataset_record(_dataset(_record(store, conversation, 3), 7))
        store.validate_dataset_record(neutral.id)

        assert len(store.list_dataset_records(category_id=7)) == 2
        assert [r.id for r in store.list_dataset_records(validated=True)] == [neutral.id]
        stats = store.dataset_stats()
        assert stats["total_entries"] == 3
        assert stats["validated_entries"] == 1
        assert stats["by_category"] == {9: 1, 7: 2}

    def test_validate_unknown_dataset_record(self, store):
        with pytest.raises(RepositoryError):
            store.validate_dataset_record(4242)


class TestIncidents:
    def test_new_incident(self, store):
        record = _record(store, _conversation(store))

        incident = store.add_incident(_incident(record))

        assert incident.status == IncidentStatus.NEW
        assert incident.access_granted is False
        assert store.list_incidents(IncidentStatus.NEW)[0].id == incident.id

    @pytest.mark.parametrize(
        "final", [IncidentStatus.RESOLVED, IncidentStatus.FALSE_POSITIVE]
    )
    def test_lifecycle(self, store, final):
        incident = store.add_incident(_incident(_record(store, _conversation(store))))

        store.update_incident_status(incident.id, IncidentStatus.REVIEWED)
        updated = store.update_incident_status(incident.id, final)

        assert updated.status == final
        assert store.list_incidents(IncidentStatus.NEW) == []

    @pytest.mark.parametrize(
        "path",
        [
            [IncidentStatus.RESOLVED],
            [IncidentStatus.NEW],
            [IncidentStatus.REVIEWED, IncidentStatus.NEW],
            [IncidentStatus.REVIEWED, IncidentStatus.RESOLVED, IncidentStatus.REVIEWED],
        ],
    )
    def test_invalid_transitions(self, store, path):
        incident = store.add_incident(_incident(_record(store, _conversation(store))))

        with pytest.raises(RepositoryError):
            for status in path:
                store.update_incident_status(incident.id, status)

    def test_unknown_incident(self, store):
        with pytest.raises(RepositoryError):
            store.update_incident_status(777, IncidentStatus.REVIEWED)
        with pytest.raises(RepositoryError):
            store.set_incident_access(777, True)

    def test_access_flag(self, store):
        incident = store.add_incident(_incident(_record(store, _conversation(store))))

        store.set_incident_access(incident.id, True)

        assert store.get_incident(incident.id).access_granted is True


class TestSQLitePersistence:
    def test_data_survives_reopen(self, tmp_path):
        path = str(tmp_path / "durable.db")
        first = SQLiteStore(path)
        conversation = _conversation(first)
        first.advance_cursor(conversation.id, 41)
        first.close()

        second = SQLiteStore(path)
        try:
            assert second.get_conversation(conversation.id).cursor == 41
        finally:
            second.close()

    def test_creates_parent_directory(self, tmp_path):
        store = SQLiteStore(str(tmp_path / "nested" / "dir" / "db.sqlite"))
        store.close()

        assert (tmp_path / "nested" / "dir" / "db.sqlite").exists()
