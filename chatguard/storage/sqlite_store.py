"""
SQLite-backed store.

One database file, one cached connection per thread. All writes run inside
a transaction; sqlite3 errors are re-raised as RepositoryError.
"""

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Optional

from .base import Store
from .models import (
    Conversation,
    DatasetRecord,
    EncryptedRecord,
    Incident,
    IncidentStatus,
    ItemKind,
    SourceType,
    TenantKeyMaterial,
)
from ..core.exceptions import CursorUpdateError, RepositoryError

logger = logging.getLogger(__name__)

# Seconds to wait on a locked database before failing
DB_TIMEOUT = 30

SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id INTEGER NOT NULL,
    source TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    is_group INTEGER NOT NULL DEFAULT 0,
    owner_id INTEGER NOT NULL,
    monitoring_active INTEGER NOT NULL DEFAULT 1,
    last_item_id INTEGER NOT NULL DEFAULT 0,
    UNIQUE (source, external_id)
);

CREATE TABLE IF NOT EXISTS tenant_keys (
    owner_id INTEGER PRIMARY KEY,
    wrapped_data_key TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id),
    source_item_id INTEGER NOT NULL,
    owner_id INTEGER NOT NULL,
    ciphertext TEXT NOT NULL,
    sender TEXT NOT NULL DEFAULT '',
    timestamp TEXT,
    kind TEXT NOT NULL,
    source TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_conversation ON records(conversation_id);

CREATE TABLE IF NOT EXISTS dataset (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id INTEGER NOT NULL REFERENCES records(id),
    category_id INTEGER NOT NULL,
    category_name TEXT NOT NULL,
    justification TEXT NOT NULL DEFAULT '',
    confidence REAL NOT NULL,
    provider TEXT NOT NULL,
    model TEXT NOT NULL,
    annotated_at TEXT NOT NULL,
    source TEXT NOT NULL,
    is_validated INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS incidents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id INTEGER NOT NULL REFERENCES records(id),
    category_id INTEGER NOT NULL,
    category_name TEXT NOT NULL,
    confidence REAL NOT NULL,
    summary_encrypted TEXT NOT NULL,
    conversation_name TEXT NOT NULL DEFAULT '',
    source TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'new',
    access_granted INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
"""


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore(Store):
    """
    Durable store in a single SQLite file.

    Usage:
        store = SQLiteStore("~/.chatguard/chatguard.db")
        conv = store.upsert_conversation(Conversation(42, SourceType.TELEGRAM))
    """

    def __init__(self, path: str):
        self.path = path if path == ":memory:" else os.path.expanduser(path)
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        if self.path != ":memory:":
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, exist_ok=True)

        with self._transaction() as conn:
            conn.executescript(SCHEMA)
        logger.info(f"SQLite store ready at {self.path}")

    def _connect(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        try:
            conn = sqlite3.connect(self.path, timeout=DB_TIMEOUT, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if self.path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            raise RepositoryError(f"cannot open database {self.path}: {e}") from e
        self._local.conn = conn
        with self._connections_lock:
            self._connections.append(conn)
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise RepositoryError(f"database error: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self._connect().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise RepositoryError(f"database error: {e}") from e

    def close(self) -> None:
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    # Conversations

    @staticmethod
    def _conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            external_id=row["external_id"],
            source=SourceType(row["source"]),
            name=row["name"],
            is_group=bool(row["is_group"]),
            owner_id=row["owner_id"],
            monitoring_active=bool(row["monitoring_active"]),
            cursor=row["last_item_id"],
        )

    def upsert_conversation(self, conversation: Conversation) -> Conversation:
        source = SourceType(conversation.source).value
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO conversations "
                "(external_id, source, name, is_group, owner_id, monitoring_active, last_item_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    conversation.external_id,
                    source,
                    conversation.name,
                    int(conversation.is_group),
                    conversation.owner_id,
                    int(conversation.monitoring_active),
                    conversation.cursor,
                ),
            )
            row = conn.execute(
                "SELECT * FROM conversations WHERE source = ? AND external_id = ?",
                (source, conversation.external_id),
            ).fetchone()
        return self._conversation(row)

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        rows = self._query("SELECT * FROM conversations WHERE id = ?", (conversation_id,))
        return self._conversation(rows[0]) if rows else None

    def find_conversation(
        self, source: SourceType, external_id: int
    ) -> Optional[Conversation]:
        rows = self._query(
            "SELECT * FROM conversations WHERE source = ? AND external_id = ?",
            (SourceType(source).value, external_id),
        )
        return self._conversation(rows[0]) if rows else None

    def list_conversations(self, active_only: bool = False) -> List[Conversation]:
        sql = "SELECT * FROM conversations"
        if active_only:
            sql += " WHERE monitoring_active = 1"
        return [self._conversation(r) for r in self._query(sql + " ORDER BY id")]

    def advance_cursor(self, conversation_id: int, cursor: int) -> int:
        try:
            with self._transaction() as conn:
                conn.execute(
                    "UPDATE conversations SET last_item_id = MAX(last_item_id, ?) "
                    "WHERE id = ?",
                    (cursor, conversation_id),
                )
                row = conn.execute(
                    "SELECT last_item_id FROM conversations WHERE id = ?",
                    (conversation_id,),
                ).fetchone()
        except RepositoryError as e:
            raise CursorUpdateError(
                f"failed to update cursor of conversation {conversation_id}: {e}"
            ) from e
        if row is None:
            raise CursorUpdateError(f"unknown conversation {conversation_id}")
        return row["last_item_id"]

    def set_monitoring(self, conversation_id: int, active: bool) -> None:
        with self._transaction() as conn:
            updated = conn.execute(
                "UPDATE conversations SET monitoring_active = ? WHERE id = ?",
                (int(active), conversation_id),
            ).rowcount
        if not updated:
            raise RepositoryError(f"unknown conversation {conversation_id}")

    # Tenant keys

    def get_tenant_key(self, owner_id: int) -> Optional[TenantKeyMaterial]:
        rows = self._query("SELECT * FROM tenant_keys WHERE owner_id = ?", (owner_id,))
        if not rows:
            return None
        return TenantKeyMaterial(
            owner_id=rows[0]["owner_id"],
            wrapped_data_key=rows[0]["wrapped_data_key"],
            created_at=_parse_ts(rows[0]["created_at"]),
        )

    def put_tenant_key(self, material: TenantKeyMaterial) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO tenant_keys (owner_id, wrapped_data_key, created_at) "
                "VALUES (?, ?, ?)",
                (material.owner_id, material.wrapped_data_key, _ts(material.created_at)),
            )

    # Encrypted records

    @staticmethod
    def _record(row: sqlite3.Row) -> EncryptedRecord:
        return EncryptedRecord(
            id=row["id"],
            conversation_id=row["conversation_id"],
            source_item_id=row["source_item_id"],
            owner_id=row["owner_id"],
            ciphertext=row["ciphertext"],
            sender=row["sender"],
            timestamp=_parse_ts(row["timestamp"]),
            kind=ItemKind(row["kind"]),
            source=SourceType(row["source"]),
        )

    def add_record(self, record: EncryptedRecord) -> EncryptedRecord:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO records (conversation_id, source_item_id, owner_id, "
                "ciphertext, sender, timestamp, kind, source) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.conversation_id,
                    record.source_item_id,
                    record.owner_id,
                    record.ciphertext,
                    record.sender,
                    _ts(record.timestamp),
                    ItemKind(record.kind).value,
                    SourceType(record.source).value,
                ),
            )
            record_id = cursor.lastrowid
        return self.get_record(record_id)

    def get_record(self, record_id: int) -> Optional[EncryptedRecord]:
        rows = self._query("SELECT * FROM records WHERE id = ?", (record_id,))
        return self._record(rows[0]) if rows else None

    def list_records(self, conversation_id: int) -> List[EncryptedRecord]:
        rows = self._query(
            "SELECT * FROM records WHERE conversation_id = ? ORDER BY id",
            (conversation_id,),
        )
        return [self._record(r) for r in rows]

    # Dataset

    @staticmethod
    def _dataset(row: sqlite3.Row) -> DatasetRecord:
        return DatasetRecord(
            id=row["id"],
            record_id=row["record_id"],
            category_id=row["category_id"],
            category_name=row["category_name"],
            justification=row["justification"],
            confidence=row["confidence"],
            provider=row["provider"],
            model=row["model"],
            annotated_at=_parse_ts(row["annotated_at"]),
            source=SourceType(row["source"]),
            is_validated=bool(row["is_validated"]),
        )

    def add_dataset_record(self, record: DatasetRecord) -> DatasetRecord:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO dataset (record_id, category_id, category_name, "
                "justification, confidence, provider, model, annotated_at, source, "
                "is_validated) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.record_id,
                    record.category_id,
                    record.category_name,
                    record.justification,
                    record.confidence,
                    record.provider,
                    record.model,
                    _ts(record.annotated_at),
                    SourceType(record.source).value,
                    int(record.is_validated),
                ),
            )
            dataset_id = cursor.lastrowid
        rows = self._query("SELECT * FROM dataset WHERE id = ?", (dataset_id,))
        return self._dataset(rows[0])

    def list_dataset_records(
        self, category_id: Optional[int] = None, validated: Optional[bool] = None
    ) -> List[DatasetRecord]:
        clauses: List[str] = []
        params: List[Any] = []
        if category_id is not None:
            clauses.append("category_id = ?")
            params.append(category_id)
        if validated is not None:
            clauses.append("is_validated = ?")
            params.append(int(validated))
        sql = "SELECT * FROM dataset"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        return [self._dataset(r) for r in self._query(sql + " ORDER BY id", tuple(params))]

    def validate_dataset_record(self, dataset_id: int) -> None:
        with self._transaction() as conn:
            updated = conn.execute(
                "UPDATE dataset SET is_validated = 1 WHERE id = ?", (dataset_id,)
            ).rowcount
        if not updated:
            raise RepositoryError(f"unknown dataset record {dataset_id}")

    # Incidents

    @staticmethod
    def _incident(row: sqlite3.Row) -> Incident:
        return Incident(
            id=row["id"],
            record_id=row["record_id"],
            category_id=row["category_id"],
            category_name=row["category_name"],
            confidence=row["confidence"],
            summary_encrypted=row["summary_encrypted"],
            conversation_name=row["conversation_name"],
            source=SourceType(row["source"]),
            status=IncidentStatus(row["status"]),
            access_granted=bool(row["access_granted"]),
            created_at=_parse_ts(row["created_at"]),
        )

    def add_incident(self, incident: Incident) -> Incident:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO incidents (record_id, category_id, category_name, "
                "confidence, summary_encrypted, conversation_name, source, status, "
                "access_granted, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    incident.record_id,
                    incident.category_id,
                    incident.category_name,
                    incident.confidence,
                    incident.summary_encrypted,
                    incident.conversation_name,
                    SourceType(incident.source).value,
                    IncidentStatus(incident.status).value,
                    int(incident.access_granted),
                    _ts(incident.created_at),
                ),
            )
            incident_id = cursor.lastrowid
        return self.get_incident(incident_id)

    def get_incident(self, incident_id: int) -> Optional[Incident]:
        rows = self._query("SELECT * FROM incidents WHERE id = ?", (incident_id,))
        return self._incident(rows[0]) if rows else None

    def list_incidents(self, status: Optional[IncidentStatus] = None) -> List[Incident]:
        if status is None:
            rows = self._query("SELECT * FROM incidents ORDER BY id")
        else:
            rows = self._query(
                "SELECT * FROM incidents WHERE status = ? ORDER BY id",
                (IncidentStatus(status).value,),
            )
        return [self._incident(r) for r in rows]

    def update_incident_status(
        self, incident_id: int, status: IncidentStatus
    ) -> Incident:
        status = IncidentStatus(status)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT status FROM incidents WHERE id = ?", (incident_id,)
            ).fetchone()
            if row is None:
                raise RepositoryError(f"unknown incident {incident_id}")
            current = IncidentStatus(row["status"])
            if not current.can_transition_to(status):
                raise RepositoryError(
                    f"invalid incident transition {current.value} -> {status.value}"
                )
            conn.execute(
                "UPDATE incidents SET status = ? WHERE id = ?",
                (status.value, incident_id),
            )
        return self.get_incident(incident_id)

    def set_incident_access(self, incident_id: int, granted: bool) -> None:
        with self._transaction() as conn:
            updated = conn.execute(
                "UPDATE incidents SET access_granted = ? WHERE id = ?",
                (int(granted), incident_id),
            ).rowcount
        if not updated:
            raise RepositoryError(f"unknown incident {incident_id}")
