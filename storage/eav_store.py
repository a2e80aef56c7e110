"""Entity/metadata (EAV-style) store backed by SQLite.

Tables:
- core_entities: one row per business object (transaction, journal entry)
- core_metadata: JSON documents attached to an entity by type and key
- entity_audit_log: filled by an insert trigger for standard-path inserts

Two insert paths exist for entities. The standard path validates the
identifier and fires the audit trigger; the raw path coerces the identifier
to a deterministic UUID and skips the trigger. Both enforce the unique
(organization_id, entity_type, entity_code) constraint.

All public methods are async and run the blocking sqlite3 calls in a worker
thread.
"""

import asyncio
import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.errors import EntityConflictError, IdentifierFormatError, PersistenceError
from core.observability.logging import get_logger

logger = get_logger(__name__)


# Database path - relative to repo root
DB_PATH = Path(__file__).resolve().parents[1] / "ledger.db"

STANDARD_PATH = "standard"
RAW_PATH = "raw"

ENTITY_COLUMNS = (
    "id",
    "organization_id",
    "entity_type",
    "entity_name",
    "entity_code",
    "status",
    "insert_path",
    "created_at",
    "updated_at",
)

UPDATABLE_ENTITY_FIELDS = ("entity_name", "status")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return False
    return True


def coerce_identifier(organization_id: str, identifier: Any) -> str:
    """Return ``identifier`` if it is a UUID, else a deterministic UUID derived from it."""
    if identifier and _is_uuid(identifier):
        return str(uuid.UUID(str(identifier)))
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{organization_id}:{identifier}"))


def _row_to_entity(row: sqlite3.Row) -> Dict[str, Any]:
    return {key: row[key] for key in ENTITY_COLUMNS}


def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "organization_id": row["organization_id"],
        "entity_id": row["entity_id"],
        "metadata_type": row["metadata_type"],
        "metadata_key": row["metadata_key"],
        "metadata_value": json.loads(row["metadata_value"]) if row["metadata_value"] else None,
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


class EAVStore:
    """
    SQLite entity/metadata store.

    Usage:
        store = EAVStore(db_path)
        entity_id = await store.insert_entity({
            "organization_id": "org-1",
            "entity_type": "journal_entry",
            "entity_code": "JE-20240109-0001",
            "entity_name": "Journal Entry JE-20240109-0001",
        })
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self.init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables, indexes and the audit trigger if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS core_entities (
                    id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_name TEXT,
                    entity_code TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    insert_path TEXT NOT NULL DEFAULT 'standard',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(organization_id, entity_type, entity_code)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_core_entities_org_type
                ON core_entities(organization_id, entity_type, created_at)
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS core_metadata (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    organization_id TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    metadata_type TEXT NOT NULL,
                    metadata_key TEXT NOT NULL,
                    metadata_value TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(entity_id, metadata_type, metadata_key)
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS entity_audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entity_id TEXT NOT NULL,
                    organization_id TEXT NOT NULL,
                    entity_type TEXT NOT NULL,
                    entity_code TEXT NOT NULL,
                    action TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TRIGGER IF NOT EXISTS trg_core_entities_audit
                AFTER INSERT ON core_entities
                WHEN NEW.insert_path = 'standard'
                BEGIN
                    INSERT INTO entity_audit_log
                    (entity_id, organization_id, entity_type, entity_code, action, created_at)
                    VALUES (NEW.id, NEW.organization_id, NEW.entity_type, NEW.entity_code, 'INSERT', NEW.created_at);
                END
            """)
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Entity Inserts
    # =========================================================================

    def _insert_entity(self, row: Dict[str, Any], insert_path: str) -> str:
        now = row.get("created_at") or _now()
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO core_entities
                (id, organization_id, entity_type, entity_name, entity_code, status, insert_path, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                row["id"],
                row["organization_id"],
                row["entity_type"],
                row.get("entity_name"),
                row["entity_code"],
                row.get("status") or "active",
                insert_path,
                now,
                now,
            ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e) and "entity_code" in str(e):
                raise EntityConflictError(row["organization_id"], row["entity_type"], row["entity_code"]) from e
            raise PersistenceError(f"Entity insert failed: {e}") from e
        finally:
            conn.close()
        return row["id"]

    def _insert_standard(self, row: Dict[str, Any]) -> str:
        row = dict(row)
        if not row.get("id"):
            row["id"] = str(uuid.uuid4())
        if not _is_uuid(row["id"]):
            raise IdentifierFormatError(str(row["id"]))
        return self._insert_entity(row, STANDARD_PATH)

    def _insert_raw(self, row: Dict[str, Any]) -> str:
        row = dict(row)
        row["id"] = coerce_identifier(row["organization_id"], row.get("id") or row["entity_code"])
        return self._insert_entity(row, RAW_PATH)

    async def insert_entity(self, row: Dict[str, Any]) -> str:
        """
        Insert an entity through the standard path.

        Args:
            row: Entity fields (id, organization_id, entity_type, entity_code, entity_name, status)

        Returns:
            The stored entity id

        Raises:
            IdentifierFormatError: If the id is not a UUID
            EntityConflictError: If the code already exists for the organization and type
        """
        return await asyncio.to_thread(self._insert_standard, row)

    async def insert_entity_raw(self, row: Dict[str, Any]) -> str:
        """
        Insert an entity through the low-level path.

        The id is coerced to a deterministic UUID and the audit trigger does
        not fire.

        Returns:
            The stored (possibly coerced) entity id
        """
        return await asyncio.to_thread(self._insert_raw, row)

    # =========================================================================
    # Entity Reads / Updates
    # =========================================================================

    def _get_entity(self, entity_id: str) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM core_entities WHERE id = ?", (entity_id,))
            row = cursor.fetchone()
            return _row_to_entity(row) if row else None
        finally:
            conn.close()

    def _find_entity_by_code(self, organization_id: str, entity_type: str, entity_code: str) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM core_entities
                WHERE organization_id = ? AND entity_type = ? AND entity_code = ?
            """, (organization_id, entity_type, entity_code))
            row = cursor.fetchone()
            return _row_to_entity(row) if row else None
        finally:
            conn.close()

    def _count_entities(self, organization_id: str, entity_type: str, code_prefix: Optional[str]) -> int:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            if code_prefix:
                cursor.execute("""
                    SELECT COUNT(*) FROM core_entities
                    WHERE organization_id = ? AND entity_type = ? AND substr(entity_code, 1, ?) = ?
                """, (organization_id, entity_type, len(code_prefix), code_prefix))
            else:
                cursor.execute("""
                    SELECT COUNT(*) FROM core_entities
                    WHERE organization_id = ? AND entity_type = ?
                """, (organization_id, entity_type))
            return cursor.fetchone()[0]
        finally:
            conn.close()

    def _list_entities(self, organization_id: str, entity_type: str, limit: int, offset: int) -> List[Dict[str, Any]]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT * FROM core_entities
                WHERE organization_id = ? AND entity_type = ?
                ORDER BY created_at DESC, entity_code DESC
                LIMIT ? OFFSET ?
            """, (organization_id, entity_type, limit, offset))
            return [_row_to_entity(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def _update_entity(self, entity_id: str, fields: Dict[str, Any]) -> bool:
        unknown = set(fields) - set(UPDATABLE_ENTITY_FIELDS)
        if unknown:
            raise PersistenceError(f"Cannot update entity fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False

        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = list(fields.values()) + [_now(), entity_id]
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE core_entities SET {assignments}, updated_at = ? WHERE id = ?",
                values,
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    async def get_entity(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Get an entity by id."""
        return await asyncio.to_thread(self._get_entity, entity_id)

    async def find_entity_by_code(self, organization_id: str, entity_type: str, entity_code: str) -> Optional[Dict[str, Any]]:
        """Find an entity by its business code within an organization."""
        return await asyncio.to_thread(self._find_entity_by_code, organization_id, entity_type, entity_code)

    async def count_entities(self, organization_id: str, entity_type: str, code_prefix: Optional[str] = None) -> int:
        """Count entities of a type, optionally only those whose code starts with ``code_prefix``."""
        return await asyncio.to_thread(self._count_entities, organization_id, entity_type, code_prefix)

    async def list_entities(self, organization_id: str, entity_type: str, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """List entities of a type, newest first."""
        return await asyncio.to_thread(self._list_entities, organization_id, entity_type, limit, offset)

    async def update_entity(self, entity_id: str, **fields: Any) -> bool:
        """Update entity_name and/or status. Returns False if the entity does not exist."""
        return await asyncio.to_thread(self._update_entity, entity_id, fields)

    # =========================================================================
    # Metadata
    # =========================================================================

    def _insert_metadata(self, row: Dict[str, Any]) -> int:
        now = _now()
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO core_metadata
                (organization_id, entity_id, metadata_type, metadata_key, metadata_value, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                row["organization_id"],
                row["entity_id"],
                row["metadata_type"],
                row["metadata_key"],
                json.dumps(row.get("metadata_value"), default=str),
                now,
                now,
            ))
            conn.commit()
            return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise PersistenceError(f"Metadata insert failed: {e}") from e
        finally:
            conn.close()

    def _update_metadata(self, entity_id: str, metadata_type: str, metadata_key: str, value: Any) -> bool:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE core_metadata
                SET metadata_value = ?, updated_at = ?
                WHERE entity_id = ? AND metadata_type = ? AND metadata_key = ?
            """, (json.dumps(value, default=str), _now(), entity_id, metadata_type, metadata_key))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def _get_metadata(self, entity_id: str, metadata_type: str, metadata_key: Optional[str]) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            if metadata_key is None:
                cursor.execute("""
                    SELECT * FROM core_metadata
                    WHERE entity_id = ? AND metadata_type = ?
                    ORDER BY id LIMIT 1
                """, (entity_id, metadata_type))
            else:
                cursor.execute("""
                    SELECT * FROM core_metadata
                    WHERE entity_id = ? AND metadata_type = ? AND metadata_key = ?
                """, (entity_id, metadata_type, metadata_key))
            row = cursor.fetchone()
            return _row_to_metadata(row) if row else None
        finally:
            conn.close()

    async def insert_metadata(self, row: Dict[str, Any]) -> int:
        """
        Attach a metadata document to an entity.

        Args:
            row: organization_id, entity_id, metadata_type, metadata_key, metadata_value

        Returns:
            Metadata row id
        """
        return await asyncio.to_thread(self._insert_metadata, row)

    async def update_metadata(self, entity_id: str, metadata_type: str, metadata_key: str, value: Any) -> bool:
        """Replace a metadata document. Returns False if it does not exist."""
        return await asyncio.to_thread(self._update_metadata, entity_id, metadata_type, metadata_key, value)

    async def get_metadata(self, entity_id: str, metadata_type: str, metadata_key: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Get a metadata row (value already JSON-decoded)."""
        return await asyncio.to_thread(self._get_metadata, entity_id, metadata_type, metadata_key)

    # =========================================================================
    # Audit Log
    # =========================================================================

    def _get_audit_log(self, entity_id: Optional[str]) -> List[Dict[str, Any]]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            if entity_id:
                cursor.execute("SELECT * FROM entity_audit_log WHERE entity_id = ? ORDER BY id", (entity_id,))
            else:
                cursor.execute("SELECT * FROM entity_audit_log ORDER BY id")
            return [dict(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    async def get_audit_log(self, entity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Rows written by the insert trigger."""
        return await asyncio.to_thread(self._get_audit_log, entity_id)
