"""
Storage adapters for saved email sequences.

All backends share the ``EmailStore`` interface. Records use the camelCase
field names of the persistence boundary:

    id, accountIndex, accountName, contactId, contactName, contactTitle,
    emails, createdAt, updatedAt

``list`` returns metadata records that drop ``emails`` and add
``emailCount``. A missing id is reported as ``None``/``False``, never raised.
"""

import json
import os
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .logger import get_logger

METADATA_FIELDS = [
    'id', 'accountIndex', 'accountName', 'contactId',
    'contactName', 'contactTitle', 'createdAt', 'updatedAt',
]
INPUT_FIELDS = ['accountIndex', 'accountName', 'contactId', 'contactName', 'contactTitle', 'emails']

STORAGE_BACKENDS = ('memory', 'file', 'sqlite')


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def to_metadata(record: Dict[str, Any]) -> Dict[str, Any]:
    """Project a saved record onto its list-view metadata."""
    metadata = {key: record.get(key) for key in METADATA_FIELDS}
    metadata['emailCount'] = len(record.get('emails') or [])
    return metadata


class EmailStore(ABC):
    """Interface for saved-sequence persistence."""

    def __init__(self):
        self.logger = get_logger(f"storage.{self.backend_name}")

    backend_name = 'base'

    def _new_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        missing = [key for key in INPUT_FIELDS if key not in data]
        if missing:
            raise ValueError(f"Missing fields for saved email: {', '.join(missing)}")

        now = _now_iso()
        record = {'id': str(uuid.uuid4())}
        record.update({key: data[key] for key in INPUT_FIELDS})
        record['createdAt'] = now
        record['updatedAt'] = now
        return record

    @abstractmethod
    def save(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Persist a sequence.

        Args:
            data: Save payload with accountIndex, accountName, contactId,
                contactName, contactTitle and emails

        Returns:
            The stored record including id and timestamps
        """

    @abstractmethod
    def get(self, email_id: str) -> Optional[Dict[str, Any]]:
        """Full record by id, or None."""

    @abstractmethod
    def list(self, account_index: Optional[int] = None) -> List[Dict[str, Any]]:
        """Metadata records in insertion order, optionally for one account."""

    @abstractmethod
    def delete(self, email_id: str) -> bool:
        """Remove a record. Returns False if the id was unknown."""

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryEmailStore(EmailStore):
    """Process-local store; contents are lost on restart."""

    backend_name = 'memory'

    def __init__(self):
        super().__init__()
        # dicts preserve insertion order
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = self._new_record(data)
        with self._lock:
            self._records[record['id']] = record
        self.logger.info(f"Saved email sequence {record['id']} for contact {record['contactId']}")
        return json.loads(json.dumps(record))

    def get(self, email_id: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(email_id)
        return json.loads(json.dumps(record)) if record is not None else None

    def list(self, account_index: Optional[int] = None) -> List[Dict[str, Any]]:
        records = list(self._records.values())
        if account_index is not None:
            records = [r for r in records if r['accountIndex'] == account_index]
        return [to_metadata(r) for r in records]

    def delete(self, email_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(email_id, None)
        if removed is None:
            return False
        self.logger.info(f"Deleted email sequence {email_id}")
        return True

    def count(self) -> int:
        return len(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class FileEmailStore(InMemoryEmailStore):
    """
    JSON-file store.

    The whole collection is held in memory and written as a full snapshot
    after every mutation (temp file then ``os.replace``), so a crash
    mid-write leaves the previous snapshot intact.
    """

    backend_name = 'file'

    def __init__(self, file_path: str):
        super().__init__()
        self.file_path = Path(file_path)
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    def _load(self) -> None:
        if not self.file_path.exists():
            self.logger.debug(f"No snapshot at {self.file_path}, starting empty")
            return

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load saved emails from {self.file_path}: {e}")
            raise

        records = payload.get('emails', []) if isinstance(payload, dict) else payload
        self._records = {record['id']: record for record in records}
        self.logger.debug(f"Loaded {len(self._records)} saved emails from {self.file_path}")

    def _write_snapshot(self) -> None:
        tmp_path = self.file_path.with_suffix(self.file_path.suffix + '.tmp')
        payload = {
            'updated_at': _now_iso(),
            'emails': list(self._records.values()),
        }
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.file_path)

    def save(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = self._new_record(data)
        with self._lock:
            self._records[record['id']] = record
            try:
                self._write_snapshot()
            except OSError:
                del self._records[record['id']]
                raise
        self.logger.info(f"Saved email sequence {record['id']} to {self.file_path}")
        return json.loads(json.dumps(record))

    def delete(self, email_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(email_id, None)
            if removed is None:
                return False
            try:
                self._write_snapshot()
            except OSError:
                self._records[email_id] = removed
                raise
        self.logger.info(f"Deleted email sequence {email_id}")
        return True

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._write_snapshot()


class SQLiteEmailStore(EmailStore):
    """SQLite store; each mutation is a single committed statement."""

    backend_name = 'sqlite'

    def __init__(self, db_path: str):
        super().__init__()
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS saved_emails (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    account_index INTEGER NOT NULL,
                    account_name TEXT NOT NULL,
                    contact_id TEXT NOT NULL,
                    contact_name TEXT NOT NULL,
                    contact_title TEXT NOT NULL,
                    emails TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_saved_emails_account ON saved_emails(account_index)"
            )
        self.logger.debug(f"Initialized saved_emails table in {self.db_path}")

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            'id': row['id'],
            'accountIndex': row['account_index'],
            'accountName': row['account_name'],
            'contactId': row['contact_id'],
            'contactName': row['contact_name'],
            'contactTitle': row['contact_title'],
            'emails': json.loads(row['emails']),
            'createdAt': row['created_at'],
            'updatedAt': row['updated_at'],
        }

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def save(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = self._new_record(data)
        with self._connect() as conn:
            conn.execute("""
                INSERT INTO saved_emails
                (id, account_index, account_name, contact_id, contact_name,
                 contact_title, emails, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record['id'], record['accountIndex'], record['accountName'],
                record['contactId'], record['contactName'], record['contactTitle'],
                json.dumps(record['emails']), record['createdAt'], record['updatedAt'],
            ))
        self.logger.info(f"Saved email sequence {record['id']} to {self.db_path}")
        return json.loads(json.dumps(record))

    def get(self, email_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM saved_emails WHERE id = ?", (email_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def list(self, account_index: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            if account_index is None:
                rows = conn.execute("SELECT * FROM saved_emails ORDER BY seq").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM saved_emails WHERE account_index = ? ORDER BY seq",
                    (account_index,),
                ).fetchall()
        return [to_metadata(self._row_to_record(row)) for row in rows]

    def delete(self, email_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM saved_emails WHERE id = ?", (email_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            self.logger.info(f"Deleted email sequence {email_id}")
        return deleted

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM saved_emails").fetchone()[0]

    def clear(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM saved_emails")


def create_email_store(config: Dict[str, Any]) -> EmailStore:
    """
    Build the store selected by ``storage_backend``.

    Args:
        config: Configuration with storage_backend and, for the persistent
            backends, storage_file or storage_db

    Returns:
        EmailStore instance
    """
    backend = (config.get('storage_backend') or 'file').lower()
    data_dir = Path(config.get('data_dir') or './abm_email_data')

    if backend == 'memory':
        return InMemoryEmailStore()
    if backend == 'file':
        return FileEmailStore(config.get('storage_file') or str(data_dir / 'saved_emails.json'))
    if backend == 'sqlite':
        return SQLiteEmailStore(config.get('storage_db') or str(data_dir / 'abm_email.db'))

    raise ValueError(f"Unknown storage backend '{backend}'. Expected one of: {', '.join(STORAGE_BACKENDS)}")
