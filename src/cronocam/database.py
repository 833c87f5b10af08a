# upload ledger
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from cronocam.errors import DuplicateError, StorageError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS uploaded_files(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  file_path TEXT NOT NULL,
  file_hash TEXT NOT NULL UNIQUE,
  remote_id TEXT,
  recorded_ts DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS upload_failures(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  file_path TEXT NOT NULL,
  message TEXT NOT NULL,
  created_ts DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_failures_created ON upload_failures(created_ts);
"""


@dataclass
class UploadRecord:
    """One file that was uploaded (or imported without upload)."""

    id: int
    file_path: str
    fingerprint: str
    remote_id: str | None
    recorded_at: datetime | None


@dataclass
class UploadFailure:
    """One failed upload attempt, kept for operator visibility."""

    file_path: str
    message: str
    occurred_at: datetime | None


@dataclass
class LedgerStats:
    total_records: int
    last_record_time: datetime | None


def _parse_ts(value: str | None) -> datetime | None:
    # CURRENT_TIMESTAMP is "YYYY-MM-DD HH:MM:SS" in UTC
    if not value:
        return None
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


class UploadLedger:
    """
    Thread-safe SQLite ledger of uploaded files, keyed by content fingerprint.

    Uses thread-local connections so each thread has its own connection, and a
    write lock to serialize inserts within the process. The UNIQUE constraint on
    file_hash enforces deduplication across processes sharing the same file.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._write_lock = threading.Lock()

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._get_conn()
            conn.executescript(SCHEMA)
            conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Could not open ledger at {self.db_path}: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0,  # Wait up to 30s if database is locked
            )
        conn: sqlite3.Connection = self._local.conn
        return conn

    def is_known(self, fingerprint: str) -> bool:
        """Check if a fingerprint has been recorded before."""
        try:
            cur = self._get_conn().execute(
                "SELECT 1 FROM uploaded_files WHERE file_hash=?", (fingerprint,)
            )
            return cur.fetchone() is not None
        except sqlite3.Error as e:
            raise StorageError(f"Lookup failed for {fingerprint}: {e}") from e

    def record(
        self, file_path: str, fingerprint: str, remote_id: str | None = None
    ) -> UploadRecord:
        """
        Insert a new upload record.

        The insert runs in its own transaction, so either the whole row is
        committed or nothing is.

        Args:
            file_path: Path of the file as supplied by the caller
            fingerprint: SHA256 hex digest of the file content
            remote_id: Media item id, or None for import-only records

        Returns:
            The stored UploadRecord

        Raises:
            DuplicateError: A record with this fingerprint already exists
            StorageError: The insert failed for any other reason
        """
        if not fingerprint:
            raise ValueError("fingerprint must not be empty")

        with self._write_lock:
            conn = self._get_conn()
            try:
                with conn:
                    cur = conn.execute(
                        "INSERT INTO uploaded_files(file_path, file_hash, remote_id) "
                        "VALUES(?,?,?)",
                        (file_path, fingerprint, remote_id or None),
                    )
                row_id = cur.lastrowid
            except sqlite3.IntegrityError as e:
                raise DuplicateError(fingerprint, file_path) from e
            except sqlite3.Error as e:
                raise StorageError(f"Failed to record {file_path}: {e}") from e

        record = self._fetch_one("WHERE id=?", (row_id,))
        if record is None:
            raise StorageError(f"Record for {file_path} vanished after insert")
        return record

    def get_record(self, fingerprint: str) -> UploadRecord | None:
        return self._fetch_one("WHERE file_hash=?", (fingerprint,))

    def list_records(self) -> list[UploadRecord]:
        """Return every upload record in insertion order."""
        return self._fetch_all("ORDER BY id ASC", ())

    def list_unsynced(self) -> list[str]:
        """
        Return paths that were recorded without a remote id.

        These come from the import-only path and have never been uploaded.
        """
        try:
            cur = self._get_conn().execute(
                "SELECT file_path FROM uploaded_files "
                "WHERE remote_id IS NULL OR remote_id = '' ORDER BY id ASC"
            )
            return [row[0] for row in cur.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list unsynced files: {e}") from e

    def stats(self) -> LedgerStats:
        try:
            cur = self._get_conn().execute(
                "SELECT COUNT(*), MAX(recorded_ts) FROM uploaded_files"
            )
            total, last_ts = cur.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read ledger stats: {e}") from e
        return LedgerStats(total_records=total, last_record_time=_parse_ts(last_ts))

    def record_failure(self, file_path: str, message: str) -> None:
        """Append an entry to the failure log."""
        with self._write_lock:
            conn = self._get_conn()
            try:
                with conn:
                    conn.execute(
                        "INSERT INTO upload_failures(file_path, message) VALUES(?,?)",
                        (file_path, message),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"Failed to record failure for {file_path}: {e}") from e

    def recent_failures(self, limit: int = 10) -> list[UploadFailure]:
        """
        Get the most recent failures, newest first.

        Args:
            limit: Maximum number of failures to return
        """
        try:
            cur = self._get_conn().execute(
                "SELECT file_path, message, created_ts FROM upload_failures "
                "ORDER BY created_ts DESC, id DESC LIMIT ?",
                (limit,),
            )
            rows = cur.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read failures: {e}") from e
        return [
            UploadFailure(file_path=row[0], message=row[1], occurred_at=_parse_ts(row[2]))
            for row in rows
        ]

    def _fetch_all(self, clause: str, params: tuple) -> list[UploadRecord]:
        try:
            cur = self._get_conn().execute(
                "SELECT id, file_path, file_hash, remote_id, recorded_ts "
                f"FROM uploaded_files {clause}",
                params,
            )
            rows = cur.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read upload records: {e}") from e
        return [
            UploadRecord(
                id=row[0],
                file_path=row[1],
                fingerprint=row[2],
                remote_id=row[3] or None,
                recorded_at=_parse_ts(row[4]),
            )
            for row in rows
        ]

    def _fetch_one(self, clause: str, params: tuple) -> UploadRecord | None:
        records = self._fetch_all(clause, params)
        return records[0] if records else None

    def close(self):
        """Close the calling thread's connection. Call on shutdown."""
        if hasattr(self._local, "conn") and self._local.conn is not None:
            self._local.conn.close()
            self._local.conn = None

    def __enter__(self) -> "UploadLedger":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def open_ledger(db_path: str | Path) -> UploadLedger:
    """Create an UploadLedger backed by the SQLite file at db_path."""
    logger.debug(f"Opening upload ledger at {db_path}")
    return UploadLedger(db_path)
