from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .errors import StoreWriteFailure
from .models import CanonicalPropertyRecord, ChangeReport, StructuredAddress


logger = logging.getLogger("pfe.store")

DEFAULT_HISTORY_LIMIT = 10


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class CanonicalStore(ABC):
    """Keyed persistence for canonical records. Holds no merge logic."""

    history_limit: int = DEFAULT_HISTORY_LIMIT

    def __init__(self) -> None:
        self._key_locks: Dict[str, _KeyLock] = {}
        self._key_locks_guard = threading.Lock()

    @abstractmethod
    def get(self, identity_key: str) -> Optional[CanonicalPropertyRecord]:
        ...

    @abstractmethod
    def put(
        self, record: CanonicalPropertyRecord, report: Optional[ChangeReport] = None
    ) -> None:
        """Full overwrite of the record stored at `record.identity_key`.

        When `report` is given it is appended to the key's history in the same
        write, so a record is never persisted without its change report.
        """

    @abstractmethod
    def list_keys(self, limit: Optional[int] = None) -> List[str]:
        ...

    @abstractmethod
    def append_history(self, identity_key: str, report: ChangeReport) -> None:
        ...

    @abstractmethod
    def history(self, identity_key: str) -> List[ChangeReport]:
        """Retained change reports for one key, oldest first."""

    def get_or_create(
        self,
        identity_key: str,
        address: StructuredAddress,
        created_at: Optional[str] = None,
    ) -> CanonicalPropertyRecord:
        """Existing record, or a fresh empty one. The fresh record is not persisted."""

        record = self.get(identity_key)
        if record is not None:
            return record
        return CanonicalPropertyRecord.empty(identity_key, address, created_at=created_at)

    def iter_records(self) -> Iterator[CanonicalPropertyRecord]:
        for key in self.list_keys():
            record = self.get(key)
            if record is not None:
                yield record

    @contextmanager
    def locked(self, identity_key: str) -> Iterator[None]:
        """Serialize read-fuse-write cycles for one identity key.

        Entries live only while some thread holds or waits on the key.
        """

        with self._key_locks_guard:
            entry = self._key_locks.get(identity_key)
            if entry is None:
                entry = self._key_locks[identity_key] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._key_locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._key_locks[identity_key]

    def close(self) -> None:
        pass


class InMemoryCanonicalStore(CanonicalStore):
    """Dict-backed store. Records are copied in and out."""

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        super().__init__()
        self.history_limit = history_limit
        self._records: Dict[str, CanonicalPropertyRecord] = {}
        self._history: Dict[str, List[ChangeReport]] = {}
        self._lock = threading.Lock()

    def get(self, identity_key: str) -> Optional[CanonicalPropertyRecord]:
        with self._lock:
            record = self._records.get(identity_key)
            return record.copy() if record is not None else None

    def put(
        self, record: CanonicalPropertyRecord, report: Optional[ChangeReport] = None
    ) -> None:
        with self._lock:
            if report is not None:
                self._append(record.identity_key, report)
            self._records[record.identity_key] = record.copy()

    def list_keys(self, limit: Optional[int] = None) -> List[str]:
        with self._lock:
            keys = sorted(self._records)
        return keys[:limit] if limit is not None else keys

    def append_history(self, identity_key: str, report: ChangeReport) -> None:
        with self._lock:
            self._append(identity_key, report)

    def _append(self, identity_key: str, report: ChangeReport) -> None:
        reports = self._history.setdefault(identity_key, [])
        reports.append(ChangeReport.from_dict(report.to_dict()))
        del reports[: max(0, len(reports) - self.history_limit)]

    def history(self, identity_key: str) -> List[ChangeReport]:
        with self._lock:
            return [
                ChangeReport.from_dict(r.to_dict())
                for r in self._history.get(identity_key, [])
            ]

    def __len__(self) -> int:
        return len(self._records)


class SQLiteCanonicalStore(CanonicalStore):
    """SQLite persistence for canonical records and their change history."""

    def __init__(self, path: str, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        super().__init__()
        self.history_limit = history_limit
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        # Groups run on worker threads; every statement goes through self._lock.
        self.conn = sqlite3.connect(str(path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def _init_schema(self) -> None:
        with self._lock:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS canonical_properties (
                    identity_key TEXT PRIMARY KEY,
                    street_line TEXT NOT NULL,
                    city TEXT NOT NULL,
                    state TEXT NOT NULL,
                    postal_code TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    last_fused_at TEXT,
                    observation_count INTEGER NOT NULL DEFAULT 0,
                    record_json TEXT NOT NULL
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS change_reports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    identity_key TEXT NOT NULL,
                    fused_at TEXT NOT NULL,
                    report_json TEXT NOT NULL
                )
                """
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_canonical_locality ON canonical_properties(state, city, postal_code)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_canonical_last_fused ON canonical_properties(last_fused_at)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_change_reports_key ON change_reports(identity_key, id)"
            )
            self.conn.commit()

    def get(self, identity_key: str) -> Optional[CanonicalPropertyRecord]:
        with self._lock:
            row = self.conn.execute(
                "SELECT record_json FROM canonical_properties WHERE identity_key = ?",
                (identity_key,),
            ).fetchone()
        if row is None:
            return None
        return CanonicalPropertyRecord.from_json(row["record_json"])

    def put(
        self, record: CanonicalPropertyRecord, report: Optional[ChangeReport] = None
    ) -> None:
        try:
            with self._lock:
                try:
                    self._upsert(record)
                    if report is not None:
                        self._insert_history(record.identity_key, report)
                    self.conn.commit()
                except sqlite3.Error:
                    self.conn.rollback()
                    raise
        except sqlite3.Error as exc:
            logger.error("Failed to write %s: %s", record.identity_key, exc)
            raise StoreWriteFailure(record.identity_key, str(exc)) from exc

    def _upsert(self, record: CanonicalPropertyRecord) -> None:
        address = record.address
        self.conn.execute(
            """
            INSERT INTO canonical_properties (
                identity_key, street_line, city, state, postal_code,
                created_at, last_fused_at, observation_count, record_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(identity_key) DO UPDATE SET
                street_line = excluded.street_line,
                city = excluded.city,
                state = excluded.state,
                postal_code = excluded.postal_code,
                last_fused_at = excluded.last_fused_at,
                observation_count = excluded.observation_count,
                record_json = excluded.record_json
            """,
            (
                record.identity_key,
                address.street_line,
                address.city,
                address.state,
                address.postal_code,
                record.created_at,
                record.last_fused_at,
                record.observation_count,
                record.to_json(),
            ),
        )

    def _insert_history(self, identity_key: str, report: ChangeReport) -> None:
        self.conn.execute(
            "INSERT INTO change_reports (identity_key, fused_at, report_json) VALUES (?, ?, ?)",
            (identity_key, report.fused_at, json.dumps(report.to_dict(), default=str)),
        )
        self.conn.execute(
            """
            DELETE FROM change_reports
            WHERE identity_key = ? AND id NOT IN (
                SELECT id FROM change_reports WHERE identity_key = ?
                ORDER BY id DESC LIMIT ?
            )
            """,
            (identity_key, identity_key, self.history_limit),
        )

    def list_keys(self, limit: Optional[int] = None) -> List[str]:
        sql = "SELECT identity_key FROM canonical_properties ORDER BY identity_key"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (int(limit),)
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [row["identity_key"] for row in rows]

    def find(
        self,
        *,
        state: Optional[str] = None,
        city: Optional[str] = None,
        postal_code: Optional[str] = None,
        limit: int = 100,
    ) -> List[CanonicalPropertyRecord]:
        """Records matching the given locality columns, most recently fused first."""

        where: List[str] = []
        params: List[object] = []
        for column, value in (("state", state), ("city", city), ("postal_code", postal_code)):
            if value:
                where.append(f"{column} = ?")
                params.append(value)
        sql = "SELECT record_json FROM canonical_properties"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY last_fused_at DESC, identity_key LIMIT ?"
        params.append(int(limit))
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [CanonicalPropertyRecord.from_json(r["record_json"]) for r in rows]

    def append_history(self, identity_key: str, report: ChangeReport) -> None:
        try:
            with self._lock:
                try:
                    self._insert_history(identity_key, report)
                    self.conn.commit()
                except sqlite3.Error:
                    self.conn.rollback()
                    raise
        except sqlite3.Error as exc:
            logger.error("Failed to record history for %s: %s", identity_key, exc)
            raise StoreWriteFailure(identity_key, str(exc)) from exc

    def history(self, identity_key: str) -> List[ChangeReport]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT report_json FROM change_reports WHERE identity_key = ? ORDER BY id",
                (identity_key,),
            ).fetchall()
        return [ChangeReport.from_dict(json.loads(r["report_json"])) for r in rows]
