"""
Persistent fingerprint store.

Entries are keyed by song (ISRC, or normalized title|artist) and are only
ever upserted. Two backends share the merge rule in merge_entries():
an in-memory store for tests and single-process use, and a SQLite store.
"""

import json
import logging
import sqlite3
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol

from pulsefind.core.models import FingerprintRecord, StoredFingerprint
from pulsefind.utils.errors import ConfigurationError, StoreError


class FingerprintStore(Protocol):
    """Read-all / get / upsert contract used by the engine."""

    def all_entries(self) -> List[StoredFingerprint]:
        ...

    def get(self, key: str) -> Optional[StoredFingerprint]:
        ...

    def upsert(self, entry: StoredFingerprint) -> StoredFingerprint:
        ...


def merge_entries(
    existing: Optional[StoredFingerprint], incoming: StoredFingerprint
) -> StoredFingerprint:
    """
    Combine an incoming entry with the one already stored under its key.

    The fingerprint and metadata are refreshed, missing fields and platform
    IDs are kept from the existing entry, match_count is incremented and
    created_at is preserved. New entries start at match_count 1.
    """
    now = datetime.utcnow()
    if existing is None:
        return replace(incoming, match_count=max(incoming.match_count, 1), updated_at=now)

    platform_ids = dict(existing.platform_ids)
    platform_ids.update({k: v for k, v in incoming.platform_ids.items() if v})

    return replace(
        incoming,
        album=incoming.album or existing.album,
        isrc=incoming.isrc or existing.isrc,
        platform_ids=platform_ids,
        release_date=incoming.release_date or existing.release_date,
        popularity=incoming.popularity if incoming.popularity is not None else existing.popularity,
        confidence_score=(
            incoming.confidence_score
            if incoming.confidence_score is not None
            else existing.confidence_score
        ),
        match_count=existing.match_count + 1,
        created_at=existing.created_at,
        updated_at=now,
    )


class InMemoryFingerprintStore:
    """
    Thread-safe in-memory fingerprint store.

    Insertion order is kept so local matching scans entries in the order
    they were first stored.
    """

    def __init__(self):
        self._entries: "OrderedDict[str, StoredFingerprint]" = OrderedDict()
        self._lock = threading.RLock()
        self.logger = logging.getLogger("store")

        # Statistics
        self._hits = 0
        self._misses = 0
        self._upserts = 0

    def all_entries(self) -> List[StoredFingerprint]:
        with self._lock:
            return list(self._entries.values())

    def get(self, key: str) -> Optional[StoredFingerprint]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
            return entry

    def upsert(self, entry: StoredFingerprint) -> StoredFingerprint:
        with self._lock:
            merged = merge_entries(self._entries.get(entry.key), entry)
            self._entries[entry.key] = merged
            self._upserts += 1
            self.logger.debug(f"Upserted: {entry.key[:12]}... (count={merged.match_count})")
            return merged

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'hits': self._hits,
                'misses': self._misses,
                'upserts': self._upserts,
                'size': len(self._entries),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS beat_fingerprints (
        key TEXT PRIMARY KEY,
        binary_fingerprint TEXT NOT NULL,
        quick_hash TEXT NOT NULL,
        spectral_features TEXT NOT NULL, -- JSON array of coefficient rows
        duration_ms INTEGER NOT NULL,
        title TEXT NOT NULL,
        artist TEXT NOT NULL,
        album TEXT,
        isrc TEXT,
        platform_ids TEXT NOT NULL DEFAULT '{}', -- JSON object
        release_date TEXT,
        popularity INTEGER,
        confidence_score REAL,
        source TEXT NOT NULL,
        match_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    )
"""

_UPSERT = """
    INSERT INTO beat_fingerprints (
        key, binary_fingerprint, quick_hash, spectral_features, duration_ms,
        title, artist, album, isrc, platform_ids, release_date, popularity,
        confidence_score, source, match_count, created_at, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(key) DO UPDATE SET
        binary_fingerprint = excluded.binary_fingerprint,
        quick_hash = excluded.quick_hash,
        spectral_features = excluded.spectral_features,
        duration_ms = excluded.duration_ms,
        title = excluded.title,
        artist = excluded.artist,
        album = excluded.album,
        isrc = excluded.isrc,
        platform_ids = excluded.platform_ids,
        release_date = excluded.release_date,
        popularity = excluded.popularity,
        confidence_score = excluded.confidence_score,
        source = excluded.source,
        match_count = excluded.match_count,
        updated_at = excluded.updated_at
"""


class SQLiteFingerprintStore:
    """
    SQLite-backed fingerprint store.

    One connection per operation; writes are serialized with a lock so the
    read-merge-write in upsert() is atomic within the process.
    """

    def __init__(self, path: str, timeout: float = 30.0):
        self.path = Path(path)
        self.timeout = timeout
        self._write_lock = threading.Lock()
        self.logger = logging.getLogger("store")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        try:
            with self._connection() as conn:
                conn.execute(_SCHEMA)
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_beat_fingerprints_isrc "
                    "ON beat_fingerprints (isrc)"
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialize fingerprint store: {e}", operation="init") from e

    def all_entries(self) -> List[StoredFingerprint]:
        try:
            with self._connection() as conn:
                rows = conn.execute(
                    "SELECT * FROM beat_fingerprints ORDER BY created_at, rowid"
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read fingerprints: {e}", operation="read") from e
        return [_row_to_entry(row) for row in rows]

    def get(self, key: str) -> Optional[StoredFingerprint]:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT * FROM beat_fingerprints WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read fingerprint: {e}", operation="read", key=key) from e
        return _row_to_entry(row) if row else None

    def upsert(self, entry: StoredFingerprint) -> StoredFingerprint:
        with self._write_lock:
            try:
                with self._connection() as conn:
                    row = conn.execute(
                        "SELECT * FROM beat_fingerprints WHERE key = ?", (entry.key,)
                    ).fetchone()
                    merged = merge_entries(_row_to_entry(row) if row else None, entry)
                    conn.execute(_UPSERT, _entry_to_params(merged))
                    conn.commit()
            except sqlite3.Error as e:
                raise StoreError(
                    f"Failed to upsert fingerprint: {e}", operation="upsert", key=entry.key
                ) from e

        self.logger.debug(f"Upserted: {entry.key[:12]}... (count={merged.match_count})")
        return merged

    def __len__(self) -> int:
        with self._connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM beat_fingerprints").fetchone()[0]


def _entry_to_params(entry: StoredFingerprint) -> tuple:
    fp = entry.fingerprint
    return (
        entry.key,
        fp.binary_fingerprint,
        fp.quick_hash,
        json.dumps([list(row) for row in fp.spectral_features]),
        fp.duration_ms,
        entry.title,
        entry.artist,
        entry.album,
        entry.isrc,
        json.dumps(dict(entry.platform_ids)),
        entry.release_date,
        entry.popularity,
        entry.confidence_score,
        entry.source,
        entry.match_count,
        entry.created_at.isoformat(),
        entry.updated_at.isoformat(),
    )


def _row_to_entry(row: sqlite3.Row) -> StoredFingerprint:
    fingerprint = FingerprintRecord.from_dict({
        'binary_fingerprint': row['binary_fingerprint'],
        'quick_hash': row['quick_hash'],
        'spectral_features': json.loads(row['spectral_features'] or '[]'),
        'duration_ms': row['duration_ms'],
    })
    return StoredFingerprint(
        key=row['key'],
        fingerprint=fingerprint,
        title=row['title'],
        artist=row['artist'],
        album=row['album'],
        isrc=row['isrc'],
        platform_ids=json.loads(row['platform_ids'] or '{}'),
        release_date=row['release_date'],
        popularity=row['popularity'],
        confidence_score=row['confidence_score'],
        source=row['source'],
        match_count=row['match_count'],
        created_at=datetime.fromisoformat(row['created_at']),
        updated_at=datetime.fromisoformat(row['updated_at']),
    )


def create_fingerprint_store(config: Optional[Dict[str, Any]] = None) -> FingerprintStore:
    """
    Factory function to create a store from the ``store`` config section.

    Raises:
        ConfigurationError: Unknown backend
    """
    if config is None:
        config = {}

    backend = config.get('backend', 'memory')
    if backend == 'memory':
        return InMemoryFingerprintStore()
    if backend == 'sqlite':
        return SQLiteFingerprintStore(config.get('path', 'data/fingerprints.db'))

    raise ConfigurationError(
        f"Unknown store backend: {backend}. Must be 'memory' or 'sqlite'",
        config_key='store.backend'
    )
