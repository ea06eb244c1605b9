"""
Fingerprint ledger backed by SQLite.

Append-only: one row per processed input. ``message_id`` and
``content_sha256`` are each UNIQUE, so two workers racing on the same input
cannot both record it; the loser gets a ``LedgerConflict`` naming the
winner's ref.
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from .errors import LedgerConflict
from .models import Fingerprint

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS fingerprints (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ref TEXT NOT NULL,
    message_id TEXT UNIQUE,
    content_sha256 TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
)
"""


class SqliteFingerprintLedger:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._lock = threading.Lock()
        # an in-memory database only lives as long as its connection
        self._shared = sqlite3.connect(db_path, check_same_thread=False) if db_path == ":memory:" else None
        with self._get_conn() as conn:
            conn.execute(SCHEMA)
        logger.debug("fingerprint ledger ready at %s", db_path)

    @contextmanager
    def _get_conn(self):
        if self._shared is not None:
            with self._lock:
                try:
                    yield self._shared
                    self._shared.commit()
                except Exception:
                    self._shared.rollback()
                    raise
            return

        conn = sqlite3.connect(self.db_path, timeout=10)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def exists(self, message_id: Optional[str], content_sha256: str) -> Optional[str]:
        """Ref of a previously recorded input, message id checked first."""
        with self._get_conn() as conn:
            if message_id:
                row = conn.execute(
                    "SELECT ref FROM fingerprints WHERE message_id = ?", (message_id,)
                ).fetchone()
                if row:
                    return row[0]
            row = conn.execute(
                "SELECT ref FROM fingerprints WHERE content_sha256 = ?", (content_sha256,)
            ).fetchone()
            return row[0] if row else None

    def insert(self, fingerprint: Fingerprint, ref: str) -> None:
        """Record a fingerprint; raises LedgerConflict when either key is taken."""
        try:
            with self._get_conn() as conn:
                conn.execute(
                    "INSERT INTO fingerprints (ref, message_id, content_sha256, created_at) VALUES (?, ?, ?, ?)",
                    (ref, fingerprint.message_id, fingerprint.content_sha256,
                     datetime.now(timezone.utc).isoformat()),
                )
        except sqlite3.IntegrityError:
            raise LedgerConflict(self.exists(fingerprint.message_id, fingerprint.content_sha256))

    def count(self) -> int:
        with self._get_conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM fingerprints").fetchone()[0]

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None
