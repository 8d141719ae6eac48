"""
SQLite storage. One file, one connection, no ORM.

Tables:
- items: every wallpaper seen, keyed by id, unique on content_url

The store owns item lifetime. Writes are serialized with a store-level
lock so eviction's read-then-delete can't race an insert from another
aggregation thread. Any sqlite error surfaces as StorageUnavailable.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager, suppress
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Callable, Iterator

from models import Item, Source

log = logging.getLogger(__name__)

# Fixed-width so lexical order == chronological order
_TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


class StorageUnavailable(Exception):
    """Raised when the database can't be read or written."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_ts(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime(_TS_FORMAT)


def _from_ts(raw: str) -> datetime:
    return datetime.fromisoformat(raw)


class ContentStore:
    def __init__(self, db_path: Path, clock: Callable[[], datetime] = _utcnow):
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.RLock()
        self._last_added_at: datetime | None = None
        try:
            # Aggregation runs on worker threads; the lock makes sharing safe
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.row_factory = sqlite3.Row
            self._migrate()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"cannot open {db_path}: {e}") from e

    def _migrate(self):
        """Create tables if they don't exist. No migration framework needed."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS items (
                id TEXT PRIMARY KEY,
                source TEXT NOT NULL,
                content_url TEXT NOT NULL UNIQUE,
                preview_url TEXT NOT NULL DEFAULT '',
                title TEXT NOT NULL DEFAULT '',
                attribution TEXT NOT NULL DEFAULT '',
                local_path TEXT,
                local_preview_path TEXT,
                pinned INTEGER NOT NULL DEFAULT 0,
                added_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_items_source_added
                ON items(source, added_at);
            CREATE INDEX IF NOT EXISTS idx_items_added
                ON items(added_at);
            CREATE INDEX IF NOT EXISTS idx_items_pinned
                ON items(pinned);
        """)
        self._conn.commit()

    @contextmanager
    def _guard(self, op: str) -> Iterator[None]:
        """Serialize access and translate sqlite errors."""
        with self._lock:
            try:
                yield
            except sqlite3.Error as e:
                with suppress(sqlite3.Error):
                    self._conn.rollback()
                log.error(f"Storage error during {op}: {e}")
                raise StorageUnavailable(f"{op} failed: {e}") from e

    def _next_added_at(self) -> datetime:
        """Monotonic insert timestamp. Caller holds the lock."""
        now = self._clock()
        if self._last_added_at is None:
            row = self._conn.execute("SELECT MAX(added_at) FROM items").fetchone()
            if row[0]:
                self._last_added_at = _from_ts(row[0])
        if self._last_added_at is not None and now <= self._last_added_at:
            now = self._last_added_at + timedelta(microseconds=1)
        self._last_added_at = now
        return now

    def _insert_locked(self, item: Item) -> bool:
        added_at = self._next_added_at()
        cur = self._conn.execute(
            """INSERT OR IGNORE INTO items
               (id, source, content_url, preview_url, title, attribution,
                local_path, local_preview_path, pinned, added_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                item.id,
                item.source.value,
                item.content_url,
                item.preview_url,
                item.title,
                item.attribution,
                item.local_path,
                item.local_preview_path,
                1 if item.pinned else 0,
                _to_ts(added_at),
            ),
        )
        if cur.rowcount > 0:
            item.added_at = added_at
            return True
        return False

    # ── Writes ──

    def insert(self, item: Item) -> bool:
        """
        Insert an item. Returns True if new, False if its content_url
        (or id) is already stored. Duplicates are not an error.
        """
        with self._guard("insert"):
            inserted = self._insert_locked(item)
            self._conn.commit()
            return inserted

    def insert_new(self, items: list[Item]) -> list[Item]:
        """Insert several items in one transaction. Returns the ones that were new."""
        if not items:
            return []
        with self._guard("insert_batch"):
            inserted = [item for item in items if self._insert_locked(item)]
            self._conn.commit()
            return inserted

    def insert_batch(self, items: list[Item]) -> int:
        """Insert multiple items. Returns count of new items."""
        return len(self.insert_new(items))

    def toggle_pin(self, item_id: str) -> bool:
        """Flip the pinned flag. Returns False if no such item."""
        with self._guard("toggle_pin"):
            cur = self._conn.execute(
                "UPDATE items SET pinned = CASE WHEN pinned = 1 THEN 0 ELSE 1 END WHERE id = ?",
                (item_id,),
            )
            self._conn.commit()
            return cur.rowcount > 0

    def set_local_paths(
        self,
        item_id: str,
        local_path: str | None = None,
        local_preview_path: str | None = None,
    ) -> bool:
        """Record where an item was cached. Each path is only set while still empty."""
        with self._guard("set_local_paths"):
            cur = self._conn.execute(
                """UPDATE items SET
                       local_path = COALESCE(local_path, ?),
                       local_preview_path = COALESCE(local_preview_path, ?)
                   WHERE id = ?""",
                (local_path, local_preview_path, item_id),
            )
            self._conn.commit()
            return cur.rowcount > 0

    def delete_oldest(self, source: Source | None = None, keep: int = 0) -> int:
        """
        Delete every non-pinned item beyond the newest `keep`.
        Pinned items are neither counted against `keep` nor deleted.
        Returns the number of rows deleted.
        """
        if keep < 0:
            raise ValueError("keep must be >= 0")

        query = "SELECT id FROM items WHERE pinned = 0"
        params: list = []
        if source:
            query += " AND source = ?"
            params.append(source.value)
        query += " ORDER BY added_at DESC, rowid DESC LIMIT -1 OFFSET ?"
        params.append(keep)

        with self._guard("delete_oldest"):
            cur = self._conn.execute(
                f"DELETE FROM items WHERE id IN ({query})", params
            )
            self._conn.commit()
            return cur.rowcount

    def delete(self, item_id: str) -> bool:
        with self._guard("delete"):
            cur = self._conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
            self._conn.commit()
            return cur.rowcount > 0

    def delete_source(self, source: Source) -> int:
        """Drop everything from one source, pinned included."""
        with self._guard("delete_source"):
            cur = self._conn.execute("DELETE FROM items WHERE source = ?", (source.value,))
            self._conn.commit()
            return cur.rowcount

    # ── Reads ──

    def exists(self, content_url: str) -> bool:
        with self._guard("exists"):
            row = self._conn.execute(
                "SELECT 1 FROM items WHERE content_url = ?", (content_url,)
            ).fetchone()
            return row is not None

    def known_urls(self, source: Source | None = None) -> set[str]:
        """Content URLs already stored, optionally for one source only."""
        with self._guard("known_urls"):
            if source:
                rows = self._conn.execute(
                    "SELECT content_url FROM items WHERE source = ?", (source.value,)
                ).fetchall()
            else:
                rows = self._conn.execute("SELECT content_url FROM items").fetchall()
            return {r[0] for r in rows}

    def get(self, item_id: str) -> Item | None:
        with self._guard("get"):
            row = self._conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
            return self._row_to_item(row) if row else None

    def query(
        self,
        source: Source | None = None,
        pinned: bool | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Item]:
        """Items newest first, optionally filtered."""
        where, params = self._filters(source, pinned)
        with self._guard("query"):
            rows = self._conn.execute(
                f"SELECT * FROM items {where} "
                f"ORDER BY added_at DESC, rowid DESC LIMIT ? OFFSET ?",
                params + [limit, offset],
            ).fetchall()
            items = (self._row_to_item(r) for r in rows)
            return [item for item in items if item is not None]

    def count(self, source: Source | None = None, pinned: bool | None = None) -> int:
        where, params = self._filters(source, pinned)
        with self._guard("count"):
            return self._conn.execute(f"SELECT COUNT(*) FROM items {where}", params).fetchone()[0]

    def count_by_source(self) -> dict[str, int]:
        with self._guard("count_by_source"):
            return {
                row[0]: row[1]
                for row in self._conn.execute(
                    "SELECT source, COUNT(*) FROM items GROUP BY source"
                )
            }

    def last_added_at(self, source: Source) -> datetime | None:
        """When this source last contributed a new item, or None if never."""
        with self._guard("last_added_at"):
            row = self._conn.execute(
                "SELECT MAX(added_at) FROM items WHERE source = ?", (source.value,)
            ).fetchone()
            return _from_ts(row[0]) if row[0] else None

    def get_stats(self) -> dict:
        """Basic stats for debugging."""
        return {
            "total_items": self.count(),
            "pinned_items": self.count(pinned=True),
            "by_source": self.count_by_source(),
        }

    @staticmethod
    def _filters(source: Source | None, pinned: bool | None) -> tuple[str, list]:
        conditions = []
        params: list = []
        if source:
            conditions.append("source = ?")
            params.append(source.value)
        if pinned is not None:
            conditions.append("pinned = ?")
            params.append(1 if pinned else 0)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return where, params

    def _row_to_item(self, row: sqlite3.Row) -> Item | None:
        try:
            source = Source(row["source"])
        except ValueError:
            log.warning(f"Skipping item {row['id']}: unknown source '{row['source']}'")
            return None
        return Item(
            id=row["id"],
            source=source,
            content_url=row["content_url"],
            preview_url=row["preview_url"],
            title=row["title"],
            attribution=row["attribution"],
            local_path=row["local_path"],
            local_preview_path=row["local_preview_path"],
            added_at=_from_ts(row["added_at"]),
            pinned=bool(row["pinned"]),
        )

    def close(self):
        with self._lock:
            self._conn.close()
