"""
Durable record of which codes were already tried and which ones succeeded.

Two interchangeable backends store the tried set (``JsonCodeStore`` and
``SqliteCodeStore``, both ``load()`` / ``save(codes)``). The success list is a
day-scoped JSON file guarded by an ``asyncio.Lock`` so concurrent appends from
the same batch never lose entries.
"""

import asyncio
import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Set

import Sora_Content_Scraper.src.logger
from Sora_Content_Scraper.src.config import LEGACY_SUCCESS_FILE, TRIED_DB_FILE, TRIED_FILE

logger = logging.getLogger('SCS.Ledger')


def today_tag_utc(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime('%Y%m%d')


def read_json_list(path: Path) -> List[str]:
    """Read a JSON array of strings; absent or malformed files read as empty."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        return []
    except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable ledger file {path}: {e}")
        return []

    if not isinstance(data, list):
        logger.warning(f"Ignoring ledger file {path}: expected a JSON array")
        return []
    return [str(item) for item in data]


def write_json_list(path: Path, items: Iterable[str]):
    """Atomically replace ``path`` with a JSON array. Errors propagate."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_name(path.name + ".tmp")
    try:
        with open(temp_file, 'w', encoding='utf-8') as f:
            json.dump(list(items), f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_file, path)
    except OSError:
        logger.error(f"Failed to write ledger file {path}")
        if temp_file.exists():
            try:
                temp_file.unlink()
            except OSError:
                pass
        raise


# ============================================================================
# TRIED SET STORES
# ============================================================================

class CodeStore:
    """Durable set of codes. Subclasses pick the medium."""

    def load(self) -> Set[str]:
        raise NotImplementedError

    def save(self, codes: Set[str]):
        raise NotImplementedError

    def close(self):
        pass


class JsonCodeStore(CodeStore):
    """Tried set stored as a sorted JSON array (``tried_codes.json``)."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> Set[str]:
        codes = set(read_json_list(self.path))
        logger.info(f"Loaded {len(codes)} tried codes from {self.path}")
        return codes

    def save(self, codes: Set[str]):
        write_json_list(self.path, sorted(codes))
        logger.debug(f"Saved {len(codes)} tried codes to {self.path}")


class CodeStatus(Enum):
    TRIED = "tried"


class SqliteCodeStore(CodeStore):
    """Tried set stored in an SQLite table; saving only ever inserts."""

    def __init__(self, db_file="tried_codes.db"):
        path_obj = Path(db_file)
        path_obj.parent.mkdir(parents=True, exist_ok=True)

        self.db_file = str(db_file)
        self.conn = None
        self._connect()
        self._create_tables()

    def _connect(self):
        try:
            self.conn = sqlite3.connect(self.db_file, check_same_thread=False)
            self.conn.execute("PRAGMA journal_mode = WAL")
            self.conn.execute("PRAGMA synchronous = NORMAL")
            logger.info(f"Connected to SQLite database: {self.db_file}")
        except sqlite3.Error as e:
            logger.error(f"Error connecting to database: {e}")
            raise

    def _create_tables(self):
        try:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS codes (
                    code TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    added_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_status ON codes(status)")
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error creating tables: {e}")
            raise

    def load(self) -> Set[str]:
        try:
            cursor = self.conn.execute(
                "SELECT code FROM codes WHERE status = ?", (CodeStatus.TRIED.value,)
            )
            codes = {row[0] for row in cursor.fetchall()}
        except sqlite3.DatabaseError as e:
            logger.warning(f"Ignoring unreadable code database {self.db_file}: {e}")
            return set()
        logger.info(f"Loaded {len(codes)} tried codes from {self.db_file}")
        return codes

    def save(self, codes: Set[str]):
        try:
            current_time = datetime.now().isoformat()
            self.conn.executemany("""
                INSERT OR IGNORE INTO codes (code, status, added_at)
                VALUES (?, ?, ?)
            """, [(code, CodeStatus.TRIED.value, current_time) for code in sorted(codes)])
            self.conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Error saving tried codes: {e}")
            raise

    def get_stats(self) -> dict:
        cursor = self.conn.execute("SELECT status, COUNT(*) FROM codes GROUP BY status")
        stats = {"tried": 0}
        for status, count in cursor.fetchall():
            stats[status] = count
        return stats

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def open_code_store(kind: str, state_dir) -> CodeStore:
    state_dir = Path(state_dir)
    if kind == "sqlite":
        return SqliteCodeStore(state_dir / TRIED_DB_FILE)
    if kind == "json":
        return JsonCodeStore(state_dir / TRIED_FILE)
    raise ValueError(f"Unknown code store: {kind}")


# ============================================================================
# SUCCESS LEDGER
# ============================================================================

class SuccessLedger:
    """Append-only, deduplicated list of accepted codes for one UTC day."""

    def __init__(self, directory=".", today: Optional[str] = None):
        self.directory = Path(directory)
        self.day = today or today_tag_utc()
        self.path = self.directory / f"success_codes_{self.day}.json"
        self.legacy_path = self.directory / LEGACY_SUCCESS_FILE
        self._lock = asyncio.Lock()
        self._migrated = False

    def _migrate_legacy(self):
        """Fold an undated success file into today's file, once."""
        if self._migrated:
            return
        self._migrated = True

        if not self.legacy_path.exists():
            return

        legacy = read_json_list(self.legacy_path)
        current = read_json_list(self.path)
        merged = list(current)
        for code in legacy:
            if code not in merged:
                merged.append(code)
        write_json_list(self.path, merged)
        logger.info(f"Migrated {len(legacy)} codes from {self.legacy_path} into {self.path}")

        try:
            self.legacy_path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove legacy success file {self.legacy_path}: {e}")

    def _read(self) -> List[str]:
        self._migrate_legacy()
        return read_json_list(self.path)

    def _append_sync(self, code: str) -> bool:
        codes = self._read()
        if code in codes:
            return False
        codes.append(code)
        write_json_list(self.path, codes)
        return True

    def _ensure_exists_sync(self):
        self._migrate_legacy()
        if not self.path.exists():
            write_json_list(self.path, [])

    async def load(self) -> List[str]:
        async with self._lock:
            return await asyncio.to_thread(self._read)

    async def ensure_exists(self):
        async with self._lock:
            await asyncio.to_thread(self._ensure_exists_sync)

    async def append(self, code: str) -> bool:
        """Record ``code``; returns False if it was already recorded."""
        async with self._lock:
            added = await asyncio.to_thread(self._append_sync, code)
        if added:
            logger.info(f"Recorded {code} in {self.path}")
        return added
