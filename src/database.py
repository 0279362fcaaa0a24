"""SQLite repository for ingested content, sources, personality state and run logs."""

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from config import settings
from src.exceptions import DuplicateItemError, RepositoryError
from src.models import RepositoryItem, SourceType

logger = logging.getLogger(__name__)

# Stay well below SQLite's host parameter limit for IN (...) lookups
IN_QUERY_CHUNK = 500


def _create_tables(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS repository_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_type TEXT NOT NULL,
            source_email TEXT,
            source_url TEXT,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            raw_html TEXT,
            ingest_date TEXT NOT NULL,
            received_at TEXT NOT NULL,
            external_message_id TEXT,
            created_at TEXT NOT NULL
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_items_message_id
            ON repository_items(external_message_id)
            WHERE external_message_id IS NOT NULL;

        CREATE UNIQUE INDEX IF NOT EXISTS idx_items_article_url
            ON repository_items(source_url)
            WHERE source_type = 'article';

        CREATE INDEX IF NOT EXISTS idx_items_ingest_date ON repository_items(ingest_date);

        CREATE TABLE IF NOT EXISTS newsletter_sources (
            email TEXT PRIMARY KEY,
            name TEXT NOT NULL DEFAULT '',
            enabled INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS excluded_senders (
            email TEXT PRIMARY KEY,
            reason TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS personality_state (
            locale TEXT PRIMARY KEY,
            episode_count INTEGER NOT NULL DEFAULT 0,
            relationship_phase TEXT NOT NULL DEFAULT 'strangers',
            dimensions TEXT NOT NULL DEFAULT '{}',
            host_name TEXT,
            memorable_moments TEXT NOT NULL DEFAULT '[]',
            inside_joke_count INTEGER NOT NULL DEFAULT 0,
            relationship_paused INTEGER NOT NULL DEFAULT 0,
            last_episode_at TEXT,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS pipeline_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            status TEXT NOT NULL DEFAULT 'running',
            current_step TEXT,
            error_message TEXT,
            steps_log TEXT NOT NULL DEFAULT '[]'
        );

        CREATE INDEX IF NOT EXISTS idx_runs_started ON pipeline_runs(started_at);
    """)
    conn.commit()


def _chunks(values: list[str], size: int = IN_QUERY_CHUNK):
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _row_to_item(row: sqlite3.Row) -> RepositoryItem:
    return RepositoryItem(
        id=row["id"],
        source_type=SourceType(row["source_type"]),
        source_email=row["source_email"],
        source_url=row["source_url"],
        title=row["title"],
        content=row["content"],
        raw_html=row["raw_html"],
        ingest_date=row["ingest_date"],
        received_at=datetime.fromisoformat(row["received_at"]),
        external_message_id=row["external_message_id"],
    )


class Repository:
    """Keyed store behind the ingestion run and the personality engine.

    Every call opens its own connection, so one instance can be shared
    between the request thread and extraction worker threads.
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = Path(db_path) if db_path else settings.database_path

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection, creating the DB and tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        _create_tables(conn)
        return conn

    # --- Repository items ---

    def insert_item(self, item: RepositoryItem) -> int:
        """Insert one item and return its id.

        Raises:
            DuplicateItemError: the message id, or the article URL, is already stored.
        """
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                """INSERT INTO repository_items (source_type, source_email, source_url,
                   title, content, raw_html, ingest_date, received_at,
                   external_message_id, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    str(item.source_type), item.source_email, item.source_url,
                    item.title, item.content, item.raw_html, item.ingest_date,
                    item.received_at.isoformat(), item.external_message_id,
                    datetime.now(UTC).isoformat(),
                ),
            )
            conn.commit()
            item.id = cursor.lastrowid
            return cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateItemError(f"Duplicate {item.source_type} '{item.title}': {e}") from e
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to insert '{item.title}': {e}") from e
        finally:
            conn.close()

    def delete_item(self, item_id: int) -> bool:
        """Delete an item by id. Returns True if a row was removed."""
        conn = self._get_connection()
        try:
            cursor = conn.execute("DELETE FROM repository_items WHERE id = ?", (item_id,))
            conn.commit()
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to delete item {item_id}: {e}") from e
        finally:
            conn.close()

    def get_item(self, item_id: int) -> RepositoryItem | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM repository_items WHERE id = ?", (item_id,)
            ).fetchone()
            return _row_to_item(row) if row else None
        finally:
            conn.close()

    def list_items(self, ingest_date: str | None = None, limit: int = 500) -> list[RepositoryItem]:
        """List items of one day bucket (or the most recent ones), newest first."""
        conn = self._get_connection()
        try:
            if ingest_date:
                rows = conn.execute(
                    "SELECT * FROM repository_items WHERE ingest_date = ? "
                    "ORDER BY received_at DESC LIMIT ?",
                    (ingest_date, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM repository_items ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            return [_row_to_item(r) for r in rows]
        finally:
            conn.close()

    def count_items(self, source_type: SourceType | None = None) -> int:
        conn = self._get_connection()
        try:
            if source_type:
                row = conn.execute(
                    "SELECT COUNT(*) FROM repository_items WHERE source_type = ?",
                    (str(source_type),),
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM repository_items").fetchone()
            return row[0]
        finally:
            conn.close()

    def find_by_message_ids(self, message_ids: list[str]) -> dict[str, int]:
        """Map each already-stored message id to its row id."""
        found: dict[str, int] = {}
        ids = [m for m in dict.fromkeys(message_ids) if m]
        if not ids:
            return found

        conn = self._get_connection()
        try:
            for chunk in _chunks(ids):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT id, external_message_id FROM repository_items "
                    f"WHERE external_message_id IN ({placeholders})",
                    chunk,
                ).fetchall()
                for r in rows:
                    found[r["external_message_id"]] = r["id"]
            return found
        except sqlite3.Error as e:
            raise RepositoryError(f"Message id lookup failed: {e}") from e
        finally:
            conn.close()

    def find_articles_by_urls(self, urls: list[str]) -> dict[str, int]:
        """Map each URL already stored as an article to its row id."""
        found: dict[str, int] = {}
        unique = [u for u in dict.fromkeys(urls) if u]
        if not unique:
            return found

        conn = self._get_connection()
        try:
            for chunk in _chunks(unique):
                placeholders = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT id, source_url FROM repository_items "
                    f"WHERE source_type = 'article' AND source_url IN ({placeholders})",
                    chunk,
                ).fetchall()
                for r in rows:
                    found[r["source_url"]] = r["id"]
            return found
        except sqlite3.Error as e:
            raise RepositoryError(f"Article URL lookup failed: {e}") from e
        finally:
            conn.close()

    def latest_ingest_date(self) -> str | None:
        """Most recent day bucket holding any item, or None for an empty store."""
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT MAX(ingest_date) FROM repository_items").fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    # --- Newsletter sources ---

    def upsert_source(self, email: str, name: str = "", enabled: bool = True) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """INSERT INTO newsletter_sources (email, name, enabled, created_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(email) DO UPDATE SET
                   name=excluded.name,
                   enabled=excluded.enabled""",
                (email.strip().lower(), name, int(enabled), datetime.now(UTC).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def list_sources(self, enabled_only: bool = False) -> list[dict]:
        conn = self._get_connection()
        try:
            query = "SELECT email, name, enabled, created_at FROM newsletter_sources"
            if enabled_only:
                query += " WHERE enabled = 1"
            rows = conn.execute(query + " ORDER BY email").fetchall()
            return [{**dict(r), "enabled": bool(r["enabled"])} for r in rows]
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to list sources: {e}") from e
        finally:
            conn.close()

    def enabled_source_emails(self) -> list[str]:
        return [s["email"] for s in self.list_sources(enabled_only=True)]

    def all_source_emails(self) -> set[str]:
        """Every registered sender, enabled or not, lower-cased."""
        return {s["email"].lower() for s in self.list_sources()}

    # --- Excluded senders ---

    def add_excluded_sender(self, email: str, reason: str = "") -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """INSERT INTO excluded_senders (email, reason, created_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(email) DO UPDATE SET reason=excluded.reason""",
                (email.strip().lower(), reason, datetime.now(UTC).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def excluded_sender_emails(self) -> set[str]:
        conn = self._get_connection()
        try:
            rows = conn.execute("SELECT email FROM excluded_senders").fetchall()
            return {r["email"].lower() for r in rows}
        finally:
            conn.close()

    # --- Personality state ---

    def get_personality(self, locale: str) -> dict | None:
        """Load the stored personality row for a locale, JSON columns decoded."""
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM personality_state WHERE locale = ?", (locale,)
            ).fetchone()
            if not row:
                return None
            d = dict(row)
            d["dimensions"] = json.loads(d["dimensions"])
            d["memorable_moments"] = json.loads(d["memorable_moments"])
            d["relationship_paused"] = bool(d["relationship_paused"])
            return d
        finally:
            conn.close()

    def save_personality(self, data: dict) -> None:
        """Upsert one locale's personality row."""
        conn = self._get_connection()
        try:
            conn.execute(
                """INSERT INTO personality_state (locale, episode_count, relationship_phase,
                   dimensions, host_name, memorable_moments, inside_joke_count,
                   relationship_paused, last_episode_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(locale) DO UPDATE SET
                   episode_count=excluded.episode_count,
                   relationship_phase=excluded.relationship_phase,
                   dimensions=excluded.dimensions,
                   host_name=excluded.host_name,
                   memorable_moments=excluded.memorable_moments,
                   inside_joke_count=excluded.inside_joke_count,
                   relationship_paused=excluded.relationship_paused,
                   last_episode_at=excluded.last_episode_at,
                   updated_at=excluded.updated_at""",
                (
                    data["locale"],
                    data["episode_count"],
                    data["relationship_phase"],
                    json.dumps(data["dimensions"]),
                    data.get("host_name"),
                    json.dumps(data.get("memorable_moments", []), ensure_ascii=False),
                    data.get("inside_joke_count", 0),
                    int(data.get("relationship_paused", False)),
                    data.get("last_episode_at"),
                    datetime.now(UTC).isoformat(),
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to save personality for {data.get('locale')}: {e}") from e
        finally:
            conn.close()

    # --- Pipeline run logging ---

    def start_run(self, run_id: str) -> None:
        """Record the start of a pipeline run."""
        conn = self._get_connection()
        try:
            conn.execute(
                "INSERT INTO pipeline_runs (run_id, started_at, status, steps_log) "
                "VALUES (?, ?, 'running', '[]')",
                (run_id, datetime.now(UTC).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def log_step(self, run_id: str, step: str, status: str, message: str = "") -> None:
        """Log a pipeline step to the current run."""
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT steps_log FROM pipeline_runs WHERE run_id = ?", (run_id,)
            ).fetchone()
            if not row:
                return

            steps = json.loads(row["steps_log"])
            steps.append({
                "step": step,
                "status": status,
                "message": message,
                "timestamp": datetime.now(UTC).isoformat(),
            })

            conn.execute(
                "UPDATE pipeline_runs SET steps_log = ?, current_step = ? WHERE run_id = ?",
                (json.dumps(steps), step, run_id),
            )
            conn.commit()
        finally:
            conn.close()

    def finish_run(self, run_id: str, status: str, error_message: str = "") -> None:
        """Mark a pipeline run as finished."""
        conn = self._get_connection()
        try:
            conn.execute(
                "UPDATE pipeline_runs SET status = ?, finished_at = ?, error_message = ? "
                "WHERE run_id = ?",
                (status, datetime.now(UTC).isoformat(), error_message, run_id),
            )
            conn.commit()
        finally:
            conn.close()

    def list_runs(self, limit: int = 20) -> list[dict]:
        """List recent pipeline runs (most recent first)."""
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM pipeline_runs ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
            result = []
            for r in rows:
                d = dict(r)
                d["steps_log"] = json.loads(d["steps_log"])
                result.append(d)
            return result
        finally:
            conn.close()

    def get_run(self, run_id: str) -> dict | None:
        """Get a single pipeline run by run_id."""
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM pipeline_runs WHERE run_id = ?", (run_id,)
            ).fetchone()
            if not row:
                return None
            d = dict(row)
            d["steps_log"] = json.loads(d["steps_log"])
            return d
        finally:
            conn.close()
