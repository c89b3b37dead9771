"""
SQLite database initialization and the shared connection for Mission Control.
Self-bootstrapping: creates DB file, tables, indexes on first use, then runs the
additive migrations (legacy JSON store, task ownership, lane order, notes -> content).
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from ulid import ULID

from date_utils import now_iso

logger = logging.getLogger("database")

_ROOT = Path(__file__).resolve().parent
_DEFAULT_DB_PATH = _ROOT / "mission_control.db"
_DEFAULT_LEGACY_STORE_PATH = _ROOT / "data" / "store.json"

# Wait up to this many seconds for locks held by another process
_CONNECT_TIMEOUT = 30.0

INBOX_PROJECT_ID = "proj-inbox"
INBOX_TITLE = "Inbox"
INTERNAL_SOURCE = "mission_control"
SOURCES = frozenset({INTERNAL_SOURCE, "apple_reminders", "apple_notes", "chatgpt", "claude"})

# Sentinel for patch parameters: UNSET means "leave unchanged"; None means "set to null"
UNSET: Any = object()

NOTES_TO_CONTENT_MIGRATION = "migrate_notes_to_content_entries_v1"

_SCHEMA = """
-- status: planned | active | blocked | done | archived
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL,
    due_date TEXT,
    completion_percent INTEGER NOT NULL DEFAULT 0,
    source TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- status is the lane; order_index is dense 0..n-1 within a lane
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    details TEXT,
    status TEXT NOT NULL,
    priority TEXT NOT NULL,
    due_date TEXT,
    scheduled_at TEXT,
    completed_at TEXT,
    project_id TEXT,
    source TEXT NOT NULL,
    order_index INTEGER NOT NULL DEFAULT 0,
    recurrence TEXT NOT NULL DEFAULT 'none',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (project_id) REFERENCES projects(id)
);

-- Legacy free-form notes; copied once into content_entries
CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    project_id TEXT,
    task_id TEXT,
    source TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS content_assets (
    id TEXT PRIMARY KEY,
    file_path TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    width INTEGER,
    height INTEGER,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS content_entries (
    id TEXT PRIMARY KEY,
    parent_type TEXT NOT NULL CHECK (parent_type IN ('project', 'task')),
    parent_id TEXT NOT NULL,
    entry_type TEXT NOT NULL CHECK (entry_type IN ('text', 'url', 'image')),
    text_content TEXT,
    url TEXT,
    asset_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (asset_id) REFERENCES content_assets(id)
);

-- Running per-source import counters
CREATE TABLE IF NOT EXISTS import_statuses (
    source TEXT PRIMARY KEY,
    imported_count INTEGER NOT NULL,
    last_imported_at TEXT NOT NULL
);

-- Audit log for project / task / content / import events
CREATE TABLE IF NOT EXISTS activity (
    id TEXT PRIMARY KEY,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    action TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_migrations (
    name TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);
CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);
CREATE INDEX IF NOT EXISTS idx_projects_status ON projects(status);
CREATE INDEX IF NOT EXISTS idx_content_parent ON content_entries(parent_type, parent_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity(created_at);
"""

# One connection per process, opened on first use.
_lock = threading.RLock()
_conn: sqlite3.Connection | None = None
_conn_path: Path | None = None
_tx_depth = 0


def new_id() -> str:
    return str(ULID())


def get_db_path() -> Path:
    """Return the database file path (from config if set)."""
    from config import load as load_config

    path = load_config().database_path
    return Path(path) if path else _DEFAULT_DB_PATH


def get_legacy_store_path() -> Path:
    from config import load as load_config

    path = load_config().legacy_store_path
    return Path(path) if path else _DEFAULT_LEGACY_STORE_PATH


def init_database(path: Path | None = None, *, legacy_store_path: Path | None = None) -> Path:
    """
    Open the shared connection on `path` (default from config) and bootstrap it.
    Calling again with another path closes the previous connection first.
    Returns the resolved database path.
    """
    global _conn, _conn_path
    db_path = (path or get_db_path()).resolve()
    with _lock:
        if _conn is not None and _conn_path == db_path:
            return db_path
        close_database()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), timeout=_CONNECT_TIMEOUT, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        _conn, _conn_path = conn, db_path
        try:
            _bootstrap(conn, legacy_store_path or get_legacy_store_path())
        except Exception:
            close_database()
            raise
        logger.info("[database] opened %s", db_path)
        return db_path


def close_database() -> None:
    """Close the shared connection (next get_connection() reopens it)."""
    global _conn, _conn_path, _tx_depth
    with _lock:
        if _conn is not None:
            _conn.close()
        _conn, _conn_path, _tx_depth = None, None, 0


def get_connection() -> sqlite3.Connection:
    """Return the shared connection, initializing the database on first use."""
    with _lock:
        if _conn is None:
            init_database()
        assert _conn is not None
        return _conn


@contextmanager
def connection() -> Iterator[sqlite3.Connection]:
    """Hold the connection lock for a group of reads."""
    with _lock:
        yield get_connection()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """
    Run a block atomically. The outermost block begins and commits; any exception
    rolls everything back and is re-raised unchanged. Nested blocks join the outer one.
    """
    global _tx_depth
    with _lock:
        conn = get_connection()
        if _tx_depth:
            _tx_depth += 1
            try:
                yield conn
            finally:
                _tx_depth -= 1
            return
        conn.execute("BEGIN IMMEDIATE")
        _tx_depth = 1
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
        finally:
            _tx_depth = 0


def record_activity(
    conn: sqlite3.Connection,
    entity_type: str,
    entity_id: str,
    action: str,
    payload: dict[str, Any] | None = None,
) -> None:
    conn.execute(
        "INSERT INTO activity (id, entity_type, entity_id, action, payload, created_at) VALUES (?, ?, ?, ?, ?, ?)",
        (new_id(), entity_type, entity_id, action, json.dumps(payload or {}), now_iso()),
    )


def list_activity(limit: int = 100) -> list[dict[str, Any]]:
    """Most recent activity first."""
    with connection() as conn:
        rows = conn.execute(
            "SELECT id, entity_type, entity_id, action, payload, created_at FROM activity ORDER BY created_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
    out = []
    for r in rows:
        d = dict(r)
        d["payload"] = json.loads(d["payload"]) if d.get("payload") else {}
        out.append(d)
    return out


def project_exists(conn: sqlite3.Connection, project_id: str) -> bool:
    return conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is not None


def ensure_inbox(conn: sqlite3.Connection) -> str:
    """Create the Inbox project if missing. Returns its id."""
    if not project_exists(conn, INBOX_PROJECT_ID):
        now = now_iso()
        conn.execute(
            """INSERT INTO projects (id, title, description, status, due_date, completion_percent, source, created_at, updated_at)
               VALUES (?, ?, ?, 'active', NULL, 0, ?, ?, ?)""",
            (INBOX_PROJECT_ID, INBOX_TITLE, "System default project for uncategorized tasks.", INTERNAL_SOURCE, now, now),
        )
    return INBOX_PROJECT_ID


# --- bootstrap / migrations ---


def _bootstrap(conn: sqlite3.Connection, legacy_store_path: Path) -> None:
    from lane_service import normalize_all_lanes

    conn.executescript(_SCHEMA)
    _ensure_column(conn, "ALTER TABLE projects ADD COLUMN due_date TEXT")
    _ensure_column(conn, "ALTER TABLE tasks ADD COLUMN order_index INTEGER NOT NULL DEFAULT 0")
    _ensure_column(conn, "ALTER TABLE tasks ADD COLUMN recurrence TEXT NOT NULL DEFAULT 'none'")
    _ensure_column(conn, "ALTER TABLE notes ADD COLUMN task_id TEXT")
    with transaction():
        empty = conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0] == 0
    if empty and legacy_store_path.exists():
        migrate_legacy_store(conn, legacy_store_path)
    with transaction():
        inbox_id = ensure_inbox(conn)
        # Every task belongs to a project
        conn.execute(
            "UPDATE tasks SET project_id = ? WHERE project_id IS NULL OR project_id = '' "
            "OR project_id NOT IN (SELECT id FROM projects)",
            (inbox_id,),
        )
        normalize_all_lanes(conn)
    migrate_notes_to_content(conn)


def _ensure_column(conn: sqlite3.Connection, alter_sql: str) -> None:
    try:
        conn.execute(alter_sql)
    except sqlite3.OperationalError as e:
        if "duplicate column" not in str(e).lower():
            raise


def _migration_applied(conn: sqlite3.Connection, name: str) -> bool:
    return conn.execute("SELECT 1 FROM schema_migrations WHERE name = ?", (name,)).fetchone() is not None


def _mark_migration(conn: sqlite3.Connection, name: str) -> None:
    conn.execute("INSERT OR IGNORE INTO schema_migrations (name, created_at) VALUES (?, ?)", (name, now_iso()))


def migrate_legacy_store(conn: sqlite3.Connection, store_path: Path) -> None:
    """
    Copy projects, tasks, notes, import statuses and activity from the pre-SQLite
    JSON store (camelCase records). All or nothing; errors propagate.
    Tasks with an unknown status land in the initial lane.
    """
    from lane_service import INITIAL_LANE, TASK_STATUSES

    data = json.loads(store_path.read_text(encoding="utf-8"))
    lane_counters: dict[str, int] = {}
    with transaction():
        for p in data.get("projects") or []:
            conn.execute(
                """INSERT INTO projects (id, title, description, status, due_date, completion_percent, source, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    p["id"], p["title"], p.get("description"), p.get("status") or "planned", p.get("dueDate"),
                    p.get("completionPercent") or 0, p.get("source") or INTERNAL_SOURCE, p["createdAt"], p["updatedAt"],
                ),
            )
        for t in data.get("tasks") or []:
            status = t.get("status") if t.get("status") in TASK_STATUSES else INITIAL_LANE
            order = t.get("order")
            if not isinstance(order, int):
                order = lane_counters.get(status, 0)
                lane_counters[status] = order + 1
            conn.execute(
                """INSERT INTO tasks (
                    id, title, details, status, priority, due_date, scheduled_at, completed_at,
                    project_id, source, order_index, recurrence, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    t["id"], t["title"], t.get("details"), status, t.get("priority") or "medium",
                    t.get("dueDate"), t.get("scheduledAt"), t.get("completedAt"),
                    t.get("projectId") or INBOX_PROJECT_ID, t.get("source") or INTERNAL_SOURCE, order,
                    t.get("recurrence") or "none", t["createdAt"], t["updatedAt"],
                ),
            )
        for n in data.get("notes") or []:
            conn.execute(
                """INSERT INTO notes (id, title, content, project_id, task_id, source, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    n["id"], n["title"], n.get("content") or "", n.get("projectId"), n.get("taskId"),
                    n.get("source") or INTERNAL_SOURCE, n["createdAt"], n["updatedAt"],
                ),
            )
        for s in data.get("importStatuses") or []:
            conn.execute(
                "INSERT INTO import_statuses (source, imported_count, last_imported_at) VALUES (?, ?, ?)",
                (s["source"], s["importedCount"], s["lastImportedAt"]),
            )
        for a in data.get("activity") or []:
            conn.execute(
                "INSERT INTO activity (id, entity_type, entity_id, action, payload, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (a["id"], a["entityType"], a["entityId"], a["action"], json.dumps(a.get("payload") or {}), a["createdAt"]),
            )
    logger.info("[database] imported legacy store %s", store_path)


def migrate_notes_to_content(conn: sqlite3.Connection) -> int:
    """
    One-shot: turn legacy notes into text content entries. A note keeps its task when
    that task still exists, else its project, else goes to the Inbox. Returns notes copied.
    """
    with transaction():
        if _migration_applied(conn, NOTES_TO_CONTENT_MIGRATION):
            return 0
        notes = conn.execute(
            "SELECT id, title, content, project_id, task_id, created_at, updated_at FROM notes ORDER BY created_at ASC"
        ).fetchall()
        inbox_id = ensure_inbox(conn) if notes else INBOX_PROJECT_ID
        for note in notes:
            parent_type, parent_id = "project", inbox_id
            if note["task_id"] and conn.execute("SELECT 1 FROM tasks WHERE id = ?", (note["task_id"],)).fetchone():
                parent_type, parent_id = "task", note["task_id"]
            elif note["project_id"] and project_exists(conn, note["project_id"]):
                parent_id = note["project_id"]
            text = (note["content"] or "").strip() or note["title"]
            conn.execute(
                """INSERT INTO content_entries (id, parent_type, parent_id, entry_type, text_content, url, asset_id, created_at, updated_at)
                   VALUES (?, ?, ?, 'text', ?, NULL, NULL, ?, ?)""",
                (new_id(), parent_type, parent_id, text, note["created_at"], note["updated_at"]),
            )
        _mark_migration(conn, NOTES_TO_CONTENT_MIGRATION)
    if notes:
        logger.info("[database] migrated %d legacy note(s) to content entries", len(notes))
    return len(notes)


def migrate(path: Path | None = None) -> Path:
    """Run database init + migrations. Use this to migrate manually: python -m database"""
    return init_database(path)


if __name__ == "__main__":
    p = migrate()
    print("Database migrated:", p)
