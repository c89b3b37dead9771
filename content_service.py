"""
Content entries: text, links and images attached to a task or a project.
Invalid references (unknown parent, non-http url, unknown asset) yield None instead of a write.
"""
from __future__ import annotations

import sqlite3
from typing import Any
from urllib.parse import urlparse

from database import UNSET, connection, new_id, project_exists, record_activity, transaction
from date_utils import now_iso

PARENT_TYPES = ("project", "task")
ENTRY_TYPES = ("text", "url", "image")

_ENTRY_SELECT = """
    SELECT e.id, e.parent_type, e.parent_id, e.entry_type, e.text_content, e.url, e.asset_id,
           e.created_at, e.updated_at,
           a.file_path, a.mime_type, a.file_size, a.width, a.height, a.created_at AS asset_created_at
    FROM content_entries e
    LEFT JOIN content_assets a ON a.id = e.asset_id
"""
_ASSET_KEYS = ("file_path", "mime_type", "file_size", "width", "height")


def _entry_row_to_dict(row: Any) -> dict[str, Any]:
    d = dict(row)
    asset = {k: d.pop(k) for k in _ASSET_KEYS}
    asset_created_at = d.pop("asset_created_at")
    if d.get("asset_id") and asset["file_path"] is not None:
        d["asset"] = {"id": d["asset_id"], **asset, "created_at": asset_created_at}
    else:
        d["asset"] = None
    return d


def is_http_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _parent_exists(conn: sqlite3.Connection, parent_type: str, parent_id: str) -> bool:
    if parent_type == "project":
        return project_exists(conn, parent_id)
    if parent_type == "task":
        return conn.execute("SELECT 1 FROM tasks WHERE id = ?", (parent_id,)).fetchone() is not None
    return False


def _asset_exists(conn: sqlite3.Connection, asset_id: str) -> bool:
    return conn.execute("SELECT 1 FROM content_assets WHERE id = ?", (asset_id,)).fetchone() is not None


def list_content_entries(parent_type: str, parent_id: str) -> list[dict[str, Any]]:
    """Entries of one parent, newest first."""
    with connection() as conn:
        rows = conn.execute(
            _ENTRY_SELECT + " WHERE e.parent_type = ? AND e.parent_id = ? ORDER BY e.created_at DESC",
            (parent_type, parent_id),
        ).fetchall()
        return [_entry_row_to_dict(r) for r in rows]


def get_content_entry(entry_id: str) -> dict[str, Any] | None:
    with connection() as conn:
        row = conn.execute(_ENTRY_SELECT + " WHERE e.id = ?", (entry_id,)).fetchone()
        return _entry_row_to_dict(row) if row else None


def create_content_entry(
    parent_type: str,
    parent_id: str,
    entry_type: str = "text",
    *,
    text_content: str | None = None,
    url: str | None = None,
    asset_id: str | None = None,
) -> dict[str, Any] | None:
    """Attach an entry to a task or project. Returns None when a reference is invalid."""
    if parent_type not in PARENT_TYPES or entry_type not in ENTRY_TYPES:
        return None
    if entry_type == "url" and not is_http_url(url):
        return None
    with transaction() as conn:
        if not _parent_exists(conn, parent_type, parent_id):
            return None
        if entry_type == "image" and not (asset_id and _asset_exists(conn, asset_id)):
            return None
        eid = new_id()
        now = now_iso()
        conn.execute(
            """INSERT INTO content_entries (id, parent_type, parent_id, entry_type, text_content, url, asset_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (eid, parent_type, parent_id, entry_type, text_content, url, asset_id, now, now),
        )
        record_activity(conn, "content", eid, "created", {"parent_type": parent_type, "parent_id": parent_id, "entry_type": entry_type})
    return get_content_entry(eid)


def update_content_entry(
    entry_id: str,
    *,
    text_content: str | None = UNSET,
    url: str | None = UNSET,
    asset_id: str | None = UNSET,
) -> dict[str, Any] | None:
    """Patch an entry. None when it does not exist or the new url/asset is invalid."""
    with transaction() as conn:
        row = conn.execute("SELECT entry_type FROM content_entries WHERE id = ?", (entry_id,)).fetchone()
        if not row:
            return None
        if url is not UNSET and url is not None and row["entry_type"] == "url" and not is_http_url(url):
            return None
        if asset_id is not UNSET and asset_id is not None and not _asset_exists(conn, asset_id):
            return None
        updates: list[str] = ["updated_at = ?"]
        params: list[Any] = [now_iso()]
        changed: dict[str, Any] = {}
        for column, value in (("text_content", text_content), ("url", url), ("asset_id", asset_id)):
            if value is not UNSET:
                updates.append(f"{column} = ?")
                params.append(value)
                changed[column] = value
        params.append(entry_id)
        conn.execute(f"UPDATE content_entries SET {', '.join(updates)} WHERE id = ?", params)
        record_activity(conn, "content", entry_id, "updated", changed)
    return get_content_entry(entry_id)


def delete_content_entry(entry_id: str) -> bool:
    with transaction() as conn:
        if conn.execute("DELETE FROM content_entries WHERE id = ?", (entry_id,)).rowcount == 0:
            return False
        record_activity(conn, "content", entry_id, "deleted", {})
    return True


def create_content_asset(
    file_path: str,
    mime_type: str,
    file_size: int,
    *,
    width: int | None = None,
    height: int | None = None,
) -> dict[str, Any]:
    """Register metadata for a stored file so image entries can reference it."""
    aid = new_id()
    with transaction() as conn:
        conn.execute(
            "INSERT INTO content_assets (id, file_path, mime_type, file_size, width, height, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (aid, file_path, mime_type, file_size, width, height, now_iso()),
        )
    return get_content_asset(aid)


def get_content_asset(asset_id: str) -> dict[str, Any] | None:
    with connection() as conn:
        row = conn.execute(
            "SELECT id, file_path, mime_type, file_size, width, height, created_at FROM content_assets WHERE id = ?",
            (asset_id,),
        ).fetchone()
        return dict(row) if row else None
