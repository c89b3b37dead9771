"""
Project service: CRUD for projects. The Inbox project always exists and absorbs
the tasks and content of deleted projects.
"""
from __future__ import annotations

import logging
from typing import Any

from database import (
    INBOX_PROJECT_ID,
    INTERNAL_SOURCE,
    SOURCES,
    UNSET,
    connection,
    ensure_inbox,
    new_id,
    project_exists as _project_exists,
    record_activity,
    transaction,
)
from date_utils import now_iso

logger = logging.getLogger("project_service")

PROJECT_STATUSES = ("planned", "active", "blocked", "done", "archived")

_COLUMNS = "id, title, description, status, due_date, completion_percent, source, created_at, updated_at"


def _clamp_percent(value: int) -> int:
    return max(0, min(100, int(value)))


def _validate_status(status: str) -> None:
    if status not in PROJECT_STATUSES:
        raise ValueError(f"status must be one of {list(PROJECT_STATUSES)}")


def list_projects(status: str | None = None) -> list[dict[str, Any]]:
    """List projects, most recently updated first, optionally filtered by status."""
    sql = f"SELECT {_COLUMNS} FROM projects"
    params: list[Any] = []
    if status:
        _validate_status(status)
        sql += " WHERE status = ?"
        params.append(status)
    sql += " ORDER BY updated_at DESC"
    with connection() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


def get_project(project_id: str) -> dict[str, Any] | None:
    with connection() as conn:
        row = conn.execute(f"SELECT {_COLUMNS} FROM projects WHERE id = ?", (project_id,)).fetchone()
        return dict(row) if row else None


def project_exists(project_id: str) -> bool:
    with connection() as conn:
        return _project_exists(conn, project_id)


def ensure_inbox_project() -> str:
    """Create the Inbox if it is missing; return its id."""
    with transaction() as conn:
        return ensure_inbox(conn)


def create_project(
    title: str,
    *,
    description: str | None = None,
    status: str = "planned",
    due_date: str | None = None,
    source: str = INTERNAL_SOURCE,
) -> dict[str, Any]:
    """Create a project. completion_percent starts at 100 for a done project, else 0."""
    _validate_status(status)
    if source not in SOURCES:
        raise ValueError(f"source must be one of {sorted(SOURCES)}")
    title = (title or "").strip()
    if not title:
        raise ValueError("title is required")
    pid = new_id()
    now = now_iso()
    with transaction() as conn:
        conn.execute(
            f"INSERT INTO projects ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                pid, title, (description or "").strip() or None, status, due_date,
                100 if status == "done" else 0, source, now, now,
            ),
        )
        record_activity(conn, "project", pid, "created", {"title": title})
    return get_project(pid)


def update_project(
    project_id: str,
    *,
    title: str = UNSET,
    description: str | None = UNSET,
    status: str = UNSET,
    due_date: str | None = UNSET,
    completion_percent: int = UNSET,
) -> dict[str, Any] | None:
    """Update only the fields passed; None clears description/due_date. Returns None if not found."""
    if status is not UNSET:
        _validate_status(status)
    with transaction() as conn:
        if not _project_exists(conn, project_id):
            return None
        updates: list[str] = ["updated_at = ?"]
        params: list[Any] = [now_iso()]
        changed: dict[str, Any] = {}
        if title is not UNSET and title is not None:
            updates.append("title = ?"); params.append(title.strip())
            changed["title"] = title.strip()
        if description is not UNSET:
            updates.append("description = ?"); params.append(description)
            changed["description"] = description
        if status is not UNSET:
            updates.append("status = ?"); params.append(status)
            changed["status"] = status
        if due_date is not UNSET:
            updates.append("due_date = ?"); params.append(due_date)
            changed["due_date"] = due_date
        if completion_percent is not UNSET and completion_percent is not None:
            pct = _clamp_percent(completion_percent)
            updates.append("completion_percent = ?"); params.append(pct)
            changed["completion_percent"] = pct
        params.append(project_id)
        conn.execute(f"UPDATE projects SET {', '.join(updates)} WHERE id = ?", params)
        record_activity(conn, "project", project_id, "updated", changed)
    return get_project(project_id)


def delete_project(project_id: str) -> bool:
    """
    Delete a project. Its tasks and project-level content move to the Inbox.
    The Inbox itself cannot be deleted. Returns True if deleted.
    """
    if project_id == INBOX_PROJECT_ID:
        return False
    with transaction() as conn:
        if not _project_exists(conn, project_id):
            return False
        inbox_id = ensure_inbox(conn)
        moved = conn.execute("UPDATE tasks SET project_id = ? WHERE project_id = ?", (inbox_id, project_id)).rowcount
        conn.execute(
            "UPDATE content_entries SET parent_id = ? WHERE parent_type = 'project' AND parent_id = ?",
            (inbox_id, project_id),
        )
        conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        record_activity(conn, "project", project_id, "deleted", {"reassigned_tasks": moved})
    logger.info("[project_service] deleted project %s, %d task(s) moved to Inbox", project_id, moved)
    return True
