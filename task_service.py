"""
Task Service layer: all task mutations go through here.
Every write runs in a database transaction so lane ordering stays dense and
recurrence successors are created together with the completion that caused them.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date, timedelta
from typing import Any

from database import (
    INTERNAL_SOURCE,
    SOURCES,
    UNSET,
    connection,
    ensure_inbox,
    new_id,
    project_exists,
    record_activity,
    transaction,
)
from date_utils import add_recurrence_interval, date_only, now_iso, parse_timestamp
from lane_service import INITIAL_LANE, TASK_STATUSES, TERMINAL_LANE, next_lane_order, renumber_lane

logger = logging.getLogger("task_service")

PRIORITIES = ("low", "medium", "high", "urgent")
RECURRENCES = ("none", "daily", "weekly")

_COLUMNS = (
    "id, title, details, status, priority, due_date, scheduled_at, completed_at, "
    "project_id, source, order_index, recurrence, created_at, updated_at"
)
_LANE_RANK_SQL = "CASE status " + " ".join(f"WHEN '{s}' THEN {i}" for i, s in enumerate(TASK_STATUSES)) + " ELSE 99 END"


def task_row_to_dict(row: Any) -> dict[str, Any]:
    d = dict(row)
    d["order"] = d.pop("order_index", 0) or 0
    if d.get("recurrence") not in RECURRENCES:
        d["recurrence"] = "none"
    return d


def _validate(status: str | None = None, priority: str | None = None, recurrence: str | None = None) -> None:
    if status is not None and status not in TASK_STATUSES:
        raise ValueError(f"status must be one of {list(TASK_STATUSES)}")
    if priority is not None and priority not in PRIORITIES:
        raise ValueError(f"priority must be one of {list(PRIORITIES)}")
    if recurrence is not None and recurrence not in RECURRENCES:
        raise ValueError(f"recurrence must be one of {list(RECURRENCES)}")


def _resolve_project(conn: sqlite3.Connection, project_id: str | None) -> str:
    """The given project if it exists, else the Inbox."""
    if project_id and project_exists(conn, project_id):
        return project_id
    return ensure_inbox(conn)


def _fetch_task(conn: sqlite3.Connection, task_id: str) -> dict[str, Any] | None:
    row = conn.execute(f"SELECT {_COLUMNS} FROM tasks WHERE id = ?", (task_id,)).fetchone()
    return task_row_to_dict(row) if row else None


def list_tasks(status: str | None = None, project_id: str | None = None) -> list[dict[str, Any]]:
    """All tasks in board order: lane, then position within the lane."""
    sql = f"SELECT {_COLUMNS} FROM tasks WHERE 1=1"
    params: list[Any] = []
    if status:
        sql += " AND status = ?"
        params.append(status)
    if project_id:
        sql += " AND project_id = ?"
        params.append(project_id)
    sql += f" ORDER BY {_LANE_RANK_SQL}, order_index ASC, updated_at DESC, id ASC"
    with connection() as conn:
        return [task_row_to_dict(r) for r in conn.execute(sql, params).fetchall()]


def get_task(task_id: str) -> dict[str, Any] | None:
    with connection() as conn:
        return _fetch_task(conn, task_id)


def _insert_task(
    conn: sqlite3.Connection,
    title: str,
    *,
    details: str | None,
    status: str,
    priority: str,
    due_date: str | None,
    scheduled_at: str | None,
    project_id: str | None,
    source: str,
    recurrence: str,
) -> str:
    tid = new_id()
    now = now_iso()
    conn.execute(
        f"INSERT INTO tasks ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            tid, title.strip(), (details or "").strip() or None, status, priority, due_date, scheduled_at,
            now if status == TERMINAL_LANE else None,
            _resolve_project(conn, project_id), source, next_lane_order(conn, status), recurrence, now, now,
        ),
    )
    record_activity(conn, "task", tid, "created", {"title": title.strip()})
    return tid


def create_task(
    title: str,
    *,
    details: str | None = None,
    status: str = INITIAL_LANE,
    priority: str = "medium",
    due_date: str | None = None,
    scheduled_at: str | None = None,
    project_id: str | None = None,
    source: str = INTERNAL_SOURCE,
    recurrence: str = "none",
) -> dict[str, Any]:
    """Create a task at the end of its lane. A missing or unknown project means the Inbox."""
    _validate(status, priority, recurrence)
    if source not in SOURCES:
        raise ValueError(f"source must be one of {sorted(SOURCES)}")
    if not (title or "").strip():
        raise ValueError("title is required")
    with transaction() as conn:
        tid = _insert_task(
            conn, title,
            details=details, status=status, priority=priority, due_date=due_date, scheduled_at=scheduled_at,
            project_id=project_id, source=source, recurrence=recurrence,
        )
        return _fetch_task(conn, tid)


def spawn_next_occurrence(conn: sqlite3.Connection, task: dict[str, Any]) -> str | None:
    """
    Create the successor of a recurring task that was just completed: dates advanced by one
    step, same title/details/priority/project/source/recurrence, appended to the initial lane.
    Returns the new task id, or None for a non-recurring task.
    """
    recurrence = task.get("recurrence") or "none"
    if recurrence == "none":
        return None
    new_tid = _insert_task(
        conn, task["title"],
        details=task.get("details"),
        status=INITIAL_LANE,
        priority=task.get("priority") or "medium",
        due_date=add_recurrence_interval(task.get("due_date"), recurrence),
        scheduled_at=add_recurrence_interval(task.get("scheduled_at"), recurrence),
        project_id=task.get("project_id"),
        source=task.get("source") or INTERNAL_SOURCE,
        recurrence=recurrence,
    )
    record_activity(conn, "task", new_tid, "recurred", {"previous_task_id": task["id"], "recurrence": recurrence})
    logger.info("[task_service] %s recurrence of %s spawned %s", recurrence, task["id"], new_tid)
    return new_tid


def update_task(
    task_id: str,
    *,
    title: str = UNSET,
    details: str | None = UNSET,
    status: str = UNSET,
    priority: str = UNSET,
    due_date: str | None = UNSET,
    scheduled_at: str | None = UNSET,
    project_id: str = UNSET,
    recurrence: str = UNSET,
) -> dict[str, Any] | None:
    """
    Update only the fields passed (UNSET = leave unchanged, None = clear where nullable).
    project_id, status, priority and recurrence cannot be cleared; an unknown project id falls back to the Inbox.
    A lane change appends the task to the new lane and closes the gap in the old one;
    entering the terminal lane completes the task and spawns its next occurrence if it recurs.
    Returns None if the task does not exist.
    """
    for name, value in (("project_id", project_id), ("status", status), ("priority", priority), ("recurrence", recurrence)):
        if value is None:
            raise ValueError(f"task {name} cannot be null")
    _validate(
        None if status is UNSET else status,
        None if priority is UNSET else priority,
        None if recurrence is UNSET else recurrence,
    )
    with transaction() as conn:
        current = _fetch_task(conn, task_id)
        if current is None:
            return None
        now = now_iso()
        updates: list[str] = ["updated_at = ?"]
        params: list[Any] = [now]
        changed: dict[str, Any] = {}
        if title is not UNSET and title is not None and title.strip():
            changed["title"] = title.strip()
        if details is not UNSET:
            changed["details"] = (details or "").strip() or None
        if priority is not UNSET:
            changed["priority"] = priority
        if due_date is not UNSET:
            changed["due_date"] = due_date
        if scheduled_at is not UNSET:
            changed["scheduled_at"] = scheduled_at
        if project_id is not UNSET:
            changed["project_id"] = _resolve_project(conn, project_id)
        if recurrence is not UNSET:
            changed["recurrence"] = recurrence
        old_status = current["status"]
        lane_change = status is not UNSET and status != old_status
        if lane_change:
            changed["status"] = status
            changed["order_index"] = next_lane_order(conn, status)
            if status == TERMINAL_LANE:
                changed["completed_at"] = now
            elif old_status == TERMINAL_LANE:
                changed["completed_at"] = None
        for column, value in changed.items():
            updates.append(f"{column} = ?")
            params.append(value)
        params.append(task_id)
        conn.execute(f"UPDATE tasks SET {', '.join(updates)} WHERE id = ?", params)
        if lane_change:
            renumber_lane(conn, old_status)
        updated = _fetch_task(conn, task_id)
        if lane_change and status == TERMINAL_LANE:
            spawn_next_occurrence(conn, updated)
        record_activity(conn, "task", task_id, "updated", {k: v for k, v in changed.items() if k != "order_index"})
        return updated


def delete_task(task_id: str) -> bool:
    """Delete a task and its content entries, then close the gap in its lane. True if deleted."""
    with transaction() as conn:
        task = _fetch_task(conn, task_id)
        if task is None:
            return False
        conn.execute("DELETE FROM content_entries WHERE parent_type = 'task' AND parent_id = ?", (task_id,))
        conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        renumber_lane(conn, task["status"])
        record_activity(conn, "task", task_id, "deleted", {})
    return True


def build_dashboard_summary(tasks: list[dict[str, Any]], today: date | None = None) -> dict[str, int]:
    """Counts for the dashboard: overdue, due today, blocked, completed in the last 7 days."""
    today = today or date.today()
    today_str = today.isoformat()
    week_ago = (today - timedelta(days=7)).isoformat()
    overdue = due_today = blocked = completed_this_week = 0
    for t in tasks:
        if t.get("status") == "blocked":
            blocked += 1
        due = date_only(t.get("due_date"))
        if due and t.get("status") != TERMINAL_LANE:
            if due < today_str:
                overdue += 1
            elif due == today_str:
                due_today += 1
        completed = t.get("completed_at")
        if completed:
            try:
                completed_day = parse_timestamp(completed).date().isoformat()
            except ValueError:
                completed_day = date_only(completed)
            if completed_day and completed_day >= week_ago:
                completed_this_week += 1
    return {
        "overdue": overdue,
        "due_today": due_today,
        "blocked": blocked,
        "completed_this_week": completed_this_week,
    }
