"""
Lane ordering for the task board. Each status is a lane whose tasks carry a dense
order_index 0..n-1. Ties are broken by (order_index asc, updated_at desc, id asc).

The reorder plan is computed as a pure function of a task snapshot and the caller's
intent, then written in one transaction; clients can use the same functions to
show a move before the server confirms it and fall back to the old snapshot on failure.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Iterable

from database import record_activity, transaction
from date_utils import now_iso

logger = logging.getLogger("lane_service")

# Lanes in board order
TASK_STATUSES = ("todo", "in_progress", "blocked", "parking_lot", "done")
INITIAL_LANE = "todo"
TERMINAL_LANE = "done"

_LANE_ORDER_SQL = "ORDER BY order_index ASC, updated_at DESC, id ASC"


class ReorderRejected(ValueError):
    """The reorder request is inconsistent with the board; nothing was written."""


@dataclass
class LanePlan:
    moved_task_id: str
    from_status: str
    to_status: str
    target_ids: list[str] = field(default_factory=list)
    source_ids: list[str] = field(default_factory=list)

    @property
    def changes_lane(self) -> bool:
        return self.from_status != self.to_status

    def assignments(self) -> dict[str, tuple[str, int]]:
        """task id -> (status, order) for every task the plan touches."""
        out = {tid: (self.from_status, i) for i, tid in enumerate(self.source_ids)} if self.changes_lane else {}
        out.update({tid: (self.to_status, i) for i, tid in enumerate(self.target_ids)})
        return out


def sort_lane(tasks: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order lane members by order asc, updated_at desc, id asc."""
    out = sorted(tasks, key=lambda t: t["id"])
    out.sort(key=lambda t: t.get("updated_at") or "", reverse=True)
    out.sort(key=lambda t: t.get("order") or 0)
    return out


def dedupe_ids(ids: Iterable[str]) -> list[str]:
    """Drop empty and repeated ids, keeping first occurrences."""
    seen: set[str] = set()
    out: list[str] = []
    for tid in ids:
        if tid and tid not in seen:
            seen.add(tid)
            out.append(tid)
    return out


def plan_lane_reorder(
    tasks: Iterable[dict[str, Any]],
    moved_task_id: str,
    to_status: str,
    ordered_task_ids: Iterable[str],
) -> LanePlan:
    """
    Compute the lane sequences after moving `moved_task_id` into `to_status`.
    `ordered_task_ids` is the caller's order for the head of the target lane; lane members
    it leaves out follow in tie-break order. Raises ReorderRejected if the moved task is
    unknown or missing from the list, or if any other listed id is unknown or in another lane.
    """
    if to_status not in TASK_STATUSES:
        raise ReorderRejected(f"unknown lane {to_status!r}")
    by_id = {t["id"]: t for t in tasks}
    moved = by_id.get(moved_task_id)
    if moved is None:
        raise ReorderRejected(f"task {moved_task_id} not found")
    ordered = dedupe_ids(ordered_task_ids)
    if moved_task_id not in ordered:
        raise ReorderRejected("ordered ids must include the moved task")
    for tid in ordered:
        other = by_id.get(tid)
        if other is None:
            raise ReorderRejected(f"task {tid} not found")
        if tid != moved_task_id and other["status"] != to_status:
            raise ReorderRejected(f"task {tid} is not in lane {to_status}")
    listed = set(ordered)
    rest = sort_lane(t for t in by_id.values() if t["status"] == to_status and t["id"] not in listed)
    plan = LanePlan(
        moved_task_id=moved_task_id,
        from_status=moved["status"],
        to_status=to_status,
        target_ids=ordered + [t["id"] for t in rest],
    )
    if plan.changes_lane:
        plan.source_ids = [
            t["id"] for t in sort_lane(t for t in by_id.values() if t["status"] == plan.from_status and t["id"] != moved_task_id)
        ]
    return plan


def apply_lane_plan(tasks: Iterable[dict[str, Any]], plan: LanePlan) -> list[dict[str, Any]]:
    """Return new task dicts with the plan's lanes and orders; the input is not modified."""
    assignments = plan.assignments()
    out = []
    for t in tasks:
        if t["id"] in assignments:
            status, order = assignments[t["id"]]
            t = {**t, "status": status, "order": order}
        out.append(t)
    return out


# --- SQL side ---


def lane_task_ids(conn: sqlite3.Connection, status: str, exclude: Iterable[str] = ()) -> list[str]:
    skip = set(exclude)
    rows = conn.execute(f"SELECT id FROM tasks WHERE status = ? {_LANE_ORDER_SQL}", (status,)).fetchall()
    return [r[0] for r in rows if r[0] not in skip]


def next_lane_order(conn: sqlite3.Connection, status: str) -> int:
    """Order value that appends to the end of a lane."""
    return conn.execute(
        "SELECT COALESCE(MAX(order_index), -1) + 1 FROM tasks WHERE status = ?", (status,)
    ).fetchone()[0]


def renumber_lane(conn: sqlite3.Connection, status: str) -> int:
    """Rewrite a lane's order_index as 0..n-1 in tie-break order. Returns lane size."""
    ids = lane_task_ids(conn, status)
    for index, tid in enumerate(ids):
        conn.execute("UPDATE tasks SET order_index = ? WHERE id = ? AND order_index != ?", (index, tid, index))
    return len(ids)


def normalize_all_lanes(conn: sqlite3.Connection) -> None:
    for status in TASK_STATUSES:
        renumber_lane(conn, status)


def repair_lane(status: str) -> int:
    """Standalone repair of one lane's ordering."""
    if status not in TASK_STATUSES:
        raise ValueError(f"status must be one of {list(TASK_STATUSES)}")
    with transaction() as conn:
        return renumber_lane(conn, status)


def reorder_tasks_in_lane(moved_task_id: str, to_status: str, ordered_task_ids: list[str]) -> list[dict[str, Any]]:
    """
    Move one task into `to_status` at the position given by `ordered_task_ids` and make
    both the target lane and the task's previous lane dense again. All or nothing.
    Moving into the terminal lane completes the task and may spawn its next occurrence.
    Returns the full task list. Raises ReorderRejected for inconsistent input.
    """
    from task_service import task_row_to_dict, list_tasks, spawn_next_occurrence

    with transaction() as conn:
        snapshot = [task_row_to_dict(r) for r in conn.execute("SELECT * FROM tasks").fetchall()]
        plan = plan_lane_reorder(snapshot, moved_task_id, to_status, ordered_task_ids)
        moved = next(t for t in snapshot if t["id"] == moved_task_id)
        now = now_iso()
        if plan.changes_lane:
            completed_at = moved.get("completed_at")
            if to_status == TERMINAL_LANE:
                completed_at = now
            elif plan.from_status == TERMINAL_LANE:
                completed_at = None
            conn.execute("UPDATE tasks SET completed_at = ? WHERE id = ?", (completed_at, moved_task_id))
        for index, tid in enumerate(plan.target_ids):
            conn.execute(
                "UPDATE tasks SET status = ?, order_index = ?, updated_at = ? WHERE id = ?",
                (to_status, index, now, tid),
            )
        if plan.changes_lane:
            for index, tid in enumerate(plan.source_ids):
                conn.execute("UPDATE tasks SET order_index = ? WHERE id = ?", (index, tid))
            if to_status == TERMINAL_LANE and moved.get("recurrence", "none") != "none":
                spawn_next_occurrence(conn, moved)
        record_activity(
            conn, "task", moved_task_id, "reordered",
            {"from_status": plan.from_status, "to_status": to_status, "ordered_task_ids": plan.target_ids},
        )
    logger.info(
        "[lane_service] moved %s %s -> %s at position %d",
        moved_task_id, plan.from_status, to_status, plan.target_ids.index(moved_task_id),
    )
    return list_tasks()
