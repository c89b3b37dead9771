"""
Import reconciliation: parse delimited text exported from another tool, match each row
against existing records from the same source, suggest create/update/skip, and commit
the caller's confirmed actions in one transaction.

Rows are plain comma-separated fields with a header line; quoting and embedded commas
are not supported.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from database import connection, record_activity, transaction
from date_utils import now_iso
from lane_service import TASK_STATUSES
from similarity import dice_similarity, normalize

logger = logging.getLogger("import_service")

DELIMITER = ","
FUZZY_MATCH_THRESHOLD = 0.72

ImportType = Literal["apple_reminders", "apple_notes", "chatgpt_projects", "claude_projects"]
ImportAction = Literal["create", "update", "skip"]
EntityType = Literal["task", "project"]

MISSING_TITLE_ERROR = "Missing required title"
_IMPORTED_PROJECT_STATUSES = ("active", "blocked", "done")


@dataclass(frozen=True)
class ImportKind:
    """How one import type behaves: which source tag it stamps and what it produces."""

    source: str
    produces: Literal["tasks", "notes", "projects"]
    required_headers: tuple[str, ...] = ("title",)

    @property
    def entity_type(self) -> EntityType | None:
        return {"tasks": "task", "projects": "project"}.get(self.produces)


IMPORT_KINDS: dict[str, ImportKind] = {
    "apple_reminders": ImportKind("apple_reminders", "tasks"),
    "apple_notes": ImportKind("apple_notes", "notes"),
    "chatgpt_projects": ImportKind("chatgpt", "projects"),
    "claude_projects": ImportKind("claude", "projects"),
}


def get_import_kind(import_type: str) -> ImportKind:
    kind = IMPORT_KINDS.get(import_type)
    if kind is None:
        raise ValueError(f"import type must be one of {sorted(IMPORT_KINDS)}")
    return kind


# --- wire models (snake_case in Python, camelCase in JSON) ---


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DuplicateMatch(_WireModel):
    entity_type: EntityType
    id: str
    title: str
    score: float = Field(ge=0, le=1)
    kind: Literal["exact", "fuzzy"]


class ImportPreviewRow(_WireModel):
    line: int
    values: dict[str, str]
    error: str | None = None
    suggested_action: ImportAction
    selected_action: ImportAction | None = None
    duplicate_match: DuplicateMatch | None = None


class ImportPreviewRequest(_WireModel):
    type: ImportType
    text: str


class ImportPreviewResponse(_WireModel):
    headers: list[str]
    rows: list[ImportPreviewRow]
    valid_rows: int
    invalid_rows: int


class ImportCommitRow(_WireModel):
    values: dict[str, str]
    action: ImportAction = "create"
    duplicate_match: DuplicateMatch | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_values(cls, data: Any) -> Any:
        # Older clients post the field map itself; treat it as a create
        if isinstance(data, dict) and "values" not in data:
            return {"values": data, "action": "create"}
        return data


class ImportCommitRequest(_WireModel):
    type: ImportType
    rows: list[ImportCommitRow]


class ImportCommitResult(_WireModel):
    created_projects: int = 0
    updated_projects: int = 0
    created_tasks: int = 0
    updated_tasks: int = 0
    created_content_entries: int = 0
    skipped_rows: int = 0

    @property
    def changed(self) -> int:
        return (
            self.created_projects + self.updated_projects + self.created_tasks
            + self.updated_tasks + self.created_content_entries
        )


# --- parsing ---


@dataclass
class ParsedText:
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    line_numbers: list[int] = field(default_factory=list)


def parse_delimited(text: str, delimiter: str = DELIMITER) -> ParsedText:
    """
    Header line plus value rows, every field trimmed, blank lines ignored.
    Rows are padded or cut to the header width. line_numbers holds the 1-based
    physical line of each row. Empty input gives an empty result.
    """
    lines = [
        (number, line.strip())
        for number, line in enumerate((text or "").replace("\r\n", "\n").split("\n"), start=1)
        if line.strip()
    ]
    if not lines:
        return ParsedText()
    headers = [h.strip() for h in lines[0][1].split(delimiter)]
    parsed = ParsedText(headers=headers)
    for number, line in lines[1:]:
        fields = [f.strip() for f in line.split(delimiter)]
        fields = (fields + [""] * len(headers))[: len(headers)]
        parsed.rows.append(fields)
        parsed.line_numbers.append(number)
    return parsed


def normalize_task_status(raw: str | None) -> str:
    value = "_".join((raw or "").strip().lower().split())
    return value if value in TASK_STATUSES else "todo"


def normalize_project_status(raw: str | None) -> str:
    value = (raw or "").strip().lower()
    return value if value in _IMPORTED_PROJECT_STATUSES else "planned"


# --- duplicate detection ---


def _candidates(source: str, entity_type: EntityType) -> list[dict[str, Any]]:
    from project_service import list_projects
    from task_service import list_tasks

    pool = list_tasks() if entity_type == "task" else list_projects()
    return [item for item in pool if item.get("source") == source]


def find_duplicate(source: str, entity_type: EntityType, title: str) -> DuplicateMatch | None:
    """
    Best existing record of `entity_type` from `source` for `title`.
    A normalized-equal title is an exact match (score 1.0); otherwise the highest Dice
    score at or above FUZZY_MATCH_THRESHOLD is a fuzzy match; otherwise None.
    """
    candidates = _candidates(source, entity_type)
    wanted = normalize(title)
    if wanted:
        for item in candidates:
            if normalize(item["title"]) == wanted:
                return DuplicateMatch(entity_type=entity_type, id=item["id"], title=item["title"], score=1.0, kind="exact")
    best: dict[str, Any] | None = None
    best_score = 0.0
    for item in candidates:
        score = dice_similarity(item["title"], title)
        if best is None or score > best_score:
            best, best_score = item, score
    if best is not None and best_score >= FUZZY_MATCH_THRESHOLD:
        return DuplicateMatch(
            entity_type=entity_type, id=best["id"], title=best["title"], score=round(best_score, 2), kind="fuzzy"
        )
    return None


def suggest_action(match: DuplicateMatch | None) -> ImportAction:
    if match is None:
        return "create"
    return "update" if match.kind == "exact" else "skip"


# --- preview ---


def preview_import(import_type: str, text: str) -> ImportPreviewResponse:
    """Classify every row of `text` without writing anything."""
    kind = get_import_kind(import_type)
    parsed = parse_delimited(text)
    missing = [h for h in kind.required_headers if h not in parsed.headers]
    if missing:
        row = ImportPreviewRow(
            line=1, values={}, error=f"Missing headers: {', '.join(missing)}",
            suggested_action="skip", selected_action="skip",
        )
        return ImportPreviewResponse(headers=parsed.headers, rows=[row], valid_rows=0, invalid_rows=1)

    rows: list[ImportPreviewRow] = []
    for number, fields in zip(parsed.line_numbers, parsed.rows):
        values = dict(zip(parsed.headers, fields))
        title = (values.get("title") or "").strip()
        if not title:
            rows.append(ImportPreviewRow(
                line=number, values=values, error=MISSING_TITLE_ERROR,
                suggested_action="skip", selected_action="skip",
            ))
            continue
        match = find_duplicate(kind.source, kind.entity_type, title) if kind.entity_type else None
        action = suggest_action(match)
        rows.append(ImportPreviewRow(
            line=number, values=values, suggested_action=action, selected_action=action, duplicate_match=match,
        ))
    invalid = sum(1 for r in rows if r.error)
    return ImportPreviewResponse(headers=parsed.headers, rows=rows, valid_rows=len(rows) - invalid, invalid_rows=invalid)


# --- commit ---


def _value(values: dict[str, str], key: str) -> str | None:
    return (values.get(key) or "").strip() or None


def _commit_task_row(conn: sqlite3.Connection, row: ImportCommitRow, title: str, kind: ImportKind, result: ImportCommitResult) -> None:
    from database import ensure_inbox, project_exists
    from task_service import create_task, update_task

    values = row.values
    project_id = _value(values, "project_id")
    if not (project_id and project_exists(conn, project_id)):
        project_id = ensure_inbox(conn)
    fields = {
        "details": _value(values, "notes"),
        "due_date": _value(values, "due_date"),
        "status": normalize_task_status(values.get("status")),
        "project_id": project_id,
    }
    match = row.duplicate_match
    if row.action == "update" and match is not None and match.entity_type == "task":
        if update_task(match.id, title=title, **fields) is not None:
            result.updated_tasks += 1
            return
        logger.info("[import_service] task %s vanished; creating instead", match.id)
    create_task(title, source=kind.source, **fields)
    result.created_tasks += 1


def _commit_note_row(conn: sqlite3.Connection, row: ImportCommitRow, title: str, kind: ImportKind, result: ImportCommitResult) -> None:
    from content_service import create_content_entry
    from database import ensure_inbox

    values = row.values
    task_id = _value(values, "task_id")
    if task_id:
        parent_type, parent_id = "task", task_id
    else:
        parent_type, parent_id = "project", _value(values, "project_id") or ensure_inbox(conn)
    entry = create_content_entry(parent_type, parent_id, "text", text_content=_value(values, "content") or title)
    if entry is None:
        result.skipped_rows += 1
    else:
        result.created_content_entries += 1


def _commit_project_row(conn: sqlite3.Connection, row: ImportCommitRow, title: str, kind: ImportKind, result: ImportCommitResult) -> None:
    from project_service import create_project, update_project

    values = row.values
    fields = {
        "description": _value(values, "notes"),
        "due_date": _value(values, "due_date"),
        "status": normalize_project_status(values.get("status")),
    }
    match = row.duplicate_match
    if row.action == "update" and match is not None and match.entity_type == "project":
        if update_project(match.id, title=title, **fields) is not None:
            result.updated_projects += 1
            return
        logger.info("[import_service] project %s vanished; creating instead", match.id)
    create_project(title, source=kind.source, **fields)
    result.created_projects += 1


_ROW_HANDLERS: dict[str, Callable[[sqlite3.Connection, ImportCommitRow, str, ImportKind, ImportCommitResult], None]] = {
    "tasks": _commit_task_row,
    "notes": _commit_note_row,
    "projects": _commit_project_row,
}


def commit_import(import_type: str, rows: Iterable[ImportCommitRow | dict[str, Any]]) -> ImportCommitResult:
    """
    Apply confirmed rows. Rows with a blank title or action "skip" are counted as skipped.
    Runs in one transaction: a storage error leaves nothing behind.
    """
    kind = get_import_kind(import_type)
    handler = _ROW_HANDLERS[kind.produces]
    result = ImportCommitResult()
    with transaction() as conn:
        for raw in rows:
            row = raw if isinstance(raw, ImportCommitRow) else ImportCommitRow.model_validate(raw)
            title = (row.values.get("title") or "").strip()
            if not title or row.action == "skip":
                result.skipped_rows += 1
                continue
            handler(conn, row, title, kind, result)
        if result.changed:
            bump_import_status(conn, kind.source, result.changed)
    logger.info("[import_service] %s commit: %s", import_type, result.model_dump())
    return result


# --- per-source counters ---


def bump_import_status(conn: sqlite3.Connection, source: str, count: int) -> None:
    """Add `count` to the source's running total and stamp the time. No-op for zero."""
    if count <= 0:
        return
    conn.execute(
        """INSERT INTO import_statuses (source, imported_count, last_imported_at) VALUES (?, ?, ?)
           ON CONFLICT(source) DO UPDATE SET imported_count = imported_count + excluded.imported_count,
                                             last_imported_at = excluded.last_imported_at""",
        (source, count, now_iso()),
    )
    record_activity(conn, "import", source, "imported", {"count": count})


def list_import_statuses() -> list[dict[str, Any]]:
    with connection() as conn:
        rows = conn.execute("SELECT source, imported_count, last_imported_at FROM import_statuses ORDER BY source").fetchall()
        return [dict(r) for r in rows]
