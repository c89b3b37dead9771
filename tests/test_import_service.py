"""Import service tests: parsing, duplicate detection, preview classification and commit.

Tests cover:
    - parse_delimited: blank lines, trimming, padding/truncation, line numbers
    - find_duplicate: exact, fuzzy, source scoping, threshold boundary
    - preview_import: missing headers, missing title, suggested actions
    - commit_import: per-kind behaviour, vanished targets, counters, atomicity
"""

import sqlite3

import pytest

import import_service
from content_service import list_content_entries
from database import INBOX_PROJECT_ID
from import_service import (
    FUZZY_MATCH_THRESHOLD,
    ImportCommitRow,
    commit_import,
    find_duplicate,
    list_import_statuses,
    normalize_project_status,
    normalize_task_status,
    parse_delimited,
    preview_import,
)
from project_service import create_project, get_project, list_projects
from task_service import create_task, get_task, list_tasks


# -- parse_delimited -----------------------------------------------------------

def test_parse_skips_blank_lines_and_trims_fields():
    parsed = parse_delimited("title, notes\n\n  Buy milk , 2%  \nCall mom")
    assert parsed.headers == ["title", "notes"]
    assert parsed.rows == [["Buy milk", "2%"], ["Call mom", ""]]
    assert parsed.line_numbers == [3, 4]


def test_parse_truncates_extra_fields_and_accepts_crlf():
    parsed = parse_delimited("title\r\na,b,c\r\n")
    assert parsed.rows == [["a"]]
    assert parsed.line_numbers == [2]


def test_parse_empty_text_gives_nothing():
    parsed = parse_delimited("   \n\n")
    assert parsed.headers == []
    assert parsed.rows == []


# -- status normalization ------------------------------------------------------

def test_task_status_normalization():
    assert normalize_task_status(" In Progress ") == "in_progress"
    assert normalize_task_status("PARKING lot") == "parking_lot"
    assert normalize_task_status("someday") == "todo"
    assert normalize_task_status(None) == "todo"


def test_project_status_normalization():
    assert normalize_project_status("Active") == "active"
    assert normalize_project_status("archived") == "planned"
    assert normalize_project_status("") == "planned"


# -- find_duplicate ------------------------------------------------------------

def test_exact_match_ignores_case_and_punctuation():
    task = create_task("Pay rent", source="apple_reminders")
    match = find_duplicate("apple_reminders", "task", "PAY RENT!")
    assert match is not None
    assert match.id == task["id"]
    assert match.kind == "exact"
    assert match.score == 1.0


def test_match_is_scoped_to_source():
    create_task("Pay rent")
    assert find_duplicate("apple_reminders", "task", "Pay rent") is None


def test_fuzzy_match_rounds_score():
    project = create_project("Buy groceries", source="claude")
    match = find_duplicate("claude", "project", "Buy grocery")
    assert match is not None
    assert match.id == project["id"]
    assert match.kind == "fuzzy"
    assert match.score == 0.8


def test_threshold_is_inclusive(monkeypatch):
    create_task("Something else", source="apple_reminders")
    monkeypatch.setattr(import_service, "dice_similarity", lambda a, b: FUZZY_MATCH_THRESHOLD)
    match = find_duplicate("apple_reminders", "task", "Another thing")
    assert match is not None
    assert match.kind == "fuzzy"
    assert match.score == 0.72


def test_score_below_threshold_is_no_match(monkeypatch):
    create_task("Something else", source="apple_reminders")
    monkeypatch.setattr(import_service, "dice_similarity", lambda a, b: 0.7199)
    assert find_duplicate("apple_reminders", "task", "Another thing") is None


# -- preview_import ------------------------------------------------------------

def test_preview_missing_headers_reports_single_row():
    preview = preview_import("apple_reminders", "name,notes\na,b\nc,d")
    assert preview.valid_rows == 0
    assert preview.invalid_rows == 1
    assert len(preview.rows) == 1
    row = preview.rows[0]
    assert row.line == 1
    assert row.error == "Missing headers: title"
    assert row.suggested_action == "skip"


def test_preview_blank_title_is_invalid():
    preview = preview_import("apple_reminders", "title,notes\n,orphan note\nReal task,ok")
    assert preview.valid_rows == 1
    assert preview.invalid_rows == 1
    bad, good = preview.rows
    assert bad.error == "Missing required title"
    assert bad.suggested_action == "skip"
    assert bad.duplicate_match is None
    assert good.suggested_action == "create"
    assert good.line == 3


def test_preview_suggests_update_for_exact_and_skip_for_fuzzy():
    create_project("Launch plan", source="chatgpt")
    create_project("Buy groceries", source="chatgpt")
    preview = preview_import("chatgpt_projects", "title\nlaunch plan\nBuy grocery\nBrand new")
    actions = [r.suggested_action for r in preview.rows]
    assert actions == ["update", "skip", "create"]
    assert preview.rows[0].duplicate_match.kind == "exact"
    assert preview.rows[1].duplicate_match.kind == "fuzzy"


def test_preview_notes_never_look_up_duplicates():
    create_task("Shopping list", source="apple_notes")
    preview = preview_import("apple_notes", "title,content\nShopping list,eggs")
    assert preview.rows[0].suggested_action == "create"
    assert preview.rows[0].duplicate_match is None


def test_preview_serializes_camel_case():
    dumped = preview_import("apple_reminders", "title\nA").model_dump(by_alias=True)
    assert set(dumped) == {"headers", "rows", "validRows", "invalidRows"}
    assert "suggestedAction" in dumped["rows"][0]
    assert "duplicateMatch" in dumped["rows"][0]


def test_unknown_import_type_raises():
    with pytest.raises(ValueError):
        preview_import("todoist", "title\nx")


# -- commit_import -------------------------------------------------------------

def test_commit_creates_tasks_in_inbox_with_normalized_status():
    result = commit_import("apple_reminders", [
        {"values": {"title": "Buy milk", "notes": "2%", "status": "In Progress", "due_date": "2026-01-05"}, "action": "create"},
    ])
    assert result.created_tasks == 1
    [task] = [t for t in list_tasks() if t["source"] == "apple_reminders"]
    assert task["status"] == "in_progress"
    assert task["details"] == "2%"
    assert task["due_date"] == "2026-01-05"
    assert task["project_id"] == INBOX_PROJECT_ID


def test_commit_uses_existing_project_id():
    project = create_project("Home")
    commit_import("apple_reminders", [{"values": {"title": "Fix sink", "project_id": project["id"]}}])
    [task] = list_tasks(project_id=project["id"])
    assert task["title"] == "Fix sink"


def test_commit_update_applies_to_matched_task():
    task = create_task("Pay rent", source="apple_reminders")
    preview = preview_import("apple_reminders", "title,status,notes\npay rent,blocked,landlord away")
    rows = [
        ImportCommitRow(values=r.values, action=r.suggested_action, duplicate_match=r.duplicate_match)
        for r in preview.rows
    ]
    result = commit_import("apple_reminders", rows)
    assert result.updated_tasks == 1
    assert result.created_tasks == 0
    updated = get_task(task["id"])
    assert updated["title"] == "pay rent"
    assert updated["status"] == "blocked"
    assert updated["details"] == "landlord away"


def test_commit_update_of_vanished_task_creates_instead():
    result = commit_import("apple_reminders", [{
        "values": {"title": "Ghost"},
        "action": "update",
        "duplicateMatch": {"entityType": "task", "id": "missing", "title": "Ghost", "score": 1.0, "kind": "exact"},
    }])
    assert result.updated_tasks == 0
    assert result.created_tasks == 1


def test_commit_counts_skips_and_blank_titles():
    result = commit_import("apple_reminders", [
        {"values": {"title": "Keep"}, "action": "skip"},
        {"values": {"title": "  "}, "action": "create"},
        {"values": {"title": "New"}, "action": "create"},
    ])
    assert result.skipped_rows == 2
    assert result.created_tasks == 1


def test_commit_accepts_bare_value_rows():
    result = commit_import("claude_projects", [{"title": "Legacy row", "status": "Weird"}])
    assert result.created_projects == 1
    [project] = [p for p in list_projects() if p["source"] == "claude"]
    assert project["status"] == "planned"


def test_commit_projects_update_matched_project():
    project = create_project("Roadmap", source="claude")
    result = commit_import("claude_projects", [{
        "values": {"title": "Roadmap", "notes": "Q3 focus", "status": "done"},
        "action": "update",
        "duplicateMatch": {"entityType": "project", "id": project["id"], "title": "Roadmap", "score": 1.0, "kind": "exact"},
    }])
    assert result.updated_projects == 1
    updated = get_project(project["id"])
    assert updated["description"] == "Q3 focus"
    assert updated["status"] == "done"


def test_commit_notes_attach_to_inbox_task_or_skip():
    task = create_task("Groceries")
    result = commit_import("apple_notes", [
        {"values": {"title": "Loose note"}},
        {"values": {"title": "On task", "content": "eggs, milk", "task_id": task["id"]}},
        {"values": {"title": "Dangling", "task_id": "no-such-task"}},
    ])
    assert result.created_content_entries == 2
    assert result.skipped_rows == 1
    [inbox_entry] = list_content_entries("project", INBOX_PROJECT_ID)
    assert inbox_entry["text_content"] == "Loose note"
    [task_entry] = list_content_entries("task", task["id"])
    assert task_entry["text_content"] == "eggs, milk"


def test_commit_bumps_import_status_only_when_something_changed():
    commit_import("apple_reminders", [{"values": {"title": "Skip me"}, "action": "skip"}])
    assert list_import_statuses() == []
    commit_import("apple_reminders", [{"values": {"title": "A"}}, {"values": {"title": "B"}}])
    commit_import("apple_reminders", [{"values": {"title": "C"}}])
    [status] = list_import_statuses()
    assert status["source"] == "apple_reminders"
    assert status["imported_count"] == 3
    assert status["last_imported_at"]


def test_commit_rolls_back_everything_on_storage_error(monkeypatch):
    import task_service

    real_create = task_service.create_task
    calls = []

    def flaky_create(*args, **kwargs):
        calls.append(1)
        if len(calls) == 2:
            raise sqlite3.OperationalError("disk I/O error")
        return real_create(*args, **kwargs)

    monkeypatch.setattr(task_service, "create_task", flaky_create)
    with pytest.raises(sqlite3.OperationalError):
        commit_import("apple_reminders", [{"values": {"title": "First"}}, {"values": {"title": "Second"}}])
    assert [t for t in list_tasks() if t["source"] == "apple_reminders"] == []
    assert list_import_statuses() == []


def test_commit_result_serializes_six_counters():
    dumped = commit_import("apple_reminders", []).model_dump(by_alias=True)
    assert dumped == {
        "createdProjects": 0,
        "updatedProjects": 0,
        "createdTasks": 0,
        "updatedTasks": 0,
        "createdContentEntries": 0,
        "skippedRows": 0,
    }
