"""Database tests: transactions, bootstrap repairs and legacy migrations.

Tests cover:
    - transaction(): commit, rollback, nesting
    - legacy JSON store import and notes -> content migration (once)
    - ownership and lane repair on startup
"""

import json

import pytest

import database
from content_service import list_content_entries
from database import INBOX_PROJECT_ID, connection, init_database, list_activity, transaction
from import_service import list_import_statuses
from project_service import get_project, project_exists
from task_service import get_task, list_tasks


def _legacy_store():
    stamp = "2025-01-01T00:00:00.000Z"
    return {
        "projects": [
            {"id": "p1", "title": "Garden", "status": "active", "source": "mission_control",
             "createdAt": stamp, "updatedAt": stamp},
        ],
        "tasks": [
            {"id": "t1", "title": "Water", "status": "todo", "priority": "high", "order": 5,
             "projectId": "p1", "source": "mission_control", "createdAt": stamp, "updatedAt": stamp},
            {"id": "t2", "title": "Weed", "status": "todo", "order": 9, "projectId": None,
             "source": "apple_reminders", "createdAt": stamp, "updatedAt": stamp},
            {"id": "t3", "title": "Prune", "status": "someday", "order": 7, "projectId": "gone",
             "source": "mission_control", "createdAt": stamp, "updatedAt": stamp},
        ],
        "notes": [
            {"id": "n1", "title": "Seeds", "content": "tomato", "taskId": "t1",
             "source": "apple_notes", "createdAt": stamp, "updatedAt": stamp},
            {"id": "n2", "title": "Idea", "content": "  ", "projectId": "gone",
             "source": "apple_notes", "createdAt": stamp, "updatedAt": stamp},
        ],
        "importStatuses": [{"source": "claude", "importedCount": 4, "lastImportedAt": stamp}],
        "activity": [
            {"id": "a1", "entityType": "task", "entityId": "t1", "action": "created",
             "payload": {"title": "Water"}, "createdAt": stamp},
        ],
    }


@pytest.fixture
def legacy_db(tmp_path):
    store = tmp_path / "store.json"
    store.write_text(json.dumps(_legacy_store()))
    path = tmp_path / "legacy.db"
    database.close_database()
    init_database(path, legacy_store_path=store)
    return path, store


# -- transactions --------------------------------------------------------------

def test_transaction_rolls_back_on_error():
    with pytest.raises(RuntimeError):
        with transaction() as conn:
            conn.execute(
                "INSERT INTO schema_migrations (name, created_at) VALUES ('marker', 'now')"
            )
            raise RuntimeError("boom")
    with connection() as conn:
        assert conn.execute("SELECT 1 FROM schema_migrations WHERE name = 'marker'").fetchone() is None


def test_nested_transaction_joins_outer():
    with pytest.raises(RuntimeError):
        with transaction() as outer:
            with transaction() as inner:
                assert inner is outer
                inner.execute("INSERT INTO schema_migrations (name, created_at) VALUES ('inner', 'now')")
            raise RuntimeError("outer fails after inner finished")
    with connection() as conn:
        assert conn.execute("SELECT 1 FROM schema_migrations WHERE name = 'inner'").fetchone() is None


# -- legacy migration ----------------------------------------------------------

def test_legacy_store_is_imported(legacy_db):
    assert get_project("p1")["title"] == "Garden"
    assert get_task("t1")["priority"] == "high"
    assert get_task("t2")["project_id"] == INBOX_PROJECT_ID
    [status] = list_import_statuses()
    assert status == {"source": "claude", "imported_count": 4, "last_imported_at": "2025-01-01T00:00:00.000Z"}
    assert list_activity()[-1]["payload"] == {"title": "Water"}


def test_legacy_task_with_missing_project_moves_to_inbox(legacy_db):
    task = get_task("t3")
    assert task["project_id"] == INBOX_PROJECT_ID
    assert project_exists(task["project_id"])


def test_legacy_unknown_status_lands_in_todo(legacy_db):
    assert get_task("t3")["status"] == "todo"


def test_legacy_lanes_are_made_dense(legacy_db):
    assert [(t["id"], t["order"]) for t in list_tasks(status="todo")] == [("t1", 0), ("t3", 1), ("t2", 2)]


def test_legacy_notes_become_content_entries(legacy_db):
    [on_task] = list_content_entries("task", "t1")
    assert on_task["text_content"] == "tomato"
    [in_inbox] = list_content_entries("project", INBOX_PROJECT_ID)
    assert in_inbox["text_content"] == "Idea"


def test_migrations_run_once(legacy_db):
    path, store = legacy_db
    database.close_database()
    init_database(path, legacy_store_path=store)
    assert len(list_tasks()) == 3
    assert len(list_content_entries("task", "t1")) == 1


def test_corrupt_legacy_store_propagates(tmp_path):
    store = tmp_path / "broken.json"
    store.write_text("{not json")
    database.close_database()
    with pytest.raises(ValueError):
        init_database(tmp_path / "broken.db", legacy_store_path=store)
