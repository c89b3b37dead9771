"""HTTP API for Mission Control: tasks, projects, content, imports and the dashboard."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Ensure project root on path
sys.path.insert(0, str(Path(__file__).resolve().parent))

from config import AppConfig, load as load_config
from database import UNSET
from import_service import ImportCommitRequest, ImportPreviewRequest

app = FastAPI(title="Mission Control", version="1.0")
logger = logging.getLogger("mission_control.api")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """When config.debug is True, log API request method, path and status."""
    debug = load_config().debug
    if debug:
        qs = request.url.query
        logger.warning("[API] %s %s%s", request.method, request.url.path, "?" + qs if qs else "")
    response = await call_next(request)
    if debug:
        logger.warning("[API] %s %s -> %s", request.method, request.url.path, response.status_code)
    return response


# --- API schemas ---


class TaskReorderRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    moved_task_id: str = Field(min_length=1)
    to_status: str
    ordered_task_ids: list[str] = Field(default_factory=list)


def _patch(body: dict, *keys: str) -> dict[str, Any]:
    """Keyword arguments for a service update: absent keys stay UNSET, present ones pass through."""
    return {k: body[k] if k in body else UNSET for k in keys}


# --- Config ---


@app.get("/api/config", response_model=AppConfig)
def get_config() -> AppConfig:
    return load_config()


@app.put("/api/config")
def put_config(body: AppConfig) -> dict[str, str]:
    body.save()
    return {"status": "saved"}


# --- Tasks API ---


@app.get("/api/tasks")
def api_list_tasks(status: str | None = None, project_id: str | None = None):
    from task_service import list_tasks
    return {"items": list_tasks(status=status or None, project_id=project_id or None)}


@app.post("/api/tasks", status_code=201)
def api_create_task(body: dict):
    from task_service import create_task
    title = (body.get("title") or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="title is required")
    try:
        task = create_task(
            title,
            details=body.get("details") or None,
            status=body.get("status") or "todo",
            priority=body.get("priority") or "medium",
            due_date=body.get("due_date") or None,
            scheduled_at=body.get("scheduled_at") or None,
            project_id=body.get("project_id") or None,
            source=body.get("source") or "mission_control",
            recurrence=body.get("recurrence") or "none",
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"item": task}


@app.post("/api/tasks/reorder")
def api_reorder_tasks(body: TaskReorderRequest):
    from lane_service import ReorderRejected, reorder_tasks_in_lane
    try:
        items = reorder_tasks_in_lane(body.moved_task_id, body.to_status, body.ordered_task_ids)
    except ReorderRejected as e:
        raise HTTPException(status_code=400, detail=f"invalid reorder payload: {e}")
    return {"items": items}


@app.get("/api/tasks/{task_id}")
def api_get_task(task_id: str):
    from task_service import get_task
    t = get_task(task_id)
    if t is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"item": t}


@app.patch("/api/tasks/{task_id}")
def api_update_task(task_id: str, body: dict):
    from task_service import update_task
    try:
        t = update_task(
            task_id,
            **_patch(body, "title", "details", "status", "priority", "due_date", "scheduled_at", "project_id", "recurrence"),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if t is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"item": t}


@app.delete("/api/tasks/{task_id}")
def api_delete_task(task_id: str):
    from task_service import delete_task
    if not delete_task(task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "deleted"}


# --- Projects API ---


@app.get("/api/projects")
def api_list_projects(status: str | None = None):
    from project_service import list_projects
    try:
        return {"items": list_projects(status=status or None)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/projects", status_code=201)
def api_create_project(body: dict):
    from project_service import create_project
    title = (body.get("title") or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="title is required")
    try:
        project = create_project(
            title,
            description=body.get("description") or None,
            status=body.get("status") or "planned",
            due_date=body.get("due_date") or None,
            source=body.get("source") or "mission_control",
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"item": project}


@app.get("/api/projects/{project_id}")
def api_get_project(project_id: str):
    from project_service import get_project
    p = get_project(project_id)
    if p is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return {"item": p}


@app.patch("/api/projects/{project_id}")
def api_update_project(project_id: str, body: dict):
    from project_service import update_project
    try:
        p = update_project(project_id, **_patch(body, "title", "description", "status", "due_date", "completion_percent"))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if p is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return {"item": p}


@app.delete("/api/projects/{project_id}")
def api_delete_project(project_id: str):
    from database import INBOX_PROJECT_ID
    from project_service import delete_project
    if project_id == INBOX_PROJECT_ID:
        raise HTTPException(status_code=400, detail="The Inbox project cannot be deleted")
    if not delete_project(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"status": "deleted"}


# --- Content API ---


@app.get("/api/content")
def api_list_content(parent_type: str, parent_id: str):
    from content_service import list_content_entries
    return {"items": list_content_entries(parent_type, parent_id)}


@app.post("/api/content", status_code=201)
def api_create_content(body: dict):
    from content_service import create_content_entry
    entry = create_content_entry(
        body.get("parent_type") or "",
        body.get("parent_id") or "",
        body.get("entry_type") or "text",
        text_content=body.get("text_content"),
        url=body.get("url"),
        asset_id=body.get("asset_id"),
    )
    if entry is None:
        raise HTTPException(status_code=400, detail="Invalid content reference")
    return {"item": entry}


@app.patch("/api/content/{entry_id}")
def api_update_content(entry_id: str, body: dict):
    from content_service import get_content_entry, update_content_entry
    if get_content_entry(entry_id) is None:
        raise HTTPException(status_code=404, detail="Content entry not found")
    entry = update_content_entry(entry_id, **_patch(body, "text_content", "url", "asset_id"))
    if entry is None:
        raise HTTPException(status_code=400, detail="Invalid content reference")
    return {"item": entry}


@app.delete("/api/content/{entry_id}")
def api_delete_content(entry_id: str):
    from content_service import delete_content_entry
    if not delete_content_entry(entry_id):
        raise HTTPException(status_code=404, detail="Content entry not found")
    return {"status": "deleted"}


# --- Imports API ---


def _preview(body: ImportPreviewRequest) -> dict[str, Any]:
    from import_service import preview_import
    return preview_import(body.type, body.text).model_dump(by_alias=True)


def _commit(body: ImportCommitRequest) -> dict[str, Any]:
    from import_service import commit_import
    try:
        result = commit_import(body.type, body.rows)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        logger.exception("import commit failed")
        raise
    return result.model_dump(by_alias=True)


@app.post("/api/imports/preview")
def api_import_preview(body: ImportPreviewRequest):
    return _preview(body)


@app.post("/api/imports/commit", status_code=201)
def api_import_commit(body: ImportCommitRequest):
    return _commit(body)


@app.get("/api/imports/status")
def api_import_status():
    from import_service import list_import_statuses
    return {"items": list_import_statuses()}


# --- Dashboard / activity ---


@app.get("/api/dashboard/summary")
def api_dashboard_summary():
    from date_utils import today_in_tz
    from import_service import list_import_statuses
    from task_service import build_dashboard_summary, list_tasks
    summary = build_dashboard_summary(list_tasks(), today=today_in_tz(load_config().user_timezone))
    return {"item": {**summary, "import_statuses": list_import_statuses()}}


@app.get("/api/activity")
def api_list_activity(limit: int = 100):
    from database import list_activity
    return {"items": list_activity(limit=max(1, min(limit, 1000)))}


# --- External API (authenticated; same app) ---


def _require_api_key(x_api_key: str | None = Header(None, alias="X-API-Key")) -> None:
    """Dependency: require X-API-Key header to match config. 403 if no key set; 401 if wrong."""
    key = (load_config().api_key or "").strip()
    if not key:
        raise HTTPException(status_code=403, detail="External API disabled. Set api_key in config.")
    if not x_api_key or x_api_key.strip() != key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key. Use X-API-Key header.")


@app.post("/api/external/imports/preview", dependencies=[Depends(_require_api_key)])
def external_import_preview(body: ImportPreviewRequest):
    return _preview(body)


@app.post("/api/external/imports/commit", status_code=201, dependencies=[Depends(_require_api_key)])
def external_import_commit(body: ImportCommitRequest):
    return _commit(body)


def main() -> None:
    import uvicorn
    config = load_config()
    uvicorn.run(
        "web_app:app",
        host="0.0.0.0",
        port=config.web_ui_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
