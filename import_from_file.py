#!/usr/bin/env python3
"""
Import delimited exports dropped into client/import through the Mission Control API.

Each file starts with YAML frontmatter:
  type         -> import type (apple_reminders, apple_notes, chatgpt_projects, claude_projects)
  accept_fuzzy -> optional; true commits fuzzy matches as new records instead of skipping them

The body below the frontmatter is the comma-separated export (header line first).
The file is previewed, every row gets its suggested action, the rows are committed,
and the file is moved to client/import/processed.

Set MISSION_CONTROL_API_URL / MISSION_CONTROL_API_KEY env vars, or pass:
  python import_from_file.py <base_url> <api_key>
"""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path
from typing import Any

import httpx
import yaml

# Default paths relative to repo root (script's parent directory)
REPO_ROOT = Path(__file__).resolve().parent
IMPORT_DIR = REPO_ROOT / "client" / "import"
PROCESSED_DIR = REPO_ROOT / "client" / "import" / "processed"

FRONTMATTER_RE = re.compile(r"^\s*---\s*\n(.*?)\n\s*---\s*\n?(.*)", re.DOTALL)
IMPORT_TYPES = ("apple_reminders", "apple_notes", "chatgpt_projects", "claude_projects")


def get_config(argv: list[str] | None = None) -> tuple[str, str]:
    argv = sys.argv if argv is None else argv
    url = os.environ.get("MISSION_CONTROL_API_URL", "").strip().rstrip("/")
    key = os.environ.get("MISSION_CONTROL_API_KEY", "").strip()
    if len(argv) >= 3:
        url = (argv[1] or url).rstrip("/")
        key = (argv[2] or key).strip()
    if not url or not key:
        print(
            "Set MISSION_CONTROL_API_URL / MISSION_CONTROL_API_KEY env vars,\n"
            "or run: python import_from_file.py <base_url> <api_key>",
            file=sys.stderr,
        )
        sys.exit(1)
    return url, key


def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Return (frontmatter_dict, body_str). If no frontmatter, returns ({}, content)."""
    m = FRONTMATTER_RE.match(content)
    if not m:
        return {}, content.strip()
    yaml_str, body = m.group(1), m.group(2)
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML frontmatter: {e}") from e
    if data is not None and not isinstance(data, dict):
        raise ValueError("Frontmatter must be a mapping")
    return (data or {}), body.strip()


def build_commit_rows(preview: dict[str, Any], accept_fuzzy: bool = False) -> list[dict[str, Any]]:
    """
    Turn a preview response into commit rows. Rows with an error are skipped; a fuzzy
    match becomes a create when accept_fuzzy is set; everything else takes its suggested action.
    """
    rows = []
    for row in preview.get("rows") or []:
        match = row.get("duplicateMatch")
        action = row.get("suggestedAction") or "create"
        if row.get("error"):
            action = "skip"
        elif accept_fuzzy and match and match.get("kind") == "fuzzy":
            action, match = "create", None
        rows.append({"values": row.get("values") or {}, "action": action, "duplicateMatch": match})
    return rows


def make_client(base_url: str, api_key: str, **kwargs: Any) -> httpx.Client:
    return httpx.Client(
        base_url=base_url,
        headers={"X-API-Key": api_key, "Content-Type": "application/json"},
        timeout=30.0,
        **kwargs,
    )


def import_text(client: httpx.Client, import_type: str, text: str, accept_fuzzy: bool = False) -> dict[str, Any]:
    """Preview then commit one export. Returns the commit counters."""
    r = client.post("/api/external/imports/preview", json={"type": import_type, "text": text})
    r.raise_for_status()
    rows = build_commit_rows(r.json(), accept_fuzzy=accept_fuzzy)
    r = client.post("/api/external/imports/commit", json={"type": import_type, "rows": rows})
    r.raise_for_status()
    return r.json()


def ensure_dirs(import_dir: Path = IMPORT_DIR, processed_dir: Path = PROCESSED_DIR) -> None:
    import_dir.mkdir(parents=True, exist_ok=True)
    processed_dir.mkdir(parents=True, exist_ok=True)


def list_import_files(import_dir: Path = IMPORT_DIR) -> list[Path]:
    if not import_dir.is_dir():
        return []
    return sorted(f for f in import_dir.iterdir() if f.is_file())


def process_file(path: Path, client: httpx.Client, processed_dir: Path = PROCESSED_DIR) -> dict[str, Any] | None:
    """Import one file and move it to processed. Returns the counters, or None if skipped."""
    content = path.read_text(encoding="utf-8", errors="replace")
    fm, body = parse_frontmatter(content)
    import_type = str(fm.get("type") or "").strip()
    if import_type not in IMPORT_TYPES:
        print(f"  Skip (type must be one of {', '.join(IMPORT_TYPES)}): {path.name}")
        return None
    if not body:
        print(f"  Skip (empty body): {path.name}")
        return None
    counts = import_text(client, import_type, body, accept_fuzzy=bool(fm.get("accept_fuzzy")))
    path.rename(processed_dir / path.name)
    summary = ", ".join(f"{k}={v}" for k, v in counts.items())
    print(f"  Imported {path.name} as {import_type}: {summary} -> moved to processed/")
    return counts


def main():
    base_url, api_key = get_config()
    ensure_dirs()
    files = list_import_files()
    if not files:
        print("No files in client/import.")
        return
    print(f"Processing {len(files)} file(s) from client/import ...")
    ok = 0
    with make_client(base_url, api_key) as client:
        for path in files:
            try:
                if process_file(path, client) is not None:
                    ok += 1
            except (httpx.HTTPError, ValueError, OSError) as e:
                print(f"  Error {path.name}: {e}")
    print(f"Done. {ok}/{len(files)} imported, rest left in client/import or reported above.")


if __name__ == "__main__":
    main()
