#!/usr/bin/env python3
"""
Main entrypoint: bootstrap the database and serve the API.
Run with: python run.py
Or run the API only (database opened on first request): python -m web_app
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

# Ensure app loggers (mission_control.api, task_service, ...) emit to the same stream as uvicorn
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)

# Project root
ROOT = Path(__file__).resolve().parent
sys.path.insert(0, str(ROOT))

from config import load as load_config
from database import init_database


def main() -> None:
    # Schema, migrations and lane repair run before the first request
    init_database()

    # Run web app (blocking)
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
