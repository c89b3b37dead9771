"""Configuration load/save for mission control."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

CONFIG_PATH = Path(__file__).resolve().parent / "config.json"


class AppConfig(BaseModel):
    """Persisted application configuration."""

    database_path: str = Field(default="", description="Path to SQLite database file; empty = project dir / mission_control.db")
    legacy_store_path: str = Field(default="", description="JSON store imported once into an empty database; empty = project dir / data / store.json")
    web_ui_port: int = Field(default=8081, ge=1, le=65535, description="Port for the web API")
    debug: bool = Field(default=False, description="Log every API request")
    api_key: str = Field(default="", description="Key required in X-API-Key for /api/external routes; empty disables them")
    user_timezone: str = Field(default="UTC", description="IANA timezone used for 'today' on the dashboard")

    def to_save_dict(self) -> dict[str, Any]:
        return self.model_dump()

    @classmethod
    def load(cls) -> "AppConfig":
        if not CONFIG_PATH.exists():
            return cls()
        raw = json.loads(CONFIG_PATH.read_text())
        return cls.model_validate(raw)

    def save(self) -> None:
        CONFIG_PATH.write_text(json.dumps(self.to_save_dict(), indent=2))


def load() -> AppConfig:
    """Load config from disk. Convenience alias for AppConfig.load()."""
    return AppConfig.load()
