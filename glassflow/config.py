"""Application configuration loaded from config.yaml + environment variables."""

from __future__ import annotations

import yaml
from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings

_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"


def _load_yaml() -> dict:
    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            return yaml.safe_load(f) or {}
    return {}


_yaml = _load_yaml()


class WorkflowConfig(BaseSettings):
    offer_ttl_hours: int = 24
    max_shop_selections: int = 3
    slot_start_hour: int = 8
    slot_end_hour: int = 17
    slot_minutes: int = 30
    allocation_offer_count: int = 3


class RateLimitConfig(BaseSettings):
    mutation_limit: int = 20
    lookup_limit: int = 10
    window_seconds: int = 3600


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///data/glassflow.db"
    app_url: str = "http://localhost:8000"
    resend_api_key: str = ""
    mail_from: str = "GlassFlow <noreply@glassflow.example>"
    service_role_key: str = ""
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


def get_settings() -> Settings:
    """Build Settings by merging YAML defaults with env overrides."""
    y = _yaml
    wf = WorkflowConfig(**y.get("workflow", {}))
    rl = RateLimitConfig(**y.get("rate_limit", {}))
    overrides = {}
    db_url = y.get("database", {}).get("url")
    if db_url:
        overrides["database_url"] = db_url
    for key in ("app_url", "mail_from"):
        if key in y:
            overrides[key] = y[key]
    return Settings(workflow=wf, rate_limit=rl, **overrides)
