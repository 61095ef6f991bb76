"""
Configuration loader for marketsim.

What it does:
- Reads static settings from `config/config.yaml` (a missing file means defaults).
- Applies environment overrides named `MARKETSIM_<FIELD>`, e.g.
  `MARKETSIM_DATA_DIR` or `MARKETSIM_DORMANCY_DAYS`.
- Validates the result with a Pydantic model.

Where it is used:
- Called by `marketsim.main` to build the `Settings` for a session.
"""

import logging
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "MARKETSIM_"


class Settings(BaseModel):
    """Runtime settings assembled from YAML + environment variables."""
    data_dir: str = "data_store"
    dormancy_days: int = Field(default=30, ge=0)
    recent_days: int = Field(default=7, ge=0)
    top_n: int = Field(default=3, ge=1)
    log_level: str = "INFO"
    journal_path: Optional[str] = None
    redis_url: str = ""
    prometheus_port: int = Field(default=0, ge=0)
    order_id_prefix: str = "TX"

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str):
        level = str(v).upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("order_id_prefix")
    @classmethod
    def plain_prefix(cls, v: str):
        if not v or any(ch in v for ch in "|,\r\n"):
            raise ValueError("order_id_prefix must be non-empty and free of delimiters")
        return v


def _env_overrides() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name in Settings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            out[name] = raw
    return out


def load_settings(path: str = "config/config.yaml") -> Settings:
    """Load YAML config, overlay `MARKETSIM_*` env vars, and return Settings."""
    config: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, "r") as f:
            config = yaml.safe_load(f) or {}
    config.update(_env_overrides())
    return Settings(**config)
