"""
Configuration for the JIT Access engine.

Settings come from an optional YAML file and can be overridden by the
caller (the CLI passes its flags through :func:`load_settings`).
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# Condition title marking bindings owned by this engine.
DEFAULT_CONDITION_TITLE = "jit-access-expiry"

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE_SECONDS = 0.5


class EngineSettings(BaseModel):
    """Runtime settings for reconciliation runs."""
    condition_title: str = Field(DEFAULT_CONDITION_TITLE, description="Title of managed binding conditions")
    condition_description: Optional[str] = Field(None, description="Description set on new conditions")
    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1, description="Attempts per scope before giving up")
    backoff_base_seconds: float = Field(DEFAULT_BACKOFF_BASE_SECONDS, ge=0)
    max_backoff_seconds: Optional[float] = Field(None, gt=0, description="Cap for a single backoff sleep")
    deadline_seconds: Optional[float] = Field(None, gt=0, description="Total retry budget per scope")
    max_workers: int = Field(1, ge=1, description="Scopes reconciled concurrently")
    use_etag: bool = Field(False, description="Send the fetched etag back on write")
    audit_dir: Optional[str] = Field(None, description="Directory for JSONL audit records")
    mock_mode: bool = Field(False, description="Use the in-memory policy store")
    credentials_path: Optional[str] = Field(None, description="Service account key file")

    @field_validator("condition_title")
    @classmethod
    def validate_condition_title(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("condition_title must not be empty")
        return v


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> EngineSettings:
    """
    Load engine settings from a YAML file and apply overrides.

    Args:
        config_path: Path to a YAML settings file (optional)
        overrides: Values taking precedence over the file; None values are ignored

    Returns:
        Validated EngineSettings
    """
    data: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")
        data.update(loaded)
        logger.info(f"Loaded settings from {path}")

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    return EngineSettings(**data)
