from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    OCR_POLL_INTERVAL,
    TABULAR_POLL_INTERVAL,
    TRANSCRIPTION_POLL_INTERVAL,
)


class ApiConfig(BaseModel):
    """Connection settings for the Case.dev API proxy."""

    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    timeout: Optional[float] = None


class PollingConfig(BaseModel):
    """Poll periods in seconds for each long-running job type."""

    ocr_interval: float = OCR_POLL_INTERVAL
    transcription_interval: float = TRANSCRIPTION_POLL_INTERVAL
    tabular_interval: float = TABULAR_POLL_INTERVAL


class CaseflowConfig(BaseModel):
    """Top-level configuration model."""

    api: ApiConfig = ApiConfig()
    polling: PollingConfig = PollingConfig()
    database_url: Optional[str] = None
    default_model: str = DEFAULT_MODEL


def load_config(path: Optional[str] = None) -> CaseflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CASEFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("CASEFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = CaseflowConfig(**data)
    else:
        config = CaseflowConfig()

    if env_url := os.getenv("CASE_API_URL"):
        config.api.base_url = env_url
    if env_key := os.getenv("CASE_API_KEY"):
        config.api.api_key = env_key

    env_db_url = os.getenv("CASEFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
