"""Configuration management for the video wizard render core"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class QueueConfig(BaseModel):
    max_concurrent: int = Field(default=4, ge=1)
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    call_timeout_seconds: Optional[float] = Field(default=30.0, gt=0)
    job_deadline_seconds: Optional[float] = None  # off unless set
    backoff_base_seconds: float = Field(default=2.0, ge=0)
    backoff_max_seconds: float = Field(default=30.0, ge=0)
    snapshot_file: Optional[str] = None  # defaults to <paths.data>/render_queue.json


class BackendConfig(BaseModel):
    base_url: str = "http://localhost:3001/api"
    asset_origin: Optional[str] = "http://localhost:3001"
    request_timeout_seconds: float = 30.0
    auth_token: Optional[str] = None


class TimingConfig(BaseModel):
    min_slot_seconds: float = 1.0
    loop_trim_epsilon: float = 0.05


class CaptionConfig(BaseModel):
    max_words: int = Field(default=5, ge=1)
    max_chars: int = Field(default=40, ge=1)
    pause_threshold: float = 0.4
    min_fragment_seconds: float = 1.0
    default_style: str = "classic"  # classic | modern | minimal | dramatic


class PathsConfig(BaseModel):
    """Storage paths configuration"""
    data: str = "./data"
    logs: str = "./logs"


class Config(BaseModel):
    queue: QueueConfig = QueueConfig()
    backend: BackendConfig = BackendConfig()
    timing: TimingConfig = TimingConfig()
    captions: CaptionConfig = CaptionConfig()
    paths: PathsConfig = PathsConfig()
    logging: Dict[str, Any] = {}

    @property
    def snapshot_path(self) -> Path:
        """Where the render queue snapshot lives"""
        if self.queue.snapshot_file:
            return Path(self.queue.snapshot_file)
        return Path(self.paths.data) / "render_queue.json"

    def apply_env_overrides(self) -> "Config":
        """Let RENDER_BACKEND_URL / RENDER_BACKEND_TOKEN override the backend section"""
        url = os.environ.get("RENDER_BACKEND_URL")
        token = os.environ.get("RENDER_BACKEND_TOKEN")
        if url:
            self.backend.base_url = url
        if token:
            self.backend.auth_token = token
        return self

    @classmethod
    def load(cls, config_path: str) -> "Config":
        """Load configuration from YAML file"""
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def save(self, config_path: str):
        """Save configuration to YAML file"""
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False)
