"""
Agent configuration — ``<home>/config/config.yaml``.

Missing or unreadable config falls back to defaults; the agent must
always be able to start far enough to clean up after itself.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from . import AGENT_HOME
from .models import SecureCacheConfig

logger = logging.getLogger("cloudfont.config")

CONFIG_DIR = "config"
CONFIG_FILE = "config.yaml"
LOG_DIR = "logs"
LOG_FILE = "agent.log"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

DEFAULT_DOWNLOAD_TIMEOUT_MS = 60_000


class AgentConfig(BaseModel):
    """Complete configuration for one agent install."""

    cache: SecureCacheConfig = Field(default_factory=SecureCacheConfig)
    download_timeout_ms: int = Field(default=DEFAULT_DOWNLOAD_TIMEOUT_MS, gt=0)
    catalog_mode: Literal["local", "remote"] = "local"
    catalog_dir: Optional[Path] = None
    catalog_url: str = "https://api.example.com"
    fonts_dir: Optional[Path] = None
    session_name: str = "cloudfont-session"


def resolve_home(home: Optional[Path] = None) -> Path:
    """Expand the agent home, honouring ``CLOUDFONT_HOME``."""
    return (home or Path(AGENT_HOME)).expanduser()


def load_config(home: Path) -> AgentConfig:
    """Load configuration from disk.

    Args:
        home: Agent home directory.

    Returns:
        AgentConfig loaded from config.yaml, or defaults.
    """
    config_file = home / CONFIG_DIR / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return AgentConfig(**data)
        except (yaml.YAMLError, ValueError) as exc:
            logger.warning("Failed to load agent config: %s", exc)
    return AgentConfig()


def save_config(home: Path, config: AgentConfig) -> Path:
    """Persist configuration as YAML.

    Returns:
        Path to the written file.
    """
    config_dir = home / CONFIG_DIR
    config_dir.mkdir(parents=True, exist_ok=True)
    config_file = config_dir / CONFIG_FILE
    data = config.model_dump(mode="json", exclude_none=True)
    config_file.write_text(
        yaml.dump(data, default_flow_style=False), encoding="utf-8"
    )
    return config_file


def setup_logging(home: Path, level: int = logging.INFO) -> Path:
    """Attach a file handler for agent logs under ``<home>/logs``.

    Returns:
        Path to the log file.
    """
    log_dir = home / LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE

    root = logging.getLogger()
    for existing in root.handlers:
        if isinstance(existing, logging.FileHandler) and Path(
            existing.baseFilename
        ).resolve() == log_file.resolve():
            return log_file

    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
    return log_file
