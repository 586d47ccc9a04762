"""Shared utilities for all CLI command modules.

Provides the Rich console instance and config helpers used across
every command group.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console

from .. import AGENT_HOME
from ..config import AgentConfig, load_config
from ..sync import SyncProgress

console = Console()
logger = logging.getLogger("cloudfont.cli")

__all__ = ["AGENT_HOME", "console", "logger", "load_cli_config", "print_progress"]


def load_cli_config(home_path: Path, catalog_dir: Optional[str] = None) -> AgentConfig:
    """Load the agent config, applying a ``--catalog-dir`` override.

    Args:
        home_path: Agent home directory.
        catalog_dir: Local catalog directory from the command line.

    Returns:
        AgentConfig: The effective configuration.
    """
    config = load_config(home_path)
    if catalog_dir:
        config = config.model_copy(update={
            "catalog_mode": "local",
            "catalog_dir": Path(catalog_dir).expanduser(),
        })
    return config


def print_progress(progress: SyncProgress) -> None:
    """Progress sink that prints one line per update."""
    if progress.total == 0:
        return
    console.print(
        f"  [{progress.completed}/{progress.total}] "
        f"[bold]{progress.percentage:3d}%[/] {progress.current}",
        highlight=False,
    )
