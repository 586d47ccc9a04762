"""
Pydantic models for the font agent's state and configuration.

Nothing here is persisted across restarts except ``AgentConfig``.
The registry of fonts is rebuilt empty on every launch.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FontRecord(BaseModel):
    """A font currently registered with the system for this session."""

    id: str
    display_name: str
    file_path: Path
    registered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_active: bool = True


class SecureCacheConfig(BaseModel):
    """Protection switches for the secure cache.

    Frozen: use ``SecureCache.update_config`` to change it.
    """

    model_config = ConfigDict(frozen=True)

    enable_file_watcher: bool = True
    enable_obfuscation: bool = True
    enable_permission_hardening: bool = True
    watcher_sensitivity_ms: int = Field(default=2000, gt=0)


class CatalogFont(BaseModel):
    """One purchased font as listed by the catalog."""

    id: str
    display_name: str
    download_url: str
    file_size: int = 0
    provider: Optional[str] = None
    provider_display_name: Optional[str] = None


class UnregisterAllResult(BaseModel):
    """Outcome of a bulk unregistration."""

    success: int = 0
    failed: int = 0


class AccessEvent(BaseModel):
    """A suspicious access observed in the secure cache directory."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    event_type: str
    filename: str
    file_size: int
    access_time: str
    modify_time: str
    pid: int = Field(default_factory=os.getpid)


class SecurityStatus(BaseModel):
    """Snapshot of the secure cache's protection state."""

    is_watching: bool
    secure_directory: Path
    config: SecureCacheConfig
    active_watchers: int
