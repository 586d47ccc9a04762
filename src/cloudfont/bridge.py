"""
Native font registration capability.

The agent assumes exactly one way to make a font visible to the
system's text renderer. It is an opaque collaborator with three calls:

    register(path) -> bool
    unregister(path) -> bool
    unregister_all() -> UnregisterAllResult

``FontconfigBridge`` is the shipped implementation. It publishes each
cached font into a session directory inside the user's fontconfig
font directory via a symlink and refreshes the fontconfig cache.
Everything in the session directory belongs to the agent, so
``unregister_all`` also sweeps links left behind by a crashed run.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .config import AgentConfig
from .errors import CapabilityUnavailableError
from .models import UnregisterAllResult

logger = logging.getLogger("cloudfont.bridge")

FC_CACHE_TIMEOUT = 30


@runtime_checkable
class FontBridge(Protocol):
    """The registration capability consumed by the lifecycle manager."""

    def register(self, path: Path) -> bool: ...

    def unregister(self, path: Path) -> bool: ...

    def unregister_all(self) -> UnregisterAllResult: ...


class FontconfigBridge:
    """Session-scoped font registration through fontconfig.

    Args:
        fonts_dir: User font directory fontconfig scans
            (usually ``~/.local/share/fonts``).
        session_name: Name of the agent-owned subdirectory.
        fc_cache: Path to ``fc-cache``. Refresh is skipped when None.
    """

    def __init__(
        self,
        fonts_dir: Path,
        session_name: str = "cloudfont-session",
        fc_cache: Optional[str] = None,
    ) -> None:
        self.fonts_dir = Path(fonts_dir)
        self.session_dir = self.fonts_dir / session_name
        self._fc_cache = fc_cache

    def initialize(self) -> None:
        """Create the session directory."""
        self.session_dir.mkdir(parents=True, exist_ok=True, mode=0o700)

    def register(self, path: Path) -> bool:
        path = Path(path)
        link = self.session_dir / path.name
        try:
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(path.resolve())
        except OSError as exc:
            logger.error("Could not publish %s to fontconfig: %s", path.name, exc)
            return False

        if not self._refresh():
            link.unlink(missing_ok=True)
            return False
        return True

    def unregister(self, path: Path) -> bool:
        link = self.session_dir / Path(path).name
        if not link.is_symlink() and not link.exists():
            logger.warning("Font not registered with fontconfig: %s", Path(path).name)
            return False
        try:
            link.unlink()
        except OSError as exc:
            logger.error("Could not withdraw %s from fontconfig: %s", link.name, exc)
            return False
        self._refresh()
        return True

    def unregister_all(self) -> UnregisterAllResult:
        result = UnregisterAllResult()
        if not self.session_dir.is_dir():
            return result

        for entry in sorted(self.session_dir.iterdir()):
            try:
                entry.unlink()
                result.success += 1
            except OSError as exc:
                logger.error("Could not withdraw %s from fontconfig: %s", entry.name, exc)
                result.failed += 1

        if result.success:
            self._refresh()
        return result

    def registered_paths(self) -> list[Path]:
        """Links currently published in the session directory."""
        if not self.session_dir.is_dir():
            return []
        return sorted(self.session_dir.iterdir())

    def _refresh(self) -> bool:
        if not self._fc_cache:
            return True
        try:
            proc = subprocess.run(
                [self._fc_cache, "-f", str(self.fonts_dir)],
                capture_output=True,
                text=True,
                timeout=FC_CACHE_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error("fc-cache failed: %s", exc)
            return False
        if proc.returncode != 0:
            logger.error("fc-cache exited %d: %s", proc.returncode, proc.stderr.strip())
            return False
        return True


def default_fonts_dir() -> Path:
    """The per-user fontconfig font directory."""
    return Path.home() / ".local" / "share" / "fonts"


def load_bridge(config: AgentConfig) -> FontconfigBridge:
    """Load the registration capability.

    Raises:
        CapabilityUnavailableError: If fontconfig is not installed or
            the session directory cannot be created.
    """
    fc_cache = shutil.which("fc-cache")
    if not fc_cache:
        raise CapabilityUnavailableError(
            "Native font registration not available: fc-cache not found in PATH"
        )

    bridge = FontconfigBridge(
        (config.fonts_dir or default_fonts_dir()).expanduser(),
        session_name=config.session_name,
        fc_cache=fc_cache,
    )
    try:
        bridge.initialize()
    except OSError as exc:
        raise CapabilityUnavailableError(
            f"Cannot create font session directory {bridge.session_dir}: {exc}"
        ) from exc

    logger.info("Font registration via fontconfig: %s", bridge.session_dir)
    return bridge
