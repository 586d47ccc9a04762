"""
Sync Engine -- downloads and registers a target set of fonts.

    targets -> for each: download -> sniff format
            -> FontLifecycleManager.register_bytes (write + register) -> progress

Items run strictly one after another on the calling thread; a failed
item is recorded and the run moves on. Only one run may be active per
process. Cancellation is cooperative and checked between items, so the
item in flight always completes; shutdown waits for it via wait_idle().
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Sequence

from ..audit import audit_event
from ..config import DEFAULT_DOWNLOAD_TIMEOUT_MS
from ..downloader import (
    SUPPORTED_EXTENSIONS,
    Downloader,
    detect_extension,
    extension_for,
    local_path_for,
)
from ..errors import FontNotFoundError, SyncInProgressError, UnsupportedFormatError
from ..font_manager import FontLifecycleManager
from ..models import CatalogFont, FontRecord
from .models import SyncProgress, SyncResult

logger = logging.getLogger("cloudfont.sync.engine")

ProgressSink = Callable[[SyncProgress], None]


class CancellationToken:
    """Cooperative cancellation flag checked between sync items."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class SyncOrchestrator:
    """Drives bulk font synchronization with progress reporting.

    Args:
        manager: The process's font lifecycle manager.
        downloader: Fetches font bytes.
        progress_sink: Receives every progress update. Best effort:
            errors raised by the sink are logged and ignored.
        timeout_ms: Per-download timeout.
        home: Agent home for audit entries. No auditing when None.
    """

    def __init__(
        self,
        manager: FontLifecycleManager,
        downloader: Optional[Downloader] = None,
        progress_sink: Optional[ProgressSink] = None,
        timeout_ms: int = DEFAULT_DOWNLOAD_TIMEOUT_MS,
        home: Optional[Path] = None,
    ) -> None:
        self._manager = manager
        self._downloader = downloader or Downloader()
        self._sink = progress_sink
        self._timeout_ms = timeout_ms
        self._home = home
        self._flight = threading.Lock()
        self._progress_lock = threading.Lock()
        self._progress = SyncProgress()
        self._active_token: Optional[CancellationToken] = None
        self._flight_owner: Optional[int] = None

    @property
    def is_syncing(self) -> bool:
        return self._flight.locked()

    def set_progress_sink(self, sink: Optional[ProgressSink]) -> None:
        """Replace the progress sink (e.g. when the UI is recreated)."""
        self._sink = sink

    def get_sync_progress(self) -> SyncProgress:
        """Copy of the current progress."""
        with self._progress_lock:
            return self._progress.model_copy()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no run is active.

        Returns immediately with False when called from the thread that
        owns the running sync (e.g. from a progress sink).

        Returns:
            True if the orchestrator is idle.
        """
        if self._flight_owner == threading.get_ident():
            return False
        acquired = self._flight.acquire(timeout=-1 if timeout is None else timeout)
        if acquired:
            self._flight.release()
        return acquired

    def cancel_sync(self) -> bool:
        """Ask the running sync to stop after the current item.

        Returns:
            True if a run was active.
        """
        token = self._active_token
        if token is None:
            return False
        logger.info("Sync cancellation requested")
        token.cancel()
        return True

    def sync_all_fonts(
        self,
        targets: Sequence[CatalogFont],
        cancel_token: Optional[CancellationToken] = None,
    ) -> SyncResult:
        """Download and register every target, in order.

        Args:
            targets: Fonts to synchronize.
            cancel_token: Optional token; checked before each item.

        Returns:
            SyncResult with success/failure counts and per-item errors.

        Raises:
            SyncInProgressError: If another run is active.
        """
        if not self._flight.acquire(blocking=False):
            raise SyncInProgressError()
        self._flight_owner = threading.get_ident()

        token = cancel_token or CancellationToken()
        self._active_token = token
        result = SyncResult()
        try:
            self._set_progress(SyncProgress(total=len(targets)), publish=False)
            logger.info("Starting synchronization of %d fonts...", len(targets))

            for target in targets:
                if token.is_cancelled:
                    result.cancelled = True
                    progress = self.get_sync_progress()
                    logger.info(
                        "Sync cancelled after %d of %d fonts",
                        progress.completed,
                        progress.total,
                    )
                    break

                self._set_progress(self._progress.model_copy(update={"current": target.display_name}))
                try:
                    self._sync_target(target)
                    result.success_count += 1
                    logger.info("Successfully synced: %s", target.display_name)
                except Exception as exc:
                    result.record_failure(target.display_name, exc)
                    logger.error("Failed to sync %s: %s", target.display_name, exc)

                self._set_progress(self._progress.advanced())

            logger.info(
                "Synchronization complete - success: %d, failed: %d",
                result.success_count,
                result.failed_count,
            )
            self._audit(result)
            return result
        finally:
            self._active_token = None
            self._flight_owner = None
            self._flight.release()

    def sync_font(self, target: CatalogFont) -> FontRecord:
        """Download and register one font (the per-font toggle path).

        Errors propagate to the caller. An already-registered font is
        returned as is.
        """
        self._sync_target(target)
        record = self._manager.get_font(target.id)
        if record is None:
            raise FontNotFoundError(target.id)
        return record

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _sync_target(self, target: CatalogFont) -> None:
        if self._manager.is_font_registered(target.id):
            logger.info("Font already registered: %s", target.display_name)
            return

        extension = self._declared_extension(target)
        data = self._downloader.fetch(target.download_url, self._timeout_ms)
        detected = detect_extension(data)
        if detected is None:
            raise UnsupportedFormatError(extension)

        self._manager.register_bytes(target.id, target.display_name, data, detected)

    def _declared_extension(self, target: CatalogFont) -> str:
        local = local_path_for(target.download_url)
        if local is None:
            return extension_for(target.download_url)
        extension = local.suffix.lower()
        if extension not in SUPPORTED_EXTENSIONS:
            raise UnsupportedFormatError(extension or "(none)")
        return extension

    def _set_progress(self, progress: SyncProgress, publish: bool = True) -> None:
        with self._progress_lock:
            self._progress = progress
        sink = self._sink
        if sink is None or not publish:
            return
        try:
            sink(progress.model_copy())
        except Exception as exc:
            logger.warning("Progress sink failed: %s", exc)

    def _audit(self, result: SyncResult) -> None:
        if self._home is None:
            return
        try:
            audit_event(
                self._home,
                "SYNC",
                f"Synced {result.success_count} font(s), {result.failed_count} failed",
                metadata=result.model_dump(),
            )
        except OSError as exc:
            logger.warning("Could not write sync audit entry: %s", exc)
