"""
Font Agent runtime — wires the agent together and owns shutdown.

    start():    config -> bridge (fatal) -> secure cache (fatal)
                -> lifecycle manager (reconcile leftovers) -> sync
    shutdown(): cancel sync -> wait for the item in flight
                -> unregister all -> wipe cache -> close downloader

Shutdown runs exactly once, from whichever comes first: an explicit
call, SIGTERM/SIGINT, or interpreter exit. OS registrations and cache
files outlive the process, so exit must not finish before it does.
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from pathlib import Path
from typing import Optional

from .bridge import FC_CACHE_TIMEOUT, FontBridge, load_bridge
from .catalog import CatalogClient
from .config import AgentConfig, load_config, resolve_home
from .downloader import Downloader
from .font_manager import FontLifecycleManager
from .models import CatalogFont
from .secure_cache import SecureCache
from .sync import SyncOrchestrator, SyncResult
from .sync.engine import ProgressSink
from .teardown import TeardownReport, run_all

logger = logging.getLogger("cloudfont.runtime")


class FontAgent:
    """One agent per process: the single owner of font state.

    Args:
        home: Agent home. Defaults to ``CLOUDFONT_HOME`` or ~/.cloud-font-agent.
        config: Override the on-disk configuration.
        bridge: Override the native registration capability.
        downloader: Override the font downloader.
        catalog: Override the catalog client.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        config: Optional[AgentConfig] = None,
        bridge: Optional[FontBridge] = None,
        downloader: Optional[Downloader] = None,
        catalog: Optional[CatalogClient] = None,
    ) -> None:
        self.home = resolve_home(home)
        self.config = config or load_config(self.home)
        self._bridge = bridge
        self._downloader = downloader
        self._catalog = catalog
        self._owned_downloader: Optional[Downloader] = None
        self.cache: Optional[SecureCache] = None
        self.manager: Optional[FontLifecycleManager] = None
        self.sync: Optional[SyncOrchestrator] = None
        self._stop_event = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    @property
    def is_started(self) -> bool:
        return self.manager is not None

    def start(self, install_hooks: bool = True) -> TeardownReport:
        """Bring the agent up.

        Args:
            install_hooks: Register atexit and signal handlers that
                guarantee cleanup.

        Returns:
            Report of the leftover reconciliation.

        Raises:
            CapabilityUnavailableError: No native registration capability.
            SecureDirectoryError: The cache directory cannot be created.
        """
        self.home.mkdir(parents=True, exist_ok=True)
        bridge = self._bridge or load_bridge(self.config)

        self.cache = SecureCache(self.home, self.config.cache, home=self.home)
        manager = FontLifecycleManager(bridge, self.cache, home=self.home)
        report = manager.initialize()

        self.manager = manager
        if self._downloader is None:
            self._owned_downloader = Downloader()
        self.sync = SyncOrchestrator(
            manager,
            self._downloader or self._owned_downloader,
            timeout_ms=self.config.download_timeout_ms,
            home=self.home,
        )

        if install_hooks:
            atexit.register(self.shutdown)
            self._setup_signals()

        logger.info("Font agent started: home=%s", self.home)
        return report

    def fetch_catalog(self) -> list[CatalogFont]:
        """The purchased fonts available to sync."""
        catalog = self._catalog or CatalogClient(self.config)
        return catalog.fetch_purchased_fonts()

    def sync_catalog(self, progress_sink: Optional[ProgressSink] = None) -> SyncResult:
        """Fetch the catalog and synchronize all of it."""
        sync = self._require_sync()
        targets = self.fetch_catalog()
        if progress_sink is not None:
            sync.set_progress_sink(progress_sink)
        return sync.sync_all_fonts(targets)

    def request_stop(self) -> None:
        """Stop after the current sync item and release ``run_forever``."""
        self._stop_event.set()
        if self.sync is not None:
            self.sync.cancel_sync()

    def wait_for_stop(self) -> None:
        """Block until stop is requested by a signal, Ctrl+C or request_stop()."""
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            self.request_stop()

    def run_forever(self) -> None:
        """Hold the session open until stop is requested, then shut down."""
        try:
            self.wait_for_stop()
        finally:
            self.shutdown()

    def shutdown(self) -> Optional[TeardownReport]:
        """Withdraw every font and wipe the cache. Runs once; never raises.

        Returns:
            The teardown report, or None if there was nothing to do.
        """
        with self._shutdown_lock:
            if self._shut_down or self.manager is None:
                return None
            self._shut_down = True

        logger.info("Font agent shutting down...")
        self.request_stop()
        if self.sync is not None and not self.sync.wait_idle(self._drain_timeout()):
            logger.warning("Sync still running at shutdown; late registrations will be refused")
        report = self.manager.cleanup()
        if self._owned_downloader is not None:
            run_all([("close-downloader", self._owned_downloader.close)], report=report, log=logger)
        logger.info("Font agent stopped.")
        return report

    def _drain_timeout(self) -> float:
        # One download plus one fc-cache refresh.
        return self.config.download_timeout_ms / 1000 + FC_CACHE_TIMEOUT

    def _require_sync(self) -> SyncOrchestrator:
        if self.sync is None:
            raise RuntimeError("Font agent not started")
        return self.sync

    def _setup_signals(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s, stopping", signal.Signals(signum).name)
        self.request_stop()
