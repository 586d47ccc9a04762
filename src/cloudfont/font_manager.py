"""
Font Lifecycle Manager — the authoritative "what is registered" state.

Per font id:

    Unregistered --register ok--> Registered --unregister ok--> Unregistered
                                                                 (file deleted)

A failed registration (bridge returns False or raises) always ends in
Unregistered with the cached file deleted. A failed unregistration
leaves both the record and the file in place so it can be retried.

The record map is shared by the sync thread, single-font toggles and
shutdown. A registry lock guards the map; a per-id lock linearizes the
register/unregister sequence of one id while distinct ids proceed
independently.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Optional

from .audit import audit_event
from .bridge import FontBridge
from .errors import (
    FontFileNotFoundError,
    FontNotFoundError,
    RegistrationError,
    UnregistrationError,
)
from .models import FontRecord
from .secure_cache import SecureCache
from .teardown import TeardownReport, run_all

logger = logging.getLogger("cloudfont.font_manager")

READ_ONLY_MODE = 0o400


class FontLifecycleManager:
    """Registers cached fonts with the system and guarantees their removal.

    One instance per process, injected wherever fonts are toggled.

    Args:
        bridge: The native registration capability.
        secure_cache: Owner of the cache directory and file deletion.
        home: Agent home for audit entries. No auditing when None.
    """

    def __init__(
        self,
        bridge: FontBridge,
        secure_cache: SecureCache,
        home: Optional[Path] = None,
    ) -> None:
        self._bridge = bridge
        self._cache = secure_cache
        self._home = home
        self._records: dict[str, FontRecord] = {}
        self._registry_lock = threading.Lock()
        self._id_locks: dict[str, threading.Lock] = {}
        self._closed = False

    @property
    def secure_cache(self) -> SecureCache:
        return self._cache

    @property
    def cache_directory(self) -> Path:
        return self._cache.directory

    def initialize(self) -> TeardownReport:
        """Prepare the cache and clear leftovers from a previous session.

        A crash that skipped cleanup leaves registrations and cached
        files behind with no index to reconcile against; everything the
        agent owns is withdrawn and wiped before the first registration.

        Returns:
            Report of the leftover reconciliation.

        Raises:
            SecureDirectoryError: If the cache directory cannot be created.
        """
        self._cache.initialize_secure_directory()
        report = self.reconcile()
        if self._cache.config.enable_file_watcher:
            self._cache.start_monitor()
        logger.info("FontLifecycleManager initialized (cache: %s)", self._cache.directory)
        return report

    def reconcile(self) -> TeardownReport:
        """Withdraw every agent registration and wipe stale cache files."""
        leftovers = len(self._cache.list_cached_files())
        report = self._teardown()
        if leftovers:
            logger.info("Removed %d leftover cached file(s) from a previous session", leftovers)
        return report

    def get_secure_file_path(self, font_id: str, extension: str) -> Path:
        """Cache path to write a font's bytes to before registering it."""
        return self._cache.get_secure_file_path(font_id, extension)

    def register_font(
        self,
        file_path: Path,
        display_name: str,
        font_id: Optional[str] = None,
    ) -> FontRecord:
        """Register a cached font file with the system.

        Args:
            file_path: Path to the font file (normally in the secure cache).
            display_name: Human-readable font name.
            font_id: Stable catalog id. Required.

        Returns:
            A copy of the stored FontRecord.

        Raises:
            ValueError: If no font id was given.
            FontFileNotFoundError: If the file does not exist.
            RegistrationError: If the system refused the font or the
                manager has been cleaned up. The file has been deleted.
        """
        if not font_id:
            raise ValueError(f"A stable font id is required to register {display_name}")

        path = Path(file_path)
        with self._lock_for(font_id):
            existing = self.get_font(font_id)
            if existing is not None:
                if path != existing.file_path:
                    self._cache.secure_delete(path)
                raise RegistrationError(display_name, f"already registered as {font_id}")
            record = self._register_locked(path, display_name, font_id)

        self._audit("FONT_REGISTERED", f"Registered {display_name}", {"font_id": font_id})
        return record.model_copy()

    def register_bytes(
        self,
        font_id: str,
        display_name: str,
        data: bytes,
        extension: str,
    ) -> FontRecord:
        """Cache downloaded bytes and register them as one step.

        The already-registered check, the write and the registration
        all happen under the font's lock, so a concurrent toggle of the
        same id can never have its file replaced.

        Returns:
            A copy of the stored FontRecord. An id that is already
            registered is returned as is and nothing is written.

        Raises:
            RegistrationError: If the system refused the font, the cache
                path belongs to another font, or the manager has been
                cleaned up.
            OSError: If the bytes could not be written.
        """
        if not font_id:
            raise ValueError(f"A stable font id is required to register {display_name}")

        with self._lock_for(font_id):
            existing = self.get_font(font_id)
            if existing is not None:
                logger.info("Font already registered: %s", display_name)
                return existing

            if self._closed:
                raise RegistrationError(display_name, "font manager has been cleaned up")

            path = self._cache.get_secure_file_path(font_id, extension)
            owner = self._owner_of(path)
            if owner is not None:
                raise RegistrationError(display_name, f"cache path in use by {owner}")

            try:
                self._cache.write_font_bytes(path, data)
            except OSError:
                self._cache.secure_delete(path)
                raise
            logger.debug("Cached %s (%d bytes)", display_name, len(data))

            record = self._register_locked(path, display_name, font_id)

        self._audit("FONT_REGISTERED", f"Registered {display_name}", {"font_id": font_id})
        return record.model_copy()

    def unregister_font(self, font_id: str) -> None:
        """Withdraw a font from the system and delete its file.

        Raises:
            FontNotFoundError: If the id is not registered.
            UnregistrationError: If the system refused. Record and file
                are untouched so the call can be retried.
        """
        with self._lock_for(font_id):
            with self._registry_lock:
                record = self._records.get(font_id)
            if record is None:
                raise FontNotFoundError(font_id)

            logger.info("Unregistering font: %s", record.display_name)
            try:
                success = self._bridge.unregister(record.file_path)
            except Exception as exc:
                logger.error("Failed to unregister font %s: %s", font_id, exc)
                raise UnregistrationError(record.display_name, str(exc)) from exc

            if not success:
                logger.error("Failed to unregister font %s: refused by system", font_id)
                raise UnregistrationError(record.display_name)

            with self._registry_lock:
                self._records.pop(font_id, None)
            self._cache.secure_delete(record.file_path)

        logger.info("Font unregistered successfully: %s", record.display_name)
        self._audit("FONT_UNREGISTERED", f"Unregistered {record.display_name}", {"font_id": font_id})

    def is_font_registered(self, font_id: str) -> bool:
        with self._registry_lock:
            return font_id in self._records

    def get_font(self, font_id: str) -> Optional[FontRecord]:
        """A copy of one record, or None."""
        with self._registry_lock:
            record = self._records.get(font_id)
        return record.model_copy() if record else None

    def get_registered_fonts(self) -> list[FontRecord]:
        """Snapshot of every registered font, in registration order."""
        with self._registry_lock:
            return [r.model_copy() for r in self._records.values()]

    def cleanup(self) -> TeardownReport:
        """Unregister everything and securely wipe the cache.

        Each step runs even if an earlier one failed. Never raises.
        Every registration attempt after this point is refused.
        """
        logger.info("Starting FontLifecycleManager cleanup...")
        with self._registry_lock:
            self._closed = True
        try:
            report = self._teardown()
        except Exception as exc:
            logger.error("Error during FontLifecycleManager cleanup: %s", exc)
            report = TeardownReport()
            report.record_failure("cleanup", exc)
            return report

        if report.ok:
            logger.info("FontLifecycleManager cleanup completed")
        else:
            logger.error(
                "FontLifecycleManager cleanup completed with %d failure(s)",
                len(report.failures),
            )
        self._audit(
            "CACHE_CLEANUP",
            "Session fonts withdrawn and cache wiped",
            {"failures": [f.model_dump() for f in report.failures]},
        )
        return report

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _teardown(self) -> TeardownReport:
        report = TeardownReport()

        def unregister_all() -> None:
            result = self._bridge.unregister_all()
            logger.info(
                "Unregistered fonts - success: %d, failed: %d",
                result.success,
                result.failed,
            )
            if result.failed:
                raise UnregistrationError("all fonts", f"{result.failed} font(s) refused")

        def clear_registry() -> None:
            with self._registry_lock:
                self._records.clear()

        run_all(
            [
                ("unregister-all", unregister_all),
                ("clear-registry", clear_registry),
                ("secure-cache", lambda: report.merge(self._cache.cleanup())),
            ],
            report=report,
            log=logger,
        )
        return report

    def _register_locked(self, path: Path, display_name: str, font_id: str) -> FontRecord:
        """Hand a cached file to the bridge. Caller holds the font's lock."""
        if self._closed:
            self._cache.secure_delete(path)
            raise RegistrationError(display_name, "font manager has been cleaned up")

        if not path.exists():
            raise FontFileNotFoundError(str(path))

        try:
            os.chmod(path, READ_ONLY_MODE)
            success = self._bridge.register(path)
        except Exception as exc:
            logger.error("Failed to register font %s: %s", display_name, exc)
            self._cache.secure_delete(path)
            raise RegistrationError(display_name, str(exc)) from exc

        if not success:
            logger.error("Failed to register font %s: refused by system", display_name)
            self._cache.secure_delete(path)
            raise RegistrationError(display_name)

        record = FontRecord(id=font_id, display_name=display_name, file_path=path)
        with self._registry_lock:
            closed = self._closed
            if not closed:
                self._records[font_id] = record

        if closed:
            # Cleanup began while the bridge call was in flight.
            self._withdraw_orphan(path, display_name)
            raise RegistrationError(display_name, "font manager has been cleaned up")

        logger.info("Font registered successfully: %s at %s", display_name, path)
        return record

    def _withdraw_orphan(self, path: Path, display_name: str) -> None:
        try:
            self._bridge.unregister(path)
        except Exception as exc:
            logger.error("Could not withdraw %s after cleanup: %s", display_name, exc)
        self._cache.secure_delete(path)

    def _owner_of(self, path: Path) -> Optional[str]:
        with self._registry_lock:
            for record in self._records.values():
                if record.file_path == path:
                    return record.id
        return None

    def _lock_for(self, font_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._id_locks.setdefault(font_id, threading.Lock())

    def _audit(self, event_type: str, detail: str, metadata: Optional[dict] = None) -> None:
        if self._home is None:
            return
        try:
            audit_event(self._home, event_type, detail, metadata=metadata)
        except OSError as exc:
            logger.warning("Could not write audit entry %s: %s", event_type, exc)
