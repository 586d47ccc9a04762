"""
Secure Cache — hidden storage for downloaded font bytes.

Reasonable protection against casual copying, nothing more. A user with
admin rights can read anything in here; the goal is to keep font files
out of sight, owner-only, and reliably gone when the session ends.

Layers:
    1. Deeply nested hidden directory chain.
    2. Owner-only permissions on every segment the agent owns.
    3. Per-session obfuscated filenames.
    4. Access monitor that audits suspicious reads (detection only).
    5. Overwrite-then-unlink deletion.

Storage layout:
    <base>/
    └── .system/
        └── .cache/
            └── .tmp/
                └── .fonts/
                    ├── 3f9a0c21d4e7b618.tmp
                    └── ...
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import os
import stat
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from .audit import audit_event
from .errors import SecureDirectoryError
from .models import AccessEvent, SecureCacheConfig, SecurityStatus
from .teardown import TeardownReport, run_all

logger = logging.getLogger("cloudfont.secure_cache")

HIDDEN_CHAIN = (".system", ".cache", ".tmp", ".fonts")
DIR_MODE = 0o700
WRITABLE_MODE = 0o600
OBFUSCATED_EXTENSION = ".tmp"
OBFUSCATED_LENGTH = 16

# Fixed for the life of the process: names are stable within a run and
# change on the next launch.
_PROCESS_SALT = f"{os.getpid()}{int(time.time() * 1000)}"

_Snapshot = dict[str, tuple[int, int, int]]


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Access monitor
# ---------------------------------------------------------------------------


class AccessMonitor:
    """Polls the cache directory and audits suspicious access.

    Every poll diffs a stat snapshot of the directory. Appearing or
    vanishing entries are ``rename`` events; size, mtime or atime
    changes are ``change`` events. Each event schedules a deferred
    check after ``sensitivity_ms``; if the file was read inside that
    window an ``AccessEvent`` is handed to ``on_suspicious``.

    The monitor never blocks, locks or deletes anything.

    Args:
        directory: Directory to watch.
        sensitivity_ms: Deferred-check delay and access window.
        on_suspicious: Callback receiving each ``AccessEvent``.
        poll_interval: Seconds between directory scans.
    """

    def __init__(
        self,
        directory: Path,
        sensitivity_ms: int,
        on_suspicious: Callable[[AccessEvent], None],
        poll_interval: float = 0.25,
    ) -> None:
        self.directory = directory
        self.sensitivity_ms = sensitivity_ms
        self._on_suspicious = on_suspicious
        self._poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._timers: list[threading.Timer] = []
        self._timers_lock = threading.Lock()
        self._snapshot: _Snapshot = {}

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Take a baseline snapshot and start the polling thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._snapshot = self._scan()
        self._thread = threading.Thread(
            target=self._poll_loop, name="cloudfont-access-monitor", daemon=True
        )
        self._thread.start()
        logger.info("Access monitor started for %s", self.directory)

    def stop(self) -> None:
        """Stop polling and cancel pending deferred checks."""
        self._stop_event.set()
        with self._timers_lock:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
            logger.info("Access monitor stopped for %s", self.directory)

    def poll_once(self) -> list[tuple[str, str]]:
        """Scan once and return ``(event_type, filename)`` pairs since the last scan."""
        current = self._scan()
        events: list[tuple[str, str]] = []

        for name in sorted(current.keys() | self._snapshot.keys()):
            before = self._snapshot.get(name)
            after = current.get(name)
            if before is None or after is None:
                events.append(("rename", name))
            elif before != after:
                events.append(("change", name))

        self._snapshot = current
        return events

    def check_access(
        self,
        event_type: str,
        filename: str,
        detected_at: Optional[float] = None,
    ) -> Optional[AccessEvent]:
        """Run the deferred check for one event.

        The access window is measured back from ``detected_at`` (when
        the poll saw the event), widened by one poll interval, or from
        now when no detection time is given.

        Returns:
            The ``AccessEvent`` reported, or None if the access was not
            recent or the file is already gone.
        """
        path = self.directory / filename
        try:
            stats = path.stat()
        except OSError:
            # Deleted in the meantime; nothing to report.
            return None

        if detected_at is None:
            age_ms = (time.time() - stats.st_atime) * 1000
        else:
            age_ms = (detected_at - self._poll_interval - stats.st_atime) * 1000
        if age_ms >= self.sensitivity_ms:
            return None

        event = AccessEvent(
            event_type=event_type,
            filename=filename,
            file_size=stats.st_size,
            access_time=_iso(stats.st_atime),
            modify_time=_iso(stats.st_mtime),
        )
        logger.warning("Suspicious access detected: %s on %s", event_type, filename)
        try:
            self._on_suspicious(event)
        except Exception as exc:
            logger.error("Failed to record access event for %s: %s", filename, exc)
        return event

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(timeout=self._poll_interval):
            try:
                events = self.poll_once()
            except OSError as exc:
                logger.debug("Access monitor scan failed: %s", exc)
                continue
            detected_at = time.time()
            for event_type, filename in events:
                logger.warning("Font security alert: %s detected on %s", event_type, filename)
                self._schedule_check(event_type, filename, detected_at)

    def _schedule_check(self, event_type: str, filename: str, detected_at: float) -> None:
        timer = threading.Timer(
            self.sensitivity_ms / 1000,
            self.check_access,
            args=(event_type, filename, detected_at),
        )
        timer.daemon = True
        with self._timers_lock:
            if self._stop_event.is_set():
                return
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def _scan(self) -> _Snapshot:
        snapshot: _Snapshot = {}
        if not self.directory.is_dir():
            return snapshot
        for root, _dirs, files in os.walk(self.directory):
            for name in files:
                full = Path(root) / name
                try:
                    st = full.stat()
                except OSError:
                    continue
                rel = str(full.relative_to(self.directory))
                snapshot[rel] = (st.st_size, st.st_mtime_ns, st.st_atime_ns)
        return snapshot


# ---------------------------------------------------------------------------
# SecureCache
# ---------------------------------------------------------------------------


class SecureCache:
    """Owns the hidden font cache directory and its teardown.

    Args:
        base_dir: Directory under which the hidden chain is created.
        config: Protection switches. Defaults to everything on.
        home: Agent home for the audit log. No audit entries when None.
        session_salt: Override the per-process filename salt.
    """

    def __init__(
        self,
        base_dir: Path,
        config: Optional[SecureCacheConfig] = None,
        home: Optional[Path] = None,
        session_salt: Optional[str] = None,
    ) -> None:
        self.base_dir = Path(base_dir)
        self._config = config or SecureCacheConfig()
        self._home = home
        self._salt = session_salt if session_salt is not None else _PROCESS_SALT
        self._directory = self.base_dir.joinpath(*HIDDEN_CHAIN)
        self._monitor: Optional[AccessMonitor] = None

    @property
    def directory(self) -> Path:
        """Absolute path of the secure cache directory."""
        return self._directory

    @property
    def config(self) -> SecureCacheConfig:
        return self._config

    @property
    def is_watching(self) -> bool:
        return self._monitor is not None and self._monitor.is_running

    def initialize_secure_directory(self) -> Path:
        """Create the hidden directory chain and apply protections.

        Returns:
            The secure directory path.

        Raises:
            SecureDirectoryError: If any level cannot be created.
        """
        try:
            self._directory.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        except OSError as exc:
            logger.error("Failed to initialize secure directory %s: %s", self._directory, exc)
            raise SecureDirectoryError(
                f"Cannot create secure directory {self._directory}: {exc}"
            ) from exc

        if self._config.enable_permission_hardening:
            self._harden_directory_permissions()

        if self._config.enable_file_watcher:
            self.start_monitor()

        logger.info("Secure font directory initialized: %s", self._directory)
        return self._directory

    def generate_secure_filename(self, font_id: str, extension: str) -> str:
        """Filename for a font in this session.

        With obfuscation on, a truncated SHA-256 of the id and the
        process salt with a generic extension. Repeated calls inside
        one run return the same name.
        """
        if not self._config.enable_obfuscation:
            safe_id = font_id.replace(os.sep, "_").replace("/", "_")
            return f"{safe_id}{extension}"

        digest = hashlib.sha256((font_id + self._salt).encode("utf-8")).hexdigest()
        return f"{digest[:OBFUSCATED_LENGTH]}{OBFUSCATED_EXTENSION}"

    def get_secure_file_path(self, font_id: str, extension: str) -> Path:
        """Full cache path for a font in this session."""
        return self._directory / self.generate_secure_filename(font_id, extension)

    def write_font_bytes(self, path: Path, data: bytes) -> Path:
        """Write font bytes into the cache with owner-only permissions.

        An existing read-only file at ``path`` is securely replaced.
        """
        path = Path(path)
        if path.exists():
            self.secure_delete(path)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, WRITABLE_MODE)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return path

    def secure_delete(self, path: Path) -> bool:
        """Overwrite a file with random bytes, then unlink it.

        Symlinks and other non-regular entries are unlinked without
        touching what they point to. Falls back to relaxing permissions
        and unlinking if the overwrite fails. Never raises.

        Returns:
            True if the entry is gone afterwards.
        """
        path = Path(path)
        try:
            st = os.lstat(path)
            if not stat.S_ISREG(st.st_mode):
                path.unlink()
                logger.debug("Removed non-regular entry: %s", path)
                return True
            os.chmod(path, WRITABLE_MODE)
            fd = os.open(path, os.O_WRONLY | os.O_NOFOLLOW)
            with os.fdopen(fd, "wb") as f:
                f.write(os.urandom(st.st_size))
                f.flush()
                os.fsync(f.fileno())
            path.unlink()
            logger.debug("Securely deleted: %s", path)
            return True
        except FileNotFoundError:
            return True
        except Exception as exc:
            logger.warning("Secure overwrite of %s failed, deleting plainly: %s", path, exc)

        try:
            if not path.is_symlink():
                with contextlib.suppress(OSError):
                    os.chmod(path, WRITABLE_MODE)
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Fallback deletion of %s also failed: %s", path, exc)

        return not os.path.lexists(path)

    def list_cached_files(self) -> list[Path]:
        """Every file or link currently in the secure directory, sorted."""
        if not self._directory.is_dir():
            return []
        found = []
        for root, dirs, files in os.walk(self._directory):
            found.extend(Path(root) / name for name in files)
            found.extend(Path(root) / name for name in dirs if (Path(root) / name).is_symlink())
        return sorted(found)

    def cleanup(self) -> TeardownReport:
        """Stop the monitor and securely delete every cached entry.

        Never raises. Tolerates a missing directory.
        """
        logger.info("Cleaning up secure font cache...")
        report = TeardownReport()
        run_all(
            [
                ("stop-monitor", self.stop_monitor),
                ("wipe-directory", lambda: self._wipe_directory(report)),
            ],
            report=report,
            log=logger,
        )

        if report.ok:
            logger.info("Secure font cache cleaned: %s", self._directory)
        else:
            logger.error(
                "Secure font cache cleanup finished with %d failure(s)",
                len(report.failures),
            )
        return report

    def start_monitor(self) -> None:
        """Start the access monitor if it is not already running."""
        if self.is_watching:
            return
        try:
            self._monitor = AccessMonitor(
                self._directory,
                self._config.watcher_sensitivity_ms,
                self._record_access_event,
            )
            self._monitor.start()
        except (OSError, RuntimeError) as exc:
            # The monitor is not critical; continue without it.
            logger.warning("Could not start access monitor: %s", exc)
            self._monitor = None

    def stop_monitor(self) -> None:
        """Stop the access monitor, if any."""
        if self._monitor is not None:
            self._monitor.stop()
            self._monitor = None

    def update_config(self, **changes: object) -> SecureCacheConfig:
        """Replace the config with a copy carrying ``changes``.

        Starts or stops the access monitor to match the new config.
        """
        merged = {**self._config.model_dump(), **changes}
        self._config = SecureCacheConfig(**merged)

        if not self._config.enable_file_watcher:
            self.stop_monitor()
        elif self._directory.is_dir():
            self.stop_monitor()
            self.start_monitor()

        return self._config

    def get_security_status(self) -> SecurityStatus:
        """Current protection state."""
        return SecurityStatus(
            is_watching=self.is_watching,
            secure_directory=self._directory,
            config=self._config,
            active_watchers=1 if self.is_watching else 0,
        )

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _harden_directory_permissions(self) -> None:
        """chmod 0700 the base directory and each hidden segment."""
        current = self.base_dir
        segments = [current]
        for part in HIDDEN_CHAIN:
            current = current / part
            segments.append(current)

        for segment in segments:
            try:
                os.chmod(segment, DIR_MODE)
            except OSError as exc:
                logger.warning("Could not set permissions on %s: %s", segment, exc)

    def _wipe_directory(self, report: TeardownReport) -> None:
        if not self._directory.exists():
            logger.debug("Secure directory %s does not exist; nothing to wipe", self._directory)
            return

        # Bottom-up without following links, so directories are empty
        # before rmdir and nothing outside the cache is reached.
        for root, dirs, files in os.walk(self._directory, topdown=False):
            for entry_name in files:
                self._wipe_entry(Path(root) / entry_name, report)
            for entry_name in dirs:
                entry = Path(root) / entry_name
                if entry.is_symlink():
                    self._wipe_entry(entry, report)
                    continue
                try:
                    entry.rmdir()
                except OSError as exc:
                    logger.error("Failed to remove directory %s: %s", entry, exc)
                    report.record_failure(f"delete:{entry.relative_to(self._directory)}", exc)

    def _wipe_entry(self, entry: Path, report: TeardownReport) -> None:
        name = f"delete:{entry.relative_to(self._directory)}"
        if self.secure_delete(entry):
            report.completed.append(name)
        else:
            report.record_failure(name, OSError(f"{entry} still exists"))

    def _record_access_event(self, event: AccessEvent) -> None:
        logger.warning("FONT_SECURITY_EVENT: %s", event.model_dump_json())
        if self._home is not None:
            audit_event(
                self._home,
                "FONT_SECURITY_EVENT",
                f"{event.event_type} on {event.filename}",
                metadata=event.model_dump(),
            )
