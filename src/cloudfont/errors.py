"""
Error taxonomy for the font agent.

Precondition, capability and lookup errors surface on single-font
operations. Startup errors abort initialization. Teardown never raises
these; it logs them instead (see ``cloudfont.teardown``).
"""

from __future__ import annotations

from typing import Optional


class FontAgentError(Exception):
    """Base class for every error raised by the agent."""


# Precondition


class FontFileNotFoundError(FontAgentError, FileNotFoundError):
    """The font file handed to the manager does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Font file not found: {path}")
        self.path = path


# Capability


class RegistrationError(FontAgentError):
    """The system refused (or failed) to register a font."""

    def __init__(self, display_name: str, reason: Optional[str] = None) -> None:
        message = f"Failed to register font: {display_name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.display_name = display_name
        self.reason = reason


class UnregistrationError(FontAgentError):
    """The system refused (or failed) to unregister a font."""

    def __init__(self, display_name: str, reason: Optional[str] = None) -> None:
        message = f"Failed to unregister font: {display_name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.display_name = display_name
        self.reason = reason


# Lookup


class FontNotFoundError(FontAgentError, KeyError):
    """No font with the given id is registered."""

    def __init__(self, font_id: str) -> None:
        super().__init__(f"Font not found: {font_id}")
        self.font_id = font_id

    def __str__(self) -> str:
        return str(self.args[0])


# Fatal startup


class CapabilityUnavailableError(FontAgentError):
    """The native font registration capability cannot be loaded."""


class SecureDirectoryError(FontAgentError):
    """The secure cache directory could not be created."""


# Sync and transient I/O


class SyncInProgressError(FontAgentError):
    """A synchronization run is already active in this process."""

    def __init__(self) -> None:
        super().__init__("Synchronization already in progress")


class DownloadError(FontAgentError):
    """Fetching font bytes failed (network, timeout, HTTP status)."""


class UnsupportedFormatError(FontAgentError):
    """The downloaded font has an extension the agent does not handle."""

    def __init__(self, extension: str) -> None:
        super().__init__(f"Unsupported font format: {extension}")
        self.extension = extension


class CatalogError(FontAgentError):
    """The purchased-font catalog could not be read."""
