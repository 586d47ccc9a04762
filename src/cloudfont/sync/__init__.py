"""
Font sync -- download the licensed catalog and register it for this session.

One run at a time, one font at a time. A font that fails is reported
at the end; it never stops the others.
"""

from .engine import CancellationToken, SyncOrchestrator
from .models import SyncFailure, SyncProgress, SyncResult

__all__ = [
    "CancellationToken",
    "SyncFailure",
    "SyncOrchestrator",
    "SyncProgress",
    "SyncResult",
]
