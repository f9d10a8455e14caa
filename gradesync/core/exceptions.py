"""
core/exceptions.py
------------------
Domain exceptions raised by the service layer.

Services raise; only the realtime gateway turns these into
acknowledgement payloads for the client.
"""

from typing import Optional


class GradesyncError(Exception):
    """Base class for all service-level failures."""


class SnapshotWriteError(GradesyncError):
    """
    The table upsert committed but appending the saved copy failed.
    The table and the newest saved copy disagree until the next save.
    """

    def __init__(self, sheet_name: str) -> None:
        super().__init__(f"Saved copy not written after saving '{sheet_name}'")
        self.sheet_name = sheet_name


class ConversionError(GradesyncError):
    """
    Document conversion failed. `message` is safe to show to end users.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
