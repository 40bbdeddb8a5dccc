# src/conglue/errors.py
from __future__ import annotations

from pathlib import Path
from typing import Optional


class ConError(Exception):
    """
    Base class for failures reported by conglue.

    ``operation`` names what was attempted (e.g. "read_first_frame") and
    ``path`` the file involved, when there is one.
    """

    def __init__(self, message: str, operation: str = "", path: Optional[str | Path] = None):
        self.operation = operation
        self.path = None if path is None else str(path)
        parts = []
        if operation:
            parts.append(operation)
        if self.path is not None:
            parts.append(self.path)
        prefix = " ".join(parts)
        super().__init__(f"{prefix}: {message}" if prefix else message)


class ConOpenError(ConError, OSError):
    """A path could not be opened for reading or writing."""


class ConDecodeError(ConError, ValueError):
    """File content could not be parsed into a frame."""


class BuildError(ConError, ValueError):
    """Builder preconditions violated or frame assembly rejected."""


class WriteError(ConError, OSError):
    """Serialization of a batch of frames failed."""


class MaterializationError(ConError, RuntimeError):
    """A frame handle could not be snapshotted (corrupt or released)."""


class UsageError(ConError, RuntimeError):
    """Programming-contract violation (use after close, ...)."""


class BuilderConsumedError(UsageError):
    """``build()`` called twice, or atoms added after ``build()``."""


class IteratorExhaustedError(UsageError):
    """Current frame requested from an iterator that reached the end."""
