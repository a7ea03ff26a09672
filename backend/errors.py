"""Exceptions raised by the SmartFile engine and its collaborators."""

from __future__ import annotations


class SmartFileError(Exception):
    """Base class for all engine errors."""


class ModelLoadError(SmartFileError):
    """Raised when the persisted model cannot be used."""


class ModelNotFoundError(ModelLoadError):
    """Raised when no persisted model exists at the configured path."""


class ModelCorruptError(ModelLoadError):
    """Raised when the persisted model is unreadable or structurally invalid."""


class ModelSaveError(SmartFileError):
    """Raised when the model could not be written to disk."""


class ModelInvariantError(SmartFileError):
    """Raised when the frequency store or statistics break an internal invariant."""


class PassBusyError(SmartFileError):
    """Raised when a pass is requested while another one is running."""
