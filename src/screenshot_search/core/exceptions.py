"""Typed exception hierarchy for screenshot-search.

Hierarchy
---------
ScreenshotSearchError (base)
├── DatabaseError              – LanceDB / storage layer errors
│   ├── DatabaseInitializationError
│   └── IndexCorruptionError
├── SearchError                – query embedding and lookup failures
├── IndexingError              – indexing-run failures
├── EmbeddingError             – inference errors
│   └── ModelAcquisitionError  – model download / load failures
├── ConfigError                – configuration / validation errors
└── OperationCancelledError    – cooperative cancellation
"""

from typing import Any


class ScreenshotSearchError(Exception):
    """Base exception for Screenshot Search."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


# ── Database layer ──────────────────────────────────────────────────────


class DatabaseError(ScreenshotSearchError):
    """Database-related errors (LanceDB / storage layer)."""

    pass


class DatabaseInitializationError(DatabaseError):
    """Database initialization failed."""

    pass


class IndexCorruptionError(DatabaseError):
    """Index corruption detected."""

    pass


# ── Search layer ────────────────────────────────────────────────────────


class SearchError(ScreenshotSearchError):
    """Search operation failed."""

    pass


# ── Indexing layer ──────────────────────────────────────────────────────


class IndexingError(ScreenshotSearchError):
    """Indexing operation failed."""

    pass


# ── Embedding layer ─────────────────────────────────────────────────────


class EmbeddingError(ScreenshotSearchError):
    """Embedding generation failed."""

    pass


class ModelAcquisitionError(EmbeddingError):
    """Embedding model could not be downloaded or loaded."""

    pass


# ── Configuration ───────────────────────────────────────────────────────


class ConfigError(ScreenshotSearchError):
    """Configuration-related errors."""

    pass


# ── Cancellation ────────────────────────────────────────────────────────


class OperationCancelledError(ScreenshotSearchError):
    """Operation was cancelled by the caller."""

    pass
