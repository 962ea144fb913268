"""Core functionality for Screenshot Search."""

from .exceptions import (
    ConfigError,
    DatabaseError,
    DatabaseInitializationError,
    EmbeddingError,
    IndexCorruptionError,
    IndexingError,
    ModelAcquisitionError,
    OperationCancelledError,
    ScreenshotSearchError,
    SearchError,
)

__all__ = [
    "ConfigError",
    "DatabaseError",
    "DatabaseInitializationError",
    "EmbeddingError",
    "IndexCorruptionError",
    "IndexingError",
    "ModelAcquisitionError",
    "OperationCancelledError",
    "ScreenshotSearchError",
    "SearchError",
]
