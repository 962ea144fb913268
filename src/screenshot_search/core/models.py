"""Data models for the screenshot index."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


@dataclass
class IndexedRecord:
    """One row of the images table: an image path and its embedding."""

    file_path: str
    file_size: int
    modified_time: int
    vector: list[float] = field(repr=False)

    def __post_init__(self) -> None:
        if isinstance(self.file_path, Path):
            self.file_path = str(self.file_path)
        self.vector = [float(v) for v in self.vector]

    @classmethod
    def from_path(cls, path: Path, vector: list[float]) -> IndexedRecord | None:
        """Build a record from a file on disk.

        Returns:
            The record, or None if the file cannot be stat'ed (it vanished
            between scan and insert).
        """
        try:
            stat = path.stat()
        except OSError:
            return None

        return cls(
            file_path=str(path),
            file_size=stat.st_size,
            modified_time=int(stat.st_mtime),
            vector=vector,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "file_size": self.file_size,
            "modified_time": self.modified_time,
            "vector": self.vector,
        }


@dataclass
class IndexStats:
    """Index statistics shown in the settings window."""

    indexed_count: int
    total_size_mb: float
    last_updated: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "indexed_count": self.indexed_count,
            "total_size_mb": round(self.total_size_mb, 2),
            "last_updated": (
                self.last_updated.isoformat() if self.last_updated else None
            ),
        }


@dataclass
class IndexRunResult:
    """Outcome of one indexing-pipeline run."""

    total: int = 0
    indexed_count: int = 0
    cancelled: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.cancelled
