"""Progress events streamed from background tasks to the caller's channel."""

from __future__ import annotations

from dataclasses import dataclass, field


# --- Indexing run ---


@dataclass(frozen=True)
class IndexStarted:
    total: int


@dataclass(frozen=True)
class IndexProgress:
    """Emitted after each batch; ``current`` is the cumulative indexed count."""

    current: int
    total: int
    current_item: str


@dataclass(frozen=True)
class IndexCompleted:
    indexed_count: int


@dataclass(frozen=True)
class IndexFailed:
    error: str


@dataclass(frozen=True)
class IndexCancelled:
    indexed_count: int


# --- Model acquisition ---


@dataclass(frozen=True)
class ModelAcquisitionProgress:
    current: int
    total: int
    label: str


@dataclass(frozen=True)
class ModelAcquisitionCompleted:
    pass


@dataclass(frozen=True)
class ModelAcquisitionFailed:
    error: str


# --- Search ---


@dataclass(frozen=True)
class SearchResults:
    """Ranked image paths, nearest first. Empty on failure."""

    paths: list[str] = field(default_factory=list)


ProgressEvent = (
    IndexStarted
    | IndexProgress
    | IndexCompleted
    | IndexFailed
    | IndexCancelled
    | ModelAcquisitionProgress
    | ModelAcquisitionCompleted
    | ModelAcquisitionFailed
    | SearchResults
)

TERMINAL_INDEX_EVENTS = (IndexCompleted, IndexFailed, IndexCancelled)
