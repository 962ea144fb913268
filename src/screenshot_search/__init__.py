"""Screenshot Search - semantic indexing and free-text search for screenshots."""

__version__ = "0.3.0"

from .config.settings import CpuMode, IndexConfig
from .core.exceptions import ScreenshotSearchError
from .core.indexer import (
    get_index_stats,
    get_indexed_count,
    index_file,
    remove_from_index,
    search_images,
    start_indexing,
)

__all__ = [
    "CpuMode",
    "IndexConfig",
    "ScreenshotSearchError",
    "__version__",
    "get_index_stats",
    "get_indexed_count",
    "index_file",
    "remove_from_index",
    "search_images",
    "start_indexing",
]
