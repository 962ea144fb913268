"""Public entry points for indexing and searching screenshots.

Every ``start_*``/``search_*``/``remove_*``/``index_*`` call returns at
once: the work runs on a daemon thread that owns a private asyncio event
loop, and results come back as events on the caller's channel. The
returned thread may be joined (tests do) but callers normally ignore it.

``get_indexed_count`` and ``get_index_stats`` block and are meant to be
called from a background thread.
"""

import asyncio
import threading
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

from loguru import logger

from ..config.defaults import DEFAULT_SEARCH_LIMIT
from ..config.settings import IndexConfig
from ..utils.cancellation import CancellationToken
from .embeddings import EmbeddingHandle, EmbeddingProvider, ModelRegistry
from .events import IndexFailed, ModelAcquisitionFailed, ProgressEvent, SearchResults
from .exceptions import ModelAcquisitionError
from .models import IndexStats
from .pipeline import IndexingPipeline
from .progress import EventChannel, ProgressReporter
from .search import ImageSearchEngine
from .store import ImageStore

Envelope = Callable[[ProgressEvent], Any]


def _spawn(
    name: str, coro_factory: Callable[[], Coroutine[Any, Any, None]]
) -> threading.Thread:
    """Run a coroutine on a new daemon thread with its own event loop."""
    thread = threading.Thread(
        target=lambda: asyncio.run(coro_factory()), name=name, daemon=True
    )
    thread.start()
    return thread


async def _acquire_models(
    reporter: ProgressReporter,
    registry: ModelRegistry | None,
    config: IndexConfig,
    needs_text: bool = True,
) -> tuple[EmbeddingHandle, EmbeddingHandle | None] | None:
    """Acquire the models a run needs, reporting progress. None on failure.

    Image-only runs (single-file indexing) load just the image model.
    """
    registry = registry or ModelRegistry(config.model_cache_dir)
    try:
        if not needs_text:
            image = await asyncio.to_thread(registry.acquire_image, reporter)
            return image, registry.text
        return await asyncio.to_thread(registry.acquire, reporter)
    except ModelAcquisitionError as e:
        reporter.emit(ModelAcquisitionFailed(str(e)))
        return None


async def _run_pipeline(
    config: IndexConfig,
    reporter: ProgressReporter,
    image_model: EmbeddingHandle | None,
    text_model: EmbeddingHandle | None,
    registry: ModelRegistry | None,
    cancel_token: CancellationToken | None,
    force_all: bool = False,
    files: list[Path] | None = None,
    needs_text: bool = True,
) -> None:
    # Single-file indexing only embeds images
    if image_model is None or (needs_text and text_model is None):
        handles = await _acquire_models(reporter, registry, config, needs_text)
        if handles is None:
            return
        image_model, text_model = handles

    provider = EmbeddingProvider(image=image_model, text=text_model)
    pipeline = IndexingPipeline(config, provider, reporter, cancel_token)
    try:
        await pipeline.run(force_all=force_all, files=files)
    except Exception as e:
        logger.exception(f"Indexing run crashed: {e}")
        reporter.emit(IndexFailed(str(e)))


def start_indexing(
    config: IndexConfig,
    channel: EventChannel,
    force_all: bool = False,
    image_model: EmbeddingHandle | None = None,
    text_model: EmbeddingHandle | None = None,
    *,
    registry: ModelRegistry | None = None,
    envelope: Envelope | None = None,
    cancel_token: CancellationToken | None = None,
) -> threading.Thread:
    """Index the screenshot directory in the background.

    When both prewarmed handles are supplied, model acquisition is skipped.
    Otherwise the models are acquired first (through ``registry`` if given)
    and acquisition progress is reported on ``channel``; an acquisition
    failure ends the call with ``ModelAcquisitionFailed``.

    Args:
        config: Index configuration
        channel: Caller's event channel (anything with ``put``)
        force_all: Re-embed every image, not just unindexed ones
        image_model: Prewarmed image model handle
        text_model: Prewarmed text model handle
        registry: Shared model registry used when a handle is missing
        envelope: Wraps each event in the caller's message type
        cancel_token: Stops the run between batches when cancelled
    """
    reporter = ProgressReporter(channel, envelope)
    return _spawn(
        "screenshot-indexer",
        lambda: _run_pipeline(
            config,
            reporter,
            image_model,
            text_model,
            registry,
            cancel_token,
            force_all=force_all,
        ),
    )


def index_file(
    path: Path,
    config: IndexConfig,
    channel: EventChannel,
    image_model: EmbeddingHandle | None = None,
    *,
    registry: ModelRegistry | None = None,
    envelope: Envelope | None = None,
) -> threading.Thread:
    """Index one newly captured screenshot in the background.

    Reports the same events as ``start_indexing``; a file that is already
    indexed, missing, or not an image completes with ``IndexCompleted(0)``.
    """
    reporter = ProgressReporter(channel, envelope)
    return _spawn(
        "screenshot-index-file",
        lambda: _run_pipeline(
            config,
            reporter,
            image_model,
            None,
            registry,
            None,
            files=[Path(path)],
            needs_text=False,
        ),
    )


def remove_from_index(path: Path | str, config: IndexConfig) -> threading.Thread:
    """Delete ``path`` from the index in the background. Errors are only logged."""

    async def _remove() -> None:
        try:
            store = await ImageStore.open_or_create(config.db_path)
            try:
                await store.delete_by_path(str(path))
            finally:
                await store.close()
        except Exception as e:
            logger.error(f"Failed to remove {path} from index: {e}")

    return _spawn("screenshot-index-remove", _remove)


def get_indexed_count(config: IndexConfig) -> int:
    """Number of indexed screenshots (blocking).

    Raises:
        DatabaseError: If the store cannot be read
    """

    async def _count() -> int:
        store = await ImageStore.open_or_create(config.db_path)
        try:
            return await store.count()
        finally:
            await store.close()

    return asyncio.run(_count())


def get_index_stats(config: IndexConfig) -> IndexStats:
    """Index statistics for the settings window (blocking).

    Raises:
        DatabaseError: If the store cannot be read
    """

    async def _stats() -> IndexStats:
        store = await ImageStore.open_or_create(config.db_path)
        try:
            return await store.stats()
        finally:
            await store.close()

    return asyncio.run(_stats())


def search_images(
    query: str,
    config: IndexConfig,
    text_model: EmbeddingHandle | None,
    channel: EventChannel,
    limit: int = DEFAULT_SEARCH_LIMIT,
    *,
    envelope: Envelope | None = None,
) -> threading.Thread:
    """Search in the background; always reports exactly one SearchResults.

    Any failure degrades to an empty result list.
    """
    reporter = ProgressReporter(channel, envelope)

    async def _search() -> None:
        try:
            paths = await ImageSearchEngine(config, text_model).search(query, limit)
        except Exception as e:
            logger.error(f"Search for '{query}' failed: {e}")
            paths = []
        reporter.emit(SearchResults(paths))

    return _spawn("screenshot-search", _search)
