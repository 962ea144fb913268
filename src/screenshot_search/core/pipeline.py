"""Incremental, throttled batch indexing of the screenshot corpus."""

import asyncio
from collections.abc import Iterable
from pathlib import Path

from loguru import logger

from ..config.settings import IndexConfig
from ..utils.cancellation import CancellationToken
from .embeddings import EmbeddingProvider
from .events import (
    IndexCancelled,
    IndexCompleted,
    IndexFailed,
    IndexProgress,
    IndexStarted,
)
from .exceptions import OperationCancelledError
from .models import IndexedRecord, IndexRunResult
from .progress import ProgressReporter
from .scanner import collect_files_async, is_image_file
from .store import ImageStore


class IndexingPipeline:
    """One indexing run: diff the corpus, embed new files, persist them.

    Batches run strictly one after another. Every run ends with exactly
    one terminal event: IndexCompleted, IndexFailed or IndexCancelled.

    A failing batch stops the run; no further batches are attempted. Work
    already written stays in the store, so the run reports
    ``IndexCompleted(n)`` when ``n > 0`` files made it in and
    ``IndexFailed`` otherwise. The next incremental run picks up the rest.
    """

    def __init__(
        self,
        config: IndexConfig,
        provider: EmbeddingProvider,
        reporter: ProgressReporter,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self.reporter = reporter
        self.cancel_token = cancel_token

    async def run(
        self, force_all: bool = False, files: Iterable[Path] | None = None
    ) -> IndexRunResult:
        """Run the pipeline.

        Args:
            force_all: Re-embed every image instead of only unindexed ones
            files: Explicit worklist (e.g. one newly captured screenshot)
                used in place of a directory scan

        Returns:
            Summary of the run (also reported as events)
        """
        result = IndexRunResult()

        try:
            store = await ImageStore.open_or_create(self.config.db_path)
            worklist = await self._build_worklist(store, force_all, files)
        except OperationCancelledError:
            result.cancelled = True
            self.reporter.emit(IndexCancelled(0))
            return result
        except Exception as e:
            logger.error(f"Indexing could not start: {e}")
            result.error = str(e)
            self.reporter.emit(IndexFailed(str(e)))
            return result

        result.total = len(worklist)
        if not worklist:
            logger.info("Index is up to date, nothing to do")
            self.reporter.emit(IndexCompleted(0))
            return result

        logger.info(
            f"Indexing {result.total} screenshots "
            f"({self.config.cpu_mode.value} mode, batch size "
            f"{self.config.cpu_mode.batch_size()})"
        )
        self.reporter.emit(IndexStarted(result.total))

        try:
            await self._process_batches(store, worklist, result)
            if result.indexed_count:
                await store.optimize()
        finally:
            await store.close()

        if result.cancelled:
            logger.info(f"Indexing cancelled after {result.indexed_count} files")
            self.reporter.emit(IndexCancelled(result.indexed_count))
        elif result.error is not None and result.indexed_count == 0:
            self.reporter.emit(IndexFailed(result.error))
        else:
            logger.info(
                f"Indexing finished: {result.indexed_count}/{result.total} files"
            )
            self.reporter.emit(IndexCompleted(result.indexed_count))

        return result

    async def _build_worklist(
        self,
        store: ImageStore,
        force_all: bool,
        files: Iterable[Path] | None,
    ) -> list[Path]:
        indexed = None if force_all else await store.load_indexed_paths()

        if files is None:
            return await collect_files_async(
                self.config.screenshot_dir, indexed, self.cancel_token
            )

        worklist = []
        for path in files:
            path = Path(path)
            if not is_image_file(path) or not path.is_file():
                logger.debug(f"Skipping non-image or missing file: {path}")
                continue
            if indexed is not None and str(path) in indexed:
                continue
            worklist.append(path)
        return worklist

    async def _process_batches(
        self, store: ImageStore, worklist: list[Path], result: IndexRunResult
    ) -> None:
        batch_size = self.config.cpu_mode.batch_size()
        delay = self.config.cpu_mode.delay_ms() / 1000.0

        for start in range(0, len(worklist), batch_size):
            if self.cancel_token is not None and self.cancel_token.is_cancelled:
                result.cancelled = True
                return

            if start > 0 and delay > 0:
                await asyncio.sleep(delay)

            batch = worklist[start : start + batch_size]
            try:
                inserted = await self._index_batch(store, batch)
            except Exception as e:
                logger.error(
                    f"Batch starting at {batch[0].name} failed, "
                    f"stopping run after {result.indexed_count} files: {e}"
                )
                result.error = str(e)
                return

            result.indexed_count += inserted
            self.reporter.emit(
                IndexProgress(result.indexed_count, result.total, batch[0].name)
            )

    async def _index_batch(self, store: ImageStore, batch: list[Path]) -> int:
        vectors = await self.provider.embed_images(batch)

        # Pair by position; a short embedding result indexes only the prefix
        records = []
        for path, vector in zip(batch, vectors, strict=False):
            record = IndexedRecord.from_path(path, vector)
            if record is None:
                logger.warning(f"File vanished before it could be indexed: {path}")
                continue
            records.append(record)

        return await store.insert(records)
