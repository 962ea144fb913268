"""LanceDB-backed store for screenshot embeddings.

One table, ``images``, keyed by ``file_path``. Each insert is a single
upsert on ``file_path``, so a path appears at most once even when two
indexing tasks write the same file. A store that cannot be opened is
treated as corrupt, deleted and recreated empty; a follow-up indexing
run rebuilds it.
"""

import platform
import shutil
import threading
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import lancedb
import pyarrow as pa
import pyarrow.compute as pc
from loguru import logger

from ..config.defaults import TABLE_NAME, VECTOR_DIMENSION
from .exceptions import (
    DatabaseError,
    DatabaseInitializationError,
    IndexCorruptionError,
    SearchError,
)
from .models import IndexedRecord, IndexStats

# Compaction on larger tables can overflow arrow offsets (lance#3330)
COMPACTION_ROW_LIMIT = 100_000

# One writer per store directory within this process
_write_locks: dict[str, threading.Lock] = {}
_write_locks_guard = threading.Lock()


def _write_lock_for(db_path: Path) -> threading.Lock:
    key = str(Path(db_path).resolve())
    with _write_locks_guard:
        return _write_locks.setdefault(key, threading.Lock())


def _create_images_schema(vector_dim: int) -> pa.Schema:
    """Create the images schema for a given vector dimension."""
    return pa.schema(
        [
            pa.field("file_path", pa.string(), nullable=False),
            pa.field("file_size", pa.uint64()),
            pa.field("modified_time", pa.int64()),  # unix seconds
            pa.field("vector", pa.list_(pa.float32(), vector_dim)),
        ]
    )


def _escape(value: str) -> str:
    return value.replace("'", "''")


class ImageStore:
    """Embedded vector store holding one row per indexed screenshot.

    Example:
        store = await ImageStore.open_or_create(config.db_path)
        indexed = await store.load_indexed_paths()
        await store.insert(records)
        paths = await store.nearest_neighbors(query_vector, limit=100)
    """

    def __init__(
        self,
        db_path: Path,
        vector_dim: int = VECTOR_DIMENSION,
        table_name: str = TABLE_NAME,
    ) -> None:
        self.db_path = Path(db_path)
        self.vector_dim = vector_dim
        self.table_name = table_name
        self.schema = _create_images_schema(vector_dim)
        self._db = None
        self._table = None
        self._write_lock = _write_lock_for(self.db_path)

    @classmethod
    async def open_or_create(
        cls, db_path: Path, vector_dim: int = VECTOR_DIMENSION
    ) -> "ImageStore":
        """Open the store at ``db_path``, creating (or recreating) it as needed.

        Raises:
            DatabaseInitializationError: If the store cannot be opened even
                after deleting and recreating it
            DatabaseError: If the images table exists but cannot be opened
        """
        store = cls(db_path, vector_dim=vector_dim)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        try:
            self._connect()
        except Exception as e:
            self._recreate_store(e)
            try:
                self._connect()
            except Exception as retry_error:
                logger.error(f"Failed to recreate image store: {retry_error}")
                raise DatabaseInitializationError(
                    f"Image store initialization failed: {retry_error}",
                    context={"db_path": str(self.db_path)},
                ) from retry_error

        # Table errors never delete the store; only a failed connect does
        self._refresh_table()

    def _connect(self) -> None:
        if self.db_path.exists() and not self.db_path.is_dir():
            raise DatabaseInitializationError(
                f"Store path is not a directory: {self.db_path}"
            )

        self.db_path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Connecting to LanceDB at: {self.db_path}")
        # Every read sees the latest commit from other handles
        self._db = lancedb.connect(
            str(self.db_path), read_consistency_interval=timedelta(0)
        )
        self._table_names()
        self._table = None

    def _table_names(self) -> list[str]:
        # list_tables() returns a response object with .tables on newer lancedb
        if hasattr(self._db, "list_tables"):
            response = self._db.list_tables()
            return list(response.tables if hasattr(response, "tables") else response)
        return list(self._db.table_names())

    def _is_corruption_error(self, error: Exception) -> bool:
        """True for missing data fragment files, not schema or I/O errors."""
        error_msg = str(error).lower()
        is_fragment_error = (
            "not found" in error_msg or "no such file" in error_msg
        ) and ("fragment" in error_msg or "data/" in error_msg)
        is_schema_error = "schema" in error_msg or "field" in error_msg
        return is_fragment_error and not is_schema_error

    def _open_table(self):
        """Open the images table.

        A stale listing (table gone) is dropped and a table with missing
        data fragments is deleted; both are rebuilt by the next indexing
        run. Any other error leaves the data in place and is raised.

        Raises:
            IndexCorruptionError: If a corrupt table cannot be deleted
            DatabaseError: If the table cannot be opened
        """
        try:
            return self._db.open_table(self.table_name)
        except Exception as e:
            error_msg = str(e).lower()
            if "not found" in error_msg and "fragment" not in error_msg:
                logger.warning(
                    f"Stale table entry '{self.table_name}' detected "
                    f"(listed but not openable: {e}). "
                    f"Cleaning up for fresh creation."
                )
                try:
                    self._db.drop_table(self.table_name)
                except Exception as drop_error:
                    logger.debug(f"drop_table on stale entry failed: {drop_error}")
                return None

            if self._is_corruption_error(e):
                self._delete_corrupt_table(e)
                return None

            logger.error(f"Failed to open table '{self.table_name}': {e}")
            raise DatabaseError(
                f"Failed to open images table: {e}",
                context={"db_path": str(self.db_path)},
            ) from e

    def _delete_corrupt_table(self, error: Exception) -> None:
        table_path = self.db_path / f"{self.table_name}.lance"
        logger.warning(
            f"Detected corrupted {self.table_name} table ({error}). "
            f"Auto-recovering by deleting: {table_path}"
        )
        try:
            if table_path.exists():
                shutil.rmtree(table_path)
        except OSError as e:
            raise IndexCorruptionError(
                f"Failed to delete corrupt table at {table_path}: {e}",
                context={"db_path": str(self.db_path)},
            ) from e

    def _recreate_store(self, error: Exception) -> None:
        """Delete an unopenable store so it can be recreated empty."""
        logger.warning("=" * 80)
        logger.warning("IMAGE INDEX CORRUPTION DETECTED")
        logger.warning("=" * 80)
        logger.warning(f"Could not open store at {self.db_path}: {error}")
        logger.warning("Deleting it and starting with an empty index.")
        logger.warning("Screenshots will be re-indexed on the next indexing run.")
        logger.warning("=" * 80)

        self._db = None
        self._table = None
        try:
            if self.db_path.is_dir():
                shutil.rmtree(self.db_path)
            elif self.db_path.exists():
                self.db_path.unlink()
        except OSError as e:
            raise DatabaseInitializationError(
                f"Failed to delete corrupt store at {self.db_path}: {e}"
            ) from e

    def _refresh_table(self) -> None:
        # Another task may have created the table after this store was opened
        if self._table is None and self._db is not None:
            if self.table_name in self._table_names():
                self._table = self._open_table()

    @property
    def has_table(self) -> bool:
        """Whether the images table exists; raises DatabaseError if unreadable."""
        self._refresh_table()
        return self._table is not None

    def _upsert(self, pa_table: pa.Table) -> None:
        """Upsert on ``file_path`` as a single commit."""
        (
            self._table.merge_insert("file_path")
            .when_matched_update_all()
            .when_not_matched_insert_all()
            .execute(pa_table)
        )

    async def load_indexed_paths(self) -> set[str]:
        """Return every indexed file path (empty if the table does not exist)."""
        if not self.has_table:
            return set()

        try:
            row_count = self._table.count_rows()
            if row_count == 0:
                return set()
            result = (
                self._table.search()
                .select(["file_path"])
                .limit(row_count)
                .to_arrow()
            )
            return set(result.column("file_path").to_pylist())
        except Exception as e:
            logger.error(f"Failed to load indexed paths: {e}")
            raise DatabaseError(f"Failed to load indexed paths: {e}") from e

    async def insert(self, records: Sequence[IndexedRecord]) -> int:
        """Write one batch of records, creating the table on first use.

        The batch is upserted on ``file_path`` in a single commit: existing
        rows for the same paths are replaced, so each path appears at most
        once and a failed write leaves the old rows untouched.

        Returns:
            Number of rows written

        Raises:
            DatabaseError: If a vector has the wrong dimension or the write fails
        """
        if not records:
            return 0

        if self._db is None:
            raise DatabaseError("Image store not initialized")

        # Last record wins if a path repeats within the batch
        by_path: dict[str, dict[str, Any]] = {}
        for record in records:
            if len(record.vector) != self.vector_dim:
                raise DatabaseError(
                    f"Invalid vector dimension for {record.file_path}: "
                    f"expected {self.vector_dim}, got {len(record.vector)}",
                    context={"file_path": record.file_path},
                )
            by_path[record.file_path] = record.to_dict()

        rows = list(by_path.values())

        try:
            pa_table = pa.Table.from_pylist(rows, schema=self.schema)
            with self._write_lock:
                self._refresh_table()

                if self._table is None:
                    try:
                        self._table = self._db.create_table(
                            self.table_name, pa_table, schema=self.schema
                        )
                        logger.debug(
                            f"Created images table with {len(rows)} rows "
                            f"(dimension: {self.vector_dim})"
                        )
                        return len(rows)
                    except Exception as create_error:
                        # Another process created it first; upsert instead
                        self._refresh_table()
                        if self._table is None:
                            raise create_error

                self._upsert(pa_table)
            logger.debug(f"Upserted {len(rows)} rows into images table")
            return len(rows)

        except DatabaseError:
            raise
        except Exception as e:
            logger.error(f"Failed to insert {len(rows)} records: {e}")
            raise DatabaseError(f"Failed to insert records: {e}") from e

    async def delete_by_path(self, file_path: str) -> None:
        """Delete the row for ``file_path``; a no-op if absent."""
        if not self.has_table:
            return

        try:
            with self._write_lock:
                self._table.delete(f"file_path = '{_escape(str(file_path))}'")
            logger.debug(f"Removed from index: {file_path}")
        except Exception as e:
            raise DatabaseError(
                f"Failed to delete {file_path}: {e}",
                context={"file_path": str(file_path)},
            ) from e

    async def optimize(self) -> None:
        """Compact data fragments and remove superseded table versions.

        Every upsert and delete adds a fragment or a version; without this
        the store's file count only grows. Called after indexing runs.
        Failures are logged and never raised.

        Skipped on macOS, where compaction can crash alongside PyTorch MPS
        memory-mapped model files.
        """
        if platform.system() == "Darwin":
            logger.debug("Skipping images table compaction on macOS")
            return

        if self._table is None:
            return

        try:
            row_count = self._table.count_rows()
        except Exception as e:
            logger.debug(f"Skipping compaction, row count unavailable: {e}")
            return
        if row_count > COMPACTION_ROW_LIMIT:
            logger.debug(
                f"Skipping compaction: table has {row_count} rows (lance#3330 safety)"
            )
            return

        try:
            with self._write_lock:
                self._table.optimize(cleanup_older_than=timedelta(seconds=0))
            logger.debug(f"Compacted images table ({row_count} rows)")
        except Exception as e:
            logger.warning(f"Failed to compact images table (non-fatal): {e}")

    async def nearest_neighbors(self, vector: Sequence[float], limit: int) -> list[str]:
        """Return up to ``limit`` paths ordered by ascending cosine distance."""
        if limit <= 0 or not self.has_table:
            return []

        if len(vector) != self.vector_dim:
            raise SearchError(
                f"Invalid query vector dimension: "
                f"expected {self.vector_dim}, got {len(vector)}"
            )

        try:
            results = (
                self._table.search(list(vector))
                .distance_type("cosine")
                .select(["file_path"])
                .limit(limit)
                .to_list()
            )
        except Exception as e:
            logger.error(f"Vector search failed: {e}")
            raise SearchError(f"Vector search failed: {e}") from e

        return [row["file_path"] for row in results]

    async def count(self) -> int:
        if not self.has_table:
            return 0
        try:
            return self._table.count_rows()
        except Exception as e:
            raise DatabaseError(f"Failed to count rows: {e}") from e

    async def stats(self) -> IndexStats:
        """Row count, total image size and time of the last table write."""
        if not self.has_table:
            return IndexStats(indexed_count=0, total_size_mb=0.0)

        try:
            count = self._table.count_rows()
            total_size = 0
            if count:
                sizes = (
                    self._table.search()
                    .select(["file_size"])
                    .limit(count)
                    .to_arrow()
                    .column("file_size")
                )
                total_size = pc.sum(sizes).as_py() or 0
        except Exception as e:
            raise DatabaseError(f"Failed to read index stats: {e}") from e

        return IndexStats(
            indexed_count=count,
            total_size_mb=total_size / (1024 * 1024),
            last_updated=self._last_write_time(),
        )

    def _last_write_time(self) -> datetime | None:
        try:
            versions = self._table.list_versions()
            timestamp = versions[-1]["timestamp"] if versions else None
        except Exception as e:
            logger.debug(f"Table versions unavailable: {e}")
            return None
        return timestamp if isinstance(timestamp, datetime) else None

    async def close(self) -> None:
        """Drop references; LanceDB needs no explicit close."""
        self._table = None
        self._db = None

    async def __aenter__(self) -> "ImageStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
