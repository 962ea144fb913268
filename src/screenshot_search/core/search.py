"""Free-text search over indexed screenshots."""

from pathlib import Path

from loguru import logger

from ..config.defaults import DEFAULT_SEARCH_LIMIT
from ..config.settings import IndexConfig
from .embeddings import EmbeddingHandle, EmbeddingProvider
from .store import ImageStore


class ImageSearchEngine:
    """Embeds a query and returns the nearest screenshots still on disk."""

    def __init__(self, config: IndexConfig, text_model: EmbeddingHandle) -> None:
        self.config = config
        self.provider = EmbeddingProvider(text=text_model)

    async def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[str]:
        """Return up to ``limit`` existing image paths, nearest first.

        Rows whose file was deleted since indexing are dropped, so fewer
        than ``limit`` paths may come back even when more rows exist.

        Raises:
            EmbeddingError: If the query cannot be embedded
            DatabaseError: If the store cannot be opened
            SearchError: If the nearest-neighbour query fails
        """
        if not query or not query.strip():
            return []

        vectors = await self.provider.embed_text([query])
        if not vectors:
            return []

        store = await ImageStore.open_or_create(self.config.db_path)
        try:
            if not store.has_table:
                logger.debug("Search on an empty index")
                return []
            candidates = await store.nearest_neighbors(vectors[0], limit)
        finally:
            await store.close()

        paths = [p for p in candidates if Path(p).exists()]
        if len(paths) < len(candidates):
            logger.debug(
                f"Dropped {len(candidates) - len(paths)} stale results for '{query}'"
            )
        logger.info(f"Found {len(paths)} matching images for '{query}'")
        return paths
