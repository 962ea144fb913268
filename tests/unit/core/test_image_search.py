"""Tests for the search engine."""

import pytest
from conftest import write_images

from screenshot_search.core.embeddings import EmbeddingHandle
from screenshot_search.core.exceptions import EmbeddingError
from screenshot_search.core.pipeline import IndexingPipeline
from screenshot_search.core.search import ImageSearchEngine
from screenshot_search.core.store import ImageStore


class EmptyEncoder:
    def encode(self, items):
        return []


class BrokenEncoder:
    def encode(self, items):
        raise RuntimeError("model crashed")


@pytest.fixture
async def indexed_corpus(index_config, provider, reporter):
    """Index cat.png, dog.png and chart.png."""
    paths = write_images(
        index_config.screenshot_dir, ["cat.png", "dog.png", "chart.png"]
    )
    await IndexingPipeline(index_config, provider, reporter).run()
    return {p.stem: p for p in paths}


@pytest.mark.asyncio
class TestImageSearchEngine:
    async def test_nearest_image_ranks_first(
        self, index_config, text_handle, indexed_corpus
    ):
        """The image whose embedding matches the query comes first."""
        engine = ImageSearchEngine(index_config, text_handle)

        results = await engine.search("dog")

        assert results[0] == str(indexed_corpus["dog"])
        assert len(results) == 3

    async def test_limit(self, index_config, text_handle, indexed_corpus):
        engine = ImageSearchEngine(index_config, text_handle)

        assert await engine.search("cat", limit=1) == [str(indexed_corpus["cat"])]

    async def test_deleted_files_are_dropped(
        self, index_config, text_handle, indexed_corpus
    ):
        """Stale rows for files deleted from disk never appear in results."""
        indexed_corpus["dog"].unlink()
        engine = ImageSearchEngine(index_config, text_handle)

        results = await engine.search("dog")

        assert str(indexed_corpus["dog"]) not in results
        assert len(results) == 2

    async def test_removed_path_not_returned(
        self, index_config, text_handle, indexed_corpus
    ):
        """After delete_by_path the file no longer shows up."""
        store = await ImageStore.open_or_create(index_config.db_path)
        await store.delete_by_path(str(indexed_corpus["cat"]))
        engine = ImageSearchEngine(index_config, text_handle)

        results = await engine.search("cat")

        assert str(indexed_corpus["cat"]) not in results

    async def test_empty_index(self, index_config, text_handle):
        """Searching before anything is indexed returns nothing."""
        engine = ImageSearchEngine(index_config, text_handle)

        assert await engine.search("anything") == []

    async def test_blank_query_skips_model(
        self, index_config, text_handle, text_encoder
    ):
        engine = ImageSearchEngine(index_config, text_handle)

        assert await engine.search("   ") == []
        assert text_encoder.calls == 0

    async def test_no_vectors_returns_empty(self, index_config, indexed_corpus):
        """A model that returns no vectors yields no results, not an error."""
        engine = ImageSearchEngine(index_config, EmbeddingHandle(EmptyEncoder()))

        assert await engine.search("cat") == []

    async def test_model_error_propagates(self, index_config, indexed_corpus):
        """The engine raises; degrading to empty results is the caller's job."""
        engine = ImageSearchEngine(index_config, EmbeddingHandle(BrokenEncoder()))

        with pytest.raises(EmbeddingError):
            await engine.search("cat")
