"""Tests for embedding handles, the provider facade and the model registry."""

import threading
import time

import pytest
from conftest import EventRecorder

from screenshot_search.core.embeddings import (
    EmbeddingHandle,
    EmbeddingProvider,
    ModelRegistry,
)
from screenshot_search.core.events import (
    ModelAcquisitionCompleted,
    ModelAcquisitionProgress,
)
from screenshot_search.core.exceptions import EmbeddingError, ModelAcquisitionError
from screenshot_search.core.progress import ProgressReporter


class CountingEncoder:
    def __init__(self) -> None:
        self.calls = 0

    def encode(self, items):
        self.calls += 1
        return [[float(len(str(item)))] for item in items]


class SlowEncoder:
    """Tracks how many encode calls overlap."""

    def __init__(self) -> None:
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def encode(self, items):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.1)
        with self._lock:
            self.active -= 1
        return [[0.0] for _ in items]


class CountingLoader:
    def __init__(self, fail_text: bool = False) -> None:
        self.vision_loads = 0
        self.text_loads = 0
        self.fail_text = fail_text

    def load_vision(self):
        self.vision_loads += 1
        return EmbeddingHandle(CountingEncoder(), "vision")

    def load_text(self):
        self.text_loads += 1
        if self.fail_text:
            raise RuntimeError("disk full")
        return EmbeddingHandle(CountingEncoder(), "text")


class TestEmbeddingHandle:
    def test_empty_input_skips_model(self):
        encoder = CountingEncoder()
        handle = EmbeddingHandle(encoder)

        assert handle.embed([]) == []
        assert encoder.calls == 0

    def test_one_vector_per_input(self):
        handle = EmbeddingHandle(CountingEncoder())

        assert handle.embed(["a", "bbb"]) == [[1.0], [3.0]]

    def test_model_errors_become_embedding_errors(self):
        class Broken:
            def encode(self, items):
                raise ValueError("bad tensor")

        handle = EmbeddingHandle(Broken(), "broken")

        with pytest.raises(EmbeddingError, match="bad tensor") as exc_info:
            handle.embed(["x"])
        assert exc_info.value.context["model"] == "broken"

    def test_inference_is_serialised(self):
        """Concurrent callers of one handle never overlap inside the model."""
        encoder = SlowEncoder()
        handle = EmbeddingHandle(encoder)
        threads = [
            threading.Thread(target=handle.embed, args=(["x"],)) for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert encoder.max_active == 1

    def test_separate_handles_do_not_block_each_other(self):
        """Image and text handles have independent locks."""
        encoder = SlowEncoder()
        image = EmbeddingHandle(encoder)
        text = EmbeddingHandle(encoder)
        threads = [
            threading.Thread(target=image.embed, args=(["x"],)),
            threading.Thread(target=text.embed, args=(["y"],)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert encoder.max_active == 2

    @pytest.mark.asyncio
    async def test_async_embed(self):
        handle = EmbeddingHandle(CountingEncoder())

        assert await handle.aembed(["ab"]) == [[2.0]]
        assert await handle.aembed([]) == []


@pytest.mark.asyncio
class TestEmbeddingProvider:
    async def test_embed_images_passes_paths_as_strings(self, tmp_path):
        encoder = CountingEncoder()
        provider = EmbeddingProvider(image=EmbeddingHandle(encoder))

        vectors = await provider.embed_images([tmp_path / "a.png"])

        assert vectors == [[float(len(str(tmp_path / "a.png")))]]

    async def test_missing_text_model(self):
        provider = EmbeddingProvider(image=EmbeddingHandle(CountingEncoder()))

        with pytest.raises(EmbeddingError):
            await provider.embed_text(["query"])

    async def test_missing_image_model(self):
        provider = EmbeddingProvider(text=EmbeddingHandle(CountingEncoder()))

        with pytest.raises(EmbeddingError):
            await provider.embed_images(["a.png"])


class TestModelRegistry:
    def test_acquire_reports_progress(self, tmp_path):
        recorder = EventRecorder()
        registry = ModelRegistry(tmp_path, loader=CountingLoader())

        image, text = registry.acquire(ProgressReporter(recorder))

        assert image.name == "vision"
        assert text.name == "text"
        assert recorder.events == [
            ModelAcquisitionProgress(1, 2, "Loading Vision Model"),
            ModelAcquisitionProgress(2, 2, "Loading Text Model"),
            ModelAcquisitionCompleted(),
        ]

    def test_models_load_once(self, tmp_path):
        """Later acquisitions reuse the loaded handles and report nothing."""
        loader = CountingLoader()
        registry = ModelRegistry(tmp_path, loader=loader)
        first = registry.acquire()
        recorder = EventRecorder()

        second = registry.acquire(ProgressReporter(recorder))

        assert first == second
        assert loader.vision_loads == 1
        assert loader.text_loads == 1
        assert recorder.events == []

    def test_failure_raises_and_keeps_loaded_model(self, tmp_path):
        """A failed text load raises; the vision model is kept for the retry."""
        loader = CountingLoader(fail_text=True)
        registry = ModelRegistry(tmp_path, loader=loader)

        with pytest.raises(ModelAcquisitionError, match="disk full"):
            registry.acquire()

        assert registry.image is not None
        assert registry.text is None
        loader.fail_text = False
        registry.acquire()
        assert loader.vision_loads == 1
        assert registry.is_loaded

    def test_prewarm_loads_in_background(self, tmp_path):
        registry = ModelRegistry(tmp_path, loader=CountingLoader())

        thread = registry.prewarm()
        thread.join(10)

        assert thread.daemon
        assert registry.is_loaded

    def test_prewarm_failure_is_logged(self, tmp_path):
        registry = ModelRegistry(tmp_path, loader=CountingLoader(fail_text=True))

        thread = registry.prewarm()
        thread.join(10)

        assert not registry.is_loaded

    def test_concurrent_acquire_loads_once(self, tmp_path):
        loader = CountingLoader()
        registry = ModelRegistry(tmp_path, loader=loader)
        threads = [threading.Thread(target=registry.acquire) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert loader.vision_loads == 1
        assert loader.text_loads == 1

    def test_acquire_image_skips_text_model(self, tmp_path):
        recorder = EventRecorder()
        loader = CountingLoader()
        registry = ModelRegistry(tmp_path, loader=loader)

        image = registry.acquire_image(ProgressReporter(recorder))

        assert image.name == "vision"
        assert loader.text_loads == 0
        assert recorder.events == [
            ModelAcquisitionProgress(1, 1, "Loading Vision Model"),
            ModelAcquisitionCompleted(),
        ]

    def test_acquire_image_reuses_loaded_model(self, tmp_path):
        """A registry that already holds the image model reports nothing."""
        loader = CountingLoader()
        registry = ModelRegistry(tmp_path, loader=loader)
        registry.acquire()
        recorder = EventRecorder()

        registry.acquire_image(ProgressReporter(recorder))

        assert loader.vision_loads == 1
        assert recorder.events == []
