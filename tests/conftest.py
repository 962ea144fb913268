"""Shared fixtures: fake encoders, a throwaway corpus and event recorders.

The fake encoders place every image stem and every query string on its
own axis of a 768-dimensional space, so a query equal to an image's stem
is that image's nearest neighbour and nothing needs to be downloaded.
"""

from pathlib import Path

import pytest

from screenshot_search.config.defaults import VECTOR_DIMENSION
from screenshot_search.config.settings import CpuMode, IndexConfig
from screenshot_search.core.embeddings import EmbeddingHandle, EmbeddingProvider
from screenshot_search.core.progress import ProgressReporter


class VectorSpace:
    """Assigns each key its own one-hot axis, in first-seen order."""

    def __init__(self, dim: int = VECTOR_DIMENSION) -> None:
        self.dim = dim
        self._axes: dict[str, int] = {}

    def vector(self, key: str) -> list[float]:
        axis = self._axes.setdefault(key, len(self._axes) % self.dim)
        vec = [0.0] * self.dim
        vec[axis] = 1.0
        return vec


class FakeImageEncoder:
    """Embeds image paths by file stem; records every batch it sees."""

    model_name = "fake-vision"

    def __init__(self, space: VectorSpace, fail_on: set[str] | None = None) -> None:
        self.space = space
        self.fail_on = fail_on or set()
        self.batches: list[list[str]] = []

    def encode(self, items):
        self.batches.append(list(items))
        stems = [Path(p).stem for p in items]
        if self.fail_on.intersection(stems):
            raise RuntimeError(f"cannot decode {sorted(self.fail_on)}")
        return [self.space.vector(stem) for stem in stems]


class FakeTextEncoder:
    """Embeds each query string on its own axis."""

    model_name = "fake-text"

    def __init__(self, space: VectorSpace) -> None:
        self.space = space
        self.calls = 0

    def encode(self, items):
        self.calls += 1
        return [self.space.vector(text) for text in items]


class EventRecorder:
    """Minimal event channel: anything with ``put``."""

    def __init__(self) -> None:
        self.events: list = []

    def put(self, item) -> None:
        self.events.append(item)

    def of_type(self, event_type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


def write_images(directory: Path, names: list[str]) -> list[Path]:
    """Create placeholder image files (the fake encoder never decodes them)."""
    directory.mkdir(parents=True, exist_ok=True)
    paths = []
    for name in names:
        path = directory / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x89PNG\r\n\x1a\n" + name.encode())
        paths.append(path)
    return paths


def _field(stats, name: str):
    # Table.stats() returns mappings on some lancedb releases, objects on others
    return stats[name] if isinstance(stats, dict) else getattr(stats, name)


def fragment_count(image_store) -> int:
    """Number of data fragments in an open store's images table."""
    fragment_stats = _field(image_store._table.stats(), "fragment_stats")
    return _field(fragment_stats, "num_fragments")


def drain(channel) -> list:
    """Drain a queue.SimpleQueue without blocking."""
    items = []
    while not channel.empty():
        items.append(channel.get_nowait())
    return items


@pytest.fixture
def vector_space() -> VectorSpace:
    return VectorSpace()


@pytest.fixture
def image_encoder(vector_space) -> FakeImageEncoder:
    return FakeImageEncoder(vector_space)


@pytest.fixture
def text_encoder(vector_space) -> FakeTextEncoder:
    return FakeTextEncoder(vector_space)


@pytest.fixture
def image_handle(image_encoder) -> EmbeddingHandle:
    return EmbeddingHandle(image_encoder)


@pytest.fixture
def text_handle(text_encoder) -> EmbeddingHandle:
    return EmbeddingHandle(text_encoder)


@pytest.fixture
def provider(image_handle, text_handle) -> EmbeddingProvider:
    return EmbeddingProvider(image=image_handle, text=text_handle)


@pytest.fixture
def screenshot_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "Screenshots"
    directory.mkdir()
    return directory


@pytest.fixture
def index_config(tmp_path: Path, screenshot_dir: Path) -> IndexConfig:
    return IndexConfig(
        db_path=tmp_path / "config" / "vector_index.db",
        cpu_mode=CpuMode.FAST,
        screenshot_dir=screenshot_dir,
    )


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def reporter(recorder) -> ProgressReporter:
    return ProgressReporter(recorder)
