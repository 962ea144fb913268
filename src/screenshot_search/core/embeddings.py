"""Embedding models for Screenshot Search.

Two models share one 768-dimensional space: a vision encoder that embeds
screenshots and a text encoder that embeds search queries. Each loaded
model lives behind an ``EmbeddingHandle`` that serialises inference with
its own lock, so indexing (image model) and searching (text model) never
wait on each other.
"""

import asyncio
import contextlib
import logging
import os
import sys
import threading
import warnings
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from loguru import logger

from ..config.defaults import (
    DEFAULT_IMAGE_MODEL,
    DEFAULT_TEXT_MODEL,
    ENV_DEVICE,
    TEXT_QUERY_PREFIX,
)
from .events import ModelAcquisitionCompleted, ModelAcquisitionProgress
from .exceptions import EmbeddingError, ModelAcquisitionError
from .progress import NullReporter, ProgressReporter

# transformers/sentence-transformers are chatty during model load; our own
# INFO logs are enough.
logging.getLogger("transformers").setLevel(logging.ERROR)
logging.getLogger("sentence_transformers").setLevel(logging.ERROR)
logging.getLogger("torch").setLevel(logging.ERROR)
logging.getLogger("huggingface_hub").setLevel(logging.ERROR)

warnings.filterwarnings("ignore", category=FutureWarning, module="transformers")
warnings.filterwarnings("ignore", message=".*trust_remote_code.*")

VISION_LABEL = "Loading Vision Model"
TEXT_LABEL = "Loading Text Model"


@contextlib.contextmanager
def suppress_stdout_stderr():
    """Silence native-code output written straight to the process's fds.

    A windowed (tray) process may have no console at all, in which case
    there is nothing to redirect and this is a no-op.
    """
    try:
        stdout_fd = sys.stdout.fileno()
        stderr_fd = sys.stderr.fileno()
    except (AttributeError, OSError, ValueError):
        yield
        return

    stdout_dup = os.dup(stdout_fd)
    stderr_dup = os.dup(stderr_fd)
    devnull = os.open(os.devnull, os.O_RDWR)

    try:
        os.dup2(devnull, stdout_fd)
        os.dup2(devnull, stderr_fd)
        yield
    finally:
        os.dup2(stdout_dup, stdout_fd)
        os.dup2(stderr_dup, stderr_fd)
        os.close(stdout_dup)
        os.close(stderr_dup)
        os.close(devnull)


def _detect_device() -> str:
    """Detect the compute device (CUDA > MPS > CPU).

    Environment Variables:
        SCREENSHOT_SEARCH_DEVICE: Override device selection ("cpu", "cuda", or "mps")
    """
    import torch

    env_device = os.environ.get(ENV_DEVICE, "").lower()
    if env_device in ("cpu", "cuda", "mps"):
        logger.info(f"Using device from environment override: {env_device}")
        return env_device

    if torch.cuda.is_available():
        logger.info(f"Using CUDA backend ({torch.cuda.get_device_name(0)})")
        return "cuda"

    if torch.backends.mps.is_available() and torch.backends.mps.is_built():
        logger.info("Using MPS backend")
        return "mps"

    logger.info("Using CPU backend (no GPU acceleration)")
    return "cpu"


class Encoder(Protocol):
    """Anything that maps a batch of inputs to one vector per input."""

    def encode(self, items: list[Any]) -> list[list[float]]: ...


class NomicVisionEncoder:
    """Image encoder (nomic-embed-vision) loaded through transformers."""

    def __init__(
        self,
        model_name: str = DEFAULT_IMAGE_MODEL,
        cache_dir: Path | None = None,
        device: str | None = None,
    ) -> None:
        from transformers import AutoImageProcessor, AutoModel

        self.model_name = model_name
        self.device = device or _detect_device()
        cache = str(cache_dir) if cache_dir else None

        with suppress_stdout_stderr():
            self.processor = AutoImageProcessor.from_pretrained(  # nosec B615
                model_name, cache_dir=cache
            )
            self.model = AutoModel.from_pretrained(  # nosec B615
                model_name, trust_remote_code=True, cache_dir=cache
            )

        self.model = self.model.to(self.device)
        self.model.eval()
        logger.info(f"Loaded image model {model_name} on {self.device}")

    def encode(self, items: list[Any]) -> list[list[float]]:
        import torch
        import torch.nn.functional as F
        from PIL import Image

        images = []
        for path in items:
            with Image.open(path) as img:
                images.append(img.convert("RGB"))

        inputs = self.processor(images, return_tensors="pt")
        inputs = {k: v.to(self.device) for k, v in inputs.items()}

        with torch.no_grad():
            outputs = self.model(**inputs)
            # CLS token of the last hidden state is the image embedding
            embeddings = outputs.last_hidden_state[:, 0]
            embeddings = F.normalize(embeddings, p=2, dim=1)

        return embeddings.cpu().tolist()


class NomicTextEncoder:
    """Query encoder (nomic-embed-text) loaded through sentence-transformers."""

    def __init__(
        self,
        model_name: str = DEFAULT_TEXT_MODEL,
        cache_dir: Path | None = None,
        device: str | None = None,
        query_prefix: str = TEXT_QUERY_PREFIX,
    ) -> None:
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name
        self.device = device or _detect_device()
        self.query_prefix = query_prefix

        with suppress_stdout_stderr():
            self.model = SentenceTransformer(
                model_name,
                device=self.device,
                trust_remote_code=True,
                cache_folder=str(cache_dir) if cache_dir else None,
            )

        logger.info(
            f"Loaded text model {model_name} on {self.device} "
            f"({self.model.get_sentence_embedding_dimension()} dimensions)"
        )

    def encode(self, items: list[Any]) -> list[list[float]]:
        embeddings = self.model.encode(
            [f"{self.query_prefix}{text}" for text in items],
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
            device=self.device,
        )
        return embeddings.tolist()


class EmbeddingHandle:
    """Shared, lock-guarded handle to one loaded model.

    Many holders (an indexing run, a search, the prewarmed registry) may
    share a handle; inference through it is serialised.
    """

    def __init__(self, encoder: Encoder, name: str = "") -> None:
        self.encoder = encoder
        self.name = name or getattr(encoder, "model_name", type(encoder).__name__)
        self._lock = threading.Lock()

    def embed(self, inputs: Sequence[Any]) -> list[list[float]]:
        """Embed a batch synchronously. Empty input never touches the model."""
        items = list(inputs)
        if not items:
            return []

        try:
            with self._lock:
                return self.encoder.encode(items)
        except EmbeddingError:
            raise
        except Exception as e:
            logger.error(f"Embedding with {self.name} failed: {e}")
            raise EmbeddingError(
                f"Failed to generate embeddings: {e}",
                context={"model": self.name, "batch_size": len(items)},
            ) from e

    async def aembed(self, inputs: Sequence[Any]) -> list[list[float]]:
        """Embed a batch without blocking the event loop."""
        items = list(inputs)
        if not items:
            return []
        return await asyncio.to_thread(self.embed, items)


class EmbeddingProvider:
    """Async facade over the image and text handles used by one task."""

    def __init__(
        self,
        image: EmbeddingHandle | None = None,
        text: EmbeddingHandle | None = None,
    ) -> None:
        self.image = image
        self.text = text

    async def embed_images(self, paths: Sequence[Path | str]) -> list[list[float]]:
        if self.image is None:
            raise EmbeddingError("No image model available")
        return await self.image.aembed([str(p) for p in paths])

    async def embed_text(self, queries: Sequence[str]) -> list[list[float]]:
        if self.text is None:
            raise EmbeddingError("No text model available")
        return await self.text.aembed(list(queries))


class ModelLoader:
    """Downloads (first run) and loads the two encoders into a local cache."""

    def __init__(
        self,
        cache_dir: Path,
        image_model: str = DEFAULT_IMAGE_MODEL,
        text_model: str = DEFAULT_TEXT_MODEL,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.image_model = image_model
        self.text_model = text_model

    def load_vision(self) -> EmbeddingHandle:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Loading image model {self.image_model} (cache: {self.cache_dir})")
        encoder = NomicVisionEncoder(self.image_model, cache_dir=self.cache_dir)
        return EmbeddingHandle(encoder, self.image_model)

    def load_text(self) -> EmbeddingHandle:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Loading text model {self.text_model} (cache: {self.cache_dir})")
        encoder = NomicTextEncoder(self.text_model, cache_dir=self.cache_dir)
        return EmbeddingHandle(encoder, self.text_model)


class ModelRegistry:
    """Process-wide owner of the loaded model handles.

    The application creates one registry at startup, optionally prewarms
    it in the background, and passes it to the entry points that need
    models. Loading happens at most once per model even when several
    tasks ask concurrently.

    Example:
        registry = ModelRegistry(config.model_cache_dir)
        registry.prewarm()
        ...
        image, text = registry.acquire(reporter)
    """

    def __init__(self, cache_dir: Path, loader: ModelLoader | None = None) -> None:
        self.cache_dir = Path(cache_dir)
        self._loader = loader or ModelLoader(self.cache_dir)
        self._lock = threading.Lock()
        self._image: EmbeddingHandle | None = None
        self._text: EmbeddingHandle | None = None

    @property
    def image(self) -> EmbeddingHandle | None:
        return self._image

    @property
    def text(self) -> EmbeddingHandle | None:
        return self._text

    @property
    def is_loaded(self) -> bool:
        return self._image is not None and self._text is not None

    def acquire(
        self, reporter: ProgressReporter | None = None
    ) -> tuple[EmbeddingHandle, EmbeddingHandle]:
        """Load whichever models are missing and return both handles.

        Emits two ModelAcquisitionProgress events and a final
        ModelAcquisitionCompleted. Nothing is emitted when both models are
        already loaded.

        Raises:
            ModelAcquisitionError: If either model fails to download or load
        """
        reporter = reporter or NullReporter()

        with self._lock:
            if self.is_loaded:
                return self._image, self._text

            try:
                reporter.emit(ModelAcquisitionProgress(1, 2, VISION_LABEL))
                if self._image is None:
                    self._image = self._loader.load_vision()

                reporter.emit(ModelAcquisitionProgress(2, 2, TEXT_LABEL))
                if self._text is None:
                    self._text = self._loader.load_text()
            except Exception as e:
                logger.error(f"Model acquisition failed: {e}")
                raise ModelAcquisitionError(
                    f"Failed to load embedding models: {e}",
                    context={"cache_dir": str(self.cache_dir)},
                ) from e

            image, text = self._image, self._text

        reporter.emit(ModelAcquisitionCompleted())
        return image, text

    def acquire_image(
        self, reporter: ProgressReporter | None = None
    ) -> EmbeddingHandle:
        """Load only the image model, for callers that never embed text.

        Emits one ModelAcquisitionProgress event and ModelAcquisitionCompleted,
        or nothing when the image model is already loaded.

        Raises:
            ModelAcquisitionError: If the image model fails to download or load
        """
        reporter = reporter or NullReporter()

        with self._lock:
            if self._image is not None:
                return self._image

            try:
                reporter.emit(ModelAcquisitionProgress(1, 1, VISION_LABEL))
                self._image = self._loader.load_vision()
            except Exception as e:
                logger.error(f"Image model acquisition failed: {e}")
                raise ModelAcquisitionError(
                    f"Failed to load image model: {e}",
                    context={"cache_dir": str(self.cache_dir)},
                ) from e

            image = self._image

        reporter.emit(ModelAcquisitionCompleted())
        return image

    def prewarm(self) -> threading.Thread:
        """Load both models on a daemon thread so the first index/search is fast."""

        def _run() -> None:
            try:
                self.acquire()
                logger.info("Embedding models prewarmed")
            except ModelAcquisitionError as e:
                logger.warning(f"Model prewarm failed, will retry on first use: {e}")

        thread = threading.Thread(target=_run, name="model-prewarm", daemon=True)
        thread.start()
        return thread
