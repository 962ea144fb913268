"""Event delivery from background tasks to the caller's channel.

The core never defines its own channel type. Callers hand in any object
with a non-blocking ``put`` (``queue.SimpleQueue`` in the tray app) and,
optionally, an envelope that wraps each event in the caller's own message
type, so events land in the GUI's existing event loop unchanged.
"""

from collections.abc import Callable
from typing import Any, Protocol

from loguru import logger

from .events import ProgressEvent


class EventChannel(Protocol):
    def put(self, item: Any) -> None: ...


class ProgressReporter:
    """Sends events, in order, to one caller-supplied channel."""

    def __init__(
        self,
        channel: EventChannel,
        envelope: Callable[[ProgressEvent], Any] | None = None,
    ) -> None:
        self.channel = channel
        self.envelope = envelope

    def emit(self, event: ProgressEvent) -> None:
        logger.debug(f"Progress event: {event}")
        message = self.envelope(event) if self.envelope else event
        self.channel.put(message)


class NullReporter(ProgressReporter):
    """Reporter that drops every event (prewarm, direct callers)."""

    def __init__(self) -> None:
        super().__init__(channel=None)  # type: ignore[arg-type]

    def emit(self, event: ProgressEvent) -> None:
        logger.debug(f"Dropped progress event: {event}")
