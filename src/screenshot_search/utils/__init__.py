"""Utility modules for Screenshot Search."""

from .cancellation import CancellationToken
from .logging import configure_logging

__all__ = ["CancellationToken", "configure_logging"]
