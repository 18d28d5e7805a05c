"""
Error taxonomy shared by the engine, adapters and runtime.

transient-io  -> retried with backoff
validation    -> instance fails to start
precondition  -> signal rejected, no state change
consistency   -> self-healed with a warning
fatal         -> instance stops
"""

from __future__ import annotations
from typing import Iterable


class TraderError(Exception):
    """Base class for all hurst_trader errors."""


class TransientIOError(TraderError):
    """Network failure, exchange 5xx or rate limit. Safe to retry."""


class ValidationError(TraderError):
    """Invalid instance configuration. Carries every failed rule."""

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid configuration")


class PreconditionError(TraderError):
    """Operation not allowed in the current state."""


class ConsistencyError(TraderError):
    """In-memory and stored state disagree."""


class FatalError(TraderError):
    """Unrecoverable for the instance (auth failure, store unavailable)."""


class BrokerError(TraderError):
    """Order rejected by the broker. Not retried."""
