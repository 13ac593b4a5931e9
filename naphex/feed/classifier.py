"""
Error classification for stream failures.

Transports report their own keep-alive timeouts and self-reconnects as errors.
Those are noise: they must not reach the user as failures or spend the retry
budget. Everything else is a genuine failure.

Classification order:
1. An explicit StreamErrorKind on the error (StreamError or any object with `.kind`).
2. Known marker phrases in the error text, for transports that only give a message.
3. Anything unclassifiable is a failure, never transient.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from naphex.feed.errors import StreamErrorKind

logger = logging.getLogger(__name__)


class ErrorClass(str, Enum):
    TRANSIENT = "transient"
    FAILURE = "failure"


TRANSIENT_KINDS: frozenset[StreamErrorKind] = frozenset(
    {StreamErrorKind.KEEPALIVE_TIMEOUT, StreamErrorKind.AUTO_RECONNECT}
)

# Wording used by EventSource-style transports for keep-alive / self-reconnect notices
TRANSIENT_MARKERS: tuple[str, ...] = ("No activity within", "Reconnecting")


class ErrorClassifier:
    """Decides whether a stream error is transport noise or a real failure."""

    def __init__(self, markers: tuple[str, ...] = TRANSIENT_MARKERS) -> None:
        self._markers = markers

    def classify(self, error: Any) -> ErrorClass:
        kind = self._explicit_kind(error)
        if kind is not None:
            return ErrorClass.TRANSIENT if kind in TRANSIENT_KINDS else ErrorClass.FAILURE

        # Heuristic for errors without a kind signal
        text = self._error_text(error)
        if text and any(marker in text for marker in self._markers):
            logger.debug(f"Classified by message marker as transient: {text!r}")
            return ErrorClass.TRANSIENT

        return ErrorClass.FAILURE

    def is_transient(self, error: Any) -> bool:
        return self.classify(error) is ErrorClass.TRANSIENT

    @staticmethod
    def _explicit_kind(error: Any) -> Optional[StreamErrorKind]:
        kind = getattr(error, "kind", None)
        if isinstance(kind, StreamErrorKind):
            return kind
        if isinstance(kind, str):
            try:
                return StreamErrorKind(kind)
            except ValueError:
                return None
        return None

    @staticmethod
    def _error_text(error: Any) -> str:
        if error is None:
            return ""
        # EventSource polyfills nest the cause: {"error": {"message": ...}}
        inner = getattr(error, "error", None)
        if inner is None and isinstance(error, dict):
            inner = error.get("error")
        if isinstance(inner, dict):
            message = inner.get("message")
            if isinstance(message, str):
                return message
        if inner is not None and isinstance(getattr(inner, "message", None), str):
            return inner.message
        if isinstance(error, dict):
            message = error.get("message")
            return message if isinstance(message, str) else ""
        return str(error)
