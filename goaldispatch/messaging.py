"""
Messaging collaborator for goal state updates.

Goal messages travel over a shared, at-least-once event bus. This module
only defines the client boundary; transports live elsewhere.
"""

import logging
import threading
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class MessageClient(Protocol):
    """
    Protocol for publishing messages to the event bus.

    Keeps the dispatch layer free of transport details and makes
    publishing trivially mockable in tests.
    """

    def send(self, message: dict[str, Any]) -> None:
        """
        Publish a message.

        Args:
            message: Wire form of the message (JSON-serializable dict)
        """
        ...


class NoOpMessageClient:
    """
    No-op implementation of MessageClient.

    Drops every message; used when no transport is configured.
    """

    def send(self, message: dict[str, Any]) -> None:
        logger.debug(f"Dropping message for goal {message.get('uniqueName')} (no transport configured)")


class InMemoryMessageClient:
    """
    MessageClient that records messages in memory.

    Used by the CLI for local runs and by tests to inspect what was published.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.sent: list[dict[str, Any]] = []

    def send(self, message: dict[str, Any]) -> None:
        with self._lock:
            self.sent.append(message)
