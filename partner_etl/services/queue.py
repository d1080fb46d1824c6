"""
Processing queue carrying encoded QueueMessage tokens.
"""

import threading
from collections import deque
from typing import Protocol

from partner_etl.core.models.file_envelope import QueueMessage


class MessageQueue(Protocol):
    def enqueue(self, message: QueueMessage | str) -> None: ...

    def dequeue(self) -> str | None:
        """Next token, or None when the queue is empty."""

    def length(self) -> int: ...


class InMemoryQueue:
    """FIFO of opaque tokens."""

    def __init__(self) -> None:
        self._tokens: deque[str] = deque()
        self._lock = threading.Lock()

    def enqueue(self, message: QueueMessage | str) -> None:
        token = message.encode() if isinstance(message, QueueMessage) else message
        with self._lock:
            self._tokens.append(token)

    def dequeue(self) -> str | None:
        with self._lock:
            return self._tokens.popleft() if self._tokens else None

    def length(self) -> int:
        with self._lock:
            return len(self._tokens)
