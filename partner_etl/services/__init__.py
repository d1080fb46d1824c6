"""
External collaborators: blob storage, processing queue, notification delivery.
"""

from .blob_store import ARCHIVE, INCOMING, PACKAGES, PROCESSING, REJECTED, InMemoryBlobStore, LocalBlobStore, blob_key
from .notifier import LoggingSender, Notifier, RecordingSender, SmtpSender
from .queue import InMemoryQueue

__all__ = [
    "ARCHIVE",
    "INCOMING",
    "PACKAGES",
    "PROCESSING",
    "REJECTED",
    "InMemoryBlobStore",
    "InMemoryQueue",
    "LocalBlobStore",
    "LoggingSender",
    "Notifier",
    "RecordingSender",
    "SmtpSender",
    "blob_key",
]
