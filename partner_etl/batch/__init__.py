"""
Pipeline orchestration: batch registry, per-file status, coordinator and workers.
"""

from .pipeline import DEFAULT_MAX_RETRIES, PipelineCoordinator
from .registry import BatchRegistry, read_package
from .status import PipelineStatusStore
from .worker import Ingestor, QueueWorker

__all__ = [
    "DEFAULT_MAX_RETRIES",
    "BatchRegistry",
    "Ingestor",
    "PipelineCoordinator",
    "PipelineStatusStore",
    "QueueWorker",
    "read_package",
]
