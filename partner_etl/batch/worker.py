"""
Blob ingestion and queue draining.

Ingestor moves uploads from incoming/ into processing/ and queues one message
per file (zip packages become batches first). QueueWorker turns messages back
into envelopes, runs them through the coordinator and files the blob under
archive/ or rejected/.
"""

from pathlib import PurePosixPath

from partner_etl.core.errors import (
    BatchStateError,
    ConsistencyError,
    InvalidQueueMessage,
    PipelineError,
    QueueUnavailable,
    StorageUnavailable,
    TransientDependencyError,
    UnreadableFile,
)
from partner_etl.core.models.batch import EntryStatus
from partner_etl.core.models.file_envelope import QueueMessage
from partner_etl.core.models.file_status import FileStatus
from partner_etl.core.models.pipeline_state import PipelineState
from partner_etl.observability import metrics
from partner_etl.observability.logger import get_logger
from partner_etl.services.blob_store import (
    ARCHIVE,
    INCOMING,
    PACKAGES,
    PROCESSING,
    REJECTED,
    BlobStore,
    blob_key,
)
from partner_etl.services.queue import MessageQueue
from partner_etl.utils.validation import InputValidationError, validate_file_name

from .pipeline import PipelineCoordinator
from .registry import BatchRegistry, read_package

logger = get_logger(__name__)


class Ingestor:
    """
    Picks up new uploads.

    Args:
        blobs: Blob storage
        queue: Processing queue
        registry: Batch registry packages are registered in
    """

    def __init__(self, blobs: BlobStore, queue: MessageQueue, registry: BatchRegistry):
        self.blobs = blobs
        self.queue = queue
        self.registry = registry

    def scan(self) -> int:
        """
        Move everything in incoming/ to processing/ and queue it.

        Returns:
            Number of messages queued
        """
        queued = 0
        for key in self.blobs.list(INCOMING):
            name = PurePosixPath(key).name
            try:
                validate_file_name(name)
                if name.lower().endswith(".zip"):
                    queued += self._ingest_package(key, name)
                else:
                    queued += self._ingest_file(key, name)
            except (UnreadableFile, BatchStateError, InputValidationError) as e:
                logger.error("Upload rejected", extra={"blob": key, "error_message": str(e)})
                metrics.increment_counter(metrics.rejections_total, stage="Ingest", error_type=type(e).__name__)
                self.blobs.move(key, self._rejected_key(name))
            except TransientDependencyError as e:
                # Left in incoming/ for the next scan
                logger.warning("Upload deferred", extra={"blob": key, "error_message": e.message})
                metrics.increment_counter(metrics.retries_total, stage="Ingest", error_type=e.error_type)
        return queued

    @staticmethod
    def _rejected_key(name: str) -> str:
        if name.lower().endswith(".zip"):
            return blob_key(REJECTED, PACKAGES, name)
        return blob_key(REJECTED, name)

    def _ingest_file(self, key: str, name: str) -> int:
        target = blob_key(PROCESSING, name)
        self.blobs.move(key, target)
        self.queue.enqueue(QueueMessage(file_name=name, blob_path=target))
        logger.info("File queued", extra={"file_name": name, "blob": target})
        return 1

    def _ingest_package(self, key: str, name: str) -> int:
        """
        Queue a package's entries. An entry is marked extracted only once its
        message is out, so a package left in incoming/ by a transient failure
        resumes with the entries still pending.
        """
        content = self.blobs.open(key)
        if name in self.registry:
            batch = self.registry.get(name)
            if batch.complete or batch.aborted or not batch.entries_in(EntryStatus.PENDING):
                raise BatchStateError(f"Batch '{name}' is already registered")
            entries = read_package(name, content)
            if sorted(entries) != sorted(batch.entries):
                raise BatchStateError(f"Package '{name}' no longer matches its registered batch")
            logger.info("Resuming package", extra={"batch_id": name, "pending": batch.entries_in(EntryStatus.PENDING)})
        else:
            batch, entries = self.registry.register_package(name, content)

        pending = batch.entries_in(EntryStatus.PENDING)
        for entry in pending:
            target = blob_key(PROCESSING, batch.batch_id, entry)
            self.blobs.save(target, entries[entry])
            self.queue.enqueue(QueueMessage(file_name=entry, batch_id=batch.batch_id, blob_path=target))
            self.registry.mark_extracted(batch.batch_id, entry)
        self.blobs.move(key, blob_key(ARCHIVE, PACKAGES, name))
        logger.info("Package queued", extra={"batch_id": batch.batch_id, "entries": len(pending)})
        return len(pending)


class QueueWorker:
    """
    Drains the processing queue.

    Args:
        queue: Processing queue
        blobs: Blob storage holding processing/ files
        coordinator: Pipeline the files run through
        max_retries: Re-enqueues allowed when a blob cannot be opened
            (defaults to the coordinator's bound)
    """

    def __init__(
        self,
        queue: MessageQueue,
        blobs: BlobStore,
        coordinator: PipelineCoordinator,
        max_retries: int | None = None,
    ):
        self.queue = queue
        self.blobs = blobs
        self.coordinator = coordinator
        self.max_retries = coordinator.max_retries if max_retries is None else max_retries

    def drain(self, max_messages: int | None = None) -> list[FileStatus]:
        """
        Process queued messages until the queue is empty.

        Returns:
            Terminal statuses of the files processed
        """
        results = []
        handled = 0
        while max_messages is None or handled < max_messages:
            try:
                token = self.queue.dequeue()
            except QueueUnavailable as e:
                # Undelivered messages stay queued for the next drain
                logger.warning("Queue unavailable, stopping drain", extra={"error_message": e.message})
                break
            if token is None:
                break
            handled += 1
            status = self.handle(token)
            if status is not None:
                results.append(status)
        return results

    def handle(self, token: str) -> FileStatus | None:
        """Process one token; None when it was dropped or re-enqueued."""
        try:
            message = QueueMessage.decode(token)
        except InvalidQueueMessage as e:
            logger.error("Dropping undecodable message", extra={"error_message": e.message})
            metrics.increment_counter(metrics.rejections_total, stage="Queue", error_type=e.error_type)
            return None

        blob_path = message.blob_path or blob_key(PROCESSING, message.batch_id or "", message.file_name)
        try:
            content = self.blobs.open(blob_path)
        except StorageUnavailable as e:
            if message.retry_count < self.max_retries:
                logger.warning(
                    "Blob unavailable, re-queued",
                    extra={"file_name": message.file_name, "retry_count": message.retry_count + 1},
                )
                metrics.increment_counter(metrics.retries_total, stage="Received", error_type=e.error_type)
                self.queue.enqueue(message.with_retry(e.message))
                return None
            e.file_name = message.file_name
            try:
                return self.coordinator.reject_unopened(message, e)
            except ConsistencyError as stale:
                return self._drop_stale(message, stale)

        try:
            status = self.coordinator.process(message.to_envelope(content))
        except ConsistencyError as e:
            return self._drop_stale(message, e)
        self._file_blob(blob_path, message, status)
        return status

    def _drop_stale(self, message: QueueMessage, e: ConsistencyError) -> None:
        """Redelivered or out-of-date message: this run stops, the drain goes on."""
        logger.warning(
            "Dropping stale message",
            extra={
                "file_name": message.file_name,
                "batch_id": message.batch_id,
                "error_type": e.error_type,
                "error_message": e.message,
            },
        )
        metrics.increment_counter(metrics.rejections_total, stage="Queue", error_type=e.error_type)
        return None

    def _file_blob(self, blob_path: str, message: QueueMessage, status: FileStatus) -> None:
        folder = ARCHIVE if status.state == PipelineState.COMPLETED else REJECTED
        target = blob_key(folder, message.batch_id or "", message.file_name)
        try:
            self.blobs.move(blob_path, target)
        except PipelineError as e:
            # The outcome stands; the blob stays in processing/ for cleanup
            logger.warning(
                "Could not file blob",
                extra={"blob": blob_path, "target": target, "error_message": e.message},
            )
