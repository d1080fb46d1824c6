"""
Batch registry: which files belong to an upload package and how far each got.

Completion is decided from a terminal count kept under a per-batch lock, so
the complete flag flips exactly once, after the last entry turns terminal,
whatever order the entries finish in.
"""

import io
import threading
import zipfile
from pathlib import PurePosixPath

from partner_etl.core.errors import BatchStateError, UnreadableFile
from partner_etl.core.models.batch import Batch, EntryStatus
from partner_etl.core.models.common import utcnow
from partner_etl.core.models.pipeline_state import PipelineState
from partner_etl.observability.logger import get_logger
from partner_etl.utils.locks import KeyedLocks
from partner_etl.utils.validation import InputValidationError, validate_file_name, validate_identifier

logger = get_logger(__name__)

_SKIPPED_PREFIXES = ("__MACOSX/",)


def read_package(package_name: str, content: bytes) -> dict[str, bytes]:
    """
    Entries of a zip package in archive order, keyed by bare file name.

    Directories, macOS resource forks and hidden files are skipped.

    Raises:
        UnreadableFile: If the package is not a zip archive, has no files,
            or two entries share a file name
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile as e:
        raise UnreadableFile(f"Package '{package_name}' is not a zip archive: {e}", file_name=package_name) from e

    entries: dict[str, bytes] = {}
    with archive:
        for info in archive.infolist():
            if info.is_dir() or info.filename.startswith(_SKIPPED_PREFIXES):
                continue
            name = PurePosixPath(info.filename).name
            if name.startswith("."):
                continue
            try:
                name = validate_file_name(name)
            except InputValidationError as e:
                raise UnreadableFile(f"Package '{package_name}' has an invalid entry: {e}", file_name=package_name) from e
            if name in entries:
                raise UnreadableFile(
                    f"Package '{package_name}' contains '{name}' more than once", file_name=package_name
                )
            entries[name] = archive.read(info)

    if not entries:
        raise UnreadableFile(f"Package '{package_name}' contains no files", file_name=package_name)
    return entries


class BatchRegistry:
    """Thread-safe registry of batches."""

    def __init__(self) -> None:
        self._batches: dict[str, Batch] = {}
        self._guard = threading.Lock()
        self._locks = KeyedLocks()

    def _require(self, batch_id: str) -> Batch:
        with self._guard:
            batch = self._batches.get(batch_id)
        if batch is None:
            raise BatchStateError(f"Unknown batch '{batch_id}'")
        return batch

    def register(self, batch_id: str, entries: list[str]) -> Batch:
        """
        Create a batch.

        Raises:
            BatchStateError: If the batch id is already registered or an entry
                name repeats
        """
        batch_id = validate_identifier(batch_id, "batch_id")
        names = [validate_file_name(e) for e in entries]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise BatchStateError(f"Batch '{batch_id}' lists entries more than once: {duplicates}")
        batch = Batch(batch_id=batch_id, entries=names)
        with self._guard:
            if batch_id in self._batches:
                raise BatchStateError(f"Batch '{batch_id}' is already registered")
            self._batches[batch_id] = batch
        logger.info("Batch registered", extra={"batch_id": batch_id, "entries": len(batch.entries)})
        return batch.model_copy(deep=True)

    def register_package(self, package_name: str, content: bytes) -> tuple[Batch, dict[str, bytes]]:
        """
        Register a zip package as a batch named after the package file.

        Returns:
            The batch and the entry contents by file name
        """
        entries = read_package(package_name, content)
        return self.register(package_name, list(entries)), entries

    def mark_extracted(self, batch_id: str, file_name: str) -> None:
        with self._locks.hold(batch_id):
            batch = self._require(batch_id)
            self._check_mutable(batch, file_name)
            if batch.entry_status[file_name] != EntryStatus.PENDING:
                raise BatchStateError(f"Entry '{file_name}' of batch '{batch_id}' was already extracted")
            batch.entry_status[file_name] = EntryStatus.EXTRACTED

    def mark_terminal(self, batch_id: str, file_name: str, state: PipelineState | EntryStatus) -> bool:
        """
        Record an entry's terminal outcome.

        Returns:
            True exactly once: for the call that makes every entry terminal

        Raises:
            BatchStateError: Unknown entry, entry already terminal, batch complete,
                or a non-terminal state
        """
        try:
            status = EntryStatus(str(state))
        except ValueError as e:
            raise BatchStateError(f"'{state}' is not a terminal state") from e
        if not status.is_terminal:
            raise BatchStateError(f"'{state}' is not a terminal state")

        with self._locks.hold(batch_id):
            batch = self._require(batch_id)
            self._check_mutable(batch, file_name)
            if batch.entry_status[file_name].is_terminal:
                raise BatchStateError(f"Entry '{file_name}' of batch '{batch_id}' is already {batch.entry_status[file_name]}")

            batch.entry_status[file_name] = status
            batch.terminal_count += 1
            if batch.terminal_count < len(batch.entries):
                return False

            batch.complete = True
            batch.completed_at = utcnow()
            logger.info(
                "Batch complete",
                extra={
                    "batch_id": batch_id,
                    "completed": len(batch.entries_in(EntryStatus.COMPLETED)),
                    "rejected": len(batch.entries_in(EntryStatus.REJECTED)),
                },
            )
            return True

    def abort(self, batch_id: str) -> list[str]:
        """
        Stop further stage transitions for the batch's non-terminal entries.

        Returns:
            Entries that were not terminal when the batch was aborted
        """
        with self._locks.hold(batch_id):
            batch = self._require(batch_id)
            if batch.complete:
                raise BatchStateError(f"Batch '{batch_id}' is already complete")
            batch.aborted = True
            remaining = [e for e in batch.entries if not batch.entry_status[e].is_terminal]
        logger.warning("Batch aborted", extra={"batch_id": batch_id, "remaining": remaining})
        return remaining

    def is_aborted(self, batch_id: str) -> bool:
        return self._require(batch_id).aborted

    def get(self, batch_id: str) -> Batch:
        with self._locks.hold(batch_id):
            return self._require(batch_id).model_copy(deep=True)

    def __contains__(self, batch_id: str) -> bool:
        with self._guard:
            return batch_id in self._batches

    def _check_mutable(self, batch: Batch, file_name: str) -> None:
        if batch.complete:
            raise BatchStateError(f"Batch '{batch.batch_id}' is complete and can no longer change")
        if file_name not in batch.entry_status:
            raise BatchStateError(f"'{file_name}' is not an entry of batch '{batch.batch_id}'")
