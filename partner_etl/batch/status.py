"""
Per-file pipeline status.

Each file's PipelineState changes only through transition(), which checks
the state machine and applies the change atomically under the file's lock.
The same store answers the status queries.
"""

import threading

from partner_etl.core.errors import InvalidTransition
from partner_etl.core.models.common import utcnow
from partner_etl.core.models.file_envelope import make_file_key
from partner_etl.core.models.file_status import FileStatus, StateTransition
from partner_etl.core.models.pipeline_state import PipelineState, can_transition
from partner_etl.core.models.validation_result import ValidationResult
from partner_etl.utils.locks import KeyedLocks


class PipelineStatusStore:
    """In-process status store keyed by file key."""

    def __init__(self) -> None:
        self._statuses: dict[str, FileStatus] = {}
        self._guard = threading.Lock()
        self._locks = KeyedLocks()

    def _current(self, file_key: str) -> FileStatus:
        with self._guard:
            status = self._statuses.get(file_key)
        if status is None:
            raise InvalidTransition(f"No pipeline run for '{file_key}'")
        return status

    def start(
        self,
        file_name: str,
        batch_id: str | None = None,
        retry_count: int = 0,
        job_id: str | None = None,
    ) -> FileStatus:
        """
        Begin tracking a file in Received.

        A standalone file that already finished may run again; a file still in
        flight, or a batch entry that already finished, may not.

        Raises:
            InvalidTransition: If the file cannot start a new run
        """
        file_key = make_file_key(file_name, batch_id)
        with self._locks.hold(file_key):
            with self._guard:
                existing = self._statuses.get(file_key)
            if existing is not None and (not existing.is_terminal or batch_id is not None):
                raise InvalidTransition(
                    f"'{file_key}' is already {existing.state}",
                    file_name=file_name,
                    job_id=existing.job_id,
                )
            status = FileStatus(
                file_key=file_key,
                file_name=file_name,
                batch_id=batch_id,
                job_id=job_id,
                retry_count=retry_count,
                history=[StateTransition(from_state=None, to_state=PipelineState.RECEIVED)],
            )
            with self._guard:
                self._statuses[file_key] = status
            return status.model_copy(deep=True)

    def transition(
        self,
        file_key: str,
        target: PipelineState,
        reason: str | None = None,
        errors: list[str] | None = None,
    ) -> FileStatus:
        """
        Move a file to target; entering Retrying increments its retry count.

        Raises:
            InvalidTransition: If the state machine does not allow the move
        """
        with self._locks.hold(file_key):
            status = self._current(file_key)
            if not can_transition(status.state, target):
                raise InvalidTransition(
                    f"'{file_key}' cannot move from {status.state} to {target}",
                    file_name=status.file_name,
                    job_id=status.job_id,
                )
            now = utcnow()
            status.history.append(StateTransition(from_state=status.state, to_state=target, at=now, reason=reason))
            status.state = target
            status.updated_at = now
            if target == PipelineState.RETRYING:
                status.retry_count += 1
            if errors:
                status.errors.extend(errors)
            if target == PipelineState.REJECTED:
                status.rejection_reason = reason
            return status.model_copy(deep=True)

    def get(self, file_key: str) -> FileStatus | None:
        with self._guard:
            status = self._statuses.get(file_key)
        return status.model_copy(deep=True) if status else None

    def update(self, file_key: str, **fields) -> FileStatus:
        """Set descriptive fields (job_id, template_name, validation_result)."""
        allowed = {"job_id", "template_name", "validation_result"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update {sorted(unknown)}")
        with self._locks.hold(file_key):
            status = self._current(file_key)
            for name, value in fields.items():
                setattr(status, name, value)
            status.updated_at = utcnow()
            return status.model_copy(deep=True)

    # =======================
    # QUERIES
    # =======================

    def get_status(self, file_name: str, batch_id: str | None = None) -> FileStatus | None:
        file_key = make_file_key(file_name, batch_id)
        with self._locks.hold(file_key):
            with self._guard:
                status = self._statuses.get(file_key)
            return status.model_copy(deep=True) if status else None

    def get_validation_messages(self, file_name: str, batch_id: str | None = None) -> ValidationResult | None:
        status = self.get_status(file_name, batch_id)
        return status.validation_result if status else None

    def list_batch(self, batch_id: str) -> list[FileStatus]:
        with self._guard:
            statuses = [s for s in self._statuses.values() if s.batch_id == batch_id]
        return [self.get_status(s.file_name, batch_id) for s in statuses]

    def all(self) -> list[FileStatus]:
        with self._guard:
            keys = [(s.file_name, s.batch_id) for s in self._statuses.values()]
        return [self.get_status(name, batch) for name, batch in keys]
