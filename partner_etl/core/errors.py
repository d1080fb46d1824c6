"""
Exception hierarchy for the partner-file pipeline.

Every error a stage can raise derives from PipelineError and falls in one of
three classes, which is all the coordinator looks at when deciding what to
do next:

- PermanentInputError: the file itself is wrong; never retried.
- TransientDependencyError: a collaborator was unavailable or a concurrent
  job won a race; retried up to the configured bound.
- ConsistencyError: pipeline bookkeeping refused the operation; fatal for
  this run only.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(
        self,
        message: str,
        *,
        file_name: str | None = None,
        job_id: str | None = None,
        stage: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.file_name = file_name
        self.job_id = job_id
        self.stage = stage
        self.details = details or {}
        super().__init__(message)

    @property
    def error_type(self) -> str:
        return type(self).__name__


# =======================
# PERMANENT
# =======================

class PermanentInputError(PipelineError):
    """Input-shape problem; routes straight to Rejected."""


class TemplateNotFound(PermanentInputError):
    """No template matches the declared template name."""

    def __init__(self, template_name: str, **kwargs) -> None:
        self.template_name = template_name
        super().__init__(f"No template named '{template_name}'", **kwargs)


class UnreadableFile(PermanentInputError):
    """File content cannot be opened as a workbook."""


class ValidationFailed(PermanentInputError):
    """At least one error-severity rule failed."""

    def __init__(self, message: str, *, messages: list[str] | None = None, **kwargs) -> None:
        self.messages = messages or []
        super().__init__(message, **kwargs)


class InvalidQueueMessage(PermanentInputError):
    """A queue token could not be decoded."""


class TemplateDefinitionError(PermanentInputError):
    """A template definition on disk is malformed."""


class ImportRejected(PermanentInputError):
    """The import executor refused the job's rows."""


# =======================
# TRANSIENT
# =======================

class TransientDependencyError(PipelineError):
    """Collaborator unavailable or optimistic conflict; retry-eligible."""


class CatalogWriteConflict(TransientDependencyError):
    """A catalog row changed since the job observed it."""

    def __init__(self, message: str, *, keys: list[tuple[str, str]] | None = None, **kwargs) -> None:
        self.keys = keys or []
        super().__init__(message, **kwargs)


class StorageUnavailable(TransientDependencyError):
    """Blob store or database could not be reached."""


class QueueUnavailable(TransientDependencyError):
    """Message queue could not be reached."""


# =======================
# CONSISTENCY
# =======================

class ConsistencyError(PipelineError):
    """Bookkeeping refused an operation; fatal for this run only."""


class StagingConflict(ConsistencyError):
    """A job id already has staged rows that were not imported yet."""


class StagedSetMissing(ConsistencyError):
    """No staged rows exist for a job id (never staged, or already imported)."""


class BatchStateError(ConsistencyError):
    """Batch mutation refused (unknown entry, already complete, ...)."""


class BatchAborted(ConsistencyError):
    """The owning batch was aborted; no further stage transitions."""


class InvalidTransition(ConsistencyError):
    """Pipeline state machine refused a transition."""


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientDependencyError)


def is_permanent(exc: BaseException) -> bool:
    return isinstance(exc, PermanentInputError)
