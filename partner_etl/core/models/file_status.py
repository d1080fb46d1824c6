"""
FileStatus model: what the status query returns for a file.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .common import utcnow
from .pipeline_state import PipelineState
from .validation_result import ValidationResult


class StateTransition(BaseModel):
    from_state: PipelineState | None
    to_state: PipelineState
    at: datetime = Field(default_factory=utcnow)
    reason: str | None = None


class FileStatus(BaseModel):
    """
    Current pipeline state of one file.

    Attributes:
        file_key: "<batch_id>/<file_name>" or the bare file name
        state: Current PipelineState
        retry_count: Retries spent so far
        errors: Accumulated error messages (validation messages included)
        validation_result: Last validation result, if validation ran
        history: Every transition taken, oldest first
    """

    file_key: str
    file_name: str
    batch_id: str | None = None
    job_id: str | None = None
    template_name: str | None = None
    state: PipelineState = PipelineState.RECEIVED
    retry_count: int = 0
    errors: list[str] = Field(default_factory=list)
    rejection_reason: str | None = None
    validation_result: ValidationResult | None = None
    history: list[StateTransition] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal
