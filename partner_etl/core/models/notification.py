"""
Notification events emitted on terminal outcomes.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from .common import utcnow


class NotificationEvent(BaseModel):
    """One per file, emitted when it reaches Completed or Rejected."""

    outcome: Literal["Completed", "Rejected"]
    file_name: str
    batch_id: str | None = None
    job_id: str | None = None
    template_name: str | None = None
    retry_count: int = 0
    reason: str | None = None
    errors: list[str] = Field(default_factory=list)
    rows_imported: int = 0
    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    def template(self) -> str:
        return "file_completed" if self.outcome == "Completed" else "file_rejected"


class BatchNotificationEvent(BaseModel):
    """One per batch, emitted when its completion flag flips."""

    batch_id: str
    outcome: Literal["Completed", "PartiallyCompleted", "Rejected"]
    reported_as_success: bool
    completed: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)
    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    def template(self) -> str:
        return "batch_completed" if self.reported_as_success else "batch_failed"
