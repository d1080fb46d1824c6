"""
Batch model: a group of files uploaded together under one identifier.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .common import utcnow


class EntryStatus(StrEnum):
    PENDING = "Pending"
    EXTRACTED = "Extracted"
    COMPLETED = "Completed"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (EntryStatus.COMPLETED, EntryStatus.REJECTED)


class Batch(BaseModel):
    """
    A registered upload package and the status of each of its entries.

    Attributes:
        batch_id: Batch identifier (the package file name for zip uploads)
        entries: Entry file names in package order
        entry_status: Extraction/processing status per entry
        terminal_count: Entries that reached Completed or Rejected
        complete: True once every entry is terminal; never reset
        aborted: No further stage transitions for non-terminal entries
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "batch_id": "funds_upload_20250901.zip",
                "entries": ["fund_documents_1.xlsx", "fund_documents_2.xlsx"],
                "entry_status": {
                    "fund_documents_1.xlsx": "Completed",
                    "fund_documents_2.xlsx": "Extracted",
                },
                "terminal_count": 1,
                "complete": False,
                "aborted": False,
            }
        }
    )

    batch_id: str = Field(..., min_length=1)
    entries: list[str] = Field(..., min_length=1)
    entry_status: dict[str, EntryStatus] = Field(default_factory=dict)
    terminal_count: int = 0
    complete: bool = False
    aborted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def _fill_entry_status(self) -> "Batch":
        if len(set(self.entries)) != len(self.entries):
            raise ValueError("batch entries must be unique")
        for entry in self.entries:
            self.entry_status.setdefault(entry, EntryStatus.PENDING)
        return self

    def entries_in(self, status: EntryStatus) -> list[str]:
        return [e for e in self.entries if self.entry_status[e] == status]
