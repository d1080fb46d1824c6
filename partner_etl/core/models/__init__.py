"""
Core data models for the partner-file pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .batch import Batch, EntryStatus
from .catalog_entry import AgeStatus, DocumentCatalogEntry
from .file_envelope import FileEnvelope, QueueMessage, make_file_key
from .file_status import FileStatus, StateTransition
from .missing_translation import MissingTranslation, dedupe_missing
from .notification import BatchNotificationEvent, NotificationEvent
from .pipeline_state import PipelineState, can_transition
from .staged_record import StagedField, StagedRecordSet, catalog_key, write_if_changed
from .template import ColumnSpec, RuleSpec, SheetSpec, Template
from .validation_result import ValidationMessage, ValidationResult

__all__ = [
    "AgeStatus",
    "Batch",
    "BatchNotificationEvent",
    "ColumnSpec",
    "DocumentCatalogEntry",
    "EntryStatus",
    "FileEnvelope",
    "FileStatus",
    "MissingTranslation",
    "NotificationEvent",
    "PipelineState",
    "QueueMessage",
    "RuleSpec",
    "SheetSpec",
    "StagedField",
    "StagedRecordSet",
    "StateTransition",
    "Template",
    "ValidationMessage",
    "ValidationResult",
    "can_transition",
    "catalog_key",
    "dedupe_missing",
    "make_file_key",
    "write_if_changed",
]
