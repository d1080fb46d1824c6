"""
Explicit per-file state machine for the pipeline.
"""

from enum import StrEnum


class PipelineState(StrEnum):
    """Where a file is in the pipeline."""

    RECEIVED = "Received"
    VALIDATING = "Validating"
    STAGING = "Staging"
    RULE_PROCESSING = "RuleProcessing"
    IMPORTING = "Importing"
    RETRYING = "Retrying"
    COMPLETED = "Completed"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({PipelineState.COMPLETED, PipelineState.REJECTED})

# Stages a Retrying file may resume at
RESUMABLE_STATES = frozenset({
    PipelineState.VALIDATING,
    PipelineState.STAGING,
    PipelineState.RULE_PROCESSING,
    PipelineState.IMPORTING,
})

ALLOWED_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.RECEIVED: frozenset({PipelineState.VALIDATING, PipelineState.REJECTED}),
    PipelineState.VALIDATING: frozenset({
        PipelineState.STAGING, PipelineState.RETRYING, PipelineState.REJECTED,
    }),
    PipelineState.STAGING: frozenset({
        PipelineState.RULE_PROCESSING, PipelineState.RETRYING, PipelineState.REJECTED,
    }),
    PipelineState.RULE_PROCESSING: frozenset({
        PipelineState.IMPORTING, PipelineState.RETRYING, PipelineState.REJECTED,
    }),
    PipelineState.IMPORTING: frozenset({
        PipelineState.COMPLETED, PipelineState.RETRYING, PipelineState.REJECTED,
    }),
    PipelineState.RETRYING: RESUMABLE_STATES | {PipelineState.REJECTED},
    PipelineState.COMPLETED: frozenset(),
    PipelineState.REJECTED: frozenset(),
}


def can_transition(current: PipelineState, target: PipelineState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]
