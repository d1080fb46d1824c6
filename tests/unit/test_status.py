"""
Unit tests for the pipeline status store
"""

import pytest

from partner_etl.batch import PipelineStatusStore
from partner_etl.core.errors import InvalidTransition
from partner_etl.core.models import PipelineState, ValidationMessage, ValidationResult


@pytest.mark.unit
class TestPipelineStatusStore:
    """Tests for PipelineStatusStore"""

    @pytest.fixture
    def store(self):
        return PipelineStatusStore()

    def test_start_in_received(self, store):
        status = store.start("a.xlsx", batch_id="up.zip")

        assert status.file_key == "up.zip/a.xlsx"
        assert status.state == PipelineState.RECEIVED
        assert status.history[0].to_state == PipelineState.RECEIVED

    def test_transitions_are_recorded(self, store):
        store.start("a.xlsx")
        store.transition("a.xlsx", PipelineState.VALIDATING)
        store.transition("a.xlsx", PipelineState.STAGING)

        status = store.get_status("a.xlsx")
        assert status.state == PipelineState.STAGING
        assert [h.to_state for h in status.history] == [
            PipelineState.RECEIVED, PipelineState.VALIDATING, PipelineState.STAGING,
        ]
        assert status.history[2].from_state == PipelineState.VALIDATING

    def test_illegal_transition(self, store):
        store.start("a.xlsx")
        with pytest.raises(InvalidTransition):
            store.transition("a.xlsx", PipelineState.IMPORTING)
        assert store.get_status("a.xlsx").state == PipelineState.RECEIVED

    def test_retrying_counts_retries(self, store):
        store.start("a.xlsx", retry_count=1)
        for state in (PipelineState.VALIDATING, PipelineState.STAGING, PipelineState.RULE_PROCESSING,
                      PipelineState.IMPORTING, PipelineState.RETRYING, PipelineState.RULE_PROCESSING):
            store.transition("a.xlsx", state)

        assert store.get_status("a.xlsx").retry_count == 2

    def test_rejection_keeps_reason_and_errors(self, store):
        store.start("a.xlsx")
        store.transition("a.xlsx", PipelineState.VALIDATING)
        store.transition("a.xlsx", PipelineState.REJECTED, reason="ValidationFailed", errors=["Funds!A2: bad"])

        status = store.get_status("a.xlsx")
        assert status.is_terminal
        assert status.rejection_reason == "ValidationFailed"
        assert status.errors == ["Funds!A2: bad"]

    def test_terminal_is_final(self, store):
        store.start("a.xlsx")
        store.transition("a.xlsx", PipelineState.REJECTED, reason="UnreadableFile")
        with pytest.raises(InvalidTransition):
            store.transition("a.xlsx", PipelineState.VALIDATING)

    def test_in_flight_file_cannot_restart(self, store):
        store.start("a.xlsx")
        with pytest.raises(InvalidTransition):
            store.start("a.xlsx")

    def test_finished_standalone_file_may_run_again(self, store):
        store.start("a.xlsx")
        store.transition("a.xlsx", PipelineState.REJECTED)

        assert store.start("a.xlsx").state == PipelineState.RECEIVED

    def test_finished_batch_entry_cannot_run_again(self, store):
        store.start("a.xlsx", batch_id="up.zip")
        store.transition("up.zip/a.xlsx", PipelineState.REJECTED)

        with pytest.raises(InvalidTransition):
            store.start("a.xlsx", batch_id="up.zip")

    def test_validation_messages_query(self, store):
        result = ValidationResult(
            passed=False,
            messages=(ValidationMessage(location="Funds!B7", message="Value is required", rule_name="r"),),
        )
        store.start("a.xlsx")
        store.update("a.xlsx", validation_result=result, template_name="fund_documents")

        assert store.get_validation_messages("a.xlsx") == result
        assert store.get_validation_messages("unknown.xlsx") is None

    def test_update_rejects_state_fields(self, store):
        store.start("a.xlsx")
        with pytest.raises(ValueError):
            store.update("a.xlsx", state=PipelineState.COMPLETED)

    def test_list_batch(self, store):
        store.start("a.xlsx", batch_id="up.zip")
        store.start("b.xlsx", batch_id="up.zip")
        store.start("c.xlsx")

        assert sorted(s.file_name for s in store.list_batch("up.zip")) == ["a.xlsx", "b.xlsx"]
        assert len(store.all()) == 3

    def test_unknown_file(self, store):
        assert store.get("nope.xlsx") is None
        with pytest.raises(InvalidTransition):
            store.transition("nope.xlsx", PipelineState.VALIDATING)
