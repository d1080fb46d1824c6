"""
Unit tests for pipeline data models
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from partner_etl.core.errors import InvalidQueueMessage
from partner_etl.core.models import (
    AgeStatus,
    Batch,
    DocumentCatalogEntry,
    EntryStatus,
    FileEnvelope,
    MissingTranslation,
    PipelineState,
    QueueMessage,
    StagedRecordSet,
    Template,
    ValidationMessage,
    ValidationResult,
    can_transition,
    dedupe_missing,
    write_if_changed,
)


@pytest.mark.unit
class TestFileEnvelope:
    """Tests for FileEnvelope and its queue token"""

    def test_file_key_is_batch_qualified(self):
        assert FileEnvelope(file_name="a.xlsx").file_key == "a.xlsx"
        assert FileEnvelope(file_name="a.xlsx", batch_id="up.zip").file_key == "up.zip/a.xlsx"

    def test_queue_token_carries_identifying_fields(self):
        envelope = FileEnvelope(
            file_name="fund_documents_1.xlsx",
            batch_id="funds_upload_20250901.zip",
            job_id="abc123",
            content=b"ignored",
            retry_count=2,
            notification_override="owner@example.com",
        )
        token = envelope.to_message("blob timeout").encode()

        message = QueueMessage.decode(token)

        assert message.file_name == "fund_documents_1.xlsx"
        assert message.batch_id == "funds_upload_20250901.zip"
        assert message.job_id == "abc123"
        assert message.retry_count == 2
        assert message.error_message == "blob timeout"
        assert message.notification_override == "owner@example.com"

    def test_token_is_opaque_single_string(self):
        token = QueueMessage(file_name="a b.xlsx").encode()
        assert isinstance(token, str)
        assert " " not in token

    @pytest.mark.parametrize("token", ["not base64 !!", "bm90IGpzb24=", ""])
    def test_malformed_token_is_invalid_queue_message(self, token):
        with pytest.raises(InvalidQueueMessage):
            QueueMessage.decode(token)

    def test_with_retry_increments_count(self):
        message = QueueMessage(file_name="a.xlsx", retry_count=1)
        retried = message.with_retry("unavailable")
        assert retried.retry_count == 2
        assert retried.error_message == "unavailable"
        assert message.retry_count == 1

    def test_to_envelope_restores_metadata(self):
        message = QueueMessage(file_name="a.xlsx", batch_id="b.zip", retry_count=1, blob_path="processing/b.zip/a.xlsx")
        envelope = message.to_envelope(b"data")
        assert envelope.content == b"data"
        assert envelope.batch_id == "b.zip"
        assert envelope.retry_count == 1


@pytest.mark.unit
class TestBatch:
    """Tests for Batch model"""

    def test_entries_start_pending(self):
        batch = Batch(batch_id="up.zip", entries=["a.xlsx", "b.xlsx"])
        assert batch.entry_status == {"a.xlsx": EntryStatus.PENDING, "b.xlsx": EntryStatus.PENDING}
        assert not batch.complete

    def test_duplicate_entries_rejected(self):
        with pytest.raises(ValidationError):
            Batch(batch_id="up.zip", entries=["a.xlsx", "a.xlsx"])

    def test_empty_batch_rejected(self):
        with pytest.raises(ValidationError):
            Batch(batch_id="up.zip", entries=[])

    def test_entries_in_preserves_order(self):
        batch = Batch(batch_id="up.zip", entries=["c.xlsx", "a.xlsx", "b.xlsx"])
        batch.entry_status["b.xlsx"] = EntryStatus.COMPLETED
        batch.entry_status["c.xlsx"] = EntryStatus.COMPLETED
        assert batch.entries_in(EntryStatus.COMPLETED) == ["c.xlsx", "b.xlsx"]


@pytest.mark.unit
class TestValidationResult:
    """Tests for ValidationResult consistency checks"""

    def test_passed_result_cannot_carry_messages(self):
        message = ValidationMessage(location="Funds!A2", message="bad", rule_name="r")
        with pytest.raises(ValidationError):
            ValidationResult(passed=True, messages=(message,))

    def test_failed_result_needs_a_message(self):
        with pytest.raises(ValidationError):
            ValidationResult(passed=False)

    def test_result_is_immutable(self):
        result = ValidationResult(passed=True)
        with pytest.raises(ValidationError):
            result.passed = False

    def test_error_list_formats_location(self):
        message = ValidationMessage(location="Funds!B7", message="Value is required", rule_name="r")
        result = ValidationResult(passed=False, messages=(message,))
        assert result.error_list() == ["Funds!B7: Value is required"]


@pytest.mark.unit
class TestPipelineState:
    """Tests for the state machine table"""

    def test_happy_path_is_allowed(self):
        path = [
            PipelineState.RECEIVED,
            PipelineState.VALIDATING,
            PipelineState.STAGING,
            PipelineState.RULE_PROCESSING,
            PipelineState.IMPORTING,
            PipelineState.COMPLETED,
        ]
        for current, target in zip(path, path[1:]):
            assert can_transition(current, target)

    @pytest.mark.parametrize("terminal", [PipelineState.COMPLETED, PipelineState.REJECTED])
    def test_terminal_states_have_no_exits(self, terminal):
        assert terminal.is_terminal
        assert not any(can_transition(terminal, target) for target in PipelineState)

    def test_stages_cannot_be_skipped(self):
        assert not can_transition(PipelineState.VALIDATING, PipelineState.IMPORTING)
        assert not can_transition(PipelineState.RECEIVED, PipelineState.COMPLETED)

    def test_retrying_resumes_at_a_stage(self):
        assert can_transition(PipelineState.RETRYING, PipelineState.RULE_PROCESSING)
        assert can_transition(PipelineState.RETRYING, PipelineState.REJECTED)
        assert not can_transition(PipelineState.RETRYING, PipelineState.COMPLETED)


@pytest.mark.unit
class TestStagedRecordSet:
    """Tests for staged rows and the diff-before-write helper"""

    def test_unchanged_value_keeps_timestamp(self):
        first = datetime(2025, 1, 1, tzinfo=timezone.utc)
        fields = {}
        assert write_if_changed(fields, "age_status", "NewFund", first)

        later = first + timedelta(days=1)
        assert not write_if_changed(fields, "age_status", "NewFund", later)
        assert fields["age_status"].updated_at == first

    def test_changed_value_touches_timestamp(self):
        first = datetime(2025, 1, 1, tzinfo=timezone.utc)
        fields = {}
        write_if_changed(fields, "age_status", "NewFund", first)
        later = first + timedelta(days=1)

        assert write_if_changed(fields, "age_status", "TwelveConsecutiveMonths", later)
        assert fields["age_status"].updated_at == later

    def test_from_values_and_pivot(self):
        record_set = StagedRecordSet.from_values(
            "job1",
            [{"document_number": "DOC-000001", "fund_code": "F1"}],
            client_id="ACME",
            template_name="fund_documents",
            file_name="a.xlsx",
        )
        assert len(record_set) == 1
        assert record_set.values(0) == {"document_number": "DOC-000001", "fund_code": "F1"}
        assert record_set.translated_field("fund_name") == "fund_name_fr"


@pytest.mark.unit
class TestCatalogEntry:
    """Tests for DocumentCatalogEntry"""

    def test_age_status_must_be_enumerated(self):
        with pytest.raises(ValidationError):
            DocumentCatalogEntry(client_id="ACME", document_number="D1", fund_code="F1", age_status="Old")

    def test_assignment_is_validated(self):
        entry = DocumentCatalogEntry(
            client_id="ACME", document_number="D1", fund_code="F1", age_status=AgeStatus.NEW_FUND
        )
        with pytest.raises(ValidationError):
            entry.age_status = "Ancient"

    def test_status_strings_coerce(self):
        entry = DocumentCatalogEntry(
            client_id="ACME", document_number="D1", fund_code="F1", age_status="NewSeries"
        )
        assert entry.age_status is AgeStatus.NEW_SERIES
        assert entry.key == ("ACME", "D1")


@pytest.mark.unit
class TestTemplateModel:
    """Tests for Template consistency checks"""

    def test_duplicate_field_mapping_rejected(self):
        with pytest.raises(ValidationError):
            Template(
                name="t",
                client_id="ACME",
                sheets=[{"name": "S", "columns": [
                    {"header": "A", "field": "x"},
                    {"header": "B", "field": "x"},
                ]}],
            )

    def test_translated_field_must_exist(self):
        with pytest.raises(ValidationError):
            Template(
                name="t",
                client_id="ACME",
                sheets=[{"name": "S", "columns": [{"header": "A", "field": "x"}]}],
                translated_fields=["y"],
            )


@pytest.mark.unit
def test_missing_translations_dedupe_by_client_and_field():
    records = [
        MissingTranslation(client_id="ACME", field_name="fund_name", source_text="Alpha"),
        MissingTranslation(client_id="ACME", field_name="fund_name", source_text="Beta"),
        MissingTranslation(client_id="ACME", field_name="series_name", source_text="Alpha"),
        MissingTranslation(client_id="OTHER", field_name="fund_name", source_text="Alpha"),
    ]

    unique = dedupe_missing(records)

    assert [(r.client_id, r.field_name, r.source_text) for r in unique] == [
        ("ACME", "fund_name", "Alpha"),
        ("ACME", "series_name", "Alpha"),
        ("OTHER", "fund_name", "Alpha"),
    ]
