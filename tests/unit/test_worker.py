"""
Unit tests for blob ingestion and the queue worker
"""

from datetime import date

import pytest

from partner_etl.batch import Ingestor, QueueWorker
from partner_etl.core.errors import QueueUnavailable, StorageUnavailable
from partner_etl.core.models import EntryStatus, PipelineState, QueueMessage
from partner_etl.observability import metrics
from partner_etl.services import InMemoryBlobStore, InMemoryQueue, LocalBlobStore
from partner_etl.utils.validation import InputValidationError

ROWS = [("DOC-000001", "F100", "Alpha Fund", date(2024, 9, 1), None)]


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


@pytest.fixture
def queue():
    return InMemoryQueue()


@pytest.fixture
def ingestor(blobs, queue, coordinator):
    return Ingestor(blobs, queue, coordinator.registry)


@pytest.fixture
def worker(queue, blobs, coordinator):
    return QueueWorker(queue, blobs, coordinator)


@pytest.mark.unit
class TestIngestor:
    """Tests for Ingestor.scan"""

    def test_single_file_is_moved_and_queued(self, ingestor, blobs, queue, fund_workbook):
        blobs.save("incoming/fund_documents.xlsx", fund_workbook(ROWS))

        assert ingestor.scan() == 1

        assert "processing/fund_documents.xlsx" in blobs
        assert "incoming/fund_documents.xlsx" not in blobs
        message = QueueMessage.decode(queue.dequeue())
        assert message.file_name == "fund_documents.xlsx"
        assert message.batch_id is None
        assert message.blob_path == "processing/fund_documents.xlsx"

    def test_package_becomes_a_batch(self, ingestor, blobs, queue, coordinator, fund_workbook, zip_factory):
        blobs.save("incoming/up.zip", zip_factory({"a.xlsx": fund_workbook(ROWS), "b.xlsx": fund_workbook(ROWS)}))

        assert ingestor.scan() == 2

        assert "archive/packages/up.zip" in blobs
        assert "processing/up.zip/a.xlsx" in blobs
        batch = coordinator.registry.get("up.zip")
        assert set(batch.entry_status.values()) == {EntryStatus.EXTRACTED}
        messages = [QueueMessage.decode(queue.dequeue()) for _ in range(2)]
        assert [(m.file_name, m.batch_id) for m in messages] == [("a.xlsx", "up.zip"), ("b.xlsx", "up.zip")]

    def test_broken_package_is_rejected(self, ingestor, blobs, queue):
        blobs.save("incoming/broken.zip", b"not a zip")

        assert ingestor.scan() == 0

        assert "rejected/packages/broken.zip" in blobs
        assert queue.length() == 0

    def test_reuploaded_package_name_is_rejected(self, ingestor, blobs, fund_workbook, zip_factory):
        package = zip_factory({"a.xlsx": fund_workbook(ROWS)})
        blobs.save("incoming/up.zip", package)
        ingestor.scan()
        blobs.save("incoming/up.zip", package)

        assert ingestor.scan() == 0
        assert "rejected/packages/up.zip" in blobs

    def test_transient_save_failure_resumes_the_package(self, queue, coordinator, fund_workbook, zip_factory):
        class FlakyBlobs(InMemoryBlobStore):
            failures = 1

            def save(self, name, content):
                if name == "processing/pkg.zip/fund_documents_2.xlsx" and self.failures:
                    self.failures -= 1
                    raise StorageUnavailable("blob down")
                super().save(name, content)

        labels = {"stage": "Ingest", "error_type": "StorageUnavailable"}
        before = metrics.get_sample_value("partner_etl_retries_total", labels) or 0.0
        blobs = FlakyBlobs()
        blobs.save("incoming/pkg.zip", zip_factory({
            "fund_documents_1.xlsx": fund_workbook(ROWS),
            "fund_documents_2.xlsx": fund_workbook([("DOC-000002", "F200", "Beta Fund", date(2024, 9, 1), None)]),
        }))
        blobs.save("incoming/zfund_documents.xlsx", fund_workbook(ROWS))
        ingestor = Ingestor(blobs, queue, coordinator.registry)

        assert ingestor.scan() == 1

        assert "incoming/pkg.zip" in blobs
        assert "processing/zfund_documents.xlsx" in blobs
        assert queue.length() == 2
        batch = coordinator.registry.get("pkg.zip")
        assert batch.entry_status == {
            "fund_documents_1.xlsx": EntryStatus.EXTRACTED,
            "fund_documents_2.xlsx": EntryStatus.PENDING,
        }
        assert metrics.get_sample_value("partner_etl_retries_total", labels) == before + 1

        assert ingestor.scan() == 1

        assert "archive/packages/pkg.zip" in blobs
        assert queue.length() == 3
        QueueWorker(queue, blobs, coordinator).drain()
        batch = coordinator.registry.get("pkg.zip")
        assert batch.complete
        assert batch.entries_in(EntryStatus.PENDING) == []


@pytest.mark.unit
class TestQueueWorker:
    """Tests for QueueWorker"""

    def test_completed_file_is_archived(self, ingestor, worker, blobs, fund_workbook):
        blobs.save("incoming/fund_documents.xlsx", fund_workbook(ROWS))
        ingestor.scan()

        statuses = worker.drain()

        assert [s.state for s in statuses] == [PipelineState.COMPLETED]
        assert "archive/fund_documents.xlsx" in blobs
        assert "processing/fund_documents.xlsx" not in blobs

    def test_rejected_entry_is_filed_under_its_batch(self, ingestor, worker, blobs, fund_workbook, zip_factory):
        blobs.save("incoming/up.zip", zip_factory({"unknown_report.xlsx": fund_workbook(ROWS)}))
        ingestor.scan()

        statuses = worker.drain()

        assert statuses[0].rejection_reason == "TemplateNotFound"
        assert "rejected/up.zip/unknown_report.xlsx" in blobs

    def test_undecodable_token_is_dropped(self, worker, queue, sender):
        queue.enqueue("%%%not-a-token%%%")

        assert worker.drain() == []
        assert queue.length() == 0
        assert sender.sent == []

    def test_redelivered_token_does_not_stop_the_drain(self, ingestor, worker, queue, blobs, fund_workbook, zip_factory):
        entry = fund_workbook(ROWS)
        blobs.save("incoming/pkg.zip", zip_factory({"fund_documents_1.xlsx": entry}))
        ingestor.scan()
        assert [s.state for s in worker.drain()] == [PipelineState.COMPLETED]

        labels = {"stage": "Queue", "error_type": "InvalidTransition"}
        before = metrics.get_sample_value("partner_etl_rejections_total", labels) or 0.0
        blobs.save("processing/pkg.zip/fund_documents_1.xlsx", entry)
        queue.enqueue(QueueMessage(
            file_name="fund_documents_1.xlsx",
            batch_id="pkg.zip",
            blob_path="processing/pkg.zip/fund_documents_1.xlsx",
        ))
        blobs.save("processing/fund_documents.xlsx", fund_workbook([("DOC-000002", "F200", "Beta Fund", date(2024, 9, 1), None)]))
        queue.enqueue(QueueMessage(file_name="fund_documents.xlsx", blob_path="processing/fund_documents.xlsx"))

        statuses = worker.drain()

        assert [(s.file_name, s.state) for s in statuses] == [("fund_documents.xlsx", PipelineState.COMPLETED)]
        assert queue.length() == 0
        assert metrics.get_sample_value("partner_etl_rejections_total", labels) == before + 1

    def test_missing_blob_is_requeued_then_rejected(self, worker, queue, coordinator, sender):
        queue.enqueue(QueueMessage(file_name="fund_documents.xlsx", blob_path="processing/fund_documents.xlsx"))

        statuses = worker.drain()

        assert len(statuses) == 1
        status = statuses[0]
        assert status.state == PipelineState.REJECTED
        assert status.rejection_reason == "StorageUnavailable"
        assert status.retry_count == coordinator.max_retries
        assert len(sender.sent) == 1

    def test_blob_that_appears_before_retries_run_out(self, worker, queue, blobs, fund_workbook):
        queue.enqueue(QueueMessage(file_name="fund_documents.xlsx", blob_path="processing/fund_documents.xlsx"))
        assert worker.drain(max_messages=1) == []

        blobs.save("processing/fund_documents.xlsx", fund_workbook(ROWS))
        statuses = worker.drain()

        assert statuses[0].state == PipelineState.COMPLETED
        assert statuses[0].retry_count == 1

    def test_blob_filing_failure_keeps_the_outcome(self, queue, coordinator, fund_workbook):
        class NoMoveBlobs(InMemoryBlobStore):
            def move(self, src, dst):
                raise StorageUnavailable("read-only")

        blobs = NoMoveBlobs()
        blobs.save("processing/fund_documents.xlsx", fund_workbook(ROWS))
        queue.enqueue(QueueMessage(file_name="fund_documents.xlsx", blob_path="processing/fund_documents.xlsx"))

        statuses = QueueWorker(queue, blobs, coordinator).drain()

        assert statuses[0].state == PipelineState.COMPLETED
        assert "processing/fund_documents.xlsx" in blobs

    def test_unavailable_queue_stops_the_drain(self, blobs, coordinator, sender):
        class DownQueue(InMemoryQueue):
            def dequeue(self):
                raise QueueUnavailable("broker down")

        queue = DownQueue()
        queue.enqueue(QueueMessage(file_name="fund_documents.xlsx"))

        assert QueueWorker(queue, blobs, coordinator).drain() == []
        assert queue.length() == 1
        assert sender.sent == []


@pytest.mark.unit
class TestLocalBlobStore:
    """Tests for the directory-backed blob store"""

    def test_save_open_move_list(self, tmp_path):
        store = LocalBlobStore(tmp_path)
        store.save("incoming/a.xlsx", b"1")
        store.save("incoming/b.xlsx", b"2")

        assert store.list("incoming") == ["incoming/a.xlsx", "incoming/b.xlsx"]

        store.move("incoming/a.xlsx", "archive/up.zip/a.xlsx")
        assert store.open("archive/up.zip/a.xlsx") == b"1"
        assert store.list("incoming") == ["incoming/b.xlsx"]
        assert store.list("nowhere") == []

    def test_missing_blob_is_unavailable(self, tmp_path):
        with pytest.raises(StorageUnavailable):
            LocalBlobStore(tmp_path).open("incoming/none.xlsx")

    def test_traversal_is_refused(self, tmp_path):
        with pytest.raises(InputValidationError):
            LocalBlobStore(tmp_path).open("../etc/passwd")
