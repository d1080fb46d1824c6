"""
Per-file pipeline orchestration.

Flow: Received → Validating → Staging → RuleProcessing → Importing → Completed,
with Retrying as a side step after transient failures and Rejected as the
other terminal state.

Stages raise; the coordinator alone decides between retrying and rejecting,
and it alone emits notifications, exactly one per file.
"""

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import date

from partner_etl.core.business_rules import BusinessRuleEngine
from partner_etl.core.errors import (
    BatchAborted,
    ConsistencyError,
    ImportRejected,
    PipelineError,
    ValidationFailed,
    is_permanent,
    is_transient,
)
from partner_etl.core.models.batch import EntryStatus
from partner_etl.core.models.file_envelope import FileEnvelope, QueueMessage
from partner_etl.core.models.file_status import FileStatus
from partner_etl.core.models.notification import BatchNotificationEvent, NotificationEvent
from partner_etl.core.models.pipeline_state import PipelineState
from partner_etl.core.models.validation_result import ValidationResult
from partner_etl.core.templates import TemplateResolver, TemplateValidator
from partner_etl.observability import metrics
from partner_etl.observability.logger import bind_context, file_context, get_logger, log_operation
from partner_etl.services.notifier import Notifier
from partner_etl.utils.locks import KeyedLocks
from partner_etl.utils.validation import validate_max_retries
from partner_etl.warehouse.catalog import CatalogStore, InMemoryCatalogStore
from partner_etl.warehouse.importer import ImportExecutor
from partner_etl.warehouse.staging import InMemoryStagingStore, StagingStore, StagingWriter
from partner_etl.warehouse.translations import InMemoryTranslationStore, TranslationStore

from .registry import BatchRegistry
from .status import PipelineStatusStore

logger = get_logger(__name__)

DEFAULT_MAX_RETRIES = 3


class _RunState:
    """Stage outputs carried between the stages of one run."""

    def __init__(self, envelope: FileEnvelope):
        self.envelope = envelope
        self.template = None
        self.result: ValidationResult | None = None
        self.rows: list[dict] = []
        self.job_id: str | None = envelope.job_id
        self.rows_imported = 0


class PipelineCoordinator:
    """
    Runs files through the pipeline and owns every retry/reject decision.

    Args:
        resolver: Template lookup
        staging: Staging store shared by the writer, rule engine and importer
        catalog: Document catalog
        translations: Translation lookup and missing-translation sink
        notifier: Outcome notifications
        registry: Batch registry (a private one is created if omitted)
        status_store: Status tracking (a private one is created if omitted)
        max_retries: Retries allowed after transient failures
        backoff_seconds: First retry delay, doubled on each further retry (0 = none)
        backoff_max_seconds: Upper bound of the retry delay
        partial_batch_is_success: Report a batch with some rejected entries as a success
        reference_date: Filing date for rows without one (defaults to today)
        sleep: Delay function used for backoff
    """

    def __init__(
        self,
        resolver: TemplateResolver,
        staging: StagingStore,
        catalog: CatalogStore,
        translations: TranslationStore,
        notifier: Notifier,
        registry: BatchRegistry | None = None,
        status_store: PipelineStatusStore | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_seconds: float = 0.0,
        backoff_max_seconds: float = 30.0,
        partial_batch_is_success: bool = False,
        reference_date: date | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.resolver = resolver
        self.validator = TemplateValidator()
        self.staging_writer = StagingWriter(staging)
        self.rule_engine = BusinessRuleEngine(staging, catalog, translations)
        self.importer = ImportExecutor(staging, catalog)
        self.notifier = notifier
        self.registry = registry or BatchRegistry()
        self.status = status_store or PipelineStatusStore()
        self.max_retries = validate_max_retries(max_retries)
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.partial_batch_is_success = partial_batch_is_success
        self.reference_date = reference_date
        self._sleep = sleep
        self._file_locks = KeyedLocks()

        self._stages: dict[PipelineState, Callable[[_RunState], PipelineState]] = {
            PipelineState.VALIDATING: self._validate,
            PipelineState.STAGING: self._stage,
            PipelineState.RULE_PROCESSING: self._apply_rules,
            PipelineState.IMPORTING: self._import,
        }

    @classmethod
    def in_memory(cls, resolver: TemplateResolver, notifier: Notifier, **kwargs) -> "PipelineCoordinator":
        """Coordinator over in-process stores."""
        kwargs.setdefault("staging", InMemoryStagingStore())
        kwargs.setdefault("catalog", InMemoryCatalogStore())
        kwargs.setdefault("translations", InMemoryTranslationStore())
        return cls(resolver=resolver, notifier=notifier, **kwargs)

    # =======================
    # STAGES
    # =======================

    def _validate(self, run: _RunState) -> PipelineState:
        envelope = run.envelope
        run.template = self.resolver.resolve_for(envelope)
        self.status.update(envelope.file_key, template_name=run.template.name)

        run.result = self.validator.validate(envelope, run.template)
        self.status.update(envelope.file_key, validation_result=run.result)
        if not run.result.passed:
            raise ValidationFailed(
                f"{len(run.result.messages)} validation error(s)",
                messages=run.result.error_list(),
                file_name=envelope.file_name,
                stage=PipelineState.VALIDATING,
            )
        run.rows = self.validator.extract_rows(envelope, run.template)
        return PipelineState.STAGING

    def _stage(self, run: _RunState) -> PipelineState:
        envelope = run.envelope.model_copy(update={"job_id": run.job_id})
        run.job_id = self.staging_writer.write(run.result, envelope, run.rows, run.template)
        self.status.update(run.envelope.file_key, job_id=run.job_id)
        bind_context(job_id=run.job_id)
        return PipelineState.RULE_PROCESSING

    def _apply_rules(self, run: _RunState) -> PipelineState:
        self.rule_engine.apply(run.job_id, reference_date=self.reference_date)
        return PipelineState.IMPORTING

    def _import(self, run: _RunState) -> PipelineState:
        outcome = self.importer.execute(run.job_id)
        if not outcome.is_imported:
            raise ImportRejected(
                outcome.reason or "Import rejected",
                file_name=run.envelope.file_name,
                job_id=run.job_id,
                stage=PipelineState.IMPORTING,
            )
        run.rows_imported = outcome.rows_imported
        return PipelineState.COMPLETED

    # =======================
    # RUN
    # =======================

    def process(self, envelope: FileEnvelope) -> FileStatus:
        """
        Run one file to a terminal state.

        Returns:
            The file's final status

        Raises:
            InvalidTransition: If the file is already being processed, or is a
                batch entry that already finished
        """
        with self._file_locks.hold(envelope.file_key), file_context(
            file_name=envelope.file_name, batch_id=envelope.batch_id, job_id=envelope.job_id
        ):
            if self._batch_aborted(envelope.batch_id):
                existing = self.status.get_status(envelope.file_name, envelope.batch_id)
                if existing is not None and existing.is_terminal:
                    return existing

            self.status.start(
                envelope.file_name,
                batch_id=envelope.batch_id,
                retry_count=envelope.retry_count,
                job_id=envelope.job_id,
            )
            metrics.files_in_flight.inc()
            try:
                return self._run(_RunState(envelope))
            finally:
                metrics.files_in_flight.dec()

    def _run(self, run: _RunState) -> FileStatus:
        envelope = run.envelope
        file_key = envelope.file_key
        if self._batch_aborted(envelope.batch_id):
            return self._finish(run, PipelineState.REJECTED, self._aborted(run, PipelineState.RECEIVED))

        state = PipelineState.VALIDATING
        self.status.transition(file_key, state)

        while True:
            if self._batch_aborted(envelope.batch_id):
                return self._finish(run, PipelineState.REJECTED, self._aborted(run, state))

            try:
                with log_operation(
                    f"stage:{state}",
                    logger=logger,
                    file_name=envelope.file_name,
                    batch_id=envelope.batch_id,
                    job_id=run.job_id,
                ) as op:
                    next_state = self._stages[state](run)
                metrics.observe_histogram(metrics.stage_duration_seconds, op.elapsed, stage=str(state))
            except PipelineError as e:
                e.file_name = e.file_name or envelope.file_name
                e.job_id = e.job_id or run.job_id
                e.stage = e.stage or str(state)
                resume = self._retry_target(file_key, state, e)
                if resume is None:
                    return self._finish(run, PipelineState.REJECTED, e)
                state = resume
                continue
            except Exception as e:
                logger.exception(
                    "Unexpected stage failure",
                    extra={"file_name": envelope.file_name, "job_id": run.job_id, "stage": str(state)},
                )
                return self._finish(run, PipelineState.REJECTED, ConsistencyError(
                    f"Unexpected {type(e).__name__} in {state}: {e}",
                    file_name=envelope.file_name,
                    job_id=run.job_id,
                    stage=str(state),
                ))

            if next_state == PipelineState.COMPLETED:
                return self._finish(run, PipelineState.COMPLETED)
            self.status.transition(file_key, next_state)
            state = next_state

    def _retry_target(self, file_key: str, state: PipelineState, error: PipelineError) -> PipelineState | None:
        """Stage to resume at after a failure, or None to reject."""
        if not is_transient(error):
            return None

        current = self.status.get(file_key).retry_count
        if current >= self.max_retries:
            logger.warning(
                "Retries exhausted",
                extra={"file_key": file_key, "stage": str(state), "error_type": error.error_type,
                       "retry_count": current},
            )
            return None

        status = self.status.transition(
            file_key, PipelineState.RETRYING, reason=error.error_type, errors=[f"{state}: {error.message}"]
        )
        metrics.increment_counter(metrics.retries_total, stage=str(state), error_type=error.error_type)

        delay = self._backoff(status.retry_count)
        logger.info(
            "Retrying",
            extra={"file_key": file_key, "stage": str(state), "error_type": error.error_type,
                   "retry_count": status.retry_count, "delay_seconds": delay},
        )
        if delay > 0:
            self._sleep(delay)

        # Classification and observed versions must be recomputed after an import conflict
        resume = PipelineState.RULE_PROCESSING if state == PipelineState.IMPORTING else state
        self.status.transition(file_key, resume)
        return resume

    def _backoff(self, retry_count: int) -> float:
        if self.backoff_seconds <= 0:
            return 0.0
        return min(self.backoff_seconds * (2 ** (retry_count - 1)), self.backoff_max_seconds)

    def _finish(self, run: _RunState, outcome: PipelineState, error: PipelineError | None = None) -> FileStatus:
        envelope = run.envelope
        errors = []
        reason = None
        if error is not None:
            reason = error.error_type
            errors = list(error.messages) if isinstance(error, ValidationFailed) else [error.message]
            metrics.increment_counter(
                metrics.rejections_total, stage=error.stage or "unknown", error_type=error.error_type
            )
            log = logger.warning if is_permanent(error) else logger.error
            log(
                "File rejected",
                extra={"file_name": envelope.file_name, "batch_id": envelope.batch_id, "job_id": run.job_id,
                       "reason": reason, "error_message": error.message},
            )

        status = self.status.transition(envelope.file_key, outcome, reason=reason, errors=errors)
        metrics.increment_counter(
            metrics.files_processed_total, template=status.template_name or "unknown", outcome=str(outcome)
        )
        if outcome == PipelineState.COMPLETED:
            logger.info(
                "File completed",
                extra={"file_name": envelope.file_name, "batch_id": envelope.batch_id, "job_id": run.job_id,
                       "rows_imported": run.rows_imported, "retry_count": status.retry_count},
            )

        self.notifier.notify_file(
            NotificationEvent(
                outcome=str(outcome),
                file_name=envelope.file_name,
                batch_id=envelope.batch_id,
                job_id=run.job_id,
                template_name=status.template_name,
                retry_count=status.retry_count,
                reason=reason,
                errors=status.errors if outcome == PipelineState.REJECTED else [],
                rows_imported=run.rows_imported,
            ),
            recipient=envelope.notification_override,
        )
        self._report_to_batch(envelope, outcome)
        return status

    def _aborted(self, run: _RunState, state: PipelineState) -> BatchAborted:
        return BatchAborted(
            f"Batch '{run.envelope.batch_id}' was aborted",
            file_name=run.envelope.file_name,
            job_id=run.job_id,
            stage=str(state),
        )

    def _batch_aborted(self, batch_id: str | None) -> bool:
        return batch_id is not None and batch_id in self.registry and self.registry.is_aborted(batch_id)

    def _report_to_batch(self, envelope: FileEnvelope, outcome: PipelineState) -> None:
        batch_id = envelope.batch_id
        if batch_id is None or batch_id not in self.registry:
            return
        if not self.registry.mark_terminal(batch_id, envelope.file_name, outcome):
            return

        batch = self.registry.get(batch_id)
        completed = batch.entries_in(EntryStatus.COMPLETED)
        rejected = batch.entries_in(EntryStatus.REJECTED)
        if not rejected:
            batch_outcome = "Completed"
        elif not completed:
            batch_outcome = "Rejected"
        else:
            batch_outcome = "PartiallyCompleted"
        success = not rejected or (self.partial_batch_is_success and bool(completed))

        metrics.increment_counter(metrics.batches_completed_total, outcome=batch_outcome)
        self.notifier.notify_batch(BatchNotificationEvent(
            batch_id=batch_id,
            outcome=batch_outcome,
            reported_as_success=success,
            completed=completed,
            rejected=rejected,
        ))

    # =======================
    # ENTRY POINTS
    # =======================

    def reject_unopened(self, message: QueueMessage, error: PipelineError) -> FileStatus:
        """Reject a queued file whose content could never be read."""
        envelope = message.to_envelope(b"")
        with self._file_locks.hold(envelope.file_key):
            self.status.start(envelope.file_name, batch_id=envelope.batch_id,
                              retry_count=envelope.retry_count, job_id=envelope.job_id)
            error.stage = error.stage or str(PipelineState.RECEIVED)
            return self._finish(_RunState(envelope), PipelineState.REJECTED, error)

    def run_batch(self, envelopes: list[FileEnvelope], max_workers: int = 4) -> list[FileStatus]:
        """
        Process files concurrently.

        Returns:
            Final statuses in input order
        """
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pipeline") as pool:
            futures = [pool.submit(self.process, envelope) for envelope in envelopes]
            return [f.result() for f in futures]

    def process_package(
        self,
        package_name: str,
        content: bytes,
        max_workers: int = 4,
        notification_override: str | None = None,
    ) -> list[FileStatus]:
        """Register a zip package as a batch and run all its entries."""
        batch, entries = self.registry.register_package(package_name, content)
        envelopes = []
        for file_name in batch.entries:
            self.registry.mark_extracted(batch.batch_id, file_name)
            envelopes.append(FileEnvelope(
                file_name=file_name,
                batch_id=batch.batch_id,
                content=entries[file_name],
                notification_override=notification_override,
            ))
        return self.run_batch(envelopes, max_workers=max_workers)

    def abort_batch(self, batch_id: str) -> list[FileStatus]:
        """
        Abort a batch. Entries that never started are rejected here; entries in
        flight reject themselves before their next stage. Completed entries
        are left alone.

        Returns:
            Statuses of the entries rejected here
        """
        rejected = []
        for file_name in self.registry.abort(batch_id):
            envelope = FileEnvelope(file_name=file_name, batch_id=batch_id)
            with self._file_locks.hold(envelope.file_key):
                if self.status.get_status(file_name, batch_id) is not None:
                    continue
                self.status.start(file_name, batch_id=batch_id)
                run = _RunState(envelope)
                rejected.append(self._finish(run, PipelineState.REJECTED, self._aborted(run, PipelineState.RECEIVED)))
        return rejected

    # =======================
    # STATUS QUERIES
    # =======================

    def get_status(self, file_name: str, batch_id: str | None = None) -> FileStatus | None:
        return self.status.get_status(file_name, batch_id)

    def get_validation_messages(self, file_name: str, batch_id: str | None = None) -> ValidationResult | None:
        return self.status.get_validation_messages(file_name, batch_id)

    def list_batch(self, batch_id: str) -> list[FileStatus]:
        return self.status.list_batch(batch_id)
