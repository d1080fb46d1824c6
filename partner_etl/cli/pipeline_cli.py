"""
Command-line interface for the partner-file pipeline.

Usage:
    python -m partner_etl.cli.pipeline_cli templates
    python -m partner_etl.cli.pipeline_cli validate <file.xlsx>
    python -m partner_etl.cli.pipeline_cli process <file.xlsx | package.zip> [options]
    python -m partner_etl.cli.pipeline_cli ingest
    python -m partner_etl.cli.pipeline_cli init-db
"""

import argparse
import json
import sys
from pathlib import Path

from partner_etl.batch import Ingestor, PipelineCoordinator, QueueWorker
from partner_etl.core.errors import PipelineError
from partner_etl.core.models.file_envelope import FileEnvelope
from partner_etl.core.settings import PipelineSettings
from partner_etl.core.templates import TemplateResolver, TemplateValidator
from partner_etl.observability.logger import get_logger, setup_logger
from partner_etl.observability.metrics import start_metrics_server
from partner_etl.services import InMemoryQueue, LocalBlobStore, LoggingSender, Notifier, SmtpSender
from partner_etl.warehouse.catalog import PostgresCatalogStore
from partner_etl.warehouse.connection import DatabaseConnectionPool
from partner_etl.warehouse.schema_mgmt import SchemaManager
from partner_etl.warehouse.staging import PostgresStagingStore
from partner_etl.warehouse.translations import PostgresTranslationStore

logger = get_logger(__name__)


def build_notifier(settings: PipelineSettings) -> Notifier:
    if settings.smtp_host:
        sender = SmtpSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            from_address=settings.smtp_from,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_tls,
        )
    else:
        sender = LoggingSender()
    return Notifier(sender, settings.default_recipient)


def build_coordinator(settings: PipelineSettings, pool: DatabaseConnectionPool | None = None) -> PipelineCoordinator:
    """Wire a coordinator from settings; pool is required for postgres storage."""
    resolver = TemplateResolver(settings.template_dir, default_client_id=settings.default_client_id)
    options = dict(
        max_retries=settings.max_retries,
        backoff_seconds=settings.backoff_seconds,
        backoff_max_seconds=settings.backoff_max_seconds,
        partial_batch_is_success=settings.partial_batch_is_success,
    )
    notifier = build_notifier(settings)

    if settings.storage == "postgres":
        if pool is None:
            raise ValueError("postgres storage needs a database pool")
        return PipelineCoordinator(
            resolver=resolver,
            staging=PostgresStagingStore(pool),
            catalog=PostgresCatalogStore(pool),
            translations=PostgresTranslationStore(pool),
            notifier=notifier,
            **options,
        )
    return PipelineCoordinator.in_memory(resolver, notifier, **options)


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def templates_command(args, settings: PipelineSettings) -> int:
    resolver = TemplateResolver(settings.template_dir, default_client_id=settings.default_client_id)
    _print_json([
        {
            "name": t.name,
            "client_id": t.client_id,
            "sheets": [s.name for s in t.sheets],
            "source": t.source,
        }
        for t in (resolver.resolve(name) for name in resolver.names())
    ])
    return 0


def validate_command(args, settings: PipelineSettings) -> int:
    path = Path(args.input)
    resolver = TemplateResolver(settings.template_dir, default_client_id=settings.default_client_id)
    envelope = FileEnvelope(file_name=path.name, content=path.read_bytes(), template_name=args.template)

    template = resolver.resolve_for(envelope)
    result = TemplateValidator().validate(envelope, template)
    _print_json(result.model_dump(mode="json"))
    return 0 if result.passed else 1


def process_command(args, settings: PipelineSettings, pool: DatabaseConnectionPool | None) -> int:
    path = Path(args.input)
    coordinator = build_coordinator(settings, pool)
    content = path.read_bytes()

    if path.suffix.lower() == ".zip":
        statuses = coordinator.process_package(
            path.name, content, max_workers=settings.max_workers, notification_override=args.notify
        )
    else:
        statuses = [coordinator.process(FileEnvelope(
            file_name=path.name,
            content=content,
            template_name=args.template,
            notification_override=args.notify,
        ))]

    _print_json([
        {
            "file": s.file_key,
            "state": s.state,
            "retry_count": s.retry_count,
            "job_id": s.job_id,
            "reason": s.rejection_reason,
            "errors": s.errors,
        }
        for s in statuses
    ])
    return 0 if all(s.state == "Completed" for s in statuses) else 1


def ingest_command(args, settings: PipelineSettings, pool: DatabaseConnectionPool | None) -> int:
    coordinator = build_coordinator(settings, pool)
    blobs = LocalBlobStore(settings.blob_root)
    queue = InMemoryQueue()

    queued = Ingestor(blobs, queue, coordinator.registry).scan()
    statuses = QueueWorker(queue, blobs, coordinator).drain()
    logger.info(
        "Ingest finished",
        extra={
            "queued": queued,
            "completed": sum(1 for s in statuses if s.state == "Completed"),
            "rejected": sum(1 for s in statuses if s.state == "Rejected"),
        },
    )
    return 0


def init_db_command(args, settings: PipelineSettings, pool: DatabaseConnectionPool) -> int:
    SchemaManager(pool).create_all()
    logger.info("Database schema created")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Partner-file ETL pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List loaded templates
  python -m partner_etl.cli.pipeline_cli templates --template-dir config/templates

  # Validate a workbook without staging anything
  python -m partner_etl.cli.pipeline_cli validate data/fund_documents_20250901.xlsx

  # Process a package against PostgreSQL
  python -m partner_etl.cli.pipeline_cli process data/funds_upload_20250901.zip --storage postgres
        """,
    )
    parser.add_argument("--env-file", help="Load environment variables from this file")
    parser.add_argument("--template-dir", help="Template directory (PARTNER_ETL_TEMPLATE_DIR)")
    parser.add_argument("--storage", choices=["memory", "postgres"], help="Store backend (PARTNER_ETL_STORAGE)")
    parser.add_argument("--max-retries", type=int, help="Retry bound (PARTNER_ETL_MAX_RETRIES)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("templates", help="List loaded templates")

    validate_parser = subparsers.add_parser("validate", help="Validate a workbook against its template")
    validate_parser.add_argument("input", help="Path to the workbook")
    validate_parser.add_argument("--template", help="Template name (derived from the file name by default)")

    process_parser = subparsers.add_parser("process", help="Run a workbook or zip package through the pipeline")
    process_parser.add_argument("input", help="Path to the workbook or package")
    process_parser.add_argument("--template", help="Template name (single workbooks only)")
    process_parser.add_argument("--notify", help="Notification recipient override")

    subparsers.add_parser("ingest", help="Process everything under <blob root>/incoming")
    subparsers.add_parser("init-db", help="Create the database tables")

    args = parser.parse_args(argv)

    settings = PipelineSettings.from_env(
        env_file=args.env_file,
        template_dir=args.template_dir,
        storage=args.storage,
        max_retries=args.max_retries,
    )
    setup_logger("partner_etl", level=settings.log_level, format_type=settings.log_format)
    if settings.metrics_port:
        start_metrics_server(settings.metrics_port)

    needs_db = args.command == "init-db" or (
        args.command in ("process", "ingest") and settings.storage == "postgres"
    )
    pool = DatabaseConnectionPool() if needs_db else None

    try:
        if pool is not None:
            pool.open()
        if args.command == "templates":
            return templates_command(args, settings)
        if args.command == "validate":
            return validate_command(args, settings)
        if args.command == "process":
            return process_command(args, settings, pool)
        if args.command == "ingest":
            return ingest_command(args, settings, pool)
        return init_db_command(args, settings, pool)
    except PipelineError as e:
        logger.error(f"{e.error_type}: {e.message}")
        return 1
    finally:
        if pool is not None:
            pool.close()


if __name__ == "__main__":
    sys.exit(main())
