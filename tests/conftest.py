"""
Pytest configuration and fixtures for partner-etl tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import io
import zipfile
from collections.abc import Callable, Generator
from datetime import date
from pathlib import Path
from typing import Any

import pytest
from openpyxl import Workbook

from partner_etl.batch import PipelineCoordinator
from partner_etl.core.models import Template
from partner_etl.core.rules import TemplateBuilder
from partner_etl.core.templates import TemplateResolver
from partner_etl.services import Notifier, RecordingSender

FUND_HEADERS = ["Document Number", "Fund Code", "Fund Name", "Inception Date", "Filing Date"]

REFERENCE_DATE = date(2025, 9, 1)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "config" / "templates"


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# WORKBOOK FIXTURES
# =======================

def build_workbook(sheets: dict[str, list[list[Any]]]) -> bytes:
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        sheet = workbook.create_sheet(title)
        for row in rows:
            sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def workbook_factory() -> Callable[[dict[str, list[list[Any]]]], bytes]:
    """Build .xlsx bytes from {sheet title: rows}"""
    return build_workbook


@pytest.fixture
def fund_workbook() -> Callable[..., bytes]:
    """
    Build a fund-documents workbook

    Usage:
        fund_workbook([("DOC-000001", "F100", "Alpha Fund", date(2024, 9, 1), None)])
    """
    def _build(rows: list[tuple], headers: list[str] | None = None, sheet: str = "Funds") -> bytes:
        return build_workbook({sheet: [headers or FUND_HEADERS, *[list(r) for r in rows]]})
    return _build


@pytest.fixture
def zip_factory() -> Callable[[dict[str, bytes]], bytes]:
    """Build zip bytes from {entry name: content}, in the given order"""
    def _build(entries: dict[str, bytes]) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            for name, content in entries.items():
                archive.writestr(name, content)
        return buffer.getvalue()
    return _build


# =======================
# TEMPLATE FIXTURES
# =======================

@pytest.fixture
def fund_template() -> Template:
    return (
        TemplateBuilder("fund_documents", client_id="ACME")
        .sheet("Funds")
        .column("Document Number", "document_number").required().regex(r"^DOC-[0-9]{6}$")
        .column("Fund Code", "fund_code").required().type_check("string")
        .column("Fund Name", "fund_name").required()
        .column("Inception Date", "inception_date").type_check("date")
        .column("Filing Date", "filing_date", required=False).type_check("date")
        .translate("fund_name")
        .build()
    )


@pytest.fixture
def resolver(fund_template) -> TemplateResolver:
    resolver = TemplateResolver()
    resolver.register(fund_template)
    return resolver


# =======================
# PIPELINE FIXTURES
# =======================

@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def notifier(sender) -> Notifier:
    return Notifier(sender, default_recipient="ops@example.com")


@pytest.fixture
def coordinator(resolver, notifier) -> PipelineCoordinator:
    return PipelineCoordinator.in_memory(resolver, notifier, reference_date=REFERENCE_DATE)


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """
    Start PostgreSQL container for integration tests

    Skips when no Docker daemon is reachable.
    """
    docker = pytest.importorskip("docker")
    try:
        docker.from_env().ping()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_partner_etl",
    ) as postgres:
        yield postgres


@pytest.fixture(scope="session")
def pg_pool(postgres_container):
    """Open pool with the pipeline schema created"""
    from partner_etl.warehouse.connection import DatabaseConnectionPool
    from partner_etl.warehouse.schema_mgmt import SchemaManager

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_partner_etl",
        user="test_pipeline",
        password="test_password",
        min_size=1,
        max_size=8,
    )
    pool.open()
    SchemaManager(pool).create_all()
    yield pool
    pool.close()


@pytest.fixture
def clean_db(pg_pool):
    """Pool over empty tables"""
    from partner_etl.warehouse.schema_mgmt import SchemaManager

    SchemaManager(pg_pool).truncate_all()
    yield pg_pool
