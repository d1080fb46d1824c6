"""
Unit tests for environment-based settings
"""

import os
from pathlib import Path

import pytest

from partner_etl.core.settings import ConfigurationError, PipelineSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith("PARTNER_ETL_") or name in ("LOG_LEVEL", "LOG_FORMAT", "METRICS_PORT"):
            monkeypatch.delenv(name, raising=False)
    # no stray .env from the working directory
    monkeypatch.chdir(tmp_path)


@pytest.mark.unit
class TestPipelineSettings:
    """Tests for PipelineSettings.from_env"""

    def test_defaults(self):
        settings = PipelineSettings.from_env()

        assert settings.max_retries == 3
        assert settings.storage == "memory"
        assert settings.partial_batch_is_success is False
        assert settings.template_dir == Path("config/templates")

    def test_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("PARTNER_ETL_MAX_RETRIES", "5")
        monkeypatch.setenv("PARTNER_ETL_STORAGE", "Postgres")
        monkeypatch.setenv("PARTNER_ETL_PARTIAL_BATCH_IS_SUCCESS", "true")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        settings = PipelineSettings.from_env()

        assert settings.max_retries == 5
        assert settings.storage == "postgres"
        assert settings.partial_batch_is_success is True
        assert settings.log_level == "DEBUG"

    def test_env_file(self, tmp_path, monkeypatch):
        # registered so teardown removes what the .env file sets
        monkeypatch.setenv("PARTNER_ETL_DEFAULT_RECIPIENT", "")
        monkeypatch.setenv("PARTNER_ETL_MAX_WORKERS", "")
        env_file = tmp_path / "pipeline.env"
        env_file.write_text("PARTNER_ETL_DEFAULT_RECIPIENT=team@example.com\nPARTNER_ETL_MAX_WORKERS=8\n")

        settings = PipelineSettings.from_env(env_file)

        assert settings.default_recipient == "team@example.com"
        assert settings.max_workers == 8

    def test_overrides_win_and_none_is_ignored(self, monkeypatch):
        monkeypatch.setenv("PARTNER_ETL_MAX_RETRIES", "5")

        settings = PipelineSettings.from_env(max_retries=1, storage=None)

        assert settings.max_retries == 1
        assert settings.storage == "memory"

    @pytest.mark.parametrize(
        "name,value",
        [
            ("PARTNER_ETL_MAX_RETRIES", "-1"),
            ("PARTNER_ETL_MAX_RETRIES", "many"),
            ("PARTNER_ETL_STORAGE", "s3"),
            ("PARTNER_ETL_MAX_WORKERS", "0"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigurationError):
            PipelineSettings.from_env()
