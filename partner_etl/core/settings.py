"""
Pipeline configuration from environment variables.

Variables are read from the process environment, after loading a .env file
when one is given or present in the working directory. Database settings
use the DB_* variables read by DatabaseConnectionPool.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from partner_etl.core.errors import PipelineError

ENV_PREFIX = "PARTNER_ETL_"


class ConfigurationError(PipelineError):
    """Settings could not be built from the environment."""


class PipelineSettings(BaseModel):
    """
    Attributes:
        template_dir: Directory of template definitions
        blob_root: Root directory of the local blob store
        max_retries: Retries allowed after transient failures
        backoff_seconds: First retry delay (0 disables backoff)
        backoff_max_seconds: Cap on the retry delay
        max_workers: Files processed concurrently
        default_recipient: Notification recipient without an override
        default_client_id: Client for Excel templates without a _template sheet
        partial_batch_is_success: Report partially rejected batches as a success
        storage: "memory" or "postgres"
        smtp_host: Send e-mail through this server (log notifications when unset)
    """

    template_dir: Path = Path("config/templates")
    blob_root: Path = Path("data/blobs")
    max_retries: int = Field(3, ge=0, le=100)
    backoff_seconds: float = Field(0.0, ge=0)
    backoff_max_seconds: float = Field(30.0, ge=0)
    max_workers: int = Field(4, ge=1)
    default_recipient: str = "partner-ops@localhost"
    default_client_id: str | None = None
    partial_batch_is_success: bool = False
    storage: str = "memory"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str = "partner-etl@localhost"
    smtp_tls: bool = True
    metrics_port: int | None = None
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("storage")
    @classmethod
    def _check_storage(cls, value: str) -> str:
        value = value.lower()
        if value not in ("memory", "postgres"):
            raise ValueError("storage must be 'memory' or 'postgres'")
        return value

    @classmethod
    def from_env(cls, env_file: str | Path | None = None, **overrides) -> "PipelineSettings":
        """
        Build settings from PARTNER_ETL_* variables (LOG_LEVEL / LOG_FORMAT /
        METRICS_PORT are also read unprefixed, as the logger and metrics do).

        Raises:
            ConfigurationError: If a variable holds an invalid value
        """
        if env_file is not None:
            load_dotenv(env_file, override=True)
        else:
            load_dotenv()

        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is None and name in ("log_level", "log_format", "metrics_port"):
                raw = os.getenv(name.upper())
            if raw not in (None, ""):
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid pipeline settings: {e}") from e
