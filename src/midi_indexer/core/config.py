"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from midi_indexer.services.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Chain
    midi_contract_address: str = Field(default="", alias="MIDI_ADDRESS")
    provider_endpoint: str = Field(default="", alias="PROVIDER_ENDPOINT")
    mint_scan_start_block: int = Field(default=7853362, alias="MINT_SCAN_START_BLOCK")
    log_batch_size: int = Field(default=1000, alias="LOG_BATCH_SIZE")
    listener_poll_interval_seconds: float = Field(
        default=12.0, alias="LISTENER_POLL_INTERVAL_SECONDS"
    )

    # Metadata gateway
    metadata_gateway_url: str = Field(
        default="https://nftstorage.link/ipfs/", alias="METADATA_GATEWAY_URL"
    )
    metadata_fetch_timeout_seconds: float = Field(
        default=30.0, alias="METADATA_FETCH_TIMEOUT_SECONDS"
    )

    # Retry queue
    queue_drain_interval_ms: int = Field(default=300000, alias="QUEUE_DRAIN_INTERVAL_MS")
    queue_drain_batch_size: int = Field(default=10, alias="QUEUE_DRAIN_BATCH_SIZE")
    queue_max_attempts: int = Field(default=10, alias="QUEUE_MAX_ATTEMPTS")
    queue_backoff_base_seconds: int = Field(default=300, alias="QUEUE_BACKOFF_BASE_SECONDS")
    queue_backoff_max_seconds: int = Field(default=21600, alias="QUEUE_BACKOFF_MAX_SECONDS")

    # Reconciliation
    reconcile_interval_ms: int = Field(default=86400000, alias="RECONCILE_INTERVAL_MS")
    reconcile_on_startup: bool = Field(default=True, alias="RECONCILE_ON_STARTUP")
    reconcile_queue_fetch_limit: int = Field(default=1000, alias="RECONCILE_QUEUE_FETCH_LIMIT")
    dead_letter_revisit_seconds: int = Field(default=604800, alias="DEAD_LETTER_REVISIT_SECONDS")

    @property
    def queue_drain_interval_seconds(self) -> float:
        return self.queue_drain_interval_ms / 1000

    @property
    def reconcile_interval_seconds(self) -> float:
        return self.reconcile_interval_ms / 1000

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Missing chain configuration is the only process-fatal condition, so it is
        checked here rather than on first use. Skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.midi_contract_address:
            missing.append("MIDI_ADDRESS: address of the deployed MIDI contract")

        if not self.provider_endpoint:
            missing.append("PROVIDER_ENDPOINT: JSON-RPC endpoint of the chain node")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe indexer cannot start without these variables."
            raise ConfigurationError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        renderer = [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            *renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
