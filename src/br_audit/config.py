"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup

Architecture: Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated by AppSettings via env_nested_delimiter="__", so the env
var SOURCES__CT_LOG maps to sources.ct_log, DATABASE__HOST maps to database.host, etc.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class SourceSettings(BaseModel):
    """Inputs of an audit run."""

    ct_log: Path = Field(description="JSON-lines file of CT get-entries records")
    root_ca_file: Path = Field(
        description="Newline-delimited canonical names of trusted root CAs",
    )
    popularity_file: Path | None = Field(
        default=None,
        description="rank,domain CSV; without it no certificate gets a reputation",
    )


class OutputSettings(BaseModel):
    json_file: Path | None = Field(default=None, description="Where to write the JSON report")


class DatabaseSettings(BaseModel):
    """
    PostgreSQL connection configuration.

    Accepts either a full connection string via DATABASE__DSN or individual
    components (DATABASE__HOST, DATABASE__PORT, DATABASE__NAME,
    DATABASE__USERNAME, DATABASE__PASSWORD). The DSN takes priority when
    both are provided.
    """

    dsn: SecretStr | None = Field(
        default=None,
        description="Full PostgreSQL connection string (overrides individual fields)",
    )
    host: str | None = Field(default=None, description="PostgreSQL host")
    port: int = Field(default=5432, ge=1, le=65535, description="PostgreSQL port")
    name: str | None = Field(default=None, description="PostgreSQL database name")
    username: str | None = Field(default=None, description="PostgreSQL username")
    password: SecretStr | None = Field(default=None, description="PostgreSQL password")
    connect_attempts: int = Field(default=3, ge=1, description="Connection attempts per store")

    @model_validator(mode="after")
    def resolve_dsn(self) -> DatabaseSettings:
        """Build `dsn` from the components when no full DSN was given."""
        if self.dsn is not None:
            return self
        missing = [
            f
            for f, v in [
                ("DATABASE__HOST", self.host),
                ("DATABASE__NAME", self.name),
                ("DATABASE__USERNAME", self.username),
                ("DATABASE__PASSWORD", self.password),
            ]
            if not v
        ]
        if missing:
            raise ValueError("Set DATABASE__DSN or provide all of: " + ", ".join(missing))
        dsn_value = (
            f"postgresql://{self.username}:{self.password.get_secret_value()}"  # type: ignore[union-attr]
            f"@{self.host}:{self.port}/{self.name}"
        )
        object.__setattr__(self, "dsn", SecretStr(dsn_value))
        return self

    def get_dsn(self) -> str:
        assert self.dsn is not None  # guaranteed by resolve_dsn validator
        return self.dsn.get_secret_value()


class AuditSettings(BaseModel):
    """Scope and parallelism of an audit run."""

    workers: int = Field(default=4, ge=1, description="Worker threads evaluating certificates")
    max_entries: int = Field(default=0, ge=0, description="Stop after N log entries; 0 = all")
    issued_after: date | None = Field(
        default=date(2013, 1, 1),
        description="Skip certificates whose notBefore is earlier than this date",
    )
    skip_expired: bool = Field(default=True, description="Skip certificates already expired")

    def issued_after_utc(self) -> datetime | None:
        if self.issued_after is None:
            return None
        return datetime(
            self.issued_after.year, self.issued_after.month, self.issued_after.day, tzinfo=UTC
        )


class SchedulerSettings(BaseModel):
    """
    Optional periodic re-audit, driven by a standard 5-field cron expression.

    Format: minute hour day-of-month month day-of-week
    Examples:
      "0 3 * * *"    — daily at 03:00 (default)
      "0 3 * * 1"    — every Monday at 03:00
    """

    enabled: bool = Field(default=False, description="Run under the cron scheduler")
    cron: str = Field(
        default="0 3 * * *",
        description="Cron expression (5 fields: minute hour dom month dow)",
    )

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        """Reject expressions that don't have exactly 5 space-separated fields."""
        fields = value.strip().split()
        if len(fields) != 5:
            raise ValueError(
                f"Cron expression must have exactly 5 fields "
                f"(minute hour dom month dow), got {len(fields)}: {value!r}"
            )
        return value.strip()


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values

    At least one report sink (output.json_file or database) is required.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    sources: SourceSettings
    output: OutputSettings = Field(default_factory=lambda: OutputSettings())
    database: DatabaseSettings | None = None
    audit: AuditSettings = Field(default_factory=lambda: AuditSettings())
    scheduler: SchedulerSettings = Field(default_factory=lambda: SchedulerSettings())

    run_on_startup: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def require_sink(self) -> AppSettings:
        if self.output.json_file is None and self.database is None:
            raise ValueError("Configure OUTPUT__JSON_FILE and/or DATABASE__* for the audit report")
        return self
