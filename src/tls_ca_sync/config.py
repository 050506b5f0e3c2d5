"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup

Architecture: Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated by AppSettings via env_nested_delimiter="__", so the env
var KUBE__IN_CLUSTER maps to kube.in_cluster, WATCH__NAMESPACE maps to
watch.namespace, etc.

Every field has a default: an unconfigured process talks to the cluster in the
current kubeconfig context and watches all namespaces.
"""

from __future__ import annotations

from pathlib import Path

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tls_ca_sync.domain.models import DEFAULT_WATCH_CONFIG_NAME

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class KubeSettings(BaseModel):
    """
    Kubernetes API client configuration.

    in_cluster=True uses the pod's service account token; otherwise the
    kubeconfig at config_file (default: $KUBECONFIG or ~/.kube/config) is
    loaded for context (default: the current context).
    """

    in_cluster: bool = Field(default=False, description="Use in-cluster service account config")
    config_file: str | None = Field(default=None, description="Path to a kubeconfig file")
    context: str | None = Field(default=None, description="kubeconfig context name")
    request_timeout_seconds: int = Field(
        default=30, ge=1, description="Per-request timeout for API calls"
    )


class WatchSettings(BaseModel):
    """What to watch and where the per-namespace TLSSecretWatcher lives."""

    namespace: str | None = Field(
        default=None, description="Restrict to one namespace (unset: all namespaces)"
    )
    marker_annotation: str = Field(
        default="de.pottmeier.converter/createca",
        description="Annotation key that opts a TLS Secret in",
    )
    config_name: str = Field(
        default=DEFAULT_WATCH_CONFIG_NAME, description="TLSSecretWatcher name per namespace"
    )
    config_group: str = Field(default="cert.pottmeier.de")
    config_version: str = Field(default="v1")
    config_plural: str = Field(default="tlssecretwatchers")
    stream_timeout_seconds: int = Field(
        default=300, ge=1, description="Server-side watch timeout before reconnecting"
    )

    @field_validator("marker_annotation", "config_name")
    @classmethod
    def reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("namespace")
    @classmethod
    def blank_namespace_means_all(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class SchedulerSettings(BaseModel):
    """
    Resync schedule using a standard 5-field cron expression.

    Format: minute hour day-of-month month day-of-week
    Examples:
      "*/10 * * * *" — every 10 minutes (default)
      "0 * * * *"    — hourly
      "0 2 * * *"    — daily at 02:00
    """

    cron: str = Field(
        default="*/10 * * * *",
        description="Cron expression (5 fields: minute hour dom month dow)",
    )

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str) -> str:
        """Require exactly 5 fields, each accepted by APScheduler's CronTrigger."""
        fields = value.strip().split()
        if len(fields) != 5:
            raise ValueError(
                f"Cron expression must have exactly 5 fields "
                f"(minute hour dom month dow), got {len(fields)}: {value!r}"
            )
        try:
            CronTrigger.from_crontab(" ".join(fields))
        except ValueError as e:
            raise ValueError(f"Invalid cron expression {value!r}: {e}") from e
        return " ".join(fields)


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables (Kubernetes Deployment env / ConfigMap)
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    kube: KubeSettings = Field(default_factory=lambda: KubeSettings())
    watch: WatchSettings = Field(default_factory=lambda: WatchSettings())
    scheduler: SchedulerSettings = Field(default_factory=lambda: SchedulerSettings())

    workers: int = Field(default=2, ge=1, le=32)
    max_retries: int = Field(default=5, ge=0)
    retry_backoff_seconds: float = Field(default=1.0, gt=0)
    max_backoff_seconds: float = Field(default=60.0, gt=0)
    run_on_startup: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> AppSettings:
        if self.max_backoff_seconds < self.retry_backoff_seconds:
            raise ValueError("max_backoff_seconds must be >= retry_backoff_seconds")
        return self
