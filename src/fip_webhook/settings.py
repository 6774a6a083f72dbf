"""Centralized webhook settings using pydantic-settings.

This module provides a single source of truth for all webhook configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# 30 days expressed in minutes
DEFAULT_CERT_RENEWAL_PERIOD = 30 * 24 * 60


class Settings(BaseSettings):
    """Webhook configuration loaded from environment variables.

    All settings have sensible defaults for an in-cluster deployment. Override
    via environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Webhook identification
    webhook_name: str = Field(
        default="rancher-fip-manager-webhook",
        description="Name of the webhook service (also used for the TLS secret and CSR)",
        validation_alias="WEBHOOK_NAME",
    )
    webhook_namespace: str = Field(
        default="rancher-fip-manager",
        description="Namespace where the webhook is deployed",
        validation_alias="WEBHOOK_NAMESPACE",
    )
    validating_webhook_config_name: str = Field(
        default="rancher-fip-manager-validator",
        description="Name of the ValidatingWebhookConfiguration to register",
        validation_alias="VALIDATING_WEBHOOK_CONFIG_NAME",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOGLEVEL", "LOG_LEVEL"),
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=False,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )
    log_health_probes: bool = Field(
        default=False,
        validation_alias="LOG_HEALTH_PROBES",
        description="Log health and readiness probe requests",
    )

    # Certificate lifecycle
    cert_renewal_period: int = Field(
        default=DEFAULT_CERT_RENEWAL_PERIOD,
        validation_alias="CERTRENEWALPERIOD",
        description="Minutes before certificate expiry at which it is renewed",
    )
    cert_dir: str = Field(
        default="",
        validation_alias="CERT_DIR",
        description="Directory the serving key and certificate are written to (empty = home)",
    )

    # Kubernetes client configuration
    kubeconfig: str = Field(
        default="",
        validation_alias="KUBECONFIG",
        description="Path to a kubeconfig file (falls back to in-cluster config if missing)",
    )
    kube_context: str = Field(
        default="",
        validation_alias="KUBECONTEXT",
        description="Kubeconfig context to use",
    )

    # Admission server
    webhook_host: str = Field(
        default="0.0.0.0",
        validation_alias="WEBHOOK_HOST",
        description="Host address to bind the admission server",
    )
    webhook_port: int = Field(
        default=8443,
        validation_alias="WEBHOOK_PORT",
        description="Port for the HTTPS admission server",
    )

    # Metrics and probes
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    liveness_port: int = Field(
        default=8080,
        validation_alias="LIVENESS_PORT",
        description="Port for the kopf liveness endpoint",
    )

    @field_validator("cert_renewal_period", mode="before")
    @classmethod
    def default_renewal_period(cls, v):
        # Unparsable or zero values fall back to the default window
        try:
            period = int(v)
        except (TypeError, ValueError):
            return DEFAULT_CERT_RENEWAL_PERIOD
        return period if period != 0 else DEFAULT_CERT_RENEWAL_PERIOD

    @property
    def kubeconfig_path(self) -> Path:
        """Resolve the kubeconfig path, defaulting to ~/.kube/config."""
        if self.kubeconfig:
            return Path(self.kubeconfig)
        return Path.home() / ".kube" / "config"

    @property
    def cert_directory(self) -> Path:
        """Directory holding the serving key and certificate files."""
        if self.cert_dir:
            return Path(self.cert_dir)
        return Path.home()


# Global settings instance - initialized once at module import
settings = Settings()
