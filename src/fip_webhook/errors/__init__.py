"""
Error handling module for the FIP manager webhook.

This module provides the error hierarchy used by the certificate lifecycle
and the Kubernetes resource adapters.
"""

from .webhook_errors import (
    CertificateSigningError,
    CertificateUnavailable,
    ConfigurationError,
    KubernetesAPIError,
    WebhookError,
)

__all__ = [
    "WebhookError",
    "KubernetesAPIError",
    "CertificateUnavailable",
    "CertificateSigningError",
    "ConfigurationError",
]
