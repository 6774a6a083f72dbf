"""
Admission webhooks for FloatingIP resources.

Validation rules live in ``validation``; ``server`` exposes them over HTTPS
and ``registration`` tells the API server where to send reviews.
"""

from .registration import WebhookRegistrar, ensure_validating_webhook_configuration
from .resources import FloatingIPResourceReader
from .server import AdmissionServer
from .validation import validate_floating_ip, validate_floating_ip_pool

__all__ = [
    "AdmissionServer",
    "FloatingIPResourceReader",
    "WebhookRegistrar",
    "ensure_validating_webhook_configuration",
    "validate_floating_ip",
    "validate_floating_ip_pool",
]
