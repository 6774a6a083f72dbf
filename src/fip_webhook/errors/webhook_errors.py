"""
Webhook error hierarchy with categorization and retry hints.

This module defines the error types used throughout the FIP manager webhook,
separating transient cluster API failures from certificate state problems
that leave the webhook without a usable serving identity.
"""


class WebhookError(Exception):
    """
    Base error class for all webhook-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize webhook error.

        Args:
            message: Human-readable error description
            category: Error category (api, certificate, configuration)
            retryable: Whether a later pass may succeed without intervention
            user_action: What user should do to resolve the issue
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.user_action = user_action
        self.cause = cause

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class KubernetesAPIError(WebhookError):
    """Error communicating with Kubernetes API."""

    def __init__(self, message: str, reason: str | None = None, retryable: bool = True):
        if reason:
            message = f"{message} (reason: {reason})"

        # Some K8s errors are not retryable
        non_retryable_reasons = {"Forbidden", "Unauthorized", "Invalid"}
        if reason in non_retryable_reasons:
            retryable = False

        super().__init__(
            message=f"Kubernetes API error: {message}",
            category="api",
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
        )
        self.reason = reason


class CertificateUnavailable(WebhookError):
    """The stored serving certificate is missing or cannot be parsed."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=message,
            category="certificate",
            retryable=False,
            cause=cause,
        )


class CertificateSigningError(WebhookError):
    """The cluster certificate authority did not issue a certificate."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(
            message=message,
            category="certificate",
            retryable=retryable,
            user_action="Check the CSR status with 'kubectl get csr' and the signer configuration",
        )


class ConfigurationError(WebhookError):
    """Error in webhook or cluster configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review and correct configuration",
        )
