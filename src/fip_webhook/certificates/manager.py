"""
Lifecycle management of the webhook serving certificate.

The certificate manager keeps exactly one TLS identity current:
1. Issues a new identity when none is stored
2. Renews the identity when it enters the renewal window
3. Mirrors the stored identity to the local files read by the HTTPS server

Renewal always replaces the stored identity (delete then create); it is
never patched in place.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path

from kubernetes import client

from fip_webhook.errors import CertificateUnavailable, WebhookError
from fip_webhook.observability.metrics import (
    CERTIFICATE_EXPIRY_TIMESTAMP,
    CERTIFICATE_OPERATIONS,
)

from .csr import CSRExchange
from .generator import (
    ServiceIdentity,
    TLSIdentity,
    build_signing_request,
    encode_private_key,
    generate_private_key,
    parse_certificate_expiration,
)
from .secret_store import TLSSecretStore

logger = logging.getLogger(__name__)


def minutes_until(expiration: datetime, now: datetime | None = None) -> float:
    """Minutes from ``now`` (default: current UTC time) until ``expiration``."""
    now = now or datetime.now(UTC)
    return (expiration - now).total_seconds() / 60


class CertificateManager:
    """Issues, stores and renews the webhook's own serving certificate."""

    def __init__(
        self,
        identity: ServiceIdentity,
        csr_exchange: CSRExchange,
        secret_store: TLSSecretStore,
    ):
        self.identity = identity
        self.csr_exchange = csr_exchange
        self.secret_store = secret_store

    @classmethod
    def for_service(
        cls,
        name: str,
        namespace: str,
        cert_dir: Path,
        k8s_client: client.ApiClient | None = None,
    ) -> "CertificateManager":
        """
        Build a manager with the default CSR exchange and secret store.

        Args:
            name: Webhook Service name
            namespace: Webhook namespace
            cert_dir: Directory for the local key and certificate files
            k8s_client: Optional Kubernetes API client

        Returns:
            Configured certificate manager
        """
        identity = ServiceIdentity(name=name, namespace=namespace)
        return cls(
            identity=identity,
            csr_exchange=CSRExchange(identity.csr_name, k8s_client=k8s_client),
            secret_store=TLSSecretStore(
                identity.secret_name, namespace, cert_dir, k8s_client=k8s_client
            ),
        )

    async def get_expiration(self) -> datetime:
        """
        Get the not-after timestamp of the stored certificate.

        Returns:
            Timezone-aware expiration timestamp

        Raises:
            CertificateUnavailable: If there is no stored identity or the
                certificate cannot be decoded
            KubernetesAPIError: If the secret cannot be read
        """
        stored = await self.secret_store.read_identity()
        expiration = parse_certificate_expiration(stored.certificate_pem)
        CERTIFICATE_EXPIRY_TIMESTAMP.set(expiration.timestamp())
        return expiration

    async def ensure_fresh(
        self, renewal_window_minutes: int, strict: bool = False
    ) -> None:
        """
        Make sure a current, non-expiring identity is stored and on disk.

        Args:
            renewal_window_minutes: Renew when fewer minutes of validity remain
            strict: Re-raise lifecycle failures instead of logging them. Used
                for the bootstrap pass, where the webhook cannot start
                without a usable identity.

        Raises:
            WebhookError: Only in strict mode, if issuing or renewing fails
        """
        try:
            if not await self.secret_store.exists():
                logger.info(
                    f"No TLS secret {self.secret_store.name} found, issuing a new certificate"
                )
                await self.issue()
            elif await self.needs_renewal(renewal_window_minutes):
                logger.info(
                    f"Certificate expires within {renewal_window_minutes} minutes, renewing"
                )
                await self.renew()
            else:
                logger.debug("Certificate is still valid, no renewal needed")
        except WebhookError as e:
            if strict:
                raise
            logger.error(f"Certificate lifecycle pass failed: {e}")

        try:
            await self.secret_store.write_local_files()
        except (WebhookError, OSError) as e:
            logger.error(f"Failed to write TLS files to {self.secret_store.cert_dir}: {e}")

    async def needs_renewal(self, renewal_window_minutes: int) -> bool:
        """
        Check whether the stored certificate is inside the renewal window.

        A stored identity whose certificate cannot be read is treated as due
        for renewal.
        """
        try:
            expiration = await self.get_expiration()
        except CertificateUnavailable as e:
            logger.error(f"Stored certificate is unusable: {e}")
            return True

        remaining = int(minutes_until(expiration))
        logger.debug(f"Certificate expires at {expiration} ({remaining} minutes left)")
        return remaining < renewal_window_minutes

    async def issue(self) -> TLSIdentity:
        """
        Issue and store a first identity.

        Returns:
            The stored identity
        """
        await self._clear_stale_csr()
        try:
            identity = await self._request_identity()
            await self.secret_store.create(identity)
        except WebhookError:
            CERTIFICATE_OPERATIONS.labels(operation="issue", result="failure").inc()
            raise
        CERTIFICATE_OPERATIONS.labels(operation="issue", result="success").inc()
        logger.info(f"Issued certificate valid until {identity.not_after}")
        return identity

    async def renew(self) -> TLSIdentity:
        """
        Replace the stored identity with a newly issued one.

        The old secret is only deleted once the new certificate has been
        issued, so a failed exchange leaves the current identity in place.

        Returns:
            The stored identity
        """
        await self._clear_stale_csr()
        try:
            identity = await self._request_identity()
            await self.secret_store.delete()
            await self.secret_store.create(identity)
        except WebhookError:
            CERTIFICATE_OPERATIONS.labels(operation="renew", result="failure").inc()
            raise
        CERTIFICATE_OPERATIONS.labels(operation="renew", result="success").inc()
        logger.info(f"Renewed certificate, now valid until {identity.not_after}")
        return identity

    async def _clear_stale_csr(self) -> None:
        if await self.csr_exchange.exists():
            logger.info(f"Removing stale signing request {self.csr_exchange.csr_name}")
            await self.csr_exchange.delete()

    async def _request_identity(self) -> TLSIdentity:
        key = generate_private_key()
        request_pem = build_signing_request(self.identity, key)
        certificate_pem = await self.csr_exchange.exchange(request_pem)

        identity = TLSIdentity(
            private_key_pem=encode_private_key(key),
            certificate_pem=certificate_pem,
        )
        # Reject an unparsable certificate before anything is stored
        CERTIFICATE_EXPIRY_TIMESTAMP.set(identity.not_after.timestamp())
        return identity
